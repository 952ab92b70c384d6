# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0


"""Per-package run status and the observer interface.

Kept apart from the scheduler so UI code can depend on the status enum
without importing scheduling logic::

    observer.py  ← PackageStatus, RunObserver
      ↑              ↑
      │              │
    ui.py        scheduler.py

Status transitions (monotonic)::

    PENDING ──▶ RUNNING ──▶ SUCCEEDED
       │                └─▶ FAILED
       └──▶ SKIPPED   (run aborted, or a dependency failed / was skipped)
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum


class PackageStatus(str, Enum):
    """Where a package stands within one run."""

    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    SKIPPED = 'skipped'

    @property
    def terminal(self) -> bool:
        """True for statuses a package never leaves."""
        return self in (PackageStatus.SUCCEEDED, PackageStatus.FAILED, PackageStatus.SKIPPED)


# Legal transitions. Anything else is a scheduler bug.
TRANSITIONS: dict[PackageStatus, frozenset[PackageStatus]] = {
    PackageStatus.PENDING: frozenset({PackageStatus.RUNNING, PackageStatus.SKIPPED}),
    PackageStatus.RUNNING: frozenset({PackageStatus.SUCCEEDED, PackageStatus.FAILED}),
    PackageStatus.SUCCEEDED: frozenset(),
    PackageStatus.FAILED: frozenset(),
    PackageStatus.SKIPPED: frozenset(),
}


class RunObserver:
    """Receives status updates from the scheduler.

    The base class ignores every event; subclasses override what they need.
    """

    def init_packages(self, names: Sequence[str]) -> None:
        """Register the packages of the run, in scheduling order."""

    def on_status(self, name: str, status: PackageStatus) -> None:
        """Notify that ``name`` moved to ``status``."""

    def on_error(self, name: str, error: str) -> None:
        """Notify that the task for ``name`` failed with ``error``."""

    def on_complete(self) -> None:
        """Notify that the run finished."""


__all__ = [
    'PackageStatus',
    'RunObserver',
    'TRANSITIONS',
]
