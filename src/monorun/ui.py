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


"""Run progress logging and the final summary table.

:class:`LogRunUI` emits one structured log line per status transition,
which suits CI logs and interleaves cleanly with streamed task output.
:func:`print_summary` renders the end-of-run report::

    Package      Status       Detail
    ──────────────────────────────────────────────
    core         ✅ succeeded  0.4s
    app          ❌ failed     `npm run build` exited with code 2
    docs         ⏭️  skipped    blocked by a failed dependency

    1 succeeded, 1 failed, 1 skipped
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from rich.console import Console
from rich.table import Table
from rich.text import Text

from monorun.logging import get_logger
from monorun.observer import PackageStatus, RunObserver
from monorun.scheduler import SchedulerResult
from monorun.workspace import Package

logger = get_logger(__name__)

_STATUS_DISPLAY: dict[PackageStatus, tuple[str, str]] = {
    PackageStatus.PENDING: ('⏳', 'dim'),
    PackageStatus.RUNNING: ('🔄', 'cyan'),
    PackageStatus.SUCCEEDED: ('✅', 'green'),
    PackageStatus.FAILED: ('❌', 'red bold'),
    PackageStatus.SKIPPED: ('⏭️ ', 'yellow'),
}


@dataclass
class _PackageRow:
    """Timing for one package."""

    name: str
    status: PackageStatus = PackageStatus.PENDING
    start_time: float | None = None
    end_time: float | None = None

    @property
    def elapsed(self) -> float | None:
        """Elapsed time in seconds, or None if never started."""
        if self.start_time is None:
            return None
        end = self.end_time if self.end_time is not None else time.monotonic()
        return end - self.start_time

    @property
    def elapsed_str(self) -> str:
        """Formatted elapsed time."""
        elapsed = self.elapsed
        if elapsed is None:
            return '-'
        if elapsed < 60:
            return f'{elapsed:.1f}s'
        minutes = int(elapsed // 60)
        return f'{minutes}m{elapsed % 60:.0f}s'


@dataclass
class LogRunUI(RunObserver):
    """Structured-log observer: one line per transition."""

    rows: dict[str, _PackageRow] = field(default_factory=dict)

    def init_packages(self, names: Sequence[str]) -> None:
        """Register packages."""
        self.rows = {name: _PackageRow(name=name) for name in names}

    def on_status(self, name: str, status: PackageStatus) -> None:
        """Record and log the transition."""
        row = self.rows.setdefault(name, _PackageRow(name=name))
        row.status = status
        if status is PackageStatus.RUNNING:
            row.start_time = time.monotonic()
        elif status.terminal and row.start_time is not None:
            row.end_time = time.monotonic()
        logger.debug('status_change', package=name, status=status.value, elapsed=row.elapsed_str)

    def on_complete(self) -> None:
        """Log completion counts."""
        counts = {status: 0 for status in PackageStatus}
        for row in self.rows.values():
            counts[row.status] += 1
        logger.info(
            'run_ui_complete',
            succeeded=counts[PackageStatus.SUCCEEDED],
            failed=counts[PackageStatus.FAILED],
            skipped=counts[PackageStatus.SKIPPED],
            total=len(self.rows),
        )

    def elapsed_str(self, name: str) -> str:
        """Formatted runtime of ``name``, or ``-``."""
        row = self.rows.get(name)
        return row.elapsed_str if row is not None else '-'


def _skip_detail(result: SchedulerResult) -> str:
    if result.abort_reason is not None and result.abort_reason.user_initiated:
        return 'run interrupted'
    return 'dependency failed or run aborted'


def print_summary(
    result: SchedulerResult,
    *,
    ui: LogRunUI | None = None,
    console: Console | None = None,
) -> None:
    """Print the per-package outcome table and a one-line total.

    Args:
        result: The finished run.
        ui: Observer that watched the run; supplies timings.
        console: Where to print. Defaults to stderr.
    """
    console = console or Console(stderr=True)
    table = Table(show_header=True, header_style='bold', show_edge=False, pad_edge=False)
    table.add_column('Package', min_width=20)
    table.add_column('Status', min_width=12)
    table.add_column('Detail')

    for name, status in result.statuses.items():
        emoji, style = _STATUS_DISPLAY[status]
        if status is PackageStatus.FAILED:
            detail = result.failed.get(name, '')
        elif status is PackageStatus.SKIPPED:
            detail = _skip_detail(result)
        else:
            detail = ui.elapsed_str(name) if ui is not None else ''
        table.add_row(name, Text(f'{emoji} {status.value}', style=style), detail)

    console.print(table)
    summary = f'{len(result.succeeded)} succeeded, {len(result.failed)} failed, {len(result.skipped)} skipped'
    style = 'green' if result.ok else 'red'
    console.print(Text(summary, style=style))
    if result.abort_reason is not None and result.abort_reason.package:
        console.print(Text(f'Run aborted after {result.abort_reason.package} failed.', style='yellow'))


def print_packages(levels: Sequence[Sequence[Package]], *, console: Console | None = None) -> None:
    """Print the ``ls`` table, one row per package in dependency order.

    Args:
        levels: Packages grouped by dependency level, as returned by
            :func:`monorun.graph.topo_sort`.
        console: Console to print to. Defaults to stdout.
    """
    console = console or Console()
    table = Table(show_header=True, header_style='bold', show_edge=False, pad_edge=False)
    table.add_column('Level', justify='right')
    table.add_column('Package', min_width=20)
    table.add_column('Version', min_width=8)
    table.add_column('Local deps')
    table.add_column('Private', justify='center')
    for level, packages in enumerate(levels):
        for pkg in packages:
            table.add_row(
                str(level),
                pkg.name,
                pkg.version or '-',
                ', '.join(pkg.local_deps) or '-',
                'yes' if pkg.private else '',
            )
    console.print(table)


__all__ = [
    'LogRunUI',
    'print_packages',
    'print_summary',
]
