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


"""Run-wide cancellation token.

One :class:`AbortController` is created per run and handed to everything
that can stop the run or must respect a stop: the scheduler (which aborts
on a non-forced task failure and checks the flag before starting work)
and the process signal handlers (which abort on Ctrl+C / SIGTERM).

Both sources go through the same :meth:`AbortController.abort` call, so
an interrupt and a failed task are handled by one policy: nothing new
starts, running tasks finish, and untouched packages end up skipped.

Lifecycle::

    created ──abort(reason)──▶ aborted (reason fixed)
                                  │
                              abort(...) again → no-op

The controller is never reset; a new run gets a new controller.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import dataclass
from typing import Any

from monorun.logging import get_logger

logger = get_logger(__name__)

# Signals treated as a user-initiated abort.
_ABORT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


@dataclass(frozen=True)
class AbortReason:
    """Why a run was aborted.

    Attributes:
        user_initiated: True for an interrupt signal, False for a task failure.
        package: The failed package that triggered the abort, if any.
        message: Free-form detail for the final report.
    """

    user_initiated: bool = False
    package: str | None = None
    message: str = ''


class AbortController:
    """Shared "stop starting new work" flag for one run.

    All methods are meant to be called from the event loop thread.
    Signal handlers registered through :meth:`install_signal_handlers`
    run on the loop, so they are safe as well.
    """

    def __init__(self) -> None:
        """Create a controller in the not-aborted state."""
        self._reason: AbortReason | None = None
        self._installed: list[signal.Signals] = []
        self._previous: dict[signal.Signals, Any] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_aborted(self) -> bool:
        """Return True once :meth:`abort` has been called."""
        return self._reason is not None

    @property
    def reason(self) -> AbortReason | None:
        """The reason passed to the first :meth:`abort` call."""
        return self._reason

    def abort(self, reason: AbortReason | None = None) -> bool:
        """Abort the run. The first call wins; later calls are ignored.

        Args:
            reason: Why the run stops. Defaults to a non-user abort.

        Returns:
            True if this call aborted the run, False if it already was.
        """
        if self._reason is not None:
            logger.debug('abort_ignored', already=self._reason.user_initiated)
            return False
        self._reason = reason or AbortReason()
        logger.warning(
            'run_aborted',
            user_initiated=self._reason.user_initiated,
            package=self._reason.package,
            message=self._reason.message,
        )
        return True

    def _on_signal(self, signum: signal.Signals) -> None:
        first = self.abort(
            AbortReason(
                user_initiated=True,
                message=f'received {signum.name}',
            ),
        )
        if not first and self._loop is not None:
            # A repeated interrupt restores the previous handling, so the
            # next one interrupts the process even if a task hangs.
            logger.warning('abort_repeated', signal=signum.name)
            self.uninstall_signal_handlers(self._loop)

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """Route SIGINT and SIGTERM to a user-initiated :meth:`abort`.

        Unix only; silently skipped on Windows or off the main thread.
        """
        if sys.platform == 'win32':
            return
        self._loop = loop
        for signum in _ABORT_SIGNALS:
            previous = signal.getsignal(signum)
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except (ValueError, OSError, RuntimeError):
                logger.debug('abort_signal_skipped', signal=signum.name, reason='not main thread or unsupported')
                continue
            self._installed.append(signum)
            self._previous[signum] = previous
        logger.debug('abort_signals_installed', signals=[s.name for s in self._installed])

    def uninstall_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """Remove our handlers and put back whatever was there before.

        ``loop.remove_signal_handler`` always resets SIGINT to
        :func:`signal.default_int_handler`, which would drop a handler the
        caller installed first (such as the one :func:`asyncio.run` uses to
        cancel the main task).
        """
        while self._installed:
            signum = self._installed.pop()
            loop.remove_signal_handler(signum)
            previous = self._previous.pop(signum, None)
            if previous is not None:
                signal.signal(signum, previous)
        self._loop = None


__all__ = [
    'AbortController',
    'AbortReason',
]
