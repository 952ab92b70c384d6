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


"""Tests for monorun.abort."""

from __future__ import annotations

import asyncio
import signal
import sys
from unittest.mock import MagicMock

import pytest
from monorun.abort import AbortController, AbortReason


class TestAbortController:
    """Tests for the abort flag itself."""

    def test_starts_not_aborted(self) -> None:
        """A new controller is not aborted and has no reason."""
        abort = AbortController()
        if abort.is_aborted or abort.reason is not None:
            raise AssertionError('Fresh controller must not be aborted')

    def test_abort_sets_reason(self) -> None:
        """abort() records the reason and reports that it took effect."""
        abort = AbortController()
        reason = AbortReason(package='core', message='boom')
        if not abort.abort(reason):
            raise AssertionError('First abort should return True')
        if not abort.is_aborted or abort.reason != reason:
            raise AssertionError(f'Unexpected state: {abort.reason}')

    def test_abort_is_idempotent(self) -> None:
        """The first reason wins; later calls are no-ops."""
        abort = AbortController()
        abort.abort(AbortReason(package='first'))
        if abort.abort(AbortReason(package='second')):
            raise AssertionError('Second abort should return False')
        if abort.reason is None or abort.reason.package != 'first':
            raise AssertionError(f'Expected first reason kept, got {abort.reason}')

    def test_default_reason(self) -> None:
        """abort() without a reason records a non-user abort."""
        abort = AbortController()
        abort.abort()
        if abort.reason != AbortReason():
            raise AssertionError(f'Unexpected reason: {abort.reason}')


class TestSignalHandling:
    """Tests for signal routing."""

    @pytest.mark.skipif(sys.platform == 'win32', reason='loop signal handlers are Unix-only')
    def test_install_and_uninstall(self) -> None:
        """SIGINT and SIGTERM are registered and later removed."""
        loop = MagicMock()
        abort = AbortController()
        abort.install_signal_handlers(loop)

        registered = {call.args[0] for call in loop.add_signal_handler.call_args_list}
        if registered != {signal.SIGINT, signal.SIGTERM}:
            raise AssertionError(f'Unexpected signals: {registered}')

        abort.uninstall_signal_handlers(loop)
        removed = {call.args[0] for call in loop.remove_signal_handler.call_args_list}
        if removed != registered:
            raise AssertionError(f'Expected {registered} removed, got {removed}')

    @pytest.mark.skipif(sys.platform == 'win32', reason='loop signal handlers are Unix-only')
    def test_install_tolerates_unsupported_loop(self) -> None:
        """A loop refusing handlers (e.g. off the main thread) is not fatal."""
        loop = MagicMock()
        loop.add_signal_handler.side_effect = RuntimeError('not main thread')
        abort = AbortController()
        abort.install_signal_handlers(loop)
        abort.uninstall_signal_handlers(loop)
        if loop.remove_signal_handler.called:
            raise AssertionError('Nothing was installed, nothing should be removed')

    def test_signal_is_user_abort(self) -> None:
        """A signal aborts the run as user-initiated."""
        abort = AbortController()
        abort._on_signal(signal.SIGINT)
        if abort.reason is None or not abort.reason.user_initiated:
            raise AssertionError(f'Expected user abort, got {abort.reason}')
        if 'SIGINT' not in abort.reason.message:
            raise AssertionError(f'Expected signal name in message, got {abort.reason.message}')

    @pytest.mark.skipif(sys.platform == 'win32', reason='loop signal handlers are Unix-only')
    def test_repeated_signal_restores_default(self) -> None:
        """A second signal removes the handlers."""
        loop = MagicMock()
        abort = AbortController()
        abort.install_signal_handlers(loop)
        abort._on_signal(signal.SIGINT)
        if loop.remove_signal_handler.called:
            raise AssertionError('First signal must keep the handlers')
        abort._on_signal(signal.SIGINT)
        if loop.remove_signal_handler.call_count != 2:
            raise AssertionError(f'Expected 2 removals, got {loop.remove_signal_handler.call_count}')

    @pytest.mark.skipif(sys.platform == 'win32', reason='loop signal handlers are Unix-only')
    @pytest.mark.asyncio
    async def test_uninstall_restores_previous_handler(self) -> None:
        """The SIGINT handler in place before install is put back afterwards."""
        original = signal.getsignal(signal.SIGINT)
        calls: list[int] = []

        def custom(signum: int, frame: object) -> None:
            calls.append(signum)

        signal.signal(signal.SIGINT, custom)
        try:
            loop = asyncio.get_running_loop()
            abort = AbortController()
            abort.install_signal_handlers(loop)
            if signal.getsignal(signal.SIGINT) is custom:
                raise AssertionError('install should replace the SIGINT handler')
            abort.uninstall_signal_handlers(loop)
            if signal.getsignal(signal.SIGINT) is not custom:
                raise AssertionError(f'Expected custom handler back, got {signal.getsignal(signal.SIGINT)}')
        finally:
            signal.signal(signal.SIGINT, original)
