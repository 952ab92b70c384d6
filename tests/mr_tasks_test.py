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


"""Tests for monorun.tasks."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from monorun.backends._run import CommandResult
from monorun.tasks import (
    ENV_PACKAGE_NAME,
    ENV_ROOT_PATH,
    exec_task,
    install_task,
    outcome_from_result,
    run_script_task,
)
from monorun.workspace import Package


def _make_pkg(path: Path, name: str = 'core', scripts: dict[str, str] | None = None) -> Package:
    """Create a Package rooted at ``path``."""
    path.mkdir(parents=True, exist_ok=True)
    return Package(
        name=name,
        version='1.0.0',
        path=path,
        manifest_path=path / 'package.json',
        scripts=scripts or {},
    )


def _ok(cmd: list[str], **kwargs: object) -> CommandResult:
    return CommandResult(command=cmd, return_code=0)


class TestOutcomeFromResult:
    """Tests for outcome_from_result()."""

    def test_success(self) -> None:
        """Exit code 0 is a success."""
        outcome = outcome_from_result(CommandResult(command=['npm', 'test'], return_code=0))
        if not outcome.ok:
            raise AssertionError(f'Expected ok, got {outcome}')

    def test_failure_carries_code_and_stderr_tail(self) -> None:
        """A non-zero exit keeps the code and the last stderr lines."""
        stderr = '\n'.join(f'line {i}' for i in range(10))
        outcome = outcome_from_result(CommandResult(command=['npm', 'test'], return_code=3, stderr=stderr))
        if outcome.ok or outcome.code != 3:
            raise AssertionError(f'Expected failure with code 3, got {outcome}')
        if 'line 9' not in outcome.error or 'line 0' in outcome.error:
            raise AssertionError(f'Expected only the stderr tail, got {outcome.error!r}')
        if '`npm test` exited with code 3' not in outcome.error:
            raise AssertionError(f'Missing command in error: {outcome.error!r}')


class TestInstallTask:
    """Tests for install_task()."""

    @pytest.mark.asyncio
    async def test_runs_client_install_in_package(self, tmp_path: Path) -> None:
        """`<client> install` runs in the package directory."""
        pkg = _make_pkg(tmp_path / 'core')
        with patch('monorun.tasks.run_command', side_effect=_ok) as mock_run:
            outcome = await install_task('pnpm')(pkg)
        if not outcome.ok:
            raise AssertionError(f'Expected ok, got {outcome}')
        args, kwargs = mock_run.call_args
        if args[0] != ['pnpm', 'install']:
            raise AssertionError(f'Unexpected command: {args[0]}')
        if kwargs['cwd'] != pkg.path or kwargs['capture'] is not True:
            raise AssertionError(f'Unexpected kwargs: {kwargs}')

    @pytest.mark.asyncio
    async def test_stream_disables_capture(self, tmp_path: Path) -> None:
        """stream=True lets output through."""
        pkg = _make_pkg(tmp_path / 'core')
        with patch('monorun.tasks.run_command', side_effect=_ok) as mock_run:
            await install_task(stream=True)(pkg)
        if mock_run.call_args.kwargs['capture'] is not False:
            raise AssertionError('Expected capture=False when streaming')


class TestRunScriptTask:
    """Tests for run_script_task()."""

    @pytest.mark.asyncio
    async def test_script_with_args(self, tmp_path: Path) -> None:
        """Extra args follow a `--` separator."""
        pkg = _make_pkg(tmp_path / 'core', scripts={'test': 'jest'})
        with patch('monorun.tasks.run_command', side_effect=_ok) as mock_run:
            await run_script_task('test', ['--watch'], 'yarn')(pkg)
        if mock_run.call_args.args[0] != ['yarn', 'run', 'test', '--', '--watch']:
            raise AssertionError(f'Unexpected command: {mock_run.call_args.args[0]}')

    @pytest.mark.asyncio
    async def test_script_without_args(self, tmp_path: Path) -> None:
        """No separator when there are no extra args."""
        pkg = _make_pkg(tmp_path / 'core', scripts={'build': 'tsc'})
        with patch('monorun.tasks.run_command', side_effect=_ok) as mock_run:
            await run_script_task('build')(pkg)
        if mock_run.call_args.args[0] != ['npm', 'run', 'build']:
            raise AssertionError(f'Unexpected command: {mock_run.call_args.args[0]}')

    @pytest.mark.asyncio
    async def test_missing_script_succeeds_without_running(self, tmp_path: Path) -> None:
        """A package without the script is a no-op success."""
        pkg = _make_pkg(tmp_path / 'core')
        with patch('monorun.tasks.run_command') as mock_run:
            outcome = await run_script_task('test')(pkg)
        if not outcome.ok or mock_run.called:
            raise AssertionError('Expected a no-op success')

    @pytest.mark.asyncio
    async def test_failure(self, tmp_path: Path) -> None:
        """A failing script gives a failed outcome."""
        pkg = _make_pkg(tmp_path / 'core', scripts={'test': 'jest'})
        failing = CommandResult(command=['npm', 'run', 'test'], return_code=1, stderr='1 test failed')
        with patch('monorun.tasks.run_command', return_value=failing):
            outcome = await run_script_task('test')(pkg)
        if outcome.ok or '1 test failed' not in outcome.error:
            raise AssertionError(f'Unexpected outcome: {outcome}')

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path: Path) -> None:
        """An executable that cannot start fails with code 127."""
        pkg = _make_pkg(tmp_path / 'core', scripts={'test': 'jest'})
        with patch('monorun.tasks.run_command', side_effect=FileNotFoundError('no such file')):
            outcome = await run_script_task('test', npm_client='nonexistent-client')(pkg)
        if outcome.ok or outcome.code != 127:
            raise AssertionError(f'Unexpected outcome: {outcome}')


class TestExecTask:
    """Tests for exec_task()."""

    def test_empty_command_rejected(self, tmp_path: Path) -> None:
        """exec needs something to run."""
        with pytest.raises(ValueError, match='command'):
            exec_task([], tmp_path)

    @pytest.mark.asyncio
    async def test_exports_package_env(self, tmp_path: Path) -> None:
        """The child sees the package name and workspace root."""
        pkg = _make_pkg(tmp_path / 'packages' / 'core', name='@acme/core')
        script = (
            "import os, pathlib; "
            f"name = os.environ['{ENV_PACKAGE_NAME}']; "
            f"root = os.environ['{ENV_ROOT_PATH}']; "
            "pathlib.Path('env.txt').write_text(name + '|' + root)"
        )
        outcome = await exec_task([sys.executable, '-c', script], tmp_path)(pkg)

        if not outcome.ok:
            raise AssertionError(f'Expected ok, got {outcome}')
        written = (pkg.path / 'env.txt').read_text(encoding='utf-8')
        if written != f'@acme/core|{tmp_path}':
            raise AssertionError(f'Unexpected env: {written!r}')

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, tmp_path: Path) -> None:
        """A non-zero exit becomes a failed outcome with that code."""
        pkg = _make_pkg(tmp_path / 'core')
        outcome = await exec_task([sys.executable, '-c', 'raise SystemExit(4)'], tmp_path)(pkg)
        if outcome.ok or outcome.code != 4:
            raise AssertionError(f'Expected code 4, got {outcome}')

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path: Path) -> None:
        """A child exceeding the timeout fails."""
        pkg = _make_pkg(tmp_path / 'core')
        outcome = await exec_task(
            [sys.executable, '-c', 'import time; time.sleep(5)'],
            tmp_path,
            timeout=0.2,
        )(pkg)
        if outcome.ok or 'timed out' not in outcome.error:
            raise AssertionError(f'Expected timeout, got {outcome}')

    @pytest.mark.asyncio
    async def test_dry_run(self, tmp_path: Path) -> None:
        """Dry run succeeds without running anything."""
        pkg = _make_pkg(tmp_path / 'core')
        outcome = await exec_task(['touch', 'marker'], tmp_path, dry_run=True)(pkg)
        if not outcome.ok or (pkg.path / 'marker').exists():
            raise AssertionError('Dry run must not execute the command')
