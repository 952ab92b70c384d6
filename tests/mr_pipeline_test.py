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


"""Tests for monorun.pipeline: end-to-end runs over a real tree."""

from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
from pathlib import Path
from typing import Any

import pytest
from monorun.config import MonorunConfig
from monorun.errors import E, MonorunError
from monorun.linker import NullLinker
from monorun.observer import PackageStatus
from monorun.pipeline import RunOptions, RunReport, discover, run_pipeline, select
from monorun.scheduler import TaskOutcome
from monorun.tasks import exec_task
from monorun.workspace import Package


def _write_pkg(root: Path, name: str, deps: list[str] | None = None, scripts: dict[str, str] | None = None) -> None:
    manifest: dict[str, Any] = {'name': name, 'version': '1.0.0'}  # noqa: ANN401
    if deps:
        manifest['dependencies'] = dict.fromkeys(deps, '*')
    if scripts:
        manifest['scripts'] = scripts
    pkg_dir = root / 'packages' / name
    pkg_dir.mkdir(parents=True)
    (pkg_dir / 'package.json').write_text(json.dumps(manifest), encoding='utf-8')


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A tree where b and c depend on a; only c defines "test"."""
    _write_pkg(tmp_path, 'a', scripts={'build': 'tsc'})
    _write_pkg(tmp_path, 'b', ['a'], scripts={'build': 'tsc'})
    _write_pkg(tmp_path, 'c', ['a'], scripts={'test': 'jest'})
    return tmp_path


def _config(root: Path, **kwargs: Any) -> MonorunConfig:  # noqa: ANN401
    return MonorunConfig(root=root, **kwargs)


class TestDiscoverAndSelect:
    """Tests for the discovery and selection stages."""

    @pytest.mark.asyncio
    async def test_discover(self, workspace: Path) -> None:
        """The graph reflects package.json dependencies."""
        graph = await discover(workspace, _config(workspace))
        if graph.names != ['a', 'b', 'c']:
            raise AssertionError(f'Unexpected names: {graph.names}')
        if graph.reverse_edges['a'] != ['b', 'c']:
            raise AssertionError(f'Unexpected dependents: {graph.reverse_edges["a"]}')

    @pytest.mark.asyncio
    async def test_select_with_group(self, workspace: Path) -> None:
        """group:<name> references are resolved through the config."""
        config = _config(workspace, groups={'leaves': ['b', 'c']})
        graph = await discover(workspace, config)
        selection = select(graph, config, RunOptions(include=['group:leaves']))
        if selection.names != ['b', 'c']:
            raise AssertionError(f'Expected [b, c], got {selection.names}')

    @pytest.mark.asyncio
    async def test_select_require_script(self, workspace: Path) -> None:
        """require_script narrows the base set to packages with the script."""
        config = _config(workspace)
        graph = await discover(workspace, config)
        selection = select(graph, config, RunOptions(require_script='test'))
        if selection.names != ['c']:
            raise AssertionError(f'Expected [c], got {selection.names}')


class TestRunPipeline:
    """Tests for run_pipeline()."""

    @pytest.mark.asyncio
    async def test_successful_run(self, workspace: Path) -> None:
        """Every package runs, dependencies first, and the exit code is 0."""
        order: list[str] = []

        async def task(pkg: Package) -> None:
            order.append(pkg.name)

        report = await run_pipeline(workspace, _config(workspace), RunOptions(parallelism=2), task)
        if report.exit_code != 0:
            raise AssertionError(f'Expected exit 0, got {report.exit_code}')
        if order[0] != 'a' or sorted(order) != ['a', 'b', 'c']:
            raise AssertionError(f'Unexpected order: {order}')

    @pytest.mark.asyncio
    async def test_links_exist_during_run_only(self, workspace: Path) -> None:
        """Local deps are linked while tasks run and unlinked afterwards."""
        link = workspace / 'packages' / 'b' / 'node_modules' / 'a'
        seen: dict[str, bool] = {}

        async def task(pkg: Package) -> None:
            seen[pkg.name] = link.is_symlink()

        await run_pipeline(workspace, _config(workspace), RunOptions(), task)
        if not seen.get('b'):
            raise AssertionError('b should see its linked dependency')
        if link.is_symlink():
            raise AssertionError('Link should be removed after the run')

    @pytest.mark.asyncio
    async def test_no_link(self, workspace: Path) -> None:
        """link=False leaves node_modules alone."""

        async def task(pkg: Package) -> None:
            return None

        await run_pipeline(workspace, _config(workspace), RunOptions(link=False), task)
        if (workspace / 'packages' / 'b' / 'node_modules').exists():
            raise AssertionError('No node_modules expected with link=False')

    @pytest.mark.asyncio
    async def test_failure_exit_code(self, workspace: Path) -> None:
        """A failed package gives exit code 1 and skips its dependents."""

        async def task(pkg: Package) -> TaskOutcome:
            if pkg.name == 'a':
                return TaskOutcome.failure('compile error')
            return TaskOutcome.success()

        report = await run_pipeline(workspace, _config(workspace), RunOptions(), task, linker=NullLinker())
        if report.exit_code != 1:
            raise AssertionError(f'Expected exit 1, got {report.exit_code}')
        if report.result.statuses != {
            'a': PackageStatus.FAILED,
            'b': PackageStatus.SKIPPED,
            'c': PackageStatus.SKIPPED,
        }:
            raise AssertionError(f'Unexpected statuses: {report.result.statuses}')

    @pytest.mark.asyncio
    async def test_empty_selection(self, workspace: Path) -> None:
        """Nothing selected is a successful no-op."""
        called: list[str] = []

        async def task(pkg: Package) -> None:
            called.append(pkg.name)

        report = await run_pipeline(workspace, _config(workspace), RunOptions(include=['nope']), task)
        if report.exit_code != 0 or called or not report.selection.empty:
            raise AssertionError(f'Expected a no-op, got {report}')

    @pytest.mark.asyncio
    async def test_cycle_fails_before_linking(self, tmp_path: Path) -> None:
        """A cyclic selection raises and leaves the tree untouched."""
        _write_pkg(tmp_path, 'x', ['y'])
        _write_pkg(tmp_path, 'y', ['x'])

        async def task(pkg: Package) -> None:
            raise AssertionError('no task should run')

        with pytest.raises(MonorunError) as exc_info:
            await run_pipeline(tmp_path, _config(tmp_path), RunOptions(), task)
        if exc_info.value.code != E.GRAPH_CYCLE_DETECTED:
            raise AssertionError(f'Wrong code: {exc_info.value.code}')
        if (tmp_path / 'packages' / 'x' / 'node_modules').exists():
            raise AssertionError('Nothing should be linked')

    @pytest.mark.asyncio
    async def test_invalid_parallelism(self, workspace: Path) -> None:
        """parallelism < 1 is a configuration error."""

        async def task(pkg: Package) -> None:
            return None

        with pytest.raises(MonorunError) as exc_info:
            await run_pipeline(workspace, _config(workspace), RunOptions(parallelism=0), task)
        if exc_info.value.code != E.CONFIG_INVALID_VALUE:
            raise AssertionError(f'Wrong code: {exc_info.value.code}')

    @pytest.mark.asyncio
    async def test_expand_dependencies(self, workspace: Path) -> None:
        """Scope c with dependencies runs a then c."""
        order: list[str] = []

        async def task(pkg: Package) -> None:
            order.append(pkg.name)

        options = RunOptions(include=['c'], expand_dependencies=True, parallelism=1)
        report: RunReport = await run_pipeline(workspace, _config(workspace), options, task)
        if order != ['a', 'c']:
            raise AssertionError(f'Expected [a, c], got {order}')
        if report.selection.expanded != frozenset({'a'}):
            raise AssertionError(f'Unexpected expansion: {report.selection.expanded}')

    @pytest.mark.asyncio
    async def test_task_timeout_kills_child(self, workspace: Path) -> None:
        """A timed-out command is killed before the run moves on."""
        marker = workspace / 'late.txt'
        script = f'import pathlib, time; time.sleep(0.5); pathlib.Path({str(marker)!r}).write_text("late")'
        task = exec_task([sys.executable, '-c', script], workspace, timeout=0.1)

        options = RunOptions(include=['a'], link=False)
        report = await run_pipeline(workspace, _config(workspace), options, task)

        if 'timed out' not in report.result.failed.get('a', ''):
            raise AssertionError(f'Expected a timeout failure, got {report.result.failed}')
        await asyncio.sleep(0.8)
        if marker.exists():
            raise AssertionError('The timed-out child kept running after the run')

    @pytest.mark.skipif(sys.platform == 'win32', reason='loop signal handlers are Unix-only')
    @pytest.mark.asyncio
    async def test_sigint_skips_pending_packages(self, workspace: Path) -> None:
        """A real SIGINT lets the running task finish and skips the rest."""
        original = signal.getsignal(signal.SIGINT)

        async def task(pkg: Package) -> None:
            if pkg.name == 'a':
                os.kill(os.getpid(), signal.SIGINT)
                await asyncio.sleep(0.05)

        report = await run_pipeline(workspace, _config(workspace), RunOptions(), task, linker=NullLinker())

        if report.result.statuses != {
            'a': PackageStatus.SUCCEEDED,
            'b': PackageStatus.SKIPPED,
            'c': PackageStatus.SKIPPED,
        }:
            raise AssertionError(f'Unexpected statuses: {report.result.statuses}')
        reason = report.result.abort_reason
        if reason is None or not reason.user_initiated:
            raise AssertionError(f'Expected a user abort, got {reason}')
        if report.exit_code != 1:
            raise AssertionError(f'Expected exit 1, got {report.exit_code}')
        if signal.getsignal(signal.SIGINT) is not original:
            raise AssertionError('The SIGINT handler in place before the run should be back')
