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


"""Task factories for the built-in commands.

Each factory returns an async callable the scheduler invokes once per
package. The callables run one child process in the package directory
through :func:`~monorun.backends._run.run_command`, dispatched with
``asyncio.to_thread()`` so the event loop keeps scheduling other
packages while a child runs.

Commands used:

- ``<client> install``: install a package's external dependencies.
- ``<client> run <script> [-- args]``: run a ``package.json`` script.
- ``<command...>``: anything, with ``MONORUN_PACKAGE_NAME`` and
  ``MONORUN_ROOT_PATH`` exported to the child.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

from monorun.backends._run import CommandResult, TimeoutExpired, run_command
from monorun.logging import get_logger
from monorun.scheduler import TaskFn, TaskOutcome
from monorun.workspace import Package

log = get_logger('monorun.tasks')

ENV_PACKAGE_NAME = 'MONORUN_PACKAGE_NAME'
ENV_ROOT_PATH = 'MONORUN_ROOT_PATH'

# Lines of stderr carried into a failure message.
_STDERR_TAIL_LINES = 5


def outcome_from_result(result: CommandResult) -> TaskOutcome:
    """Map a finished command to a :class:`TaskOutcome`."""
    if result.ok:
        return TaskOutcome.success()
    error = f'`{result.command_str}` exited with code {result.return_code}'
    tail = result.stderr.strip().splitlines()[-_STDERR_TAIL_LINES:]
    if tail:
        error += ': ' + ' | '.join(line.strip() for line in tail)
    return TaskOutcome.failure(error, code=result.return_code)


async def _run_in_package(
    pkg: Package,
    cmd: list[str],
    *,
    env: dict[str, str] | None,
    stream: bool,
    dry_run: bool,
    timeout: float | None,
) -> TaskOutcome:
    try:
        result = await asyncio.to_thread(
            run_command,
            cmd,
            cwd=pkg.path,
            env=env,
            timeout=timeout,
            dry_run=dry_run,
            capture=not stream,
        )
    except TimeoutExpired:
        return TaskOutcome.failure(f'`{" ".join(cmd)}` timed out after {timeout}s')
    except OSError as exc:
        return TaskOutcome.failure(f'could not start `{cmd[0]}`: {exc}', code=127)
    return outcome_from_result(result)


def install_task(
    npm_client: str = 'npm',
    *,
    stream: bool = False,
    dry_run: bool = False,
    timeout: float | None = None,
) -> TaskFn:
    """Build a task running ``<npm_client> install`` in each package."""

    async def _install(pkg: Package) -> TaskOutcome:
        return await _run_in_package(
            pkg,
            [npm_client, 'install'],
            env=None,
            stream=stream,
            dry_run=dry_run,
            timeout=timeout,
        )

    return _install


def run_script_task(
    script: str,
    args: Sequence[str] = (),
    npm_client: str = 'npm',
    *,
    stream: bool = False,
    dry_run: bool = False,
    timeout: float | None = None,
) -> TaskFn:
    """Build a task running ``<npm_client> run <script> [-- args]``.

    Packages without the script succeed without running anything. They
    can only be in the working set through dependency or dependent
    expansion, and must not block the packages that do define it.
    """
    cmd_tail = ['--', *args] if args else []

    async def _run_script(pkg: Package) -> TaskOutcome:
        if not pkg.has_script(script):
            log.info('script_missing', package=pkg.name, script=script)
            return TaskOutcome.success()
        return await _run_in_package(
            pkg,
            [npm_client, 'run', script, *cmd_tail],
            env=None,
            stream=stream,
            dry_run=dry_run,
            timeout=timeout,
        )

    return _run_script


def exec_task(
    command: Sequence[str],
    root: Path,
    *,
    stream: bool = False,
    dry_run: bool = False,
    timeout: float | None = None,
) -> TaskFn:
    """Build a task running an arbitrary ``command`` in each package.

    Args:
        command: Executable and arguments. Must not be empty.
        root: Workspace root, exported as ``MONORUN_ROOT_PATH``.
        stream: Let the child write straight to the terminal.
        dry_run: Log the command instead of running it.
        timeout: Seconds before the child is killed.

    Raises:
        ValueError: If ``command`` is empty.
    """
    if not command:
        msg = 'exec needs a command to run'
        raise ValueError(msg)
    cmd = list(command)
    root_str = str(root)

    async def _exec(pkg: Package) -> TaskOutcome:
        env = {ENV_PACKAGE_NAME: pkg.name, ENV_ROOT_PATH: root_str}
        return await _run_in_package(pkg, cmd, env=env, stream=stream, dry_run=dry_run, timeout=timeout)

    return _exec


__all__ = [
    'ENV_PACKAGE_NAME',
    'ENV_ROOT_PATH',
    'exec_task',
    'install_task',
    'outcome_from_result',
    'run_script_task',
]
