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


"""Central subprocess abstraction for monorun tasks.

Every child process (``npm install``, ``npm run <script>``, arbitrary
``exec`` commands) goes through :func:`run_command`, which gives:

- Structured logging of every invocation.
- Dry-run support: the command is logged, not executed, and a synthetic
  success result is returned.
- Optional streaming: with ``capture=False`` the child inherits the
  parent's stdout/stderr so output appears live.
- A consistent :class:`CommandResult` regardless of outcome.

``run_command`` is blocking. Async callers dispatch it with
``asyncio.to_thread`` so the scheduler's event loop keeps turning.
"""

from __future__ import annotations

import os
import subprocess  # noqa: S404 - subprocess is the core purpose of this module
import time
from dataclasses import dataclass
from pathlib import Path

from monorun.logging import get_logger

log = get_logger('monorun.backends.run')


@dataclass(frozen=True)
class CommandResult:
    """Result of a subprocess invocation.

    Attributes:
        command: The command that was executed.
        return_code: Process exit code (0 = success). Negative values
            are POSIX signals (``-15`` = SIGTERM).
        stderr: Captured standard error (empty when streaming).
        dry_run: Whether the command was only logged.
    """

    command: list[str]
    return_code: int
    stderr: str = ''
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        """Whether the command exited with status 0."""
        return self.return_code == 0

    @property
    def command_str(self) -> str:
        """The command as a single shell-style string."""
        return ' '.join(self.command)


def run_command(
    cmd: list[str],
    *,
    cwd: Path | str | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
    dry_run: bool = False,
    capture: bool = True,
) -> CommandResult:
    """Execute a subprocess command with logging and dry-run support.

    Args:
        cmd: Command and arguments as a list of strings.
        cwd: Working directory for the command.
        env: Extra environment variables (merged over ``os.environ``).
        timeout: Seconds before the child is killed. ``None`` waits forever.
        dry_run: If ``True``, log the command but don't execute it.
        capture: If ``True``, capture stdout/stderr; otherwise stream them.

    Returns:
        A :class:`CommandResult`.

    Raises:
        subprocess.TimeoutExpired: If the command exceeds ``timeout``.
        OSError: If the executable cannot be started.
    """
    cmd_str = ' '.join(cmd)
    log.debug('run_command', cmd=cmd_str, cwd=str(cwd or '.'), dry_run=dry_run)

    if dry_run:
        log.info('dry_run', cmd=cmd_str, cwd=str(cwd or '.'))
        return CommandResult(command=cmd, return_code=0, dry_run=True)

    full_env: dict[str, str] | None = None
    if env:
        full_env = {**os.environ, **env}

    start = time.monotonic()
    try:
        result = subprocess.run(  # noqa: S603 - commands come from the user's own CLI invocation
            cmd,
            cwd=cwd,
            env=full_env,
            capture_output=capture,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        duration = (time.monotonic() - start) * 1000
        log.error('command_timeout', cmd=cmd_str, timeout=timeout, duration=duration)
        raise

    duration = (time.monotonic() - start) * 1000
    cmd_result = CommandResult(
        command=cmd,
        return_code=result.returncode,
        stderr=result.stderr if capture else '',
    )

    if result.returncode != 0:
        log.warning(
            'command_failed',
            cmd=cmd_str,
            cwd=str(cwd or '.'),
            return_code=result.returncode,
            stderr=result.stderr[-500:] if capture else '',
            duration=duration,
        )
    else:
        log.debug('command_ok', cmd=cmd_str, duration=duration)

    return cmd_result


# Re-exported so callers don't need to import subprocess directly.
TimeoutExpired = subprocess.TimeoutExpired

__all__ = [
    'CommandResult',
    'TimeoutExpired',
    'run_command',
]
