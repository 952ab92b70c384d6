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


"""Structured error system for monorun.

Every error has a unique ``MR-NAMED-KEY`` code, a human-readable message,
and an optional hint with a suggested fix.

Code categories::

    MR-CONFIG-*       Configuration errors (monorun.toml, CLI values)
    MR-WORKSPACE-*    Workspace discovery errors
    MR-GRAPH-*        Dependency graph errors
    MR-LINK-*         Local dependency linking errors

Only configuration-level problems are raised as :class:`MonorunError`.
A failing task is never an exception past the scheduler: it becomes a
``failed`` status in the run result.

Usage::

    from monorun.errors import E, MonorunError

    raise MonorunError(
        code=E.CONFIG_INVALID_VALUE,
        message='concurrency must be >= 1, got 0',
        hint='Pass --concurrency 1 for sequential execution.',
    )
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

from rich.console import Console
from rich.markup import escape as rich_escape


class ErrorCode(str, Enum):
    """Enumeration of all monorun diagnostic codes."""

    # Configuration
    CONFIG_INVALID_KEY = 'MR-CONFIG-INVALID-KEY'
    CONFIG_INVALID_VALUE = 'MR-CONFIG-INVALID-VALUE'
    CONFIG_PARSE_ERROR = 'MR-CONFIG-PARSE-ERROR'

    # Workspace discovery
    WORKSPACE_NOT_FOUND = 'MR-WORKSPACE-NOT-FOUND'
    WORKSPACE_NO_MEMBERS = 'MR-WORKSPACE-NO-MEMBERS'
    WORKSPACE_PARSE_ERROR = 'MR-WORKSPACE-PARSE-ERROR'
    WORKSPACE_DUPLICATE_PACKAGE = 'MR-WORKSPACE-DUPLICATE-PACKAGE'

    # Dependency graph
    GRAPH_CYCLE_DETECTED = 'MR-GRAPH-CYCLE-DETECTED'
    GRAPH_UNKNOWN_PACKAGE = 'MR-GRAPH-UNKNOWN-PACKAGE'

    # Linking
    LINK_FAILED = 'MR-LINK-FAILED'


E = ErrorCode


@dataclass(frozen=True)
class ErrorInfo:
    """Metadata for a single error code.

    Attributes:
        code: The ``MR-NAMED-KEY`` error code.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    code: ErrorCode
    message: str
    hint: str = ''


class MonorunError(Exception):
    """Base exception for all monorun errors.

    Args:
        code: The error code from :class:`ErrorCode`.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    def __init__(self, code: ErrorCode, message: str, hint: str = '') -> None:
        """Initialize with an error code, message, and optional hint."""
        self.info = ErrorInfo(code=code, message=message, hint=hint)
        super().__init__(f'[{code.value}] {message}')

    @property
    def code(self) -> ErrorCode:
        """The error code."""
        return self.info.code

    @property
    def hint(self) -> str:
        """Suggestion for fixing this error, or empty string."""
        return self.info.hint


ERRORS: dict[ErrorCode, ErrorInfo] = {
    E.CONFIG_INVALID_KEY: ErrorInfo(
        code=E.CONFIG_INVALID_KEY,
        message='monorun.toml contains a key monorun does not recognize.',
        hint='Check the spelling; the error message suggests the closest valid key.',
    ),
    E.CONFIG_INVALID_VALUE: ErrorInfo(
        code=E.CONFIG_INVALID_VALUE,
        message='A configuration value or command-line option has the wrong type or range.',
        hint='concurrency must be a positive integer; pattern lists must be lists of strings.',
    ),
    E.CONFIG_PARSE_ERROR: ErrorInfo(
        code=E.CONFIG_PARSE_ERROR,
        message='monorun.toml is not valid TOML or could not be read.',
        hint='Fix the syntax error reported in the message.',
    ),
    E.WORKSPACE_NOT_FOUND: ErrorInfo(
        code=E.WORKSPACE_NOT_FOUND,
        message='No monorun.toml was found in the current directory or any parent.',
        hint='Run monorun inside the repository, pass --root, or create monorun.toml at the repository root.',
    ),
    E.WORKSPACE_NO_MEMBERS: ErrorInfo(
        code=E.WORKSPACE_NO_MEMBERS,
        message='The package globs did not match any directory containing a package.json.',
        hint='Set packages = ["packages/*"] (or similar) in monorun.toml.',
    ),
    E.WORKSPACE_DUPLICATE_PACKAGE: ErrorInfo(
        code=E.WORKSPACE_DUPLICATE_PACKAGE,
        message='Two package.json files declare the same package name.',
        hint='Package names must be unique across the repository.',
    ),
    E.WORKSPACE_PARSE_ERROR: ErrorInfo(
        code=E.WORKSPACE_PARSE_ERROR,
        message='A package.json could not be read or is malformed.',
        hint='package.json must be a JSON object; dependency sections must be objects.',
    ),
    E.GRAPH_CYCLE_DETECTED: ErrorInfo(
        code=E.GRAPH_CYCLE_DETECTED,
        message='The selected packages depend on each other in a cycle.',
        hint='Break the cycle, or use --ignore so that at most one cycle member is selected.',
    ),
    E.GRAPH_UNKNOWN_PACKAGE: ErrorInfo(
        code=E.GRAPH_UNKNOWN_PACKAGE,
        message='A package name does not belong to the workspace.',
        hint='Run monorun ls to see the discovered packages.',
    ),
    E.LINK_FAILED: ErrorInfo(
        code=E.LINK_FAILED,
        message='Could not create or remove a node_modules symlink for a local dependency.',
        hint='Check file permissions in the package directories, or run with --no-link.',
    ),
}


def explain(code: str) -> str | None:
    """Return a detailed explanation for an error code.

    Args:
        code: The error code string, e.g. ``"MR-GRAPH-CYCLE-DETECTED"``.

    Returns:
        A formatted explanation string, or ``None`` if the code is unknown.
    """
    try:
        error_code = ErrorCode(code)
    except ValueError:
        return None

    info = ERRORS.get(error_code)
    if info is None:
        return f'{code}: No detailed explanation available.'

    lines = [f'{code}: {info.message}']
    if info.hint:
        lines.append(f'  Hint: {info.hint}')
    return '\n'.join(lines)


def render_error(exc: MonorunError, *, file: TextIO | None = None) -> None:
    """Render an error in compiler style, colored when writing to a TTY.

    Output format::

        error[MR-GRAPH-CYCLE-DETECTED]: Circular dependencies: a → b → a
          |
          = hint: Break the cycle ...

    Args:
        exc: The error to render.
        file: Output stream (defaults to ``sys.stderr``).
    """
    out = file or sys.stderr

    if out.isatty():
        console = Console(file=out, highlight=False)
        msg = rich_escape(exc.info.message)
        console.print(
            f'[bold red]error[/bold red][bold red]\\[{exc.code.value}][/bold red][bold]: {msg}[/bold]',
        )
        if exc.hint:
            hint = rich_escape(exc.hint)
            console.print('  [dim]|[/dim]')
            console.print(f'  [dim]=[/dim] [cyan]hint[/cyan]: {hint}')
        console.print()
    else:
        print(f'error[{exc.code.value}]: {exc.info.message}', file=out)  # noqa: T201 - CLI output
        if exc.hint:
            print('  |', file=out)  # noqa: T201 - CLI output
            print(f'  = hint: {exc.hint}', file=out)  # noqa: T201 - CLI output
        print(file=out)  # noqa: T201 - CLI output


__all__ = [
    'E',
    'ERRORS',
    'ErrorCode',
    'ErrorInfo',
    'MonorunError',
    'explain',
    'render_error',
]
