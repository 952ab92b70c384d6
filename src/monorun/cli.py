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


"""Command-line interface for monorun.

Usage::

    monorun ls [--json]
    monorun bootstrap
    monorun run <script> [-- <args>...]
    monorun exec -- <command>...
    monorun explain <code>

Selection flags (``ls``, ``bootstrap``, ``run``, ``exec``)::

    --scope GLOB                       include (repeatable, group:<name> ok)
    --ignore GLOB                      exclude (repeatable, group:<name> ok)
    --include-filtered-dependencies    add transitive dependencies
    --include-filtered-dependents      add transitive dependents

Execution flags (``bootstrap``, ``run``, ``exec``)::

    --concurrency N    --force    --no-link    --stream
    --dry-run          --task-timeout SECONDS

Everything after a bare ``--`` is passed through untouched: to the
script for ``run``, as the command for ``exec``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path

from rich_argparse import RichHelpFormatter

from monorun import __version__
from monorun.config import MonorunConfig, find_workspace_root, load_config
from monorun.errors import MonorunError, explain, render_error
from monorun.graph import topo_sort
from monorun.logging import configure_logging, get_logger
from monorun.pipeline import RunOptions, RunReport, discover, run_pipeline, select
from monorun.scheduler import TaskFn
from monorun.tasks import exec_task, install_task, run_script_task
from monorun.ui import LogRunUI, print_packages, print_summary

logger = get_logger(__name__)


def _load(args: argparse.Namespace) -> tuple[Path, MonorunConfig]:
    """Locate the workspace root and load its configuration."""
    root = find_workspace_root(Path(args.root) if args.root else None)
    return root, load_config(root)


def _run_options(
    args: argparse.Namespace,
    config: MonorunConfig,
    *,
    require_script: str | None = None,
) -> RunOptions:
    """Merge CLI flags over the configuration defaults."""
    concurrency = getattr(args, 'concurrency', None)
    return RunOptions(
        include=args.scope or list(config.scope),
        exclude=args.ignore or list(config.ignore),
        expand_dependents=args.include_filtered_dependents,
        expand_dependencies=args.include_filtered_dependencies,
        parallelism=concurrency if concurrency is not None else config.concurrency,
        force=getattr(args, 'force', False),
        link=not getattr(args, 'no_link', False),
        require_script=require_script,
        dry_run=getattr(args, 'dry_run', False),
    )


def _stream(args: argparse.Namespace, config: MonorunConfig) -> bool:
    return bool(args.stream or config.stream)


async def _execute(root: Path, config: MonorunConfig, options: RunOptions, task: TaskFn) -> int:
    """Run the pipeline, print the summary, and return the exit code."""
    ui = LogRunUI()
    report: RunReport = await run_pipeline(root, config, options, task, observer=ui)
    if report.selection.empty:
        print('No packages matched the selection.', file=sys.stderr)  # noqa: T201 - CLI output
        return 0
    print_summary(report.result, ui=ui)
    return report.exit_code


async def _cmd_ls(args: argparse.Namespace) -> int:
    """Handle the ``ls`` subcommand.

    Packages are listed level by level, so every package appears after
    the local dependencies it has in the selection.
    """
    root, config = _load(args)
    graph = await discover(root, config)
    selection = select(graph, config, _run_options(args, config))
    levels = topo_sort(graph.subgraph(selection.names))
    if args.json:
        rows = [
            {
                'name': pkg.name,
                'version': pkg.version,
                'path': str(pkg.path.relative_to(root)),
                'private': pkg.private,
                'level': level,
                'localDependencies': pkg.local_deps,
            }
            for level, packages in enumerate(levels)
            for pkg in packages
        ]
        print(json.dumps(rows, indent=2))  # noqa: T201 - CLI output
        return 0
    print_packages(levels)
    return 0


async def _cmd_bootstrap(args: argparse.Namespace) -> int:
    """Handle the ``bootstrap`` subcommand."""
    root, config = _load(args)
    options = _run_options(args, config)
    task = install_task(
        config.npm_client,
        stream=_stream(args, config),
        dry_run=options.dry_run,
        timeout=args.task_timeout,
    )
    return await _execute(root, config, options, task)


async def _cmd_run(args: argparse.Namespace) -> int:
    """Handle the ``run`` subcommand.

    Only packages defining the script form the base set; packages added
    by expansion that lack it succeed without running anything.
    """
    root, config = _load(args)
    options = _run_options(args, config, require_script=args.script)
    task = run_script_task(
        args.script,
        args.script_args,
        config.npm_client,
        stream=_stream(args, config),
        dry_run=options.dry_run,
        timeout=args.task_timeout,
    )
    return await _execute(root, config, options, task)


async def _cmd_exec(args: argparse.Namespace) -> int:
    """Handle the ``exec`` subcommand."""
    if not args.cmd:
        print(  # noqa: T201 - CLI output
            'monorun exec: error: missing command, e.g. monorun exec -- ls -la',
            file=sys.stderr,
        )
        return 2
    root, config = _load(args)
    options = _run_options(args, config)
    task = exec_task(
        args.cmd,
        root,
        stream=_stream(args, config),
        dry_run=options.dry_run,
        timeout=args.task_timeout,
    )
    return await _execute(root, config, options, task)


def _cmd_explain(args: argparse.Namespace) -> int:
    """Handle the ``explain`` subcommand."""
    result = explain(args.code)
    if result is None:
        print(f'Unknown error code: {args.code}')  # noqa: T201 - CLI output
        return 1
    print(result)  # noqa: T201 - CLI output
    return 0


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f'expected an integer, got {value!r}') from None
    if number < 1:
        raise argparse.ArgumentTypeError(f'must be >= 1, got {number}')
    return number


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f'expected a number, got {value!r}') from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f'must be > 0, got {number}')
    return number


def _add_selection_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group('selection')
    group.add_argument(
        '--scope',
        action='append',
        default=[],
        metavar='GLOB',
        help='Only include packages whose name matches GLOB (repeatable).',
    )
    group.add_argument(
        '--ignore',
        action='append',
        default=[],
        metavar='GLOB',
        help='Exclude packages whose name matches GLOB (repeatable).',
    )
    group.add_argument(
        '--include-filtered-dependencies',
        action='store_true',
        help='Also include every transitive dependency of the matched packages.',
    )
    group.add_argument(
        '--include-filtered-dependents',
        action='store_true',
        help='Also include every transitive dependent of the matched packages.',
    )


def _add_execution_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group('execution')
    group.add_argument(
        '--concurrency',
        type=_positive_int,
        default=None,
        metavar='N',
        help='Max tasks running at once (default: from monorun.toml, else 4).',
    )
    group.add_argument(
        '--force',
        action='store_true',
        help='Keep running unrelated packages after a failure.',
    )
    group.add_argument(
        '--no-link',
        action='store_true',
        help='Do not symlink local dependencies into node_modules.',
    )
    group.add_argument(
        '--stream',
        action='store_true',
        help='Stream task output live instead of capturing it.',
    )
    group.add_argument(
        '--dry-run',
        action='store_true',
        help='Preview mode: log commands and links without executing.',
    )
    group.add_argument(
        '--task-timeout',
        type=_positive_float,
        default=None,
        metavar='SECONDS',
        help='Fail a package whose task runs longer than SECONDS.',
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured :class:`argparse.ArgumentParser`.
    """
    RichHelpFormatter.styles['argparse.groups'] = 'bold yellow'
    parser = argparse.ArgumentParser(
        prog='monorun',
        description='Run tasks across the packages of a monorepo in dependency order.',
        formatter_class=RichHelpFormatter,
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}',
    )
    parser.add_argument(
        '--root',
        metavar='PATH',
        default=None,
        help='Directory to start looking for monorun.toml from (default: current directory).',
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging.')
    parser.add_argument('--quiet', '-q', action='store_true', help='Only log warnings and errors.')
    parser.add_argument('--json-log', action='store_true', help='Emit logs as JSON lines.')

    subparsers = parser.add_subparsers(dest='command')

    ls_parser = subparsers.add_parser(
        'ls',
        help='List the selected packages.',
        formatter_class=RichHelpFormatter,
    )
    _add_selection_flags(ls_parser)
    ls_parser.add_argument('--json', action='store_true', help='Print JSON instead of a table.')

    bootstrap_parser = subparsers.add_parser(
        'bootstrap',
        help='Link local packages and install dependencies in every package.',
        formatter_class=RichHelpFormatter,
    )
    _add_selection_flags(bootstrap_parser)
    _add_execution_flags(bootstrap_parser)

    run_parser = subparsers.add_parser(
        'run',
        help='Run an npm script in every package that defines it.',
        formatter_class=RichHelpFormatter,
    )
    run_parser.add_argument('script', help='Script name from package.json.')
    run_parser.add_argument(
        'script_args',
        nargs='*',
        default=[],
        help='Arguments for the script. Put them after -- when they start with a dash.',
    )
    _add_selection_flags(run_parser)
    _add_execution_flags(run_parser)

    exec_parser = subparsers.add_parser(
        'exec',
        help='Run a command in every selected package.',
        formatter_class=RichHelpFormatter,
    )
    exec_parser.add_argument(
        'cmd',
        nargs='*',
        default=[],
        help='Command and arguments. Put them after -- when they start with a dash.',
    )
    _add_selection_flags(exec_parser)
    _add_execution_flags(exec_parser)

    explain_parser = subparsers.add_parser(
        'explain',
        help='Explain an error code (e.g. MR-GRAPH-CYCLE-DETECTED).',
        formatter_class=RichHelpFormatter,
    )
    explain_parser.add_argument('code', help='The error code.')

    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse ``argv``, routing everything after ``--`` to the subcommand.

    Returns:
        The namespace. For ``run`` the passthrough words are appended to
        ``script_args``; for ``exec`` to ``cmd``.
    """
    words = list(sys.argv[1:] if argv is None else argv)
    passthrough: list[str] = []
    if '--' in words:
        idx = words.index('--')
        words, passthrough = words[:idx], words[idx + 1 :]

    args = build_parser().parse_args(words)
    if args.command == 'run':
        args.script_args = [*args.script_args, *passthrough]
    elif args.command == 'exec':
        args.cmd = [*args.cmd, *passthrough]
    return args


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    args = parse_args(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet, json_log=args.json_log)

    try:
        command = args.command
        if command == 'ls':
            return asyncio.run(_cmd_ls(args))
        if command == 'bootstrap':
            return asyncio.run(_cmd_bootstrap(args))
        if command == 'run':
            return asyncio.run(_cmd_run(args))
        if command == 'exec':
            return asyncio.run(_cmd_exec(args))
        if command == 'explain':
            return _cmd_explain(args)

        build_parser().print_help()
        print(  # noqa: T201 - CLI output
            '\nmonorun: error: please provide a command',
            file=sys.stderr,
        )
        return 2

    except MonorunError as exc:
        render_error(exc)
        return 1
    except KeyboardInterrupt:
        logger.info('interrupted')
        return 130


def _main() -> None:
    """Wrapper for pyproject.toml [project.scripts] entry point."""
    sys.exit(main())


__all__ = [
    'build_parser',
    'main',
    'parse_args',
]
