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


"""End-to-end run: discover, select, link, schedule, report.

Pipeline::

    validate options ──▶ discover packages ──▶ build graph
          │
          ▼
    select working set ──▶ (empty? report "nothing to do", exit 0)
          │
          ▼
    build scheduler  (static cycle check, before anything touches disk)
          │
          ▼
    ┌─ link local deps ───────────────────────────────┐
    │   install signal handlers                       │
    │   scheduler.run(task)                           │
    │   remove signal handlers                        │
    └─ unlink (always, even if scheduling raised) ────┘
          │
          ▼
    RunReport(selection, result) ──▶ exit code

Each stage is a plain function so callers (the CLI, tests) can run part
of the pipeline, e.g. ``ls`` stops after selection.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from monorun.abort import AbortController
from monorun.config import MonorunConfig, resolve_group_refs
from monorun.filters import Selection, has_script, select_packages
from monorun.graph import PackageGraph, build_graph
from monorun.linker import Linker, NullLinker, SymlinkLinker, linked
from monorun.logging import get_logger
from monorun.observer import RunObserver
from monorun.scheduler import Scheduler, SchedulerResult, TaskFn, validate_parallelism
from monorun.workspace import discover_packages

logger = get_logger(__name__)


@dataclass(frozen=True)
class RunOptions:
    """Per-invocation knobs for one run.

    Attributes:
        include: Include globs (``--scope``). May contain ``group:<name>``.
        exclude: Exclude globs (``--ignore``). May contain ``group:<name>``.
        expand_dependents: Add transitive dependents of the base set.
        expand_dependencies: Add transitive dependencies of the base set.
        parallelism: Maximum concurrent tasks.
        force: Keep going after a task failure.
        link: Link local dependencies before running.
        require_script: Only packages defining this script form the base set.
        dry_run: Log commands and links without executing them.
    """

    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    expand_dependents: bool = False
    expand_dependencies: bool = False
    parallelism: int = 4
    force: bool = False
    link: bool = True
    require_script: str | None = None
    dry_run: bool = False


@dataclass(frozen=True)
class RunReport:
    """What a run did.

    Attributes:
        selection: The working set.
        result: Scheduler outcome. Empty when nothing was selected.
    """

    selection: Selection
    result: SchedulerResult

    @property
    def exit_code(self) -> int:
        """0 when every package succeeded (or none was selected), else 1."""
        if self.selection.empty or self.result.ok:
            return 0
        return 1


async def discover(root: Path, config: MonorunConfig) -> PackageGraph:
    """Discover workspace members under ``root`` and build their graph."""
    packages = await discover_packages(root, config.packages)
    graph = build_graph(packages)
    logger.info('workspace_discovered', root=str(root), packages=len(graph))
    return graph


def select(graph: PackageGraph, config: MonorunConfig, options: RunOptions) -> Selection:
    """Apply the include/exclude/script filters and expansion flags."""
    return select_packages(
        graph,
        include=resolve_group_refs(options.include, config.groups),
        exclude=resolve_group_refs(options.exclude, config.groups),
        expand_dependents=options.expand_dependents,
        expand_dependencies=options.expand_dependencies,
        predicate=has_script(options.require_script) if options.require_script else None,
    )


def _make_linker(options: RunOptions) -> Linker:
    if options.link:
        return SymlinkLinker(dry_run=options.dry_run)
    return NullLinker()


async def _schedule(scheduler: Scheduler, task: TaskFn) -> SchedulerResult:
    loop = asyncio.get_running_loop()
    abort = scheduler.abort_controller
    abort.install_signal_handlers(loop)
    try:
        return await scheduler.run(task)
    finally:
        abort.uninstall_signal_handlers(loop)


async def run_pipeline(
    root: Path,
    config: MonorunConfig,
    options: RunOptions,
    task: TaskFn,
    *,
    abort: AbortController | None = None,
    linker: Linker | None = None,
    observer: RunObserver | None = None,
) -> RunReport:
    """Run ``task`` over the selected packages of the workspace at ``root``.

    Args:
        root: Workspace root.
        config: Loaded configuration.
        options: Selection and execution options.
        task: Async callable invoked once per package.
        abort: Cancellation token; a fresh one is created when omitted.
        linker: Overrides the linker chosen from ``options.link``.
        observer: Receives status transitions.

    Returns:
        A :class:`RunReport`. Task failures are reported, not raised.

    Raises:
        MonorunError: On configuration, discovery, cycle, or link errors.
    """
    validate_parallelism(options.parallelism)

    graph = await discover(root, config)
    selection = select(graph, config, options)
    if selection.empty:
        logger.warning('nothing_to_do')
        return RunReport(selection=selection, result=SchedulerResult())

    scheduler = Scheduler.from_graph(
        graph,
        selection.packages,
        parallelism=options.parallelism,
        force=options.force,
        abort=abort or AbortController(),
        observer=observer,
    )

    with linked(linker or _make_linker(options), selection.packages, available=list(graph.packages.values())):
        result = await _schedule(scheduler, task)

    report = RunReport(selection=selection, result=result)
    logger.info('run_complete', exit_code=report.exit_code, selected=len(selection))
    return report


__all__ = [
    'RunOptions',
    'RunReport',
    'discover',
    'run_pipeline',
    'select',
]
