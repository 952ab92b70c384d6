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


"""Dependency-ordered task scheduler with bounded concurrency.

Runs a caller-supplied async task once per package of the working set.
A package starts as soon as every working-set package it depends on has
succeeded; there is no waiting for a whole topological level.

Key Concepts::

    ┌─────────────────────────┬─────────────────────────────────────────────┐
    │ Concept                 │ Plain-English                               │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ PackageNode             │ One package, its in-set deps and dependents │
    │                         │ and its position in discovery order.        │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Ready queue             │ Packages whose deps all succeeded, popped   │
    │                         │ in discovery order (reproducible runs).     │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Slots                   │ At most ``parallelism`` tasks in flight.    │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ SchedulerResult         │ Final status of every package.              │
    └─────────────────────────┴─────────────────────────────────────────────┘

Coordinator loop::

    seed ready queue (packages with no in-set deps)
         │
         ▼
    ┌──────────────────────────────────────────────────────────┐
    │ while slot free and ready non-empty and not aborted:     │
    │     start next ready package  (PENDING → RUNNING)        │
    │ if nothing running: stop                                  │
    │ await first completion                                    │
    │   success → SUCCEEDED, release dependents whose count = 0 │
    │   failure → FAILED, dependents → SKIPPED,                 │
    │             abort the run unless force                    │
    └──────────────────────────────────────────────────────────┘
         │
         ▼
    aborted?            → remaining PENDING become SKIPPED
    PENDING left over?  → dependency cycle, configuration error

Only the coordinator touches run state. Task coroutines report back by
finishing, so no locks are needed. Aborting never cancels a running task:
it only stops new ones from starting.

Usage::

    from monorun.scheduler import Scheduler

    scheduler = Scheduler.from_graph(graph, selection.packages, parallelism=4, abort=abort)


    async def task(pkg: Package) -> TaskOutcome | None:
        ...


    result = await scheduler.run(task)
    sys.exit(0 if result.ok else 1)
"""

from __future__ import annotations

import asyncio
import heapq
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from monorun.abort import AbortController, AbortReason
from monorun.errors import E, MonorunError
from monorun.graph import PackageGraph, raise_on_cycles
from monorun.logging import get_logger
from monorun.observer import TRANSITIONS, PackageStatus, RunObserver
from monorun.workspace import Package

logger = get_logger(__name__)


@dataclass(frozen=True)
class TaskOutcome:
    """What a task reports back for one package.

    A task may also return ``None`` (success) or raise (failure).

    Attributes:
        ok: Whether the task succeeded.
        code: Exit code or negated signal number of the underlying process.
        error: Failure description for the report.
    """

    ok: bool = True
    code: int = 0
    error: str = ''

    @classmethod
    def success(cls) -> TaskOutcome:
        """A successful outcome."""
        return cls()

    @classmethod
    def failure(cls, error: str, code: int = 1) -> TaskOutcome:
        """A failed outcome with a message and exit code."""
        return cls(ok=False, code=code, error=error)


TaskFn = Callable[[Package], Awaitable[TaskOutcome | int | None]]


def _coerce_outcome(value: object) -> TaskOutcome:
    """Map whatever a task returned to a :class:`TaskOutcome`.

    ``None`` is success and an ``int`` is an exit code. Anything else is
    reported as a failure instead of breaking the run.
    """
    if value is None:
        return TaskOutcome.success()
    if isinstance(value, TaskOutcome):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        if value == 0:
            return TaskOutcome.success()
        return TaskOutcome.failure(f'exited with code {value}', code=value)
    return TaskOutcome.failure(f'task returned unexpected {type(value).__name__}: {value!r}')


@dataclass
class PackageNode:
    """A package as the scheduler sees it.

    Attributes:
        package: The package itself.
        order: Position in discovery order; lower starts first among
            packages that are ready at the same time.
        dependencies: Working-set packages this one waits for.
        dependents: Working-set packages waiting for this one.
    """

    package: Package
    order: int
    dependencies: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        """The package name."""
        return self.package.name


@dataclass(frozen=True)
class SchedulerResult:
    """Outcome of one scheduler run.

    Attributes:
        statuses: Final status per package, in discovery order.
        succeeded: Succeeded package names, in completion order.
        failed: Failed package names mapped to their error.
        skipped: Skipped package names, in discovery order.
        abort_reason: Why the run was aborted, if it was.
        peak_running: Highest number of tasks that ran at once.
    """

    statuses: dict[str, PackageStatus] = field(default_factory=dict)
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    abort_reason: AbortReason | None = None
    peak_running: int = 0

    @property
    def ok(self) -> bool:
        """True only if every package succeeded."""
        return not self.failed and not self.skipped


def validate_parallelism(parallelism: int) -> None:
    """Raise unless ``parallelism`` is an integer >= 1."""
    if isinstance(parallelism, bool) or not isinstance(parallelism, int) or parallelism < 1:
        raise MonorunError(
            code=E.CONFIG_INVALID_VALUE,
            message=f'parallelism must be an integer >= 1, got {parallelism!r}',
            hint='Use --concurrency 1 for strictly sequential execution.',
        )


class Scheduler:
    """Dependency-ordered, concurrency-bounded task runner.

    The scheduler never runs a task body itself; it awaits the caller's
    ``task(package)`` coroutine. That keeps it independent of what a task
    does and easy to drive with stubs in tests.

    Each :meth:`run` call builds fresh run state from the nodes, so a
    scheduler can be run again (for example with a different task).
    """

    def __init__(
        self,
        nodes: dict[str, PackageNode],
        *,
        parallelism: int = 1,
        force: bool = False,
        abort: AbortController | None = None,
        observer: RunObserver | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            nodes: Package nodes keyed by name. Dependencies and dependents
                must only name other nodes.
            parallelism: Maximum number of tasks running at once (>= 1).
            force: Keep scheduling unrelated packages after a failure
                instead of aborting the run.
            abort: Shared cancellation token. A private one is created
                when omitted.
            observer: Receives every status transition.

        Raises:
            MonorunError: If ``parallelism`` is not a positive integer.
        """
        validate_parallelism(parallelism)
        self._nodes = nodes
        self._parallelism = parallelism
        self._force = force
        self._abort = abort or AbortController()
        self._observer = observer or RunObserver()
        self._status: dict[str, PackageStatus] = {}

    @classmethod
    def from_graph(
        cls,
        graph: PackageGraph,
        working_set: Iterable[Package | str],
        *,
        parallelism: int = 1,
        force: bool = False,
        abort: AbortController | None = None,
        observer: RunObserver | None = None,
    ) -> Scheduler:
        """Build a scheduler for ``working_set`` using ``graph``'s edges.

        Dependencies outside the working set are ignored: they are taken
        as already satisfied.

        Raises:
            MonorunError: If a working-set name is not in the graph, the
                working set contains a dependency cycle, or
                ``parallelism`` is invalid.
        """
        wanted = {item if isinstance(item, str) else item.name for item in working_set}
        for name in sorted(wanted):
            graph.get(name)

        sub = graph.subgraph(wanted)
        raise_on_cycles(sub)

        nodes = {
            name: PackageNode(
                package=pkg,
                order=idx,
                dependencies=list(sub.edges[name]),
                dependents=list(sub.reverse_edges[name]),
            )
            for idx, (name, pkg) in enumerate(sub.packages.items())
        }
        return cls(
            nodes,
            parallelism=parallelism,
            force=force,
            abort=abort,
            observer=observer,
        )

    @property
    def nodes(self) -> dict[str, PackageNode]:
        """Return the node map (read-only access for inspection)."""
        return self._nodes

    @property
    def abort_controller(self) -> AbortController:
        """The cancellation token this scheduler honors."""
        return self._abort

    @property
    def status(self) -> dict[str, PackageStatus]:
        """Snapshot of the current (or last) run state."""
        return dict(self._status)

    def _transition(self, name: str, status: PackageStatus) -> None:
        current = self._status[name]
        if status not in TRANSITIONS[current]:
            msg = f'illegal transition for {name}: {current.value} → {status.value}'
            raise RuntimeError(msg)
        self._status[name] = status
        self._observer.on_status(name, status)

    async def _invoke(self, task: TaskFn, node: PackageNode) -> TaskOutcome:
        """Run one task, folding exceptions into an outcome.

        No time limit is applied here; tasks that run processes enforce
        their own timeout.
        """
        try:
            outcome = await task(node.package)
        except Exception as exc:  # noqa: BLE001 - any task error is a package failure
            return TaskOutcome.failure(str(exc) or type(exc).__name__)
        return _coerce_outcome(outcome)

    def _skip_dependents(self, name: str) -> list[str]:
        """Skip every pending transitive dependent of ``name``."""
        skipped: list[str] = []
        stack = list(self._nodes[name].dependents)
        while stack:
            dep_name = stack.pop()
            if self._status[dep_name] is not PackageStatus.PENDING:
                continue
            self._transition(dep_name, PackageStatus.SKIPPED)
            skipped.append(dep_name)
            logger.info('package_skipped', package=dep_name, blocked_by=name)
            stack.extend(self._nodes[dep_name].dependents)
        return skipped

    async def run(self, task: TaskFn) -> SchedulerResult:
        """Run ``task`` for every package and wait for the run to settle.

        Task failures never raise: they are recorded in the result.

        Args:
            task: Async callable invoked with each :class:`Package`.
                Returning ``None``, ``0`` or a successful
                :class:`TaskOutcome` means success. Raising, returning a
                failed outcome, a non-zero exit code or any other value
                means failure.

        Returns:
            A :class:`SchedulerResult`.

        Raises:
            MonorunError: If packages remain that can never become ready
                (a dependency cycle among the nodes).
        """
        self._status = dict.fromkeys(self._nodes, PackageStatus.PENDING)
        remaining = {name: len(node.dependencies) for name, node in self._nodes.items()}
        ready: list[tuple[int, str]] = [
            (node.order, name) for name, node in self._nodes.items() if remaining[name] == 0
        ]
        heapq.heapify(ready)

        succeeded: list[str] = []
        failed: dict[str, str] = {}
        running: dict[asyncio.Task[TaskOutcome], str] = {}
        peak = 0

        self._observer.init_packages(sorted(self._nodes, key=lambda n: self._nodes[n].order))
        logger.info(
            'scheduler_start',
            total=len(self._nodes),
            ready=len(ready),
            parallelism=self._parallelism,
            force=self._force,
        )

        try:
            while True:
                while ready and len(running) < self._parallelism and not self._abort.is_aborted:
                    _, name = heapq.heappop(ready)
                    self._transition(name, PackageStatus.RUNNING)
                    logger.info('task_start', package=name, running=len(running) + 1)
                    job = asyncio.create_task(self._invoke(task, self._nodes[name]), name=f'monorun-{name}')
                    running[job] = name
                    peak = max(peak, len(running))

                if not running:
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for job in sorted(done, key=lambda j: self._nodes[running[j]].order):
                    name = running.pop(job)
                    outcome = job.result()
                    if outcome.ok:
                        self._transition(name, PackageStatus.SUCCEEDED)
                        succeeded.append(name)
                        logger.info('task_succeeded', package=name)
                        for dep_name in self._nodes[name].dependents:
                            remaining[dep_name] -= 1
                            if remaining[dep_name] == 0 and self._status[dep_name] is PackageStatus.PENDING:
                                heapq.heappush(ready, (self._nodes[dep_name].order, dep_name))
                        continue

                    error = outcome.error or f'exited with code {outcome.code}'
                    self._transition(name, PackageStatus.FAILED)
                    failed[name] = error
                    self._observer.on_error(name, error)
                    logger.error('task_failed', package=name, code=outcome.code, error=error)
                    self._skip_dependents(name)
                    if not self._force:
                        self._abort.abort(AbortReason(package=name, message=error))
        except asyncio.CancelledError:
            # The coordinator itself is being torn down (e.g. the event loop
            # is shutting down); in-flight tasks cannot outlive it.
            self._abort.abort(AbortReason(user_initiated=True, message='scheduler cancelled'))
            for job, name in running.items():
                job.cancel()
                self._transition(name, PackageStatus.FAILED)
                failed[name] = 'cancelled'
            await asyncio.gather(*running, return_exceptions=True)
            running.clear()

        pending = [name for name, status in self._status.items() if status is PackageStatus.PENDING]
        if pending and not self._abort.is_aborted:
            stuck = sorted(pending, key=lambda n: self._nodes[n].order)
            raise MonorunError(
                code=E.GRAPH_CYCLE_DETECTED,
                message=f'Packages can never become ready (dependency cycle): {", ".join(stuck)}',
                hint='Break the cycle between these packages or exclude part of it.',
            )
        for name in pending:
            self._transition(name, PackageStatus.SKIPPED)
            logger.info('package_skipped', package=name, reason='aborted')

        ordered = sorted(self._nodes, key=lambda n: self._nodes[n].order)
        result = SchedulerResult(
            statuses={name: self._status[name] for name in ordered},
            succeeded=succeeded,
            failed=failed,
            skipped=[name for name in ordered if self._status[name] is PackageStatus.SKIPPED],
            abort_reason=self._abort.reason,
            peak_running=peak,
        )
        self._observer.on_complete()
        logger.info(
            'scheduler_complete',
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            skipped=len(result.skipped),
            aborted=self._abort.is_aborted,
        )
        return result


__all__ = [
    'PackageNode',
    'Scheduler',
    'SchedulerResult',
    'TaskFn',
    'TaskOutcome',
    'validate_parallelism',
]
