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


"""Package selection: which packages a run touches.

Selection Pipeline::

    all packages
         │
         ▼
    ┌────────────────────────────┐
    │ 1. include (--scope)       │  name matches any pattern (or no patterns)
    │ 2. exclude (--ignore)      │  name matches no pattern
    │ 3. predicate               │  e.g. "has script 'test'"
    └─────────────┬──────────────┘
                  │ base set
        ┌─────────┴──────────┐
        ▼                    ▼
    + transitive          + transitive
      dependents            dependencies
    (--include-filtered-  (--include-filtered-
      dependents)           dependencies)
        └─────────┬──────────┘
                  ▼
             working set

Patterns are shell-style globs matched against the package name
(``fnmatch``), so ``--scope '@acme/*'`` and ``--ignore '*-example'`` work
as expected.

Exclusion only shapes the base set. Packages pulled in by expansion stay
in the working set even when an exclude pattern matches them: a task
must not run without the dependencies it needs, and a changed
dependency must not silently miss one of its dependents.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from monorun.graph import Direction, PackageGraph
from monorun.logging import get_logger
from monorun.workspace import Package

logger = get_logger(__name__)

PackagePredicate = Callable[[Package], bool]


@dataclass(frozen=True)
class Selection:
    """The working set chosen for one run.

    Attributes:
        packages: Selected packages in discovery order.
        base: Names matched directly by the include/exclude/predicate rules.
        expanded: Names added only by dependency or dependent expansion.
    """

    packages: list[Package] = field(default_factory=list)
    base: frozenset[str] = frozenset()
    expanded: frozenset[str] = frozenset()

    @property
    def names(self) -> list[str]:
        """Selected package names in discovery order."""
        return [p.name for p in self.packages]

    @property
    def empty(self) -> bool:
        """True when nothing matched. Reported to the user, not an error."""
        return not self.packages

    def __len__(self) -> int:
        """Return the number of selected packages."""
        return len(self.packages)


def matches_any(name: str, patterns: Sequence[str]) -> bool:
    """Return True if ``name`` matches at least one glob in ``patterns``."""
    return any(fnmatch.fnmatchcase(name, pat) for pat in patterns)


def has_script(script: str) -> PackagePredicate:
    """Build a predicate accepting packages that define ``script``."""

    def _predicate(pkg: Package) -> bool:
        return pkg.has_script(script)

    return _predicate


def select_packages(
    graph: PackageGraph,
    *,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
    expand_dependents: bool = False,
    expand_dependencies: bool = False,
    predicate: PackagePredicate | None = None,
) -> Selection:
    """Compute the working set for one run.

    Args:
        graph: The full workspace graph.
        include: Globs a name must match one of. Empty matches everything.
        exclude: Globs a name must match none of. Empty excludes nothing.
        expand_dependents: Add every transitive dependent of the base set.
        expand_dependencies: Add every transitive dependency of the base set.
        predicate: Extra base-set filter, applied after the patterns.

    Returns:
        A :class:`Selection`. The same inputs against the same graph
        always produce the same selection.
    """
    base: list[Package] = []
    for pkg in graph.packages.values():
        if include and not matches_any(pkg.name, include):
            continue
        if exclude and matches_any(pkg.name, exclude):
            continue
        if predicate is not None and not predicate(pkg):
            continue
        base.append(pkg)

    selected: set[Package] = set(base)
    if expand_dependents:
        selected |= graph.transitive_closure(base, Direction.DEPENDENTS)
    if expand_dependencies:
        selected |= graph.transitive_closure(base, Direction.DEPENDENCIES)

    base_names = frozenset(p.name for p in base)
    ordered = [pkg for pkg in graph.packages.values() if pkg in selected]
    selection = Selection(
        packages=ordered,
        base=base_names,
        expanded=frozenset(p.name for p in ordered) - base_names,
    )

    if selection.empty:
        logger.warning(
            'no_packages_selected',
            include=list(include),
            exclude=list(exclude),
        )
    else:
        logger.info(
            'packages_selected',
            count=len(selection),
            base=len(base_names),
            expanded=sorted(selection.expanded),
        )
    return selection


__all__ = [
    'PackagePredicate',
    'Selection',
    'has_script',
    'matches_any',
    'select_packages',
]
