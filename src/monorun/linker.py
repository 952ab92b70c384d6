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


"""Local dependency linking.

Before tasks run, every local dependency is made to resolve to its
sibling in the tree instead of a registry copy; after the run the links
are removed again.

Layout produced by :class:`SymlinkLinker` for ``app → core``::

    packages/
    ├── core/
    │   └── package.json          "bin": {"core-cli": "bin/cli.js"}
    └── app/
        └── node_modules/
            ├── core ───────────▶ ../../core
            └── .bin/
                └── core-cli ───▶ ../../../core/bin/cli.js

Paths that already exist and are not links are never touched, so a real
installed copy is left in place. :meth:`SymlinkLinker.unlink` removes
only the links this linker created.
"""

from __future__ import annotations

import os
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

from monorun.errors import E, MonorunError
from monorun.logging import get_logger
from monorun.workspace import Package

logger = get_logger(__name__)

NODE_MODULES = 'node_modules'


@runtime_checkable
class Linker(Protocol):
    """Wires local dependencies together for the duration of a run."""

    def link(self, packages: Sequence[Package], *, available: Sequence[Package] = ()) -> None:
        """Link the local dependencies of ``packages``.

        Dependencies are looked up in ``packages`` plus ``available``.
        """
        ...

    def unlink(self) -> None:
        """Remove everything :meth:`link` created."""
        ...


class NullLinker:
    """Linker that does nothing (``--no-link``)."""

    def link(self, packages: Sequence[Package], *, available: Sequence[Package] = ()) -> None:
        """Do nothing."""

    def unlink(self) -> None:
        """Do nothing."""


class SymlinkLinker:
    """Links local dependencies through ``node_modules`` symlinks.

    Args:
        dry_run: Log the links instead of creating them.
    """

    def __init__(self, *, dry_run: bool = False) -> None:
        """Initialize with no links created."""
        self._dry_run = dry_run
        self._created: list[Path] = []

    @property
    def created(self) -> list[Path]:
        """Links created by the last :meth:`link` call, in creation order."""
        return list(self._created)

    def link(self, packages: Sequence[Package], *, available: Sequence[Package] = ()) -> None:
        """Link every local dependency (and its executables) into dependents.

        Raises:
            MonorunError: If a link cannot be created. Links made before
                the failure are removed.
        """
        by_name = {p.name: p for p in [*available, *packages]}
        try:
            for pkg in packages:
                modules = pkg.path / NODE_MODULES
                for dep_name in pkg.local_deps:
                    dep = by_name.get(dep_name)
                    if dep is None:
                        continue
                    self._symlink(modules / dep_name, dep.path)
                    for bin_name, rel_path in sorted(dep.bin.items()):
                        self._symlink(modules / '.bin' / bin_name, dep.path / rel_path)
        except OSError as exc:
            self.unlink()
            raise MonorunError(
                code=E.LINK_FAILED,
                message=f'Failed to link local dependencies: {exc}',
                hint='Check permissions on node_modules, or pass --no-link.',
            ) from exc
        logger.info('linked_local_dependencies', links=len(self._created), dry_run=self._dry_run)

    def _symlink(self, link_path: Path, target: Path) -> None:
        if link_path.is_symlink():
            if link_path.resolve() == target.resolve():
                logger.debug('link_exists', link=str(link_path))
            else:
                logger.warning('link_path_points_elsewhere', link=str(link_path), target=str(target))
            return
        if link_path.exists():
            logger.warning('link_path_occupied', link=str(link_path))
            return

        relative = os.path.relpath(target, link_path.parent)
        if self._dry_run:
            logger.info('dry_run_link', link=str(link_path), target=relative)
            return
        link_path.parent.mkdir(parents=True, exist_ok=True)
        link_path.symlink_to(relative, target_is_directory=target.is_dir())
        self._created.append(link_path)
        logger.debug('linked', link=str(link_path), target=relative)

    def unlink(self) -> None:
        """Remove the links this linker created, newest first.

        Raises:
            MonorunError: If a link cannot be removed.
        """
        removed = 0
        while self._created:
            link_path = self._created.pop()
            if not link_path.is_symlink():
                continue
            try:
                link_path.unlink()
            except OSError as exc:
                raise MonorunError(
                    code=E.LINK_FAILED,
                    message=f'Failed to remove {link_path}: {exc}',
                    hint='Remove the link by hand.',
                ) from exc
            removed += 1
        if removed:
            logger.info('unlinked_local_dependencies', links=removed)


@contextmanager
def linked(linker: Linker, packages: Sequence[Package], *, available: Sequence[Package] = ()) -> Generator[Linker]:
    """Hold links for the duration of a ``with`` block.

    If the block raises, a failing :meth:`Linker.unlink` is logged and the
    block's exception propagates unchanged.
    """
    linker.link(packages, available=available)
    try:
        yield linker
    except BaseException:
        try:
            linker.unlink()
        except MonorunError as exc:
            logger.error('unlink_failed', code=exc.code.value, error=exc.info.message)
        raise
    linker.unlink()


__all__ = [
    'Linker',
    'NODE_MODULES',
    'NullLinker',
    'SymlinkLinker',
    'linked',
]
