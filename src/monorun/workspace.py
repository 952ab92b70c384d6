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


"""Workspace package discovery.

Expands the ``packages`` globs from ``monorun.toml``, reads each member's
``package.json``, and keeps the dependencies that name another package
in this tree. Registry dependencies are ignored.

Data Flow, Two-Pass Discovery::

    monorun.toml                       discover_packages()
    ┌──────────────────────┐       ┌──────────────────────────────┐
    │ packages = [         │       │ 1. Expand member globs       │
    │   "packages/*",      │──────→│ 2. Drop "!"-negated paths    │
    │   "!packages/old",   │       │ 3. Pass 1: collect names     │
    │ ]                    │       │ 4. Pass 2: find local deps   │
    └──────────────────────┘       └──────────────────────────────┘
                                                │
                                          list[Package]
                                       (sorted by name; this is the
                                        discovery order)

A dependency is *local* when its name is another member of the tree.
The version range is not consulted: whatever the tree holds is what the
run uses, which is exactly what the linker wires up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from monorun.backends._io import read_json
from monorun.errors import E, MonorunError
from monorun.logging import get_logger

logger = get_logger(__name__)

MANIFEST_FILENAME = 'package.json'

# Manifest sections whose entries participate in local linking and ordering.
DEPENDENCY_SECTIONS: tuple[str, ...] = ('dependencies', 'devDependencies', 'optionalDependencies')


@dataclass(frozen=True)
class Package:
    """A single package discovered in the workspace.

    Packages hash and compare by ``name``, which is unique within a tree,
    so they can be collected in sets.

    Attributes:
        name: The package name from ``package.json``.
        version: The version string (``"0.0.0"`` when absent).
        path: Absolute path to the package directory.
        manifest_path: Absolute path to the package's ``package.json``.
        local_deps: Names of in-tree packages this package depends on.
            Never contains ``name`` itself.
        scripts: Mapping of npm script name to its command line.
        bin: Mapping of executable name to a path relative to ``path``.
        private: Whether ``"private": true`` is set.
    """

    name: str
    version: str
    path: Path
    manifest_path: Path
    local_deps: list[str] = field(default_factory=list)
    scripts: dict[str, str] = field(default_factory=dict)
    bin: dict[str, str] = field(default_factory=dict)
    private: bool = False

    def __hash__(self) -> int:
        """Hash by package name."""
        return hash(self.name)

    def __eq__(self, other: object) -> bool:
        """Compare by package name."""
        if not isinstance(other, Package):
            return NotImplemented
        return self.name == other.name

    def has_script(self, script: str) -> bool:
        """Return True if ``package.json`` defines ``script``."""
        return script in self.scripts


def _glob_members(root: Path, pattern: str) -> list[Path]:
    """Expand one member glob relative to ``root``.

    ``"."`` is the root itself; a leading ``"./"`` is stripped because
    ``Path.glob`` rejects it on some Python versions.
    """
    if pattern == '.':
        return [root]
    if pattern.startswith('./'):
        pattern = pattern[2:]
    if not pattern:
        return [root]
    return sorted(root.glob(pattern))


def _expand_member_globs(root: Path, members: list[str]) -> list[Path]:
    """Expand member globs into package directories.

    Patterns prefixed with ``!`` remove matches. Only directories that
    contain a ``package.json`` are kept.
    """
    include = [m for m in members if not m.startswith('!')]
    exclude = [m[1:] for m in members if m.startswith('!')]

    found: set[Path] = set()
    for pattern in include:
        for candidate in _glob_members(root, pattern):
            if candidate.is_dir() and (candidate / MANIFEST_FILENAME).is_file():
                found.add(candidate.resolve())

    excluded: set[Path] = set()
    for pattern in exclude:
        for candidate in _glob_members(root, pattern):
            excluded.add(candidate.resolve())

    result = sorted(found - excluded)
    logger.debug('expanded_member_globs', include=include, exclude=exclude, count=len(result))
    return result


def _string_map(data: dict[str, Any], key: str, manifest_path: Path) -> dict[str, str]:  # noqa: ANN401
    """Return ``data[key]`` as a ``str → str`` mapping, or ``{}`` if absent."""
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MonorunError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'"{key}" in {manifest_path} must be an object',
            hint=f'Fix the "{key}" section of {manifest_path}.',
        )
    return {str(k): str(v) for k, v in value.items()}


def _parse_bin(data: dict[str, Any], name: str, manifest_path: Path) -> dict[str, str]:  # noqa: ANN401
    """Normalize the ``bin`` field.

    npm allows either a string (one executable named after the package,
    without its scope) or an object mapping names to paths.
    """
    value = data.get('bin')
    if isinstance(value, str):
        return {name.rsplit('/', 1)[-1]: value}
    return _string_map(data, 'bin', manifest_path)


async def _parse_package(pkg_dir: Path, internal_names: frozenset[str]) -> Package | None:
    """Parse one ``package.json``.

    Returns ``None`` for manifests without a ``name`` (e.g. a root
    ``package.json`` that only holds tooling).
    """
    manifest_path = pkg_dir / MANIFEST_FILENAME
    data = await read_json(manifest_path)

    name = data.get('name', '')
    if not isinstance(name, str) or not name:
        return None

    local: set[str] = set()
    for section in DEPENDENCY_SECTIONS:
        for dep_name in _string_map(data, section, manifest_path):
            # Registry dependencies play no part in ordering.
            if dep_name != name and dep_name in internal_names:
                local.add(dep_name)

    return Package(
        name=name,
        version=str(data.get('version', '0.0.0')),
        path=pkg_dir.resolve(),
        manifest_path=manifest_path.resolve(),
        local_deps=sorted(local),
        scripts=_string_map(data, 'scripts', manifest_path),
        bin=_parse_bin(data, name, manifest_path),
        private=data.get('private') is True,
    )


async def discover_packages(root: Path, members: list[str]) -> list[Package]:
    """Discover all packages in the workspace rooted at ``root``.

    Args:
        root: Workspace root directory.
        members: Member globs, e.g. ``["packages/*", "!packages/legacy"]``.

    Returns:
        Packages sorted by name.

    Raises:
        MonorunError: If no members match, a manifest is malformed, or
            two manifests declare the same name.
    """
    if not members:
        raise MonorunError(
            code=E.WORKSPACE_NO_MEMBERS,
            message='No package globs configured',
            hint='Add packages = ["packages/*"] to monorun.toml.',
        )

    pkg_dirs = _expand_member_globs(root, members)
    if not pkg_dirs:
        raise MonorunError(
            code=E.WORKSPACE_NO_MEMBERS,
            message=f'No packages found matching {members} under {root}',
            hint='Check that the globs match directories with a package.json.',
        )

    # First pass: names only, so the second pass can classify deps.
    all_names: set[str] = set()
    for pkg_dir in pkg_dirs:
        try:
            quick = await read_json(pkg_dir / MANIFEST_FILENAME)
        except MonorunError:
            continue  # Reported by the full parse below.
        name = quick.get('name')
        if isinstance(name, str) and name:
            all_names.add(name)
    internal_names = frozenset(all_names)

    packages: list[Package] = []
    seen: dict[str, Path] = {}
    for pkg_dir in pkg_dirs:
        pkg = await _parse_package(pkg_dir, internal_names)
        if pkg is None:
            logger.debug('skipped_nameless_package', path=str(pkg_dir))
            continue
        if pkg.name in seen:
            raise MonorunError(
                code=E.WORKSPACE_DUPLICATE_PACKAGE,
                message=f"Duplicate package name '{pkg.name}' at {pkg_dir} and {seen[pkg.name]}",
                hint='Each package in the repository must have a unique name.',
            )
        seen[pkg.name] = pkg_dir
        packages.append(pkg)

    result = sorted(packages, key=lambda p: p.name)
    logger.info('discovered_packages', count=len(result))
    return result


__all__ = [
    'DEPENDENCY_SECTIONS',
    'MANIFEST_FILENAME',
    'Package',
    'discover_packages',
]
