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


"""Configuration reader for monorun.

Reads ``monorun.toml`` from the workspace root into a validated, frozen
:class:`MonorunConfig`. Every key is optional; a missing file means all
defaults.

Supported keys::

    packages    = ["packages/*"]          # member globs ("!" prefix excludes)
    npm_client  = "npm"                   # "npm", "pnpm", "yarn", ...
    concurrency = 4                       # default --concurrency
    scope       = []                      # default include patterns
    ignore      = ["*-example"]           # default exclude patterns
    stream      = false                   # stream task output live
    groups      = { apps = ["app-*"] }    # named pattern sets

Scope and ignore patterns (from the file or the CLI) may reference a
group as ``group:<name>``; :func:`resolve_group_refs` expands them.

Validation Pipeline::

    monorun.toml ──▶ unknown key? ──▶ MR-CONFIG-INVALID-KEY ("did you mean?")
                 ──▶ wrong type?  ──▶ MR-CONFIG-INVALID-VALUE
                 ──▶ bad value?   ──▶ MR-CONFIG-INVALID-VALUE
                 ──▶ MonorunConfig(frozen)
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomlkit
import tomlkit.exceptions

from monorun.errors import E, MonorunError
from monorun.logging import get_logger

logger = get_logger(__name__)

CONFIG_FILENAME = 'monorun.toml'

VALID_KEYS: frozenset[str] = frozenset({
    'concurrency',
    'groups',
    'ignore',
    'npm_client',
    'packages',
    'scope',
    'stream',
})

_TYPE_MAP: dict[str, type | tuple[type, ...]] = {
    'concurrency': int,
    'groups': dict,
    'ignore': list,
    'npm_client': str,
    'packages': list,
    'scope': list,
    'stream': bool,
}

_GROUP_PREFIX = 'group:'


@dataclass(frozen=True)
class MonorunConfig:
    """Validated configuration for a monorun invocation.

    Attributes:
        packages: Member globs relative to the workspace root.
        npm_client: Executable used by the install and run tasks.
        concurrency: Default maximum number of concurrent tasks.
        scope: Default include patterns.
        ignore: Default exclude patterns.
        stream: Stream task output instead of capturing it.
        groups: Named lists of package patterns.
        root: Directory the configuration applies to.
        config_path: The file that was loaded, or ``None`` for defaults.
    """

    packages: list[str] = field(default_factory=lambda: ['packages/*'])
    npm_client: str = 'npm'
    concurrency: int = 4
    scope: list[str] = field(default_factory=list)
    ignore: list[str] = field(default_factory=list)
    stream: bool = False
    groups: dict[str, list[str]] = field(default_factory=dict)
    root: Path = field(default_factory=Path.cwd)
    config_path: Path | None = None


def _suggest_key(unknown: str) -> str | None:
    """Return the closest valid key for a typo, or None."""
    matches = difflib.get_close_matches(unknown, VALID_KEYS, n=1, cutoff=0.6)
    return matches[0] if matches else None


def _validate_value_type(key: str, value: Any, *, context: str) -> None:  # noqa: ANN401 - dynamic config values
    """Raise if a config value has the wrong type."""
    expected = _TYPE_MAP[key]
    # bool is an int subclass; reject it where a number is expected.
    if expected is int and isinstance(value, bool):
        expected_ok = False
    else:
        expected_ok = isinstance(value, expected)
    if not expected_ok:
        type_name = expected.__name__ if isinstance(expected, type) else str(expected)
        raise MonorunError(
            code=E.CONFIG_INVALID_VALUE,
            message=f"'{key}' must be {type_name}, got {type(value).__name__}",
            hint=f'Check the value of {key} in {context}.',
        )


def _validate_str_list(key: str, values: list[Any], *, context: str) -> list[str]:  # noqa: ANN401
    """Raise unless every entry of ``values`` is a string."""
    for item in values:
        if not isinstance(item, str):
            raise MonorunError(
                code=E.CONFIG_INVALID_VALUE,
                message=f"'{key}' entries must be strings, got {type(item).__name__}",
                hint=f'Check the value of {key} in {context}.',
            )
    return [str(item) for item in values]


def _validate_groups(groups: dict[str, Any], *, context: str) -> dict[str, list[str]]:  # noqa: ANN401
    """Validate and normalize the groups mapping."""
    result: dict[str, list[str]] = {}
    for group_name, patterns in groups.items():
        if not isinstance(patterns, list):
            raise MonorunError(
                code=E.CONFIG_INVALID_VALUE,
                message=f"Group '{group_name}' must be a list of glob patterns, got {type(patterns).__name__}",
                hint=f'Example: groups.{group_name} = ["app-*"]',
            )
        result[str(group_name)] = _validate_str_list(f'groups.{group_name}', patterns, context=context)
    return result


def load_config(root: Path) -> MonorunConfig:
    """Load ``monorun.toml`` from ``root``.

    Args:
        root: Workspace root directory.

    Returns:
        A validated :class:`MonorunConfig`. Defaults are used when the
        file does not exist.

    Raises:
        MonorunError: If the file cannot be parsed or fails validation.
    """
    config_path = root / CONFIG_FILENAME
    if not config_path.is_file():
        logger.debug('config_not_found', path=str(config_path))
        return MonorunConfig(root=root)

    try:
        doc = tomlkit.parse(config_path.read_text(encoding='utf-8'))
    except (OSError, tomlkit.exceptions.TOMLKitError) as exc:
        raise MonorunError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Failed to parse {config_path}: {exc}',
            hint=f'Check that {config_path} contains valid TOML.',
        ) from exc

    raw: dict[str, Any] = doc.unwrap()  # noqa: ANN401
    context = str(config_path)

    for key in raw:
        if key not in VALID_KEYS:
            suggestion = _suggest_key(key)
            hint = f"Did you mean '{suggestion}'?" if suggestion else f'Valid keys: {", ".join(sorted(VALID_KEYS))}'
            raise MonorunError(
                code=E.CONFIG_INVALID_KEY,
                message=f"Unknown key '{key}' in {config_path}",
                hint=hint,
            )

    for key, value in raw.items():
        _validate_value_type(key, value, context=context)

    kwargs: dict[str, Any] = {}  # noqa: ANN401
    for key in ('packages', 'scope', 'ignore'):
        if key in raw:
            kwargs[key] = _validate_str_list(key, raw[key], context=context)
    if 'groups' in raw:
        kwargs['groups'] = _validate_groups(raw['groups'], context=context)
    if 'npm_client' in raw:
        if not raw['npm_client'].strip():
            raise MonorunError(
                code=E.CONFIG_INVALID_VALUE,
                message='npm_client must not be empty',
                hint='Use "npm", "pnpm" or "yarn".',
            )
        kwargs['npm_client'] = raw['npm_client']
    if 'concurrency' in raw:
        if raw['concurrency'] < 1:
            raise MonorunError(
                code=E.CONFIG_INVALID_VALUE,
                message=f'concurrency must be >= 1, got {raw["concurrency"]}',
                hint='Use concurrency = 1 for sequential runs.',
            )
        kwargs['concurrency'] = raw['concurrency']
    if 'stream' in raw:
        kwargs['stream'] = raw['stream']

    config = MonorunConfig(root=root, config_path=config_path, **kwargs)
    logger.debug('config_loaded', path=context, packages=config.packages, concurrency=config.concurrency)
    return config


def find_workspace_root(start: Path | None = None) -> Path:
    """Walk up from ``start`` (default: CWD) to the nearest ``monorun.toml``.

    Raises:
        MonorunError: If no ancestor contains a ``monorun.toml``.
    """
    cwd = (start or Path.cwd()).resolve()
    for parent in [cwd, *cwd.parents]:
        if (parent / CONFIG_FILENAME).is_file():
            return parent
    raise MonorunError(
        code=E.WORKSPACE_NOT_FOUND,
        message=f'Could not find {CONFIG_FILENAME} in {cwd} or any parent directory.',
        hint=f'Create {CONFIG_FILENAME} at the repository root, e.g. packages = ["packages/*"].',
    )


def resolve_group_refs(patterns: list[str], groups: dict[str, list[str]]) -> list[str]:
    """Expand ``group:<name>`` references into flat package-name patterns.

    Entries without the prefix pass through unchanged. Groups may
    reference other groups; cycles are rejected.

    Raises:
        MonorunError: On an unknown group or a reference cycle.
    """
    result: list[str] = []
    for pat in patterns:
        if pat.startswith(_GROUP_PREFIX):
            result.extend(_resolve_group(pat[len(_GROUP_PREFIX) :], groups, visiting=()))
        else:
            result.append(pat)
    return result


def _resolve_group(name: str, groups: dict[str, list[str]], visiting: tuple[str, ...]) -> list[str]:
    if name not in groups:
        raise MonorunError(
            code=E.CONFIG_INVALID_VALUE,
            message=f"Unknown group '{name}' referenced as 'group:{name}'",
            hint=f'Available groups: {sorted(groups)}',
        )
    if name in visiting:
        raise MonorunError(
            code=E.CONFIG_INVALID_VALUE,
            message=f'Cycle detected in group references: {" → ".join([*visiting, name])}',
            hint='Remove the circular group reference.',
        )
    result: list[str] = []
    for pat in groups[name]:
        if pat.startswith(_GROUP_PREFIX):
            result.extend(_resolve_group(pat[len(_GROUP_PREFIX) :], groups, (*visiting, name)))
        else:
            result.append(pat)
    return result


__all__ = [
    'CONFIG_FILENAME',
    'VALID_KEYS',
    'MonorunConfig',
    'find_workspace_root',
    'load_config',
    'resolve_group_refs',
]
