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


"""Async file I/O helpers for workspace discovery.

Manifest reads happen inside the event loop, so they go through
``aiofiles`` rather than blocking ``Path.read_text`` calls.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import aiofiles

from monorun.errors import E, MonorunError


async def read_file(path: Path) -> str:
    """Read a UTF-8 text file asynchronously via aiofiles."""
    try:
        async with aiofiles.open(path, encoding='utf-8') as f:
            return await f.read()
    except OSError as exc:
        raise MonorunError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'Failed to read {path}: {exc}',
            hint=f'Check that {path} exists and is readable.',
        ) from exc


async def read_json(path: Path) -> dict[str, Any]:  # noqa: ANN401 - JSON dict values are inherently untyped
    """Read a JSON object from ``path``.

    Raises:
        MonorunError: If the file is unreadable, not JSON, or not an object.
    """
    text = await read_file(path)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MonorunError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'Failed to parse {path}: {exc}',
            hint=f'Check that {path} contains valid JSON.',
        ) from exc
    if not isinstance(data, dict):
        raise MonorunError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'{path} is not a JSON object',
            hint=f'Expected a JSON object at the top level of {path}.',
        )
    return data


__all__ = [
    'read_file',
    'read_json',
]
