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


"""Tests for monorun.errors module."""

from __future__ import annotations

import io

from monorun.errors import ERRORS, E, ErrorCode, MonorunError, explain, render_error


class TestMonorunError:
    """Tests for MonorunError."""

    def test_str_includes_code(self) -> None:
        """The string form starts with the bracketed code."""
        exc = MonorunError(E.GRAPH_CYCLE_DETECTED, 'a → b → a', hint='break it')
        assert str(exc) == '[MR-GRAPH-CYCLE-DETECTED] a → b → a'
        assert exc.code is E.GRAPH_CYCLE_DETECTED
        assert exc.hint == 'break it'

    def test_codes_are_prefixed(self) -> None:
        """Every code uses the MR- prefix."""
        for code in ErrorCode:
            assert code.value.startswith('MR-'), code


class TestExplain:
    """Tests for explain()."""

    def test_known_code(self) -> None:
        """A catalogued code gets its message and hint."""
        text = explain('MR-GRAPH-CYCLE-DETECTED')
        assert text is not None
        assert text.startswith('MR-GRAPH-CYCLE-DETECTED: ')
        assert 'Hint:' in text

    def test_unknown_code(self) -> None:
        """An unknown code returns None."""
        assert explain('MR-NOPE') is None

    def test_every_code_catalogued(self) -> None:
        """Every code has a catalogue entry."""
        assert set(ERRORS) == set(ErrorCode)


class TestRenderError:
    """Tests for render_error()."""

    def test_plain_output(self) -> None:
        """Non-TTY output is plain text with the hint."""
        buf = io.StringIO()
        render_error(MonorunError(E.LINK_FAILED, 'cannot link', hint='use --no-link'), file=buf)
        out = buf.getvalue()
        assert 'error[MR-LINK-FAILED]: cannot link' in out
        assert '= hint: use --no-link' in out

    def test_no_hint(self) -> None:
        """Without a hint only the error line is printed."""
        buf = io.StringIO()
        render_error(MonorunError(E.WORKSPACE_NO_MEMBERS, 'nothing here'), file=buf)
        assert 'hint' not in buf.getvalue()
