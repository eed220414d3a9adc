"""Tests for balanced-brace JSON extraction from free-form agent replies."""

from __future__ import annotations

import pytest

from teamflow.utils.json_extract import (
    extract_balanced_object,
    extract_first_json_object,
    iter_json_candidates,
)


class TestBalancedObject:
    def test_braces_inside_strings_do_not_count(self):
        s = 'x {"a": "}{", "b": {"c": 1}} tail'
        assert extract_balanced_object(s, s.index("{")) == '{"a": "}{", "b": {"c": 1}}'

    def test_escaped_quote_inside_string(self):
        s = '{"a": "say \\"}\\" now"}'
        assert extract_balanced_object(s, 0) == s

    def test_unterminated_object(self):
        assert extract_balanced_object('{"a": {"b": 1}', 0) is None

    def test_start_must_point_at_brace(self):
        assert extract_balanced_object("abc", 0) is None
        assert extract_balanced_object("abc", -1) is None


class TestCandidates:
    def test_label_is_preferred_over_earlier_object(self):
        text = 'context {"note": 1}\nPLAN: {"objective": "x"}'
        assert extract_first_json_object(text, ("PLAN",)) == {"objective": "x"}

    def test_label_match_is_case_insensitive(self):
        assert extract_first_json_object('plan : {"a": 1}', ("PLAN",)) == {"a": 1}

    def test_fenced_block(self):
        text = 'Here it is:\n```json\n{"a": 2}\n```\n'
        assert extract_first_json_object(text) == {"a": 2}

    def test_whole_reply_object_comes_first(self):
        text = '{"a": 1}\nPLAN: {"b": 2}'
        assert list(iter_json_candidates(text, ("PLAN",)))[0] == '{"a": 1}'

    def test_candidates_are_deduplicated(self):
        text = 'PLAN: {"a": 1}'
        assert list(iter_json_candidates(text, ("PLAN",))) == ['{"a": 1}']

    def test_invalid_candidate_is_skipped(self):
        text = 'PLAN: {not json}\n```\n{"ok": true}\n```'
        assert extract_first_json_object(text, ("PLAN",)) == {"ok": True}

    def test_nothing_found(self):
        with pytest.raises(ValueError):
            extract_first_json_object("no objects here")

    def test_empty_text(self):
        assert list(iter_json_candidates("   ")) == []
