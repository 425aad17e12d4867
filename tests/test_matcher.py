"""Tests for the pure filter matcher."""

from __future__ import annotations

import pytest

from ctxwatch.models.context import ChangeType
from ctxwatch.models.watcher import WatcherFilter
from ctxwatch.watch.matcher import compile_glob, key_matches, matches
from tests.conftest import make_record


class TestGlob:
    @pytest.mark.parametrize(
        ("pattern", "key", "expected"),
        [
            ("user_*", "user_profile", True),
            ("user_*", "user_", True),
            ("user_*", "app_user_profile", False),
            ("*_config", "app_config", True),
            ("*_config", "app_config_backup", False),
            ("*session*", "my_session_state", True),
            ("*", "", True),
            ("task_00?", "task_001", True),
            ("task_00?", "task_0010", False),
            ("exact", "exact", True),
            ("exact", "Exact", False),
            ("a.b", "axb", False),
            ("[x]", "[x]", True),
        ],
    )
    def test_patterns(self, pattern, key, expected):
        assert (compile_glob(pattern).fullmatch(key) is not None) is expected

    def test_any_pattern_matches(self):
        assert key_matches("app_config", ["user_*", "*_config"])
        assert not key_matches("system_settings", ["user_*", "*_config"])


class TestMatches:
    def test_empty_filter_matches_everything(self):
        f = WatcherFilter()
        assert matches(make_record(), f)
        assert matches(make_record(category=None, priority=None, channel=None), f)

    def test_category_membership(self):
        f = WatcherFilter(categories=["task", "progress"])
        assert matches(make_record(category="task"), f)
        assert matches(make_record(category="progress"), f)
        assert not matches(make_record(category="note"), f)
        assert not matches(make_record(category=None), f)

    def test_priority_membership(self):
        f = WatcherFilter(priorities=["high"])
        assert matches(make_record(priority="high"), f)
        assert not matches(make_record(priority="normal"), f)

    def test_channel_membership(self):
        f = WatcherFilter(channels=["feature-x"])
        assert matches(make_record(channel="feature-x"), f)
        assert not matches(make_record(channel="general"), f)

    def test_dimensions_are_anded(self):
        f = WatcherFilter(categories=["task"], priorities=["high"], keys=["task_*"])
        assert matches(make_record("task_1", category="task", priority="high"), f)
        assert not matches(make_record("task_1", category="task", priority="low"), f)
        assert not matches(make_record("task_1", category="note", priority="high"), f)
        assert not matches(make_record("note_1", category="task", priority="high"), f)

    def test_delete_record_is_filterable(self):
        """A DELETE carries its own classification, so it matches like any other change."""
        f = WatcherFilter(categories=["decision"])
        record = make_record("choice", category="decision", change_type=ChangeType.DELETE)
        assert matches(record, f)
