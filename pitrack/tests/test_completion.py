"""Tests for the completion rule (flag OR detail row)."""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from pitrack.completion import count_completed, has_detail, is_complete

DETAIL = SimpleNamespace(calculated_pi=0.5)


def _item(flag: bool, detail=None):
    return SimpleNamespace(id=1, is_completed=flag, detail=detail)


class TestIsComplete:
    @pytest.mark.parametrize("flag,detail,expected", [
        (False, None, False),
        (True, None, True),
        (False, DETAIL, True),
        (True, DETAIL, True),
    ])
    def test_truth_table(self, flag, detail, expected):
        assert is_complete(_item(flag, detail)) is expected

    def test_explicit_detail_overrides_relationship(self):
        item = _item(False, None)
        assert is_complete(item, DETAIL) is True

    def test_explicit_none_means_no_detail(self):
        item = _item(False, DETAIL)
        assert is_complete(item, None) is False

    def test_adding_detail_never_uncompletes(self):
        item = _item(True, None)
        assert is_complete(item)
        item.detail = DETAIL
        assert is_complete(item)

    def test_null_flag_is_false(self):
        assert is_complete(SimpleNamespace(is_completed=None, detail=None)) is False


class TestCounting:
    def test_has_detail(self):
        assert has_detail(_item(False, DETAIL))
        assert not has_detail(_item(True, None))

    def test_count_completed(self):
        items = [_item(False), _item(True), _item(False, DETAIL)]
        assert count_completed(items) == 2
