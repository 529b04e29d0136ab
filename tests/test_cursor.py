"""Tests for the block cursor."""

import pytest

from daesens.cursor import BlockCursor


def test_take_in_order():
    cursor = BlockCursor(["a", "b"], "demo")
    assert len(cursor) == 2
    assert cursor.take() == "a"
    assert cursor.position == 1
    assert cursor.take() == "b"
    assert cursor.remaining == 0
    cursor.assert_consumed()


def test_over_consumption():
    cursor = BlockCursor(["a"], "demo")
    cursor.take()
    with pytest.raises(RuntimeError, match="over-consumed"):
        cursor.take()


def test_leftover_blocks():
    cursor = BlockCursor([1, 2, 3], "demo")
    cursor.take()
    assert cursor.position == 1
    with pytest.raises(RuntimeError, match="stopped at block 1, 2 of 3"):
        cursor.assert_consumed()


def test_rewind():
    cursor = BlockCursor([1, 2])
    cursor.take()
    cursor.take()
    cursor.rewind()
    assert cursor.take() == 1
