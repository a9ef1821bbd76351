"""Tests for structural differences."""

from rds_reconciler.diff import diff, has_changes


class TestDiff:
    """Tests for top-level mapping comparison."""

    def test_changed_added_removed(self) -> None:
        """Test that every kind of change is reported as (previous, desired)."""
        result = diff({"a": "1", "b": "2"}, {"a": "1", "b": "3", "c": "4"})
        assert result == {"b": ("2", "3"), "c": (None, "4")}

        assert diff({"a": "1"}, {}) == {"a": ("1", None)}

    def test_none_and_empty_are_equivalent(self) -> None:
        """Test that absent, None and empty mappings compare equal."""
        assert not has_changes(None, {})
        assert not has_changes({"a": ""}, {})
        assert not has_changes({"a": None}, {"a": []})

    def test_numbers_compare_as_strings(self) -> None:
        """Test that 100 and "100" are the same parameter value."""
        assert not has_changes({"max_connections": 100}, {"max_connections": "100"})
        assert has_changes({"max_connections": 100}, {"max_connections": "200"})

    def test_booleans_are_not_stringified(self) -> None:
        """Test that True does not equal "True"."""
        assert has_changes({"flag": True}, {"flag": "True"})

    def test_deterministic(self) -> None:
        """Test that the same snapshots always give the same answer."""
        previous = {"a": "1", "b": "2"}
        desired = {"b": "2", "a": "9"}
        assert [diff(previous, desired) for _ in range(3)] == [{"a": ("1", "9")}] * 3
