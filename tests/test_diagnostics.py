"""Tests for the diagnostic log store."""

import dataclasses

import pytest

from app.core.diagnostics import DiagnosticLog, LogCategory, LogEntry


class TestDiagnosticLog:
    """Test bounded, newest-first diagnostic storage."""

    def test_snapshot_is_newest_first(self, diagnostics: DiagnosticLog) -> None:
        """Test entries come back in reverse insertion order."""
        diagnostics.append(LogCategory.SESSION, "first")
        diagnostics.append(LogCategory.AI, "second")
        diagnostics.append(LogCategory.ERROR, "third", {"code": "x"})

        messages = [entry.message for entry in diagnostics.snapshot()]
        assert messages == ["third", "second", "first"]

        newest = diagnostics.snapshot()[0]
        assert newest.category is LogCategory.ERROR
        assert newest.detail == {"code": "x"}

    def test_capacity_evicts_oldest(self) -> None:
        """Test the store never exceeds capacity and drops the oldest entry."""
        store = DiagnosticLog(capacity=100)

        for i in range(101):
            store.append(LogCategory.SESSION, f"entry-{i}")

        snapshot = store.snapshot()
        assert len(store) == 100
        assert len(snapshot) == 100
        assert "entry-0" not in [entry.message for entry in snapshot]
        assert snapshot[0].message == "entry-100"
        assert snapshot[-1].message == "entry-1"

    def test_snapshot_is_point_in_time_copy(self, diagnostics: DiagnosticLog) -> None:
        """Test later appends don't change an earlier snapshot."""
        diagnostics.append(LogCategory.SESSION, "before")
        snapshot = diagnostics.snapshot()

        diagnostics.append(LogCategory.SESSION, "after")

        assert [entry.message for entry in snapshot] == ["before"]
        assert len(diagnostics.snapshot()) == 2

    def test_entries_are_immutable(self, diagnostics: DiagnosticLog) -> None:
        """Test neither an entry nor its detail can be modified."""
        detail = {"stream_sid": "CA1"}
        diagnostics.append(LogCategory.TELEPHONY, "started", detail)
        entry = diagnostics.snapshot()[0]

        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.message = "changed"  # type: ignore[misc]

        with pytest.raises(TypeError):
            entry.detail["stream_sid"] = "CA2"  # type: ignore[index]

        # Mutating the caller's dict afterwards has no effect
        detail["stream_sid"] = "CA3"
        assert entry.detail == {"stream_sid": "CA1"}

    def test_append_never_raises(self, diagnostics: DiagnosticLog) -> None:
        """Test an invalid category is dropped instead of raising."""
        diagnostics.append("not-a-category", "bad")  # type: ignore[arg-type]
        assert len(diagnostics) == 0

    def test_string_category_accepted(self, diagnostics: DiagnosticLog) -> None:
        """Test plain category strings are normalized."""
        diagnostics.append("error", "boom")  # type: ignore[arg-type]
        assert diagnostics.snapshot()[0].category is LogCategory.ERROR

    def test_invalid_capacity(self) -> None:
        """Test capacity validation."""
        with pytest.raises(ValueError, match="Capacity"):
            DiagnosticLog(capacity=0)

    def test_to_list(self, diagnostics: DiagnosticLog) -> None:
        """Test JSON-ready export."""
        diagnostics.append(LogCategory.TRANSCRIPT, "Agent said: hi", {"transcript": "hi"})

        [item] = diagnostics.to_list()
        assert item["category"] == "transcript"
        assert item["message"] == "Agent said: hi"
        assert item["detail"] == {"transcript": "hi"}
        assert "T" in item["timestamp"]

    def test_entry_without_detail(self) -> None:
        """Test detail defaults to None."""
        store = DiagnosticLog(capacity=1)
        store.append(LogCategory.SESSION, "only")

        entry = store.snapshot()[0]
        assert isinstance(entry, LogEntry)
        assert entry.detail is None
        assert entry.to_dict()["detail"] is None
