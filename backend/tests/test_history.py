"""Tests for the bounded in-memory history."""
import pytest

from relay.chat.history import BoundedHistory
from relay.chat.schemas import MediaRecord, TextRecord


def text(message_id: str, **kwargs) -> TextRecord:
    return TextRecord(id=message_id, autor="anon-abcde", fecha="12:00:00",
                      cipherText=f"ct-{message_id}", iv="iv", **kwargs)


class TestAppend:
    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            BoundedHistory(0)

    def test_evicts_oldest_first(self):
        history = BoundedHistory(3)
        for message_id in ["A", "B", "C", "D"]:
            history.append(text(message_id))
        assert [r.id for r in history.snapshot()] == ["B", "C", "D"]

    @pytest.mark.parametrize("capacity,appended", [(1, 5), (3, 2), (4, 4), (5, 12)])
    def test_length_is_min_of_appended_and_capacity(self, capacity, appended):
        history = BoundedHistory(capacity)
        for i in range(appended):
            history.append(text(f"m{i}"))
        assert len(history) == min(appended, capacity)
        expected = [f"m{i}" for i in range(max(0, appended - capacity), appended)]
        assert [r.id for r in history.snapshot()] == expected

    def test_evicted_record_is_no_longer_found(self):
        history = BoundedHistory(1)
        history.append(text("old"))
        history.append(text("new"))
        assert history.find_by_id("old") is None
        assert history.find_by_id("new").id == "new"

    def test_mixed_kinds(self):
        history = BoundedHistory(5)
        history.append(text("t1"))
        history.append(MediaRecord(id="m1", autor="anon-abcde", fecha="12:00:01",
                                   urlFull="/uploads/full/x.png", urlThumb="/uploads/thumbs/x.png"))
        assert [r.tipo for r in history.snapshot()] == ["text", "media"]


class TestSnapshot:
    def test_snapshot_is_a_copy(self):
        history = BoundedHistory(3)
        history.append(text("A"))
        snapshot = history.snapshot()
        snapshot.clear()
        assert len(history) == 1

    def test_snapshot_does_not_see_later_reactions(self):
        history = BoundedHistory(3)
        history.append(text("A"))
        snapshot = history.snapshot()

        history.replace_reactions("A", {"👍": ["anon-xyz12"]})

        assert snapshot[0].reacciones == {}
        assert history.snapshot()[0].reacciones == {"👍": ["anon-xyz12"]}

    def test_mutating_snapshot_reactions_leaves_history_alone(self):
        history = BoundedHistory(3)
        history.append(text("A", reacciones={"🔥": ["anon-11111"]}))
        snapshot = history.snapshot()
        snapshot[0].reacciones["🔥"].append("anon-22222")
        assert history.find_by_id("A").reacciones == {"🔥": ["anon-11111"]}


class TestReplaceReactions:
    def test_replaces_in_place_keeping_order(self):
        history = BoundedHistory(3)
        for message_id in ["A", "B", "C"]:
            history.append(text(message_id))
        updated = history.replace_reactions("B", {"😂": ["anon-aaaaa"]})
        assert updated.reacciones == {"😂": ["anon-aaaaa"]}
        assert [r.id for r in history.snapshot()] == ["A", "B", "C"]
        assert history.find_by_id("B") is updated

    def test_unknown_id_returns_none(self):
        history = BoundedHistory(3)
        assert history.replace_reactions("missing", {}) is None


class TestHydrate:
    def test_hydrate_empty_buffer_keeps_newest(self):
        history = BoundedHistory(2)
        loaded = history.hydrate([text("A"), text("B"), text("C")])
        assert loaded == 2
        assert [r.id for r in history.snapshot()] == ["B", "C"]

    def test_hydrate_skips_non_empty_buffer(self):
        history = BoundedHistory(3)
        history.append(text("live"))
        assert history.hydrate([text("stored")]) == 0
        assert [r.id for r in history.snapshot()] == ["live"]

    def test_clear(self):
        history = BoundedHistory(3)
        history.append(text("A"))
        history.clear()
        assert len(history) == 0
        assert history.find_by_id("A") is None
