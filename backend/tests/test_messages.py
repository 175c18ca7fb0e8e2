"""Tests for message normalization and reaction toggling."""
import pytest

from relay.chat.normalizer import (
    InvalidPayload,
    clean_reactions,
    generate_message_id,
    infer_kind,
    normalize_message,
)
from relay.chat.reactions import parse_reaction_request, toggle_reaction
from relay.chat.schemas import MediaRecord, MessageKind, TextRecord, record_from_wire, record_to_wire
from relay.config import DEFAULT_ALLOWED_EMOJIS


class TestNormalizeMessage:
    def test_text_message(self):
        record = normalize_message({"cipherText": "abc", "iv": "def"}, "anon-12345")
        assert isinstance(record, TextRecord)
        assert record.tipo == "text"
        assert record.autor == "anon-12345"
        assert record.id
        assert record.fecha
        assert record.reacciones == {}

    def test_media_message(self):
        record = normalize_message(
            {"urlFull": "/uploads/full/a.png", "urlThumb": "/uploads/thumbs/a.png",
             "mimeType": "image/png", "byteSize": 10, "originalName": "a.png"},
            "Ana",
        )
        assert isinstance(record, MediaRecord)
        assert record.tipo == "media"
        assert record.byteSize == 10

    def test_author_comes_from_session(self):
        record = normalize_message({"cipherText": "a", "iv": "b", "autor": "mallory"}, "anon-12345")
        assert record.autor == "anon-12345"

    def test_supplied_id_and_fecha_are_kept(self):
        record = normalize_message({"id": "m-1", "fecha": "09:00:00", "cipherText": "a", "iv": "b"}, "x")
        assert record.id == "m-1"
        assert record.fecha == "09:00:00"

    def test_blank_id_is_replaced(self):
        record = normalize_message({"id": "   ", "cipherText": "a", "iv": "b"}, "x")
        assert record.id.strip()

    @pytest.mark.parametrize("payload", [
        {"cipherText": "a"},
        {"cipherText": "", "iv": "b"},
        {"cipherText": "a", "iv": None},
        {"urlFull": "/uploads/full/a.png"},
        {},
        {"urlFull": "/a", "urlThumb": "/b", "byteSize": -1},
    ])
    def test_incomplete_payloads_are_rejected(self, payload):
        with pytest.raises(InvalidPayload):
            normalize_message(payload, "x")

    def test_non_mapping_is_rejected(self):
        with pytest.raises(InvalidPayload):
            normalize_message(["cipherText"], "x")

    def test_supplied_reactions_are_copied_and_cleaned(self):
        reactions = {"👍": ["a", "a", "b"], "🤖": ["c"], "🔥": []}
        record = normalize_message(
            {"cipherText": "a", "iv": "b", "reacciones": reactions}, "x", DEFAULT_ALLOWED_EMOJIS
        )
        assert record.reacciones == {"👍": ["a", "b"]}
        reactions["👍"].append("z")
        assert record.reacciones == {"👍": ["a", "b"]}

    def test_infer_kind(self):
        assert infer_kind({"cipherText": None}) == MessageKind.TEXT
        assert infer_kind({"urlFull": "x"}) == MessageKind.MEDIA


class TestMessageIds:
    def test_ids_are_unique(self):
        assert len({generate_message_id() for _ in range(200)}) == 200

    def test_id_shape(self):
        prefix, suffix = generate_message_id().split("-")
        assert prefix.isalnum()
        assert len(suffix) == 8


class TestWireForm:
    def test_wire_form_uses_protocol_keys(self):
        record = normalize_message({"id": "m-1", "fecha": "t", "cipherText": "a", "iv": "b"}, "x")
        assert record_to_wire(record) == {
            "id": "m-1", "autor": "x", "fecha": "t", "reacciones": {},
            "tipo": "text", "cipherText": "a", "iv": "b",
        }

    def test_record_from_wire_picks_kind_by_tipo(self):
        record = record_from_wire({
            "id": "m", "autor": "x", "fecha": "t", "tipo": "media",
            "urlFull": "/f", "urlThumb": "/t",
        })
        assert isinstance(record, MediaRecord)


class TestCleanReactions:
    def test_non_mapping_becomes_empty(self):
        assert clean_reactions("junk") == {}
        assert clean_reactions(None) == {}

    def test_non_list_reactors_are_dropped(self):
        assert clean_reactions({"👍": "anon-1"}) == {}


class TestToggleReaction:
    def test_toggle_is_an_involution(self):
        start = {"👍": ["A"]}
        once = toggle_reaction(start, "❤️", "B")
        twice = toggle_reaction(once, "❤️", "B")
        assert once == {"👍": ["A"], "❤️": ["B"]}
        assert twice == start

    def test_empty_sets_are_pruned(self):
        assert toggle_reaction({"❤️": ["A"]}, "❤️", "A") == {}

    def test_input_is_not_modified(self):
        start = {"❤️": ["A"]}
        toggle_reaction(start, "❤️", "B")
        assert start == {"❤️": ["A"]}

    def test_two_reactors_scenario(self):
        reactions = {}
        reactions = toggle_reaction(reactions, "❤️", "A")
        reactions = toggle_reaction(reactions, "❤️", "B")
        assert reactions == {"❤️": ["A", "B"]}
        reactions = toggle_reaction(reactions, "❤️", "A")
        assert reactions == {"❤️": ["B"]}


class TestParseReactionRequest:
    def test_valid_request_is_trimmed(self):
        assert parse_reaction_request(
            {"mensajeId": "  m-1 ", "emoji": " 👍"}, DEFAULT_ALLOWED_EMOJIS
        ) == ("m-1", "👍")

    @pytest.mark.parametrize("data", [
        {"mensajeId": "m-1", "emoji": "🤖"},
        {"mensajeId": "", "emoji": "👍"},
        {"mensajeId": "m-1", "emoji": "  "},
        {"mensajeId": 5, "emoji": "👍"},
        {"emoji": "👍"},
    ])
    def test_invalid_requests(self, data):
        assert parse_reaction_request(data, DEFAULT_ALLOWED_EMOJIS) is None
