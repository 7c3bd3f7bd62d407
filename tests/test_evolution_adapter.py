"""Tests for mapping Evolution webhook payloads to session events."""

import pytest

from wacollector.session.events import (
    ConnectionStateChanged,
    MessageBatchReceived,
    PairingCodeIssued,
)
from wacollector.whatsapp.evolution_adapter import (
    InvalidPayloadError,
    normalize_event_name,
    parse_event,
    parse_message,
)


def _record(message_id="MSG001", remote_jid="120363000000000001@g.us", **key_extra):
    key = {"id": message_id, "remoteJid": remote_jid, "fromMe": False, **key_extra}
    return {
        "key": key,
        "pushName": "Maria",
        "messageTimestamp": 1717000000,
        "message": {"conversation": "dummy_text"},
    }


class TestParseMessage:
    """One message record."""

    def test_group_record(self):
        msg = parse_message(_record(participant="5511888887777@s.whatsapp.net"))

        assert msg.message_id == "MSG001"
        assert msg.chat_id == "120363000000000001@g.us"
        assert msg.sender == "5511888887777@s.whatsapp.net"
        assert msg.push_name == "Maria"
        assert msg.timestamp == 1717000000
        assert msg.content == {"conversation": "dummy_text"}
        assert msg.from_me is False

    def test_sender_falls_back_to_remote_jid(self):
        msg = parse_message(_record(remote_jid="5511888887777@s.whatsapp.net"))
        assert msg.sender == "5511888887777@s.whatsapp.net"

    def test_lid_sender_with_alternate_phone(self):
        msg = parse_message(
            _record(participant="4455667788@lid", participantAlt="5511888887777@s.whatsapp.net")
        )
        assert msg.sender == "4455667788@lid"
        assert msg.sender_alt == "5511888887777@s.whatsapp.net"

    def test_long_timestamp(self):
        record = _record()
        record["messageTimestamp"] = {"low": 1717000000, "high": 0, "unsigned": True}
        assert parse_message(record).timestamp == 1717000000

    def test_missing_content_is_empty(self):
        record = _record()
        del record["message"]
        assert parse_message(record).content == {}

    @pytest.mark.parametrize(
        "record,reason",
        [
            ({}, "missing key"),
            ({"key": {"remoteJid": "1@g.us"}}, "missing or invalid message_id"),
            ({"key": {"id": "MSG001"}}, "missing remoteJid"),
        ],
    )
    def test_invalid_records(self, record, reason):
        with pytest.raises(InvalidPayloadError, match=reason):
            parse_message(record)


class TestParseEvent:
    """Event routing."""

    def test_event_name_normalized(self):
        assert normalize_event_name("MESSAGES_UPSERT") == "messages.upsert"
        assert normalize_event_name(None) == ""

    def test_upsert_single_record_is_live_batch(self):
        event = parse_event({"event": "messages.upsert", "data": _record()})

        assert isinstance(event, MessageBatchReceived)
        assert event.is_live is True
        assert [m.message_id for m in event.messages] == ["MSG001"]

    def test_upsert_list_skips_invalid_records(self):
        data = [_record("A"), {"key": {}}, _record("B")]
        event = parse_event({"event": "MESSAGES_UPSERT", "data": data})

        assert [m.message_id for m in event.messages] == ["A", "B"]

    def test_upsert_type_from_data(self):
        data = {"type": "append", "messages": [_record()]}
        event = parse_event({"event": "messages.upsert", "data": data})

        assert event.is_live is False

    def test_messages_set_is_history(self):
        event = parse_event({"event": "messages.set", "data": [_record()]})
        assert event.batch_type == "append"

    def test_upsert_without_records_is_invalid(self):
        with pytest.raises(InvalidPayloadError):
            parse_event({"event": "messages.upsert", "data": {"foo": 1}})

    def test_connection_close_with_code(self):
        event = parse_event(
            {"event": "connection.update", "data": {"state": "close", "statusReason": 401}}
        )

        assert event == ConnectionStateChanged(connection="close", status_code=401)

    def test_connection_open_carries_self_identity(self):
        event = parse_event(
            {
                "event": "CONNECTION_UPDATE",
                "sender": "5511999998888@s.whatsapp.net",
                "data": {"state": "open", "lid": "98765@lid", "profileName": "Ana"},
            }
        )

        assert event.connection == "open"
        assert event.self_id == "5511999998888@s.whatsapp.net"
        assert event.self_lid == "98765@lid"
        assert event.self_name == "Ana"

    def test_connection_without_state_is_invalid(self):
        with pytest.raises(InvalidPayloadError, match="missing connection state"):
            parse_event({"event": "connection.update", "data": {}})

    def test_qrcode(self):
        event = parse_event(
            {"event": "qrcode.updated", "data": {"qrcode": {"code": "2@abc", "base64": "..."}}}
        )
        assert event == PairingCodeIssued(code="2@abc")

    def test_qrcode_without_code_is_ignored(self):
        assert parse_event({"event": "qrcode.updated", "data": {"qrcode": {}}}) is None

    def test_unconsumed_event(self):
        assert parse_event({"event": "presence.update", "data": {}}) is None

    def test_non_object_data(self):
        with pytest.raises(InvalidPayloadError, match="missing data"):
            parse_event({"event": "connection.update", "data": "open"})

    def test_non_object_payload(self):
        with pytest.raises(InvalidPayloadError):
            parse_event(["not", "an", "object"])
