"""Tests for the ingestion webhook relay - verifies NO PII in logs."""

import asyncio
import io
import json
import urllib.error
from unittest.mock import patch

from helpers import LogRecorder

from wacollector.infra.webhook_relay import SECRET_HEADER, WebhookRelay
from wacollector.whatsapp.models import OutboundPayload

URL = "http://ingest.test/hook"
SENDER = "5511888887777"
TEXT = "dummy_text confirma?"


def _payload(**overrides):
    fields = dict(
        message_id="3EB0C767D26A1D8E0C2A",
        group_id="120363000000000001@g.us",
        group_name="Equipe",
        sender_name="Maria",
        sender_number=SENDER,
        text=TEXT,
    )
    fields.update(overrides)
    return OutboundPayload(**fields)


def _http_error(code, body=b"boom"):
    return urllib.error.HTTPError(URL, code, "error", {}, io.BytesIO(body))


class TestSend:
    """One POST per payload."""

    def test_posts_json_body(self):
        with patch(
            "wacollector.infra.webhook_relay._do_request", return_value=(200, "")
        ) as mock_request:
            assert WebhookRelay(URL, timeout=3.0).send(_payload()) is True

        url, data, headers, timeout = mock_request.call_args[0]
        body = json.loads(data)
        assert url == URL
        assert timeout == 3.0
        assert headers["content-type"] == "application/json"
        assert SECRET_HEADER not in headers
        assert body == {
            "messageId": "3EB0C767D26A1D8E0C2A",
            "groupId": "120363000000000001@g.us",
            "groupName": "Equipe",
            "senderName": "Maria",
            "senderNumber": SENDER,
            "text": TEXT,
        }

    def test_secret_header_when_configured(self):
        with patch(
            "wacollector.infra.webhook_relay._do_request", return_value=(204, "")
        ) as mock_request:
            WebhookRelay(URL, secret="s3cret").send(_payload())

        headers = mock_request.call_args[0][2]
        assert headers[SECRET_HEADER] == "s3cret"

    def test_debug_fields_serialized_when_present(self):
        payload = _payload(mentioned_jids=("1@s.whatsapp.net",), mentioned_lids=())
        with patch(
            "wacollector.infra.webhook_relay._do_request", return_value=(200, "")
        ) as mock_request:
            WebhookRelay(URL).send(payload)

        body = json.loads(mock_request.call_args[0][1])
        assert body["mentionedJids"] == ["1@s.whatsapp.net"]
        assert body["mentionedLids"] == []

    def test_null_sender_number(self):
        with patch(
            "wacollector.infra.webhook_relay._do_request", return_value=(200, "")
        ) as mock_request:
            WebhookRelay(URL).send(_payload(sender_number=None))

        body = json.loads(mock_request.call_args[0][1])
        assert body["senderNumber"] is None


class TestFailures:
    """Failures are logged once and never raised."""

    def test_http_error_logs_warning(self):
        recorder = LogRecorder()
        with patch("wacollector.infra.webhook_relay.logger", recorder):
            with patch(
                "wacollector.infra.webhook_relay._do_request",
                side_effect=_http_error(500, b"internal failure"),
            ):
                assert WebhookRelay(URL).send(_payload()) is False

        assert recorder.levels() == ["warning"]
        fields = recorder.extra_fields("warning")[0]
        assert fields["status"] == "500"
        assert fields["body"] == "internal failure"

    def test_network_error_logs_error(self):
        recorder = LogRecorder()
        with patch("wacollector.infra.webhook_relay.logger", recorder):
            with patch(
                "wacollector.infra.webhook_relay._do_request",
                side_effect=urllib.error.URLError("connection refused"),
            ):
                assert WebhookRelay(URL).send(_payload()) is False

        assert recorder.levels() == ["error"]
        assert recorder.extra_fields("error")[0]["error_type"] == "URLError"

    def test_timeout_is_a_failure(self):
        with patch(
            "wacollector.infra.webhook_relay._do_request", side_effect=TimeoutError()
        ):
            assert WebhookRelay(URL).send(_payload()) is False

    def test_non_2xx_status(self):
        with patch("wacollector.infra.webhook_relay._do_request", return_value=(302, "")):
            assert WebhookRelay(URL).send(_payload()) is False

    def test_deliver_never_raises(self):
        relay = WebhookRelay(URL)
        with patch.object(relay, "send", side_effect=RuntimeError("unexpected")):
            assert asyncio.run(relay.deliver(_payload())) is False

    def test_deliver_runs_send(self):
        with patch("wacollector.infra.webhook_relay._do_request", return_value=(200, "")):
            assert asyncio.run(WebhookRelay(URL).deliver(_payload())) is True


class TestNoPiiLeakage:
    """Sender and text MUST NOT appear in logs."""

    def test_success_and_failure_logs_have_no_pii(self):
        recorder = LogRecorder()
        with patch("wacollector.infra.webhook_relay.logger", recorder):
            with patch(
                "wacollector.infra.webhook_relay._do_request",
                side_effect=[(200, ""), _http_error(400, b"rejected")],
            ):
                relay = WebhookRelay(URL)
                relay.send(_payload())
                relay.send(_payload())

        all_logged = recorder.get_all_logged_content()
        assert len(recorder.calls) == 2
        assert SENDER not in all_logged
        assert "dummy_text" not in all_logged
        assert "Maria" not in all_logged
        assert "3EB0C767D26A1D8E0C2A" not in all_logged
        assert "3EB0C767" in all_logged
