"""End-to-end wiring: ingress event -> controller -> forwarder -> ingest POST."""

import asyncio
import json
from unittest.mock import MagicMock, patch

from helpers import GROUP_JID, OWNER_PHONE, FakeSessionFactory, make_settings

from wacollector.infra.credentials import CredentialStore, SelfIdentity
from wacollector.main import main
from wacollector.runtime import build_runtime
from wacollector.whatsapp.evolution_adapter import parse_event


def _upsert(text, mentioned=()):
    context = {"mentionedJid": list(mentioned)} if mentioned else {}
    return {
        "event": "messages.upsert",
        "data": {
            "key": {
                "id": "3EB0C767D26A1D8E0C2A",
                "remoteJid": GROUP_JID,
                "participant": "5511888887777@s.whatsapp.net",
            },
            "pushName": "Maria",
            "message": {"extendedTextMessage": {"text": text, "contextInfo": context}},
        },
    }


def _run(runtime, *payloads):
    async def scenario():
        await runtime.controller.start()
        for payload in payloads:
            runtime.controller.feed(parse_event(payload))
        for _ in range(10):
            await asyncio.sleep(0)
        await runtime.controller.drain()
        await runtime.controller.stop()

    asyncio.run(scenario())


class TestPipeline:
    """A live group message travels to the ingest webhook."""

    def test_owner_mention_forwarded(self, tmp_path):
        factory = FakeSessionFactory(metadata={"subject": "Equipe Vendas"})
        settings = make_settings(
            auth_dir=str(tmp_path / "auth"),
            my_phone=OWNER_PHONE,
            owner_display_name="Ana",
            webhook_secret="ingest-secret",
        )
        runtime = build_runtime(settings, session_factory=factory, exit_process=MagicMock())
        payload = _upsert(f"@{OWNER_PHONE} confirma?", [f"{OWNER_PHONE}@s.whatsapp.net"])

        with patch(
            "wacollector.infra.webhook_relay._do_request", return_value=(200, "")
        ) as mock_request:
            _run(runtime, payload)

        mock_request.assert_called_once()
        url, data, headers, _ = mock_request.call_args[0]
        assert url == "http://ingest.test/hook"
        assert headers["x-webhook-secret"] == "ingest-secret"
        assert json.loads(data) == {
            "messageId": "3EB0C767D26A1D8E0C2A",
            "groupId": GROUP_JID,
            "groupName": "Equipe Vendas",
            "senderName": "Maria",
            "senderNumber": "5511888887777",
            "text": "@Ana confirma?",
        }
        assert factory.sessions[0].metadata_calls == [GROUP_JID]

    def test_irrelevant_message_not_posted(self, tmp_path):
        runtime = build_runtime(
            make_settings(auth_dir=str(tmp_path / "auth"), my_phone=OWNER_PHONE),
            session_factory=FakeSessionFactory(),
            exit_process=MagicMock(),
        )

        with patch("wacollector.infra.webhook_relay._do_request") as mock_request:
            _run(runtime, _upsert("bom dia pessoal"))

        mock_request.assert_not_called()


class TestBuildRuntime:
    """Owner identity sources."""

    def test_owner_restored_from_credentials(self, tmp_path):
        auth_dir = str(tmp_path / "auth")
        CredentialStore(auth_dir).save_self(
            SelfIdentity(id=f"{OWNER_PHONE}:4@s.whatsapp.net", lid="98765:4@lid")
        )

        runtime = build_runtime(make_settings(auth_dir=auth_dir), exit_process=MagicMock())

        assert runtime.context.owner.phone == OWNER_PHONE
        assert runtime.context.owner.opaque == "98765"

    def test_configured_owner_wins(self, tmp_path):
        auth_dir = str(tmp_path / "auth")
        CredentialStore(auth_dir).save_self(SelfIdentity(id="5511000000000@s.whatsapp.net"))

        runtime = build_runtime(
            make_settings(auth_dir=auth_dir, my_phone=OWNER_PHONE), exit_process=MagicMock()
        )

        assert runtime.context.owner.phone == OWNER_PHONE


class TestMain:
    """Process entry point."""

    def test_missing_webhook_url_exits_non_zero(self):
        with patch("wacollector.main.uvicorn.run") as mock_run:
            assert main() == 1
        mock_run.assert_not_called()

    def test_serves_on_configured_port(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WEBHOOK_URL", "http://ingest.test/hook")
        monkeypatch.setenv("PORT", "8081")
        monkeypatch.setenv("AUTH_DIR", str(tmp_path / "auth"))

        with patch("wacollector.main.uvicorn.run") as mock_run:
            assert main() == 0

        kwargs = mock_run.call_args[1]
        assert kwargs["port"] == 8081
        assert kwargs["host"] == "0.0.0.0"
