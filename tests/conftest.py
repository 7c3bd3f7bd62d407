"""Shared pytest fixtures for wa-collector tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_backend_env(monkeypatch):
    """Keep a developer's real backend config out of the tests."""
    for key in (
        "WEBHOOK_URL",
        "WEBHOOK_SECRET",
        "FORWARD_ALL",
        "TAG_REGEX",
        "MY_PHONE",
        "MY_LID",
        "MY_LID_BASE",
        "ADMIN_SECRET",
        "AUTH_DIR",
        "HOST",
        "PORT",
        "EVOLUTION_BASE_URL",
        "EVOLUTION_INSTANCE",
        "EVOLUTION_API_KEY",
        "EVOLUTION_WEBHOOK_SECRET",
    ):
        monkeypatch.delenv(key, raising=False)
