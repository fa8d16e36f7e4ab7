import logging

import pytest
from pydantic import ValidationError

from portfolio_chat.config import Settings
from portfolio_chat.logging_config import configure_logging


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CHAT_RELEVANCE_FLOOR",
        "CHAT_RATE_LIMIT",
        "REWRITE_MODEL",
        "OPENAI_MODEL",
        "RESEND_API_KEY",
        "PROFILE_OWNER_NAME",
        "RETRIEVAL_TOP_K",
        "UPSTASH_VECTOR_REST_URL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.chat_relevance_floor == 0.6
    assert settings.search_relevance_floor == 0.7
    assert settings.chat_rate_limit == 10
    assert settings.chat_rate_window_seconds == 60
    assert settings.notify_rate_limit == 3
    assert settings.notify_rate_window_seconds == 3600
    assert settings.effective_rewrite_model == settings.openai_model


def test_environment_values_are_parsed(monkeypatch):
    monkeypatch.setenv("CHAT_RELEVANCE_FLOOR", "0.5")
    monkeypatch.setenv("CHAT_RATE_LIMIT", "20")
    monkeypatch.setenv("REWRITE_MODEL", "gpt-4o")
    monkeypatch.setenv("RESEND_API_KEY", "")

    settings = Settings(_env_file=None)

    assert settings.chat_relevance_floor == 0.5
    assert settings.chat_rate_limit == 20
    assert settings.effective_rewrite_model == "gpt-4o"
    assert settings.resend_api_key is None


def test_aliased_environment_names(monkeypatch):
    monkeypatch.setenv("PROFILE_OWNER_NAME", "Sam Lee")
    monkeypatch.setenv("RETRIEVAL_TOP_K", "8")
    monkeypatch.setenv("UPSTASH_VECTOR_REST_URL", "https://index.example.io")

    settings = Settings(_env_file=None)

    assert settings.owner_name == "Sam Lee"
    assert settings.top_k == 8
    assert settings.upstash_vector_url == "https://index.example.io"


def test_env_file_is_read(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_MODEL=gpt-4o\nCHAT_RATE_LIMIT=5\n")

    settings = Settings(_env_file=env_file)

    assert settings.openai_model == "gpt-4o"
    assert settings.chat_rate_limit == 5


def test_out_of_range_values_are_rejected(monkeypatch):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, chat_relevance_floor=1.5)

    monkeypatch.setenv("CHAT_RATE_LIMIT", "not-a-number")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_configure_logging_installs_one_handler():
    root = logging.getLogger()
    before = len(root.handlers)

    configure_logging("DEBUG")
    configure_logging("WARNING")

    assert len(root.handlers) <= before + 1
    assert sum(h.get_name() == "portfolio_chat" for h in root.handlers) == 1
    assert root.level == logging.WARNING
