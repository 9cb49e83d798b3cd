import pytest
import structlog
from pydantic import ValidationError

from scriptkill.infrastructure.config.settings import PhaseDurations, Settings
from scriptkill.infrastructure.observability.logging import MetricsCollector, add_service_context, bind_session


def test_defaults():
    settings = Settings()

    assert settings.embedding_dimension == 1024
    assert settings.private_chat_quota == 2
    assert settings.max_discussion_rounds == 2
    assert settings.phase_durations.private_chat_pair == 180
    assert settings.tracing_enabled is False


def test_from_env(monkeypatch):
    monkeypatch.setenv("EMBEDDING_DIMENSION", "256")
    monkeypatch.setenv("STATEMENT_PHASE_SECONDS", "12.5")
    monkeypatch.setenv("CANCEL_PRIVATE_CHATS_ON_END", "yes")
    monkeypatch.setenv("PRIVATE_CHAT_QUOTA", "")
    monkeypatch.setenv("LANGFUSE_PUBLIC_KEY", "pk")
    monkeypatch.setenv("LANGFUSE_SECRET_KEY", "sk")

    settings = Settings.from_env()

    assert settings.embedding_dimension == 256
    assert settings.phase_durations.statement == 12.5
    assert settings.cancel_private_chats_on_end is True
    assert settings.private_chat_quota == 2
    assert settings.tracing_enabled is True


def test_durations_must_be_positive():
    with pytest.raises(ValidationError):
        PhaseDurations(statement=0)


def test_bound_session_is_added_to_log_entries():
    structlog.contextvars.clear_contextvars()
    bind_session("s1")
    try:
        assert add_service_context(None, "info", {"event": "x"})["session_id"] == "s1"
        assert add_service_context(None, "info", {"event": "x", "session_id": "s2"})["session_id"] == "s2"
    finally:
        structlog.contextvars.clear_contextvars()


def test_metrics_summary():
    metrics = MetricsCollector()

    metrics.record_latency("agent.player.speak", 10)
    metrics.record_latency("agent.player.speak", 30)
    metrics.increment_counter("agent.failures")

    summary = metrics.get_metrics_summary()
    assert summary["latency.agent.player.speak"] == {"count": 2, "avg": 20, "min": 10, "max": 30}
    assert summary["agent.failures"] == 1
