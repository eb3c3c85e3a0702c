import pytest

from config import Settings
from notification_agent import create_agent
from notification_content import Channel
from notification_service import (
    EmailChannel,
    LoggingChannel,
    TwilioWhatsAppChannel,
    build_notification_service,
)
from record_store import InMemoryRecordStore, RestRecordStore


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("BLOODLINK_NOTIFICATION_MODE", "BLOODLINK_LOG_CAPACITY", "BLOODLINK_DONOR_FANOUT_LIMIT",
                 "BLOODLINK_DEDUPLICATE_REMINDERS", "BLOODLINK_STORE_URL", "BLOODLINK_CITY_MATCH_LIMIT",
                 "SMTP_PORT"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = Settings.from_env()

    assert settings.notification_mode == "demo"
    assert not settings.is_live
    assert settings.log_capacity == 100
    assert settings.donor_fanout_limit == 5
    assert settings.deduplicate_reminders is True
    assert settings.matching.city_limit == 5
    assert settings.matching.country_limit == 10


def test_values_from_environment(clean_env):
    clean_env.setenv("BLOODLINK_NOTIFICATION_MODE", "LIVE")
    clean_env.setenv("BLOODLINK_DONOR_FANOUT_LIMIT", "8")
    clean_env.setenv("BLOODLINK_DEDUPLICATE_REMINDERS", "false")
    clean_env.setenv("BLOODLINK_CITY_MATCH_LIMIT", "3")
    clean_env.setenv("SMTP_PORT", "2525")

    settings = Settings.from_env()

    assert settings.is_live
    assert settings.donor_fanout_limit == 8
    assert settings.deduplicate_reminders is False
    assert settings.matching.city_limit == 3
    assert settings.email.smtp_port == 2525


def test_invalid_mode_is_rejected(clean_env):
    clean_env.setenv("BLOODLINK_NOTIFICATION_MODE", "loud")

    with pytest.raises(ValueError):
        Settings.from_env()


def test_invalid_integer_is_rejected(clean_env):
    clean_env.setenv("BLOODLINK_LOG_CAPACITY", "lots")

    with pytest.raises(ValueError):
        Settings.from_env()


def test_demo_mode_uses_logging_channels():
    service = build_notification_service(Settings(log_capacity=7))

    assert all(isinstance(channel, LoggingChannel) for channel in service.channels.values())
    assert set(service.channels) == set(Channel)
    assert service.log_store.capacity == 7


def test_live_mode_uses_provider_channels():
    service = build_notification_service(Settings(notification_mode="live"))
    try:
        assert isinstance(service.channels[Channel.EMAIL], EmailChannel)
        assert isinstance(service.channels[Channel.WHATSAPP], TwilioWhatsAppChannel)
    finally:
        service.close()


@pytest.mark.asyncio
async def test_demo_channels_report_success():
    service = build_notification_service(Settings())

    assert await service.channels[Channel.SMS].send("+33600000001", "hello")


def test_create_agent_picks_store_from_settings():
    agent = create_agent(Settings())
    assert isinstance(agent.store, InMemoryRecordStore)

    settings = Settings()
    settings.store.url = "https://example.supabase.co"
    settings.donor_fanout_limit = 2
    agent = create_agent(settings)
    assert isinstance(agent.store, RestRecordStore)
    assert agent.donor_fanout_limit == 2
