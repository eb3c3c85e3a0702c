"""
BloodLink configuration
Reads settings from environment variables (optionally a .env file)
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EmailConfig:
    """Email configuration for notifications"""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    username: str = ""
    password: str = ""
    from_email: str = ""


@dataclass
class TwilioConfig:
    """Twilio account used for SMS and WhatsApp delivery"""
    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""
    whatsapp_from: str = ""
    base_url: str = "https://api.twilio.com"


@dataclass
class RecordStoreConfig:
    """Hosted record store (PostgREST / Supabase REST endpoint)"""
    url: str = ""
    api_key: str = ""
    timeout_seconds: int = 10


@dataclass
class MatchingConfig:
    city_limit: int = 5
    country_limit: int = 10


@dataclass
class Settings:
    notification_mode: str = "demo"
    log_level: str = "INFO"
    log_capacity: int = 100
    donor_fanout_limit: int = 5
    deduplicate_reminders: bool = True
    email: EmailConfig = field(default_factory=EmailConfig)
    twilio: TwilioConfig = field(default_factory=TwilioConfig)
    store: RecordStoreConfig = field(default_factory=RecordStoreConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)

    @property
    def is_live(self) -> bool:
        return self.notification_mode == "live"

    @classmethod
    def from_env(cls) -> "Settings":
        mode = os.getenv("BLOODLINK_NOTIFICATION_MODE", "demo").strip().lower()
        if mode not in ("demo", "live"):
            raise ValueError(f"BLOODLINK_NOTIFICATION_MODE must be 'demo' or 'live', got {mode!r}")

        return cls(
            notification_mode=mode,
            log_level=os.getenv("BLOODLINK_LOG_LEVEL", "INFO").upper(),
            log_capacity=_env_int("BLOODLINK_LOG_CAPACITY", 100),
            donor_fanout_limit=_env_int("BLOODLINK_DONOR_FANOUT_LIMIT", 5),
            deduplicate_reminders=_env_bool("BLOODLINK_DEDUPLICATE_REMINDERS", True),
            email=EmailConfig(
                smtp_server=os.getenv("SMTP_SERVER", "smtp.gmail.com"),
                smtp_port=_env_int("SMTP_PORT", 587),
                username=os.getenv("SMTP_USERNAME", ""),
                password=os.getenv("SMTP_PASSWORD", ""),
                from_email=os.getenv("SMTP_FROM_EMAIL", ""),
            ),
            twilio=TwilioConfig(
                account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
                auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
                from_number=os.getenv("TWILIO_FROM_NUMBER", ""),
                whatsapp_from=os.getenv("TWILIO_WHATSAPP_FROM", ""),
            ),
            store=RecordStoreConfig(
                url=os.getenv("BLOODLINK_STORE_URL", ""),
                api_key=os.getenv("BLOODLINK_STORE_KEY", ""),
                timeout_seconds=_env_int("BLOODLINK_STORE_TIMEOUT", 10),
            ),
            matching=MatchingConfig(
                city_limit=_env_int("BLOODLINK_CITY_MATCH_LIMIT", 5),
                country_limit=_env_int("BLOODLINK_COUNTRY_MATCH_LIMIT", 10),
            ),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings, reading the environment on first use"""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
