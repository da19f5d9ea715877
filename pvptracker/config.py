# pvptracker/config.py

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from pvptracker.database import DEFAULT_DB_PATH
from pvptracker.errors import ConfigError

DEFAULT_CHARACTER_NAME = "bigbrainwiz"
DEFAULT_REALM_SLUG = "malganis"
DEFAULT_REGION = "us"
DEFAULT_BRACKETS = ["shuffle-priest-shadow", "blitz-priest-shadow"]
DEFAULT_POLL_INTERVAL_SECONDS = 5 * 60
DEFAULT_LOCALE = "en_US"
DEFAULT_HTTP_TIMEOUT_SECONDS = 20


@dataclass
class TrackerConfig:
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    character_name: str = DEFAULT_CHARACTER_NAME
    realm_slug: str = DEFAULT_REALM_SLUG
    region: str = DEFAULT_REGION
    brackets: List[str] = field(default_factory=lambda: list(DEFAULT_BRACKETS))
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    db_path: str = DEFAULT_DB_PATH
    locale: str = DEFAULT_LOCALE
    http_timeout_seconds: int = DEFAULT_HTTP_TIMEOUT_SECONDS

    def validate_credentials(self) -> None:
        """Raise ConfigError unless both API credentials are present."""
        missing = [
            name for name, value in (
                ("BLIZZARD_CLIENT_ID", self.client_id),
                ("BLIZZARD_CLIENT_SECRET", self.client_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    @property
    def character_label(self) -> str:
        return f"{self.character_name}-{self.realm_slug} ({self.region.upper()})"


def _split_csv(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _int_setting(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_config(env_file: Optional[str] = None) -> TrackerConfig:
    """
    Build the tracker configuration from the environment.

    A .env file (or `env_file`) is loaded first; variables already set in the
    process environment take precedence over it.
    """
    load_dotenv(env_file)

    brackets_raw = os.getenv("PVP_BRACKETS")
    if brackets_raw is None:
        brackets = list(DEFAULT_BRACKETS)
    else:
        # An explicitly empty value means "discover from the PvP summary".
        brackets = _split_csv(brackets_raw)

    return TrackerConfig(
        client_id=os.getenv("BLIZZARD_CLIENT_ID") or None,
        client_secret=os.getenv("BLIZZARD_CLIENT_SECRET") or None,
        character_name=os.getenv("PVP_CHARACTER_NAME", DEFAULT_CHARACTER_NAME).strip().lower(),
        realm_slug=os.getenv("PVP_REALM_SLUG", DEFAULT_REALM_SLUG).strip().lower(),
        region=os.getenv("PVP_REGION", DEFAULT_REGION).strip().lower(),
        brackets=brackets,
        poll_interval_seconds=_int_setting("PVP_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS),
        db_path=os.getenv("PVP_DB_PATH", "").strip() or DEFAULT_DB_PATH,
        locale=os.getenv("PVP_LOCALE", DEFAULT_LOCALE).strip() or DEFAULT_LOCALE,
        http_timeout_seconds=_int_setting("PVP_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS),
    )
