"""BotConfig: frozen dataclass read from the environment (.env supported)."""

import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)


@dataclass(frozen=True)
class BotConfig:
    discord_token: str
    default_channel_id: str | None = None
    db_path: str = "letterboxd_bot.db"
    command_prefix: str = "letterboxd"

    # Timing
    poll_interval_s: float = 300.0
    stale_after_s: float = 600.0
    fetch_timeout_s: float = 15.0
    max_concurrency: int = 4

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Build config from environment variables.

        Raises:
            ValueError: If DISCORD_TOKEN is missing or a number is malformed.
        """
        load_dotenv(find_dotenv(usecwd=True))

        token = _env("DISCORD_TOKEN").strip()
        if not token:
            raise ValueError("DISCORD_TOKEN is not set")

        return cls(
            discord_token=token,
            default_channel_id=_env("DISCORD_CHANNEL_ID").strip() or None,
            db_path=_env("LETTERBOXD_DB_PATH", "letterboxd_bot.db"),
            command_prefix=_env("LETTERBOXD_COMMAND_PREFIX", "letterboxd"),
            poll_interval_s=float(_env("LETTERBOXD_POLL_INTERVAL", "300")),
            stale_after_s=float(_env("LETTERBOXD_STALE_AFTER", "600")),
            fetch_timeout_s=float(_env("LETTERBOXD_FETCH_TIMEOUT", "15")),
            max_concurrency=int(_env("LETTERBOXD_MAX_CONCURRENCY", "4")),
        )
