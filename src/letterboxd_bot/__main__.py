"""Entry point for the Letterboxd bot: python -m letterboxd_bot"""

import logging
import sys

from letterboxd_bot.bot import LetterboxdBot
from letterboxd_bot.config import BotConfig
from letterboxd_bot.database import Database
from letterboxd_bot.feed_parser import LetterboxdProvider
from letterboxd_bot.poller import Poller
from letterboxd_bot.registry import Registry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# Quiet noisy loggers
logging.getLogger("discord").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)

logger = logging.getLogger("letterboxd_bot")


def main() -> int:
    """Initialize and run the Letterboxd bot until it is stopped."""
    try:
        config = BotConfig.from_env()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    db = Database(config.db_path)
    db.connect()
    provider = LetterboxdProvider(timeout=config.fetch_timeout_s)

    registry = Registry(db, provider, default_channel_id=config.default_channel_id)
    # Outer bound on the whole fetch, retries included
    poller = Poller(registry, provider, fetch_timeout=config.fetch_timeout_s * 3)
    bot = LetterboxdBot(config, registry, poller)

    logger.info("Letterboxd bot starting...")
    try:
        bot.run(config.discord_token, log_handler=None)
    finally:
        provider.close()
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
