"""Mneme entry point."""

import logging
import os

from dotenv import find_dotenv, load_dotenv

from .logging import configure_logger


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))

    logging.basicConfig(
        level=os.getenv("MNEME_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every Telegram long-poll request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    configure_logger()

    from .telegram import TelegramBot

    bot = TelegramBot()
    bot.run()


if __name__ == "__main__":
    main()
