"""
Telegram notifier for mirroring published threads.

Every thread the campaign publishes is also sent to a Telegram chat when
TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are configured. Delivery is
best-effort: failures are logged and reported as False, never raised.
"""

import asyncio
import logging
from typing import Optional

from telegram import Bot
from telegram.error import NetworkError, TelegramError, TimedOut

from signalbot.config import Config

# Configure module logger
logger = logging.getLogger(__name__)

THREAD_SEPARATOR = "\n\n---\n\n"
MAX_TELEGRAM_LENGTH = 4096


def format_thread(posts: list[str], title: Optional[str] = None) -> str:
    """Join a thread's posts into one Telegram message."""
    parts = [title] if title else []
    parts.extend(post for post in posts if post)
    message = THREAD_SEPARATOR.join(parts)
    if len(message) > MAX_TELEGRAM_LENGTH:
        message = message[:MAX_TELEGRAM_LENGTH - 3] + "..."
    return message


def _resolve_chat_id(chat_id: str):
    # Numeric ids must be sent as int; channel usernames stay strings
    try:
        return int(chat_id)
    except ValueError:
        return chat_id


def send_telegram_message(message: str) -> bool:
    """
    Deliver one plain-text message to the configured chat.

    Args:
        message: Plain-text message

    Returns:
        True once Telegram accepted the message; False when unconfigured or on any error
    """
    if not Config.TELEGRAM_BOT_TOKEN or not Config.TELEGRAM_CHAT_ID:
        logger.debug("Telegram mirror disabled: TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID unset")
        return False

    if not message or not message.strip():
        logger.warning("Refusing to mirror an empty message")
        return False

    try:
        bot = Bot(token=Config.TELEGRAM_BOT_TOKEN)
        chat_id = _resolve_chat_id(Config.TELEGRAM_CHAT_ID)

        logger.debug(f"Mirroring {len(message)} chars to Telegram chat {chat_id}")

        asyncio.run(bot.send_message(
            chat_id=chat_id,
            text=message,
            disable_web_page_preview=True,
            read_timeout=Config.API_TIMEOUT,
            write_timeout=Config.API_TIMEOUT,
        ))

        logger.info("Thread mirrored to Telegram")
        return True

    except TimedOut:
        logger.error(f"Telegram mirror timed out after {Config.API_TIMEOUT}s")
        return False

    except NetworkError as e:
        logger.error(f"Telegram mirror network failure: {e}")
        return False

    except TelegramError as e:
        logger.error(f"Telegram rejected the mirror: {e}")
        return False

    except Exception as e:
        logger.error(f"Telegram mirror failed: {e}", exc_info=True)
        return False


def mirror_thread(posts: list[str], title: Optional[str] = None) -> bool:
    """Send a published thread to Telegram as a single message."""
    if not posts:
        logger.debug("No posts to mirror")
        return False

    return send_telegram_message(format_thread(posts, title))
