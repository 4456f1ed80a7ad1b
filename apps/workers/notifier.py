"""Moderator alerts sent to a Telegram chat via the bot."""

import logging

from aiogram import Bot

from core.config import settings
from models import Appeal, Report

logger = logging.getLogger(__name__)


class Notifier:
    """Service for alerting moderators about new work in the queues."""

    def __init__(self, token: str | None = None, chat_id: int | None = None) -> None:
        self.token = settings.telegram_bot_token if token is None else token
        self.chat_id = settings.mod_chat_id if chat_id is None else chat_id
        self._bot: Bot | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.token) and self.chat_id is not None

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(token=self.token)
        return self._bot

    async def _send(self, text: str) -> bool:
        if not self.enabled:
            logger.debug("Moderator alerts disabled, dropping message")
            return False
        try:
            await self.bot.send_message(chat_id=self.chat_id, text=text)
            return True
        except Exception as e:
            logger.error(f"Failed to send moderator alert: {e}")
            return False

    async def report_submitted(self, report: Report) -> bool:
        """
        Alert moderators about a new pending report.

        Args:
            report: The report that was just committed

        Returns:
            True if sent successfully
        """
        text = f"""
New cheater report #{report.id}

User: {report.username}
https://codeforces.com/profile/{report.username}

Evidence:
{report.evidence}
        """.strip()
        return await self._send(text)

    async def appeal_submitted(self, appeal: Appeal) -> bool:
        """
        Alert moderators about a new pending appeal.

        Args:
            appeal: The appeal that was just committed

        Returns:
            True if sent successfully
        """
        text = f"""
New appeal #{appeal.id}

User: {appeal.username}

{appeal.message}
        """.strip()
        return await self._send(text)

    async def close(self) -> None:
        """Close the bot session."""
        if self._bot is not None:
            await self._bot.session.close()
            self._bot = None


# Global notifier instance
notifier = Notifier()
