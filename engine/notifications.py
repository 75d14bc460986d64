"""Best-effort ingestion notifications."""

from __future__ import annotations

import logging
from typing import Protocol

import requests

logger = logging.getLogger(__name__)

_TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"


class Notifier(Protocol):
    def notify_success(self, reference: str) -> None:
        """Announce that a reference is playable."""

    def notify_failure(self, reference: str, error: str) -> None:
        """Announce that a reference exhausted its retry budget."""


class LoggingNotifier:
    def notify_success(self, reference: str) -> None:
        logger.info("Audio ready for %s", reference)

    def notify_failure(self, reference: str, error: str) -> None:
        logger.warning("Audio ingestion failed for %s: %s", reference, error)


class TelegramNotifier:
    def __init__(self, bot_token: str, chat_id: str, *, timeout: float = 15, session=None) -> None:
        if not bot_token or not chat_id:
            raise ValueError("bot_token and chat_id are required")
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout
        self._session = session or requests

    def _send(self, message: str) -> bool:
        url = _TELEGRAM_API.format(token=self.bot_token)
        payload = {"chat_id": self.chat_id, "text": message}
        resp = self._session.post(url, json=payload, timeout=self.timeout)
        if resp.ok:
            return True
        logger.warning("Telegram notify failed: %s", resp.text)
        return False

    def notify_success(self, reference: str) -> None:
        self._send(f"Jukebox audio ready\nReference: {reference}")

    def notify_failure(self, reference: str, error: str) -> None:
        self._send(f"Jukebox audio ingestion failed\nReference: {reference}\nError: {error}")


def build_notifier(config) -> Notifier:
    token = getattr(config, "telegram_bot_token", None)
    chat_id = getattr(config, "telegram_chat_id", None)
    if token and chat_id:
        return TelegramNotifier(token, chat_id)
    return LoggingNotifier()
