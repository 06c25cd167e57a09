# planbot/telegram_transport.py

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

logger = logging.getLogger("planbot")

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramError(Exception):
    pass


def parse_text_update(update: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """
    Extract (user_id, text) from a Telegram update.
    Returns None for anything that is not a non-empty text message (stickers, edits, joins...).
    """
    if not isinstance(update, dict):
        return None
    message = update.get("message")
    if not isinstance(message, dict):
        return None
    text = message.get("text")
    sender = message.get("from") or {}
    # an empty text cannot be stored as a transcript message
    if not isinstance(text, str) or not text or sender.get("id") is None:
        return None
    return str(sender["id"]), text


class TelegramTransport:
    """
    Thin client over the Telegram Bot API. All calls are blocking.
    Replies go to chat_id == user id, i.e. the private chat with that user.
    """

    def __init__(
        self,
        token: str,
        *,
        api_base: str = TELEGRAM_API_BASE,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        if not token:
            raise ValueError("TelegramTransport needs a bot token")
        self._url = f"{api_base.rstrip('/')}/bot{token}"
        self.timeout = timeout
        self.session = session or requests.Session()

    def _call(self, method: str, payload: Dict[str, Any], timeout: float | None = None) -> Any:
        try:
            resp = self.session.post(
                f"{self._url}/{method}",
                json=payload,
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as e:
            raise TelegramError(f"{method}: request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code != 200 or not data.get("ok"):
            description = data.get("description") or resp.text
            raise TelegramError(f"{method}: HTTP {resp.status_code}: {description}")
        return data.get("result")

    def send(self, user_id: str, text: str) -> None:
        self._call("sendMessage", {"chat_id": user_id, "text": text})

    def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        # the HTTP timeout must outlast the long-poll window
        return self._call("getUpdates", payload, timeout=timeout + self.timeout) or []

    def set_webhook(self, url: str, secret_token: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"url": url, "allowed_updates": ["message"]}
        if secret_token:
            payload["secret_token"] = secret_token
        self._call("setWebhook", payload)
        logger.info(f"Telegram webhook set to {url}")

    def delete_webhook(self) -> None:
        self._call("deleteWebhook", {})
