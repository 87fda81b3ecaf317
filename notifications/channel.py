# notifications/channel.py
import logging

import requests

from errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


class NotificationChannel:
    """Transport for rendered messages. ``init``/``shutdown`` bracket its lifetime."""

    name = "channel"

    def init(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    def send(self, recipient_id, text: str, parse_mode: str | None = None, reply_markup: dict | None = None) -> dict:
        raise NotImplementedError


class TelegramChannel(NotificationChannel):
    """Telegram Bot API sendMessage over a pooled requests.Session."""

    name = "telegram"

    def __init__(self, token: str, api_url: str = "https://api.telegram.org", timeout: int = 10):
        if not token:
            raise ValueError("Telegram bot token is required")
        self._token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session: requests.Session | None = None

    def init(self) -> None:
        if self._session is None:
            self._session = requests.Session()
            logger.info("Telegram channel initialised (%s)", self.api_url)

    def shutdown(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def send(self, recipient_id, text: str, parse_mode: str | None = None, reply_markup: dict | None = None) -> dict:
        if self._session is None:
            raise NotificationDeliveryError("Telegram channel used before init()")

        payload = {"chat_id": recipient_id, "text": text, "disable_web_page_preview": True}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup

        try:
            r = self._session.post(f"{self.api_url}/bot{self._token}/sendMessage", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            # the request URL embeds the bot token, keep it out of the message
            raise NotificationDeliveryError(f"Telegram request failed: {type(e).__name__}") from None

        try:
            data = r.json()
        except ValueError:
            data = {}
        if r.status_code != 200 or not data.get("ok"):
            description = data.get("description") or f"HTTP {r.status_code}"
            raise NotificationDeliveryError(f"Telegram rejected message: {description}", status_code=r.status_code)
        return data.get("result") or {}
