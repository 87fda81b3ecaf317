"""Tests for the Telegram channel transport."""

import pytest
import requests

from errors import NotificationDeliveryError
from notifications.channel import TelegramChannel

SECRET = "123456:SECRET-TOKEN"


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


@pytest.fixture
def telegram():
    channel = TelegramChannel(SECRET, api_url="https://api.telegram.test/", timeout=3)
    channel.init()
    return channel


class TestTelegramChannel:
    def test_send_payload(self, telegram) -> None:
        session = FakeSession(FakeResponse(200, {"ok": True, "result": {"message_id": 9}}))
        telegram._session = session
        result = telegram.send(42, "*hi*", parse_mode="MarkdownV2",
                               reply_markup={"inline_keyboard": [[{"text": "go", "url": "https://x"}]]})
        assert result == {"message_id": 9}
        call = session.calls[0]
        assert call["url"] == f"https://api.telegram.test/bot{SECRET}/sendMessage"
        assert call["json"]["parse_mode"] == "MarkdownV2"
        assert call["json"]["disable_web_page_preview"] is True
        assert call["timeout"] == 3

    def test_plain_omits_parse_mode(self, telegram) -> None:
        session = FakeSession(FakeResponse(200, {"ok": True, "result": {}}))
        telegram._session = session
        telegram.send(42, "hi")
        assert "parse_mode" not in session.calls[0]["json"]

    def test_api_rejection(self, telegram) -> None:
        telegram._session = FakeSession(FakeResponse(400, {"ok": False, "description": "can't parse entities"}))
        with pytest.raises(NotificationDeliveryError) as exc:
            telegram.send(42, "*broken")
        assert exc.value.status_code == 400
        assert "can't parse entities" in str(exc.value)

    def test_network_error_hides_token(self, telegram) -> None:
        telegram._session = FakeSession(error=requests.ConnectionError(f"https://api/bot{SECRET}/sendMessage"))
        with pytest.raises(NotificationDeliveryError) as exc:
            telegram.send(42, "hi")
        assert SECRET not in str(exc.value)
        assert exc.value.__cause__ is None

    def test_send_before_init(self) -> None:
        with pytest.raises(NotificationDeliveryError):
            TelegramChannel(SECRET).send(1, "hi")

    def test_shutdown_closes_session(self, telegram) -> None:
        session = FakeSession()
        telegram._session = session
        telegram.shutdown()
        assert session.closed

    def test_token_required(self) -> None:
        with pytest.raises(ValueError):
            TelegramChannel("")
