"""Tests for notification rendering, escaping and dispatch fallbacks."""

import re

import pytest
from sqlalchemy.exc import IntegrityError

from members.directory import MemberDirectory
from notifications.dispatcher import (
    STATUS_FAILED,
    STATUS_SENT,
    STATUS_SKIPPED,
    DispatchResult,
    NotificationDispatcher,
)
from notifications.formatting import (
    FORMAT_HTML,
    FORMAT_MARKDOWN,
    FORMAT_PLAIN,
    MARKDOWN_V2_SPECIAL,
    Link,
    LoanNotification,
    Message,
    NotificationType,
    build_message,
    escape_html,
    escape_markdown,
    render,
)
from notifications.utils import recent_notifications, record_dispatch, was_delivered

from conftest import BORROWER, RecordingChannel

HOSTILE_NAME = "*bob_[evil](x)`~>#+-=|{}.!\\ <b>&\x07\x1b"
CONTROL = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def _unescape_markdown(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text)


def _request(**overrides):
    data = dict(
        type=NotificationType.LOAN_REQUEST,
        loan_id="12",
        requester_address=BORROWER,
        requester_name=HOSTILE_NAME,
        amount="1.5",
        term="30 days",
    )
    data.update(overrides)
    return LoanNotification(**data)


class TestEscaping:
    def test_every_markdown_special_is_escaped(self) -> None:
        escaped = escape_markdown(MARKDOWN_V2_SPECIAL)
        assert escaped == "".join("\\" + c for c in MARKDOWN_V2_SPECIAL)

    def test_markdown_round_trip(self) -> None:
        clean = HOSTILE_NAME.replace("\x07", "").replace("\x1b", "")
        assert _unescape_markdown(escape_markdown(HOSTILE_NAME)) == clean

    def test_html_escape(self) -> None:
        assert escape_html('<b>"x" & y</b>') == "&lt;b&gt;&quot;x&quot; &amp; y&lt;/b&gt;"

    def test_controls_stripped_but_newlines_kept(self) -> None:
        assert escape_markdown("a\x00b\nc\td") == "ab\nc\td"


class TestRendering:
    @pytest.mark.parametrize("fmt", [FORMAT_MARKDOWN, FORMAT_HTML, FORMAT_PLAIN])
    def test_no_control_characters_reach_transport(self, fmt) -> None:
        rendered = render(build_message(_request()), fmt)
        assert not CONTROL.search(rendered.text)

    @pytest.mark.parametrize("fmt", [FORMAT_MARKDOWN, FORMAT_HTML, FORMAT_PLAIN])
    def test_footer_and_link_are_stripped_too(self, fmt) -> None:
        message = Message(
            icon="📋",
            title="Notice",
            footer="Repay soon\x1b[2J",
            link=Link("Open\x07", "http://circles.local/credit/1\x00"),
        )
        assert not CONTROL.search(render(message, fmt).text)

    def test_markdown_name_appears_escaped(self) -> None:
        text = render(build_message(_request()), FORMAT_MARKDOWN).text
        requester_line = next(line for line in text.splitlines() if line.startswith("Requester"))
        value = requester_line.split(": ", 1)[1]
        i = 0
        while i < len(value):
            if value[i] == "\\":
                i += 2
                continue
            assert value[i] not in MARKDOWN_V2_SPECIAL, f"unescaped {value[i]!r} at {i}"
            i += 1
        assert _unescape_markdown(value) == HOSTILE_NAME.replace("\x07", "").replace("\x1b", "")

    def test_html_name_appears_escaped(self) -> None:
        text = render(build_message(_request()), FORMAT_HTML).text
        assert "<b>&amp;" not in text
        assert "&lt;b&gt;&amp;" in text

    def test_https_link_becomes_button(self) -> None:
        message = build_message(_request(), "https://circles.example.org/credit/12")
        rendered = render(message, FORMAT_MARKDOWN)
        button = rendered.reply_markup["inline_keyboard"][0][0]
        assert button["url"] == "https://circles.example.org/credit/12"
        assert "Vouch for this loan" in button["text"]

    def test_http_link_is_code_text(self) -> None:
        message = build_message(_request(), "http://localhost:3000/credit/12")
        rendered = render(message, FORMAT_MARKDOWN)
        assert rendered.reply_markup is None
        assert "`http://localhost:3000/credit/12`" in rendered.text
        assert "<code>http://localhost:3000/credit/12</code>" in render(message, FORMAT_HTML).text

    def test_parse_modes(self) -> None:
        message = build_message(_request())
        assert render(message, FORMAT_MARKDOWN).parse_mode == "MarkdownV2"
        assert render(message, FORMAT_HTML).parse_mode == "HTML"
        assert render(message, FORMAT_PLAIN).parse_mode is None

    @pytest.mark.parametrize("ntype", list(NotificationType))
    def test_every_type_has_a_template(self, ntype) -> None:
        message = build_message(_request(type=ntype, unpaid_amount="3", funded_amount="1.5",
                                         reason="r", days_remaining="1.0"))
        assert message.title


class TestDispatcher:
    def test_markdown_first(self, dispatcher, channel) -> None:
        result = dispatcher.dispatch(_request())
        assert result.status == STATUS_SENT
        assert result.format == FORMAT_MARKDOWN
        assert channel.attempts == ["MarkdownV2"]

    def test_falls_back_to_html_then_plain(self, directory) -> None:
        channel = RecordingChannel(reject={"MarkdownV2", "HTML"})
        dispatcher = NotificationDispatcher(channel, directory=directory)
        dispatcher.init()
        result = dispatcher.dispatch(_request(recipient_id=5))
        assert result.status == STATUS_SENT
        assert result.format == FORMAT_PLAIN
        assert channel.attempts == ["MarkdownV2", "HTML", None]

    def test_gives_up_without_raising(self, directory) -> None:
        channel = RecordingChannel(reject={"MarkdownV2", "HTML", None})
        dispatcher = NotificationDispatcher(channel, directory=directory)
        result = dispatcher.dispatch(_request(recipient_id=5))
        assert result.status == STATUS_FAILED
        assert "can't parse entities" in result.error

    def test_explicit_recipient_wins(self, dispatcher, channel) -> None:
        dispatcher.dispatch(_request(recipient_id="777"))
        assert channel.sent[0]["chat_id"] == 777

    def test_member_lookup_then_fallback(self, dispatcher, channel) -> None:
        dispatcher.dispatch(_request())
        dispatcher.dispatch(_request(requester_address="0x5555555555555555555555555555555555555555"))
        assert [m["chat_id"] for m in channel.sent] == [4242, -100200]

    def test_display_name_from_directory(self, dispatcher, channel) -> None:
        dispatcher.dispatch(_request(requester_name=None))
        assert "@alice" in channel.sent[0]["text"]

    def test_no_recipient_is_skipped(self, channel) -> None:
        dispatcher = NotificationDispatcher(channel, directory=MemberDirectory())
        result = dispatcher.dispatch(_request())
        assert result.status == STATUS_SKIPPED
        assert channel.attempts == []

    def test_no_channel_is_skipped(self, directory) -> None:
        result = NotificationDispatcher(None, directory=directory).dispatch(_request())
        assert result.status == STATUS_SKIPPED

    def test_loan_link_uses_base_url(self, dispatcher, channel) -> None:
        dispatcher.dispatch(_request())
        button = channel.sent[0]["reply_markup"]["inline_keyboard"][0][0]
        assert button["url"] == "https://circles.example.org/credit/12"

    def test_recorder_failure_is_contained(self, dispatcher) -> None:
        def broken(_result):
            raise RuntimeError("db down")
        dispatcher.recorder = broken
        assert dispatcher.dispatch(_request()).status == STATUS_SENT

    def test_lifecycle(self, directory) -> None:
        channel = RecordingChannel()
        dispatcher = NotificationDispatcher(channel, directory=directory)
        dispatcher.init()
        assert channel.started
        dispatcher.shutdown()
        assert not channel.started


class TestNotificationLog:
    def test_failed_insert_does_not_poison_session(self, app) -> None:
        with pytest.raises(IntegrityError):
            record_dispatch(DispatchResult(None, "1", 4242, STATUS_SENT, FORMAT_MARKDOWN))
        record_dispatch(DispatchResult("loan_default", "1", 4242, STATUS_SENT, FORMAT_MARKDOWN))
        assert was_delivered(1, "loan_default")
        assert [row["loan_id"] for row in recent_notifications()] == ["1"]
