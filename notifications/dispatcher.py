# notifications/dispatcher.py
"""
Best-effort delivery of loan notifications.

``dispatch`` never raises: it walks MarkdownV2 -> HTML -> plain text and
returns a DispatchResult describing what happened. Callers (evaluators, the
event listener) carry on regardless of the outcome.
"""
import logging
from dataclasses import dataclass, replace
from typing import Callable

from members.directory import MemberDirectory
from notifications.channel import NotificationChannel
from notifications.formatting import FORMATS, LoanNotification, build_message, render

logger = logging.getLogger(__name__)

STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class DispatchResult:
    notification_type: str
    loan_id: str
    recipient_id: int | str | None
    status: str
    format: str | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.status == STATUS_SENT

    def to_dict(self) -> dict:
        return {
            "type": self.notification_type,
            "loanId": self.loan_id,
            "recipientId": self.recipient_id,
            "status": self.status,
            "format": self.format,
            "error": self.error,
        }


def parse_recipient(value) -> int | str | None:
    """Chat ids are ints; channel usernames (@name) stay strings."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        return text or None


class NotificationDispatcher:
    def __init__(
        self,
        channel: NotificationChannel | None,
        directory: MemberDirectory | None = None,
        fallback_recipient=None,
        base_url: str | None = None,
        recorder: Callable[[DispatchResult], None] | None = None,
    ):
        self.channel = channel
        self.directory = directory or MemberDirectory()
        self.fallback_recipient = parse_recipient(fallback_recipient)
        self.base_url = (base_url or "").rstrip("/")
        self.recorder = recorder
        self._started = False

    # ---------------- lifecycle ----------------
    def init(self) -> None:
        if self.channel is not None and not self._started:
            self.channel.init()
        self._started = True

    def shutdown(self) -> None:
        if self.channel is not None and self._started:
            self.channel.shutdown()
        self._started = False

    # ---------------- resolution ----------------
    def resolve_recipient(self, explicit=None, address: str | None = None):
        """explicit id -> borrower's registered contact -> configured fallback."""
        recipient = parse_recipient(explicit)
        if recipient is not None:
            return recipient
        member_recipient = self.directory.recipient_for(address)
        if member_recipient is not None:
            return member_recipient
        return self.fallback_recipient

    def display_name(self, address: str | None, explicit_name: str | None = None) -> str | None:
        if explicit_name:
            return explicit_name
        member = self.directory.lookup(address)
        return member.display_name if member else None

    def loan_url(self, loan_id) -> str | None:
        return f"{self.base_url}/credit/{loan_id}" if self.base_url else None

    # ---------------- delivery ----------------
    def dispatch(self, notification: LoanNotification) -> DispatchResult:
        ntype = notification.type.value
        recipient = self.resolve_recipient(notification.recipient_id, notification.requester_address)

        if self.channel is None:
            logger.warning("No messaging channel configured; %s for loan %s not sent", ntype, notification.loan_id)
            return self._finish(DispatchResult(ntype, notification.loan_id, recipient, STATUS_SKIPPED,
                                               error="No messaging channel configured"))
        if recipient is None:
            logger.warning("No recipient for %s on loan %s", ntype, notification.loan_id)
            return self._finish(DispatchResult(ntype, notification.loan_id, None, STATUS_SKIPPED,
                                               error="No recipient available"))

        try:
            named = replace(
                notification,
                requester_name=self.display_name(notification.requester_address, notification.requester_name),
                voucher_name=self.display_name(notification.voucher_address, notification.voucher_name),
            )
            message = build_message(named, self.loan_url(notification.loan_id))
        except Exception as e:
            logger.exception("Could not build %s message for loan %s", ntype, notification.loan_id)
            return self._finish(DispatchResult(ntype, notification.loan_id, recipient, STATUS_FAILED,
                                               error=f"format: {e}"))

        errors = []
        for fmt in FORMATS:
            try:
                rendered = render(message, fmt)
                self.channel.send(recipient, rendered.text, parse_mode=rendered.parse_mode,
                                  reply_markup=rendered.reply_markup)
            except Exception as e:
                errors.append(f"{fmt}: {e}")
                logger.warning("Sending %s for loan %s as %s failed (%s); trying next format",
                               ntype, notification.loan_id, fmt, e)
                continue
            if errors:
                logger.info("Delivered %s for loan %s using %s fallback", ntype, notification.loan_id, fmt)
            return self._finish(DispatchResult(ntype, notification.loan_id, recipient, STATUS_SENT, format=fmt))

        logger.error("Giving up on %s for loan %s to %s: %s", ntype, notification.loan_id, recipient, "; ".join(errors))
        return self._finish(DispatchResult(ntype, notification.loan_id, recipient, STATUS_FAILED,
                                           error="; ".join(errors)))

    def _finish(self, result: DispatchResult) -> DispatchResult:
        if self.recorder is not None:
            try:
                self.recorder(result)
            except Exception:
                logger.exception("Recording notification outcome for loan %s failed", result.loan_id)
        return result
