# notifications/formatting.py
"""
Loan notification templates and their three renderings.

Every value interpolated into a message goes through the escaper of the
format being rendered; templates never concatenate raw markup with data.
"""
import html
from dataclasses import dataclass, field
from enum import Enum

# Telegram MarkdownV2 reserved characters (backslash first so it is not double-escaped)
MARKDOWN_V2_SPECIAL = "\\_*[]()~`>#+-=|{}.!"

FORMAT_MARKDOWN = "markdown"
FORMAT_HTML = "html"
FORMAT_PLAIN = "plain"
FORMATS = (FORMAT_MARKDOWN, FORMAT_HTML, FORMAT_PLAIN)

_PARSE_MODES = {FORMAT_MARKDOWN: "MarkdownV2", FORMAT_HTML: "HTML", FORMAT_PLAIN: None}


class NotificationType(str, Enum):
    LOAN_REQUEST = "loan_request"
    VOUCHING_ACCEPTED = "vouching_accepted"
    LOAN_CONFIRMED = "loan_confirmed"
    FUNDING_OBTAINED = "funding_obtained"
    LOAN_ACCEPTED = "loan_accepted"
    LOAN_REPAID = "loan_repaid"
    LOAN_DEFAULT = "loan_default"
    TRUST_CANCELLATION = "trust_cancellation"
    GRACE_PERIOD_WARNING = "grace_period_warning"


@dataclass
class LoanNotification:
    """Structured payload; amounts are already decimal strings in token units."""
    type: NotificationType
    loan_id: str
    requester_address: str
    requester_name: str | None = None
    amount: str | None = None
    funded_amount: str | None = None
    unpaid_amount: str | None = None
    interest_rate: str | None = None
    term: str | None = None
    voucher_address: str | None = None
    voucher_name: str | None = None
    reason: str | None = None
    days_remaining: str | None = None
    recipient_id: int | str | None = None

    @property
    def requester(self) -> str:
        return self.requester_name or self.requester_address


# ---------------- Escaping ----------------
_CONTROL_CHARS = {c: None for c in range(32) if chr(c) not in "\n\t"}
_CONTROL_CHARS[127] = None


def strip_controls(text) -> str:
    return str(text).translate(_CONTROL_CHARS)


def escape_markdown(text) -> str:
    out = []
    for ch in strip_controls(text):
        if ch in MARKDOWN_V2_SPECIAL:
            out.append("\\")
        out.append(ch)
    return "".join(out)


def escape_markdown_code(text) -> str:
    # inside `code` only ` and \ are special
    return strip_controls(text).replace("\\", "\\\\").replace("`", "\\`")


def escape_html(text) -> str:
    return html.escape(strip_controls(text), quote=True)


# ---------------- Message model ----------------
@dataclass(frozen=True)
class Field:
    label: str
    value: str
    code: bool = False


@dataclass(frozen=True)
class Link:
    text: str
    url: str

    @property
    def is_https(self) -> bool:
        return self.url.startswith("https://")


@dataclass(frozen=True)
class Message:
    icon: str
    title: str
    fields: list[Field] = field(default_factory=list)
    footer: str = ""
    link: Link | None = None


@dataclass(frozen=True)
class Rendered:
    format: str
    text: str
    parse_mode: str | None = None
    reply_markup: dict | None = None


def _button(link: Link) -> dict:
    return {"inline_keyboard": [[{"text": link.text, "url": link.url}]]}


def render_markdown(message: Message) -> Rendered:
    lines = [f"{message.icon} *{escape_markdown(message.title)}*", ""]
    for f in message.fields:
        value = f"`{escape_markdown_code(f.value)}`" if f.code else escape_markdown(f.value)
        lines.append(f"{escape_markdown(f.label)}: {value}")
    if message.footer:
        lines += ["", escape_markdown(message.footer)]
    markup = None
    if message.link:
        if message.link.is_https:
            # Telegram only accepts https URLs on inline buttons
            markup = _button(message.link)
        else:
            lines += ["", f"{escape_markdown(message.link.text)}:", f"`{escape_markdown_code(message.link.url)}`"]
    return Rendered(FORMAT_MARKDOWN, "\n".join(lines), _PARSE_MODES[FORMAT_MARKDOWN], markup)


def render_html(message: Message) -> Rendered:
    lines = [f"{message.icon} <b>{escape_html(message.title)}</b>", ""]
    for f in message.fields:
        value = f"<code>{escape_html(f.value)}</code>" if f.code else escape_html(f.value)
        lines.append(f"{escape_html(f.label)}: {value}")
    if message.footer:
        lines += ["", escape_html(message.footer)]
    if message.link:
        lines += ["", f"{escape_html(message.link.text)}:", f"<code>{escape_html(message.link.url)}</code>"]
    return Rendered(FORMAT_HTML, "\n".join(lines), _PARSE_MODES[FORMAT_HTML])


def render_plain(message: Message) -> Rendered:
    lines = [f"{message.icon} {strip_controls(message.title)}", ""]
    lines += [f"{strip_controls(f.label)}: {strip_controls(f.value)}" for f in message.fields]
    if message.footer:
        lines += ["", strip_controls(message.footer)]
    if message.link:
        lines += ["", f"{strip_controls(message.link.text)}:", strip_controls(message.link.url)]
    return Rendered(FORMAT_PLAIN, "\n".join(lines))


RENDERERS = {
    FORMAT_MARKDOWN: render_markdown,
    FORMAT_HTML: render_html,
    FORMAT_PLAIN: render_plain,
}


def render(message: Message, fmt: str) -> Rendered:
    return RENDERERS[fmt](message)


# ---------------- Templates ----------------
def _loan_request(n: LoanNotification, loan_url: str | None) -> Message:
    return Message(
        icon="📋",
        title="New Loan Request",
        fields=[
            Field("Loan ID", n.loan_id, code=True),
            Field("Requester", n.requester),
            Field("Amount", f"{n.amount} CRC"),
            Field("Term", n.term or "-"),
        ],
        footer="The vouching phase has started.",
        link=Link("👆 Vouch for this loan", loan_url) if loan_url else None,
    )


def _vouching_accepted(n: LoanNotification, loan_url: str | None) -> Message:
    return Message(
        icon="✅",
        title="Vouching Accepted",
        fields=[
            Field("Loan ID", n.loan_id, code=True),
            Field("Voucher", n.voucher_name or n.voucher_address or "-"),
            Field("Has vouched for", n.requester),
        ],
        footer="Thank you for your support!",
    )


def _loan_confirmed(n: LoanNotification, loan_url: str | None) -> Message:
    return Message(
        icon="🤝",
        title="Loan Terms Confirmed",
        fields=[
            Field("Loan ID", n.loan_id, code=True),
            Field("Borrower", n.requester),
            Field("Amount", f"{n.amount} CRC"),
            Field("Interest Rate", n.interest_rate or "-"),
            Field("Term", n.term or "-"),
        ],
        footer="Vouching is complete. Crowdfunding is now open.",
        link=Link("💸 Contribute to this loan", loan_url) if loan_url else None,
    )


def _funding_obtained(n: LoanNotification, loan_url: str | None) -> Message:
    return Message(
        icon="💰",
        title="Funding Obtained",
        fields=[
            Field("Loan ID", n.loan_id, code=True),
            Field("Requester", n.requester),
            Field("Requested", f"{n.amount} CRC"),
            Field("Funded", f"{n.funded_amount} CRC"),
        ],
        footer="The loan is now fully funded and ready for disbursement.",
    )


def _loan_accepted(n: LoanNotification, loan_url: str | None) -> Message:
    return Message(
        icon="🚀",
        title="Loan Accepted & Started",
        fields=[
            Field("Loan ID", n.loan_id, code=True),
            Field("Borrower", n.requester),
            Field("Amount", f"{n.amount} CRC"),
            Field("Interest Rate", n.interest_rate or "-"),
            Field("Term", n.term or "-"),
        ],
        footer="Funds have been disbursed. Repayment window has started.",
    )


def _loan_repaid(n: LoanNotification, loan_url: str | None) -> Message:
    return Message(
        icon="✅",
        title="Loan Repaid",
        fields=[
            Field("Loan ID", n.loan_id, code=True),
            Field("Borrower", n.requester),
            Field("Amount", f"{n.amount} CRC"),
        ],
        footer="The loan has been successfully repaid. Thank you!",
    )


def _loan_default(n: LoanNotification, loan_url: str | None) -> Message:
    return Message(
        icon="⚠️",
        title="Loan Default",
        fields=[
            Field("Loan ID", n.loan_id, code=True),
            Field("Borrower", n.requester),
            Field("Original Amount", f"{n.amount} CRC"),
            Field("Unpaid Amount", f"{n.unpaid_amount} CRC"),
        ],
        footer="The borrower has failed to repay the loan.",
    )


def _trust_cancellation(n: LoanNotification, loan_url: str | None) -> Message:
    return Message(
        icon="🔻",
        title="Trust Cancellation Recommendation",
        fields=[
            Field("Loan ID", n.loan_id, code=True),
            Field("User", n.requester),
            Field("Reason", n.reason or "-"),
        ],
        footer="The system recommends removing trust from this user due to loan default.",
    )


def _grace_period_warning(n: LoanNotification, loan_url: str | None) -> Message:
    return Message(
        icon="⏳",
        title="Repayment Overdue: Grace Period",
        fields=[
            Field("Loan ID", n.loan_id, code=True),
            Field("Borrower", n.requester),
            Field("Remaining Balance", f"{n.unpaid_amount} CRC"),
            Field("Days Remaining", n.days_remaining or "-"),
        ],
        footer="Repay before the grace period ends to avoid default.",
        link=Link("💳 Repay this loan", loan_url) if loan_url else None,
    )


TEMPLATES = {
    NotificationType.LOAN_REQUEST: _loan_request,
    NotificationType.VOUCHING_ACCEPTED: _vouching_accepted,
    NotificationType.LOAN_CONFIRMED: _loan_confirmed,
    NotificationType.FUNDING_OBTAINED: _funding_obtained,
    NotificationType.LOAN_ACCEPTED: _loan_accepted,
    NotificationType.LOAN_REPAID: _loan_repaid,
    NotificationType.LOAN_DEFAULT: _loan_default,
    NotificationType.TRUST_CANCELLATION: _trust_cancellation,
    NotificationType.GRACE_PERIOD_WARNING: _grace_period_warning,
}


def build_message(notification: LoanNotification, loan_url: str | None = None) -> Message:
    return TEMPLATES[notification.type](notification, loan_url)
