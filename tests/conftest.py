"""Pytest configuration and fixtures."""

import itertools
from dataclasses import replace

import pytest
from flask_jwt_extended import create_access_token

from errors import (
    EventDecodeError,
    LedgerReadError,
    LoanNotFoundError,
    NotificationDeliveryError,
    SignerNotConfiguredError,
)
from ledger_sdk.contracts import BlockRef, DecodedLog
from loans.models import Loan, LoanState
from members.directory import Member, MemberDirectory
from notifications.channel import NotificationChannel
from notifications.dispatcher import NotificationDispatcher

TOKEN = 10**18
BORROWER = "0x1111111111111111111111111111111111111111"
VOUCHER = "0x3333333333333333333333333333333333333333"


def make_loan(loan_id=1, state=LoanState.FUNDED, amount=100 * TOKEN, rate=500, repayment_deadline=500,
              grace_period_end=1000, borrower=BORROWER, voucher_count=4, amount_funded=None,
              term_duration=30 * 86400):
    return Loan(
        loan_id=loan_id,
        borrower=borrower,
        amount_requested=amount,
        amount_funded=amount if amount_funded is None else amount_funded,
        term_duration=term_duration,
        interest_rate=rate,
        created_at=0,
        vouching_deadline=100,
        crowdfunding_deadline=200,
        repayment_deadline=repayment_deadline,
        grace_period_end=grace_period_end,
        state=state,
        voucher_count=voucher_count,
    )


class FakeLedgerConfig:
    scan_workers = 4


class FakeLedger:
    """In-memory stand-in for LedgerClient."""

    def __init__(self, now=0, block_number=1_000):
        self.config = FakeLedgerConfig()
        self.now = now
        self.block_number = block_number
        self.loans: dict[int, Loan] = {}
        self.repaid: dict[int, int] = {}
        self.balances: dict[str, int] = {}
        self.failing: set[int] = set()
        self.logs: list = []
        self.signer = "0x9999999999999999999999999999999999999999"
        self.mark_error: Exception | None = None
        self.marked: list[int] = []
        self.admin_calls: list[tuple] = []
        self.read_blocks: list = []
        self.log_ranges: list[tuple] = []
        self._tx = itertools.count(1)

    # --- setup helpers ---
    def add(self, loan: Loan, repaid: int = 0, balance: int | None = None):
        self.loans[loan.loan_id] = loan
        self.repaid[loan.loan_id] = repaid
        if balance is not None:
            self.balances[loan.borrower.lower()] = balance
        return loan

    def _check(self, loan_id):
        if loan_id in self.failing:
            raise LedgerReadError(f"RPC timeout reading loan {loan_id}")
        if loan_id not in self.loans:
            raise LoanNotFoundError(loan_id)

    # --- signer ---
    @property
    def can_sign(self):
        return self.signer is not None

    @property
    def signer_address(self):
        return self.signer

    # --- reads ---
    def get_latest_block(self):
        return BlockRef(number=self.block_number, timestamp=self.now)

    def get_current_timestamp(self):
        return self.now

    def get_block_number(self):
        return self.block_number

    def get_total_loan_count(self, block=None):
        return max(self.loans, default=0)

    def get_loan(self, loan_id, block=None):
        self.read_blocks.append(("getLoan", loan_id, block))
        self._check(loan_id)
        return self.loans[loan_id]

    def get_amount_repaid(self, loan_id, block=None):
        self.read_blocks.append(("amountRepaid", loan_id, block))
        self._check(loan_id)
        return self.repaid.get(loan_id, 0)

    def get_total_owed(self, loan_id, block=None):
        self.read_blocks.append(("calculateTotalOwed", loan_id, block))
        self._check(loan_id)
        return self.loans[loan_id].total_owed

    def get_token_balance(self, account, block=None):
        return self.balances.get(account.lower(), 0)

    # --- events ---
    def get_event_logs(self, from_block, to_block="latest"):
        self.log_ranges.append((from_block, to_block))
        return [log for log in self.logs
                if not isinstance(log, DecodedLog) or log.block_number is None
                or (log.block_number >= from_block and (to_block == "latest" or log.block_number <= to_block))]

    def decode_event_log(self, raw_log):
        if isinstance(raw_log, DecodedLog):
            return raw_log
        raise EventDecodeError("Unknown event topic")

    # --- writes ---
    def submit_mark_defaulted(self, loan_id):
        if not self.can_sign:
            raise SignerNotConfiguredError("no signer")
        if self.mark_error is not None:
            raise self.mark_error
        loan = self.loans[loan_id]
        self.loans[loan_id] = replace(loan, state=LoanState.DEFAULTED)
        self.marked.append(loan_id)
        return f"0x{next(self._tx):064x}"

    def wait_for_receipt(self, tx_hash):
        return {"transactionHash": tx_hash, "blockNumber": self.block_number, "gasUsed": 21000, "status": 1}

    def set_vouching_deadline(self, loan_id, value):
        return self._admin("setVouchingDeadline", loan_id, value)

    def set_repayment_deadline(self, loan_id, value):
        return self._admin("setRepaymentDeadline", loan_id, value)

    def set_grace_period(self, loan_id, value):
        return self._admin("setGracePeriod", loan_id, value)

    def _admin(self, name, loan_id, value):
        if not self.can_sign:
            raise SignerNotConfiguredError("no signer")
        self.admin_calls.append((name, loan_id, value))
        return f"0x{next(self._tx):064x}"


class RecordingChannel(NotificationChannel):
    """Captures sent messages; rejects the parse modes listed in ``reject``."""

    name = "recording"

    def __init__(self, reject=()):
        self.reject = set(reject)
        self.sent: list[dict] = []
        self.attempts: list[str | None] = []
        self.started = False

    def init(self):
        self.started = True

    def shutdown(self):
        self.started = False

    def send(self, recipient_id, text, parse_mode=None, reply_markup=None):
        self.attempts.append(parse_mode)
        if parse_mode in self.reject:
            raise NotificationDeliveryError(f"Bad Request: can't parse entities ({parse_mode})", status_code=400)
        self.sent.append({"chat_id": recipient_id, "text": text, "parse_mode": parse_mode,
                          "reply_markup": reply_markup})
        return {"message_id": len(self.sent)}


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def directory() -> MemberDirectory:
    return MemberDirectory([
        Member(recipient_id=4242, handle="@alice", address=BORROWER, username="alice"),
    ])


@pytest.fixture
def dispatcher(channel, directory) -> NotificationDispatcher:
    d = NotificationDispatcher(channel, directory=directory, fallback_recipient="-100200",
                               base_url="https://circles.example.org")
    d.init()
    return d


class TestConfig:
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = "test-jwt-secret-with-enough-length-for-hs256"
    JWT_TOKEN_LOCATION = ["headers"]
    SCHEDULER_ENABLED = False
    MEMBERS_FILE = "does-not-exist.json"
    EVENT_LOOKBACK_BLOCKS = 100
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "standard"


@pytest.fixture
def app(ledger, dispatcher):
    from app import create_app
    from extensions import db
    from notifications.utils import record_dispatch

    dispatcher.recorder = record_dispatch
    application = create_app(TestConfig, ledger=ledger, dispatcher=dispatcher)
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    token = create_access_token(identity="scheduler")
    return {"Authorization": f"Bearer {token}"}
