# loans/snapshot.py
"""
Loan snapshot mapper.

The lending market's ``getLoan`` comes back either as a positional tuple
(plain web3 call) or as a named record (``decode_tuples=True``, webhook
payloads, AttributeDict). ``decode_loan`` is the only place that knows both
shapes; every consumer goes through it.
"""
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from eth_utils import is_address, to_checksum_address

from errors import LoanNotFoundError
from loans.models import (
    BASIS_POINTS,
    INELIGIBLE_RATE,
    ZERO_ADDRESS,
    Loan,
    LoanState,
)

logger = logging.getLogger(__name__)

# getLoan struct order
LOAN_FIELDS = (
    "borrower",
    "amountRequested",
    "amountFunded",
    "termDuration",
    "interestRate",
    "createdAt",
    "vouchingDeadline",
    "crowdfundingDeadline",
    "repaymentDeadline",
    "gracePeriodEnd",
    "state",
    "voucherCount",
)

MIN_VOUCHERS = 3


# ---------------- Interest schedule (mirrors the contract) ----------------
def interest_rate_tier(voucher_count: int) -> int:
    """Basis points the contract assigns for ``voucher_count`` vouchers.

    < 3 -> ineligible (uint256 max), 3-6 -> 500, 7-9 -> 250, 10-15 -> 100, > 15 -> 0.
    """
    count = int(voucher_count)
    if count < MIN_VOUCHERS:
        return INELIGIBLE_RATE
    if count <= 6:
        return 500
    if count <= 9:
        return 250
    if count <= 15:
        return 100
    return 0


def is_eligible(voucher_count: int) -> bool:
    return interest_rate_tier(voucher_count) != INELIGIBLE_RATE


def interest_amount(principal: int, rate_bps: int) -> int:
    return principal * rate_bps // BASIS_POINTS


def total_owed(principal: int, rate_bps: int) -> int:
    """Estimate only; the ledger's calculateTotalOwed is authoritative."""
    return principal + interest_amount(principal, rate_bps)


def remaining_owed(total: int, repaid: int) -> int:
    """Never negative: an over-repaid loan simply owes nothing."""
    return max(0, int(total) - int(repaid))


# ---------------- Wire-shape normalisation ----------------
def _as_named(raw: Any) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if hasattr(raw, "_asdict"):  # namedtuple from decode_tuples=True
        return dict(raw._asdict())
    if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        if len(raw) < len(LOAN_FIELDS):
            raise ValueError(f"getLoan tuple has {len(raw)} fields, expected {len(LOAN_FIELDS)}")
        return dict(zip(LOAN_FIELDS, raw))
    if all(hasattr(raw, f) for f in LOAN_FIELDS):
        return {f: getattr(raw, f) for f in LOAN_FIELDS}
    raise ValueError(f"Unrecognised loan record shape: {type(raw).__name__}")


def _int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def normalize_address(value: Any) -> str:
    if isinstance(value, bytes):
        value = "0x" + value.hex()[-40:]
    text = str(value)
    if not is_address(text):
        raise ValueError(f"Invalid account address: {text!r}")
    return to_checksum_address(text)


def decode_loan(raw: Any, loan_id: int, amount_repaid: int = 0) -> Loan:
    """Map a raw ledger loan record onto the canonical ``Loan``.

    Raises ``LoanNotFoundError`` for the all-zero record the contract returns
    for ids it never assigned.
    """
    named = _as_named(raw)
    missing = [f for f in LOAN_FIELDS if f not in named]
    if missing:
        raise ValueError(f"Loan record missing fields: {', '.join(missing)}")

    borrower = normalize_address(named["borrower"])
    if borrower == ZERO_ADDRESS:
        raise LoanNotFoundError(loan_id)

    loan = Loan(
        loan_id=int(loan_id),
        borrower=borrower,
        amount_requested=_int(named["amountRequested"]),
        amount_funded=_int(named["amountFunded"]),
        term_duration=_int(named["termDuration"]),
        interest_rate=_int(named["interestRate"]),
        created_at=_int(named["createdAt"]),
        vouching_deadline=_int(named["vouchingDeadline"]),
        crowdfunding_deadline=_int(named["crowdfundingDeadline"]),
        repayment_deadline=_int(named["repaymentDeadline"]),
        grace_period_end=_int(named["gracePeriodEnd"]),
        state=LoanState(_int(named["state"])),
        voucher_count=_int(named["voucherCount"]),
        amount_repaid=_int(amount_repaid),
    )
    check_rate_consistency(loan)
    return loan


def check_rate_consistency(loan: Loan) -> bool:
    """Compare the stored rate with the local tier once terms are confirmed.

    The stored rate always wins; a mismatch is only logged.
    """
    if loan.state < LoanState.CROWDFUNDING or not is_eligible(loan.voucher_count):
        return True
    expected = interest_rate_tier(loan.voucher_count)
    if expected != loan.interest_rate:
        logger.warning(
            "Loan %s interest rate mismatch: ledger=%s bps, tier(%s vouchers)=%s bps; using ledger value",
            loan.loan_id, loan.interest_rate, loan.voucher_count, expected,
        )
        return False
    return True
