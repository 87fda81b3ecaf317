# loans/models.py
"""
Canonical, read-only mirrors of ledger loan state plus the transient value
objects the temporal evaluators hand to the action executors.

All token quantities are integers in the smallest unit (18 implied decimals).
Nothing here is persisted; a Loan lives for one evaluation pass.
"""
from dataclasses import dataclass, asdict
from enum import Enum, IntEnum
from typing import Any

BASIS_POINTS = 10_000
# calculateInterestRate returns type(uint256).max for fewer than three vouchers
INELIGIBLE_RATE = 2**256 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class LoanState(IntEnum):
    REQUESTED = 0
    VOUCHING = 1
    CROWDFUNDING = 2
    FUNDED = 3
    REPAID = 4
    DEFAULTED = 5

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class Loan:
    loan_id: int
    borrower: str
    amount_requested: int
    amount_funded: int
    term_duration: int
    interest_rate: int
    created_at: int
    vouching_deadline: int
    crowdfunding_deadline: int
    repayment_deadline: int
    grace_period_end: int
    state: LoanState
    voucher_count: int
    amount_repaid: int = 0

    # --- derived (recomputed, never stored) ---
    @property
    def total_owed(self) -> int:
        return self.amount_requested + self.amount_requested * self.interest_rate // BASIS_POINTS

    @property
    def remaining_owed(self) -> int:
        return max(0, self.total_owed - self.amount_repaid)

    @property
    def funding_progress(self) -> float:
        if self.amount_requested <= 0:
            return 0.0
        return self.amount_funded / self.amount_requested

    @property
    def is_funded(self) -> bool:
        return self.state == LoanState.FUNDED

    def to_dict(self) -> dict[str, Any]:
        # uint256 values overflow JSON numbers in most clients, ship them as strings
        return {
            "loanId": str(self.loan_id),
            "borrower": self.borrower,
            "amountRequested": str(self.amount_requested),
            "amountFunded": str(self.amount_funded),
            "amountRepaid": str(self.amount_repaid),
            "termDuration": str(self.term_duration),
            "interestRate": str(self.interest_rate),
            "createdAt": str(self.created_at),
            "vouchingDeadline": str(self.vouching_deadline),
            "crowdfundingDeadline": str(self.crowdfunding_deadline),
            "repaymentDeadline": str(self.repayment_deadline),
            "gracePeriodEnd": str(self.grace_period_end),
            "state": self.state.label,
            "voucherCount": self.voucher_count,
            "totalOwed": str(self.total_owed),
            "remainingOwed": str(self.remaining_owed),
            "fundingProgress": round(self.funding_progress, 4),
        }


def _stringify(data: dict[str, Any]) -> dict[str, Any]:
    return {k: (str(v) if isinstance(v, int) and not isinstance(v, bool) else v) for k, v in data.items()}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


class _Serializable:
    def to_dict(self) -> dict[str, Any]:
        return {_camel(k): v for k, v in _stringify(asdict(self)).items()}


# ---------------- Evaluator outputs ----------------
@dataclass(frozen=True)
class DefaultedLoan(_Serializable):
    loan_id: int
    borrower: str
    total_owed: int
    amount_repaid: int
    remaining_owed: int
    grace_period_end: int


@dataclass(frozen=True)
class GracePeriodLoan(_Serializable):
    loan_id: int
    borrower: str
    repayment_deadline: int
    grace_period_end: int
    total_owed: int
    amount_repaid: int
    remaining_owed: int
    borrower_balance: int
    grace_period_remaining: int  # seconds, always > 0


@dataclass(frozen=True)
class AutoRepaymentCheck(_Serializable):
    loan_id: int
    borrower: str
    total_owed: int
    amount_repaid: int
    remaining_owed: int
    borrower_balance: int
    can_repay_full: bool
    can_repay_partial: bool
    repayment_amount: int


class CollectionOutcome(str, Enum):
    FULL = "full_repay_eligible"
    PARTIAL = "partial_repay_eligible"
    INSUFFICIENT = "insufficient"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class CollectionAttempt(_Serializable):
    loan_id: int
    outcome: CollectionOutcome
    message: str
    repayment_amount: int | None = None

    @property
    def success(self) -> bool:
        return self.outcome in (CollectionOutcome.FULL, CollectionOutcome.PARTIAL)

    @property
    def can_repay(self) -> bool:
        return self.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "loanId": str(self.loan_id),
            "outcome": self.outcome.value,
            "message": self.message,
            "canRepay": self.can_repay,
            "repaymentAmount": None if self.repayment_amount is None else str(self.repayment_amount),
        }


# ---------------- Action executor outputs ----------------
@dataclass(frozen=True)
class RepaymentInstruction(_Serializable):
    """Unsigned repayLoan descriptor; the borrower (or an external signer) submits it."""
    loan_id: int
    amount: int
    borrower: str


@dataclass(frozen=True)
class MarkDefaultResult:
    loan_id: int
    success: bool
    transaction_hash: str | None = None
    error: str | None = None
    already_handled: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "loanId": str(self.loan_id)}
        if self.transaction_hash:
            out["transactionHash"] = self.transaction_hash
        if self.error:
            out["error"] = self.error
        if self.already_handled:
            out["alreadyHandled"] = True
        return out
