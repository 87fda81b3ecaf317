# loans/grace_period.py
"""
Grace-period handling: Funded loans past their repayment deadline but not yet
past gracePeriodEnd. The window is [repaymentDeadline, gracePeriodEnd), so it
never overlaps default detection, which starts at gracePeriodEnd.
"""
import logging

from ledger_sdk.contracts import BlockRef
from loans.models import CollectionAttempt, CollectionOutcome, GracePeriodLoan, Loan, LoanState
from loans.reads import pin_block, read_position
from loans.scan import ScanResult, scan_loans

logger = logging.getLogger(__name__)


def in_grace_window(loan: Loan, current_timestamp: int) -> bool:
    return (
        loan.state == LoanState.FUNDED
        and loan.repayment_deadline <= current_timestamp < loan.grace_period_end
    )


def classify_grace_period(
    loan: Loan,
    current_timestamp: int,
    total_owed: int,
    amount_repaid: int,
    borrower_balance: int,
) -> GracePeriodLoan | None:
    if not in_grace_window(loan, current_timestamp):
        return None
    remaining = max(0, total_owed - amount_repaid)
    if remaining <= 0:
        return None
    return GracePeriodLoan(
        loan_id=loan.loan_id,
        borrower=loan.borrower,
        repayment_deadline=loan.repayment_deadline,
        grace_period_end=loan.grace_period_end,
        total_owed=total_owed,
        amount_repaid=amount_repaid,
        remaining_owed=remaining,
        borrower_balance=borrower_balance,
        grace_period_remaining=loan.grace_period_end - current_timestamp,
    )


def check_loan_grace_period(ledger, loan_id: int, block: BlockRef | None = None) -> GracePeriodLoan | None:
    block = pin_block(ledger, block)
    loan = ledger.get_loan(loan_id, block=block.number)
    if not in_grace_window(loan, block.timestamp):
        return None
    total, repaid, remaining = read_position(ledger, loan_id, block)
    if remaining <= 0:
        return None
    balance = ledger.get_token_balance(loan.borrower, block=block.number)
    return classify_grace_period(loan, block.timestamp, total, repaid, balance)


def get_loans_in_grace_period(ledger, max_workers: int | None = None) -> ScanResult[GracePeriodLoan]:
    result = scan_loans(ledger, check_loan_grace_period, max_workers=max_workers)
    logger.info(
        "Grace-period scan at block %s: %s/%s loans in grace, %s read failures",
        result.block.number, result.count, result.scanned, len(result.failures),
    )
    return result


def classify_collection(check: GracePeriodLoan) -> CollectionAttempt:
    """Eligibility only; executing the transfer needs the borrower's signature."""
    if check.borrower_balance >= check.remaining_owed:
        return CollectionAttempt(
            loan_id=check.loan_id,
            outcome=CollectionOutcome.FULL,
            message="Borrower has sufficient balance for full repayment",
            repayment_amount=check.remaining_owed,
        )
    if check.borrower_balance > 0:
        return CollectionAttempt(
            loan_id=check.loan_id,
            outcome=CollectionOutcome.PARTIAL,
            message="Borrower has partial balance available",
            repayment_amount=check.borrower_balance,
        )
    return CollectionAttempt(
        loan_id=check.loan_id,
        outcome=CollectionOutcome.INSUFFICIENT,
        message="Borrower has insufficient balance",
    )


def attempt_collection_after_grace_period(ledger, loan_id: int) -> CollectionAttempt:
    """Fresh balance-vs-owed check for one loan. Raises LedgerReadError on read failure."""
    check = check_loan_grace_period(ledger, loan_id)
    if check is None:
        return CollectionAttempt(
            loan_id=loan_id,
            outcome=CollectionOutcome.NOT_APPLICABLE,
            message="Loan not in grace period or already handled",
        )
    return classify_collection(check)
