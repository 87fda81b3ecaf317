# loans/default_detection.py
"""
Default detection: a Funded loan whose grace period has ended (ledger time)
with anything still owed.
"""
import logging

from ledger_sdk.contracts import BlockRef
from loans.models import DefaultedLoan, Loan, LoanState
from loans.reads import pin_block, read_position
from loans.scan import ScanResult, scan_loans

logger = logging.getLogger(__name__)


def classify_default(loan: Loan, current_timestamp: int, total_owed: int, amount_repaid: int) -> DefaultedLoan | None:
    """Pure classification; ``None`` means not applicable."""
    if loan.state != LoanState.FUNDED:
        return None
    if current_timestamp < loan.grace_period_end:
        return None  # still inside repayment window or grace period
    remaining = max(0, total_owed - amount_repaid)
    if remaining <= 0:
        return None
    return DefaultedLoan(
        loan_id=loan.loan_id,
        borrower=loan.borrower,
        total_owed=total_owed,
        amount_repaid=amount_repaid,
        remaining_owed=remaining,
        grace_period_end=loan.grace_period_end,
    )


def check_loan_default(ledger, loan_id: int, block: BlockRef | None = None) -> DefaultedLoan | None:
    """Re-reads the loan and its repayment position; raises LedgerReadError on read failure."""
    block = pin_block(ledger, block)
    loan = ledger.get_loan(loan_id, block=block.number)
    if loan.state != LoanState.FUNDED or block.timestamp < loan.grace_period_end:
        return None
    total, repaid, _ = read_position(ledger, loan_id, block)
    return classify_default(loan, block.timestamp, total, repaid)


def get_defaulted_loans(ledger, max_workers: int | None = None) -> ScanResult[DefaultedLoan]:
    result = scan_loans(ledger, check_loan_default, max_workers=max_workers)
    logger.info(
        "Default scan at block %s: %s/%s loans defaulted, %s read failures",
        result.block.number, result.count, result.scanned, len(result.failures),
    )
    return result
