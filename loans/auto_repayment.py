# loans/auto_repayment.py
"""
Auto-repayment eligibility: any Funded loan at or past its repayment deadline,
including into and past the grace period.
"""
import logging

from ledger_sdk.contracts import BlockRef
from loans.models import AutoRepaymentCheck, Loan, LoanState
from loans.reads import pin_block, read_position
from loans.scan import ScanResult, scan_loans

logger = logging.getLogger(__name__)


def classify_auto_repayment(
    loan: Loan,
    current_timestamp: int,
    total_owed: int,
    amount_repaid: int,
    borrower_balance: int,
) -> AutoRepaymentCheck | None:
    if loan.state != LoanState.FUNDED or current_timestamp < loan.repayment_deadline:
        return None
    remaining = max(0, total_owed - amount_repaid)
    if remaining <= 0:
        return None
    can_full = borrower_balance >= remaining
    can_partial = borrower_balance > 0
    return AutoRepaymentCheck(
        loan_id=loan.loan_id,
        borrower=loan.borrower,
        total_owed=total_owed,
        amount_repaid=amount_repaid,
        remaining_owed=remaining,
        borrower_balance=borrower_balance,
        can_repay_full=can_full,
        can_repay_partial=can_partial,
        repayment_amount=remaining if can_full else borrower_balance,
    )


def check_loan_for_auto_repayment(ledger, loan_id: int, block: BlockRef | None = None) -> AutoRepaymentCheck | None:
    block = pin_block(ledger, block)
    loan = ledger.get_loan(loan_id, block=block.number)
    if loan.state != LoanState.FUNDED or block.timestamp < loan.repayment_deadline:
        return None
    total, repaid, remaining = read_position(ledger, loan_id, block)
    if remaining <= 0:
        return None
    balance = ledger.get_token_balance(loan.borrower, block=block.number)
    return classify_auto_repayment(loan, block.timestamp, total, repaid, balance)


def is_repayable(check: AutoRepaymentCheck) -> bool:
    return check.can_repay_full or check.can_repay_partial


def get_loans_needing_auto_repayment(ledger, max_workers: int | None = None) -> ScanResult[AutoRepaymentCheck]:
    result = scan_loans(ledger, check_loan_for_auto_repayment, include=is_repayable, max_workers=max_workers)
    logger.info(
        "Auto-repayment scan at block %s: %s/%s loans repayable, %s read failures",
        result.block.number, result.count, result.scanned, len(result.failures),
    )
    return result
