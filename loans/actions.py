# loans/actions.py
"""
Action executors: the only code paths that lead to a ledger write or an
outbound notice for a classified loan.
"""
import logging

from errors import LedgerReadError, LedgerWriteRejectedError, LendingServiceError, SignerNotConfiguredError
from loans.default_detection import check_loan_default
from loans.models import (
    AutoRepaymentCheck,
    DefaultedLoan,
    GracePeriodLoan,
    LoanState,
    MarkDefaultResult,
    RepaymentInstruction,
)
from notifications.formatting import LoanNotification, NotificationType
from utils.formatting import format_days, format_token_amount

logger = logging.getLogger(__name__)

TRUST_CANCELLATION_REASON = "Loan default - membership suspended"


# ---------------- Repayment ----------------
def prepare_repayment_transaction(check: AutoRepaymentCheck) -> RepaymentInstruction:
    """Unsigned ``repayLoan`` descriptor. Pure: no reads, no writes, no signing."""
    return RepaymentInstruction(loan_id=check.loan_id, amount=check.repayment_amount, borrower=check.borrower)


def format_auto_repayment_check(check: AutoRepaymentCheck) -> str:
    if check.can_repay_full:
        status = "Can repay in full"
    elif check.can_repay_partial:
        status = "Can repay partially"
    else:
        status = "Insufficient balance"
    return "\n".join([
        f"Loan #{check.loan_id}",
        f"Borrower: {check.borrower}",
        f"Total owed: {format_token_amount(check.total_owed)} CRC",
        f"Already repaid: {format_token_amount(check.amount_repaid)} CRC",
        f"Remaining: {format_token_amount(check.remaining_owed)} CRC",
        f"Borrower balance: {format_token_amount(check.borrower_balance)} CRC",
        f"Status: {status}",
        f"Repayment amount: {format_token_amount(check.repayment_amount)} CRC",
    ])


# ---------------- Default marking ----------------
def _is_defaulted(ledger, loan_id: int) -> bool:
    try:
        return ledger.get_loan(loan_id).state == LoanState.DEFAULTED
    except LedgerReadError as e:
        logger.warning("Could not re-read loan %s after a rejected default: %s", loan_id, e)
        return False


def mark_loan_as_defaulted(ledger, loan_id: int) -> MarkDefaultResult:
    """
    Submit ``markLoanAsDefaulted`` after re-checking eligibility.

    Never raises: every outcome is a MarkDefaultResult. A loan that is already
    Defaulted, or a revert saying so, counts as success with ``already_handled``.
    """
    loan_id = int(loan_id)
    if not ledger.can_sign:
        logger.warning("Refusing to mark loan %s defaulted: no signer configured", loan_id)
        return MarkDefaultResult(loan_id, success=False, error="Signer not configured")

    try:
        defaulted = check_loan_default(ledger, loan_id)
        if defaulted is None:
            loan = ledger.get_loan(loan_id)
            if loan.state == LoanState.DEFAULTED:
                logger.info("Loan %s already defaulted", loan_id)
                return MarkDefaultResult(loan_id, success=True, already_handled=True)
            return MarkDefaultResult(loan_id, success=False, error="Loan is not eligible for default")
    except LedgerReadError as e:
        logger.warning("Eligibility re-check for loan %s failed: %s", loan_id, e)
        return MarkDefaultResult(loan_id, success=False, error=str(e))

    try:
        tx_hash = ledger.submit_mark_defaulted(loan_id)
        receipt = ledger.wait_for_receipt(tx_hash)
    except SignerNotConfiguredError as e:
        return MarkDefaultResult(loan_id, success=False, error=str(e))
    except LedgerWriteRejectedError as e:
        # a mined revert carries no reason; the loan state tells whether another caller won
        if e.reason == LedgerWriteRejectedError.ALREADY_HANDLED or _is_defaulted(ledger, loan_id):
            logger.info("Loan %s was defaulted concurrently: %s", loan_id, e)
            return MarkDefaultResult(loan_id, success=True, transaction_hash=e.transaction_hash, already_handled=True)
        logger.warning("Ledger rejected default for loan %s (%s): %s", loan_id, e.reason, e)
        return MarkDefaultResult(loan_id, success=False, transaction_hash=e.transaction_hash, error=str(e))
    except LendingServiceError as e:
        logger.error("Marking loan %s defaulted failed: %s", loan_id, e)
        return MarkDefaultResult(loan_id, success=False, error=str(e))

    logger.info("Loan %s marked defaulted in tx %s", loan_id, receipt["transactionHash"])
    return MarkDefaultResult(loan_id, success=True, transaction_hash=receipt["transactionHash"])


# ---------------- Notices ----------------
def build_default_notifications(defaulted: DefaultedLoan, amount_requested: int | None = None,
                                recipient_id=None) -> list[LoanNotification]:
    """Default notice plus trust-cancellation recommendation."""
    loan_id = str(defaulted.loan_id)
    original = defaulted.total_owed if amount_requested is None else amount_requested
    return [
        LoanNotification(
            type=NotificationType.LOAN_DEFAULT,
            loan_id=loan_id,
            requester_address=defaulted.borrower,
            amount=format_token_amount(original),
            unpaid_amount=format_token_amount(defaulted.remaining_owed),
            recipient_id=recipient_id,
        ),
        LoanNotification(
            type=NotificationType.TRUST_CANCELLATION,
            loan_id=loan_id,
            requester_address=defaulted.borrower,
            reason=TRUST_CANCELLATION_REASON,
            recipient_id=recipient_id,
        ),
    ]


def send_default_notifications(dispatcher, defaulted: DefaultedLoan, amount_requested: int | None = None,
                               recipient_id=None) -> list:
    return [dispatcher.dispatch(n) for n in build_default_notifications(defaulted, amount_requested, recipient_id)]


def build_grace_period_warning(check: GracePeriodLoan, recipient_id=None) -> LoanNotification:
    return LoanNotification(
        type=NotificationType.GRACE_PERIOD_WARNING,
        loan_id=str(check.loan_id),
        requester_address=check.borrower,
        unpaid_amount=format_token_amount(check.remaining_owed),
        days_remaining=format_days(check.grace_period_remaining),
        recipient_id=recipient_id,
    )


def send_grace_period_warning(dispatcher, check: GracePeriodLoan, recipient_id=None):
    return dispatcher.dispatch(build_grace_period_warning(check, recipient_id))


def notify_default(ledger, dispatcher, defaulted: DefaultedLoan, recipient_id=None) -> list:
    """Send both default notices, reading the original principal when the ledger allows."""
    try:
        amount_requested = ledger.get_loan(defaulted.loan_id).amount_requested
    except LedgerReadError as e:
        logger.warning("Could not read principal for loan %s, reporting total owed instead: %s", defaulted.loan_id, e)
        amount_requested = None
    return send_default_notifications(dispatcher, defaulted, amount_requested, recipient_id)
