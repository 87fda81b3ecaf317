# loans/reads.py
"""Point-in-time ledger reads shared by the evaluators.

Each helper takes an optional ``block``; when omitted it pins to the current
ledger block so totalOwed and amountRepaid never come from different heights.
"""
from dataclasses import replace

from ledger_sdk.contracts import BlockRef
from loans.models import Loan
from loans.snapshot import remaining_owed


def pin_block(ledger, block: BlockRef | None) -> BlockRef:
    return block if block is not None else ledger.get_latest_block()


def read_position(ledger, loan_id: int, block: BlockRef) -> tuple[int, int, int]:
    """(totalOwed, amountRepaid, remainingOwed) from the ledger at ``block``."""
    total = ledger.get_total_owed(loan_id, block=block.number)
    repaid = ledger.get_amount_repaid(loan_id, block=block.number)
    return total, repaid, remaining_owed(total, repaid)


def read_loan_snapshot(ledger, loan_id: int, block: BlockRef | None = None) -> tuple[Loan, BlockRef]:
    """Loan with amountRepaid filled in, both read at the same block."""
    block = pin_block(ledger, block)
    loan = ledger.get_loan(loan_id, block=block.number)
    repaid = ledger.get_amount_repaid(loan_id, block=block.number)
    return replace(loan, amount_repaid=repaid), block
