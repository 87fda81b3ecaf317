# loans/scan.py
"""Fan-out/fan-in over loan ids 1..totalLoans with per-loan failure isolation."""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

from ledger_sdk.contracts import BlockRef

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ScanFailure:
    loan_id: int
    error: str

    def to_dict(self) -> dict:
        return {"loanId": str(self.loan_id), "error": self.error}


@dataclass
class ScanResult(Generic[T]):
    block: BlockRef
    scanned: int = 0
    items: list[T] = field(default_factory=list)
    failures: list[ScanFailure] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.items)


def scan_loans(
    ledger,
    check: Callable[..., T | None],
    include: Callable[[T], bool] | None = None,
    max_workers: int | None = None,
) -> ScanResult[T]:
    """
    Run ``check(ledger, loan_id, block=...)`` for every loan id, pinned to one block.
    - ``None`` results (not applicable) are dropped, as are results ``include`` rejects.
    - A loan whose check raises is recorded in ``failures``; the scan continues.
    - Items come back in ascending loan-id order regardless of completion order.
    Failing to read the loan count or the block itself is not isolated: it propagates.
    """
    block = ledger.get_latest_block()
    total = ledger.get_total_loan_count(block=block.number)
    result: ScanResult[T] = ScanResult(block=block, scanned=total)
    if total <= 0:
        return result

    workers = max(1, min(max_workers or getattr(getattr(ledger, "config", None), "scan_workers", 8), total))

    def _one(loan_id: int):
        try:
            return loan_id, check(ledger, loan_id, block=block), None
        except Exception as e:  # one bad read must not poison the batch
            logger.warning("Skipping loan %s during %s scan: %s", loan_id, getattr(check, "__name__", "loan"), e)
            return loan_id, None, str(e)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="loan-scan") as pool:
        outcomes = list(pool.map(_one, range(1, total + 1)))

    for loan_id, item, error in outcomes:  # pool.map preserves input order
        if error is not None:
            result.failures.append(ScanFailure(loan_id=loan_id, error=error))
        elif item is not None and (include is None or include(item)):
            result.items.append(item)
    return result
