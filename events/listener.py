# events/listener.py
"""
Event reconciliation: contract logs -> typed events -> the same notification
builders the scheduled evaluators use.
"""
import logging
from dataclasses import dataclass, field

from errors import EventDecodeError
from events.types import (
    Crowdfunded,
    LoanConfirmed,
    LoanDefaulted,
    LoanFunded,
    LoanRequestCreated,
    MembershipSuspended,
    RepaymentMade,
    Vouched,
    is_known_event,
    parse_event,
)
from loans.actions import TRUST_CANCELLATION_REASON
from loans.models import LoanState
from loans.reads import pin_block, read_position
from notifications.formatting import LoanNotification, NotificationType
from utils.formatting import format_interest_rate, format_term, format_token_amount

logger = logging.getLogger(__name__)

DEFAULT_CURSOR = "lending_market"


@dataclass
class EventOutcome:
    event_name: str
    loan_id: int | None = None
    notifications: list = field(default_factory=list)
    error: str | None = None
    skipped: bool = False

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "eventName": self.event_name,
            "loanId": None if self.loan_id is None else str(self.loan_id),
            "success": self.success,
            "skipped": self.skipped,
            "error": self.error,
            "notifications": [n.to_dict() for n in self.notifications],
        }


@dataclass
class ListenResult:
    from_block: int
    to_block: int | str
    fetched: int = 0
    undecodable: int = 0
    ignored: int = 0
    duplicates: int = 0
    outcomes: list[EventOutcome] = field(default_factory=list)
    # lowest block holding a log whose handler failed
    failed_block: int | None = None

    def note_failure(self, block_number: int) -> None:
        if self.failed_block is None or block_number < self.failed_block:
            self.failed_block = block_number

    def merge(self, other: "ListenResult") -> None:
        self.to_block = other.to_block
        self.fetched += other.fetched
        self.undecodable += other.undecodable
        self.ignored += other.ignored
        self.duplicates += other.duplicates
        self.outcomes.extend(other.outcomes)
        if other.failed_block is not None:
            self.note_failure(other.failed_block)

    def to_dict(self) -> dict:
        return {
            "fromBlock": str(self.from_block),
            "toBlock": str(self.to_block),
            "fetched": self.fetched,
            "processed": len(self.outcomes),
            "undecodable": self.undecodable,
            "ignored": self.ignored,
            "duplicates": self.duplicates,
            "results": [o.to_dict() for o in self.outcomes],
        }


class EventProcessor:
    def __init__(self, ledger, dispatcher, store=None):
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.store = store
        self._handlers = {
            LoanRequestCreated: self._on_loan_requested,
            Vouched: self._on_vouched,
            LoanConfirmed: self._on_loan_confirmed,
            Crowdfunded: self._on_crowdfunded,
            LoanFunded: self._on_loan_funded,
            RepaymentMade: self._on_repayment,
            LoanDefaulted: self._on_defaulted,
            MembershipSuspended: self._on_membership_suspended,
        }

    # ---------------- single event ----------------
    def process_event(self, event_name: str, args: dict, recipient_id=None) -> EventOutcome:
        """
        Route one event to its notification. Raises EventDecodeError when a
        known event has malformed args; handler failures are returned, not raised.
        """
        if not is_known_event(event_name):
            logger.warning("Unknown event: %s", event_name)
            return EventOutcome(event_name, skipped=True, error=f"Unknown event: {event_name}")

        event = parse_event(event_name, args)
        outcome = EventOutcome(event_name, loan_id=event.loan_id)
        try:
            notices = self._handlers[type(event)](event, recipient_id)
            outcome.notifications = [self.dispatcher.dispatch(n) for n in notices]
            outcome.skipped = not notices
        except Exception as e:
            logger.exception("Handling %s for loan %s failed", event_name, event.loan_id)
            outcome.error = str(e)
        return outcome

    # ---------------- block range ----------------
    def listen_to_events(self, from_block: int, to_block: int | str = "latest", recipient_id=None) -> ListenResult:
        """Process every decodable lending market log in [from_block, to_block].

        A failure to fetch the logs themselves propagates as LedgerReadError.
        """
        logs = self.ledger.get_event_logs(from_block, to_block)
        result = ListenResult(from_block=from_block, to_block=to_block, fetched=len(logs))

        for raw in logs:
            try:
                decoded = self.ledger.decode_event_log(raw)
            except EventDecodeError as e:
                logger.debug("Skipping undecodable log: %s", e)
                result.undecodable += 1
                continue

            if not is_known_event(decoded.event_name):
                logger.debug("No notification for %s", decoded.event_name)
                result.ignored += 1
                continue
            if self.store is not None and self.store.is_processed(decoded.transaction_hash, decoded.log_index):
                result.duplicates += 1
                continue

            try:
                outcome = self.process_event(decoded.event_name, decoded.args, recipient_id)
            except EventDecodeError as e:
                logger.warning("Could not parse %s log %s: %s", decoded.event_name, decoded.transaction_hash, e)
                result.undecodable += 1
                continue

            result.outcomes.append(outcome)
            if not outcome.success:
                result.note_failure(from_block if decoded.block_number is None else decoded.block_number)
            elif self.store is not None:
                self.store.mark_processed(decoded, outcome.loan_id)
        logger.info(
            "Processed %s event(s) from blocks %s..%s (%s fetched, %s undecodable, %s duplicate)",
            len(result.outcomes), from_block, to_block, result.fetched, result.undecodable, result.duplicates,
        )
        return result

    def poll(self, lookback_blocks: int, to_block: int | None = None, recipient_id=None,
             cursor: str = DEFAULT_CURSOR) -> ListenResult:
        """Resume from the stored cursor (or ``lookback_blocks`` back) and advance it.

        Logs are fetched in ranges of at most ``lookback_blocks`` blocks and the
        cursor is saved after each range. It stops just before the first block
        whose handler failed, so that log is fetched again on the next poll;
        logs already handled there are skipped as duplicates.
        """
        span = max(1, int(lookback_blocks))
        head = int(to_block) if to_block is not None else self.ledger.get_block_number()
        last = self.store.get_cursor(cursor) if self.store is not None else None
        from_block = last + 1 if last is not None else max(0, head - span)
        result = ListenResult(from_block=from_block, to_block=head)

        start = from_block
        while start <= head:
            end = min(head, start + span - 1)
            chunk = self.listen_to_events(start, end, recipient_id)
            result.merge(chunk)
            if chunk.failed_block is not None:
                if self.store is not None:
                    self.store.set_cursor(cursor, chunk.failed_block - 1)
                logger.warning("Event cursor %s held at block %s after a failed handler",
                               cursor, chunk.failed_block - 1)
                break
            if self.store is not None:
                self.store.set_cursor(cursor, end)
            start = end + 1
        return result

    # ---------------- handlers ----------------
    def _on_loan_requested(self, event: LoanRequestCreated, recipient_id):
        return [LoanNotification(
            type=NotificationType.LOAN_REQUEST,
            loan_id=str(event.loan_id),
            requester_address=event.borrower,
            amount=format_token_amount(event.amount),
            term=format_term(event.term_duration),
            recipient_id=recipient_id,
        )]

    def _on_vouched(self, event: Vouched, recipient_id):
        loan = self.ledger.get_loan(event.loan_id)
        return [LoanNotification(
            type=NotificationType.VOUCHING_ACCEPTED,
            loan_id=str(event.loan_id),
            requester_address=loan.borrower,
            voucher_address=event.voucher,
            recipient_id=recipient_id,
        )]

    def _on_loan_confirmed(self, event: LoanConfirmed, recipient_id):
        loan = self.ledger.get_loan(event.loan_id)
        return [LoanNotification(
            type=NotificationType.LOAN_CONFIRMED,
            loan_id=str(event.loan_id),
            requester_address=event.borrower,
            amount=format_token_amount(loan.amount_requested),
            interest_rate=format_interest_rate(loan.interest_rate),
            term=format_term(loan.term_duration),
            recipient_id=recipient_id,
        )]

    def _on_crowdfunded(self, event: Crowdfunded, recipient_id):
        loan = self.ledger.get_loan(event.loan_id)
        if loan.amount_funded < loan.amount_requested:
            return []
        return [LoanNotification(
            type=NotificationType.FUNDING_OBTAINED,
            loan_id=str(event.loan_id),
            requester_address=loan.borrower,
            amount=format_token_amount(loan.amount_requested),
            funded_amount=format_token_amount(loan.amount_funded),
            recipient_id=recipient_id,
        )]

    def _on_loan_funded(self, event: LoanFunded, recipient_id):
        loan = self.ledger.get_loan(event.loan_id)
        return [LoanNotification(
            type=NotificationType.LOAN_ACCEPTED,
            loan_id=str(event.loan_id),
            requester_address=loan.borrower,
            amount=format_token_amount(loan.amount_requested),
            interest_rate=format_interest_rate(loan.interest_rate),
            term=format_term(loan.term_duration),
            recipient_id=recipient_id,
        )]

    def _on_repayment(self, event: RepaymentMade, recipient_id):
        loan = self.ledger.get_loan(event.loan_id)
        if loan.state != LoanState.REPAID:
            return []
        return [LoanNotification(
            type=NotificationType.LOAN_REPAID,
            loan_id=str(event.loan_id),
            requester_address=event.borrower,
            amount=format_token_amount(event.total_repaid),
            recipient_id=recipient_id,
        )]

    def _on_defaulted(self, event: LoanDefaulted, recipient_id):
        block = pin_block(self.ledger, None)
        loan = self.ledger.get_loan(event.loan_id, block=block.number)
        _, _, remaining = read_position(self.ledger, event.loan_id, block)
        return [LoanNotification(
            type=NotificationType.LOAN_DEFAULT,
            loan_id=str(event.loan_id),
            requester_address=event.borrower,
            amount=format_token_amount(loan.amount_requested),
            unpaid_amount=format_token_amount(remaining),
            recipient_id=recipient_id,
        )]

    def _on_membership_suspended(self, event: MembershipSuspended, recipient_id):
        return [LoanNotification(
            type=NotificationType.TRUST_CANCELLATION,
            loan_id=str(event.loan_id),
            requester_address=event.borrower,
            reason=TRUST_CANCELLATION_REASON,
            recipient_id=recipient_id,
        )]
