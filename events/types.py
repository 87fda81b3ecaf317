# events/types.py
"""
Typed payloads for the lending market events that produce notifications.

Raw decoded args (web3 AttributeDict, or JSON from the webhook route) are
turned into one of these variants once, at the boundary.
"""
from dataclasses import dataclass, fields
from typing import Any, ClassVar

from errors import EventDecodeError
from loans.snapshot import _int, normalize_address


@dataclass(frozen=True)
class LendingEvent:
    name: ClassVar[str] = ""
    loan_id: int

    # arg name on the wire -> dataclass field
    _wire: ClassVar[dict[str, str]] = {}

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> "LendingEvent":
        values = {}
        for f in fields(cls):
            wire = cls._wire.get(f.name, f.name)
            if wire not in args:
                raise EventDecodeError(f"{cls.name} is missing argument {wire!r}")
            raw = args[wire]
            try:
                values[f.name] = normalize_address(raw) if f.type in ("str", str) else _int(raw)
            except (TypeError, ValueError) as e:
                raise EventDecodeError(f"{cls.name} argument {wire!r} is invalid: {e}") from e
        return cls(**values)


@dataclass(frozen=True)
class LoanRequestCreated(LendingEvent):
    name: ClassVar[str] = "LoanRequestCreated"
    _wire: ClassVar[dict[str, str]] = {"loan_id": "loanId", "term_duration": "termDuration"}
    borrower: str
    amount: int
    term_duration: int


@dataclass(frozen=True)
class Vouched(LendingEvent):
    name: ClassVar[str] = "Vouched"
    _wire: ClassVar[dict[str, str]] = {"loan_id": "loanId"}
    voucher: str
    amount: int


@dataclass(frozen=True)
class LoanConfirmed(LendingEvent):
    name: ClassVar[str] = "LoanConfirmed"
    _wire: ClassVar[dict[str, str]] = {"loan_id": "loanId"}
    borrower: str


@dataclass(frozen=True)
class Crowdfunded(LendingEvent):
    name: ClassVar[str] = "Crowdfunded"
    _wire: ClassVar[dict[str, str]] = {"loan_id": "loanId"}
    lender: str
    amount: int


@dataclass(frozen=True)
class LoanFunded(LendingEvent):
    name: ClassVar[str] = "LoanFunded"
    _wire: ClassVar[dict[str, str]] = {"loan_id": "loanId", "total_amount": "totalAmount"}
    total_amount: int


@dataclass(frozen=True)
class RepaymentMade(LendingEvent):
    name: ClassVar[str] = "RepaymentMade"
    _wire: ClassVar[dict[str, str]] = {"loan_id": "loanId", "total_repaid": "totalRepaid"}
    borrower: str
    principal: int
    interest: int
    total_repaid: int


@dataclass(frozen=True)
class LoanDefaulted(LendingEvent):
    name: ClassVar[str] = "LoanDefaulted"
    _wire: ClassVar[dict[str, str]] = {"loan_id": "loanId"}
    borrower: str


@dataclass(frozen=True)
class MembershipSuspended(LendingEvent):
    name: ClassVar[str] = "MembershipSuspended"
    _wire: ClassVar[dict[str, str]] = {"loan_id": "loanId"}
    borrower: str


EVENT_TYPES: dict[str, type[LendingEvent]] = {
    cls.name: cls
    for cls in (
        LoanRequestCreated,
        Vouched,
        LoanConfirmed,
        Crowdfunded,
        LoanFunded,
        RepaymentMade,
        LoanDefaulted,
        MembershipSuspended,
    )
}


def is_known_event(event_name: str) -> bool:
    return event_name in EVENT_TYPES


def parse_event(event_name: str, args: dict[str, Any]) -> LendingEvent:
    cls = EVENT_TYPES.get(event_name)
    if cls is None:
        raise EventDecodeError(f"Unknown event: {event_name}")
    return cls.from_args(dict(args))
