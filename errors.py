"""Error taxonomy for the lending reconciliation service.

"Not applicable" is deliberately absent: evaluators return ``None`` for loans
outside their window, it is a filtered-out result rather than a failure.
"""


class LendingServiceError(Exception):
    """Base exception for all service errors."""


class ConfigurationError(LendingServiceError):
    """Raised when configuration is invalid or missing."""


# ---------------- Ledger reads ----------------
class LedgerReadError(LendingServiceError):
    """A ledger query failed. Scans skip the loan and keep going."""


class LoanNotFoundError(LedgerReadError):
    """The ledger has no loan with the requested id."""

    def __init__(self, loan_id: int):
        super().__init__(f"Loan {loan_id} does not exist")
        self.loan_id = loan_id


# ---------------- Ledger writes ----------------
class LedgerWriteError(LendingServiceError):
    """A state-changing ledger call failed."""


class SignerNotConfiguredError(LedgerWriteError):
    """No service signer is configured for a mutating call."""


class LedgerWriteRejectedError(LedgerWriteError):
    """The ledger rejected a mutation (reverted or failed receipt)."""

    ALREADY_HANDLED = "already_handled"
    NOT_ELIGIBLE = "not_eligible"
    UNKNOWN = "unknown"

    def __init__(self, message: str, reason: str = UNKNOWN, transaction_hash: str | None = None):
        super().__init__(message)
        self.reason = reason
        self.transaction_hash = transaction_hash


# ---------------- Events ----------------
class EventDecodeError(LendingServiceError):
    """A raw log does not match any known lending market event."""


# ---------------- Notifications ----------------
class NotificationError(LendingServiceError):
    """Formatting or delivering a notification failed."""


class NotificationDeliveryError(NotificationError):
    """The messaging channel refused or failed to deliver a message."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
