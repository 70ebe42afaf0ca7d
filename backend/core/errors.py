"""
Error taxonomy for quota and analytics operations.

Running out of quota is not an error: it is reported as a normal
``ConsumeResult(allowed=False)``. Everything below is raised.
"""


class QuotaError(Exception):
    """Base exception for quota ledger and scheduled job failures."""

    pass


class ConfigurationError(QuotaError):
    """Unknown plan id or missing limits. Never defaults to unlimited."""

    pass


class UsageLedgerNotFound(QuotaError):
    """No current usage ledger entry exists for the user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No current usage ledger entry for user {user_id}")


class InvariantViolation(QuotaError):
    """A ledger entry is in a state that must never occur (e.g. negative counters).

    The entry is flagged for manual reconciliation and excluded from every
    automatic mutation until an operator repairs it.
    """

    def __init__(self, user_id: str, detail: str):
        self.user_id = user_id
        self.detail = detail
        super().__init__(f"Usage ledger invariant violated for user {user_id}: {detail}")


class TransientStoreError(QuotaError):
    """A retry-safe store failure (lost connection, lock timeout, serialization failure)."""

    pass
