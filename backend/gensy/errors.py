"""Error taxonomy shared by the ledger, the lifecycle tracker and the poller."""

from typing import Optional


class LedgerError(Exception):
    """Base class for failures raised by the ledger store."""


class AccountNotFoundError(LedgerError):
    def __init__(self, user_id: str):
        super().__init__(f"No credit account for user {user_id}")
        self.user_id = user_id


class InsufficientBalanceError(LedgerError):
    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient balance: required {required}, available {available}")
        self.required = required
        self.available = available


class LedgerConsistencyError(LedgerError):
    """A write was rejected by a ledger constraint."""


class DuplicateTransactionError(LedgerConsistencyError):
    """The generation already has a charge (or refund) recorded."""


class InsufficientCreditsError(Exception):
    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient credits. Required: {required}, Available: {available}")
        self.required = required
        self.available = available


class LedgerUnavailableError(Exception):
    """The ledger could not be reached; the operation may be retried."""


class GenerationNotFoundError(Exception):
    def __init__(self, generation_id):
        super().__init__(f"Generation {generation_id} not found")
        self.generation_id = generation_id


class InvalidStateError(Exception):
    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class ProviderError(Exception):
    pass


class ProviderTransientError(ProviderError):
    """Network failure or unexpected response; the job may still be running."""


class ProviderFatalError(ProviderError):
    """The provider explicitly reported that the job failed."""

    def __init__(self, error_code: str, message: str, raw_response: Optional[dict] = None):
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.raw_response = raw_response
