from gensy.services.ledger import ledger_store, LedgerStore
from gensy.services.credits import credit_service, CreditService
from gensy.services.lifecycle import generation_lifecycle, GenerationLifecycle
from gensy.services.poller import status_poller, StatusPoller
from gensy.services.auth import auth_service, AuthService

__all__ = [
    "ledger_store", "LedgerStore",
    "credit_service", "CreditService",
    "generation_lifecycle", "GenerationLifecycle",
    "status_poller", "StatusPoller",
    "auth_service", "AuthService",
]
