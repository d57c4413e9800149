"""Remote ledger access - backends and the resilient client."""

from .backend import InMemoryLedger, LedgerBackend
from .client import LedgerClient
from .http import HttpLedgerBackend
from .models import Receipt, RemoteTransaction, TransactionStatus

__all__ = [
    "HttpLedgerBackend",
    "InMemoryLedger",
    "LedgerBackend",
    "LedgerClient",
    "Receipt",
    "RemoteTransaction",
    "TransactionStatus",
]
