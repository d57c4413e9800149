"""Workflow components: access policy, admission, review, reconciliation."""

from .access import Principal, Role, authorize
from .admission import AdmissionController, Priority, SpendingRequest
from .locks import KeyedLock
from .reconcile import Reconciler, TransactionView, merge
from .review import Decision, ReviewResult, ReviewStateMachine, next_status

__all__ = [
    "AdmissionController",
    "Decision",
    "KeyedLock",
    "Principal",
    "Priority",
    "Reconciler",
    "ReviewResult",
    "ReviewStateMachine",
    "Role",
    "SpendingRequest",
    "TransactionView",
    "authorize",
    "merge",
    "next_status",
]
