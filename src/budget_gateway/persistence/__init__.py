"""Persistence layer - local snapshot of institutions, users and metadata."""

from .state import (
    AppConfig,
    Associate,
    Auditor,
    Institution,
    LocalTransaction,
    State,
    verify_constraints,
)
from .store import LocalStore

__all__ = [
    "AppConfig",
    "Associate",
    "Auditor",
    "Institution",
    "LocalStore",
    "LocalTransaction",
    "State",
    "verify_constraints",
]
