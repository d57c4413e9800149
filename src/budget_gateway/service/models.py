"""Pydantic models backing the budget gateway API.

Wire names are camelCase; Python attributes stay snake_case. Amounts travel
as decimal strings of ether so no precision is lost to JSON floats.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RegisterInstitutionRequest(ApiModel):
    name: str
    location: str
    auditor_password: str


class AuditorLoginRequest(ApiModel):
    institution_id: str
    password: str


class AssociateLoginRequest(ApiModel):
    """``username`` also accepts the associate's ``EMP####`` id."""

    institution_id: str
    username: str = Field(validation_alias=AliasChoices("username", "empId"))
    password: str


class CreateAssociateRequest(ApiModel):
    username: str
    password: str
    auditor_password: str


class DepositRequest(ApiModel):
    amount: Decimal


class CreateTransactionRequest(ApiModel):
    receiver: str
    amount: Decimal
    purpose: str
    comment: str = ""
    deadline: str | None = None
    priority: str = "medium"


class ReviewRequest(ApiModel):
    decision: str
    auditor_comment: str = ""


class ThemeRequest(ApiModel):
    theme: str


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ReceiptOut(ApiModel):
    operation: str
    receipt_id: str
    ledger_id: str | None = None
    block: int | None = None


class RegisterInstitutionResponse(ApiModel):
    institution_id: str
    auditor_id: str
    auditor_address: str
    remote_id: str
    receipt: ReceiptOut


class UserView(ApiModel):
    id: str
    role: str
    institution_id: str
    address: str
    username: str | None = None


class LoginResponse(ApiModel):
    token: str
    user: UserView


class AssociateOut(ApiModel):
    id: str
    username: str
    address: str
    created_at: str | None = None


class BalanceResponse(ApiModel):
    institution_id: str
    balance: str
    balance_wei: str


class DepositResponse(ApiModel):
    institution_id: str
    amount: str
    receipt: ReceiptOut


class TransactionCreatedResponse(ApiModel):
    tx_id: str
    receipt: ReceiptOut


class ReviewResponse(ApiModel):
    tx_id: str
    decision: str
    status: int
    status_label: str
    resumed: bool = False
    receipt: ReceiptOut | None = None


class TransactionOut(ApiModel):
    id: str
    creator: str
    receiver: str
    amount: str
    amount_wei: str
    purpose: str
    comment: str
    status: int
    status_label: str
    auditor_comment: str
    timestamp: int
    deadline: str | None = None
    priority: str | None = None
    review_tx_receipt: str | None = None
    review_pending: bool = False


class TransactionListResponse(ApiModel):
    transactions: list[TransactionOut] = Field(default_factory=list)


class InstitutionOut(ApiModel):
    id: str
    name: str
    location: str
    auditor_id: str
    remote_id: str
    created_at: str | None = None


class SummaryMetrics(ApiModel):
    total_transactions: int
    pending_transactions: int
    total_spent: str
    avg_transaction: str


class InstitutionSummary(ApiModel):
    institution: InstitutionOut
    balance: str
    associates: list[AssociateOut] = Field(default_factory=list)
    metrics: SummaryMetrics


class ThemeResponse(ApiModel):
    theme: str
    last_updated: str | None = None


__all__ = [
    "AssociateLoginRequest",
    "AssociateOut",
    "AuditorLoginRequest",
    "BalanceResponse",
    "CreateAssociateRequest",
    "CreateTransactionRequest",
    "DepositRequest",
    "DepositResponse",
    "InstitutionOut",
    "InstitutionSummary",
    "LoginResponse",
    "ReceiptOut",
    "RegisterInstitutionRequest",
    "RegisterInstitutionResponse",
    "ReviewRequest",
    "ReviewResponse",
    "SummaryMetrics",
    "ThemeRequest",
    "ThemeResponse",
    "TransactionCreatedResponse",
    "TransactionListResponse",
    "TransactionOut",
    "UserView",
]
