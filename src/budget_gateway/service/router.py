"""FastAPI router for the budget gateway.

Implements the HTTP surface over ``BudgetService``:
- Registration and login (/institutions/register, /auth/*)
- Institution administration (/institutions/{id}/*)
- Spending requests and reviews (/transactions/*)
- Process configuration (/config/theme)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Response, status

from ..workflow.access import Principal, Role
from .auth import current_principal, require_caller
from .models import (
    AssociateLoginRequest,
    AssociateOut,
    AuditorLoginRequest,
    BalanceResponse,
    CreateAssociateRequest,
    CreateTransactionRequest,
    DepositRequest,
    DepositResponse,
    InstitutionSummary,
    LoginResponse,
    RegisterInstitutionRequest,
    RegisterInstitutionResponse,
    ReviewRequest,
    ReviewResponse,
    ThemeRequest,
    ThemeResponse,
    TransactionCreatedResponse,
    TransactionListResponse,
)

if TYPE_CHECKING:
    from .core import BudgetService

Caller = Annotated[Principal | None, Depends(current_principal)]

# Access is checked before the body is validated
ANY_CALLER = [Depends(require_caller())]
AUDITOR_ONLY = [Depends(require_caller(Role.AUDITOR))]
ASSOCIATE_ONLY = [Depends(require_caller(Role.ASSOCIATE))]


def build_router(service: BudgetService) -> APIRouter:
    """Build the gateway API router.

    Args:
        service: The BudgetService instance

    Returns:
        Configured APIRouter
    """
    router = APIRouter()

    # -----------------------------------------------------------------------
    # Registration and login
    # -----------------------------------------------------------------------

    @router.post(
        "/institutions/register",
        response_model=RegisterInstitutionResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def register_institution(
        request: RegisterInstitutionRequest,
    ) -> RegisterInstitutionResponse:
        return await service.register_institution(
            request.name, request.location, request.auditor_password
        )

    @router.post("/auth/login-auditor", response_model=LoginResponse)
    async def login_auditor(request: AuditorLoginRequest) -> LoginResponse:
        return await service.login_auditor(request.institution_id, request.password)

    @router.post("/auth/login-associate", response_model=LoginResponse)
    async def login_associate(request: AssociateLoginRequest) -> LoginResponse:
        return await service.login_associate(
            request.institution_id, request.username, request.password
        )

    # -----------------------------------------------------------------------
    # Institutions
    # -----------------------------------------------------------------------

    @router.get(
        "/institutions/{institution_id}/summary",
        response_model=InstitutionSummary,
        dependencies=ANY_CALLER,
    )
    async def institution_summary(institution_id: str, caller: Caller) -> InstitutionSummary:
        return await service.institution_summary(caller, institution_id)

    @router.get(
        "/institutions/{institution_id}/balance",
        response_model=BalanceResponse,
        dependencies=ANY_CALLER,
    )
    async def get_balance(institution_id: str, caller: Caller) -> BalanceResponse:
        return await service.get_balance(caller, institution_id)

    @router.get(
        "/institutions/{institution_id}/history",
        response_model=TransactionListResponse,
        dependencies=ANY_CALLER,
    )
    async def institution_history(
        institution_id: str, caller: Caller
    ) -> TransactionListResponse:
        return await service.list_transactions(caller, institution_id)

    @router.post(
        "/institutions/{institution_id}/deposit",
        response_model=DepositResponse,
        dependencies=AUDITOR_ONLY,
    )
    async def deposit(
        institution_id: str, request: DepositRequest, caller: Caller
    ) -> DepositResponse:
        return await service.deposit(caller, institution_id, request.amount)

    @router.post(
        "/institutions/{institution_id}/associates",
        response_model=AssociateOut,
        status_code=status.HTTP_201_CREATED,
        dependencies=AUDITOR_ONLY,
    )
    async def create_associate(
        institution_id: str, request: CreateAssociateRequest, caller: Caller
    ) -> AssociateOut:
        return await service.create_associate(
            caller,
            institution_id,
            request.username,
            request.password,
            request.auditor_password,
        )

    @router.delete(
        "/institutions/{institution_id}/associates/{associate_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        dependencies=AUDITOR_ONLY,
    )
    async def delete_associate(
        institution_id: str, associate_id: str, caller: Caller
    ) -> Response:
        await service.delete_associate(caller, institution_id, associate_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # -----------------------------------------------------------------------
    # Transactions
    # -----------------------------------------------------------------------

    @router.post(
        "/transactions",
        response_model=TransactionCreatedResponse,
        status_code=status.HTTP_201_CREATED,
        dependencies=ASSOCIATE_ONLY,
    )
    async def create_transaction(
        request: CreateTransactionRequest, caller: Caller
    ) -> TransactionCreatedResponse:
        return await service.create_transaction(
            caller,
            request.receiver,
            request.amount,
            request.purpose,
            request.comment,
            request.deadline,
            request.priority,
        )

    @router.get(
        "/transactions", response_model=TransactionListResponse, dependencies=ANY_CALLER
    )
    async def list_transactions(caller: Caller) -> TransactionListResponse:
        return await service.list_transactions(caller)

    @router.post(
        "/transactions/{tx_id}/review",
        response_model=ReviewResponse,
        dependencies=AUDITOR_ONLY,
    )
    async def review_transaction(
        tx_id: str, request: ReviewRequest, caller: Caller
    ) -> ReviewResponse:
        return await service.review_transaction(
            caller, tx_id, request.decision, request.auditor_comment
        )

    # -----------------------------------------------------------------------
    # Configuration
    # -----------------------------------------------------------------------

    @router.get("/config/theme", response_model=ThemeResponse)
    def get_theme() -> ThemeResponse:
        return service.get_theme()

    @router.post(
        "/config/theme", response_model=ThemeResponse, dependencies=AUDITOR_ONLY
    )
    async def set_theme(request: ThemeRequest, caller: Caller) -> ThemeResponse:
        return await service.set_theme(caller, request.theme)

    return router


__all__ = ["build_router"]
