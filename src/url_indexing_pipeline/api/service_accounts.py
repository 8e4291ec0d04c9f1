"""Service account registration routes scoped to a user."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from url_indexing_pipeline.api.dependencies import get_service_account_service
from url_indexing_pipeline.schemas import ServiceAccountCreate, ServiceAccountRead
from url_indexing_pipeline.services.service_account_service import (
    ServiceAccountConflictError,
    ServiceAccountService,
    ServiceAccountValidationError,
)

router = APIRouter(
    prefix="/api/users/{user_id}/service-accounts",
    tags=["service-accounts"],
)


@router.post("", response_model=ServiceAccountRead, status_code=status.HTTP_201_CREATED)
async def register_service_account(
    user_id: UUID,
    payload: ServiceAccountCreate,
    accounts: ServiceAccountService = Depends(get_service_account_service),
) -> ServiceAccountRead:
    try:
        account = await accounts.register_account(
            user_id,
            name=payload.name,
            credentials=payload.credentials,
            daily_quota_limit=payload.daily_quota_limit,
            minute_quota_limit=payload.minute_quota_limit,
        )
    except ServiceAccountValidationError as error:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(error),
        ) from error
    except ServiceAccountConflictError as error:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(error),
        ) from error

    return ServiceAccountRead.model_validate(account)


@router.get("", response_model=list[ServiceAccountRead])
async def list_service_accounts(
    user_id: UUID,
    accounts: ServiceAccountService = Depends(get_service_account_service),
) -> list[ServiceAccountRead]:
    return [
        ServiceAccountRead.model_validate(account)
        for account in await accounts.list_accounts(user_id)
    ]
