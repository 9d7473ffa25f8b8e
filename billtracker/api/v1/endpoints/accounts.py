"""Service account routes."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status

from billtracker.api.errors import http_error
from billtracker.core.dependencies import get_account_service
from billtracker.core.exceptions import AppError
from billtracker.schemas.records import AccountCreate, AccountResponse, AccountUpdate
from billtracker.services.account_service import AccountService
from billtracker.utils.responses import create_api_response

router = APIRouter()

AccountServiceDep = Annotated[AccountService, Depends(get_account_service)]


@router.get("", summary="List accounts", operation_id="list_accounts")
async def list_accounts(
    request: Request,
    account_service: AccountServiceDep,
    active_only: bool = Query(False, alias="activeOnly"),
):
    accounts = await account_service.list_accounts(active_only=active_only)
    return create_api_response([AccountResponse.model_validate(a) for a in accounts], request=request)


@router.get("/recent", summary="Accounts registered recently", operation_id="list_recent_accounts")
async def list_recent_accounts(
    request: Request,
    account_service: AccountServiceDep,
    hours: int = Query(24, ge=1, le=24 * 365),
):
    accounts = await account_service.get_recently_added(hours)
    return create_api_response([AccountResponse.model_validate(a) for a in accounts], request=request)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Register an account",
    operation_id="create_account",
)
async def create_account(body: AccountCreate, request: Request, account_service: AccountServiceDep):
    try:
        account = await account_service.create_account(body)
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(AccountResponse.model_validate(account), message="Account created", request=request)


@router.patch("/{account_id}", summary="Update an account", operation_id="update_account")
async def update_account(
    account_id: UUID,
    body: AccountUpdate,
    request: Request,
    account_service: AccountServiceDep,
):
    try:
        account = await account_service.update_account(account_id, body)
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(AccountResponse.model_validate(account), message="Account updated", request=request)


@router.get(
    "/{account_id}/monthly-totals",
    summary="Monthly bill totals for a year",
    operation_id="get_account_monthly_totals",
)
async def get_account_monthly_totals(
    account_id: UUID,
    request: Request,
    account_service: AccountServiceDep,
    year: Optional[int] = Query(None, ge=2000, le=2100),
):
    try:
        await account_service.get_account(account_id)
        totals = await account_service.get_monthly_totals(account_id, year)
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(totals, request=request)
