"""Service number routes."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from billtracker.api.errors import http_error
from billtracker.core.dependencies import get_monthly_charge_service, get_service_number_service
from billtracker.core.exceptions import AppError
from billtracker.schemas.records import ServiceNumberResponse, ServiceNumberUpdate
from billtracker.services.monthly_charge_service import MonthlyChargeService
from billtracker.services.service_number_service import ServiceNumberService
from billtracker.utils.responses import create_api_response

router = APIRouter()

ServiceNumberServiceDep = Annotated[ServiceNumberService, Depends(get_service_number_service)]
MonthlyChargeServiceDep = Annotated[MonthlyChargeService, Depends(get_monthly_charge_service)]


@router.get("", summary="Search service numbers", operation_id="list_service_numbers")
async def list_service_numbers(
    request: Request,
    service_number_service: ServiceNumberServiceDep,
    account_id: Optional[UUID] = Query(None, alias="accountId"),
    service_number: Optional[str] = Query(None, alias="serviceNumber"),
    package_name: Optional[str] = Query(None, alias="packageName"),
    division_name: Optional[str] = Query(None, alias="divisionName"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
):
    records = await service_number_service.list_service_numbers(
        account_id=account_id,
        service_number=service_number,
        package_name=package_name,
        division_name=division_name,
        is_active=is_active,
    )
    return create_api_response([ServiceNumberResponse.model_validate(r) for r in records], request=request)


@router.get("/recent", summary="Service numbers first seen recently", operation_id="list_recent_service_numbers")
async def list_recent_service_numbers(
    request: Request,
    service_number_service: ServiceNumberServiceDep,
    hours: int = Query(24, ge=1, le=24 * 365),
):
    records = await service_number_service.get_recently_added(hours)
    return create_api_response([ServiceNumberResponse.model_validate(r) for r in records], request=request)


@router.get(
    "/{service_number}/monthly-charges",
    summary="Charge history of a service number",
    operation_id="get_service_number_monthly_charges",
)
async def get_service_number_monthly_charges(
    service_number: str,
    request: Request,
    monthly_charge_service: MonthlyChargeServiceDep,
    account_id: Optional[UUID] = Query(None, alias="accountId"),
):
    history = await monthly_charge_service.get_history(service_number, account_id)
    totals = await monthly_charge_service.get_totals(service_number, account_id)
    return create_api_response({"charges": history, "totals": totals}, request=request)


@router.patch("/{service_number_id}", summary="Update a service number", operation_id="update_service_number")
async def update_service_number(
    service_number_id: UUID,
    body: ServiceNumberUpdate,
    request: Request,
    service_number_service: ServiceNumberServiceDep,
):
    try:
        record = await service_number_service.update_service_number(
            service_number_id, **body.model_dump(exclude_unset=True, by_alias=False)
        )
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(
        ServiceNumberResponse.model_validate(record), message="Service number updated", request=request
    )
