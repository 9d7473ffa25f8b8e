"""Dashboard counters."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from billtracker.core.dependencies import get_account_service, get_service_number_service
from billtracker.schemas.records import StatsResponse
from billtracker.services.account_service import AccountService
from billtracker.services.service_number_service import ServiceNumberService
from billtracker.utils.responses import create_api_response

router = APIRouter()


@router.get("", summary="Account and service number counts", operation_id="get_stats")
async def get_stats(
    request: Request,
    account_service: Annotated[AccountService, Depends(get_account_service)],
    service_number_service: Annotated[ServiceNumberService, Depends(get_service_number_service)],
):
    stats = StatsResponse(
        total_accounts=await account_service.count_accounts(),
        total_service_numbers=await service_number_service.count_service_numbers(),
    )
    return create_api_response(stats, request=request)
