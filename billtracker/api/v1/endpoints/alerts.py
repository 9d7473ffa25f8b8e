"""Alert routes: listing and lifecycle actions."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request

from billtracker.api.errors import http_error
from billtracker.core.dependencies import get_alert_service
from billtracker.core.exceptions import AppError
from billtracker.schemas.records import AlertActionRequest, AlertResponse
from billtracker.services.alert_service import AlertService
from billtracker.utils.responses import create_api_response

router = APIRouter()

AlertServiceDep = Annotated[AlertService, Depends(get_alert_service)]


@router.get("", summary="List alerts", operation_id="list_alerts")
async def list_alerts(
    request: Request,
    alert_service: AlertServiceDep,
    alert_status: Optional[str] = Query(None, alias="status"),
    account_id: Optional[UUID] = Query(None, alias="accountId"),
):
    alerts = await alert_service.list_alerts(status=alert_status, account_id=account_id)
    return create_api_response([AlertResponse.model_validate(a) for a in alerts], request=request)


@router.post("/{alert_id}/acknowledge", summary="Acknowledge an alert", operation_id="acknowledge_alert")
async def acknowledge_alert(
    alert_id: UUID,
    request: Request,
    alert_service: AlertServiceDep,
    body: Optional[AlertActionRequest] = Body(None),
):
    try:
        alert = await alert_service.acknowledge(alert_id, by=body.by if body else None)
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(AlertResponse.model_validate(alert), message="Alert acknowledged", request=request)


@router.post("/{alert_id}/resolve", summary="Resolve an acknowledged alert", operation_id="resolve_alert")
async def resolve_alert(
    alert_id: UUID,
    request: Request,
    alert_service: AlertServiceDep,
    body: Optional[AlertActionRequest] = Body(None),
):
    try:
        alert = await alert_service.resolve(
            alert_id, by=body.by if body else None, notes=body.notes if body else None
        )
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(AlertResponse.model_validate(alert), message="Alert resolved", request=request)


@router.post("/{alert_id}/dismiss", summary="Dismiss an active alert", operation_id="dismiss_alert")
async def dismiss_alert(alert_id: UUID, request: Request, alert_service: AlertServiceDep):
    try:
        alert = await alert_service.dismiss(alert_id)
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(AlertResponse.model_validate(alert), message="Alert dismissed", request=request)
