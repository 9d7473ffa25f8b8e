"""Bill routes: upload, ingestion, review workflow and comparison."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse

from billtracker.api.errors import http_error, status_for_kind
from billtracker.core.dependencies import get_bill_service, get_ingestion_service
from billtracker.core.exceptions import AppError
from billtracker.schemas.ingestion import IngestionOutcome, UploadedFile
from billtracker.schemas.records import BillDetailResponse, BillResponse, LineItemResponse, LinkAccountRequest
from billtracker.services.bill_service import BillService
from billtracker.services.ingestion_service import IngestionService
from billtracker.utils.logging import get_logger
from billtracker.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()

BillServiceDep = Annotated[BillService, Depends(get_bill_service)]
IngestionServiceDep = Annotated[IngestionService, Depends(get_ingestion_service)]


async def _read_upload(file: UploadFile) -> UploadedFile:
    return UploadedFile(file_name=file.filename or "", content=await file.read())


@router.post(
    "/pre-scan",
    summary="Quick scan an uploaded bill and check for duplicates",
    operation_id="pre_scan_bill",
)
async def pre_scan_bill(
    request: Request,
    ingestion_service: IngestionServiceDep,
    file: UploadFile = File(..., description="Bill PDF"),
):
    """Read invoice and account numbers without full extraction.

    Duplicates are reported in the payload, not as an error status.
    """
    result = await ingestion_service.pre_scan(await _read_upload(file))
    if result.error:
        return JSONResponse(
            status_code=status_for_kind(result.error.kind),
            content=create_api_response(result, message=result.error.message, status=False, request=request),
        )
    message = result.duplicate.message if result.duplicate.is_duplicate else "Pre-scan completed"
    return create_api_response(result, message=message, request=request)


@router.post(
    "/ingest",
    status_code=status.HTTP_201_CREATED,
    summary="Ingest an uploaded bill",
    operation_id="ingest_bill",
)
async def ingest_bill(
    request: Request,
    ingestion_service: IngestionServiceDep,
    file: UploadFile = File(..., description="Bill PDF"),
    skip_duplicate_check: bool = Form(False),
):
    """Run the full ingestion pipeline for one file.

    Responds 409 with the matched bill when the upload is a duplicate.
    """
    upload = await _read_upload(file)
    try:
        result = await ingestion_service.ingest(upload, skip_duplicate_check=skip_duplicate_check)
    except AppError as e:
        raise http_error(e, request)

    if result.outcome == IngestionOutcome.DUPLICATE:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=create_api_response(result, message=result.duplicate.message, status=False, request=request),
        )
    if result.error:
        return JSONResponse(
            status_code=status_for_kind(result.error.kind),
            content=create_api_response(result, message=result.error.message, status=False, request=request),
        )
    return create_api_response(result, message=f"Bill {result.invoice_number} ingested", request=request)


@router.get("", summary="List bills", operation_id="list_bills")
async def list_bills(
    request: Request,
    bill_service: BillServiceDep,
    account_id: Optional[UUID] = Query(None, alias="accountId"),
    processing_status: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    bills = await bill_service.list_bills(account_id=account_id, status=processing_status, skip=skip, limit=limit)
    return create_api_response([BillResponse.model_validate(bill) for bill in bills], request=request)


@router.get("/review", summary="List bills requiring review", operation_id="list_bills_for_review")
async def list_bills_for_review(request: Request, bill_service: BillServiceDep):
    bills = await bill_service.get_bills_requiring_review()
    return create_api_response([BillResponse.model_validate(bill) for bill in bills], request=request)


@router.get("/{bill_id}", summary="Get a bill with its line items", operation_id="get_bill")
async def get_bill(bill_id: UUID, request: Request, bill_service: BillServiceDep):
    try:
        bill = await bill_service.get_bill(bill_id)
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(BillDetailResponse.model_validate(bill), request=request)


@router.get("/{bill_id}/line-items", summary="List line items of a bill", operation_id="get_bill_line_items")
async def get_bill_line_items(bill_id: UUID, request: Request, bill_service: BillServiceDep):
    try:
        items = await bill_service.get_line_items(bill_id)
    except AppError as e:
        raise http_error(e, request)
    return create_api_response([LineItemResponse.model_validate(item) for item in items], request=request)


@router.get("/{bill_id}/compare", summary="Compare a bill with a previous one", operation_id="compare_bill")
async def compare_bill(
    bill_id: UUID,
    request: Request,
    bill_service: BillServiceDep,
    previous_bill_id: Optional[UUID] = Query(None, alias="previousBillId"),
):
    try:
        comparison = await bill_service.compare_bills(bill_id, previous_bill_id)
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(comparison, request=request)


@router.post("/{bill_id}/verify", summary="Mark a bill as verified", operation_id="verify_bill")
async def verify_bill(bill_id: UUID, request: Request, bill_service: BillServiceDep):
    try:
        bill = await bill_service.verify_bill(bill_id)
    except AppError as e:
        raise http_error(e, request)
    return create_api_response(BillResponse.model_validate(bill), message="Bill verified", request=request)


@router.post("/{bill_id}/link-account", summary="Link a bill to an account", operation_id="link_bill_account")
async def link_bill_account(
    bill_id: UUID,
    body: LinkAccountRequest,
    request: Request,
    bill_service: BillServiceDep,
):
    try:
        bill = await bill_service.link_bill_to_account(bill_id, body.account_id)
    except AppError as e:
        raise http_error(e, request)
    LOGGER.info("Bill linked to account", extra={"bill_id": str(bill_id), "account_id": str(body.account_id)})
    return create_api_response(BillResponse.model_validate(bill), message="Bill linked to account", request=request)
