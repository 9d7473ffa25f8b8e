"""Ingestion orchestrator.

Drives one uploaded bill through quick scan, duplicate detection, full
extraction, account resolution, persistence and post-processing. Every
state change is written to the ``ingestion_jobs`` row through its own
short session, so job status stays readable while the pipeline runs.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billtracker.core.cancellation import CancellationToken
from billtracker.core.config import settings
from billtracker.core.database import async_session_maker
from billtracker.core.exceptions import (
    AppError,
    DatabaseError,
    InvalidStateTransition,
    PipelineCancelled,
    PostProcessingError,
    ValidationError,
)
from billtracker.database.models import Bill
from billtracker.repositories.ingestion_job_repository import IngestionJobRepository
from billtracker.schemas.extraction import BillExtractionResult
from billtracker.schemas.ingestion import (
    DuplicateCheck,
    ErrorInfo,
    IngestionOutcome,
    IngestionResult,
    PipelineState,
    PreScanResult,
    StoredFile,
    UploadedFile,
)
from billtracker.services.account_service import AccountService
from billtracker.services.alert_service import AlertService
from billtracker.services.base_service import BaseService
from billtracker.services.bill_service import BillService
from billtracker.services.duplicate_detector import DuplicateDetector
from billtracker.services.extraction.bill_extractor import BillExtractor
from billtracker.services.extraction.quick_scan import QuickScanner
from billtracker.services.extraction.validator import check_charge_consistency, validate_extraction
from billtracker.services.monthly_charge_service import MonthlyChargeService
from billtracker.services.pdf.rasterizer import PdfRasterizer, full_scan_options
from billtracker.services.pdf.validation import validate_pdf_upload
from billtracker.services.service_number_service import ServiceNumberService
from billtracker.services.storage_service import StorageService
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

S = PipelineState

ALLOWED_TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    S.UPLOADED: frozenset({S.QUICK_SCANNED, S.VALIDATING, S.FAILED, S.CANCELLED}),
    S.QUICK_SCANNED: frozenset({S.DUPLICATE_PENDING, S.VALIDATING, S.FAILED, S.CANCELLED}),
    S.DUPLICATE_PENDING: frozenset(),
    S.VALIDATING: frozenset({S.EXTRACTED, S.FAILED, S.CANCELLED}),
    S.EXTRACTED: frozenset({S.DUPLICATE_PENDING, S.ACCOUNT_RESOLVED, S.FAILED, S.CANCELLED}),
    S.ACCOUNT_RESOLVED: frozenset({S.PERSISTED, S.FAILED, S.CANCELLED}),
    S.PERSISTED: frozenset({S.POST_PROCESSED, S.FAILED, S.CANCELLED}),
    S.POST_PROCESSED: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if not targets)


class JobTracker:
    """Current state of one ingestion job, persisted on every move."""

    def __init__(self, session_factory: async_sessionmaker, job_id: UUID):
        self.session_factory = session_factory
        self.job_id = job_id
        self.state = PipelineState.UPLOADED

    async def move(self, target: PipelineState, **fields: Any) -> None:
        """Transition the job, writing the new state and ``fields``.

        Raises:
            InvalidStateTransition: If the table does not allow the move
            DatabaseError: If the job row cannot be written
        """
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(
                f"Ingestion job cannot move from {self.state.value} to {target.value}"
            )
        if target in TERMINAL_STATES:
            fields.setdefault("completed_at", datetime.now(timezone.utc))
        try:
            async with self.session_factory() as session:
                await IngestionJobRepository(session).set_state(self.job_id, target.value, **fields)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to update ingestion job {self.job_id}: {e}", original_error=e)

        LOGGER.info(
            f"Ingestion job {self.state.value} -> {target.value}",
            extra={"job_id": str(self.job_id)}
        )
        self.state = target


class IngestionService(BaseService):
    """Runs uploaded bills through the ingestion pipeline.

    Collaborators are injectable; the defaults use configured storage,
    PyMuPDF rendering and the Gemini extractor.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        storage: Optional[StorageService] = None,
        rasterizer: Optional[PdfRasterizer] = None,
        extractor: Optional[BillExtractor] = None,
        scanner: Optional[QuickScanner] = None,
        cancel_poll_interval: Optional[float] = None,
    ):
        super().__init__()
        self.session_factory = session_factory or async_session_maker
        self.storage = storage or StorageService()
        self.rasterizer = rasterizer or PdfRasterizer()
        self.extractor = extractor or BillExtractor()
        self.scanner = scanner or QuickScanner(self.extractor, self.rasterizer)
        self.cancel_poll_interval = (
            cancel_poll_interval if cancel_poll_interval is not None
            else settings.pipeline.cancel_poll_interval
        )

    async def ingest(
        self,
        upload: UploadedFile,
        skip_duplicate_check: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> IngestionResult:
        """Ingest one bill end to end.

        Args:
            upload: File name and bytes
            skip_duplicate_check: Skip quick scan and both duplicate phases
            token: Cancellation token; a fresh one is used when None

        Returns:
            IngestionResult; failures are reported through ``error`` and
            ``outcome``, never raised
        """
        return await self.execute(upload, skip_duplicate_check=skip_duplicate_check, token=token)

    def validate(self, upload: UploadedFile, *args, **kwargs):
        if not isinstance(upload, UploadedFile):
            raise ValidationError("upload must be an UploadedFile", field="file")

    async def run(
        self,
        upload: UploadedFile,
        skip_duplicate_check: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> IngestionResult:
        token = token or CancellationToken()
        job = await self._start_job(upload.file_name, skip_duplicate_check)
        result = IngestionResult(job_id=job.job_id, outcome=IngestionOutcome.COMPLETED, state=job.state)

        LOGGER.info(
            f"Starting ingestion of {upload.file_name}",
            extra={"job_id": str(job.job_id), "skip_duplicate_check": skip_duplicate_check}
        )
        watcher = self._watch(job.job_id, token)
        try:
            await self._ingest(upload, skip_duplicate_check, token, job, result)
        except PipelineCancelled as e:
            await self._finish_cancelled(job, result, e)
        except AppError as e:
            await self._finish_failed(job, result, e)
        except asyncio.CancelledError:
            result.error = ErrorInfo(kind=PipelineCancelled.kind, message="Ingestion task cancelled")
            await self._record_terminal(job, PipelineState.CANCELLED, result)
            raise
        except Exception as e:
            LOGGER.error(
                f"Unexpected ingestion failure: {str(e)}",
                exc_info=True,
                extra={"job_id": str(job.job_id)}
            )
            await self._finish_failed(job, result, AppError(f"Unexpected error: {e}", original_error=e))
        finally:
            watcher.cancel()

        result.state = job.state
        return result

    async def pre_scan(self, upload: UploadedFile, token: Optional[CancellationToken] = None) -> PreScanResult:
        """Quick scan plus the first duplicate phase, without full extraction.

        Returns:
            PreScanResult; the job halts in ``duplicate_pending`` when a
            duplicate is found, else rests in ``quick_scanned``
        """
        token = token or CancellationToken()
        job = await self._start_job(upload.file_name, skip_duplicate_check=False)
        result = PreScanResult(job_id=job.job_id, state=job.state)
        watcher = self._watch(job.job_id, token)
        try:
            _, stored = await self._admit(upload, token)
            result.file_identity = stored.identity

            scan = await self.scanner.scan(stored.path, token)
            result.scan = scan
            await job.move(PipelineState.QUICK_SCANNED, file_hash=stored.identity, file_path=stored.path)

            try:
                async with self.session_factory() as session:
                    result.duplicate = await DuplicateDetector(session).check_pre_scan(
                        scan.invoice_number, stored.identity, upload.file_name
                    )
                    if scan.account_number:
                        result.account_exists = await AccountService(session).account_exists(
                            scan.account_number
                        )
            except SQLAlchemyError as e:
                raise DatabaseError(f"Pre-scan lookup failed: {e}", original_error=e)

            if result.duplicate.is_duplicate:
                await job.move(
                    PipelineState.DUPLICATE_PENDING,
                    result=result.model_dump(mode="json", by_alias=True),
                )
        except PipelineCancelled as e:
            result.error = ErrorInfo(kind=e.kind, message=e.message)
            await self._record_terminal(job, PipelineState.CANCELLED, result)
        except AppError as e:
            LOGGER.warning(f"Pre-scan failed: {e.message}", extra={"job_id": str(job.job_id)})
            result.error = ErrorInfo(kind=e.kind, message=e.message)
            await self._record_terminal(job, PipelineState.FAILED, result)
        except asyncio.CancelledError:
            result.error = ErrorInfo(kind=PipelineCancelled.kind, message="Pre-scan task cancelled")
            await self._record_terminal(job, PipelineState.CANCELLED, result)
            raise
        except Exception as e:
            LOGGER.error(
                f"Unexpected pre-scan failure: {str(e)}",
                exc_info=True,
                extra={"job_id": str(job.job_id)}
            )
            result.error = ErrorInfo(kind=AppError.kind, message=f"Unexpected error: {e}")
            await self._record_terminal(job, PipelineState.FAILED, result)
        finally:
            watcher.cancel()

        result.state = job.state
        return result

    async def _start_job(self, file_name: str, skip_duplicate_check: bool) -> JobTracker:
        try:
            async with self.session_factory() as session:
                job = await IngestionJobRepository(session).create_job(
                    file_name=file_name, skip_duplicate_check=skip_duplicate_check
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to create ingestion job: {e}", original_error=e)
        return JobTracker(self.session_factory, job.id)

    def _watch(self, job_id: UUID, token: CancellationToken) -> asyncio.Task:
        async def poll() -> bool:
            async with self.session_factory() as session:
                return await IngestionJobRepository(session).is_cancel_requested(job_id)

        return asyncio.create_task(token.watch(poll, self.cancel_poll_interval))

    async def _admit(self, upload: UploadedFile, token: CancellationToken) -> Tuple[int, StoredFile]:
        """Validate the upload as a PDF and place it in storage."""
        token.raise_if_cancelled()
        page_count = await token.run(
            asyncio.to_thread(validate_pdf_upload, upload.file_name, upload.content)
        )
        token.raise_if_cancelled()
        stored = await token.run(self.storage.store(upload.content, upload.file_name))
        return page_count, stored

    async def _ingest(
        self,
        upload: UploadedFile,
        skip_duplicate_check: bool,
        token: CancellationToken,
        job: JobTracker,
        result: IngestionResult,
    ) -> None:
        page_count, stored = await self._admit(upload, token)
        result.page_count = page_count
        file_fields = {"file_hash": stored.identity, "file_path": stored.path}

        if not skip_duplicate_check:
            scan = await self.scanner.scan(stored.path, token)
            await job.move(PipelineState.QUICK_SCANNED, **file_fields)
            file_fields = {}
            async with self.session_factory() as session:
                duplicate = await DuplicateDetector(session).check_pre_scan(
                    scan.invoice_number, stored.identity, upload.file_name
                )
            if duplicate.is_duplicate:
                await self._finish_duplicate(job, result, duplicate)
                return

        # No session is held open across rendering and the model call
        token.raise_if_cancelled()
        await job.move(PipelineState.VALIDATING, **file_fields)
        images = await token.run(self.rasterizer.render_pages(stored.path, full_scan_options()))
        token.raise_if_cancelled()
        raw = await token.run(self.extractor.extract_bill(images))
        extraction = validate_extraction(raw)
        result.invoice_number = extraction.invoice_number
        await job.move(PipelineState.EXTRACTED)

        async with self.session_factory() as session:
            if not skip_duplicate_check:
                duplicate = await DuplicateDetector(session).check_full(
                    extraction.invoice_number,
                    stored.identity,
                    upload.file_name,
                    extraction.account_number,
                    extraction.billing_period_start,
                    extraction.billing_period_end,
                )
                if duplicate.is_duplicate:
                    await self._finish_duplicate(job, result, duplicate)
                    return

            token.raise_if_cancelled()
            resolution = await AccountService(session).resolve(extraction.account_number)
            account = resolution.account
            result.account_id = account.id
            result.account_auto_registered = resolution.auto_registered
            await job.move(PipelineState.ACCOUNT_RESOLVED)

            requires_review = self._requires_review(extraction, resolution.auto_registered)
            token.raise_if_cancelled()
            bill = await BillService(session).create_bill_from_extraction(
                extraction,
                file_name=upload.file_name,
                file_path=stored.path,
                file_hash=stored.identity,
                file_size_bytes=stored.size_bytes,
                account_id=account.id,
                requires_review=requires_review,
                raw_payload=raw,
            )
            result.bill_id = bill.id
            result.requires_review = bill.requires_review
            await job.move(PipelineState.PERSISTED, bill_id=bill.id)

            await self._post_process(session, bill, account.id, token, result)
            await job.move(PipelineState.POST_PROCESSED)

        if result.warnings:
            result.outcome = IngestionOutcome.COMPLETED_WITH_WARNINGS
        result.state = PipelineState.COMPLETED
        await job.move(PipelineState.COMPLETED, result=result.model_dump(mode="json", by_alias=True))
        LOGGER.info(
            f"Ingested bill {result.invoice_number}",
            extra={"job_id": str(job.job_id), "bill_id": str(result.bill_id), "outcome": result.outcome.value}
        )

    @staticmethod
    def _requires_review(extraction: BillExtractionResult, auto_registered: bool) -> bool:
        consistency = check_charge_consistency(extraction)
        if not consistency.consistent:
            LOGGER.warning(
                f"Line items differ from bill charges by {consistency.difference} "
                f"(allowed {consistency.tolerance}); flagging for review",
                extra={"invoice_number": extraction.invoice_number}
            )
            return True
        return auto_registered and settings.pipeline.auto_registered_requires_review

    async def _post_process(
        self,
        session: AsyncSession,
        bill: Bill,
        account_id: UUID,
        token: CancellationToken,
        result: IngestionResult,
    ) -> None:
        """Run service number, charge and alert steps; failures become warnings."""
        service_numbers = ServiceNumberService(session)
        bills = BillService(session)

        async def detect_service_numbers() -> None:
            line_items = await bills.get_line_items(bill.id)
            detections = await service_numbers.detect_new_service_numbers(bill, account_id, line_items)
            result.new_service_numbers = service_numbers.new_service_numbers(detections)

        async def record_charges() -> None:
            summary = await MonthlyChargeService(session).record_monthly_charges_for_bill(bill, account_id)
            result.charges_recorded = summary.recorded

        async def detect_alerts() -> None:
            alerts = await AlertService(session).detect_alerts_for_bill(bill)
            result.alert_ids = [alert.id for alert in alerts]

        steps: List[Tuple[str, Callable[[], Awaitable[None]]]] = [
            ("service_numbers", detect_service_numbers),
            ("monthly_charges", record_charges),
            ("alerts", detect_alerts),
        ]
        for step, action in steps:
            token.raise_if_cancelled()
            try:
                await action()
            except PipelineCancelled:
                raise
            except Exception as e:
                await session.rollback()
                # Rollback expires loaded instances; later steps read the bill
                await session.refresh(bill)
                error = PostProcessingError(f"{step} failed: {e}", step=step, original_error=e)
                LOGGER.warning(
                    f"Post-processing step {step} failed: {str(e)}",
                    exc_info=True,
                    extra={"bill_id": str(bill.id)}
                )
                result.warnings.append(ErrorInfo(kind=error.kind, message=error.message))

    async def _finish_duplicate(self, job: JobTracker, result: IngestionResult, duplicate: DuplicateCheck) -> None:
        result.outcome = IngestionOutcome.DUPLICATE
        result.duplicate = duplicate
        result.state = PipelineState.DUPLICATE_PENDING
        await job.move(PipelineState.DUPLICATE_PENDING, result=result.model_dump(mode="json", by_alias=True))

    async def _finish_cancelled(self, job: JobTracker, result: IngestionResult, error: PipelineCancelled) -> None:
        result.outcome = IngestionOutcome.CANCELLED
        result.error = ErrorInfo(kind=error.kind, message=error.message)
        if result.bill_id:
            LOGGER.info("Cancelled after persistence; bill kept", extra={"bill_id": str(result.bill_id)})
        await self._record_terminal(job, PipelineState.CANCELLED, result)

    async def _finish_failed(self, job: JobTracker, result: IngestionResult, error: AppError) -> None:
        LOGGER.warning(
            f"Ingestion failed in {job.state.value}: {error.message}",
            extra={"job_id": str(job.job_id), "kind": error.kind}
        )
        result.outcome = IngestionOutcome.FAILED
        result.error = ErrorInfo(kind=error.kind, message=error.message)
        await self._record_terminal(job, PipelineState.FAILED, result)

    async def _record_terminal(self, job: JobTracker, target: PipelineState, result: Any) -> None:
        """Write a terminal state; a failed write is logged, not raised."""
        result.state = target
        error = result.error
        try:
            await job.move(
                target,
                error_kind=error.kind if error else None,
                error_message=error.message if error else None,
                result=result.model_dump(mode="json", by_alias=True),
            )
        except AppError as e:
            LOGGER.error(
                f"Could not record {target.value} for ingestion job: {e.message}",
                extra={"job_id": str(job.job_id)}
            )
