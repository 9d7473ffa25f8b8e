"""End-to-end tests of the ingestion pipeline against SQLite and real PDFs.

Only the vision model is replaced; rendering, the text prefilter, storage
and the database are real.
"""

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from billtracker.core.cancellation import CancellationToken
from billtracker.core.config import settings
from billtracker.core.exceptions import APIClientError, DatabaseError, InvalidStateTransition
from billtracker.database.models import Bill, IngestionJob
from billtracker.repositories.ingestion_job_repository import IngestionJobRepository
from billtracker.schemas.ingestion import DuplicateReason, IngestionOutcome, PipelineState, UploadedFile
from billtracker.services.alert_service import AlertService
from billtracker.services.duplicate_detector import DuplicateDetector
from billtracker.services.extraction.quick_scan import QuickScanner
from billtracker.services.ingestion_service import ALLOWED_TRANSITIONS, TERMINAL_STATES, IngestionService, JobTracker
from billtracker.services.monthly_charge_service import MonthlyChargeService
from billtracker.services.pdf.rasterizer import PdfRasterizer
from billtracker.services.service_number_service import ServiceNumberService
from billtracker.services.storage_service import StorageService
from factories import FakeExtractor, bill_payload, line_item, make_pdf


@pytest.fixture
def build_service(session_factory, tmp_path):
    """Pipeline wired to the test database with a fake extractor."""

    def build(extractor: FakeExtractor) -> IngestionService:
        rasterizer = PdfRasterizer()
        return IngestionService(
            session_factory=session_factory,
            storage=StorageService(str(tmp_path / "storage")),
            rasterizer=rasterizer,
            extractor=extractor,
            scanner=QuickScanner(extractor, rasterizer, strategies=["text_prefilter"]),
            cancel_poll_interval=0.05,
        )

    return build


@pytest.fixture
def upload() -> UploadedFile:
    return UploadedFile(file_name="january.pdf", content=make_pdf())


async def _bill_count(session_factory) -> int:
    async with session_factory() as db_session:
        return (await db_session.execute(select(func.count(Bill.id)))).scalar_one()


async def _job(session_factory, job_id) -> IngestionJob:
    async with session_factory() as db_session:
        return await IngestionJobRepository(db_session).get_job(job_id)


async def _bill(session_factory, bill_id) -> Bill:
    async with session_factory() as db_session:
        return await db_session.get(Bill, bill_id)


class CountingSessionFactory:
    """Session factory that tracks how many sessions are open."""

    def __init__(self, factory):
        self.factory = factory
        self.open = 0

    def __call__(self):
        return self._session()

    @asynccontextmanager
    async def _session(self):
        self.open += 1
        try:
            async with self.factory() as db_session:
                yield db_session
        finally:
            self.open -= 1


class SessionCheckingExtractor(FakeExtractor):
    def __init__(self, sessions: CountingSessionFactory):
        super().__init__()
        self.sessions = sessions
        self.open_sessions = None

    async def extract_bill(self, images):
        self.open_sessions = self.sessions.open
        return await super().extract_bill(images)


class TestSuccessfulIngestion:
    """Tests for the happy path."""

    async def test_ingest_new_bill(self, build_service, session_factory, upload):
        """Test that a new bill is stored, registered and post-processed."""
        result = await build_service(FakeExtractor()).ingest(upload)

        assert result.outcome == IngestionOutcome.COMPLETED
        assert result.state == PipelineState.COMPLETED
        assert result.error is None
        assert result.invoice_number == "B1-100000001"
        assert result.page_count == 1
        assert result.account_auto_registered is True
        assert result.requires_review is False
        assert [d.service_number for d in result.new_service_numbers] == ["7771001"]
        assert result.charges_recorded == 1
        assert result.alert_ids == []

        bill = await _bill(session_factory, result.bill_id)
        assert bill.processing_status == "completed"
        assert bill.total_due == Decimal("100")
        assert bill.file_name == "january.pdf"
        assert len(bill.file_hash) == 64

        job = await _job(session_factory, result.job_id)
        assert job.state == "completed"
        assert job.bill_id == result.bill_id
        assert job.completed_at is not None
        assert job.result["outcome"] == "completed"
        assert job.result["invoiceNumber"] == "B1-100000001"

    async def test_auto_registered_review_setting(self, build_service, session_factory, upload):
        """Test that auto-registered accounts can be routed to review by configuration."""
        with patch.object(settings.pipeline, "auto_registered_requires_review", True):
            result = await build_service(FakeExtractor()).ingest(upload)

        assert result.outcome == IngestionOutcome.COMPLETED
        assert result.requires_review is True
        bill = await _bill(session_factory, result.bill_id)
        assert bill.processing_status == "review_required"

    async def test_no_session_held_during_extraction(self, session_factory, tmp_path, upload):
        """Test that the model call runs without an open database session."""
        sessions = CountingSessionFactory(session_factory)
        extractor = SessionCheckingExtractor(sessions)
        rasterizer = PdfRasterizer()
        service = IngestionService(
            session_factory=sessions,
            storage=StorageService(str(tmp_path / "storage")),
            rasterizer=rasterizer,
            extractor=extractor,
            scanner=QuickScanner(extractor, rasterizer, strategies=["text_prefilter"]),
            cancel_poll_interval=60,
        )

        result = await service.ingest(upload)

        assert result.outcome == IngestionOutcome.COMPLETED
        assert extractor.open_sessions == 0
        assert sessions.open == 0

    async def test_known_account_is_not_auto_registered(self, build_service, account_factory, upload):
        account = await account_factory()

        result = await build_service(FakeExtractor()).ingest(upload)

        assert result.account_id == account.id
        assert result.account_auto_registered is False

    async def test_inconsistent_charges_flag_review(self, build_service, session_factory, upload):
        """Test that line items not adding up to the charges send the bill to review."""
        extractor = FakeExtractor(bill_payload(total_due=150.0))

        result = await build_service(extractor).ingest(upload)

        assert result.outcome == IngestionOutcome.COMPLETED
        assert result.requires_review is True
        bill = await _bill(session_factory, result.bill_id)
        assert bill.processing_status == "review_required"

    async def test_month_over_month_increase_raises_alert(self, build_service, session_factory):
        """Test that a second month 30% above the first raises a high alert."""
        await build_service(FakeExtractor()).ingest(UploadedFile(file_name="january.pdf", content=make_pdf()))
        february = FakeExtractor(
            bill_payload(
                invoice_number="B1-100000002",
                period_start="2024-02-01",
                period_end="2024-02-29",
                line_items=[line_item("7771001", 130.0)],
            )
        )

        result = await build_service(february).ingest(
            UploadedFile(file_name="february.pdf", content=make_pdf("B1-100000002"))
        )

        assert result.outcome == IngestionOutcome.COMPLETED
        assert result.new_service_numbers == []
        assert len(result.alert_ids) == 1
        async with session_factory() as db_session:
            alert = await AlertService(db_session).get_alert(result.alert_ids[0])
        assert alert.severity == "high"


class TestDuplicates:
    """Tests for duplicate handling."""

    async def test_same_file_twice(self, build_service, session_factory, upload):
        """Test that the second upload stops before full extraction."""
        extractor = FakeExtractor()
        service = build_service(extractor)
        first = await service.ingest(upload)

        second = await service.ingest(upload)

        assert second.outcome == IngestionOutcome.DUPLICATE
        assert second.state == PipelineState.DUPLICATE_PENDING
        assert second.duplicate.reason == DuplicateReason.INVOICE
        assert second.duplicate.existing_bill_id == first.bill_id
        assert second.bill_id is None
        assert extractor.calls == 1
        assert await _bill_count(session_factory) == 1
        job = await _job(session_factory, second.job_id)
        assert job.state == "duplicate_pending"
        assert job.completed_at is not None

    async def test_billing_period_duplicate_after_extraction(self, build_service, session_factory, upload):
        """Test that a reissued bill for the same period is caught after extraction."""
        await build_service(FakeExtractor()).ingest(upload)
        reissued = FakeExtractor(bill_payload(invoice_number="B1-100000050"))

        result = await build_service(reissued).ingest(
            UploadedFile(file_name="reissued.pdf", content=make_pdf("B1-100000050"))
        )

        assert result.outcome == IngestionOutcome.DUPLICATE
        assert result.duplicate.reason == DuplicateReason.BILLING_PERIOD
        assert reissued.calls == 1
        assert await _bill_count(session_factory) == 1

    async def test_skip_check_reingest_fails_cleanly(self, build_service, session_factory, upload):
        """Test that forcing an existing invoice through fails without a second row."""
        service = build_service(FakeExtractor())
        await service.ingest(upload)

        result = await service.ingest(upload, skip_duplicate_check=True)

        assert result.outcome == IngestionOutcome.FAILED
        assert result.state == PipelineState.FAILED
        assert result.error.kind == "persistence_error"
        assert await _bill_count(session_factory) == 1
        job = await _job(session_factory, result.job_id)
        assert job.skip_duplicate_check is True
        assert job.error_kind == "persistence_error"


class TestFailures:
    """Tests for failed runs."""

    async def test_invalid_pdf(self, build_service, session_factory):
        extractor = FakeExtractor()

        result = await build_service(extractor).ingest(UploadedFile(file_name="bill.pdf", content=b"not a pdf"))

        assert result.outcome == IngestionOutcome.FAILED
        assert result.error.kind == "validation_error"
        assert extractor.calls == 0
        job = await _job(session_factory, result.job_id)
        assert job.state == "failed"
        assert job.error_kind == "validation_error"

    async def test_extractor_failure(self, build_service, session_factory, upload):
        extractor = FakeExtractor(error=APIClientError("Gemini generation failed: quota"))

        result = await build_service(extractor).ingest(upload)

        assert result.outcome == IngestionOutcome.FAILED
        assert result.error.kind == "external_service_error"
        assert "quota" in result.error.message
        assert await _bill_count(session_factory) == 0

    async def test_missing_required_field(self, build_service, session_factory, upload):
        payload = bill_payload()
        del payload["billDate"]

        result = await build_service(FakeExtractor(payload)).ingest(upload)

        assert result.outcome == IngestionOutcome.FAILED
        assert result.error.kind == "validation_error"
        assert "billDate" in result.error.message
        assert await _bill_count(session_factory) == 0

    async def test_post_processing_failure_degrades(self, build_service, session_factory, upload):
        """Test that a failing post-processing step keeps the bill and reports a warning."""
        failing = AsyncMock(side_effect=DatabaseError("disk full"))
        with patch.object(MonthlyChargeService, "record_monthly_charges_for_bill", failing):
            result = await build_service(FakeExtractor()).ingest(upload)

        assert result.outcome == IngestionOutcome.COMPLETED_WITH_WARNINGS
        assert result.state == PipelineState.COMPLETED
        assert [w.kind for w in result.warnings] == ["post_processing_error"]
        assert "monthly_charges" in result.warnings[0].message
        assert [d.service_number for d in result.new_service_numbers] == ["7771001"]
        assert await _bill_count(session_factory) == 1


class TestCancellation:
    """Tests for cooperative cancellation."""

    async def test_cancelled_before_start(self, build_service, session_factory, upload):
        token = CancellationToken()
        token.cancel()
        extractor = FakeExtractor()

        result = await build_service(extractor).ingest(upload, token=token)

        assert result.outcome == IngestionOutcome.CANCELLED
        assert result.state == PipelineState.CANCELLED
        assert result.error.kind == "cancelled"
        assert extractor.calls == 0
        assert await _bill_count(session_factory) == 0

    async def test_token_cancels_in_flight_extraction(self, build_service, session_factory, upload):
        """Test that tripping the token interrupts the extractor call."""
        token = CancellationToken()
        extractor = FakeExtractor(delay=30)
        task = asyncio.create_task(build_service(extractor).ingest(upload, token=token))

        await asyncio.wait_for(extractor.started.wait(), timeout=10)
        token.cancel("operator request")
        result = await asyncio.wait_for(task, timeout=10)

        assert result.outcome == IngestionOutcome.CANCELLED
        assert result.error.message == "operator request"
        assert await _bill_count(session_factory) == 0
        job = await _job(session_factory, result.job_id)
        assert job.state == "cancelled"

    async def test_cancel_request_on_job_row(self, build_service, session_factory, upload):
        """Test that a cancel flag written to the job is picked up by the running pipeline."""
        extractor = FakeExtractor(delay=30)
        task = asyncio.create_task(build_service(extractor).ingest(upload))

        await asyncio.wait_for(extractor.started.wait(), timeout=10)
        async with session_factory() as db_session:
            job_id = (await db_session.execute(select(IngestionJob.id))).scalar_one()
            assert await IngestionJobRepository(db_session).request_cancel(job_id) is True
        result = await asyncio.wait_for(task, timeout=10)

        assert result.job_id == job_id
        assert result.outcome == IngestionOutcome.CANCELLED
        assert await _bill_count(session_factory) == 0

    async def test_task_cancellation_propagates(self, build_service, session_factory, upload):
        """Test that cancelling the ingest task records the job and re-raises."""
        extractor = FakeExtractor(delay=30)
        task = asyncio.create_task(build_service(extractor).ingest(upload))

        await asyncio.wait_for(extractor.started.wait(), timeout=10)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        async with session_factory() as db_session:
            job = (await db_session.execute(select(IngestionJob))).scalar_one()
        assert job.state == "cancelled"
        assert job.error_kind == "cancelled"
        assert await _bill_count(session_factory) == 0

    async def test_cancel_after_persistence_keeps_bill(self, build_service, session_factory, upload):
        """Test that a bill already written survives a late cancellation."""
        token = CancellationToken()
        original = ServiceNumberService.detect_new_service_numbers

        async def detect_then_cancel(self, bill, account_id, line_items):
            detections = await original(self, bill, account_id, line_items)
            token.cancel("late cancel")
            return detections

        with patch.object(ServiceNumberService, "detect_new_service_numbers", detect_then_cancel):
            result = await build_service(FakeExtractor()).ingest(upload, token=token)

        assert result.outcome == IngestionOutcome.CANCELLED
        assert result.bill_id is not None
        assert result.charges_recorded == 0
        assert await _bill_count(session_factory) == 1
        job = await _job(session_factory, result.job_id)
        assert job.state == "cancelled"
        assert job.bill_id == result.bill_id


class TestPreScan:
    """Tests for IngestionService.pre_scan."""

    async def test_new_bill(self, build_service, session_factory, upload):
        result = await build_service(FakeExtractor()).pre_scan(upload)

        assert result.state == PipelineState.QUICK_SCANNED
        assert result.scan.invoice_number == "B1-100000001"
        assert result.scan.account_number == "BA12345678"
        assert result.duplicate.is_duplicate is False
        assert result.account_exists is False
        assert len(result.file_identity) == 64
        job = await _job(session_factory, result.job_id)
        assert job.state == "quick_scanned"

    async def test_known_bill(self, build_service, upload):
        service = build_service(FakeExtractor())
        ingested = await service.ingest(upload)

        result = await service.pre_scan(upload)

        assert result.state == PipelineState.DUPLICATE_PENDING
        assert result.duplicate.existing_bill_id == ingested.bill_id
        assert result.account_exists is True

    async def test_invalid_upload(self, build_service):
        result = await build_service(FakeExtractor()).pre_scan(UploadedFile(file_name="bill.txt", content=b"x"))

        assert result.state == PipelineState.FAILED
        assert result.error.kind == "validation_error"

    async def test_database_failure_marks_job_failed(self, build_service, session_factory, upload):
        """Test that a lookup error ends the job as failed instead of escaping."""
        error = OperationalError("SELECT", {}, Exception("database is locked"))
        with patch.object(DuplicateDetector, "check_pre_scan", AsyncMock(side_effect=error)):
            result = await build_service(FakeExtractor()).pre_scan(upload)

        assert result.state == PipelineState.FAILED
        assert result.error.kind == "database_error"
        job = await _job(session_factory, result.job_id)
        assert job.state == "failed"
        assert job.error_kind == "database_error"

    async def test_task_cancellation_propagates(self, build_service, session_factory, upload):
        """Test that cancelling the pre-scan task records the job and re-raises."""
        started = asyncio.Event()

        async def slow_check(self, *args, **kwargs):
            started.set()
            await asyncio.sleep(30)

        with patch.object(DuplicateDetector, "check_pre_scan", slow_check):
            task = asyncio.create_task(build_service(FakeExtractor()).pre_scan(upload))
            await asyncio.wait_for(started.wait(), timeout=10)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        async with session_factory() as db_session:
            job = (await db_session.execute(select(IngestionJob))).scalar_one()
        assert job.state == "cancelled"
        assert job.error_kind == "cancelled"


class TestJobStateMachine:
    """Tests for the ingestion job transition table."""

    def test_terminal_states(self):
        assert TERMINAL_STATES == {
            PipelineState.DUPLICATE_PENDING,
            PipelineState.COMPLETED,
            PipelineState.FAILED,
            PipelineState.CANCELLED,
        }

    def test_every_state_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(PipelineState)

    async def test_illegal_move_rejected(self, session_factory):
        async with session_factory() as db_session:
            job = await IngestionJobRepository(db_session).create_job(file_name="bill.pdf")
        tracker = JobTracker(session_factory, job.id)

        with pytest.raises(InvalidStateTransition):
            await tracker.move(PipelineState.PERSISTED)
        assert tracker.state == PipelineState.UPLOADED
