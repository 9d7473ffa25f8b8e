"""Pytest configuration and shared fixtures."""

import os
import tempfile

# Settings are read at import time; point them at throwaway locations first
_TEST_DIR = tempfile.mkdtemp(prefix="billtracker-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DIR}/app.db")
os.environ.setdefault("STORAGE_DIR", os.path.join(_TEST_DIR, "storage"))
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("GEMINI_API_KEY", "")

from typing import Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from billtracker.core.database import Base  # noqa: E402
from billtracker.database import models  # noqa: E402,F401
from billtracker.schemas.records import AccountCreate  # noqa: E402
from billtracker.services.account_service import AccountService  # noqa: E402
from billtracker.services.bill_service import BillService  # noqa: E402
from billtracker.services.extraction.validator import validate_extraction  # noqa: E402
from factories import bill_payload, make_pdf  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with all tables created."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture
def account_factory(session):
    """Create accounts through the account service."""

    async def create(account_number: str = "BA12345678", account_name: str = "Head Office"):
        return await AccountService(session).create_account(
            AccountCreate(account_number=account_number, account_name=account_name)
        )

    return create


@pytest.fixture
def bill_factory(session):
    """Persist bills from raw payloads through the bill service."""

    async def create(
        account_id=None,
        file_name: Optional[str] = None,
        file_hash: Optional[str] = None,
        requires_review=None,
        **payload_kwargs,
    ):
        payload = bill_payload(**payload_kwargs)
        extraction = validate_extraction(payload)
        return await BillService(session).create_bill_from_extraction(
            extraction,
            file_name=file_name or f"{extraction.invoice_number}.pdf",
            file_hash=file_hash,
            account_id=account_id,
            requires_review=requires_review,
            raw_payload=payload,
        )

    return create


@pytest.fixture
def sample_pdf() -> bytes:
    """Single-page bill PDF with a text layer."""
    return make_pdf()
