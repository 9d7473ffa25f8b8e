"""Dependency factories for the API layer."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from billtracker.core.database import get_async_session
from billtracker.repositories.ingestion_job_repository import IngestionJobRepository
from billtracker.services.account_service import AccountService
from billtracker.services.alert_service import AlertService
from billtracker.services.bill_service import BillService
from billtracker.services.ingestion_service import IngestionService
from billtracker.services.monthly_charge_service import MonthlyChargeService
from billtracker.services.service_number_service import ServiceNumberService

SessionDep = Annotated[AsyncSession, Depends(get_async_session)]


async def get_account_service(db_session: SessionDep) -> AccountService:
    return AccountService(db_session)


async def get_bill_service(db_session: SessionDep) -> BillService:
    return BillService(db_session)


async def get_alert_service(db_session: SessionDep) -> AlertService:
    return AlertService(db_session)


async def get_service_number_service(db_session: SessionDep) -> ServiceNumberService:
    return ServiceNumberService(db_session)


async def get_monthly_charge_service(db_session: SessionDep) -> MonthlyChargeService:
    return MonthlyChargeService(db_session)


async def get_ingestion_job_repository(db_session: SessionDep) -> IngestionJobRepository:
    return IngestionJobRepository(db_session)


async def get_ingestion_service() -> IngestionService:
    """Ingestion runs open their own sessions per stage."""
    return IngestionService()
