from typing import Any, Optional
from uuid import UUID
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from billtracker.repositories.base_repository import BaseRepository
from billtracker.database.models import IngestionJob
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class IngestionJobRepository(BaseRepository[IngestionJob]):
    """Repository for durable ingestion job records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, IngestionJob)

    async def create_job(
        self,
        file_name: str,
        skip_duplicate_check: bool = False,
        file_hash: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> IngestionJob:
        return await self.create(
            file_name=file_name,
            file_hash=file_hash,
            file_path=file_path,
            state="uploaded",
            skip_duplicate_check=skip_duplicate_check,
        )

    async def set_state(self, job_id: UUID, state: str, **fields: Any) -> None:
        """Write a state transition plus any accompanying columns."""
        values = {"state": state, "updated_at": datetime.now(timezone.utc), **fields}
        try:
            await self.session.execute(
                update(IngestionJob).where(IngestionJob.id == job_id).values(**values)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Error moving ingestion job {job_id} to {state}: {str(e)}",
                exc_info=True
            )
            raise

    async def request_cancel(self, job_id: UUID) -> bool:
        """Flag a job for cancellation.

        Returns:
            True if the job exists
        """
        try:
            result = await self.session.execute(
                update(IngestionJob)
                .where(IngestionJob.id == job_id)
                .values(cancel_requested=True, updated_at=datetime.now(timezone.utc))
            )
            await self.session.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Error requesting cancel for ingestion job {job_id}: {str(e)}",
                exc_info=True
            )
            raise

    async def is_cancel_requested(self, job_id: UUID) -> bool:
        query = select(IngestionJob.cancel_requested).where(IngestionJob.id == job_id)
        result = await self.session.execute(query)
        return bool(result.scalar_one_or_none())

    async def get_job(self, job_id: UUID) -> Optional[IngestionJob]:
        """Get a job with fresh column values."""
        query = select(IngestionJob).where(IngestionJob.id == job_id).execution_options(
            populate_existing=True
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()
