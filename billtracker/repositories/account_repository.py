from typing import Optional, List
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from billtracker.repositories.base_repository import BaseRepository
from billtracker.database.models import Bill, ServiceAccount
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class AccountRepository(BaseRepository[ServiceAccount]):
    """Repository for ServiceAccount records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ServiceAccount)

    async def get_by_account_number(self, account_number: str) -> Optional[ServiceAccount]:
        """Get an account by its ISP account number."""
        query = select(ServiceAccount).where(ServiceAccount.account_number == account_number)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def insert_if_absent(
        self,
        account_number: str,
        account_name: str,
        provider: str,
        description: Optional[str] = None,
        is_auto_registered: bool = False,
    ) -> bool:
        """Insert an account unless one with the same number already exists.

        Relies on the unique constraint on ``account_number`` so concurrent
        callers end up with a single row.

        Args:
            account_number: ISP account number
            account_name: Display name
            provider: ISP name
            description: Optional free text
            is_auto_registered: Whether the pipeline created the account

        Returns:
            True if this call inserted the row, False if it already existed
        """
        try:
            stmt = self.insert().values(
                account_number=account_number,
                account_name=account_name,
                provider=provider,
                description=description,
                is_active=True,
                is_auto_registered=is_auto_registered,
            ).on_conflict_do_nothing(index_elements=["account_number"])
            result = await self.session.execute(stmt)
            await self.session.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Error inserting account {account_number}: {str(e)}",
                exc_info=True
            )
            raise

    async def list_accounts(self, active_only: bool = False) -> List[ServiceAccount]:
        """List accounts ordered by name."""
        query = select(ServiceAccount)
        if active_only:
            query = query.where(ServiceAccount.is_active.is_(True))
        query = query.order_by(ServiceAccount.account_name.asc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_created_since(self, since: datetime) -> List[ServiceAccount]:
        """Get accounts created at or after ``since``, newest first."""
        query = (
            select(ServiceAccount)
            .where(ServiceAccount.created_at >= since)
            .order_by(ServiceAccount.created_at.desc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_completed_bills_in_year(self, account_id, year: int) -> List[Bill]:
        """Get completed bills of an account whose period starts in ``year``."""
        query = (
            select(Bill)
            .where(
                Bill.service_account_id == account_id,
                Bill.processing_status == "completed",
                Bill.billing_period_start >= date(year, 1, 1),
                Bill.billing_period_start <= date(year, 12, 31),
            )
            .order_by(Bill.billing_period_start.asc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
