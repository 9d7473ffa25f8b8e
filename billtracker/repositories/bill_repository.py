from typing import Any, Dict, List, Optional
from uuid import UUID
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from billtracker.repositories.base_repository import BaseRepository
from billtracker.database.models import Bill, LineItem
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BillRepository(BaseRepository[Bill]):
    """Repository for Bill records and their line items.

    Inherits from BaseRepository for standard CRUD operations.
    """

    def __init__(self, session: AsyncSession):
        """Initialize bill repository.

        Args:
            session: SQLAlchemy async session
        """
        super().__init__(session, Bill)

    async def create_with_line_items(
        self,
        bill_values: Dict[str, Any],
        line_items: List[Dict[str, Any]],
    ) -> Bill:
        """Insert a bill and all of its line items in one transaction.

        Args:
            bill_values: Column values for the bill
            line_items: Column values for each line item

        Returns:
            The committed Bill with line items loaded

        Raises:
            SQLAlchemyError: If the insert fails; the transaction is rolled back
        """
        try:
            bill = Bill(**bill_values)
            bill.line_items = [LineItem(**values) for values in line_items]
            self.session.add(bill)
            await self.session.flush()
            await self.session.commit()
            LOGGER.info(
                f"Created bill {bill.invoice_number} with {len(line_items)} line items",
                extra={"bill_id": str(bill.id)}
            )
            return bill
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Error creating bill {bill_values.get('invoice_number')}: {str(e)}",
                exc_info=True
            )
            raise

    async def get_by_invoice_number(self, invoice_number: str) -> Optional[Bill]:
        query = select(Bill).where(Bill.invoice_number == invoice_number)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_file_hash(self, file_hash: str) -> Optional[Bill]:
        query = select(Bill).where(Bill.file_hash == file_hash).order_by(Bill.created_at.asc()).limit(1)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_file_name(self, file_name: str) -> Optional[Bill]:
        query = select(Bill).where(Bill.file_name == file_name).order_by(Bill.created_at.asc()).limit(1)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_completed_for_period(
        self,
        account_number: str,
        period_start: date,
        period_end: date,
    ) -> Optional[Bill]:
        """Get a completed bill of the account covering exactly this period."""
        query = (
            select(Bill)
            .where(
                Bill.account_number == account_number,
                Bill.billing_period_start == period_start,
                Bill.billing_period_end == period_end,
                Bill.processing_status == "completed",
            )
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_previous_completed(
        self,
        account_id: UUID,
        before_period_start: date,
    ) -> Optional[Bill]:
        """Get the latest completed bill that starts before the given date.

        Ties on period start are broken by the latest bill date.
        """
        query = (
            select(Bill)
            .where(
                Bill.service_account_id == account_id,
                Bill.billing_period_start < before_period_start,
                Bill.processing_status == "completed",
            )
            .order_by(Bill.billing_period_start.desc(), Bill.bill_date.desc())
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_bills(
        self,
        account_id: Optional[UUID] = None,
        status: Optional[str] = None,
        requires_review: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Bill]:
        """List bills newest first with optional filters."""
        query = select(Bill)
        if account_id is not None:
            query = query.where(Bill.service_account_id == account_id)
        if status is not None:
            query = query.where(Bill.processing_status == status)
        if requires_review is not None:
            query = query.where(Bill.requires_review.is_(requires_review))
        query = query.order_by(Bill.bill_date.desc(), Bill.created_at.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_line_items(self, bill_id: UUID) -> List[LineItem]:
        query = select(LineItem).where(LineItem.bill_id == bill_id).order_by(LineItem.service_number)
        result = await self.session.execute(query)
        return list(result.scalars().all())
