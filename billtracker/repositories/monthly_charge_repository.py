from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from billtracker.repositories.base_repository import BaseRepository
from billtracker.database.models import Bill, MonthlyCharge, ServiceAccount, ServiceNumber
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

_CHARGE_FIELDS = ("subscription_charge", "usage_charges", "other_charges", "total_charge", "package_name")


class MonthlyChargeRepository(BaseRepository[MonthlyCharge]):
    """Repository for per-bill service number charges."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, MonthlyCharge)

    async def upsert(self, **values: Any) -> None:
        """Insert or refresh the charge row keyed by (service_number, bill_id)."""
        try:
            stmt = self.insert().values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["service_number", "bill_id"],
                set_={
                    **{field: getattr(stmt.excluded, field) for field in _CHARGE_FIELDS},
                    "service_number_id": stmt.excluded.service_number_id,
                    "line_item_id": stmt.excluded.line_item_id,
                    "updated_at": func.now(),
                },
            )
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Error recording monthly charge for {values.get('service_number')}: {str(e)}",
                exc_info=True
            )
            raise

    def _scope(self, service_number: str, account_id: Optional[UUID]):
        """Filter on the number, narrowed to one account's registry row when given."""
        condition = MonthlyCharge.service_number == service_number
        if account_id is not None:
            owned = select(ServiceNumber.id).where(
                ServiceNumber.service_number == service_number,
                ServiceNumber.service_account_id == account_id,
            )
            condition = condition & MonthlyCharge.service_number_id.in_(owned)
        return condition

    async def get_history(
        self, service_number: str, account_id: Optional[UUID] = None
    ) -> List[Tuple[MonthlyCharge, str, str, str | None]]:
        """Charge rows for a service number with invoice and account info, newest bill first."""
        query = (
            select(MonthlyCharge, Bill.invoice_number, Bill.account_number, ServiceAccount.account_name)
            .join(Bill, MonthlyCharge.bill_id == Bill.id)
            .outerjoin(ServiceAccount, Bill.service_account_id == ServiceAccount.id)
            .where(self._scope(service_number, account_id))
            .order_by(MonthlyCharge.bill_date.desc())
        )
        result = await self.session.execute(query)
        return [tuple(row) for row in result.all()]

    async def get_for_bill(self, bill_id: UUID) -> List[MonthlyCharge]:
        query = (
            select(MonthlyCharge)
            .where(MonthlyCharge.bill_id == bill_id)
            .order_by(MonthlyCharge.service_number)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_totals(self, service_number: str, account_id: Optional[UUID] = None) -> Dict[str, Any]:
        """Summed charges for a service number across all bills."""
        query = select(
            func.coalesce(func.sum(MonthlyCharge.subscription_charge), 0),
            func.coalesce(func.sum(MonthlyCharge.usage_charges), 0),
            func.coalesce(func.sum(MonthlyCharge.other_charges), 0),
            func.coalesce(func.sum(MonthlyCharge.total_charge), 0),
            func.count(MonthlyCharge.id),
        ).where(self._scope(service_number, account_id))
        row = (await self.session.execute(query)).one()
        return {
            "total_subscription": row[0],
            "total_usage": row[1],
            "total_other": row[2],
            "total_all": row[3],
            "month_count": row[4],
        }
