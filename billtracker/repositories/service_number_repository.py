from typing import Optional, List
from uuid import UUID
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from billtracker.repositories.base_repository import BaseRepository
from billtracker.database.models import ServiceNumber
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ServiceNumberRepository(BaseRepository[ServiceNumber]):
    """Repository for ServiceNumber records.

    Service numbers are unique per account, so every lookup takes the
    account id alongside the number.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, ServiceNumber)

    async def get_by_number(self, service_number: str, account_id: UUID) -> Optional[ServiceNumber]:
        """Get the service number row of an account, bypassing stale identity-map state."""
        query = (
            select(ServiceNumber)
            .where(
                ServiceNumber.service_number == service_number,
                ServiceNumber.service_account_id == account_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def exists(self, service_number: str, account_id: UUID) -> bool:
        query = select(ServiceNumber.id).where(
            ServiceNumber.service_number == service_number,
            ServiceNumber.service_account_id == account_id,
        )
        result = await self.session.execute(query)
        return result.first() is not None

    async def upsert_sighting(
        self,
        service_number: str,
        account_id: UUID,
        bill_id: UUID,
        bill_date: date,
        package_name: Optional[str] = None,
    ) -> None:
        """Record that a service number appeared on a bill.

        ``last_seen`` only moves forward and ``first_seen`` only moves back,
        both compared on bill date, so the result does not depend on the
        order bills are ingested in. The package name is only filled when
        not already set.

        Args:
            service_number: The phone/data line identifier
            account_id: Owning account
            bill_id: Bill the number appeared on
            bill_date: Date printed on that bill
            package_name: Package reported on the line item
        """
        try:
            stmt = self.insert().values(
                service_number=service_number,
                service_account_id=account_id,
                package_name=package_name,
                first_seen_bill_id=bill_id,
                first_seen_date=bill_date,
                last_seen_bill_id=bill_id,
                last_seen_date=bill_date,
                is_active=True,
            )
            excluded = stmt.excluded
            table = ServiceNumber.__table__.c

            advances = or_(table.last_seen_date.is_(None), excluded.last_seen_date >= table.last_seen_date)
            recedes = or_(table.first_seen_date.is_(None), excluded.first_seen_date < table.first_seen_date)

            stmt = stmt.on_conflict_do_update(
                index_elements=["service_number", "service_account_id"],
                set_={
                    "last_seen_bill_id": case((advances, excluded.last_seen_bill_id), else_=table.last_seen_bill_id),
                    "last_seen_date": case((advances, excluded.last_seen_date), else_=table.last_seen_date),
                    "first_seen_bill_id": case((recedes, excluded.first_seen_bill_id), else_=table.first_seen_bill_id),
                    "first_seen_date": case((recedes, excluded.first_seen_date), else_=table.first_seen_date),
                    "package_name": func.coalesce(table.package_name, excluded.package_name),
                    "updated_at": func.now(),
                },
            )
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Error upserting service number {service_number}: {str(e)}",
                exc_info=True
            )
            raise

    async def search(
        self,
        account_id: Optional[UUID] = None,
        service_number: Optional[str] = None,
        package_name: Optional[str] = None,
        division_name: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[ServiceNumber]:
        """List service numbers with optional filters.

        Text filters are case-insensitive substring matches.
        """
        query = select(ServiceNumber)
        if account_id is not None:
            query = query.where(ServiceNumber.service_account_id == account_id)
        if service_number:
            query = query.where(ServiceNumber.service_number.ilike(f"%{service_number}%"))
        if package_name:
            query = query.where(ServiceNumber.package_name.ilike(f"%{package_name}%"))
        if division_name:
            query = query.where(ServiceNumber.division_name.ilike(f"%{division_name}%"))
        if is_active is not None:
            query = query.where(ServiceNumber.is_active.is_(is_active))
        query = query.order_by(ServiceNumber.service_number)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_active_not_in(self, account_id: UUID, current_numbers: List[str]) -> List[str]:
        """Active numbers of the account that are absent from ``current_numbers``."""
        query = select(ServiceNumber.service_number).where(
            ServiceNumber.service_account_id == account_id,
            ServiceNumber.is_active.is_(True),
        )
        if current_numbers:
            query = query.where(ServiceNumber.service_number.notin_(current_numbers))
        query = query.order_by(ServiceNumber.service_number)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_created_since(self, since: datetime) -> List[ServiceNumber]:
        query = (
            select(ServiceNumber)
            .where(ServiceNumber.created_at >= since)
            .order_by(ServiceNumber.created_at.desc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
