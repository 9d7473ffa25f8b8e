from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from billtracker.repositories.base_repository import BaseRepository
from billtracker.database.models import Alert
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class AlertRepository(BaseRepository[Alert]):
    """Repository for Alert records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Alert)

    async def create_once(self, values: Dict[str, Any]) -> Optional[Alert]:
        """Insert an alert unless one exists for the same (bill, type, previous bill).

        Args:
            values: Column values keyed by column name (``metadata``, not
                ``alert_metadata``)

        Returns:
            The new Alert, or None if an equivalent alert already existed
        """
        try:
            stmt = self.insert(Alert.__table__).values(**values).on_conflict_do_nothing(
                index_elements=["bill_id", "alert_type", "previous_bill_id"]
            )
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Error creating alert for bill {values.get('bill_id')}: {str(e)}",
                exc_info=True
            )
            raise

        if result.rowcount != 1:
            return None

        query = select(Alert).where(
            Alert.bill_id == values["bill_id"],
            Alert.alert_type == values["alert_type"],
            Alert.previous_bill_id == values["previous_bill_id"],
        )
        return (await self.session.execute(query)).scalar_one()

    async def list_alerts(
        self,
        status: Optional[str] = None,
        bill_id: Optional[UUID] = None,
        account_id: Optional[UUID] = None,
    ) -> List[Alert]:
        """List alerts newest first with optional filters."""
        query = select(Alert)
        if status is not None:
            query = query.where(Alert.status == status)
        if bill_id is not None:
            query = query.where(Alert.bill_id == bill_id)
        if account_id is not None:
            query = query.where(Alert.service_account_id == account_id)
        query = query.order_by(Alert.created_at.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())
