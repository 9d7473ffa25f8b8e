"""Service number registry: lifecycle of the lines seen on an account's bills."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billtracker.core.exceptions import DatabaseError, NotFoundError
from billtracker.database.models import Bill, LineItem, ServiceNumber
from billtracker.repositories.service_number_repository import ServiceNumberRepository
from billtracker.schemas.ingestion import ServiceNumberDetection
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ServiceNumberService:
    """Service for ServiceNumber records, always scoped to an account."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.service_numbers = ServiceNumberRepository(session)

    async def detect_new_service_numbers(
        self,
        bill: Bill,
        account_id: UUID,
        line_items: Iterable[LineItem],
    ) -> List[ServiceNumberDetection]:
        """Register every line item's service number and report which are new.

        A number is new when the account had no row for it before this
        call. Sightings are recorded by bill date, so ingesting bills out
        of order still leaves ``last_seen`` on the latest bill.

        Args:
            bill: The persisted bill
            account_id: Account the bill belongs to
            line_items: Line items of the bill

        Returns:
            One detection per line item, in line item order

        Raises:
            DatabaseError: If a lookup or upsert fails
        """
        detections: List[ServiceNumberDetection] = []
        try:
            for item in line_items:
                exists = await self.service_numbers.exists(item.service_number, account_id)
                detections.append(
                    ServiceNumberDetection(
                        service_number=item.service_number,
                        package_name=item.package_name,
                        is_new=not exists,
                    )
                )
                await self.service_numbers.upsert_sighting(
                    service_number=item.service_number,
                    account_id=account_id,
                    bill_id=bill.id,
                    bill_date=bill.bill_date,
                    package_name=item.package_name,
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to record service numbers for bill {bill.id}: {e}", original_error=e)

        new_count = sum(1 for detection in detections if detection.is_new)
        if new_count:
            LOGGER.info(
                f"Detected {new_count} new service numbers",
                extra={"bill_id": str(bill.id), "account_id": str(account_id)}
            )
        return detections

    @staticmethod
    def new_service_numbers(detections: Iterable[ServiceNumberDetection]) -> List[ServiceNumberDetection]:
        """Detections flagged new, first occurrence of each number only."""
        seen = set()
        result = []
        for detection in detections:
            if detection.is_new and detection.service_number not in seen:
                seen.add(detection.service_number)
                result.append(detection)
        return result

    async def get_service_number(self, service_number_id: UUID) -> ServiceNumber:
        record = await self.service_numbers.get_by_id(service_number_id)
        if record is None:
            raise NotFoundError(f"Service number with ID {service_number_id} not found")
        return record

    async def get_for_account(self, service_number: str, account_id: UUID) -> Optional[ServiceNumber]:
        return await self.service_numbers.get_by_number(service_number, account_id)

    async def list_service_numbers(
        self,
        account_id: Optional[UUID] = None,
        service_number: Optional[str] = None,
        package_name: Optional[str] = None,
        division_name: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[ServiceNumber]:
        return await self.service_numbers.search(
            account_id=account_id,
            service_number=service_number,
            package_name=package_name,
            division_name=division_name,
            is_active=is_active,
        )

    async def update_service_number(self, service_number_id: UUID, **changes) -> ServiceNumber:
        """Set ``is_active``, ``notes`` or ``division_name``."""
        allowed = {key: value for key, value in changes.items() if key in {"is_active", "notes", "division_name"}}
        try:
            record = await self.service_numbers.update(service_number_id, **allowed)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to update service number {service_number_id}: {e}", original_error=e)
        if record is None:
            raise NotFoundError(f"Service number with ID {service_number_id} not found")
        return record

    async def deactivate(self, service_number_id: UUID) -> ServiceNumber:
        return await self.update_service_number(service_number_id, is_active=False)

    async def activate(self, service_number_id: UUID) -> ServiceNumber:
        return await self.update_service_number(service_number_id, is_active=True)

    async def add_notes(self, service_number_id: UUID, notes: str) -> ServiceNumber:
        return await self.update_service_number(service_number_id, notes=notes)

    async def detect_removed_service_numbers(self, account_id: UUID, current_numbers: List[str]) -> List[str]:
        """Active numbers of the account missing from the current bill."""
        return await self.service_numbers.get_active_not_in(account_id, current_numbers)

    async def count_service_numbers(self) -> int:
        return await self.service_numbers.count()

    async def get_recently_added(self, hours: int = 24) -> List[ServiceNumber]:
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        return await self.service_numbers.get_created_since(since)
