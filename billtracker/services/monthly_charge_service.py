"""Monthly charge ledger: per service number charges of each bill."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billtracker.core.exceptions import DatabaseError
from billtracker.database.models import Bill, MonthlyCharge
from billtracker.repositories.bill_repository import BillRepository
from billtracker.repositories.monthly_charge_repository import MonthlyChargeRepository
from billtracker.repositories.service_number_repository import ServiceNumberRepository
from billtracker.schemas.ingestion import ChargeRecordingSummary, ChargeTotals
from billtracker.schemas.records import MonthlyChargeResponse
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class MonthlyChargeService:
    """Service for MonthlyCharge records."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.charges = MonthlyChargeRepository(session)
        self.service_numbers = ServiceNumberRepository(session)
        self.bills = BillRepository(session)

    async def record_monthly_charges_for_bill(self, bill: Bill, account_id: UUID) -> ChargeRecordingSummary:
        """Record one charge row per line item of the bill.

        Line items whose service number is not registered for the account
        are skipped. Re-recording the same bill updates the rows in place.

        Args:
            bill: The persisted bill
            account_id: Account the bill belongs to

        Returns:
            ChargeRecordingSummary with recorded and total counts

        Raises:
            DatabaseError: If a lookup or upsert fails
        """
        line_items = await self.bills.get_line_items(bill.id)
        recorded = 0
        try:
            for item in line_items:
                service_number = await self.service_numbers.get_by_number(item.service_number, account_id)
                if service_number is None:
                    LOGGER.warning(
                        f"No service number row for {item.service_number}; charge not recorded",
                        extra={"bill_id": str(bill.id)}
                    )
                    continue
                await self.charges.upsert(
                    service_number_id=service_number.id,
                    service_number=item.service_number,
                    bill_id=bill.id,
                    line_item_id=item.id,
                    billing_period_start=bill.billing_period_start,
                    billing_period_end=bill.billing_period_end,
                    bill_date=bill.bill_date,
                    subscription_charge=item.subscription_charge,
                    usage_charges=item.usage_charges,
                    other_charges=item.other_charges,
                    total_charge=item.total_charge,
                    package_name=item.package_name,
                )
                recorded += 1
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to record monthly charges for bill {bill.id}: {e}", original_error=e)

        LOGGER.info(
            f"Recorded {recorded} monthly charges",
            extra={"bill_id": str(bill.id), "line_items": len(line_items)}
        )
        return ChargeRecordingSummary(recorded=recorded, total=len(line_items))

    async def get_history(
        self, service_number: str, account_id: Optional[UUID] = None
    ) -> List[MonthlyChargeResponse]:
        """Charge history of a service number with invoice and account info.

        The same number can be registered on several accounts; pass
        ``account_id`` to keep one account's history.
        """
        rows = await self.charges.get_history(service_number, account_id)
        return [
            MonthlyChargeResponse.model_validate(charge).model_copy(
                update={
                    "invoice_number": invoice_number,
                    "account_number": account_number,
                    "account_name": account_name,
                }
            )
            for charge, invoice_number, account_number, account_name in rows
        ]

    async def get_for_bill(self, bill_id: UUID) -> List[MonthlyCharge]:
        return await self.charges.get_for_bill(bill_id)

    async def get_totals(self, service_number: str, account_id: Optional[UUID] = None) -> ChargeTotals:
        return ChargeTotals(**await self.charges.get_totals(service_number, account_id))
