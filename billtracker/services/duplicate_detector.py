"""Duplicate bill detection.

Checks run in precedence order invoice > file > billing period and the
first match is reported together with the bill it matched.
"""

from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from billtracker.database.models import Bill
from billtracker.repositories.bill_repository import BillRepository
from billtracker.schemas.ingestion import DuplicateCheck, DuplicateReason
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DuplicateDetector:
    """Looks up existing bills matching an incoming one."""

    def __init__(self, session: AsyncSession):
        self.bills = BillRepository(session)

    @staticmethod
    def _found(reason: DuplicateReason, message: str, bill: Bill) -> DuplicateCheck:
        LOGGER.info(
            f"Duplicate detected ({reason.value})",
            extra={"existing_bill_id": str(bill.id), "invoice_number": bill.invoice_number}
        )
        return DuplicateCheck(
            is_duplicate=True,
            reason=reason,
            message=message,
            existing_bill_id=bill.id,
            existing_invoice_number=bill.invoice_number,
        )

    async def _check_invoice_and_file(
        self,
        invoice_number: Optional[str],
        file_hash: Optional[str],
        file_name: Optional[str],
    ) -> Optional[DuplicateCheck]:
        if invoice_number:
            existing = await self.bills.get_by_invoice_number(invoice_number)
            if existing:
                return self._found(
                    DuplicateReason.INVOICE,
                    f"Invoice {invoice_number} already exists in the system.",
                    existing,
                )

        existing = await self.bills.get_by_file_hash(file_hash) if file_hash else None
        if existing is None and file_name:
            existing = await self.bills.get_by_file_name(file_name)
        if existing:
            return self._found(
                DuplicateReason.FILE,
                f'File "{file_name or existing.file_name}" has already been uploaded.',
                existing,
            )
        return None

    async def check_pre_scan(
        self,
        invoice_number: Optional[str],
        file_hash: Optional[str],
        file_name: Optional[str],
    ) -> DuplicateCheck:
        """Duplicate check available before full extraction: invoice, then file."""
        found = await self._check_invoice_and_file(invoice_number, file_hash, file_name)
        return found or DuplicateCheck.clear()

    async def check_full(
        self,
        invoice_number: str,
        file_hash: Optional[str],
        file_name: Optional[str],
        account_number: str,
        period_start: date,
        period_end: date,
    ) -> DuplicateCheck:
        """Full duplicate check: invoice, then file, then billing period.

        The billing period check matches a completed bill for the same
        account number with the identical period.
        """
        found = await self._check_invoice_and_file(invoice_number, file_hash, file_name)
        if found:
            return found

        existing = await self.bills.get_completed_for_period(account_number, period_start, period_end)
        if existing:
            return self._found(
                DuplicateReason.BILLING_PERIOD,
                f"Account {account_number} already has a bill for the billing period "
                f"{period_start.isoformat()} to {period_end.isoformat()}.",
                existing,
            )
        return DuplicateCheck.clear()
