"""Bill aggregate: creation with line items, review workflow and comparison."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billtracker.core.exceptions import DatabaseError, NotFoundError, PersistenceError
from billtracker.database.models import Bill, LineItem
from billtracker.repositories.account_repository import AccountRepository
from billtracker.repositories.bill_repository import BillRepository
from billtracker.schemas.extraction import BillExtractionResult
from billtracker.schemas.ingestion import BillComparison
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

_CENT = Decimal("0.01")


def percentage_change(current: Decimal, previous: Decimal, rounded: bool = True) -> Decimal:
    """Percentage change from ``previous`` to ``current``.

    The result is rounded to cents unless ``rounded`` is false. Returns 0
    when ``previous`` is not positive.
    """
    if previous <= 0:
        return Decimal("0")
    change = (current - previous) / previous * 100
    return change.quantize(_CENT) if rounded else change


class BillService:
    """Service for Bill records."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.bills = BillRepository(session)

    async def create_bill_from_extraction(
        self,
        extraction: BillExtractionResult,
        file_name: str,
        file_path: Optional[str] = None,
        file_hash: Optional[str] = None,
        file_size_bytes: Optional[int] = None,
        account_id: Optional[UUID] = None,
        requires_review: Optional[bool] = None,
        raw_payload: Optional[Dict[str, Any]] = None,
    ) -> Bill:
        """Persist a bill and its line items atomically.

        The bill is ``completed`` when linked to an account and not flagged
        for review, otherwise ``review_required``.

        Args:
            extraction: Validated extraction
            file_name: Original upload name
            file_path: Stored file location
            file_hash: SHA-256 of the file
            file_size_bytes: File size
            account_id: Resolved account, if any
            requires_review: Force the review flag; defaults to "no account"
            raw_payload: Payload as returned by the model, kept for auditing

        Returns:
            The committed Bill

        Raises:
            PersistenceError: If the insert fails; nothing is written
        """
        review = requires_review if requires_review is not None else account_id is None
        status = "completed" if account_id is not None and not review else "review_required"

        bill_values = {
            "service_account_id": account_id,
            "invoice_number": extraction.invoice_number,
            "account_number": extraction.account_number,
            "billing_period_start": extraction.billing_period_start,
            "billing_period_end": extraction.billing_period_end,
            "bill_date": extraction.bill_date,
            "due_date": extraction.due_date,
            "current_charges": extraction.current_charges,
            "outstanding_amount": extraction.outstanding,
            "gst_amount": extraction.gst_amount,
            "total_due": extraction.total_due,
            "discounts": extraction.discounts,
            "file_path": file_path,
            "file_name": file_name,
            "file_hash": file_hash,
            "file_size_bytes": file_size_bytes,
            "processing_status": status,
            "requires_review": review,
            "extraction_confidence": Decimal(str(extraction.confidence)),
            "extracted_data": raw_payload if raw_payload is not None else extraction.model_dump(mode="json", by_alias=True),
            "processed_at": datetime.now(timezone.utc),
        }
        line_items = [
            {
                "service_number": item.service_number,
                "service_type": item.service_type,
                "package_name": item.package_name,
                "subscription_charge": item.subscription_charge,
                "usage_charges": item.usage_charges,
                "other_charges": item.other_charges,
                "total_charge": item.total_charge,
                "usage_details": item.usage_details,
                "service_period_start": item.service_period_start,
                "service_period_end": item.service_period_end,
            }
            for item in extraction.line_items
        ]

        try:
            return await self.bills.create_with_line_items(bill_values, line_items)
        except IntegrityError as e:
            raise PersistenceError(
                f"Bill {extraction.invoice_number} conflicts with an existing record", original_error=e
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to persist bill {extraction.invoice_number}: {e}", original_error=e)

    async def get_bill(self, bill_id: UUID) -> Bill:
        bill = await self.bills.get_by_id(bill_id)
        if bill is None:
            raise NotFoundError(f"Bill with ID {bill_id} not found")
        return bill

    async def get_by_invoice_number(self, invoice_number: str) -> Optional[Bill]:
        return await self.bills.get_by_invoice_number(invoice_number)

    async def list_bills(
        self,
        account_id: Optional[UUID] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Bill]:
        return await self.bills.list_bills(account_id=account_id, status=status, skip=skip, limit=limit)

    async def get_bills_requiring_review(self) -> List[Bill]:
        return await self.bills.list_bills(requires_review=True, limit=500)

    async def get_line_items(self, bill_id: UUID) -> List[LineItem]:
        await self.get_bill(bill_id)
        return await self.bills.get_line_items(bill_id)

    async def link_bill_to_account(self, bill_id: UUID, account_id: UUID) -> Bill:
        """Attach a bill to an account and mark it completed.

        Raises:
            NotFoundError: If the bill or the account does not exist
        """
        if await AccountRepository(self.session).get_by_id(account_id) is None:
            raise NotFoundError(f"Account with ID {account_id} not found")
        return await self._update(
            bill_id,
            service_account_id=account_id,
            processing_status="completed",
            requires_review=False,
        )

    async def verify_bill(self, bill_id: UUID) -> Bill:
        return await self._update(bill_id, is_verified=True, requires_review=False)

    async def _update(self, bill_id: UUID, **changes: Any) -> Bill:
        try:
            bill = await self.bills.update(bill_id, **changes)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to update bill {bill_id}: {e}", original_error=e)
        if bill is None:
            raise NotFoundError(f"Bill with ID {bill_id} not found")
        return bill

    async def get_previous_bill(self, bill: Bill) -> Optional[Bill]:
        """Latest completed bill of the same account with an earlier period."""
        if bill.service_account_id is None:
            return None
        return await self.bills.get_previous_completed(bill.service_account_id, bill.billing_period_start)

    async def compare_bills(self, bill_id: UUID, previous_bill_id: Optional[UUID] = None) -> BillComparison:
        """Compare a bill with an explicit or the automatically chosen previous bill."""
        current = await self.get_bill(bill_id)
        previous = await self.get_bill(previous_bill_id) if previous_bill_id else await self.get_previous_bill(current)

        if previous is None:
            return BillComparison(current_bill_id=current.id, current_total=current.total_due)

        current_numbers = [item.service_number for item in await self.bills.get_line_items(current.id)]
        previous_numbers = [item.service_number for item in await self.bills.get_line_items(previous.id)]
        difference = current.total_due - previous.total_due

        return BillComparison(
            current_bill_id=current.id,
            previous_bill_id=previous.id,
            current_total=current.total_due,
            previous_total=previous.total_due,
            difference=difference,
            percentage_change=percentage_change(current.total_due, previous.total_due),
            has_increased=difference > 0,
            new_service_numbers=[n for n in current_numbers if n not in set(previous_numbers)],
            removed_service_numbers=[n for n in previous_numbers if n not in set(current_numbers)],
        )
