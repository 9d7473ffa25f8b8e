"""Account registry: lookup, auto-registration and account maintenance."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billtracker.core.config import settings
from billtracker.core.exceptions import ConflictError, DatabaseError, NotFoundError, ValidationError
from billtracker.database.models import ServiceAccount
from billtracker.repositories.account_repository import AccountRepository
from billtracker.schemas.ingestion import AccountResolution, MonthlyTotal
from billtracker.schemas.records import AccountCreate, AccountUpdate
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

AUTO_REGISTERED_DESCRIPTION = (
    "Automatically registered during bill processing. Please update account details."
)
MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class AccountService:
    """Service for ServiceAccount records."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.accounts = AccountRepository(session)

    async def resolve(self, account_number: str, provider: Optional[str] = None) -> AccountResolution:
        """Find the account for a bill, registering it when unknown.

        Concurrent calls for the same number converge on one row: the
        insert is a no-op on conflict and the row is re-read afterwards.

        Args:
            account_number: Account number printed on the bill
            provider: ISP name for a new account; defaults to ``DEFAULT_PROVIDER``

        Returns:
            AccountResolution with ``auto_registered`` true only for the
            call that created the row

        Raises:
            DatabaseError: If the lookup or insert fails
        """
        try:
            account = await self.accounts.get_by_account_number(account_number)
            if account:
                return AccountResolution(account=account, auto_registered=False)

            created = await self.accounts.insert_if_absent(
                account_number=account_number,
                account_name=f"Auto-registered {account_number}",
                provider=provider or settings.default_provider,
                description=AUTO_REGISTERED_DESCRIPTION,
                is_auto_registered=True,
            )
            account = await self.accounts.get_by_account_number(account_number)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to resolve account {account_number}: {e}", original_error=e)

        if account is None:
            raise DatabaseError(f"Account {account_number} missing after insert")

        if created:
            LOGGER.info(
                f"Auto-registered new account: {account_number}",
                extra={"account_id": str(account.id)}
            )
        return AccountResolution(account=account, auto_registered=created)

    async def create_account(self, data: AccountCreate) -> ServiceAccount:
        """Create an account explicitly.

        Raises:
            ConflictError: If the account number is already registered
        """
        try:
            created = await self.accounts.insert_if_absent(
                account_number=data.account_number,
                account_name=data.account_name,
                provider=data.provider or settings.default_provider,
                description=data.description,
                is_auto_registered=False,
            )
            if not created:
                raise ConflictError(f"Account with number {data.account_number} already exists")
            return await self.accounts.get_by_account_number(data.account_number)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to create account: {e}", original_error=e)

    async def get_account(self, account_id: UUID) -> ServiceAccount:
        account = await self.accounts.get_by_id(account_id)
        if account is None:
            raise NotFoundError(f"Account with ID {account_id} not found")
        return account

    async def get_by_number(self, account_number: str) -> Optional[ServiceAccount]:
        return await self.accounts.get_by_account_number(account_number)

    async def account_exists(self, account_number: str) -> bool:
        return await self.get_by_number(account_number) is not None

    async def list_accounts(self, active_only: bool = False) -> List[ServiceAccount]:
        return await self.accounts.list_accounts(active_only=active_only)

    async def update_account(self, account_id: UUID, data: AccountUpdate) -> ServiceAccount:
        """Apply the fields set on ``data``.

        Raises:
            ValidationError: If no field is set
            NotFoundError: If the account does not exist
        """
        changes = data.model_dump(exclude_unset=True, by_alias=False)
        if not changes:
            raise ValidationError("No fields to update")
        try:
            account = await self.accounts.update(account_id, **changes)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to update account {account_id}: {e}", original_error=e)
        if account is None:
            raise NotFoundError(f"Account with ID {account_id} not found")
        return account

    async def delete_account(self, account_id: UUID) -> None:
        try:
            deleted = await self.accounts.delete(account_id)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to delete account {account_id}: {e}", original_error=e)
        if not deleted:
            raise NotFoundError(f"Account with ID {account_id} not found")

    async def count_accounts(self) -> int:
        return await self.accounts.count()

    async def get_recently_added(self, hours: int = 24) -> List[ServiceAccount]:
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        return await self.accounts.get_created_since(since)

    async def get_monthly_totals(self, account_id: UUID, year: Optional[int] = None) -> List[MonthlyTotal]:
        """Sum of completed bills per month of the billing period start.

        Returns:
            Twelve entries, January first, zero for months without bills
        """
        year = year or datetime.now(timezone.utc).year
        bills = await self.accounts.get_completed_bills_in_year(account_id, year)

        totals = [Decimal("0")] * 12
        for bill in bills:
            totals[bill.billing_period_start.month - 1] += bill.total_due

        return [
            MonthlyTotal(month=index + 1, month_name=MONTH_NAMES[index], total=total)
            for index, total in enumerate(totals)
        ]
