"""Alert engine: bill-over-bill anomaly detection and the alert lifecycle."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billtracker.core.config import settings
from billtracker.core.exceptions import DatabaseError, InvalidStateTransition, NotFoundError
from billtracker.database.models import Alert, Bill
from billtracker.repositories.alert_repository import AlertRepository
from billtracker.repositories.bill_repository import BillRepository
from billtracker.services.bill_service import percentage_change
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

HIGH_CHARGE = "high_charge"

# (from status, action) -> to status
ALERT_TRANSITIONS: Dict[Tuple[str, str], str] = {
    ("active", "acknowledge"): "acknowledged",
    ("acknowledged", "resolve"): "resolved",
    ("active", "dismiss"): "dismissed",
}


def alert_severity(increase: Decimal) -> str:
    """Severity of a high charge alert for a percentage increase."""
    if increase >= 50:
        return "critical"
    if increase >= 30:
        return "high"
    return "medium"


class AlertService:
    """Service for Alert records."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.alerts = AlertRepository(session)
        self.bills = BillRepository(session)

    async def detect_alerts_for_bill(self, bill: Bill, threshold: Optional[float] = None) -> List[Alert]:
        """Compare a bill with the account's previous bill and raise alerts.

        Only ``completed`` bills linked to an account are compared. The
        previous bill is the latest completed one whose billing period
        starts before this bill's. Re-running for the same pair creates
        nothing new.

        Args:
            bill: The persisted bill
            threshold: Minimum percentage increase; defaults to
                ``HIGH_CHARGE_THRESHOLD``

        Returns:
            Alerts created by this call

        Raises:
            DatabaseError: If the lookup or insert fails
        """
        if bill.processing_status != "completed" or bill.service_account_id is None:
            return []

        limit = Decimal(str(threshold if threshold is not None else settings.high_charge_threshold))
        try:
            previous = await self.bills.get_previous_completed(
                bill.service_account_id, bill.billing_period_start
            )
            if previous is None or previous.total_due <= 0:
                return []

            raw_increase = percentage_change(bill.total_due, previous.total_due, rounded=False)
            if raw_increase < limit:
                return []

            increase = percentage_change(bill.total_due, previous.total_due)

            difference = bill.total_due - previous.total_due
            alert = await self.alerts.create_once({
                "bill_id": bill.id,
                "service_account_id": bill.service_account_id,
                "previous_bill_id": previous.id,
                "alert_type": HIGH_CHARGE,
                "severity": alert_severity(raw_increase),
                "current_amount": bill.total_due,
                "previous_amount": previous.total_due,
                "percentage_increase": increase,
                "threshold_exceeded": limit,
                "title": f"Bill increased by {increase:.1f}%",
                "description": (
                    f"Current bill (MVR {bill.total_due:.2f}) is {increase}% higher "
                    f"than last month (MVR {previous.total_due:.2f})"
                ),
                "status": "active",
                "metadata": {
                    "previous_invoice": previous.invoice_number,
                    "increase_amount": f"{difference:.2f}",
                },
            })
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to detect alerts for bill {bill.id}: {e}", original_error=e)

        if alert is None:
            LOGGER.info("High charge alert already raised", extra={"bill_id": str(bill.id)})
            return []

        LOGGER.info(
            f"Raised {alert.severity} high charge alert: +{increase}%",
            extra={"bill_id": str(bill.id), "alert_id": str(alert.id)}
        )
        return [alert]

    async def get_alert(self, alert_id: UUID) -> Alert:
        alert = await self.alerts.get_by_id(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert with ID {alert_id} not found")
        return alert

    async def _transition(self, alert_id: UUID, action: str, **changes) -> Alert:
        alert = await self.get_alert(alert_id)
        target = ALERT_TRANSITIONS.get((alert.status, action))
        if target is None:
            raise InvalidStateTransition(f"Cannot {action} an alert that is {alert.status}")
        try:
            updated = await self.alerts.update(alert_id, status=target, **changes)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to {action} alert {alert_id}: {e}", original_error=e)
        LOGGER.info(f"Alert {action}: {alert.status} -> {target}", extra={"alert_id": str(alert_id)})
        return updated

    async def acknowledge(self, alert_id: UUID, by: Optional[str] = None) -> Alert:
        return await self._transition(
            alert_id, "acknowledge", acknowledged_by=by, acknowledged_at=datetime.now(timezone.utc)
        )

    async def resolve(self, alert_id: UUID, by: Optional[str] = None, notes: Optional[str] = None) -> Alert:
        return await self._transition(
            alert_id,
            "resolve",
            resolved_by=by,
            resolution_notes=notes,
            resolved_at=datetime.now(timezone.utc),
        )

    async def dismiss(self, alert_id: UUID) -> Alert:
        return await self._transition(alert_id, "dismiss")

    async def list_alerts(self, status: Optional[str] = None, account_id: Optional[UUID] = None) -> List[Alert]:
        return await self.alerts.list_alerts(status=status, account_id=account_id)

    async def list_active(self) -> List[Alert]:
        return await self.alerts.list_alerts(status="active")

    async def get_alerts_for_bill(self, bill_id: UUID) -> List[Alert]:
        return await self.alerts.list_alerts(bill_id=bill_id)

    async def get_alerts_for_account(self, account_id: UUID) -> List[Alert]:
        return await self.alerts.list_alerts(account_id=account_id)
