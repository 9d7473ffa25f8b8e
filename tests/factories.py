"""Builders for extraction payloads and bill PDFs used across tests."""

import asyncio
import copy
from typing import Any, Dict, List, Optional

import fitz

from billtracker.schemas.extraction import QuickScanResult, QuickScanStrategy


def bill_payload(
    invoice_number: str = "B1-100000001",
    account_number: str = "BA12345678",
    period_start: str = "2024-01-01",
    period_end: str = "2024-01-31",
    bill_date: Optional[str] = None,
    line_items: Optional[List[Dict[str, Any]]] = None,
    total_due: Optional[float] = None,
) -> Dict[str, Any]:
    """Raw extraction payload in the camelCase shape the vision model returns."""
    if line_items is None:
        line_items = [
            {
                "serviceNumber": "7771001",
                "packageName": "Postpaid 100",
                "subscriptionCharge": 80.0,
                "usageCharges": 20.0,
                "otherCharges": 0.0,
                "totalCharge": 100.0,
            }
        ]
    items_total = round(sum(item["totalCharge"] for item in line_items), 2)
    total = items_total if total_due is None else total_due
    return {
        "accountNumber": account_number,
        "invoiceNumber": invoice_number,
        "billingPeriodStart": period_start,
        "billingPeriodEnd": period_end,
        "billDate": bill_date or period_end,
        "dueDate": None,
        "currentCharges": total,
        "outstanding": 0.0,
        "totalDue": total,
        "gstAmount": 0.0,
        "lineItems": line_items,
        "confidence": 95,
    }


def line_item(service_number: str, total: float, package_name: Optional[str] = "Postpaid") -> Dict[str, Any]:
    return {
        "serviceNumber": service_number,
        "packageName": package_name,
        "subscriptionCharge": total,
        "usageCharges": 0.0,
        "otherCharges": 0.0,
        "totalCharge": total,
    }


def make_pdf(invoice_number: str = "B1-100000001", account_number: str = "BA12345678") -> bytes:
    """A one-page PDF whose text layer carries the bill identifiers."""
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Dhiraagu Monthly Bill", fontsize=14)
    page.insert_text((72, 110), f"Invoice No: {invoice_number}", fontsize=11)
    page.insert_text((72, 130), f"Account No: {account_number}", fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data



class FakeExtractor:
    """Stands in for the vision extractor with a canned payload or error."""

    def __init__(self, payload: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None, delay: float = 0):
        self.payload = payload if payload is not None else bill_payload()
        self.error = error
        self.delay = delay
        self.calls = 0
        self.started = asyncio.Event()

    async def quick_extract(self, image) -> QuickScanResult:
        return QuickScanResult(confidence=0, strategy=QuickScanStrategy.VISION)

    async def extract_bill(self, images) -> Dict[str, Any]:
        self.calls += 1
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.payload)
