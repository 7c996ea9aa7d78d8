"""Shared test fixtures for backend tests."""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_bill_repository
from app.billing.errors import NotFoundError
from app.billing.models import BillingReport, BillLineItem
from app.main import app


def _make_item(index: int, **overrides) -> BillLineItem:
    """BillLineItem with sensible defaults for rule tests."""
    values = {
        "index": index,
        "case_id": "CASE-TEST",
        "provider_name": "Dr. Smith",
        "procedure_code": "99213",
        "billed_amount": Decimal("500.00"),
        "service_date": date(2024, 3, 1),
        "item_id": str(index + 1),
    }
    values.update(overrides)
    if isinstance(values["billed_amount"], (int, str)):
        values["billed_amount"] = Decimal(str(values["billed_amount"]))
    return BillLineItem(**values)


# Bills for the persisted-case API tests, as Bill.to_record() would return them
CASE_RECORDS = {
    "CASE-1001": [
        {"item_id": "1", "provider_name": "Dr. Smith", "procedure_code": "99213",
         "billed_amount": Decimal("500.00"), "service_date": date(2024, 3, 1),
         "service_description": "Office visit"},
        {"item_id": "2", "provider_name": "Dr. Smith", "procedure_code": "99213",
         "billed_amount": Decimal("500.00"), "service_date": date(2024, 3, 1),
         "service_description": "Office visit"},
        {"item_id": "3", "provider_name": "City Imaging", "procedure_code": "72148",
         "billed_amount": Decimal("1500.00"), "service_date": date(2024, 3, 5),
         "paid_amount": Decimal("500.00"), "outstanding_balance": Decimal("1000.00"),
         "service_description": "MRI lumbar spine"},
        {"item_id": "4", "provider_name": "Mercy Hospital", "procedure_code": "99283",
         "billed_amount": Decimal("250.00"), "service_date": date(2024, 3, 10),
         "service_description": "Emergency department visit"},
    ],
    "CASE-EMPTY": [],
}


class InMemoryBillRepository:
    """Stands in for BillRepository so API tests need no database."""

    def __init__(self, cases: dict[str, list[dict]]):
        self.cases = cases
        self.flagged_reports: dict[str, BillingReport] = {}

    async def load_records(self, case_id: str) -> list[dict]:
        if case_id not in self.cases:
            raise NotFoundError(f"Case {case_id} not found")
        return [dict(r) for r in self.cases[case_id]]

    async def apply_flags(self, case_id: str, report: BillingReport) -> int:
        if case_id not in self.cases:
            raise NotFoundError(f"Case {case_id} not found")
        self.flagged_reports[case_id] = report
        return len({m.duplicate_id for m in report.matches})


@pytest.fixture
def make_item():
    """Factory fixture: make_item(index, **overrides) -> BillLineItem."""
    return _make_item


@pytest.fixture
def bill_repository() -> InMemoryBillRepository:
    return InMemoryBillRepository({k: list(v) for k, v in CASE_RECORDS.items()})


@pytest_asyncio.fixture
async def client(bill_repository: InMemoryBillRepository) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the repository dependency replaced by the in-memory one."""
    app.dependency_overrides[get_bill_repository] = lambda: bill_repository
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
