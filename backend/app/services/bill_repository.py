"""
Bill Repository

Loads a case's persisted bills in ingestion order for analysis and writes
the analysis flags (duplicate linkage, reasonableness, benchmark) back.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.errors import NotFoundError
from app.billing.models import BillingReport, MatchType
from app.models import Bill, Case

logger = logging.getLogger(__name__)


class BillRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_case(self, case_id: str) -> Case:
        result = await self.session.execute(select(Case).where(Case.case_id == case_id))
        case = result.scalar_one_or_none()
        if case is None:
            raise NotFoundError(f"Case {case_id} not found")
        return case

    async def list_bills(self, case_id: str) -> list[Bill]:
        """Bills for a case in ingestion order. NotFoundError for an unknown case."""
        case = await self.get_case(case_id)
        result = await self.session.execute(
            select(Bill).where(Bill.case_id == case.id).order_by(Bill.id)
        )
        return list(result.scalars())

    async def load_records(self, case_id: str) -> list[dict]:
        return [bill.to_record() for bill in await self.list_bills(case_id)]

    async def apply_flags(self, case_id: str, report: BillingReport) -> int:
        """Overwrite every bill's analysis flags from `report`. Returns bills flagged."""
        bills = {str(b.id): b for b in await self.list_bills(case_id)}
        now = datetime.utcnow()

        for bill in bills.values():
            bill.is_duplicate = False
            bill.duplicate_of_id = None
            bill.duplicate_type = None
            bill.reasonableness = None
            bill.benchmark_rate = None
            bill.analyzed_at = now

        flagged = 0
        for match in report.matches:
            bill = bills.get(match.duplicate_id)
            if bill is None:
                continue
            bill.duplicate_type = match.match_type.value
            if match.match_type != MatchType.UPCODING:
                bill.is_duplicate = True
                bill.duplicate_of_id = int(match.original_id) if match.original_id else None
            flagged += 1

        for row in report.rows:
            bill = bills.get(row.item_id)
            if bill is None:
                continue
            bill.reasonableness = row.assessment.value
            bill.benchmark_rate = row.benchmark_rate

        await self.session.flush()
        logger.info("Case %s: wrote analysis flags to %d bills (%d flagged)", case_id, len(bills), flagged)
        return flagged
