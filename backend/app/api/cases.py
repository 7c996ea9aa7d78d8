"""
Cases API — per-case reasonableness report

Rows, case statistics, methodology footnotes and a markdown table ready
for demand letters.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_bill_repository
from app.billing.fee_schedule import FeeScheduleResolver
from app.billing.report import format_reasonableness_table, methodology_footnotes
from app.billing.summary import analyze_line_items
from app.middleware.request_context import case_context
from app.schemas.schemas import ReasonablenessResponse
from app.services.bill_repository import BillRepository

router = APIRouter(prefix="/api/cases", tags=["cases"])


@router.get("/{case_id}/reasonableness", response_model=ReasonablenessResponse)
async def case_reasonableness(
    case_id: str,
    limit: int = Query(10, ge=1, le=100),
    repo: BillRepository = Depends(get_bill_repository),
):
    with case_context(case_id):
        records = await repo.load_records(case_id)
        resolver = FeeScheduleResolver()
        report = analyze_line_items(case_id, records, resolver=resolver)

    return ReasonablenessResponse(
        case_id=case_id,
        rows=[r.to_dict() for r in report.rows],
        summary=report.reasonableness.to_dict(),
        footnotes=methodology_footnotes(fee_schedule_version=resolver.version),
        table_markdown=format_reasonableness_table(report.rows, limit=limit),
        skipped_count=report.summary.skipped_count,
        generated_at=datetime.utcnow(),
    )
