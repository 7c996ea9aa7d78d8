"""
Billing API — rate reasonableness and duplicate-charge analysis

Ad-hoc analysis of supplied line items, reports for persisted cases,
writing analysis flags back onto bills, and reference data metadata.
"""

import logging

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_bill_repository
from app.billing.reference import load_coding_rules, load_fee_schedule
from app.billing.summary import analyze_line_items
from app.config import settings
from app.middleware.request_context import case_context
from app.schemas.schemas import AnalyzeRequest, FlagsRequest, FlagsResponse, ReferenceInfo
from app.services.bill_repository import BillRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/analyze")
async def analyze(body: AnalyzeRequest):
    """Analyze the supplied line items without persisting anything."""
    records = [item.model_dump() for item in body.line_items]
    policy = body.policy.overrides() if body.policy else None
    with case_context(body.case_id or ""):
        report = analyze_line_items(body.case_id, records, policy=policy)
    return report.to_dict()


@router.get("/summary")
async def billing_summary(
    case_id: str = Query(..., min_length=1),
    repo: BillRepository = Depends(get_bill_repository),
):
    """Full billing report for a persisted case."""
    with case_context(case_id):
        records = await repo.load_records(case_id)
        report = analyze_line_items(case_id, records)
    return report.to_dict()


@router.post("/flags", response_model=FlagsResponse)
async def write_flags(body: FlagsRequest, repo: BillRepository = Depends(get_bill_repository)):
    """Recompute the analysis and store duplicate / reasonableness flags on the case's bills."""
    with case_context(body.case_id):
        records = await repo.load_records(body.case_id)
        report = analyze_line_items(body.case_id, records)
        flagged = await repo.apply_flags(body.case_id, report)

    return FlagsResponse(
        case_id=body.case_id,
        bills_analyzed=report.summary.num_bills,
        bills_flagged=flagged,
        duplicate_matches=len(report.matches),
        rate_overcharges=len(report.summary.overcharges),
        skipped_count=report.summary.skipped_count,
    )


@router.get("/reference", response_model=ReferenceInfo)
async def reference_info():
    fee_schedule = load_fee_schedule(settings.fee_schedule_path)
    coding_rules = load_coding_rules(settings.coding_rules_path)
    return ReferenceInfo(
        fee_schedule_version=fee_schedule.version,
        fee_schedule_source=fee_schedule.source,
        fee_schedule_entries=len(fee_schedule.entries),
        fee_schedule_bands=len(fee_schedule.bands),
        default_rate=float(fee_schedule.default_rate),
        coding_rules_version=coding_rules.version,
        bundles=len(coding_rules.bundles),
        upcoding_families=len(coding_rules.upcoding.families),
    )
