"""
Prometheus metrics endpoint.

Exposes GET /metrics in Prometheus text exposition format, including the
reference data versions the billing engine is currently analyzing against.
"""

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from app.billing.reference import load_coding_rules, load_fee_schedule, reference_versions
from app.config import settings
from app.middleware.metrics import billing_reference_data

router = APIRouter(tags=["metrics"])


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics():
    billing_reference_data.info(reference_versions(
        load_fee_schedule(settings.fee_schedule_path),
        load_coding_rules(settings.coding_rules_path),
    ))
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
