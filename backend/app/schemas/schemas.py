"""
Pydantic schemas for API request/response models.

Analysis reports are returned as the engine's own `to_dict()` output; the
models here cover requests and the small fixed-shape responses.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


# ── Line items ──

class LineItemIn(BaseModel):
    """
    One raw bill line item. Amounts and dates are accepted loosely
    ("$1,200.00", "03/15/2024") and validated by the engine's intake,
    which reports bad values as warnings instead of rejecting the request.
    Extractor field names (charge_amount, cpt_code, bill_date, balance)
    are accepted as extra fields.
    """
    model_config = ConfigDict(extra="allow")

    item_id: str | None = None
    provider_name: str | None = None
    procedure_code: str | None = None
    modifier: str | None = None
    billed_amount: Decimal | str | None = None
    paid_amount: Decimal | str | None = None
    outstanding_balance: Decimal | str | None = None
    service_date: date | str | None = None
    service_description: str | None = None
    status: str | None = None
    service_type: str | None = None
    encounter_type: str | None = None


class ReasonablenessPolicyIn(BaseModel):
    commercial_multiplier: Decimal | None = Field(None, gt=0)
    excessive_multiplier: Decimal | None = Field(None, gt=0)

    def overrides(self) -> dict:
        return self.model_dump(exclude_none=True)


class AnalyzeRequest(BaseModel):
    case_id: str | None = None
    line_items: list[LineItemIn] = Field(default_factory=list)
    policy: ReasonablenessPolicyIn | None = None


# ── Flags ──

class FlagsRequest(BaseModel):
    case_id: str


class FlagsResponse(BaseModel):
    case_id: str
    bills_analyzed: int
    bills_flagged: int
    duplicate_matches: int
    rate_overcharges: int
    skipped_count: int


# ── Reasonableness ──

class ReasonablenessResponse(BaseModel):
    case_id: str
    rows: list[dict]
    summary: dict
    footnotes: str
    table_markdown: str
    skipped_count: int
    generated_at: datetime


# ── Reference data ──

class ReferenceInfo(BaseModel):
    fee_schedule_version: str
    fee_schedule_source: str
    fee_schedule_entries: int
    fee_schedule_bands: int
    default_rate: float
    coding_rules_version: str
    bundles: int
    upcoding_families: int
