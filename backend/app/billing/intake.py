"""
Line-item intake — data quality gate in front of the engine.

Accepts raw bill records from the API, the database (Bill.to_record()) or an
extractor, and turns them into immutable BillLineItems. Nothing here raises
for a bad record: problems become DataQualityWarnings and the record is
either dropped or kept with the offending field cleared.

Checks:
- billed amount present, numeric, finite, non-negative and below
  MAX_AMOUNT (else item dropped)
- procedure code shaped like a CPT/HCPCS code (else no rate analysis)
- service date parseable (else no date-based duplicate rules)
- paid / balance amounts parseable (else field dropped)
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from app.billing.models import BillLineItem, DataQualityWarning

logger = logging.getLogger(__name__)

EXCLUDED_ALL = "all"
EXCLUDED_RATE_ANALYSIS = "rate_analysis"
EXCLUDED_DATE_RULES = "date_rules"
EXCLUDED_NONE = "none"

# Amounts at or above this are treated as extraction garbage, keeping every
# total well inside Decimal's default precision once quantized to cents
MAX_AMOUNT = Decimal("1000000000000")

_CODE_RE = re.compile(r"^([A-Z0-9]{5})(?:[-\s]?([A-Z0-9]{2}))?$")
_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%m-%d-%Y")

# Canonical field -> accepted input keys, first present wins
FIELD_ALIASES = {
    "item_id": ("item_id", "id", "bill_id"),
    "provider_name": ("provider_name", "provider"),
    "procedure_code": ("procedure_code", "cpt_code", "code"),
    "modifier": ("modifier",),
    "billed_amount": ("billed_amount", "charge_amount", "charged_amount", "amount"),
    "paid_amount": ("paid_amount",),
    "outstanding_balance": ("outstanding_balance", "balance"),
    "service_date": ("service_date", "bill_date", "date"),
    "service_description": ("service_description", "description"),
    "status": ("status",),
    "service_type": ("service_type",),
    "encounter_type": ("encounter_type",),
}


@dataclass
class IntakeResult:
    items: list[BillLineItem] = field(default_factory=list)
    warnings: list[DataQualityWarning] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len({w.index for w in self.warnings if w.excluded_from == EXCLUDED_ALL})


class _FieldError(ValueError):
    pass


def _as_mapping(record) -> dict:
    if isinstance(record, dict):
        return record
    if hasattr(record, "to_record"):
        return record.to_record()
    if hasattr(record, "model_dump"):
        return record.model_dump()
    raise TypeError(f"Unsupported bill record type: {type(record).__name__}")


def _pick(raw: dict, name: str):
    for key in FIELD_ALIASES[name]:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_amount(value) -> Decimal | None:
    """Parse a currency amount. None when absent; _FieldError when unusable."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise _FieldError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        cleaned = str(value).strip().replace("$", "").replace(",", "")
        if not cleaned:
            return None
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            raise _FieldError(f"not a number: {value!r}") from None
    if not amount.is_finite():
        raise _FieldError(f"not finite: {value!r}")
    if amount < 0:
        raise _FieldError(f"negative amount: {value!r}")
    if amount >= MAX_AMOUNT:
        raise _FieldError(f"implausibly large amount: {value!r}")
    return amount


def parse_service_date(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    # ISO timestamps: keep the date part
    candidate = text[:10] if len(text) > 10 and text[4:5] == "-" else text
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    raise _FieldError(f"unrecognized date: {value!r}")


def parse_procedure_code(value) -> tuple[str | None, str | None]:
    """Split "99213-25" into ("99213", "25"). (None, None) when absent."""
    text = _text(value)
    if text is None:
        return None, None
    match = _CODE_RE.match(text.upper())
    if not match:
        raise _FieldError(f"unrecognized procedure code: {value!r}")
    return match.group(1), match.group(2)


def normalize_line_items(case_id: str, records) -> IntakeResult:
    """Validate and normalize raw records into BillLineItems, in input order."""
    result = IntakeResult()

    for index, record in enumerate(records):
        raw = _as_mapping(record)
        item_id = _text(_pick(raw, "item_id"))

        def warn(field_name: str, reason: str, excluded_from: str) -> None:
            result.warnings.append(DataQualityWarning(
                index=index,
                item_id=item_id,
                field=field_name,
                reason=reason,
                excluded_from=excluded_from,
            ))
            logger.debug("Bill record %d (%s): %s %s", index, item_id, field_name, reason)

        # ── Billed amount (required) ──
        try:
            billed = parse_amount(_pick(raw, "billed_amount"))
        except _FieldError as e:
            warn("billed_amount", str(e), EXCLUDED_ALL)
            continue
        if billed is None:
            warn("billed_amount", "missing billed amount", EXCLUDED_ALL)
            continue

        # ── Optional amounts ──
        optional_amounts = {}
        for name in ("paid_amount", "outstanding_balance"):
            try:
                optional_amounts[name] = parse_amount(_pick(raw, name))
            except _FieldError as e:
                warn(name, str(e), EXCLUDED_NONE)
                optional_amounts[name] = None

        # ── Procedure code ──
        try:
            code, modifier = parse_procedure_code(_pick(raw, "procedure_code"))
        except _FieldError as e:
            warn("procedure_code", str(e), EXCLUDED_RATE_ANALYSIS)
            code, modifier = None, None
        explicit_modifier = _text(_pick(raw, "modifier"))
        if explicit_modifier:
            modifier = explicit_modifier.upper()

        # ── Service date ──
        try:
            service_date = parse_service_date(_pick(raw, "service_date"))
        except _FieldError as e:
            warn("service_date", str(e), EXCLUDED_DATE_RULES)
            service_date = None

        result.items.append(BillLineItem(
            index=index,
            item_id=item_id,
            case_id=case_id,
            provider_name=_text(_pick(raw, "provider_name")) or "",
            procedure_code=code,
            modifier=modifier,
            billed_amount=billed,
            paid_amount=optional_amounts["paid_amount"],
            outstanding_balance=optional_amounts["outstanding_balance"],
            service_date=service_date,
            service_description=_text(_pick(raw, "service_description")) or "",
            status=_text(_pick(raw, "status")),
            service_type=_text(_pick(raw, "service_type")),
            encounter_type=_text(_pick(raw, "encounter_type")),
        ))

    if result.skipped_count:
        logger.warning(
            "Case %s: skipped %d of %d bill records during intake",
            case_id, result.skipped_count, result.skipped_count + len(result.items),
        )
    return result
