"""
FeeScheduleResolver — maps a procedure code to a benchmark (Medicare) rate.

Resolution is a chain: curated exact entry, then the ordered band rules
over the code's leading integer (first match wins), then the default rate.
Every code, including garbage, resolves to a positive rate.
"""

import re
from dataclasses import dataclass
from decimal import Decimal

from app.billing.reference import FeeScheduleData, load_fee_schedule
from app.config import settings

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")

SOURCE_FEE_SCHEDULE = "fee_schedule"
SOURCE_ESTIMATE = "estimate"
SOURCE_DEFAULT = "default"


@dataclass(frozen=True)
class RateQuote:
    rate: Decimal
    source: str             # fee_schedule | estimate | default
    band: str | None = None
    description: str | None = None

    def to_dict(self) -> dict:
        return {
            "rate": float(self.rate),
            "source": self.source,
            "band": self.band,
            "description": self.description,
        }


def parse_leading_int(code: str) -> int | None:
    """Leading integer of a code: optional sign then digits. "J1234" -> None, "00000" -> 0."""
    match = _LEADING_INT_RE.match(code)
    return int(match.group(1)) if match else None


class FeeScheduleResolver:
    """Resolves benchmark rates against a loaded fee schedule."""

    def __init__(self, data: FeeScheduleData | None = None):
        self.data = data or load_fee_schedule(settings.fee_schedule_path)

    @property
    def version(self) -> str:
        return self.data.version

    def resolve(self, code: str | None) -> RateQuote:
        normalized = (code or "").strip().upper()

        entry = self.data.entries.get(normalized)
        if entry is not None:
            return RateQuote(entry.rate, SOURCE_FEE_SCHEDULE, description=entry.description)

        value = parse_leading_int(normalized)
        if value is None:
            return RateQuote(self.data.default_rate, SOURCE_DEFAULT)

        for band in self.data.bands:
            if band.contains(value):
                return RateQuote(band.rate, SOURCE_ESTIMATE, band=band.name)

        return RateQuote(self.data.default_rate, SOURCE_DEFAULT)

    def rate(self, code: str | None) -> Decimal:
        return self.resolve(code).rate

    def describe(self, code: str | None) -> str | None:
        """Curated description, falling back to the band name."""
        quote = self.resolve(code)
        return quote.description or quote.band
