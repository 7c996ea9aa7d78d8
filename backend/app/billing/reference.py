"""
Reference data loader.

The fee schedule and the coding-rule tables (bundles, E&M upcoding families)
are versioned JSON assets validated into pydantic models. They are loaded
once per path and treated as read-only afterwards.
"""

import json
import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_FEE_SCHEDULE_PATH = DATA_DIR / "fee_schedule.json"
DEFAULT_CODING_RULES_PATH = DATA_DIR / "coding_rules.json"


# ── Fee schedule ──

class FeeScheduleEntry(BaseModel):
    rate: Decimal = Field(gt=0)
    description: str = ""


class FeeBand(BaseModel):
    name: str
    category: str
    low: int
    high: int
    rate: Decimal = Field(gt=0)

    @model_validator(mode="after")
    def _check_range(self):
        if self.low > self.high:
            raise ValueError(f"Band {self.name!r} has low > high")
        return self

    def contains(self, value: int) -> bool:
        return self.low <= value <= self.high


class FeeScheduleData(BaseModel):
    version: str
    source: str = ""
    default_rate: Decimal = Field(gt=0)
    entries: dict[str, FeeScheduleEntry]
    bands: list[FeeBand]

    @field_validator("entries")
    @classmethod
    def _normalize_codes(cls, value: dict[str, FeeScheduleEntry]) -> dict[str, FeeScheduleEntry]:
        return {code.strip().upper(): entry for code, entry in value.items()}


# ── Coding rules ──

class BundleRule(BaseModel):
    bundle_code: str
    description: str = ""
    components: list[str]
    min_components: int = Field(default=2, ge=1)


class UpcodingLevel(BaseModel):
    level: str
    keywords: list[str]


class UpcodingFamily(BaseModel):
    family: str
    description: str = ""
    codes: list[str]
    level_codes: dict[str, str]

    @model_validator(mode="after")
    def _check_level_codes(self):
        unknown = set(self.level_codes.values()) - set(self.codes)
        if unknown:
            raise ValueError(f"Family {self.family!r} maps levels to unknown codes {sorted(unknown)}")
        return self

    def rank(self, code: str) -> int:
        return self.codes.index(code)


class UpcodingTable(BaseModel):
    levels: list[UpcodingLevel]  # highest level first
    families: list[UpcodingFamily]

    def family_for(self, code: str) -> UpcodingFamily | None:
        for family in self.families:
            if code in family.codes:
                return family
        return None

    @property
    def level_names(self) -> list[str]:
        return [lvl.level for lvl in self.levels]


class CodingRules(BaseModel):
    version: str
    bundles: list[BundleRule]
    upcoding: UpcodingTable


# ── Loading ──

@lru_cache(maxsize=8)
def load_fee_schedule(path: str | None = None) -> FeeScheduleData:
    source = Path(path) if path else DEFAULT_FEE_SCHEDULE_PATH
    data = FeeScheduleData.model_validate(json.loads(source.read_text()))
    logger.info(
        "Loaded fee schedule %s from %s (%d entries, %d bands)",
        data.version, source, len(data.entries), len(data.bands),
    )
    return data


@lru_cache(maxsize=8)
def load_coding_rules(path: str | None = None) -> CodingRules:
    source = Path(path) if path else DEFAULT_CODING_RULES_PATH
    data = CodingRules.model_validate(json.loads(source.read_text()))
    logger.info(
        "Loaded coding rules %s from %s (%d bundles, %d E&M families)",
        data.version, source, len(data.bundles), len(data.upcoding.families),
    )
    return data


def reference_versions(fee_schedule: FeeScheduleData, coding_rules: CodingRules) -> dict:
    return {
        "fee_schedule": fee_schedule.version,
        "coding_rules": coding_rules.version,
    }
