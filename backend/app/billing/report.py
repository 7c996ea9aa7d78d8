"""
Report helpers for demand letters and the reasonableness endpoint.

Markdown output only; spreadsheet / document rendering lives elsewhere.
"""

from decimal import Decimal

from app.billing.models import Assessment, ReasonablenessRow
from app.billing.reasonableness import DEFAULT_REASONABLENESS_POLICY


def filter_by_assessment(rows: list[ReasonablenessRow], assessment: Assessment | str) -> list[ReasonablenessRow]:
    wanted = Assessment(assessment)
    return [r for r in rows if r.assessment == wanted]


def sort_by_variance(rows: list[ReasonablenessRow]) -> list[ReasonablenessRow]:
    """Highest variance first; equal variances keep input order."""
    return sorted(rows, key=lambda r: r.variance_pct, reverse=True)


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[:width].rstrip() + "..."


def format_reasonableness_table(rows: list[ReasonablenessRow], limit: int = 10) -> str:
    """Markdown table of the `limit` rows with the largest variance."""
    lines = [
        "| CPT Code | Service | Provider | Billed | CMS Benchmark | Variance | Assessment |",
        "|----------|---------|----------|--------|---------------|----------|------------|",
    ]
    for row in sort_by_variance(rows)[:limit]:
        service = _truncate(row.description, 30) if row.description else "Medical Service"
        variance = f"{'+' if row.variance_pct > 0 else ''}{row.variance_pct:.1f}%"
        lines.append(
            f"| {row.procedure_code} | {service} | {row.provider_name or 'Unknown'} "
            f"| ${float(row.billed_amount):,.2f} | ${float(row.benchmark_rate):,.2f} "
            f"| {variance} | {row.assessment.value} |"
        )
    return "\n".join(lines) + "\n"


def methodology_footnotes(policy: dict | None = None, fee_schedule_version: str | None = None) -> str:
    """
    Markdown explanation of how charges were assessed.

    Thresholds are rendered from the active policy so the footnotes always
    describe the numbers actually used. Contains no dates.
    """
    policy = {**DEFAULT_REASONABLENESS_POLICY, **(policy or {})}
    commercial = Decimal(policy["commercial_multiplier"])
    excessive = commercial * Decimal(policy["excessive_multiplier"])
    reasonable_pct = f"{commercial * 100:.0f}%"
    excessive_pct = f"{excessive * 100:.0f}%"
    version = fee_schedule_version or "current"

    return f"""## Methodology: Reasonableness of Medical Charges

### CMS Fee Schedule Benchmark

The Centers for Medicare & Medicaid Services (CMS) publishes annual Physician Fee Schedules that set Medicare reimbursement rates for services identified by Current Procedural Terminology (CPT) codes. These rates are widely used as an objective benchmark for reasonable and customary medical charges.

Each billed procedure code is matched to its fee schedule rate. Codes without a published rate are estimated from the rate typical of their CPT range (for example surgery by organ system, radiology by modality); codes outside every known range use a flat default.

### Variance Calculation

**Variance % = [(Billed Amount - CMS Benchmark) / CMS Benchmark] × 100**

### Reasonableness Thresholds

Commercial insurers typically reimburse 1.5 to 3 times Medicare. This analysis uses {commercial:g}× the benchmark as the commercial-equivalent reasonable rate:

- **Reasonable**: billed at or below {reasonable_pct} of the CMS benchmark.
- **High**: above {reasonable_pct} and up to {excessive_pct} of the CMS benchmark.
- **Excessive**: above {excessive_pct} of the CMS benchmark.

For high and excessive charges the potential overcharge is the amount billed above the reasonable rate.

### Duplicate and Coding Review

Charges are also screened for exact duplicates, near duplicates (same provider and procedure within a short window at a similar price), unbundled panel components and E&M visits coded above the documented encounter level. For duplicates the full repeated charge is treated as potential overcharge.

### Important Caveats

1. **Not a Ceiling**: CMS rates do not represent a legal maximum for private-pay charges.
2. **Context Matters**: provider specialization, facility overhead, emergency care and market conditions can justify higher charges.
3. **Legal Standard**: the governing standard is the reasonable value of services in the relevant area, not Medicare rates specifically.
4. **Modifiers**: CPT modifiers (e.g., -25, -59) may affect the appropriate comparison rate.

This analysis is provided for informational purposes and does not constitute a legal opinion on the recoverability of damages.

---

*Data Source: CMS Physician Fee Schedule, reference version {version}*
"""
