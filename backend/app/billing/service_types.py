"""Service-type categorization for the billing summary breakdown."""

EMERGENCY_SERVICES = "Emergency Services"
HOSPITAL_INPATIENT = "Hospital Inpatient"
HOSPITAL_OUTPATIENT = "Hospital Outpatient"
DIAGNOSTIC_IMAGING = "Diagnostic Imaging"
LABORATORY = "Laboratory"
PHYSICAL_THERAPY = "Physical Therapy"
MEDICATIONS = "Medications"
MEDICAL_EQUIPMENT = "Medical Equipment"
HOME_HEALTH = "Home Health"
OTHER = "Other"

_ED_CODES = ("99281", "99282", "99283", "99284", "99285")

# (low, high, category) over the code string; codes compare lexically
_CODE_RANGES = [
    ("70000", "79999", DIAGNOSTIC_IMAGING),
    ("80000", "89999", LABORATORY),
    ("97000", "97799", PHYSICAL_THERAPY),
    ("10000", "69999", HOSPITAL_OUTPATIENT),
]

_DESCRIPTION_KEYWORDS = [
    (MEDICATIONS, ("medication", "drug", "prescription", "pharmacy")),
    (MEDICAL_EQUIPMENT, ("equipment", "durable medical", "wheelchair", "crutches")),
    (HOME_HEALTH, ("home health", "home care")),
]


def categorize_service_type(procedure_code: str | None, description: str | None) -> str:
    """Map a code and free-text description to a service-type category."""
    code = (procedure_code or "").strip().upper()
    desc = (description or "").lower()

    if code.startswith(_ED_CODES) or "emergency" in desc:
        return EMERGENCY_SERVICES

    if code.startswith(("9922", "9923")) or "inpatient" in desc or "admission" in desc:
        return HOSPITAL_INPATIENT

    if code:
        for low, high, category in _CODE_RANGES:
            if low <= code <= high:
                return category

    for category, keywords in _DESCRIPTION_KEYWORDS:
        if any(kw in desc for kw in keywords):
            return category

    return OTHER
