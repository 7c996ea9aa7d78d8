from app.models.case import Case  # noqa: F401
from app.models.bill import Bill  # noqa: F401
