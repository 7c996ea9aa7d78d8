"""
Billing engine error taxonomy.

ValidationError and NotFoundError are fatal for a request and surface to the
caller (mapped to 422 / 404 in app.main). Per-item data problems are not
exceptions: they are recorded as DataQualityWarning entries on the report.
"""


class BillingError(Exception):
    """Base class for billing engine errors."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(BillingError):
    """A required identifying field is missing or the input is unusable as a whole."""

    status_code = 422


class NotFoundError(BillingError):
    """The referenced case or line-item set does not exist."""

    status_code = 404
