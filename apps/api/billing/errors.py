from __future__ import annotations


class BillingError(Exception):
    """Base class for billing failures; `status_code` is what the HTTP layer returns."""

    status_code = 500


class ValidationError(BillingError, ValueError):
    status_code = 400


class NotFoundError(BillingError, LookupError):
    status_code = 404


class ConflictError(BillingError):
    status_code = 409


class RenderError(BillingError):
    status_code = 422


class DependencyError(BillingError):
    """A data-store or blob-store call failed."""

    status_code = 502

    def __init__(self, operation: str, message: str = ""):
        self.operation = operation
        text = f"Failed to {operation}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
