"""Error taxonomy for incident writes."""
from __future__ import annotations

from fireline.sanitize import sanitize_error_detail


class ValidationError(Exception):
    """Malformed or missing payload fields. Raised before any transaction begins."""

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.fields = fields or []


class StorageError(Exception):
    """Any failure reported by the database layer."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def details(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message}: {sanitize_error_detail(self.cause)}"


class TransactionTimeout(Exception):
    """The bounded transaction did not finish in time."""

    def __init__(self, timeout: float):
        super().__init__(f"Transaction exceeded {timeout:g}s timeout")
        self.timeout = timeout


class TransactionStateError(RuntimeError):
    """Commit or rollback attempted on a transaction that is not open."""


class IncidentNotFound(Exception):
    def __init__(self, incident_id: int):
        super().__init__(f"Incident {incident_id} not found")
        self.incident_id = incident_id


class IncidentWriteFailed(Exception):
    """Raised after a write transaction was rolled back. `cause` holds the original error."""

    message = "Failed to write incident"

    def __init__(self, cause: BaseException):
        super().__init__(self.message)
        self.cause = cause

    @property
    def details(self) -> str:
        if isinstance(self.cause, StorageError):
            return self.cause.details
        return sanitize_error_detail(self.cause)


class CreationFailed(IncidentWriteFailed):
    message = "Failed to create incident"


class UpdateFailed(IncidentWriteFailed):
    message = "Failed to update incident"
