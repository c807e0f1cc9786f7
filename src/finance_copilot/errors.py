class FinanceCopilotError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class UnauthorizedError(FinanceCopilotError):
    status_code = 401
    code = "unauthorized"


class ValidationError(FinanceCopilotError):
    status_code = 400
    code = "validation_error"


class ConflictError(FinanceCopilotError):
    status_code = 409
    code = "conflict"


class UnsafeQueryError(FinanceCopilotError):
    status_code = 400
    code = "unsafe_query"


class ExternalServiceError(FinanceCopilotError):
    status_code = 502
    code = "external_service_error"


class NotFoundError(FinanceCopilotError):
    # Also used for records owned by another user, so existence never leaks.
    status_code = 404
    code = "not_found"
