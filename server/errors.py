"""Application errors. Each carries the HTTP status the API answers with."""
from typing import Optional


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, **extra):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"success": False, "message": self.message}
        payload.update(self.extra)
        return payload


class NotAuthenticatedError(AppError):
    status_code = 401
    default_message = "Not authenticated"


class NotAuthorizedError(AppError):
    status_code = 403
    default_message = "Admin access required"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ValidationError(AppError):
    status_code = 400
    default_message = "Please fill all required fields"

    def __init__(self, message: Optional[str] = None, fields: Optional[dict] = None):
        super().__init__(message, fields=fields or {})
        self.fields = fields or {}


class ConstraintViolationError(AppError):
    status_code = 409
    default_message = "The change conflicts with existing data"


class AlreadyVotedError(ConstraintViolationError):
    default_message = "You have already voted for this nominee"


class CategoryInUseError(ConstraintViolationError):
    def __init__(self, count: int, name: str = ""):
        message = f"Cannot delete category {name!r}: it has {count} nominee(s)" if name \
            else f"Cannot delete category: it has {count} nominee(s)"
        super().__init__(message, count=count)
        self.count = count


class VoteLimitError(ConstraintViolationError):
    default_message = "You have reached the maximum number of votes"


class AlreadyRegisteredError(ConstraintViolationError):
    default_message = "You are already registered for this event"


class EventFullError(ConstraintViolationError):
    default_message = "This event is full"


class VoteLockedError(AppError):
    status_code = 403
    default_message = "This vote can no longer be removed: more than 2 hours have passed"


class VotingClosedError(AppError):
    status_code = 403
    default_message = "Voting session is closed."


class TransientStoreError(AppError):
    status_code = 503
    default_message = "The database is temporarily unavailable. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, retryable=True)


class SchemaDriftError(AppError):
    status_code = 503
    default_message = "The database schema is incomplete. An administrator must repair it."

    def __init__(self, message: Optional[str] = None, missing: Optional[str] = None):
        super().__init__(message, schema_drift=True, missing=missing,
                         repair_endpoint="/api/admin/setup-database")
        self.missing = missing
