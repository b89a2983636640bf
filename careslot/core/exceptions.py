from fastapi import HTTPException, status


class SchedulingError(HTTPException):
    """Base class for errors raised by the scheduling services."""

    status_code_default = status.HTTP_400_BAD_REQUEST
    detail_default = "Scheduling request could not be processed"

    def __init__(self, detail: str = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.detail_default,
        )


class InvalidOperationError(SchedulingError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    detail_default = "Operation not allowed in the current state"


class NotFoundError(SchedulingError):
    status_code_default = status.HTTP_404_NOT_FOUND
    detail_default = "Resource not found"


class PermissionDeniedError(SchedulingError):
    status_code_default = status.HTTP_403_FORBIDDEN
    detail_default = "Not enough permissions"


class ConflictError(SchedulingError):
    status_code_default = status.HTTP_409_CONFLICT
    detail_default = "Request conflicts with an existing booking"


class DatabaseUnavailableError(SchedulingError):
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE
    detail_default = "Database unavailable. Verify DATABASE_URL and database credentials."
