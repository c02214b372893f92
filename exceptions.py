from fastapi import status


class BoardError(Exception):
    """Base class for errors the board surfaces to callers."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(BoardError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input"


class NotFoundError(BoardError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class LockedError(BoardError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Thread is locked"


class ForbiddenError(BoardError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Insufficient permissions"


class CapacityError(BoardError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Upload rejected"


class StoreUnavailableError(BoardError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Database is busy, try again"
