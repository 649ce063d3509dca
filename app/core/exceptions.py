from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code = "INTERNAL"

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationFailed(ServiceError):
    """Business-rule violation (deadline, grade, capacity)."""

    code = "VALIDATION"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotFoundError(ServiceError):
    code = "NOT_FOUND"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ForbiddenError(ServiceError):
    code = "AUTH"

    def __init__(self, message: str = "You are not allowed to act on this resource") -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class ConflictError(ServiceError):
    code = "CONFLICT"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class DuplicateRequestError(ConflictError):
    """An active participation request already exists for the (student, event) pair."""

    code = "DUPLICATE"


class CapacityConflictError(ConflictError):
    """The event roster or a request's status changed between the read and the write."""


class InvalidTransitionError(ServiceError):
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Invalid status transition: {from_status} -> {to_status}",
            status.HTTP_400_BAD_REQUEST,
        )
        self.from_status = from_status
        self.to_status = to_status
