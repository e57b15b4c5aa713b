"""
Delivery protocol error taxonomy.

Each error carries the HTTP status the API answers with and a stable machine
code. The rider client maps the code back onto the same class, so callers on
both sides of the wire catch identical exception types.
"""

from fastapi import status


class DeliveryError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "DELIVERY_ERROR"
    retryable: bool = False

    def __init__(self, message: str | None = None, **extra) -> None:
        self.message = message or self.default_message()
        self.extra = extra
        super().__init__(self.message)

    @classmethod
    def default_message(cls) -> str:
        return cls.__name__

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message, **self.extra}


class AlreadyClaimed(DeliveryError):
    """Another rider won the conditional write (or the delivery left the claimable set)."""

    status_code = status.HTTP_409_CONFLICT
    code = "ALREADY_CLAIMED"

    @classmethod
    def default_message(cls) -> str:
        return "This delivery has already been accepted by another rider"


class NotAuthorized(DeliveryError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "NOT_AUTHORIZED"

    @classmethod
    def default_message(cls) -> str:
        return "This delivery is not assigned to you"


class InvalidTransition(DeliveryError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"


class TransientError(DeliveryError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "TRANSIENT"
    retryable = True

    @classmethod
    def default_message(cls) -> str:
        return "Temporary failure, please try again"


class ValidationError(DeliveryError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"


ERRORS_BY_CODE: dict[str, type[DeliveryError]] = {
    cls.code: cls
    for cls in (AlreadyClaimed, NotAuthorized, InvalidTransition, TransientError, ValidationError)
}
