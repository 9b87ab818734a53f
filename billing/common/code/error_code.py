"""Service-wide error codes.

Business code raises ``ErrCode.X.with_messages(...)``; routers convert the
resulting ``ErrCodeError`` into an ``HTTPException`` via ``handle_auth_error``.
"""

from __future__ import annotations

from enum import IntEnum

from fastapi import HTTPException, status


class ErrCode(IntEnum):
    # Generic
    UNKNOWN_ERROR = 1000
    INTERNAL_SERVER_ERROR = 1001
    INVALID_REQUEST = 1003

    # Auth
    AUTHENTICATION_REQUIRED = 2000
    ADMIN_REQUIRED = 2001

    # Catalog
    PLAN_NOT_FOUND = 3000
    COURSE_NOT_FOUND = 3001
    PRICING_UNAVAILABLE = 3002
    COURSE_ALREADY_OWNED = 3003

    # Orders
    ORDER_NOT_FOUND = 4000
    TRANSITION_REJECTED = 4001
    PROVIDER_NOT_CONFIGURED = 4002
    UNSUPPORTED_PROVIDER = 4003

    # Subscriptions
    SUBSCRIPTION_NOT_FOUND = 5000
    SUBSCRIPTION_STATE_CONFLICT = 5001

    def with_messages(self, *messages: str) -> ErrCodeError:
        return ErrCodeError(self, messages)

    def with_errors(self, *errors: BaseException) -> ErrCodeError:
        return ErrCodeError(self, tuple(str(err) for err in errors if err))


class ErrCodeError(Exception):
    def __init__(self, code: ErrCode, messages: tuple[str, ...] = ()) -> None:
        self.code = code
        self.messages = tuple(m for m in messages if m)
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.messages:
            return f"[{self.code.name}:{self.code.value}] {'; '.join(self.messages)}"
        return f"[{self.code.name}:{self.code.value}]"

    def as_dict(self) -> dict:
        if not self.messages:
            return {"msg": self.code.name.replace("_", " ").title(), "info": []}
        primary, *rest = self.messages
        body: dict = {"msg": primary}
        if rest:
            body["info"] = rest
        return body


_STATUS_MAP: dict[ErrCode, int] = {
    ErrCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrCode.PRICING_UNAVAILABLE: status.HTTP_400_BAD_REQUEST,
    ErrCode.PROVIDER_NOT_CONFIGURED: status.HTTP_400_BAD_REQUEST,
    ErrCode.UNSUPPORTED_PROVIDER: status.HTTP_400_BAD_REQUEST,
    ErrCode.AUTHENTICATION_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrCode.ADMIN_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrCode.PLAN_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrCode.COURSE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrCode.ORDER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrCode.SUBSCRIPTION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrCode.COURSE_ALREADY_OWNED: status.HTTP_409_CONFLICT,
    ErrCode.TRANSITION_REJECTED: status.HTTP_409_CONFLICT,
    ErrCode.SUBSCRIPTION_STATE_CONFLICT: status.HTTP_409_CONFLICT,
}


def handle_auth_error(error: ErrCodeError) -> HTTPException:
    """Map an ``ErrCodeError`` onto the HTTP status its code implies (500 if unmapped)."""
    status_code = _STATUS_MAP.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=status_code, detail=error.as_dict())
