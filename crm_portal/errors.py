from __future__ import annotations

from typing import Any, Dict

from crm_portal.ui_strings import error_message


class AppError(Exception):
    """Base for every error the API turns into a JSON body.

    ``code`` is the machine-readable ``error`` field; ``message_key`` picks the
    user-facing text from ``ui_strings``. ``critical`` errors are logged at
    ERROR with a traceback, the rest at WARNING.
    """

    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or code or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = self.default_critical if critical is None else bool(critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        return error_message(self.message_key, error_message("unexpected_error"))

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        body: Dict[str, Any] = dict(self.payload)
        body.update(error=self.code, message=self.user_message(), request_id=request_id)
        return body


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_message_key = "validation_error"


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_message_key = "not_found"
    default_http_status = 404


class ConflictError(UserActionError):
    """The request clashes with work in flight or needs a confirmation first."""

    default_code = "conflict"
    default_message_key = "conflict"
    default_http_status = 409


class AuthRequiredError(UserActionError):
    default_code = "auth_required"
    default_message_key = "auth_required"
    default_http_status = 401


class AccessDeniedError(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403


class RateLimitedError(UserActionError):
    default_code = "rate_limited"
    default_message_key = "rate_limited"
    default_http_status = 429

    def __init__(self, retry_after: int) -> None:
        super().__init__(payload={"retry_after": int(retry_after)})
        self.retry_after = int(retry_after)


class StoreError(AppError):
    """Raised when the data store rejects or fails a query."""

    default_code = "store_unavailable"
    default_message_key = "store_unavailable"
    default_http_status = 502
    default_critical = False


class UnexpectedError(AppError):
    default_code = "unexpected_error"
    default_message_key = "unexpected_error"
