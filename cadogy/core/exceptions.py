"""
Error taxonomy shared by services and routes.

Every AppError is rendered by the handlers in main.py as
{"error": <error>, "message": <message>} with the class status code.
"""
from typing import Any, Optional


class AppError(Exception):
    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str, extra: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        # Additional fields merged into the JSON body
        self.extra = extra or {}


class ValidationFailed(AppError):
    status_code = 400
    error = "Bad Request"


class Unauthorized(AppError):
    status_code = 401
    error = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    error = "Forbidden"


class NotFound(AppError):
    status_code = 404
    error = "Not Found"


class Conflict(AppError):
    status_code = 409
    error = "Conflict"


class InvalidOrExpiredToken(ValidationFailed):
    def __init__(self):
        super().__init__("Invalid or expired token")


class InsufficientBalance(ValidationFailed):
    def __init__(self, balance: int):
        super().__init__("Insufficient token balance", extra={"balance": balance})


class GatewayError(AppError):
    """A third-party service (payments, email, captcha) failed"""
    status_code = 502
    error = "Bad Gateway"


class Unverified(Forbidden):
    """Credential login refused until the email address is verified"""

    def __init__(self, email: str):
        super().__init__(
            "Please verify your email before logging in",
            extra={"verified": False, "email": email},
        )
