from repair_desk.core.error_codes import ErrorCode

DEFAULT_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.ALREADY_VOIDED: 409,
    ErrorCode.ALREADY_INVOICED: 409,
    ErrorCode.INVALID_STATUS: 409,
    ErrorCode.SLOT_CONFLICT: 409,
    ErrorCode.TECH_ALREADY_PUNCHED_IN: 409,
    ErrorCode.STRIPE_NOT_CONNECTED: 409,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.NOT_CONFIGURED: 500,
    ErrorCode.UPSTREAM_ERROR: 502,
}


class DomainException(Exception):
    """Business rule failure carrying a stable code and an HTTP status."""

    def __init__(self, code: ErrorCode, message: str, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code or DEFAULT_STATUS_BY_CODE.get(code, 400)


def bad_request(message: str) -> DomainException:
    return DomainException(code=ErrorCode.VALIDATION_ERROR, message=message)


def forbidden(message: str = "Forbidden") -> DomainException:
    return DomainException(code=ErrorCode.FORBIDDEN, message=message)


def not_found(message: str) -> DomainException:
    return DomainException(code=ErrorCode.NOT_FOUND, message=message)


def conflict(message: str, code: ErrorCode = ErrorCode.CONFLICT) -> DomainException:
    return DomainException(code=code, message=message)
