import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException

from repair_desk.core.domain_exceptions import DomainException
from repair_desk.core.error_codes import ErrorCode
from repair_desk.schemas.common import APIError

logger = logging.getLogger(__name__)

CODE_BY_STATUS: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHENTICATED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    502: ErrorCode.UPSTREAM_ERROR,
}


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=APIError(code=code, error=message).model_dump(),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    code = CODE_BY_STATUS.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    return _error_response(exc.status_code, code, str(exc.detail))


async def domain_exception_handler(request: Request, exc: DomainException):
    return _error_response(exc.status_code, exc.code, exc.message)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request."
    return _error_response(400, ErrorCode.VALIDATION_ERROR, message)


async def integrity_exception_handler(request: Request, exc: IntegrityError):
    logger.warning("Integrity violation on %s: %s", request.url.path, exc.orig)
    return _error_response(409, ErrorCode.CONFLICT, "Conflicts with an existing record.")


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s", request.url.path)
    return _error_response(500, ErrorCode.INTERNAL_ERROR, "Database error.")


def register_exception_handlers(app) -> None:
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
