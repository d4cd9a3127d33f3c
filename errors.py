"""
Error taxonomy for the API.

Every failure leaves the service as a JSON body of the form
``{"status": "fail" | "error", "message": "..."}`` with the HTTP status
conveying the category.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    status = 'error'
    default_message = 'Something went wrong'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    status = 'fail'
    default_message = 'Invalid input data'


class AuthenticationError(AppError):
    status_code = 401
    status = 'fail'
    default_message = 'You are not logged in. Please log in to get access.'


class AuthorizationError(AppError):
    status_code = 403
    status = 'fail'
    default_message = 'You do not have permission to perform this action.'


class NotFoundError(AppError):
    status_code = 404
    status = 'fail'
    default_message = 'Resource not found'


class ConflictError(AppError):
    # Conflicts (duplicate booking, overbooking, second check-in) are
    # reported as plain 400s rather than 409.
    status_code = 400
    status = 'fail'
    default_message = 'Request conflicts with the current state'


def error_body(status: str, message: str) -> Dict[str, Any]:
    return {'status': status, 'message': message}


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = [str(p) for p in err.get('loc', ()) if p not in ('body', 'query', 'path')]
        field = '.'.join(loc)
        parts.append(f"{field}: {err.get('msg')}" if field else str(err.get('msg')))
    return '; '.join(parts) or ValidationError.default_message


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code == 401:
        logger.warning("auth rejected %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.status, exc.message))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=error_body('fail', _validation_message(exc)))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == 'Not Found':
        message = f"Can't find {request.url.path} on this server"
    status = 'fail' if exc.status_code < 500 else 'error'
    return JSONResponse(status_code=exc.status_code, content=error_body(status, str(message)),
                        headers=getattr(exc, 'headers', None))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body('error', AppError.default_message))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
