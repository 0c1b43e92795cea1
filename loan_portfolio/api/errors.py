"""
Translate domain exceptions into JSON error responses
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..exceptions import (
    LoanPortfolioError, ValidationError, NotFoundError, AuthorizationError,
    ConcurrencyError, StoreError
)
from ..logging_config import get_logger, log_action


logger = get_logger(__name__)

# Most specific first
STATUS_CODES = [
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConcurrencyError, 409),
    (StoreError, 500),
]


def status_for(exc: LoanPortfolioError) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def portfolio_error_handler(request: Request, exc: LoanPortfolioError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        log_action(logger, "error", f"Request failed: {exc}", method=request.method,
                   path=request.url.path, status_code=status_code,
                   exc_info=(type(exc), exc, exc.__traceback__))
    else:
        log_action(logger, "warning", f"Request rejected: {exc}", method=request.method,
                   path=request.url.path, status_code=status_code)
    return JSONResponse(status_code=status_code, content={"message": str(exc)})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail},
                        headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content={"message": message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LoanPortfolioError, portfolio_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
