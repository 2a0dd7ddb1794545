"""Mapping of domain errors to HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import (
    FulfillmentError,
    IncompleteGate,
    InvalidTransition,
    NotFound,
    StaleState,
    Unauthorized,
    ValidationError,
)
from core.observability.logging import get_logger

logger = get_logger(__name__)

STATUS_CODES = {
    NotFound: 404,
    InvalidTransition: 409,
    StaleState: 409,
    Unauthorized: 403,
    IncompleteGate: 422,
    ValidationError: 400,
}


def status_code_for(error: FulfillmentError) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 500


async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.warning(
        f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}"
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FulfillmentError, fulfillment_error_handler)
