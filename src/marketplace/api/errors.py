"""Maps marketplace errors onto HTTP responses.

Protean's own handlers cover ValidationError (400) and ObjectNotFoundError
(404). InvalidStateError is a ValidationError, so it gets its own, more
specific handler.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ExpectedVersionError
from protean.integrations.fastapi import register_exception_handlers

from marketplace.errors import ConcurrencyConflictError, GatewayError, InvalidSignatureError, InvalidStateError

logger = structlog.get_logger(__name__)

GATEWAY_UNAVAILABLE_MESSAGE = "The payment provider could not be reached. Please try again."


async def _invalid_state(request: Request, exc: InvalidStateError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": exc.messages})


async def _concurrency_conflict(request: Request, exc: ConcurrencyConflictError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": str(exc)})


async def _stale_version(request: Request, exc: ExpectedVersionError) -> JSONResponse:
    # Another process saved the aggregate between our load and our save.
    logger.warning("Stale aggregate version", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=409, content={"error": "The record was changed by another request. Please retry."})


async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
    # The raw gateway message stays in the logs; buyers get a generic line.
    logger.error("Gateway error", path=request.url.path, payment_id=exc.payment_id, error=str(exc))
    content = {"error": GATEWAY_UNAVAILABLE_MESSAGE}
    if exc.payment_id:
        content["payment_id"] = exc.payment_id
    return JSONResponse(status_code=502, content=content)


async def _invalid_signature(request: Request, exc: InvalidSignatureError) -> JSONResponse:
    logger.warning("Webhook rejected", path=request.url.path, reason=str(exc))
    return JSONResponse(status_code=401, content={"error": "Invalid webhook signature"})


def register_error_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)
    app.add_exception_handler(InvalidStateError, _invalid_state)
    app.add_exception_handler(ConcurrencyConflictError, _concurrency_conflict)
    app.add_exception_handler(ExpectedVersionError, _stale_version)
    app.add_exception_handler(GatewayError, _gateway_error)
    app.add_exception_handler(InvalidSignatureError, _invalid_signature)
