"""Marketplace FastAPI application.

Processes commands synchronously via HTTP. Every request runs inside the
marketplace domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - "test"       → event_processing = "sync"  (notifications fire in UoW)
#   - "production" → event_processing = "async" (notifications fire via Engine)
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from marketplace.domain import marketplace
from marketplace.utils.logging import bind_request_context, clear_request_context, configure_logging

configure_logging()
marketplace.init()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Marketplace API",
    description="Payments, escrow, orders and delivery for a multi-vendor marketplace",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the marketplace domain context and bind a request id for logging."""
    bind_request_context(request_id=request.headers.get("x-request-id") or uuid4().hex, path=request.url.path)
    try:
        with marketplace.domain_context():
            response = await call_next(request)
        return response
    finally:
        clear_request_context()


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from marketplace.api import order_router, payment_router, register_error_handlers  # noqa: E402

app.include_router(payment_router)
app.include_router(order_router)
register_error_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "domains": {"marketplace": {"name": marketplace.name}},
        }
    )
