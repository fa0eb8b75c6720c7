"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from milestone_escrow.config import settings
from milestone_escrow.errors import EscrowError, MilestonesIncomplete, ValidationError
from milestone_escrow.routers import escrows
from milestone_escrow.runtime import lifecycle

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: settle in-flight transfers and flush notifications on shutdown."""
    yield
    await lifecycle.drain()
    await lifecycle.store.notifier.drain()


app = FastAPI(
    title="Milestone Escrow",
    description="Operator-managed, milestone-gated escrow lifecycle",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EscrowError)
async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    content: dict = {"detail": exc.detail, "error": type(exc).__name__}
    if isinstance(exc, ValidationError):
        content["constraint"] = exc.constraint
    if isinstance(exc, MilestonesIncomplete):
        content["first_index"] = exc.first_index
        content["incomplete"] = exc.indices
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=content)


app.include_router(escrows.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
