"""
FastAPI application exposing the Spark Points ledger.

Run (with MONGO_URI set for a persistent store):
  uvicorn spark_ledger.api.app:create_app --factory --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..errors import LedgerError
from .router import ServiceContainer, build_container, create_router


logger = logging.getLogger(__name__)


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    container = container or build_container()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Only the Mongo store needs indexes (unique dedupe_key, referral_code)
        ensure_indexes = getattr(container.db, "ensure_indexes", None)
        if ensure_indexes is not None:
            await ensure_indexes()
        yield

    app = FastAPI(title="Spark Points ledger", lifespan=lifespan)
    app.state.container = container
    app.include_router(create_router(container))

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        logger.info(
            "Ledger error on %s: %s",
            request.url.path,
            exc.message,
            extra={"code": exc.code, "user_id": request.headers.get("X-User-Id")},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc), "code": "INVALID_REQUEST"},
        )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app
