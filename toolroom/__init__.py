"""Application factory for the Toolroom ledger API.

``create_app`` wires configuration, the document store, the id cache and the
transaction engine into a FastAPI instance. The store is opened (schema
created, id cache preloaded) when the app starts and closed when it stops.
Pass a store explicitly to run against the in-memory backend.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from .core.config import AppSettings, settings
from .core.errors import (
    LedgerError,
    StoreError,
    http_exception_handler,
    ledger_error_handler,
    store_error_handler,
    validation_exception_handler,
)
from .middlewares import RequestIdMiddleware, SecurityHeadersMiddleware
from .routers import api_admin, api_auth, api_consumables, api_history, api_reports, api_transactions
from .services.id_mapping import IdMappingCache
from .services.transactions import TransactionEngine
from .store import DocumentStore, build_store


def create_app(store: DocumentStore | None = None, *, config: AppSettings | None = None) -> FastAPI:
    config = config or settings
    store = store or build_store(config)
    engine = TransactionEngine(store, IdMappingCache(store), config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        create_schema = getattr(store, "create_schema", None)
        if create_schema is not None:
            await create_schema()
        if config.PRELOAD_ID_CACHE:
            await engine.id_cache.preload()
        try:
            yield
        finally:
            await store.close()

    app = FastAPI(title=config.APP_NAME, lifespan=lifespan)
    app.state.engine = engine

    # Registered last runs first: request ids wrap everything else.
    app.add_middleware(SecurityHeadersMiddleware)
    if config.ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.ALLOWED_ORIGINS,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(StoreError, store_error_handler)

    app.include_router(api_auth.router)
    app.include_router(api_transactions.router)
    app.include_router(api_history.router)
    app.include_router(api_consumables.router)
    app.include_router(api_reports.router)
    app.include_router(api_admin.router)
    return app


__all__ = ["create_app"]
