"""FastAPI application setup for hearth."""

from __future__ import annotations

import asyncio

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hearth.api import dependencies as deps
from hearth.api.routes_admin import router as admin_router
from hearth.api.routes_index import router as index_router
from hearth.api.routes_query import router as query_router
from hearth.core.errors import ConfigurationError, ProviderError, StorageError
from hearth.core.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="hearth",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5174",
        "http://localhost:5174",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(index_router, prefix="/index", tags=["index"])
app.include_router(query_router, prefix="", tags=["query"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    logger.warning("Provider failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": exc.message, "code": exc.code.value})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc), "kind": exc.kind.value})


@app.on_event("startup")
async def startup() -> None:
    """Open the vector store, load memories, and start watching the corpus."""
    settings = deps.get_app_settings()
    await deps.get_vector_store().initialize()
    deps.get_memory_manager().load()
    if settings.watch_enabled and settings.corpus_root.is_dir():
        deps.get_watcher().start(asyncio.get_running_loop())


@app.on_event("shutdown")
async def shutdown() -> None:
    await deps.shutdown()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
