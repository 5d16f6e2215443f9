"""Main application entry point."""
import logging
import traceback
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

from storefront.cache import create_cache
from storefront.config import (
    API_VERSION,
    CACHE_BACKEND,
    OTEL_ENABLED,
    PYROSCOPE_ENABLED,
    REDIS_URL,
    is_production,
)
from storefront.database import engine, init_db
from storefront.errors import StorefrontError
from storefront.logging_config import setup_logging
from storefront.monitoring import init_metrics, init_profiling, init_tracing
from storefront.routers import cart, orders, products

# Setup structured logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info("Starting application...")

    init_db()

    app.state.cache = create_cache(CACHE_BACKEND, REDIS_URL)

    if PYROSCOPE_ENABLED:
        init_profiling()

    logger.info("Application startup complete")

    yield

    logger.info("Application shutdown complete")


app = FastAPI(
    title="Storefront Order & Inventory Service",
    version=API_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if OTEL_ENABLED:
    init_tracing()
    init_metrics()
    FastAPIInstrumentor.instrument_app(app)
    SQLAlchemyInstrumentor().instrument(engine=engine)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    """Map domain errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error("Request failed", extra={
            "path": request.url.path,
            "error_type": exc.kind,
            "error": exc.message
        })
    else:
        logger.info("Request rejected", extra={
            "path": request.url.path,
            "error_type": exc.kind,
            "error": exc.message
        })
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "InvalidInput",
            "message": "Request validation failed",
            "details": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                for err in exc.errors()
            ],
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path})
    content = {"success": False, "error": "Internal", "message": "Internal Server Error"}
    if not is_production():
        content["type"] = type(exc).__name__
        content["traceback"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=500, content=content)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": API_VERSION}


app.include_router(products.router)
app.include_router(cart.router)
app.include_router(orders.router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
