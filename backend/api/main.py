"""
Reorder Engine API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from api.deps import close_kv_store
from core.config import get_settings
from core.exceptions import ReorderError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Reorder API starting up", version=settings.app_version)
    yield
    await close_kv_store()
    logger.info("Reorder API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Demand forecasting and reorder suggestion engine",
    lifespan=lifespan,
)


@app.exception_handler(ReorderError)
async def reorder_error_handler(request: Request, exc: ReorderError):
    if exc.status_code >= 500:
        logger.error("api.reorder_error", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.info("api.reorder_error", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, **({"context": exc.details} if exc.details else {})},
    )


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import reorder

app.include_router(reorder.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
