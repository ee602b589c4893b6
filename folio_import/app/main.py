"""
FolioImport FastAPI application.
Main entry point for the import API.
"""
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from folio_import.app.api.v1.router import router as api_v1_router
from folio_import.app.config import get_settings, set_test_mode, is_test_mode
from folio_import.app.db import base  # noqa: F401 - registers the tables on SQLModel.metadata
from folio_import.app.db.session import create_schema, get_default_engine
from folio_import.app.logging_config import configure_logging, get_logger
from folio_import.app.services.market_data import FinanceQueryClient

# Check for --test flag in command line arguments
# This must be done before any imports that might use settings
if "--test" in sys.argv:
    set_test_mode(True)
    print("[FolioImport] Test mode enabled (--test flag detected)")
    sys.argv.remove("--test")  # Remove flag so uvicorn doesn't complain

# Get settings after test mode is set
settings = get_settings()

# Configure logging with settings
configure_logging(settings.LOG_LEVEL, enable_file_logging=settings.LOG_TO_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan context manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "Starting FolioImport",
        version=settings.VERSION,
        database_url=settings.DATABASE_URL.split("///")[-1],  # Hide full path in logs
        test_mode=is_test_mode(),
        )

    await create_schema(get_default_engine())

    # One client (and circuit breaker) for the whole process
    app.state.market_client = FinanceQueryClient.from_settings(settings)

    yield
    # Shutdown
    await app.state.market_client.aclose()
    logger.info("Shutting down FolioImport")


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url=f"{settings.API_V1_PREFIX}/docs",
    redoc_url=f"{settings.API_V1_PREFIX}/redoc",
    lifespan=lifespan,
    )

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    )

# Mount API v1 router
app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    """
    Root endpoint.
    Provides basic API information.
    """
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
        }


if __name__ == "__main__":
    uvicorn.run("folio_import.app.main:app", host="0.0.0.0", port=settings.PORT)
