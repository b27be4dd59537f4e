from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.exceptions import ReferenceDataError
from .api.routes import router as rates_router
from .api.health import router as health_router
from .services.engine import get_rate_engine

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT,
)
logger = logging.getLogger('rate_engine')


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info(f"Starting up {settings.APP_NAME} {settings.APP_VERSION}...")
    try:
        engine = get_rate_engine()
        logger.info(f"Builtin store ready with {len(engine.builtin_store.zones)} zones")
    except ReferenceDataError as e:
        logger.error(f"Failed to load builtin reference data: {e}")
        raise

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Shipping quote resolution across spreadsheet and builtin pricing tables",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health_router, prefix="/api", tags=["Health"])
app.include_router(rates_router, prefix="/api", tags=["Rates"])
