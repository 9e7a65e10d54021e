"""Main FastAPI application for the SmartFolio share service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import settings
from .database import close_db, init_db
from .errors import InvalidShare, SmartFolioError
from .routers import health, portfolio, share

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        *([logging.FileHandler(settings.log_file)] if settings.log_file else [])
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting SmartFolio API")
    await init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down SmartFolio API")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI app
app = FastAPI(
    title="SmartFolio API",
    description="Portfolio tracking with revocable share links and AI insights",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [settings.share_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SmartFolioError)
async def smartfolio_error_handler(request: Request, exc: SmartFolioError) -> JSONResponse:
    """Map service errors to status codes."""
    if isinstance(exc, InvalidShare):
        logger.debug(f"{request.url.path}: share link rejected ({exc.reason})")
    elif exc.status_code >= 500:
        logger.error(f"{request.url.path}: {type(exc).__name__}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Include routers
app.include_router(health.router)
app.include_router(portfolio.router)
app.include_router(share.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "SmartFolio API",
        "version": __version__,
        "status": "operational",
        "price_provider": settings.price_provider,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "smartfolio.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
