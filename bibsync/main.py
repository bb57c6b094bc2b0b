"""
FastAPI application entry point for the bibsync backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import sys

from bibsync.config.settings import get_settings
from bibsync.api import annotations, config, items, libraries, sync, uploads
from bibsync.runtime import get_runtime, reset_runtime

# Get settings to access log configuration
settings = get_settings()

# Configure logging with both console and file output
# Use UTF-8 encoding to handle Unicode characters in titles and file names
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.DEBUG)
console_handler.setFormatter(logging.Formatter(
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
))
if hasattr(console_handler.stream, 'reconfigure'):
    try:
        console_handler.stream.reconfigure(encoding='utf-8', errors='replace')
    except Exception:
        pass  # Ignore if reconfigure fails

handlers = [console_handler]

# Path("") becomes Path("."), so treat that as unset too
log_file_str = str(settings.log_file).strip() if settings.log_file else ""
if log_file_str and log_file_str != ".":
    file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ))
    handlers.append(file_handler)

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=handlers,
    force=True  # Override any existing configuration
)

# Suppress overly verbose third-party loggers
logging.getLogger("aiohttp").setLevel(logging.INFO)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.INFO)

# Route uvicorn's loggers through the root handlers and format
for name in ("uvicorn.access", "uvicorn.error"):
    uvicorn_logger = logging.getLogger(name)
    uvicorn_logger.handlers = []
    uvicorn_logger.propagate = True

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(f"Starting bibsync backend v{settings.version}")
    logger.info(f"Database: {settings.resolved_database_path}")
    logger.info(f"Cache: {settings.resolved_cache_dir}")
    if settings.log_file:
        logger.info(f"Logging to file: {settings.log_file}")

    runtime = get_runtime()
    if settings.auto_sync:
        runtime.scheduler.start()
    else:
        logger.info("Automatic sync disabled; use POST /api/sync")

    yield

    logger.info("Shutting down bibsync backend")
    await runtime.close()
    reset_runtime()


# Create FastAPI app
app = FastAPI(
    title="bibsync API",
    description="Local-first reference library with PDF annotation sync",
    version=settings.version,
    lifespan=lifespan
)

# Local-only server used by the desktop UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(config.router, prefix="/api", tags=["config"])
app.include_router(libraries.router, prefix="/api", tags=["libraries"])
app.include_router(items.router, prefix="/api", tags=["items"])
app.include_router(annotations.router, prefix="/api", tags=["annotations"])
app.include_router(sync.router, prefix="/api", tags=["sync"])
app.include_router(uploads.router, prefix="/api", tags=["uploads"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "bibsync API",
        "version": settings.version,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("bibsync.main:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
