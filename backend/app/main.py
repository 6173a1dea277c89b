"""
FastAPI application entry point for the addenda conforming service.

Provides REST API for:
- Project creation and base document upload
- Addenda analysis and change review
- Conformed page previews, diffs and PDF export
- Change reports
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import __version__
from app.config import settings
from app.db import init_schema
from app.services.conform_workflow import close_all_workflows


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
    ]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting addenda conform service...")

    try:
        init_schema()
        logger.info("Database schema initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database schema: {e}")
        raise

    yield

    # Shutdown: close every open project document
    logger.info("Shutting down addenda conform service...")
    await close_all_workflows()


# Create FastAPI application
app = FastAPI(
    title="Addenda Conform",
    description="Conform construction drawings and specifications with their addenda",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
    }


# Import and include routers
from app.routers import projects
app.include_router(projects.router, prefix="/api/v1/projects", tags=["projects"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8080,
        reload=settings.debug,
    )
