"""FastAPI application entry point for Bridge eSign."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from esign.api.esign_routes import esign_router
from esign.core.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    if settings.DATABASE_ENABLED:
        from esign.db import init_db
        init_db()
    else:
        logger.warning("DATABASE_ENABLED is false, skipping database initialization")
    yield


app = FastAPI(
    title="Bridge eSign API",
    description="Electronic-signature workflow engine for the Bridge real-estate portal",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(esign_router)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "bridge-esign"}
