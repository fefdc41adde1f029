"""
FastAPI main application for the storefront API
"""
import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from storefront.core.config import settings
from storefront.core.database import engine
from storefront.core.exceptions import setup_error_handlers
from storefront.core.logging import setup_logging
from storefront.middleware import RequestLoggingMiddleware
from storefront.routers import products, search
from storefront.services.embedding_service import get_embedding_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    setup_logging()
    logger.info(f"Starting {settings.app_name} ({settings.environment})...")

    sanitized = re.sub(r"://[^:]*:[^@]*@", "://***:***@", settings.database_url)
    logger.info(f"DATABASE_URL: {sanitized}")

    embedding_service = get_embedding_service()
    preload_task = None
    if settings.embedding_preload:
        # Warm the model without holding up startup; searches fall back until it is ready
        preload_task = asyncio.create_task(embedding_service.preload())
    else:
        logger.info("Embedding model preload disabled, model loads on first search")

    logger.info("Application started")

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    if preload_task is not None and not preload_task.done():
        preload_task.cancel()
    embedding_service.unload()
    await engine.dispose()
    logger.info("Application stopped")


app = FastAPI(
    title=settings.app_name,
    description="Storefront catalog API with semantic product search",
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(RequestLoggingMiddleware)

setup_error_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers"""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.version,
        "semanticSearch": get_embedding_service().get_status().to_health(),
    }


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": settings.app_name,
        "version": settings.version,
        "docs": "/docs" if settings.environment == "development" else None,
        "endpoints": {
            "products": "/api/products",
            "semanticSearch": "/api/search/semantic",
            "searchHealth": "/api/search/health",
            "searchStatus": "/api/search/status",
        },
    }


app.include_router(products.router, prefix="/api")
app.include_router(search.router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_config=None,
        access_log=False,
    )
