"""
Storefront error types and FastAPI error handlers.

The semantic search pipeline recovers from everything below except
CatalogUnavailable, which is the only error allowed to reach the client
from a search request.

Usage:
    from storefront.core.exceptions import setup_error_handlers, NotFoundError

    # In main.py
    setup_error_handlers(app)

    # In routes
    if not product:
        raise NotFoundError("Product not found", product_id=product_id)
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """Base exception for storefront errors."""

    status_code = 500
    error_type = "internal_error"
    message = "An unexpected error occurred"

    def __init__(self, message=None, **kwargs):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = kwargs

    def to_dict(self):
        return {
            "type": self.error_type,
            "message": self.message,
            "details": self.details,
        }


class ModelUnavailable(StorefrontError):
    """Embedding model is not loaded or failed to load."""
    status_code = 503
    error_type = "model_unavailable"
    message = "Embedding model is not available"


class EmbeddingError(StorefrontError):
    """Text could not be embedded."""
    status_code = 500
    error_type = "embedding_error"
    message = "Failed to generate embedding"

    def __init__(self, message=None, empty_input: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.empty_input = empty_input


class StoreUnavailable(StorefrontError):
    """Vector store could not be reached or the similarity query failed."""
    status_code = 503
    error_type = "store_unavailable"
    message = "Vector store is not available"


class CatalogUnavailable(StorefrontError):
    """Product catalog query failed."""
    status_code = 503
    error_type = "catalog_unavailable"
    message = "Product catalog is temporarily unavailable"


class NotFoundError(StorefrontError):
    """Resource not found."""
    status_code = 404
    error_type = "not_found"
    message = "Resource not found"


def setup_error_handlers(app: FastAPI):
    """Register error handlers with the FastAPI app."""

    @app.exception_handler(StorefrontError)
    async def handle_storefront_error(request: Request, error: StorefrontError):
        log_level = logging.WARNING if error.status_code < 500 else logging.ERROR
        logger.log(
            log_level,
            f"{error.error_type}: {error.message}",
            extra={
                "error_type": error.error_type,
                "details": error.details,
                "path": request.url.path,
            },
        )
        return JSONResponse(
            status_code=error.status_code,
            content={"success": False, "error": error.to_dict()},
        )
