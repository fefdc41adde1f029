"""
Semantic search API routes
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.schemas.search import (
    SearchHealthResponse,
    SearchStatusResponse,
    SemanticSearchResponse,
    build_search_response,
)
from storefront.services.embedding_service import EmbeddingService, get_embedding_service
from storefront.services.semantic_search import SearchQuery, SemanticSearchEngine, get_search_engine
from storefront.services.vector_store import VectorStore, get_vector_store

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/search", tags=["search"])


@router.get(
    "/semantic",
    response_model=SemanticSearchResponse,
    response_model_exclude_unset=True,
)
async def semantic_search(
    q: str = Query("", description="Free-text search query"),
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of products"),
    db: AsyncSession = Depends(get_db),
    engine: SemanticSearchEngine = Depends(get_search_engine),
):
    """
    Search products by meaning.

    Falls back to keyword search when the model or vector store is not
    usable; only a catalog failure is returned as an error.
    """
    outcome = await engine.search(SearchQuery(text=q, limit=limit), db)
    return build_search_response(outcome)


@router.get("/health", response_model=SearchHealthResponse)
async def search_health(embedding_service: EmbeddingService = Depends(get_embedding_service)):
    """Embedding model readiness."""
    return SearchHealthResponse(**embedding_service.get_status().to_health())


@router.get("/status", response_model=SearchStatusResponse)
async def search_status(
    db: AsyncSession = Depends(get_db),
    embedding_service: EmbeddingService = Depends(get_embedding_service),
    vector_store: VectorStore = Depends(get_vector_store),
    engine: SemanticSearchEngine = Depends(get_search_engine),
):
    """Model cache status, vector store availability and effective search settings."""
    return SearchStatusResponse(
        model=embedding_service.get_cache_status(),
        vector_store=await vector_store.check_available(db),
        search=engine.describe(),
    )
