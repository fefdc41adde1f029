"""
Semantic search engine.

Each request runs through an explicit state machine:

    INIT -> EMBEDDING -> SEARCHING -> RANKED | EMPTY_RANKED -> RESPONDING -> RESPONDED

with LISTING for an empty query and ERROR_FALLBACK reachable from EMBEDDING
and SEARCHING. Every handler records what it learned on the request context
and returns the next state, so the engine always ends with a SearchOutcome.
Failures in the semantic path become keyword-search fallbacks; only
CatalogUnavailable (keyword search itself failing) leaves the engine.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.exceptions import (
    CatalogUnavailable,
    EmbeddingError,
    ModelUnavailable,
    StoreUnavailable,
)
from storefront.database.models import Product
from storefront.services.catalog_service import CatalogService, get_catalog_service
from storefront.services.embedding_service import EmbeddingService, get_embedding_service
from storefront.services.vector_store import SimilarityMatch, VectorStore, get_vector_store

logger = logging.getLogger(__name__)


class SearchType(str, Enum):
    SEMANTIC = "semantic"
    SEMANTIC_FALLBACK = "semantic_fallback"
    FALLBACK = "fallback"
    REGULAR = "regular"


class FallbackReason(str, Enum):
    MODEL_UNAVAILABLE = "model_unavailable"
    STORE_UNAVAILABLE = "store_unavailable"
    TIMEOUT = "timeout"
    NO_SEMANTIC_MATCHES = "no_semantic_matches"
    INTERNAL_ERROR = "internal_error"


class SearchState(str, Enum):
    INIT = "init"
    LISTING = "listing"
    EMBEDDING = "embedding"
    SEARCHING = "searching"
    RANKED = "ranked"
    EMPTY_RANKED = "empty_ranked"
    ERROR_FALLBACK = "error_fallback"
    RESPONDING = "responding"
    RESPONDED = "responded"


FALLBACK_MESSAGES = {
    FallbackReason.MODEL_UNAVAILABLE: "AI Search temporarily unavailable - showing keyword results",
    FallbackReason.STORE_UNAVAILABLE: "AI Search index unavailable - showing keyword results",
    FallbackReason.TIMEOUT: "AI Search took too long - showing keyword results",
    FallbackReason.NO_SEMANTIC_MATCHES: "No close AI matches found - showing keyword results",
    FallbackReason.INTERNAL_ERROR: "AI Search encountered an error - showing keyword results",
}


def similarity_percent(similarity: float) -> int:
    return round(similarity * 100)


def relevance_label(similarity: float) -> str:
    """Human-readable bucket for a similarity score. Display only."""
    if similarity >= 0.8:
        return "highly relevant"
    if similarity >= 0.6:
        return "very relevant"
    if similarity >= 0.4:
        return "relevant"
    return "somewhat relevant"


@dataclass(frozen=True)
class SearchQuery:
    text: str
    limit: Optional[int] = None


@dataclass(frozen=True)
class SearchResult:
    product: Product
    similarity: Optional[float] = None


@dataclass(frozen=True)
class SearchMetadata:
    threshold: float
    avg_similarity: float
    top_similarity: float


@dataclass(frozen=True)
class SearchWarning:
    message: str
    reason: str
    fallback_used: bool = True


@dataclass(frozen=True)
class SearchOutcome:
    search_type: SearchType
    products: List[SearchResult]
    query: str
    ai_enabled: bool
    message: str
    metadata: Optional[SearchMetadata] = None
    warning: Optional[SearchWarning] = None
    fallback_reason: Optional[FallbackReason] = None


@dataclass
class _SearchContext:
    query: SearchQuery
    text: str
    limit: int
    vector: Optional[List[float]] = None
    matches: List[SimilarityMatch] = field(default_factory=list)
    reason: Optional[FallbackReason] = None
    outcome: Optional[SearchOutcome] = None
    timings: Dict[str, float] = field(default_factory=dict)


class SemanticSearchEngine:
    """Embeds a query, ranks products by similarity, and degrades to keyword search."""

    def __init__(
        self,
        embedding_service: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStore] = None,
        catalog: Optional[CatalogService] = None,
        threshold: Optional[float] = None,
        default_limit: Optional[int] = None,
        max_limit: Optional[int] = None,
        embedding_timeout: Optional[float] = None,
        model_load_timeout: Optional[float] = None,
        search_timeout: Optional[float] = None,
    ):
        self.embedding_service = embedding_service or get_embedding_service()
        self.vector_store = vector_store or get_vector_store()
        self.catalog = catalog or get_catalog_service()
        self.threshold = threshold if threshold is not None else settings.semantic_similarity_threshold
        self.default_limit = default_limit or settings.semantic_default_limit
        self.max_limit = max_limit or settings.semantic_max_limit
        self.embedding_timeout = embedding_timeout or settings.embedding_timeout_seconds
        self.model_load_timeout = model_load_timeout or settings.model_load_timeout_seconds
        self.search_timeout = search_timeout or settings.vector_search_timeout_seconds

        self._handlers = {
            SearchState.INIT: self._handle_init,
            SearchState.LISTING: self._handle_listing,
            SearchState.EMBEDDING: self._handle_embedding,
            SearchState.SEARCHING: self._handle_searching,
            SearchState.RANKED: self._handle_ranked,
            SearchState.EMPTY_RANKED: self._handle_empty_ranked,
            SearchState.ERROR_FALLBACK: self._handle_error_fallback,
            SearchState.RESPONDING: self._handle_responding,
        }

    def resolve_limit(self, limit: Optional[int]) -> int:
        if limit is None or limit <= 0:
            return self.default_limit
        return min(limit, self.max_limit)

    async def search(self, query: SearchQuery, db: AsyncSession) -> SearchOutcome:
        """
        Run a search. Always returns an outcome unless the catalog itself fails.

        Raises:
            CatalogUnavailable: keyword search or listing failed
        """
        ctx = _SearchContext(query=query, text=(query.text or "").strip(), limit=self.resolve_limit(query.limit))
        try:
            return await self._run(ctx, db)
        except CatalogUnavailable:
            raise
        except Exception as e:
            logger.error(f"[SEMANTIC SEARCH] Unexpected error for '{ctx.text[:50]}': {e}", exc_info=True)
            ctx.reason = FallbackReason.INTERNAL_ERROR
            return await self._run(ctx, db, start=SearchState.ERROR_FALLBACK)

    async def _run(self, ctx: _SearchContext, db: AsyncSession, start: SearchState = SearchState.INIT) -> SearchOutcome:
        state = start
        while state is not SearchState.RESPONDED:
            next_state = await self._handlers[state](ctx, db)
            logger.debug(f"[SEMANTIC SEARCH] {state.value} -> {next_state.value}")
            state = next_state
        return ctx.outcome

    async def _handle_init(self, ctx: _SearchContext, db: AsyncSession) -> SearchState:
        if not ctx.text:
            return SearchState.LISTING
        return SearchState.EMBEDDING

    async def _handle_listing(self, ctx: _SearchContext, db: AsyncSession) -> SearchState:
        products, _ = await self.catalog.list_products(db, page=1, size=ctx.limit)
        ctx.outcome = SearchOutcome(
            search_type=SearchType.REGULAR,
            products=[SearchResult(product=p) for p in products],
            query=ctx.text,
            ai_enabled=self.embedding_service.get_status().available,
            message="Showing all products",
        )
        return SearchState.RESPONDING

    async def _handle_embedding(self, ctx: _SearchContext, db: AsyncSession) -> SearchState:
        start_time = time.time()

        if not self.embedding_service.get_status().available:
            try:
                await asyncio.wait_for(self.embedding_service.ensure_loaded(), timeout=self.model_load_timeout)
            except (ModelUnavailable, asyncio.TimeoutError) as e:
                logger.warning(f"[SEMANTIC SEARCH] Embedding model not ready: {e or 'load timed out'}")
                ctx.reason = FallbackReason.MODEL_UNAVAILABLE
                return SearchState.ERROR_FALLBACK

        try:
            ctx.vector = await asyncio.wait_for(self.embedding_service.embed(ctx.text), timeout=self.embedding_timeout)
        except ModelUnavailable as e:
            logger.warning(f"[SEMANTIC SEARCH] Embedding model unavailable: {e}")
            ctx.reason = FallbackReason.MODEL_UNAVAILABLE
            return SearchState.ERROR_FALLBACK
        except asyncio.TimeoutError:
            logger.warning(f"[SEMANTIC SEARCH] Embedding timed out after {self.embedding_timeout}s")
            ctx.reason = FallbackReason.TIMEOUT
            return SearchState.ERROR_FALLBACK
        except EmbeddingError as e:
            if e.empty_input:
                return SearchState.LISTING
            logger.error(f"[SEMANTIC SEARCH] Embedding failed: {e}")
            ctx.reason = FallbackReason.INTERNAL_ERROR
            return SearchState.ERROR_FALLBACK

        ctx.timings["embed"] = time.time() - start_time
        return SearchState.SEARCHING

    async def _handle_searching(self, ctx: _SearchContext, db: AsyncSession) -> SearchState:
        start_time = time.time()
        try:
            ctx.matches = await asyncio.wait_for(
                self.vector_store.similarity_search(db, ctx.vector, limit=ctx.limit, threshold=self.threshold),
                timeout=self.search_timeout,
            )
        except StoreUnavailable as e:
            logger.warning(f"[SEMANTIC SEARCH] Vector store unavailable: {e}")
            ctx.reason = FallbackReason.STORE_UNAVAILABLE
            return SearchState.ERROR_FALLBACK
        except asyncio.TimeoutError:
            logger.warning(f"[SEMANTIC SEARCH] Similarity search timed out after {self.search_timeout}s")
            await self.vector_store.rollback(db)
            ctx.reason = FallbackReason.TIMEOUT
            return SearchState.ERROR_FALLBACK

        ctx.timings["search"] = time.time() - start_time
        return SearchState.RANKED if ctx.matches else SearchState.EMPTY_RANKED

    async def _handle_ranked(self, ctx: _SearchContext, db: AsyncSession) -> SearchState:
        products = await self.catalog.get_products_by_ids(db, [m.product_id for m in ctx.matches])
        results = [
            SearchResult(product=products[m.product_id], similarity=max(0.0, min(1.0, m.similarity)))
            for m in ctx.matches
            if m.product_id in products
        ]
        if not results:
            return SearchState.EMPTY_RANKED

        similarities = [r.similarity for r in results]
        ctx.outcome = SearchOutcome(
            search_type=SearchType.SEMANTIC,
            products=results,
            query=ctx.text,
            ai_enabled=True,
            message=f"Found {len(results)} AI-matched products",
            metadata=SearchMetadata(
                threshold=self.threshold,
                avg_similarity=sum(similarities) / len(similarities),
                top_similarity=max(similarities),
            ),
        )
        return SearchState.RESPONDING

    async def _handle_empty_ranked(self, ctx: _SearchContext, db: AsyncSession) -> SearchState:
        ctx.reason = FallbackReason.NO_SEMANTIC_MATCHES
        products = await self.catalog.keyword_search(db, ctx.text, ctx.limit)
        message = FALLBACK_MESSAGES[ctx.reason]
        ctx.outcome = SearchOutcome(
            search_type=SearchType.SEMANTIC_FALLBACK,
            products=[SearchResult(product=p) for p in products],
            query=ctx.text,
            ai_enabled=True,
            message=message,
            warning=SearchWarning(message=message, reason=ctx.reason.value),
            fallback_reason=ctx.reason,
        )
        return SearchState.RESPONDING

    async def _handle_error_fallback(self, ctx: _SearchContext, db: AsyncSession) -> SearchState:
        reason = ctx.reason or FallbackReason.INTERNAL_ERROR
        products = await self.catalog.keyword_search(db, ctx.text, ctx.limit)
        message = FALLBACK_MESSAGES[reason]
        ctx.outcome = SearchOutcome(
            search_type=SearchType.FALLBACK,
            products=[SearchResult(product=p) for p in products],
            query=ctx.text,
            ai_enabled=False,
            message=message,
            warning=SearchWarning(message=message, reason=reason.value),
            fallback_reason=reason,
        )
        return SearchState.RESPONDING

    async def _handle_responding(self, ctx: _SearchContext, db: AsyncSession) -> SearchState:
        outcome = ctx.outcome
        timings = ", ".join(f"{k}={v:.2f}s" for k, v in ctx.timings.items())
        logger.info(
            f"[SEMANTIC SEARCH] '{ctx.text[:50]}' -> {outcome.search_type.value}, "
            f"{len(outcome.products)} products"
            + (f", reason={outcome.fallback_reason.value}" if outcome.fallback_reason else "")
            + (f" ({timings})" if timings else "")
        )
        return SearchState.RESPONDED

    def describe(self) -> Dict[str, Any]:
        return {
            "threshold": self.threshold,
            "defaultLimit": self.default_limit,
            "maxLimit": self.max_limit,
            "embeddingTimeout": self.embedding_timeout,
            "modelLoadTimeout": self.model_load_timeout,
            "searchTimeout": self.search_timeout,
        }


_search_engine: Optional[SemanticSearchEngine] = None


def get_search_engine() -> SemanticSearchEngine:
    """Get or create the search engine singleton."""
    global _search_engine
    if _search_engine is None:
        _search_engine = SemanticSearchEngine()
    return _search_engine
