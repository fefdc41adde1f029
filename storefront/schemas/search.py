"""
Pydantic schemas for the semantic search endpoints.

Optional envelope parts (searchMetadata, warning) are only set when present,
so the router serializes with exclude_unset to leave them out.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from storefront.schemas.products import ProductSummarySchema
from storefront.services.semantic_search import (
    SearchOutcome,
    SearchResult,
    relevance_label,
    similarity_percent,
)


class SearchProductSchema(ProductSummarySchema):
    """Product in a search response; similarity fields only for semantic hits"""
    similarity: Optional[float] = None
    similarity_percent: Optional[int] = Field(None, alias="similarityPercent")
    relevance: Optional[str] = None

    class Config:
        from_attributes = True
        populate_by_name = True


class SearchMetadataSchema(BaseModel):
    threshold: float
    avg_similarity: float = Field(..., alias="avgSimilarity")
    top_similarity: float = Field(..., alias="topSimilarity")

    class Config:
        populate_by_name = True


class SearchWarningSchema(BaseModel):
    message: str
    reason: str
    fallback_used: bool = Field(True, alias="fallbackUsed")

    class Config:
        populate_by_name = True


class SearchDataSchema(BaseModel):
    products: List[SearchProductSchema]
    search_type: str = Field(..., alias="searchType")
    ai_enabled: bool = Field(..., alias="aiEnabled")
    query: str
    message: str
    search_metadata: Optional[SearchMetadataSchema] = Field(None, alias="searchMetadata")

    class Config:
        populate_by_name = True


class SemanticSearchResponse(BaseModel):
    """Search response envelope"""
    success: bool = True
    data: SearchDataSchema
    warning: Optional[SearchWarningSchema] = None


class SearchHealthResponse(BaseModel):
    """Embedding model readiness"""
    available: bool
    model_cached: bool = Field(..., alias="modelCached")
    model_loading: bool = Field(..., alias="modelLoading")

    class Config:
        populate_by_name = True


class SearchStatusResponse(BaseModel):
    """Operator view of the model cache, vector store and search settings"""
    model: Dict[str, Any]
    vector_store: Dict[str, Any] = Field(..., alias="vectorStore")
    search: Dict[str, Any]

    class Config:
        populate_by_name = True


def _product_payload(result: SearchResult) -> SearchProductSchema:
    data = ProductSummarySchema.model_validate(result.product).model_dump()
    if result.similarity is not None:
        data["similarity"] = result.similarity
        data["similarity_percent"] = similarity_percent(result.similarity)
        data["relevance"] = relevance_label(result.similarity)
    return SearchProductSchema(**data)


def build_search_response(outcome: SearchOutcome) -> SemanticSearchResponse:
    """Convert an engine outcome into the response envelope."""
    data = {
        "products": [_product_payload(result) for result in outcome.products],
        "search_type": outcome.search_type.value,
        "ai_enabled": outcome.ai_enabled,
        "query": outcome.query,
        "message": outcome.message,
    }
    if outcome.metadata is not None:
        data["search_metadata"] = SearchMetadataSchema(
            threshold=outcome.metadata.threshold,
            avg_similarity=round(outcome.metadata.avg_similarity, 4),
            top_similarity=round(outcome.metadata.top_similarity, 4),
        )

    response = {"success": True, "data": SearchDataSchema(**data)}
    if outcome.warning is not None:
        response["warning"] = SearchWarningSchema(
            message=outcome.warning.message,
            reason=outcome.warning.reason,
            fallback_used=outcome.warning.fallback_used,
        )
    return SemanticSearchResponse(**response)
