"""
Embedding service for semantic product search.

Wraps a text-embedding model behind a small backend interface and owns the
process-wide model state (loaded / loading / cached). Loading is lazy and
happens at most once at a time: concurrent callers await the same in-flight
load task instead of starting their own.

Backends:
- SentenceTransformerBackend: local all-MiniLM-L6-v2 (384 dims), weights
  cached on disk under settings.embedding_cache_dir.
- GoogleGenAIBackend: Google text-embedding-004 via the google-genai client.
"""
import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from google import genai

from storefront.core.config import settings
from storefront.core.exceptions import EmbeddingError, ModelUnavailable

logger = logging.getLogger(__name__)

QUERY_TASK = "query"
DOCUMENT_TASK = "document"


@dataclass(frozen=True)
class EngineState:
    """Snapshot of the embedding model state."""

    available: bool
    loading: bool
    cached: bool

    def to_health(self) -> Dict[str, bool]:
        return {
            "available": self.available,
            "modelCached": self.cached,
            "modelLoading": self.loading,
        }


class SentenceTransformerBackend:
    """Local SentenceTransformers model (mean pooled, normalized)."""

    name = "sentence_transformers"

    def __init__(self, model_name: str, cache_dir: str, device: str = "cpu"):
        self.model_name = model_name
        self.cache_dir = cache_dir
        self.device = device

    def load(self):
        # torch import is slow; defer it until the model is actually needed
        from sentence_transformers import SentenceTransformer

        Path(self.cache_dir).mkdir(parents=True, exist_ok=True)
        return SentenceTransformer(self.model_name, cache_folder=self.cache_dir, device=self.device)

    def encode(self, model, text: str, task: str) -> List[float]:
        embedding = model.encode(text, normalize_embeddings=True, convert_to_numpy=True)
        return embedding.tolist()

    def is_cached(self) -> bool:
        """Check whether model weights already exist in the local cache dir."""
        cache_dir = Path(self.cache_dir)
        hub_folder = cache_dir / ("models--" + self.model_name.replace("/", "--"))
        legacy_folder = cache_dir / self.model_name.replace("/", "_")
        return hub_folder.is_dir() or legacy_folder.is_dir()


class GoogleGenAIBackend:
    """Google text-embedding model via google-genai."""

    name = "google"

    def __init__(self, api_key: str, model_name: str, dimension: int):
        self.api_key = api_key
        self.model_name = model_name
        self.dimension = dimension

    def load(self):
        if not self.api_key:
            raise ModelUnavailable("Google AI API key not configured")
        return genai.Client(api_key=self.api_key)

    def encode(self, client, text: str, task: str) -> List[float]:
        result = client.models.embed_content(
            model=self.model_name,
            contents=text,
            config={
                "task_type": "RETRIEVAL_QUERY" if task == QUERY_TASK else "RETRIEVAL_DOCUMENT",
                "output_dimensionality": self.dimension,
            },
        )
        if not result or not result.embeddings:
            raise EmbeddingError("No embedding returned from API")
        return list(result.embeddings[0].values)

    def is_cached(self) -> bool:
        return False


def create_backend():
    """Build the embedding backend selected in settings."""
    if settings.embedding_backend == "google":
        return GoogleGenAIBackend(
            api_key=settings.google_ai_api_key,
            model_name=settings.google_embedding_model,
            dimension=settings.embedding_dimension,
        )
    if settings.embedding_backend != "sentence_transformers":
        raise ValueError(f"Unknown embedding backend: {settings.embedding_backend}")
    return SentenceTransformerBackend(
        model_name=settings.embedding_model_name,
        cache_dir=settings.embedding_cache_dir,
        device=settings.embedding_device,
    )


class EmbeddingService:
    """Service for generating text embeddings and tracking model readiness."""

    def __init__(
        self,
        backend=None,
        dimension: Optional[int] = None,
        max_chars: Optional[int] = None,
        cache_ttl: Optional[int] = None,
        cache_max_size: Optional[int] = None,
    ):
        self.backend = backend or create_backend()
        self.dimension = dimension or settings.embedding_dimension
        self.max_chars = max_chars or settings.embedding_max_chars
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.query_cache_ttl_seconds
        self.cache_max_size = cache_max_size or settings.query_cache_max_size

        self._model = None
        self._load_task: Optional[asyncio.Task] = None
        self._last_error: Optional[str] = None
        self._query_cache: Dict[str, Dict[str, Any]] = {}

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def is_loading(self) -> bool:
        return self._load_task is not None and not self._load_task.done()

    async def ensure_loaded(self):
        """
        Return the loaded model, loading it if necessary.

        Only one load runs at a time. Callers arriving while a load is in
        flight await that same task; cancelling one waiter (e.g. on timeout)
        does not cancel the load itself.

        Raises:
            ModelUnavailable: if loading fails
        """
        if self._model is not None:
            return self._model

        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.create_task(self._load())
            self._load_task.add_done_callback(self._on_load_done)
        else:
            logger.info("Embedding model is currently loading, waiting for completion...")

        return await asyncio.shield(self._load_task)

    async def _load(self):
        start_time = time.time()
        model_name = getattr(self.backend, "model_name", self.backend.name)

        if self.backend.is_cached():
            logger.info(f"Model files found in cache, loading {model_name} into memory...")
        else:
            logger.info(f"Model not cached, downloading {model_name}...")

        try:
            model = await asyncio.to_thread(self.backend.load)
        except Exception as e:
            self._last_error = str(e)
            logger.error(f"Failed to load embedding model {model_name}: {e}")
            raise ModelUnavailable(f"Failed to load embedding model: {e}", model=model_name) from e

        self._model = model
        self._last_error = None
        logger.info(f"Embedding model {model_name} ready ({(time.time() - start_time) * 1000:.0f}ms)")
        return model

    @staticmethod
    def _on_load_done(task: asyncio.Task):
        # Retrieve the exception so an unawaited failed load is not reported as lost
        if not task.cancelled():
            task.exception()

    async def preload(self):
        """Warm the model on startup. Failures leave search in fallback mode."""
        try:
            await self.ensure_loaded()
            logger.info("Semantic search is ready")
        except ModelUnavailable as e:
            logger.warning(f"Semantic search will not be available until the model loads: {e}")

    def unload(self):
        """Drop the in-memory model."""
        if self._model is not None:
            logger.info("Unloading embedding model")
        self._model = None
        self._query_cache.clear()

    async def embed(self, text: str, task: str = QUERY_TASK) -> List[float]:
        """
        Generate an embedding for text.

        Args:
            text: The text to embed
            task: QUERY_TASK for search queries or DOCUMENT_TASK for products

        Returns:
            List of floats with exactly self.dimension entries

        Raises:
            EmbeddingError: empty text (empty_input=True), inference failure
                or wrong output dimension
            ModelUnavailable: the model could not be loaded
        """
        cleaned = (text or "").strip()
        if not cleaned:
            raise EmbeddingError("Text cannot be empty", empty_input=True)
        cleaned = cleaned[: self.max_chars]

        cache_key = None
        if task == QUERY_TASK:
            cache_key = self._cache_key(cleaned)
            cached = self._get_cached(cache_key)
            if cached is not None:
                logger.debug(f"Query embedding cache hit for: {cleaned[:50]}")
                return cached

        model = await self.ensure_loaded()

        try:
            vector = await asyncio.to_thread(self.backend.encode, model, cleaned, task)
        except EmbeddingError:
            raise
        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            raise EmbeddingError(f"Embedding inference failed: {e}") from e

        vector = [float(v) for v in vector]
        if len(vector) != self.dimension:
            raise EmbeddingError(f"Expected {self.dimension} dimensions, got {len(vector)}")

        if cache_key is not None:
            self._store_cached(cache_key, vector)
        return vector

    @staticmethod
    def _cache_key(text: str) -> str:
        return hashlib.md5(text.lower().encode()).hexdigest()

    def _get_cached(self, key: str) -> Optional[List[float]]:
        cached = self._query_cache.get(key)
        if cached is None:
            return None
        if time.time() - cached["timestamp"] >= self.cache_ttl:
            del self._query_cache[key]
            return None
        return list(cached["embedding"])

    def _store_cached(self, key: str, vector: List[float]):
        self._query_cache[key] = {"embedding": list(vector), "timestamp": time.time()}
        if len(self._query_cache) > self.cache_max_size:
            self._prune_cache()

    def _prune_cache(self):
        """Remove the oldest 20% of cached query embeddings."""
        sorted_keys = sorted(self._query_cache, key=lambda k: self._query_cache[k]["timestamp"])
        keys_to_remove = sorted_keys[: max(1, int(len(sorted_keys) * 0.2))]
        for key in keys_to_remove:
            del self._query_cache[key]
        logger.info(f"Pruned {len(keys_to_remove)} entries from query cache")

    def get_status(self) -> EngineState:
        """Current model state. Never raises."""
        loaded = self._model is not None
        return EngineState(available=loaded, loading=self.is_loading, cached=loaded)

    def weights_on_disk(self) -> bool:
        try:
            return self.backend.is_cached()
        except OSError:
            return False

    def get_cache_status(self) -> Dict[str, Any]:
        state = self.get_status()
        return {
            "backend": self.backend.name,
            "modelName": getattr(self.backend, "model_name", None),
            "cacheDir": getattr(self.backend, "cache_dir", None),
            "dimension": self.dimension,
            "isLoaded": state.available,
            "isLoading": state.loading,
            "isCached": state.cached,
            "weightsOnDisk": self.weights_on_disk(),
            "lastError": self._last_error,
        }


_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service() -> EmbeddingService:
    """Get or create the embedding service singleton."""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = EmbeddingService()
    return _embedding_service
