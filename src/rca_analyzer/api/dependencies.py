from functools import lru_cache

from ..config import settings
from ..confluence.client import ConfluenceClient
from ..db import AsyncSessionLocal, MemoryStore, RcaStore
from ..embeddings.embedder import EmbeddingProvider
from ..embeddings.registry import create_embedding_provider
from ..ingestion.pipeline import PagePipeline
from ..ingestion.sync import SyncOrchestrator
from ..llm.client import LLMClient
from ..search.engine import RetrievalEngine


@lru_cache
def get_store():
    if settings.store_backend == "memory":
        return MemoryStore()
    return RcaStore(AsyncSessionLocal)


@lru_cache
def get_document_source() -> ConfluenceClient:
    return ConfluenceClient()


@lru_cache
def get_embedding_provider() -> EmbeddingProvider:
    return create_embedding_provider(settings)


@lru_cache
def get_llm_client() -> LLMClient:
    return LLMClient()


@lru_cache
def get_pipeline() -> PagePipeline:
    return PagePipeline(get_store(), get_document_source(), get_embedding_provider())


# The orchestrator holds the tasks of in-flight runs, so it must be a singleton.
@lru_cache
def get_orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator(get_store(), get_document_source(), get_pipeline())


@lru_cache
def get_search_engine() -> RetrievalEngine:
    return RetrievalEngine(get_store(), get_embedding_provider())
