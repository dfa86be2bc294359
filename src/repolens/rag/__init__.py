"""repolens retrieval: engine, reconciliation, response cache, prompts, features."""

from repolens.rag.cache import ResponseCache, cache_key
from repolens.rag.engine import RagEngine
from repolens.rag.features import FEATURES, ask_repo, run_feature
from repolens.rag.llm_client import LiteLLMGenerator, validate_api_key
from repolens.rag.retriever import RetrievedChunk, reconcile_matches

__all__ = [
    "FEATURES",
    "LiteLLMGenerator",
    "RagEngine",
    "ResponseCache",
    "RetrievedChunk",
    "ask_repo",
    "cache_key",
    "reconcile_matches",
    "run_feature",
    "validate_api_key",
]
