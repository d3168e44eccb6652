from .embedder import Embedder, OllamaEmbedder, OpenAIEmbedder, create_embedder
from .filters import SearchFilters, Strategy
from .orchestrator import SearchOrchestrator
from .reranker import HeuristicReranker, LLMReranker, Reranker, create_reranker

__all__ = [
    "Embedder",
    "OpenAIEmbedder",
    "OllamaEmbedder",
    "create_embedder",
    "SearchFilters",
    "Strategy",
    "SearchOrchestrator",
    "Reranker",
    "HeuristicReranker",
    "LLMReranker",
    "create_reranker",
]
