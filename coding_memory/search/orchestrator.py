"""
Search orchestrator — lexical, similarity and graph retrieval merged into
one ranked, explainable result list.

Pipeline:

1. Lexical stage (FTS5 / BM25).  Always runs.
2. Similarity stage (embedding cosine).  Only with an embedder and
   strategy ``hybrid``; the query embedding is computed on a worker thread
   and abandoned on timeout or cancellation.
3. Reciprocal rank fusion of the two candidate lists, keyed by id.
4. Graph augmentation: entities named in the query contribute their
   linked observations.
5. Post-filters (type, importance, dates, concepts, files).
6. Optional reranking of the top ``max_candidates``.
7. Truncation to ``limit``.

Retrieval backend failures degrade to an empty list; search is advisory.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from ..models import Observation, SearchExplain, SearchResult
from .filters import SearchFilters, Strategy

if TYPE_CHECKING:
    from ..store.entities import EntityGraph
    from ..store.observations import ObservationStore
    from ..store.vectors import VectorIndex
    from .embedder import Embedder
    from .reranker import Reranker

logger = logging.getLogger(__name__)

RRF_K = 60
MIN_CANDIDATES = 20
GRAPH_SEED_LIMIT = 5
_POLL_INTERVAL_S = 0.05


@dataclass
class _Candidate:
    observation: Observation
    snippet: str = ""
    score: float = 0.0
    matched_by: list[str] = field(default_factory=list)
    lexical_rank: Optional[float] = None
    vector_similarity: Optional[float] = None


class SearchOrchestrator:
    """
    Parameters
    ----------
    observations:
        Record store (lexical stage and id lookups).
    vectors:
        Embedding index; ``None`` disables the similarity stage.
    embedder:
        Query embedder; ``None`` disables the similarity stage.
    reranker:
        Optional reranker.
    entity_graph:
        Optional entity graph for graph augmentation.
    executor:
        Pool used for query embedding.  A private single-worker pool is
        created when omitted.
    """

    def __init__(
        self,
        observations: "ObservationStore",
        vectors: Optional["VectorIndex"] = None,
        embedder: Optional["Embedder"] = None,
        reranker: Optional["Reranker"] = None,
        entity_graph: Optional["EntityGraph"] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        embedding_timeout_s: float = 5.0,
        min_similarity: float = 0.3,
        lexical_weight: float = 1.0,
        vector_weight: float = 1.0,
    ) -> None:
        self._observations = observations
        self._vectors = vectors
        self.embedder = embedder
        self.reranker = reranker
        self._entity_graph = entity_graph
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="memory-embed"
        )
        self.embedding_timeout_s = embedding_timeout_s
        self.min_similarity = min_similarity
        self.lexical_weight = lexical_weight
        self.vector_weight = vector_weight

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        project_path: str,
        filters: Optional[SearchFilters] = None,
        cancel: Optional[threading.Event] = None,
    ) -> list[SearchResult]:
        """
        Run the retrieval pipeline.

        Parameters
        ----------
        query:
            Free-text query.
        project_path:
            Only observations of this project are considered.
        filters:
            Validated filters; defaults apply when omitted.
        cancel:
            Set it to abandon a slow similarity stage.

        Returns
        -------
        list[SearchResult]
            At most ``filters.limit`` results; ``rank`` is the 1-based
            position.  Empty on any retrieval backend failure.
        """
        filters = filters or SearchFilters()
        t0 = time.perf_counter()
        try:
            results = self._run(query, project_path, filters, cancel)
        except sqlite3.Error as exc:
            logger.warning("[Search] Backend error for %r, returning no results: %s", query, exc)
            return []
        elapsed = (time.perf_counter() - t0) * 1000
        logger.debug("[Search] %r returned %d results in %.1fms", query, len(results), elapsed)
        return results

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run(
        self,
        query: str,
        project_path: str,
        filters: SearchFilters,
        cancel: Optional[threading.Event],
    ) -> list[SearchResult]:
        pool = max(MIN_CANDIDATES, filters.limit * 4)
        if self.reranker is not None:
            pool = max(pool, self.reranker.max_candidates)

        candidates: dict[str, _Candidate] = {}
        order: list[str] = []

        def slot(obs: Observation) -> _Candidate:
            if obs.id not in candidates:
                candidates[obs.id] = _Candidate(observation=obs)
                order.append(obs.id)
            return candidates[obs.id]

        lexical = self._observations.search_lexical(
            query, project_path, limit=pool, type=filters.type
        )
        for position, (obs, rank, snippet) in enumerate(lexical, start=1):
            c = slot(obs)
            c.snippet = snippet
            c.lexical_rank = rank
            c.score += self.lexical_weight / (RRF_K + position)
            c.matched_by.append("lexical")

        vector_ran = False
        if filters.strategy == Strategy.HYBRID:
            similar = self._similarity(query, project_path, pool, filters.timeout_s, cancel)
            if similar is not None:
                vector_ran = True
                for position, (obs, similarity) in enumerate(similar, start=1):
                    c = slot(obs)
                    c.vector_similarity = similarity
                    c.score += self.vector_weight / (RRF_K + position)
                    c.matched_by.append("vector")

        for obs in self._graph_candidates(query, project_path):
            c = slot(obs)
            if "graph" not in c.matched_by:
                c.matched_by.append("graph")

        strategy = Strategy.HYBRID if vector_ran else Strategy.LEXICAL
        ranked = sorted(
            (candidates[i] for i in order),
            key=lambda c: c.score,
            reverse=True,
        )
        ranked = [c for c in ranked if filters.matches(c.observation)]

        results = [self._to_result(c, strategy) for c in ranked]
        if self.reranker is not None and len(results) > 1:
            head = results[: self.reranker.max_candidates]
            tail = results[self.reranker.max_candidates:]
            try:
                head = self.reranker.rerank(query, head)
            except Exception as exc:
                logger.warning("[Search] Reranker failed, keeping fused order: %s", exc)
            else:
                for r in head:
                    r.explain.matched_by.append("rerank")
            results = head + tail

        results = results[: filters.limit]
        for position, r in enumerate(results, start=1):
            r.rank = position
        return results

    @staticmethod
    def _to_result(c: _Candidate, strategy: str) -> SearchResult:
        return SearchResult(
            observation=c.observation,
            rank=0,
            snippet=c.snippet or c.observation.title,
            explain=SearchExplain(
                strategy=strategy,
                matched_by=list(c.matched_by),
                lexical_rank=c.lexical_rank,
                vector_similarity=c.vector_similarity,
                fused_score=round(c.score, 6),
            ),
        )

    # ------------------------------------------------------------------
    # Similarity stage
    # ------------------------------------------------------------------

    def _similarity(
        self,
        query: str,
        project_path: str,
        top_k: int,
        timeout_s: Optional[float],
        cancel: Optional[threading.Event],
    ) -> Optional[list[tuple[Observation, float]]]:
        """Similarity hits, or ``None`` when the stage did not run."""
        if self.embedder is None or self._vectors is None or not query.strip():
            return None
        future = self._executor.submit(self.embedder.embed, query)
        vector = self._await(future, timeout_s or self.embedding_timeout_s, cancel)
        if vector is None:
            return None
        hits = self._vectors.search(
            vector, project_path, top_k=top_k, min_similarity=self.min_similarity
        )
        results = []
        for observation_id, similarity in hits:
            obs = self._observations.get_by_id(observation_id)
            if obs is not None:
                results.append((obs, similarity))
        return results

    @staticmethod
    def _await(
        future: Future,
        timeout_s: float,
        cancel: Optional[threading.Event],
    ) -> Optional[list[float]]:
        deadline = time.monotonic() + timeout_s
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                logger.warning("[Search] Query embedding timed out after %.1fs", timeout_s)
                return None
            try:
                return future.result(timeout=min(_POLL_INTERVAL_S, remaining))
            except FutureTimeout:
                if cancel is not None and cancel.is_set():
                    future.cancel()
                    logger.info("[Search] Similarity stage cancelled")
                    return None
            except Exception as exc:
                logger.warning("[Search] Query embedding failed: %s", exc)
                return None

    # ------------------------------------------------------------------
    # Graph augmentation
    # ------------------------------------------------------------------

    def _graph_candidates(self, query: str, project_path: str) -> list[Observation]:
        """Current project observations linked to entities named in *query*."""
        if self._entity_graph is None:
            return []
        words = [w for w in query.split() if len(w) > 1]
        names = words + [f"{a} {b}" for a, b in zip(words, words[1:])]
        seeds: list[str] = []
        for name in names:
            for entity in self._entity_graph.get_by_name(name):
                if entity.id not in seeds:
                    seeds.append(entity.id)
        seeds = seeds[:GRAPH_SEED_LIMIT]

        found: list[Observation] = []
        seen: set[str] = set()
        for seed in seeds:
            for entity_id in sorted(self._entity_graph.traverse_relations(seed, depth=1)):
                for observation_id in self._entity_graph.get_observations_for_entity(entity_id):
                    if observation_id in seen:
                        continue
                    seen.add(observation_id)
                    obs = self._observations.get_by_id(observation_id)
                    if obs is None:
                        continue
                    if self._observations.get_project_of(obs.id) != project_path:
                        continue
                    found.append(obs)
        return found
