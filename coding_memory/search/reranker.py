"""
Optional reranking pass over the top merged candidates.

``HeuristicReranker`` scores term overlap plus recency and importance
boosts.  ``LLMReranker`` asks an OpenAI-compatible chat endpoint to order
the candidates; any failure leaves the input order untouched.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import requests

from ..models import SearchResult

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+")


def _terms(text: str) -> set[str]:
    return {w.lower() for w in _WORD_RE.findall(text or "") if len(w) > 1}


class Reranker(ABC):

    def __init__(self, max_candidates: int = 20) -> None:
        self.max_candidates = max(1, max_candidates)

    @abstractmethod
    def rerank(self, query: str, candidates: list[SearchResult]) -> list[SearchResult]:
        """Return *candidates* reordered; never adds or drops entries."""


class HeuristicReranker(Reranker):
    """Term-overlap scorer with recency and importance boosts."""

    TITLE_WEIGHT = 0.4
    NARRATIVE_WEIGHT = 0.3
    CONCEPT_WEIGHT = 0.15
    RECENCY_WEIGHT = 0.1
    IMPORTANCE_WEIGHT = 0.05
    RECENCY_HALF_LIFE_DAYS = 30.0

    def _score(self, query_terms: set[str], result: SearchResult, now: datetime) -> float:
        obs = result.observation
        if not query_terms:
            return 0.0

        def overlap(text: str) -> float:
            return len(query_terms & _terms(text)) / len(query_terms)

        score = (
            self.TITLE_WEIGHT * overlap(obs.title)
            + self.NARRATIVE_WEIGHT * overlap(obs.narrative)
            + self.CONCEPT_WEIGHT * overlap(" ".join(obs.concepts))
        )
        try:
            created = datetime.fromisoformat(obs.created_at.replace("Z", "+00:00"))
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            age_days = max(0.0, (now - created).total_seconds() / 86400)
            score += self.RECENCY_WEIGHT * 0.5 ** (age_days / self.RECENCY_HALF_LIFE_DAYS)
        except (AttributeError, ValueError):
            pass
        score += self.IMPORTANCE_WEIGHT * (obs.importance / 5)
        return score

    def rerank(self, query: str, candidates: list[SearchResult]) -> list[SearchResult]:
        query_terms = _terms(query)
        now = datetime.now(timezone.utc)
        scored = [
            (self._score(query_terms, c, now), -i, c) for i, c in enumerate(candidates)
        ]
        scored.sort(key=lambda t: (t[0], t[1]), reverse=True)
        return [c for _, _, c in scored]


class LLMReranker(Reranker):
    """Delegates ordering to a chat-completions model."""

    def __init__(self, model: str, base_url: str, api_key: str = "",
                 max_candidates: int = 20, timeout: float = 30.0) -> None:
        super().__init__(max_candidates)
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    def _prompt(self, query: str, candidates: list[SearchResult]) -> str:
        lines = [
            f"Query: {query}",
            "Rank the following memory entries by relevance to the query.",
            "Reply with only a JSON array of entry numbers, most relevant first.",
            "",
        ]
        for i, c in enumerate(candidates):
            narrative = c.observation.narrative[:200].replace("\n", " ")
            lines.append(f"[{i}] {c.observation.title}: {narrative}")
        return "\n".join(lines)

    def rerank(self, query: str, candidates: list[SearchResult]) -> list[SearchResult]:
        if len(candidates) < 2:
            return list(candidates)
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": self._prompt(query, candidates)}],
            "temperature": 0,
        }
        try:
            response = requests.post(
                f"{self._base_url}/chat/completions", headers=headers,
                json=payload, timeout=(10, self._timeout),
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
            order = self._parse_order(content, len(candidates))
        except (requests.RequestException, KeyError, IndexError, ValueError) as exc:
            logger.warning("[LLMReranker] Reranking failed, keeping order: %s", exc)
            return list(candidates)

        ranked = [candidates[i] for i in order]
        ranked.extend(c for i, c in enumerate(candidates) if i not in set(order))
        return ranked

    @staticmethod
    def _parse_order(content: str, size: int) -> list[int]:
        match = re.search(r"\[[\d\s,]*\]", content)
        if not match:
            raise ValueError("no index list in reranker reply")
        seen: list[int] = []
        for idx in json.loads(match.group(0)):
            if isinstance(idx, int) and 0 <= idx < size and idx not in seen:
                seen.append(idx)
        return seen


def create_reranker(config: "Config") -> Optional[Reranker]:
    """Build the configured reranker, or ``None`` when reranking is off."""
    if not config.reranking_enabled:
        return None
    if config.reranking_provider == "llm" and config.reranking_model:
        return LLMReranker(
            model=config.reranking_model,
            base_url=config.reranking_base_url,
            api_key=config.openai_api_key,
            max_candidates=config.reranking_max_candidates,
        )
    return HeuristicReranker(max_candidates=config.reranking_max_candidates)
