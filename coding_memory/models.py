"""
Data model for the memory store.

Plain dataclasses shared by the stores, the lineage engine, the search
orchestrator and the facade.  Python attributes are snake_case; the
``to_dict`` / ``from_dict`` helpers speak the camelCase wire format used by
the export document and the RPC tools.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ObservationType:
    DECISION = "decision"
    BUGFIX = "bugfix"
    FEATURE = "feature"
    REFACTOR = "refactor"
    DISCOVERY = "discovery"
    CHANGE = "change"

    ALL = (DECISION, BUGFIX, FEATURE, REFACTOR, DISCOVERY, CHANGE)


class LineageState:
    CURRENT = "current"
    SUPERSEDED = "superseded"
    TOMBSTONED = "tombstoned"

    ALL = (CURRENT, SUPERSEDED, TOMBSTONED)


class EntityType:
    TECHNOLOGY = "technology"
    LIBRARY = "library"
    PATTERN = "pattern"
    CONCEPT = "concept"
    FILE = "file"
    PERSON = "person"
    PROJECT = "project"
    OTHER = "other"

    ALL = (TECHNOLOGY, LIBRARY, PATTERN, CONCEPT, FILE, PERSON, PROJECT, OTHER)


class AuditSource:
    API = "api"
    MODE = "mode"
    ROLLBACK = "rollback"
    ROLLBACK_FAILED = "rollback-failed"

    ALL = (API, MODE, ROLLBACK, ROLLBACK_FAILED)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def utc_now() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token)."""
    return (len(text) + 3) // 4


# ---------------------------------------------------------------------------
# Observations
# ---------------------------------------------------------------------------

# snake_case attribute -> camelCase wire key
_OBSERVATION_KEYS = {
    "id": "id",
    "session_id": "sessionId",
    "type": "type",
    "title": "title",
    "subtitle": "subtitle",
    "narrative": "narrative",
    "facts": "facts",
    "concepts": "concepts",
    "files_read": "filesRead",
    "files_modified": "filesModified",
    "raw_tool_output": "rawToolOutput",
    "tool_name": "toolName",
    "created_at": "createdAt",
    "token_count": "tokenCount",
    "discovery_tokens": "discoveryTokens",
    "importance": "importance",
    "revision_of": "revisionOf",
    "superseded_by": "supersededBy",
    "superseded_at": "supersededAt",
    "deleted_at": "deletedAt",
}


@dataclass
class Observation:
    """
    One immutable, versioned unit of captured knowledge.

    Content fields never change after creation.  A revision is a new row
    whose ``revision_of`` points at its predecessor; the predecessor's
    ``superseded_by`` is set once, in the same transaction.
    """

    id: str
    session_id: str
    type: str
    title: str
    subtitle: str = ""
    narrative: str = ""
    facts: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    files_read: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    raw_tool_output: str = ""
    tool_name: str = ""
    created_at: str = ""
    token_count: int = 0
    discovery_tokens: int = 0
    importance: int = 3
    revision_of: Optional[str] = None
    superseded_by: Optional[str] = None
    superseded_at: Optional[str] = None
    deleted_at: Optional[str] = None

    @property
    def state(self) -> str:
        if self.deleted_at:
            return LineageState.TOMBSTONED
        if self.superseded_by:
            return LineageState.SUPERSEDED
        return LineageState.CURRENT

    def to_dict(self, include_raw: bool = True) -> dict[str, Any]:
        data = {wire: getattr(self, attr) for attr, wire in _OBSERVATION_KEYS.items()}
        if not include_raw:
            data.pop("rawToolOutput")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Observation":
        """Build an observation from a camelCase dict, filling defaults."""
        kwargs: dict[str, Any] = {}
        for attr, wire in _OBSERVATION_KEYS.items():
            if wire in data and data[wire] is not None:
                kwargs[attr] = data[wire]
        for attr in ("facts", "concepts", "files_read", "files_modified"):
            kwargs[attr] = list(kwargs.get(attr) or [])
        kwargs.setdefault("tool_name", "unknown")
        return cls(**kwargs)


@dataclass
class ObservationIndex:
    """Lightweight listing entry for progressive disclosure."""

    id: str
    session_id: str
    type: str
    title: str
    token_count: int
    discovery_tokens: int
    created_at: str
    importance: int = 3

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "type": self.type,
            "title": self.title,
            "tokenCount": self.token_count,
            "discoveryTokens": self.discovery_tokens,
            "createdAt": self.created_at,
            "importance": self.importance,
        }


# ---------------------------------------------------------------------------
# Lineage
# ---------------------------------------------------------------------------

@dataclass
class LineageNode:
    id: str
    revision_of: Optional[str]
    superseded_by: Optional[str]
    superseded_at: Optional[str]
    deleted_at: Optional[str]
    state: str
    observation: Observation

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "revisionOf": self.revision_of,
            "supersededBy": self.superseded_by,
            "supersededAt": self.superseded_at,
            "deletedAt": self.deleted_at,
            "state": self.state,
            "observation": self.observation.to_dict(),
        }


@dataclass
class FieldChange:
    field: str
    before: Any
    after: Any


@dataclass
class RevisionDiff:
    """Field-level comparison between two observation versions."""

    from_id: str
    to_id: str
    changed_fields: list[FieldChange] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "fromId": self.from_id,
            "toId": self.to_id,
            "changedFields": [
                {"field": c.field, "before": c.before, "after": c.after}
                for c in self.changed_fields
            ],
            "summary": self.summary,
        }


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@dataclass
class Session:
    id: str
    project_path: str
    started_at: str
    ended_at: Optional[str] = None
    status: str = "active"  # "active" | "idle" | "completed"
    observation_count: int = 0
    summary_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectPath": self.project_path,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "status": self.status,
            "observationCount": self.observation_count,
            "summaryId": self.summary_id,
        }


_SUMMARY_KEYS = {
    "id": "id",
    "session_id": "sessionId",
    "summary": "summary",
    "key_decisions": "keyDecisions",
    "files_modified": "filesModified",
    "concepts": "concepts",
    "created_at": "createdAt",
    "token_count": "tokenCount",
    "request": "request",
    "investigated": "investigated",
    "learned": "learned",
    "completed": "completed",
    "next_steps": "nextSteps",
}


@dataclass
class SessionSummary:
    id: str
    session_id: str
    summary: str
    key_decisions: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    created_at: str = ""
    token_count: int = 0
    request: Optional[str] = None
    investigated: Optional[str] = None
    learned: Optional[str] = None
    completed: Optional[str] = None
    next_steps: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {wire: getattr(self, attr) for attr, wire in _SUMMARY_KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionSummary":
        kwargs = {
            attr: data[wire]
            for attr, wire in _SUMMARY_KEYS.items()
            if data.get(wire) is not None
        }
        kwargs.setdefault("summary", "")
        for attr in ("key_decisions", "files_modified", "concepts"):
            kwargs[attr] = list(kwargs.get(attr) or [])
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

@dataclass
class SearchExplain:
    strategy: str
    matched_by: list[str] = field(default_factory=list)
    lexical_rank: Optional[float] = None
    vector_similarity: Optional[float] = None
    fused_score: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"strategy": self.strategy, "matchedBy": list(self.matched_by)}
        if self.lexical_rank is not None:
            data["lexicalRank"] = self.lexical_rank
        if self.vector_similarity is not None:
            data["vectorSimilarity"] = self.vector_similarity
        if self.fused_score is not None:
            data["fusedScore"] = self.fused_score
        return data


@dataclass
class SearchResult:
    observation: Observation
    rank: float
    snippet: str
    explain: SearchExplain
    source: str = "project"

    def to_dict(self) -> dict[str, Any]:
        return {
            "observation": self.observation.to_dict(include_raw=False),
            "rank": self.rank,
            "snippet": self.snippet,
            "explain": self.explain.to_dict(),
            "source": self.source,
        }


# ---------------------------------------------------------------------------
# Entity graph
# ---------------------------------------------------------------------------

@dataclass
class Entity:
    id: str
    name: str
    entity_type: str
    first_seen_at: str
    last_seen_at: str
    mention_count: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entityType": self.entity_type,
            "firstSeenAt": self.first_seen_at,
            "lastSeenAt": self.last_seen_at,
            "mentionCount": self.mention_count,
        }


@dataclass
class EntityRelation:
    id: str
    source_entity_id: str
    target_entity_id: str
    relationship: str
    observation_id: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sourceEntityId": self.source_entity_id,
            "targetEntityId": self.target_entity_id,
            "relationship": self.relationship,
            "observationId": self.observation_id,
            "createdAt": self.created_at,
        }


# ---------------------------------------------------------------------------
# Ledgers
# ---------------------------------------------------------------------------

@dataclass
class ConfigAuditEvent:
    id: str
    timestamp: str
    patch: dict[str, Any]
    previous_values: dict[str, Any]
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "patch": dict(self.patch),
            "previousValues": dict(self.previous_values),
            "source": self.source,
        }


@dataclass
class MaintenanceHistoryItem:
    id: str
    timestamp: str
    action: str
    dry_run: bool
    result: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "action": self.action,
            "dryRun": self.dry_run,
            "result": dict(self.result),
        }
