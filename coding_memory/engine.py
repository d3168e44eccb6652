"""
Memory engine — the single facade every front-end talks to.

Owns every lifecycle transition (save, revise, tombstone), scopes
mutations to one project, wires the stores into the lineage engine and
the search orchestrator, and publishes lifecycle events.

Usage::

    from coding_memory import MemoryEngine

    with MemoryEngine.open() as engine:
        obs = engine.save("session-1", "Use WAL mode", "decision",
                          narrative="Readers no longer block the writer.")
        engine.search("WAL")
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Mapping, Optional, Union

from . import lineage
from .config import Config, ConfigStore
from .errors import ConflictError, ValidationError
from .events import EventBus, EventKind
from .models import (
    AuditSource,
    ConfigAuditEvent,
    Entity,
    EntityRelation,
    EntityType,
    LineageNode,
    LineageState,
    MaintenanceHistoryItem,
    Observation,
    ObservationIndex,
    ObservationType,
    RevisionDiff,
    SearchResult,
    Session,
    SessionSummary,
    estimate_tokens,
)
from .search.embedder import Embedder, create_embedder, observation_text
from .search.filters import SearchFilters
from .search.orchestrator import SearchOrchestrator
from .search.reranker import Reranker, create_reranker
from .store import (
    ConfigAuditLedger,
    Database,
    EntityGraph,
    MaintenanceLedger,
    ObservationStore,
    SessionStore,
    SQLiteConfigAuditLedger,
    SQLiteMaintenanceLedger,
    SummaryStore,
    VectorIndex,
)
from .transfer import ImportMode, ImportResult, build_export, parse_import

logger = logging.getLogger(__name__)

MAINTENANCE_ACTIONS = ("reindex", "prune-embeddings", "vacuum")

_LIST_FIELDS = ("facts", "concepts", "files_read", "files_modified")
_SUMMARY_FIELDS = (
    "key_decisions", "files_modified", "concepts", "request", "investigated",
    "learned", "completed", "next_steps",
)


def _check_str_list(name: str, value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{name} must be a list of strings")
    return list(value)


def _check_importance(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError("importance must be an integer between 1 and 5")
    return value


def _check_type(value: Any) -> str:
    if value not in ObservationType.ALL:
        raise ValidationError(
            f"Unknown observation type: {value}",
            {"allowed": list(ObservationType.ALL)},
        )
    return value


class MemoryEngine:
    """
    Facade over the record store, lineage engine, entity graph, search
    orchestrator and audit ledgers of one project.

    Parameters
    ----------
    db:
        Open database.
    config_store:
        Live configuration; the target of config patches and rollbacks.
    embedder, reranker:
        Explicit search components.  When both are omitted they are built
        from configuration and rebuilt whenever it is patched.
    config_ledger, maintenance_ledger:
        Ledger implementations; SQLite-backed ones are used by default.
    events:
        Event bus for lifecycle notifications.
    """

    def __init__(
        self,
        db: Database,
        config_store: ConfigStore,
        embedder: Optional[Embedder] = None,
        reranker: Optional[Reranker] = None,
        config_ledger: Optional[ConfigAuditLedger] = None,
        maintenance_ledger: Optional[MaintenanceLedger] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self._db = db
        self._config_store = config_store
        config = config_store.get()
        self.project_path = config.resolved_project_path

        self._observations = ObservationStore(db)
        self._sessions = SessionStore(db)
        self._summaries = SummaryStore(db)
        self._entities = EntityGraph(db)
        self._vectors = VectorIndex(db)
        self._config_ledger = config_ledger or SQLiteConfigAuditLedger(db)
        self._maintenance_ledger = maintenance_ledger or SQLiteMaintenanceLedger(db)
        self.events = events or EventBus()

        self._auto_components = embedder is None and reranker is None
        if self._auto_components:
            embedder = create_embedder(config)
            reranker = create_reranker(config)

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="memory")
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()
        self._closed = False

        self._search = SearchOrchestrator(
            self._observations,
            vectors=self._vectors,
            embedder=embedder,
            reranker=reranker,
            entity_graph=self._entities if config.entity_graph_enabled else None,
            executor=self._executor,
            embedding_timeout_s=config.embedding_timeout_s,
            min_similarity=config.min_similarity,
            lexical_weight=config.lexical_weight,
            vector_weight=config.vector_weight,
        )

    @classmethod
    def open(
        cls,
        config_path: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        **kwargs: Any,
    ) -> "MemoryEngine":
        """Build an engine from YAML + environment configuration."""
        store = ConfigStore(config_path, env=env)
        db = Database(store.get().resolved_db_path)
        return cls(db, store, **kwargs)

    @property
    def config(self) -> Config:
        return self._config_store.get()

    def locked_config_keys(self) -> set[str]:
        """Config keys pinned by environment variables."""
        return self._config_store.locked_keys()

    @property
    def embedder(self) -> Optional[Embedder]:
        return self._search.embedder

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> "MemoryEngine":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for background work (embeddings) submitted so far."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Drain in-flight background work, then close the database."""
        if self._closed:
            return
        self._closed = True
        self.flush()
        self._executor.shutdown(wait=True)
        self._db.close()
        logger.info("Memory engine closed")

    def _submit(self, fn: Callable[..., Any], *args: Any) -> None:
        if self._closed:
            return
        future = self._executor.submit(fn, *args)
        with self._pending_lock:
            self._pending.add(future)

        def _done(f: Future) -> None:
            with self._pending_lock:
                self._pending.discard(f)

        future.add_done_callback(_done)

    # ------------------------------------------------------------------
    # Scoping helpers
    # ------------------------------------------------------------------

    def _owned(self, observation_id: str) -> bool:
        return self._observations.get_project_of(observation_id) == self.project_path

    def _lookup(self, observation_id: str) -> Optional[Observation]:
        return self._observations.get_by_id_including_archived(observation_id)

    def _session_for_write(self, session_id: str) -> Session:
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValidationError("session_id must be a non-empty string")
        session = self._sessions.get(session_id)
        if session is None:
            session = self._sessions.create(session_id, self.project_path)
            self.events.emit(EventKind.SESSION_STARTED, {"session": session.to_dict()})
        elif session.project_path != self.project_path:
            raise ConflictError(
                f"Session {session_id} belongs to another project",
                {"sessionId": session_id},
            )
        return session

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def _embed_observation(self, obs: Observation) -> bool:
        embedder = self._search.embedder
        if embedder is None:
            return False
        try:
            vector = embedder.embed(observation_text(obs))
            self._vectors.upsert(obs.id, vector, embedder.model)
        except Exception as exc:
            logger.warning("Embedding %s failed: %s", obs.id, exc)
            return False
        return True

    def _schedule_embedding(self, obs: Observation) -> None:
        if self._search.embedder is not None:
            self._submit(self._embed_observation, obs)

    def backfill_embeddings(
        self,
        limit: int = 1000,
        progress: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """
        Embed current observations that have no vector yet.

        Returns the number embedded.  *progress* receives ``(done, total)``.
        """
        if self._search.embedder is None:
            return 0
        ids = self._vectors.missing(self.project_path, limit=limit)
        done = 0
        for i, observation_id in enumerate(ids, start=1):
            obs = self._observations.get_by_id(observation_id)
            if obs is not None and self._embed_observation(obs):
                done += 1
            if progress is not None:
                progress(i, len(ids))
        logger.info("Backfilled %d/%d embeddings", done, len(ids))
        return done

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, session_id: str) -> Session:
        return self._session_for_write(session_id)

    def end_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is None or session.project_path != self.project_path:
            return None
        session = self._sessions.mark_completed(session_id)
        self.events.emit(EventKind.SESSION_ENDED, {"session": session.to_dict()})
        return session

    def save_summary(self, session_id: str, summary: str, **fields: Any) -> SessionSummary:
        self._session_for_write(session_id)
        if not isinstance(summary, str) or not summary.strip():
            raise ValidationError("summary must be a non-empty string")
        unknown = sorted(set(fields) - set(_SUMMARY_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown summary fields: {', '.join(unknown)}")
        for name in ("key_decisions", "files_modified", "concepts"):
            fields[name] = _check_str_list(name, fields.get(name))
        record = SessionSummary(
            id="",
            session_id=session_id,
            summary=summary,
            token_count=estimate_tokens(summary),
            **fields,
        )
        record = self._summaries.create(record)
        self.events.emit(EventKind.SUMMARY_CREATED, {"summary": record.to_dict()})
        return record

    def get_session(self, session_id: str) -> Optional[dict[str, Any]]:
        session = self._sessions.get(session_id)
        if session is None or session.project_path != self.project_path:
            return None
        return {
            "session": session,
            "summary": self._summaries.get_by_session(session_id),
            "observations": self._observations.get_by_session(session_id),
        }

    def list_sessions(self, limit: int = 20) -> list[Session]:
        return self._sessions.list_by_project(self.project_path, limit=limit)

    # ------------------------------------------------------------------
    # Observation lifecycle
    # ------------------------------------------------------------------

    def save(
        self,
        session_id: str,
        title: str,
        type: str,
        narrative: str = "",
        subtitle: str = "",
        facts: Optional[list[str]] = None,
        concepts: Optional[list[str]] = None,
        files_read: Optional[list[str]] = None,
        files_modified: Optional[list[str]] = None,
        importance: int = 3,
        raw_tool_output: str = "",
        tool_name: str = "memory.create",
        discovery_tokens: int = 0,
    ) -> Observation:
        """Validate and store a new observation."""
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title must be a non-empty string")
        _check_type(type)
        _check_importance(importance)
        for name, value in (("narrative", narrative), ("subtitle", subtitle),
                            ("raw_tool_output", raw_tool_output)):
            if not isinstance(value, str):
                raise ValidationError(f"{name} must be a string")
        lists = {
            "facts": _check_str_list("facts", facts),
            "concepts": _check_str_list("concepts", concepts),
            "files_read": _check_str_list("files_read", files_read),
            "files_modified": _check_str_list("files_modified", files_modified),
        }
        self._session_for_write(session_id)
        obs = self._observations.create(
            session_id=session_id,
            type=type,
            title=title.strip(),
            narrative=narrative,
            subtitle=subtitle,
            raw_tool_output=raw_tool_output,
            tool_name=tool_name,
            discovery_tokens=discovery_tokens,
            importance=importance,
            **lists,
        )
        logger.info("Saved observation %s (%s)", obs.id, obs.type)
        self._schedule_embedding(obs)
        self.events.emit(EventKind.OBSERVATION_CREATED, {"observation": obs.to_dict(include_raw=False)})
        return obs

    def revise(self, observation_id: str, patch: Mapping[str, Any]) -> Optional[Observation]:
        """
        Create a new revision of *observation_id*.

        Returns ``None`` for unknown or cross-project ids.  Raises
        :class:`ConflictError` if the target is no longer current.
        """
        if not isinstance(patch, Mapping) or not patch:
            raise ValidationError("patch must be a non-empty object")
        clean: dict[str, Any] = {}
        for key, value in patch.items():
            if key == "title":
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError("title must be a non-empty string")
                clean[key] = value.strip()
            elif key == "type":
                clean[key] = _check_type(value)
            elif key == "importance":
                clean[key] = _check_importance(value)
            elif key in _LIST_FIELDS:
                clean[key] = _check_str_list(key, value)
            elif key in ("subtitle", "narrative"):
                if not isinstance(value, str):
                    raise ValidationError(f"{key} must be a string")
                clean[key] = value
            else:
                raise ValidationError(f"Field cannot be revised: {key}", {"field": key})

        if self._lookup(observation_id) is None or not self._owned(observation_id):
            return None
        revised = self._observations.revise(observation_id, clean)
        if revised is None:
            return None
        logger.info("Revised observation %s -> %s", observation_id, revised.id)
        self._vectors.delete(observation_id)
        self._schedule_embedding(revised)
        self.events.emit(EventKind.OBSERVATION_UPDATED, {
            "observation": revised.to_dict(include_raw=False),
            "previousId": observation_id,
        })
        return revised

    def tombstone(self, ids: Union[str, list[str]]) -> int:
        """Tombstone current, in-project observations; returns how many."""
        if isinstance(ids, str):
            ids = [ids]
        count = 0
        for observation_id in ids:
            if not self._owned(observation_id):
                continue
            if self._observations.tombstone(observation_id):
                count += 1
                self._vectors.delete(observation_id)
                self.events.emit(EventKind.OBSERVATION_DELETED, {"id": observation_id})
        logger.info("Tombstoned %d of %d observations", count, len(ids))
        return count

    def get(self, observation_id: str, include_archived: bool = False) -> Optional[Observation]:
        if include_archived:
            return self._lookup(observation_id)
        return self._observations.get_by_id(observation_id)

    def recall(self, ids: list[str], limit: int = 10) -> list[Observation]:
        found = []
        for observation_id in ids[:limit]:
            obs = self._observations.get_by_id(observation_id)
            if obs is not None:
                found.append(obs)
        return found

    def list_by_project(
        self,
        limit: int = 50,
        offset: int = 0,
        type: Optional[str] = None,
        state: Optional[str] = LineageState.CURRENT,
        session_id: Optional[str] = None,
    ) -> list[Observation]:
        if type is not None:
            _check_type(type)
        return self._observations.list_by_project(
            self.project_path, limit=limit, offset=offset, type=type,
            state=state, session_id=session_id,
        )

    def get_index(self, limit: Optional[int] = None) -> list[ObservationIndex]:
        return self._observations.get_index(
            self.project_path, limit=limit or self.config.max_context_observations
        )

    def timeline(self, limit: int = 20, session_id: Optional[str] = None) -> list[Observation]:
        return self.list_by_project(limit=limit, session_id=session_id)

    def stats(self) -> dict[str, Any]:
        data = self._observations.get_stats(self.project_path)
        data["totalSessions"] = self._sessions.count(self.project_path)
        data["totalEntities"] = self._entities.count()
        data["embeddings"] = self._vectors.count()
        return data

    def record_pending(self, count: int = 1) -> None:
        self.events.emit(EventKind.PENDING_ENQUEUED, {"count": count})

    def record_processed(self, count: int = 1) -> None:
        self.events.emit(EventKind.PENDING_PROCESSED, {"count": count})

    # ------------------------------------------------------------------
    # Lineage
    # ------------------------------------------------------------------

    def get_lineage(self, observation_id: str) -> Optional[list[LineageNode]]:
        return lineage.get_lineage(observation_id, self._lookup)

    def get_revision_diff(self, observation_id: str, against_id: str) -> Optional[RevisionDiff]:
        return lineage.get_revision_diff(observation_id, against_id, self._lookup)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        filters: Union[SearchFilters, Mapping[str, Any], None] = None,
        cancel: Optional[threading.Event] = None,
    ) -> list[SearchResult]:
        if not isinstance(query, str):
            raise ValidationError("query must be a string")
        if not isinstance(filters, SearchFilters):
            filters = SearchFilters.from_dict(filters)
        else:
            filters.validate()
        return self._search.search(query, self.project_path, filters, cancel)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_data(
        self,
        scope: str = "project",
        type: Optional[str] = None,
        include_archived: bool = True,
        limit: int = 100000,
    ) -> dict[str, Any]:
        """
        Serialise observations and summaries to a version-1 document.

        *scope* is ``"project"`` (this project) or ``"all"``.
        """
        if scope not in ("project", "all"):
            raise ValidationError(f"Unknown export scope: {scope}", {"allowed": ["project", "all"]})
        if type is not None:
            _check_type(type)
        project = self.project_path if scope == "project" else None
        observations = self._observations.list_by_project(
            project, limit=limit, type=type,
            state=None if include_archived else LineageState.CURRENT,
        )
        observations.reverse()
        summaries = self._summaries.list_by_project(project, limit=limit)
        summaries.reverse()
        return build_export(self.project_path, observations, summaries)

    def import_data(
        self,
        payload: Union[str, bytes, dict],
        mode: str = ImportMode.SKIP_DUPLICATES,
    ) -> ImportResult:
        """
        Load an export document into this project.

        ``skip-duplicates`` leaves rows whose id already exists untouched;
        ``overwrite`` replaces them.  Rows owned by another project are
        never touched and are counted as conflicts.
        """
        if mode not in ImportMode.ALL:
            raise ValidationError(f"Unknown import mode: {mode}", {"allowed": list(ImportMode.ALL)})
        plan = parse_import(payload)
        result = ImportResult(invalid=plan.invalid)

        for obs in plan.observations:
            with self._db.transaction():
                exists = self._lookup(obs.id) is not None
                if exists and not self._owned(obs.id):
                    result.conflicts += 1
                    continue
                # Both ownership checks run before anything is deleted.
                session = self._sessions.get(obs.session_id)
                if session is not None and session.project_path != self.project_path:
                    result.conflicts += 1
                    continue
                if exists:
                    if mode == ImportMode.SKIP_DUPLICATES:
                        result.skipped += 1
                        continue
                    self._observations.hard_delete(obs.id)
                if session is None:
                    self._sessions.create(obs.session_id, self.project_path)
                self._observations.import_observation(obs)
            result.imported += 1
            if obs.state == LineageState.CURRENT:
                self._schedule_embedding(obs)

        for summary in plan.summaries:
            with self._db.transaction():
                session = self._sessions.get(summary.session_id)
                if session is not None and session.project_path != self.project_path:
                    result.conflicts += 1
                    continue
                if self._summaries.get(summary.id) is not None:
                    if mode == ImportMode.SKIP_DUPLICATES:
                        result.summaries_skipped += 1
                        continue
                    self._summaries.delete(summary.id)
                if session is None:
                    self._sessions.create(summary.session_id, self.project_path)
                self._summaries.create(summary)
            result.summaries_imported += 1

        logger.info(
            "Import (%s): %d imported, %d skipped, %d conflicts, %d invalid",
            mode, result.imported, result.skipped, result.conflicts, result.invalid,
        )
        return result

    # ------------------------------------------------------------------
    # Entity graph
    # ------------------------------------------------------------------

    def upsert_entity(self, name: str, entity_type: str) -> Entity:
        return self._entities.upsert_entity(name, entity_type)

    def create_relation(
        self,
        source_entity_id: str,
        target_entity_id: str,
        relationship: str,
        observation_id: str,
    ) -> Optional[EntityRelation]:
        return self._entities.create_relation(
            source_entity_id, target_entity_id, relationship, observation_id
        )

    def traverse_relations(self, entity_id: str, depth: int = 1) -> set[str]:
        return self._entities.traverse_relations(entity_id, depth)

    def find_entities(self, text: str, limit: int = 20) -> list[Entity]:
        return self._entities.find_by_name(text, limit=limit)

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self._entities.get_by_id(entity_id)

    def entity_neighborhood(self, entity_id: str, depth: int = 1):
        """networkx DiGraph of the bounded neighbourhood of *entity_id*."""
        return self._entities.neighborhood(entity_id, depth)

    def link_entity_observation(self, entity_id: str, observation_id: str) -> None:
        self._entities.link_observation(entity_id, observation_id)

    def ingest_entities(
        self,
        observation_id: str,
        entities: list[Mapping[str, str]],
        relations: Optional[list[Mapping[str, str]]] = None,
    ) -> dict[str, Any]:
        """
        Record entities extracted from an observation.

        *entities* are ``{"name", "entityType"}`` mappings; *relations* are
        ``{"source", "target", "relationship"}`` mappings whose endpoints
        name entries of *entities*.
        """
        if self._observations.get_by_id(observation_id) is None or not self._owned(observation_id):
            return {"entities": [], "relations": []}
        by_name: dict[str, Entity] = {}
        stored_entities = []
        for item in entities:
            entity_type = item.get("entityType") or item.get("entity_type") or EntityType.OTHER
            entity = self._entities.upsert_entity(item.get("name", ""), entity_type)
            self._entities.link_observation(entity.id, observation_id)
            by_name[entity.name.lower()] = entity
            stored_entities.append(entity)
        stored_relations = []
        for item in relations or []:
            source = by_name.get(str(item.get("source", "")).strip().lower())
            target = by_name.get(str(item.get("target", "")).strip().lower())
            if source is None or target is None:
                continue
            relation = self._entities.create_relation(
                source.id, target.id, item.get("relationship", ""), observation_id
            )
            if relation is not None:
                stored_relations.append(relation)
        return {"entities": stored_entities, "relations": stored_relations}

    # ------------------------------------------------------------------
    # Config audit
    # ------------------------------------------------------------------

    def _apply_config_patch(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        previous = self._config_store.patch(patch)
        self._refresh_components()
        self.events.emit(EventKind.CONFIG_CHANGED, {"keys": sorted(patch)})
        return previous

    def _refresh_components(self) -> None:
        config = self.config
        self._search.embedding_timeout_s = config.embedding_timeout_s
        self._search.min_similarity = config.min_similarity
        self._search.lexical_weight = config.lexical_weight
        self._search.vector_weight = config.vector_weight
        if self._auto_components:
            self._search.embedder = create_embedder(config)
            self._search.reranker = create_reranker(config)

    def patch_config(
        self, patch: Mapping[str, Any], source: str = AuditSource.API
    ) -> ConfigAuditEvent:
        """Apply a config patch and record it in the audit ledger."""
        if source not in (AuditSource.API, AuditSource.MODE):
            raise ValidationError(f"Invalid audit source: {source}")
        clean = self._config_store.validate(patch)
        previous = self._apply_config_patch(clean)
        return self._config_ledger.record(clean, previous, source)

    def track_config_audit(self, event: ConfigAuditEvent) -> ConfigAuditEvent:
        if event.source not in AuditSource.ALL:
            raise ValidationError(f"Invalid audit source: {event.source}")
        return self._config_ledger.append(event)

    def get_config_audit_timeline(self) -> list[ConfigAuditEvent]:
        return self._config_ledger.list()

    def rollback_config(self, event_id: str) -> Optional[ConfigAuditEvent]:
        return self._config_ledger.rollback(event_id, self._apply_config_patch)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def track_maintenance_result(
        self, action: str, dry_run: bool, result: dict[str, Any]
    ) -> MaintenanceHistoryItem:
        return self._maintenance_ledger.record(action, dry_run, result)

    def get_maintenance_history(self) -> list[MaintenanceHistoryItem]:
        return self._maintenance_ledger.list()

    def run_maintenance(self, action: str, dry_run: bool = False) -> MaintenanceHistoryItem:
        """Run a housekeeping action and record its outcome."""
        if action not in MAINTENANCE_ACTIONS:
            raise ValidationError(
                f"Unknown maintenance action: {action}",
                {"allowed": list(MAINTENANCE_ACTIONS)},
            )
        if action == "prune-embeddings":
            result = {"removed": self._vectors.prune_archived(dry_run=dry_run)}
        elif action == "reindex":
            count = self._observations.get_count(include_archived=True)
            if not dry_run:
                self._observations.rebuild_fts()
            result = {"observations": count}
        else:
            if not dry_run:
                self._db.vacuum()
            result = {"database": self._db.path}
        logger.info("Maintenance %s%s: %s", action, " (dry run)" if dry_run else "", result)
        return self.track_maintenance_result(action, dry_run, result)
