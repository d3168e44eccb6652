"""
Revision lineage and field-level diffs.

Both functions take a *lookup* callable that resolves an id to an
observation regardless of its lineage state, so the walk works over any
store.  Stored pointers are not trusted: every walk carries a visited set
and a hop ceiling, so corrupted or cyclic chains still terminate.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .models import FieldChange, LineageNode, Observation, RevisionDiff

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Optional[Observation]]

MAX_LINEAGE_HOPS = 256

# (attribute, reported field name), in reporting order
DIFF_FIELDS = (
    ("title", "title"),
    ("subtitle", "subtitle"),
    ("narrative", "narrative"),
    ("type", "type"),
    ("facts", "facts"),
    ("concepts", "concepts"),
    ("files_read", "filesRead"),
    ("files_modified", "filesModified"),
    ("importance", "importance"),
)


def _to_node(obs: Observation) -> LineageNode:
    return LineageNode(
        id=obs.id,
        revision_of=obs.revision_of,
        superseded_by=obs.superseded_by,
        superseded_at=obs.superseded_at,
        deleted_at=obs.deleted_at,
        state=obs.state,
        observation=obs,
    )


def _walk_back(anchor: Observation, lookup: Lookup) -> list[Observation]:
    """Path from *anchor* back to its root, anchor first."""
    path = [anchor]
    seen = {anchor.id}
    current = anchor
    for _ in range(MAX_LINEAGE_HOPS):
        if not current.revision_of or current.revision_of in seen:
            break
        previous = lookup(current.revision_of)
        if previous is None:
            break
        seen.add(previous.id)
        path.append(previous)
        current = previous
    return path


def _walk_forward(start: Observation, lookup: Lookup, seen: set[str]) -> list[Observation]:
    """Successors of *start* (exclusive), skipping anything in *seen*."""
    chain: list[Observation] = []
    current = start
    for _ in range(MAX_LINEAGE_HOPS):
        if not current.superseded_by or current.superseded_by in seen:
            break
        following = lookup(current.superseded_by)
        if following is None:
            break
        seen.add(following.id)
        chain.append(following)
        current = following
    return chain


def get_lineage(observation_id: str, lookup: Lookup) -> Optional[list[LineageNode]]:
    """
    Ordered revision chain containing *observation_id*, root first.

    Walks back to the root through ``revision_of``, then forward through
    ``superseded_by``.  If the forward walk from the root never reaches the
    anchor (inconsistent pointers) the chain is rebuilt as the backward
    path plus the anchor's own successors.

    Returns
    -------
    Optional[list[LineageNode]]
        ``None`` if the anchor does not exist.
    """
    anchor = lookup(observation_id)
    if anchor is None:
        return None

    back = _walk_back(anchor, lookup)
    root = back[-1]
    seen = {root.id}
    chain = [root] + _walk_forward(root, lookup, seen)

    if anchor.id not in seen:
        logger.warning(
            "[Lineage] Inconsistent chain around %s; rebuilding from anchor",
            observation_id,
        )
        chain = list(reversed(back))
        seen = {obs.id for obs in chain}
        chain.extend(_walk_forward(anchor, lookup, seen))

    return [_to_node(obs) for obs in chain]


def _copy(value: Any) -> Any:
    return list(value) if isinstance(value, list) else value


def get_revision_diff(
    observation_id: str,
    against_id: str,
    lookup: Lookup,
) -> Optional[RevisionDiff]:
    """
    Compare two observation versions field by field.

    *against_id* is the "before" side and *observation_id* the "after"
    side.  List fields compare element-wise in order.

    Returns
    -------
    Optional[RevisionDiff]
        ``None`` if either id does not exist.
    """
    after = lookup(observation_id)
    before = lookup(against_id)
    if after is None or before is None:
        return None

    changes = []
    for attr, label in DIFF_FIELDS:
        old = getattr(before, attr)
        new = getattr(after, attr)
        if old != new:
            changes.append(FieldChange(field=label, before=_copy(old), after=_copy(new)))

    if changes:
        summary = f"Changed {len(changes)} fields: {', '.join(c.field for c in changes)}."
    else:
        summary = "No material changes between revisions."
    return RevisionDiff(
        from_id=before.id,
        to_id=after.id,
        changed_fields=changes,
        summary=summary,
    )
