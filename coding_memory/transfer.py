"""
Export / import of a project's observations and session summaries.

Document format (version 1)::

    {
      "version": 1,
      "exportedAt": "<iso timestamp>",
      "project": "<project path>",
      "observations": [ {camelCase observation}, ... ],
      "summaries":    [ {camelCase summary}, ... ]
    }

Lineage fields travel with each observation, so an export of archived rows
reproduces the full revision history on import.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from .errors import ValidationError
from .models import Observation, ObservationType, SessionSummary, utc_now

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1


class ImportMode:
    SKIP_DUPLICATES = "skip-duplicates"
    OVERWRITE = "overwrite"

    ALL = (SKIP_DUPLICATES, OVERWRITE)


@dataclass
class ImportPlan:
    """Parsed import document: valid entries plus how many were rejected."""

    observations: list[Observation] = field(default_factory=list)
    summaries: list[SessionSummary] = field(default_factory=list)
    invalid: int = 0


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    invalid: int = 0
    conflicts: int = 0
    summaries_imported: int = 0
    summaries_skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "invalid": self.invalid,
            "conflicts": self.conflicts,
            "summariesImported": self.summaries_imported,
            "summariesSkipped": self.summaries_skipped,
        }


def build_export(
    project: str,
    observations: list[Observation],
    summaries: list[SessionSummary],
) -> dict[str, Any]:
    return {
        "version": EXPORT_VERSION,
        "exportedAt": utc_now(),
        "project": project,
        "observations": [o.to_dict() for o in observations],
        "summaries": [s.to_dict() for s in summaries],
    }


def _valid_observation(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    for key in ("id", "sessionId", "title", "createdAt"):
        if not isinstance(entry.get(key), str) or not entry[key]:
            return False
    if entry.get("type") not in ObservationType.ALL:
        return False
    importance = entry.get("importance", 3)
    if isinstance(importance, bool) or not isinstance(importance, int) or not 1 <= importance <= 5:
        return False
    for key in ("facts", "concepts", "filesRead", "filesModified"):
        value = entry.get(key)
        if value is not None and not isinstance(value, list):
            return False
    return True


def _valid_summary(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    return all(isinstance(entry.get(k), str) and entry[k] for k in ("id", "sessionId"))


def parse_import(payload: Union[str, bytes, dict]) -> ImportPlan:
    """
    Validate an export document.

    Document-level problems (bad JSON, wrong shape, unsupported version)
    raise :class:`ValidationError`.  Individual malformed entries are
    dropped and counted in ``invalid``.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValidationError(f"Import payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Import payload must be a JSON object")
    version = payload.get("version")
    if version != EXPORT_VERSION:
        raise ValidationError(
            f"Unsupported export version: {version!r}",
            {"supported": [EXPORT_VERSION]},
        )
    observations = payload.get("observations")
    if not isinstance(observations, list):
        raise ValidationError("Import payload must contain an 'observations' array")
    summaries = payload.get("summaries", [])
    if not isinstance(summaries, list):
        raise ValidationError("'summaries' must be an array when present")

    plan = ImportPlan()
    for entry in observations:
        if _valid_observation(entry):
            plan.observations.append(Observation.from_dict(entry))
        else:
            plan.invalid += 1
    for entry in summaries:
        if _valid_summary(entry):
            plan.summaries.append(SessionSummary.from_dict(entry))
        else:
            plan.invalid += 1
    if plan.invalid:
        logger.warning("Import: dropped %d malformed entries", plan.invalid)
    return plan
