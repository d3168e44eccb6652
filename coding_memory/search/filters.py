"""
Search filters: parsing, validation and the post-ranking predicate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from ..errors import ValidationError
from ..models import Observation, ObservationType

MAX_LIMIT = 100


class Strategy:
    LEXICAL = "lexical"
    HYBRID = "hybrid"

    ALL = (LEXICAL, HYBRID)


# camelCase wire key -> attribute
_WIRE_KEYS = {
    "type": "type",
    "limit": "limit",
    "importanceMin": "importance_min",
    "importanceMax": "importance_max",
    "createdAfter": "created_after",
    "createdBefore": "created_before",
    "concepts": "concepts",
    "files": "files",
    "strategy": "strategy",
    "timeoutS": "timeout_s",
}


def _parse_time(value: str, key: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"{key} must be an ISO 8601 timestamp", {"value": value}) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class SearchFilters:
    type: Optional[str] = None
    limit: int = 10
    importance_min: Optional[int] = None
    importance_max: Optional[int] = None
    created_after: Optional[str] = None
    created_before: Optional[str] = None
    concepts: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    strategy: str = Strategy.HYBRID
    timeout_s: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SearchFilters":
        """Accept either camelCase or snake_case keys."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValidationError("filters must be an object")
        kwargs: dict[str, Any] = {}
        known = set(_WIRE_KEYS) | set(_WIRE_KEYS.values())
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            raise ValidationError(f"Unknown filter keys: {', '.join(unknown)}", {"keys": unknown})
        for key, value in data.items():
            if value is None:
                continue
            kwargs[_WIRE_KEYS.get(key, key)] = value
        filters = cls(**kwargs)
        filters.validate()
        return filters

    def validate(self) -> None:
        if self.type is not None and self.type not in ObservationType.ALL:
            raise ValidationError(
                f"Unknown observation type: {self.type}",
                {"allowed": list(ObservationType.ALL)},
            )
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or not 1 <= self.limit <= MAX_LIMIT:
            raise ValidationError(f"limit must be an integer between 1 and {MAX_LIMIT}")
        for name in ("importance_min", "importance_max"):
            value = getattr(self, name)
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5
            ):
                raise ValidationError(f"{name} must be an integer between 1 and 5")
        if (
            self.importance_min is not None
            and self.importance_max is not None
            and self.importance_min > self.importance_max
        ):
            raise ValidationError("importance_min must not exceed importance_max")
        after = _parse_time(self.created_after, "created_after") if self.created_after else None
        before = _parse_time(self.created_before, "created_before") if self.created_before else None
        if after and before and after > before:
            raise ValidationError("created_after must not be later than created_before")
        for name in ("concepts", "files"):
            value = getattr(self, name)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValidationError(f"{name} must be a list of strings")
        if self.strategy not in Strategy.ALL:
            raise ValidationError(
                f"Unknown strategy: {self.strategy}", {"allowed": list(Strategy.ALL)}
            )
        if self.timeout_s is not None and (
            not isinstance(self.timeout_s, (int, float)) or self.timeout_s <= 0
        ):
            raise ValidationError("timeout_s must be a positive number")

    def matches(self, obs: Observation) -> bool:
        """Post-ranking predicate: type, importance, date and substring filters."""
        if self.type and obs.type != self.type:
            return False
        if self.importance_min is not None and obs.importance < self.importance_min:
            return False
        if self.importance_max is not None and obs.importance > self.importance_max:
            return False
        if self.created_after or self.created_before:
            try:
                created = _parse_time(obs.created_at, "created_at")
            except ValidationError:
                return False
            if self.created_after and created < _parse_time(self.created_after, "created_after"):
                return False
            if self.created_before and created > _parse_time(self.created_before, "created_before"):
                return False
        if self.concepts:
            wanted = [c.lower() for c in self.concepts]
            have = [c.lower() for c in obs.concepts]
            if not any(w in h for w in wanted for h in have):
                return False
        if self.files:
            wanted = [f.lower() for f in self.files]
            have = [f.lower() for f in obs.files_read + obs.files_modified]
            if not any(w in h for w in wanted for h in have):
                return False
        return True
