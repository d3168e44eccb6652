"""
Uniform response envelope shared by every front-end.

    {"data": ..., "error": null | {"code", "message", "details"}, "meta": {...}}

``call`` runs a facade operation and maps the exception taxonomy onto
error codes, so transports never format errors themselves.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from .errors import CodingMemoryError

logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    """Recursively convert model objects (anything with ``to_dict``) to plain data."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return value


def ok(data: Any = None, meta: Optional[dict] = None) -> dict[str, Any]:
    return {"data": to_jsonable(data), "error": None, "meta": meta or {}}


def fail(code: str, message: str, details: Any = None,
         meta: Optional[dict] = None) -> dict[str, Any]:
    return {
        "data": None,
        "error": {"code": code, "message": message, "details": to_jsonable(details)},
        "meta": meta or {},
    }


def call(
    fn: Callable[..., Any],
    *args: Any,
    not_found: Optional[str] = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Invoke *fn* and wrap the outcome in the envelope.

    Parameters
    ----------
    not_found:
        When given, a ``None`` result becomes a ``NOT_FOUND`` error with
        this message.
    """
    t0 = time.perf_counter()
    try:
        result = fn(*args, **kwargs)
    except CodingMemoryError as exc:
        logger.debug("%s failed: %s %s", getattr(fn, "__name__", fn), exc.code, exc.message)
        return fail(exc.code, exc.message, exc.details)
    except Exception as exc:
        logger.exception("Unexpected error in %s", getattr(fn, "__name__", fn))
        return fail("INTERNAL_ERROR", str(exc) or exc.__class__.__name__)
    meta = {"durationMs": round((time.perf_counter() - t0) * 1000, 2)}
    if result is None and not_found is not None:
        return fail("NOT_FOUND", not_found, meta=meta)
    return ok(result, meta)
