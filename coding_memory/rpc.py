"""
MCP server exposing the memory engine as tools over stdio.

Framing, the ``initialize`` handshake and protocol-version negotiation
are handled by the ``mcp`` SDK.  This module only declares the tools and
routes ``tools/call`` to the engine; every tool returns the standard API
envelope serialised as JSON text.

Run with::

    codingmem serve
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from . import api
from .engine import MemoryEngine
from .errors import CodingMemoryError, ValidationError
from .models import ObservationType
from .transfer import ImportMode

logger = logging.getLogger(__name__)

SERVER_NAME = "coding-memory"
SERVER_VERSION = "0.1.0"

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

_OBSERVATION_FIELDS = {
    "title": {"type": "string"},
    "subtitle": {"type": "string"},
    "narrative": {"type": "string"},
    "type": {"type": "string", "enum": list(ObservationType.ALL)},
    "facts": _STRING_LIST,
    "concepts": _STRING_LIST,
    "filesRead": _STRING_LIST,
    "filesModified": _STRING_LIST,
    "importance": {"type": "integer", "minimum": 1, "maximum": 5},
}

# wire key -> engine keyword
_FIELD_ARGS = {
    "title": "title",
    "subtitle": "subtitle",
    "narrative": "narrative",
    "type": "type",
    "facts": "facts",
    "concepts": "concepts",
    "filesRead": "files_read",
    "filesModified": "files_modified",
    "importance": "importance",
}


def _require(arguments: dict[str, Any], key: str, kind: type = str) -> Any:
    value = arguments.get(key)
    if not isinstance(value, kind) or (kind is str and not value):
        raise ValidationError(f"'{key}' is required and must be a {kind.__name__}")
    return value


def _fields(arguments: dict[str, Any]) -> dict[str, Any]:
    return {
        engine_key: arguments[wire]
        for wire, engine_key in _FIELD_ARGS.items()
        if wire in arguments
    }


class ToolRouter:
    """
    Maps tool names onto engine calls.

    ``dispatch`` is synchronous and transport-free, so it can be driven
    directly (tests, other front-ends) as well as from the MCP server.
    """

    def __init__(self, engine: MemoryEngine) -> None:
        self.engine = engine
        self._tools: dict[str, tuple[str, dict, Callable[[dict], dict]]] = {}
        self._register_all()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def _register(self, name: str, description: str, properties: dict,
                  required: list[str], handler: Callable[[dict], dict]) -> None:
        schema = {"type": "object", "properties": properties, "required": required}
        self._tools[name] = (description, schema, handler)

    def list_tools(self) -> list[Tool]:
        return [
            Tool(name=name, description=description, inputSchema=schema)
            for name, (description, schema, _) in self._tools.items()
        ]

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def dispatch(self, name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Run one tool and return the API envelope."""
        entry = self._tools.get(name)
        if entry is None:
            return api.fail("NOT_FOUND", f"Unknown tool: {name}")
        if arguments is not None and not isinstance(arguments, dict):
            return api.fail("VALIDATION_ERROR", "Tool arguments must be an object")
        try:
            return entry[2](dict(arguments or {}))
        except CodingMemoryError as exc:
            return api.fail(exc.code, exc.message, exc.details)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _register_all(self) -> None:
        e = self.engine

        def create(args: dict) -> dict:
            return api.call(
                e.save,
                _require(args, "sessionId"),
                args.get("title", ""),
                args.get("type", ""),
                **{k: v for k, v in _fields(args).items() if k not in ("title", "type")},
            )

        self._register(
            "memory.create", "Save a new observation.",
            {"sessionId": {"type": "string"}, **_OBSERVATION_FIELDS},
            ["sessionId", "title", "type"], create,
        )

        def revise(args: dict) -> dict:
            return api.call(
                e.revise, _require(args, "id"), _fields(args),
                not_found="Observation not found in this project",
            )

        self._register(
            "memory.revise", "Create a new revision of an observation.",
            {"id": {"type": "string"}, **_OBSERVATION_FIELDS}, ["id"], revise,
        )

        def remove(args: dict) -> dict:
            ids = args.get("ids")
            if ids is None and isinstance(args.get("id"), str):
                ids = [args["id"]]
            if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
                return api.fail("VALIDATION_ERROR", "'ids' must be a list of strings")
            return api.call(lambda: {"tombstoned": e.tombstone(ids)})

        self._register(
            "memory.remove", "Tombstone observations.",
            {"id": {"type": "string"}, "ids": _STRING_LIST}, [], remove,
        )

        def get(args: dict) -> dict:
            return api.call(
                e.get, _require(args, "id"), bool(args.get("includeArchived", False)),
                not_found="Observation not found",
            )

        self._register(
            "memory.get", "Fetch one observation.",
            {"id": {"type": "string"}, "includeArchived": {"type": "boolean"}},
            ["id"], get,
        )

        def find(args: dict) -> dict:
            query = args.get("query", "")
            return api.call(e.search, query, args.get("filters"))

        self._register(
            "memory.find", "Search observations (lexical, hybrid, graph).",
            {"query": {"type": "string"}, "filters": {"type": "object"}},
            ["query"], find,
        )

        def history(args: dict) -> dict:
            limit = args.get("limit", 20)
            if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
                return api.fail("VALIDATION_ERROR", "'limit' must be a positive integer")
            return api.call(e.timeline, limit, args.get("sessionId"))

        self._register(
            "memory.history", "Recent observations, newest first.",
            {"limit": {"type": "integer"}, "sessionId": {"type": "string"}}, [], history,
        )

        def lineage(args: dict) -> dict:
            return api.call(
                e.get_lineage, _require(args, "id"), not_found="Observation not found"
            )

        self._register(
            "memory.lineage", "Revision chain of an observation, root first.",
            {"id": {"type": "string"}}, ["id"], lineage,
        )

        def diff(args: dict) -> dict:
            return api.call(
                e.get_revision_diff, _require(args, "id"), _require(args, "againstId"),
                not_found="Observation not found",
            )

        self._register(
            "memory.diff", "Field-level diff between two revisions.",
            {"id": {"type": "string"}, "againstId": {"type": "string"}},
            ["id", "againstId"], diff,
        )

        def export(args: dict) -> dict:
            return api.call(
                e.export_data,
                args.get("scope", "project"),
                args.get("type"),
                bool(args.get("includeArchived", True)),
            )

        self._register(
            "memory.transfer.export", "Export observations and summaries as JSON.",
            {
                "scope": {"type": "string", "enum": ["project", "all"]},
                "type": {"type": "string"},
                "includeArchived": {"type": "boolean"},
            },
            [], export,
        )

        def import_(args: dict) -> dict:
            payload = args.get("payload")
            if payload is None:
                return api.fail("VALIDATION_ERROR", "'payload' is required")
            return api.call(e.import_data, payload, args.get("mode", ImportMode.SKIP_DUPLICATES))

        self._register(
            "memory.transfer.import", "Import an export document.",
            {
                "payload": {"type": ["string", "object"]},
                "mode": {"type": "string", "enum": list(ImportMode.ALL)},
            },
            ["payload"], import_,
        )

        def audit(args: dict) -> dict:
            return api.call(e.get_config_audit_timeline)

        self._register(
            "memory.config.audit", "Configuration change history, newest first.",
            {}, [], audit,
        )

        def rollback(args: dict) -> dict:
            return api.call(
                e.rollback_config, _require(args, "eventId"),
                not_found="Config audit event not found",
            )

        self._register(
            "memory.config.rollback", "Undo a configuration change.",
            {"eventId": {"type": "string"}}, ["eventId"], rollback,
        )

        def maintenance(args: dict) -> dict:
            return api.call(e.get_maintenance_history)

        self._register(
            "memory.maintenance.history", "Maintenance runs, newest first.",
            {}, [], maintenance,
        )


# ---------------------------------------------------------------------------
# MCP server
# ---------------------------------------------------------------------------

def build_server(router: ToolRouter) -> Server:
    app = Server(SERVER_NAME)

    @app.list_tools()
    async def handle_list_tools() -> list[Tool]:
        return router.list_tools()

    @app.call_tool()
    async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
        envelope = await asyncio.to_thread(router.dispatch, name, arguments)
        return [TextContent(type="text", text=json.dumps(envelope, default=str))]

    return app


async def _serve(engine: MemoryEngine) -> None:
    router = ToolRouter(engine)
    app = build_server(router)
    logger.info("Starting MCP server for %s", engine.project_path)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=SERVER_VERSION,
                    capabilities=app.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    finally:
        engine.close()


def serve(engine: MemoryEngine) -> None:
    """Serve until stdin closes, then drain background work."""
    asyncio.run(_serve(engine))
