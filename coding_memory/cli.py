"""
Command-line interface for the coding memory store.

Commands
--------
codingmem save         Save an observation
codingmem search       Search observations (lexical / hybrid)
codingmem show         Print one observation
codingmem lineage      Revision chain of an observation
codingmem diff         Field-level diff between two revisions
codingmem remove       Tombstone observations
codingmem export       Write an export document
codingmem import       Load an export document
codingmem config       show | set | audit | rollback
codingmem maintenance  run | history
codingmem embed        Backfill missing embeddings
codingmem graph        Print an entity's neighbourhood
codingmem stats        Project statistics
codingmem serve        Run the MCP server on stdio
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Any, Optional

import yaml
from tqdm import tqdm

from .config import Config
from .engine import MAINTENANCE_ACTIONS, MemoryEngine
from .errors import CodingMemoryError
from .logs import setup_logger
from .models import ObservationType
from .transfer import ImportMode

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _open_engine(args: argparse.Namespace) -> MemoryEngine:
    return MemoryEngine.open(config_path=getattr(args, "config", None))


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _split_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _print_results(results, query: str, elapsed_ms: float) -> None:
    if not results:
        print(f"No results found for: {query!r}")
        return
    print(f"\nSearch results for: {query!r}  [{len(results)} result(s)]")
    print("-" * 70)
    for r in results:
        obs = r.observation
        print(f"\n  [{r.rank}] {obs.type}: {obs.title}")
        print(f"       Id      : {obs.id}")
        print(f"       Matched : {', '.join(r.explain.matched_by)}")
        if r.explain.fused_score is not None:
            print(f"       Score   : {r.explain.fused_score:.4f}")
        if r.snippet:
            print(f"       Snippet : {r.snippet}")
    print(f"\n  Search time: {elapsed_ms:.1f}ms")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

def _cmd_save(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        obs = engine.save(
            args.session,
            args.title,
            args.type,
            narrative=args.narrative or "",
            subtitle=args.subtitle or "",
            facts=args.fact or [],
            concepts=_split_list(args.concepts),
            files_read=_split_list(args.files_read),
            files_modified=_split_list(args.files_modified),
            importance=args.importance,
            tool_name="cli",
        )
        print(f"Saved {obs.type} observation {obs.id}")


def _cmd_search(args: argparse.Namespace) -> None:
    filters: dict[str, Any] = {"limit": args.limit, "strategy": args.strategy}
    if args.type:
        filters["type"] = args.type
    if args.concepts:
        filters["concepts"] = _split_list(args.concepts)
    if args.files:
        filters["files"] = _split_list(args.files)

    with _open_engine(args) as engine:
        t0 = time.perf_counter()
        results = engine.search(args.query, filters)
        elapsed_ms = (time.perf_counter() - t0) * 1000

    if args.json:
        _print_json([r.to_dict() for r in results])
    else:
        _print_results(results, args.query, elapsed_ms)


def _cmd_show(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        obs = engine.get(args.id, include_archived=args.include_archived)
    if obs is None:
        print(f"Observation not found: {args.id}", file=sys.stderr)
        sys.exit(1)
    _print_json(obs.to_dict(include_raw=args.raw))


def _cmd_lineage(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        chain = engine.get_lineage(args.id)
    if chain is None:
        print(f"Observation not found: {args.id}", file=sys.stderr)
        sys.exit(1)
    for i, node in enumerate(chain, 1):
        marker = "*" if node.id == args.id else " "
        obs = node.observation
        print(f" {marker} {i:>3}. {node.id}  [{node.state}]  {obs.created_at}  {obs.title}")


def _cmd_diff(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        diff = engine.get_revision_diff(args.id, args.against)
    if diff is None:
        print("Observation not found", file=sys.stderr)
        sys.exit(1)
    print(f"{diff.from_id} -> {diff.to_id}")
    print(diff.summary)
    for change in diff.changed_fields:
        print(f"\n  {change.field}:")
        print(f"    - {json.dumps(change.before, default=str)}")
        print(f"    + {json.dumps(change.after, default=str)}")


def _cmd_remove(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        count = engine.tombstone(args.ids)
    print(f"Tombstoned {count} of {len(args.ids)} observation(s)")


def _cmd_export(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        document = engine.export_data(
            scope=args.scope,
            type=args.type,
            include_archived=not args.current_only,
        )
    text = json.dumps(document, indent=2)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        print(
            f"Exported {len(document['observations'])} observation(s) and "
            f"{len(document['summaries'])} summary(ies) to {args.output}"
        )
    else:
        print(text)


def _cmd_import(args: argparse.Namespace) -> None:
    if args.input == "-":
        payload = sys.stdin.read()
    else:
        with open(args.input, encoding="utf-8") as f:
            payload = f.read()
    with _open_engine(args) as engine:
        result = engine.import_data(payload, mode=args.mode)
    print(
        f"\nImport complete:\n"
        f"  Imported  : {result.imported}\n"
        f"  Skipped   : {result.skipped}\n"
        f"  Conflicts : {result.conflicts}\n"
        f"  Invalid   : {result.invalid}\n"
        f"  Summaries : {result.summaries_imported} imported, "
        f"{result.summaries_skipped} skipped"
    )


def _cmd_config(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        if args.config_cmd == "show":
            data = engine.config.to_dict()
            locked = engine.locked_config_keys()
            for key in sorted(data):
                suffix = "  (env)" if key in locked else ""
                print(f"  {key:<26} {data[key]!r}{suffix}")
        elif args.config_cmd == "set":
            patch = {}
            for item in args.pairs:
                if "=" not in item:
                    print(f"Invalid pair '{item}'. Use key=value.", file=sys.stderr)
                    sys.exit(1)
                key, raw = item.split("=", 1)
                patch[key.strip()] = yaml.safe_load(raw) if raw.strip() else ""
            event = engine.patch_config(patch)
            print(f"Recorded config change {event.id}")
        elif args.config_cmd == "audit":
            for event in engine.get_config_audit_timeline():
                print(f"  {event.timestamp}  {event.id}  [{event.source}]  {event.patch}")
        elif args.config_cmd == "rollback":
            event = engine.rollback_config(args.event_id)
            if event is None:
                print(f"Config audit event not found: {args.event_id}", file=sys.stderr)
                sys.exit(1)
            print(f"Rolled back {args.event_id} (event {event.id})")


def _cmd_maintenance(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        if args.maint_cmd == "run":
            item = engine.run_maintenance(args.action, dry_run=args.dry_run)
            label = " (dry run)" if item.dry_run else ""
            print(f"{item.action}{label}: {item.result}")
        else:
            for item in engine.get_maintenance_history():
                label = " dry-run" if item.dry_run else ""
                print(f"  {item.timestamp}  {item.action}{label}  {item.result}")


def _cmd_embed(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        if engine.embedder is None:
            print(
                "No embedding provider configured. Set embedding_provider "
                "(ollama | openai) first.",
                file=sys.stderr,
            )
            sys.exit(1)

        bar: Optional[tqdm] = None

        def _progress(done: int, total: int) -> None:
            nonlocal bar
            if bar is None:
                bar = tqdm(total=total, desc="Embedding", unit="obs")
            bar.update(1)

        t0 = time.perf_counter()
        embedded = engine.backfill_embeddings(limit=args.limit, progress=_progress)
        if bar is not None:
            bar.close()
        elapsed = time.perf_counter() - t0

    print(f"\nEmbed complete: {embedded} embedded in {elapsed:.1f}s")


def _cmd_graph(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        matches = engine.find_entities(args.name, limit=1)
        if not matches:
            print(f"No entity matching {args.name!r}")
            return
        root = matches[0]
        graph = engine.entity_neighborhood(root.id, depth=args.depth)

    print(f"\n{root.entity_type}: {root.name}  "
          f"[{graph.number_of_nodes()} node(s), {graph.number_of_edges()} edge(s)]")
    print("-" * 70)
    for source, target, data in graph.edges(data=True):
        s = graph.nodes[source].get("name", source)
        t = graph.nodes[target].get("name", target)
        print(f"  {s} --{data.get('relationship', '')}--> {t}")


def _cmd_stats(args: argparse.Namespace) -> None:
    with _open_engine(args) as engine:
        data = engine.stats()
    if args.json:
        _print_json(data)
        return
    print("\nProject statistics:")
    for key in ("totalObservations", "totalSessions", "totalTokens", "tokensSaved",
                "averageObservationSize", "totalEntities", "embeddings"):
        print(f"  {key:<24}: {data.get(key)}")
    for obs_type, count in sorted(data.get("typeBreakdown", {}).items()):
        print(f"    {obs_type:<22}: {count}")


def _cmd_serve(args: argparse.Namespace) -> None:
    from .rpc import serve

    serve(_open_engine(args))


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codingmem",
        description="Persistent, versioned memory for coding sessions",
    )
    parser.add_argument("--config", default=None, help="Path to .coding-memory.yaml")
    subparsers = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    subparsers.required = True

    # --- save ---
    save_p = subparsers.add_parser("save", help="Save an observation")
    save_p.add_argument("title")
    save_p.add_argument("--type", required=True, choices=list(ObservationType.ALL))
    save_p.add_argument("--session", default="cli", help="Session id (default: cli)")
    save_p.add_argument("--narrative")
    save_p.add_argument("--subtitle")
    save_p.add_argument("--fact", action="append", help="Repeat for several facts")
    save_p.add_argument("--concepts", help="Comma-separated concepts")
    save_p.add_argument("--files-read", help="Comma-separated paths")
    save_p.add_argument("--files-modified", help="Comma-separated paths")
    save_p.add_argument("--importance", type=int, default=3)
    save_p.set_defaults(func=_cmd_save)

    # --- search ---
    search_p = subparsers.add_parser("search", help="Search observations")
    search_p.add_argument("query")
    search_p.add_argument("--limit", type=int, default=10)
    search_p.add_argument("--type", choices=list(ObservationType.ALL))
    search_p.add_argument("--strategy", choices=["lexical", "hybrid"], default="hybrid")
    search_p.add_argument("--concepts", help="Comma-separated concepts")
    search_p.add_argument("--files", help="Comma-separated path fragments")
    search_p.add_argument("--json", action="store_true", help="Print raw JSON")
    search_p.set_defaults(func=_cmd_search)

    # --- show ---
    show_p = subparsers.add_parser("show", help="Print one observation")
    show_p.add_argument("id")
    show_p.add_argument("--include-archived", action="store_true")
    show_p.add_argument("--raw", action="store_true", help="Include raw tool output")
    show_p.set_defaults(func=_cmd_show)

    # --- lineage ---
    lineage_p = subparsers.add_parser("lineage", help="Revision chain of an observation")
    lineage_p.add_argument("id")
    lineage_p.set_defaults(func=_cmd_lineage)

    # --- diff ---
    diff_p = subparsers.add_parser("diff", help="Diff two revisions")
    diff_p.add_argument("id")
    diff_p.add_argument("against")
    diff_p.set_defaults(func=_cmd_diff)

    # --- remove ---
    remove_p = subparsers.add_parser("remove", help="Tombstone observations")
    remove_p.add_argument("ids", nargs="+")
    remove_p.set_defaults(func=_cmd_remove)

    # --- export ---
    export_p = subparsers.add_parser("export", help="Export observations and summaries")
    export_p.add_argument("-o", "--output", help="File to write (default: stdout)")
    export_p.add_argument("--scope", choices=["project", "all"], default="project")
    export_p.add_argument("--type", choices=list(ObservationType.ALL))
    export_p.add_argument("--current-only", action="store_true",
                          help="Leave out superseded and tombstoned revisions")
    export_p.set_defaults(func=_cmd_export)

    # --- import ---
    import_p = subparsers.add_parser("import", help="Import an export document")
    import_p.add_argument("input", help="File to read, or - for stdin")
    import_p.add_argument("--mode", choices=list(ImportMode.ALL),
                          default=ImportMode.SKIP_DUPLICATES)
    import_p.set_defaults(func=_cmd_import)

    # --- config ---
    config_p = subparsers.add_parser("config", help="Inspect or change configuration")
    config_sub = config_p.add_subparsers(dest="config_cmd", metavar="ACTION")
    config_sub.required = True
    config_sub.add_parser("show", help="Print resolved configuration")
    set_p = config_sub.add_parser("set", help="Patch configuration")
    set_p.add_argument("pairs", nargs="+", metavar="key=value")
    config_sub.add_parser("audit", help="Configuration change history")
    rollback_p = config_sub.add_parser("rollback", help="Undo a configuration change")
    rollback_p.add_argument("event_id")
    config_p.set_defaults(func=_cmd_config)

    # --- maintenance ---
    maint_p = subparsers.add_parser("maintenance", help="Housekeeping")
    maint_sub = maint_p.add_subparsers(dest="maint_cmd", metavar="ACTION")
    maint_sub.required = True
    run_p = maint_sub.add_parser("run", help="Run a maintenance action")
    run_p.add_argument("action", choices=list(MAINTENANCE_ACTIONS))
    run_p.add_argument("--dry-run", action="store_true")
    maint_sub.add_parser("history", help="Maintenance runs, newest first")
    maint_p.set_defaults(func=_cmd_maintenance)

    # --- embed ---
    embed_p = subparsers.add_parser("embed", help="Backfill missing embeddings")
    embed_p.add_argument("--limit", type=int, default=1000)
    embed_p.set_defaults(func=_cmd_embed)

    # --- graph ---
    graph_p = subparsers.add_parser("graph", help="Entity neighbourhood")
    graph_p.add_argument("name")
    graph_p.add_argument("--depth", type=int, default=1)
    graph_p.set_defaults(func=_cmd_graph)

    # --- stats ---
    stats_p = subparsers.add_parser("stats", help="Project statistics")
    stats_p.add_argument("--json", action="store_true")
    stats_p.set_defaults(func=_cmd_stats)

    # --- serve ---
    serve_p = subparsers.add_parser("serve", help="Run the MCP server on stdio")
    serve_p.set_defaults(func=_cmd_serve)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    """
    Main entry point for ``codingmem``.

    Parameters
    ----------
    argv:
        Argument list without the program name.  Defaults to sys.argv.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = Config.load(args.config)
    setup_logger(config.log_dir, stderr_level=config.log_level)

    try:
        args.func(args)
    except CodingMemoryError as exc:
        logger.debug("Command failed: %s", exc.code)
        print(f"Error [{exc.code}]: {exc.message}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
