"""Command-line interface for the fact store.

Every command handler takes the parsed arguments and returns an exit code.
Errors meant for the user are raised as :class:`MimirError` and turned into
``Error: <message>`` on stderr by :func:`run_cli`.
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path

from .clock import parse_date
from .config import MemoryConfig, load_config
from .errors import MimirError, NotFoundError, UserError
from .files import list_files
from .logging import JSONLLogger, configure_logger
from .memory.extractor import FactExtractor
from .memory.format import (
    facts_to_markdown,
    format_candidate,
    format_fact,
    format_working_fact,
    paint,
)
from .memory.graph import RelationGraph
from .memory.llm_client import ENGINES, create_llm_client
from .memory.manager import FileOutcome, MemoryManager
from .memory.models import RELATION_TYPES, SCOPES, SOURCE_TYPES, TIERS, Fact
from .memory.store import MemoryStore, open_store
from .memory.ttl import ttl_to_expires_at
from .memory.validation import (
    clean_import_items,
    parse_confidence,
    parse_fact_ref,
    parse_limit,
    parse_relation_type,
    parse_scope,
    parse_source_type,
    parse_tier,
    with_project_tag,
)

logger = logging.getLogger(__name__)


@contextmanager
def _open_store(args: argparse.Namespace) -> Iterator[MemoryStore]:
    """Open (and migrate) the store for one command."""
    store = open_store(args.config.db_path)
    try:
        yield store
    finally:
        store.close()


def _print_facts(facts: list[Fact], store: MemoryStore) -> None:
    now = store.clock.now()
    for fact in facts:
        print(format_fact(fact, now))
    print(paint(f"{len(facts)} fact(s)", "dim"))


def _require_file(path: Path) -> Path:
    if not path.is_file():
        raise UserError(f"File not found: {path}")
    return path


# ---------------------------------------------------------------------- #
# Fact commands
# ---------------------------------------------------------------------- #


def cmd_add(args: argparse.Namespace) -> int:
    """Add or update a fact."""
    confidence = parse_confidence(args.confidence)
    scope = "project" if args.project else parse_scope(args.scope)
    tier = parse_tier(args.tier)
    source_type = parse_source_type(args.source_type)
    source = with_project_tag(args.source, args.project)

    with _open_store(args) as store:
        expires_at = ttl_to_expires_at(args.ttl, store.clock.now())
        store.upsert(
            Fact(
                category=args.category,
                key=args.key,
                value=args.value,
                source=source,
                confidence=confidence,
                scope=scope,
                tier=tier,
                expires_at=expires_at,
                source_type=source_type,
            )
        )

    print(paint("Fact saved", "green"))
    return 0


def cmd_get(args: argparse.Namespace) -> int:
    """Get facts by category, or one fact by key."""
    with _open_store(args) as store:
        facts = store.get(args.category, args.key)
        if not facts:
            raise NotFoundError("No matching facts found")
        _print_facts(facts, store)
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    """Full-text search over keys and values."""
    with _open_store(args) as store:
        facts = store.search(args.query)
        if not facts:
            raise NotFoundError("No matching facts found")
        _print_facts(facts, store)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List facts with optional filters."""
    scope = parse_scope(args.scope) if args.scope else None
    tier = parse_tier(args.tier) if args.tier else None
    limit = parse_limit(args.limit) if args.limit is not None else args.config.default_limit

    with _open_store(args) as store:
        facts = store.list_facts(
            category=args.category, scope=scope, tier=tier, limit=limit, recent=args.recent
        )
        if not facts:
            raise NotFoundError("No facts found")
        _print_facts(facts, store)
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    """Delete a specific fact."""
    with _open_store(args) as store:
        if not store.remove(args.category, args.key):
            raise NotFoundError("No matching fact to remove")
    print(paint("Fact removed", "green"))
    return 0


def cmd_link(args: argparse.Namespace) -> int:
    """Link two facts with a typed relation."""
    relation_type = parse_relation_type(args.type)
    with _open_store(args) as store:
        RelationGraph(store).link(args.source, args.target, relation_type)

    source = "/".join(parse_fact_ref(args.source))
    target = "/".join(parse_fact_ref(args.target))
    print(paint(f"Linked {source} -> {target} ({relation_type})", "green"))
    return 0


def cmd_graph(args: argparse.Namespace) -> int:
    """Show a fact and the facts connected to it."""
    with _open_store(args) as store:
        graph = RelationGraph(store).neighbors(args.fact)

    print(paint(graph.root.ref, "bold"))
    print(graph.root.value)
    if not graph.edges:
        print(paint("No relations", "dim"))
        return 0

    for edge in graph.edges:
        arrow = "->" if edge.direction == "outgoing" else "<-"
        print(f"{arrow} ({edge.relation_type}) {edge.fact.ref}: {edge.fact.value}")
    return 0


def cmd_working(args: argparse.Namespace) -> int:
    """List working-memory facts with their TTL status."""
    with _open_store(args) as store:
        facts = store.working()
        if not facts:
            raise NotFoundError("No working-memory facts found")
        now = store.clock.now()
        for fact in facts:
            print(format_working_fact(fact, now))
    print(paint(f"{len(facts)} fact(s)", "dim"))
    return 0


def cmd_expire(args: argparse.Namespace) -> int:
    """Delete working-memory facts whose TTL has passed."""
    with _open_store(args) as store:
        removed = store.expire()
    print(paint(f"Expired {removed} fact(s)", "green"))
    return 0


def cmd_prune(args: argparse.Namespace) -> int:
    """Delete old and/or low-confidence facts."""
    if args.before is None and args.confidence_below is None:
        raise UserError("Provide at least one filter: --before or --confidence-below")
    before = parse_date(args.before) if args.before is not None else None
    below = (
        parse_confidence(args.confidence_below) if args.confidence_below is not None else None
    )

    with _open_store(args) as store:
        removed = store.prune(before=before, confidence_below=below)
    print(paint(f"Pruned {removed} fact(s)", "green"))
    return 0


# ---------------------------------------------------------------------- #
# Import / export / inject
# ---------------------------------------------------------------------- #


def cmd_inject(args: argparse.Namespace) -> int:
    """Render facts as markdown for prompt injection."""
    limit = parse_limit(args.max) if args.max is not None else args.config.default_limit
    scope = parse_scope(args.scope) if args.scope else None

    with _open_store(args) as store:
        facts = store.select_for_injection(
            limit=limit,
            scope=scope,
            project=args.project,
            include_working=args.include_working,
        )

    markdown = facts_to_markdown(facts)
    if args.output:
        Path(args.output).write_text(markdown, encoding="utf-8")
        print(paint(f"Wrote {len(facts)} fact(s) to {args.output}", "green"))
    else:
        sys.stdout.write(markdown)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import facts from a JSON array."""
    path = _require_file(Path(args.file))
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise UserError("Import file is not valid JSON") from None

    with _open_store(args) as store:
        facts = clean_import_items(data, store.clock.now())
        count = store.import_facts(facts)
    print(paint(f"Imported {count} fact(s)", "green"))
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export every fact as JSON or markdown."""
    if args.format not in ("json", "md"):
        raise UserError("Format must be json or md")

    with _open_store(args) as store:
        facts = store.export_all()

    if args.format == "json":
        sys.stdout.write(json.dumps([fact.to_dict() for fact in facts], indent=2) + "\n")
    else:
        sys.stdout.write(facts_to_markdown(facts))
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Show counts and database information."""
    with _open_store(args) as store:
        stats = store.stats()

    print(f"{paint('DB:', 'bold')} {stats['db_path']}")
    print(f"{paint('Total facts:', 'bold')} {stats['total']}")
    print(f"{paint('DB size:', 'bold')} {stats['db_size']} bytes")
    print(f"{paint('Last updated:', 'bold')} {stats['last_updated'] or 'n/a'}")
    for title, field in (
        ("By category:", "by_category"),
        ("By scope:", "by_scope"),
        ("By tier:", "by_tier"),
    ):
        print(paint(title, "bold"))
        for name, count in stats[field].items():
            print(f"- {name}: {count}")
    return 0


# ---------------------------------------------------------------------- #
# Extraction
# ---------------------------------------------------------------------- #


def _build_manager(args: argparse.Namespace, store: MemoryStore) -> MemoryManager:
    config: MemoryConfig = args.config
    engine = args.engine or config.engine
    if engine not in ENGINES:
        raise UserError(f"Engine must be one of: {', '.join(ENGINES)}")

    client = create_llm_client(
        engine=engine,
        model=args.model,
        ollama_url=config.ollama_url,
        ollama_model=config.ollama_model,
        groq_model=config.groq_model,
        timeout=config.request_timeout,
    )
    extractor = FactExtractor(client, max_chunk_words=config.max_chunk_words)
    return MemoryManager(store, extractor, event_logger=args.events)


def _report_outcome(path: Path, outcome: FileOutcome, dry_run: bool) -> None:
    """Print what happened to one file."""
    if outcome.skipped_file:
        print(paint(f"{path}: already extracted (use --force to re-extract)", "dim"))
        return

    result = outcome.result
    if outcome.status == "empty" or result is None:
        print(paint(f"{path}: no useful extraction output", "yellow"))
        return

    seconds = outcome.duration_ms / 1000
    if dry_run:
        print(paint(str(path), "bold"))
        for fact in result.facts:
            print(format_candidate(fact))
        summary = result.session_summary
        if not summary.is_empty():
            print(
                paint(
                    f"session_summary decisions={len(summary.decisions)}"
                    f" open_questions={len(summary.open_questions)}"
                    f" action_items={len(summary.action_items)}"
                    f" topics={len(summary.topics)}",
                    "dim",
                )
            )
        chunks = f" across {result.chunks} chunk(s)" if result.chunks > 1 else ""
        print(
            paint(
                f"{len(result.facts)} fact(s) extracted in {seconds:.1f}s [{result.engine}]{chunks}",
                "dim",
            )
        )
        return

    summary_msg = f" summary={outcome.summary_key}" if outcome.summary_key else ""
    print(
        paint(
            f"{path}: extracted={outcome.facts} inserted={outcome.inserted}"
            f" updated={outcome.updated} skipped={outcome.skipped}{summary_msg}"
            f" ({seconds:.1f}s {result.engine})",
            "green",
        )
    )


def cmd_extract(args: argparse.Namespace) -> int:
    """Extract facts and a session summary from one file."""
    path = _require_file(Path(args.file))
    with _open_store(args) as store:
        manager = _build_manager(args, store)
        outcome = asyncio.run(manager.extract_file(path, force=args.force, dry_run=args.dry_run))

    _report_outcome(path, outcome, args.dry_run)
    if not args.dry_run and not outcome.skipped_file:
        print(paint(f"Stored {outcome.facts} extracted fact(s)", "green"))
    return 0


def cmd_extract_all(args: argparse.Namespace) -> int:
    """Batch-extract every matching file under a directory."""
    since = parse_date(args.since) if args.since else None
    files = list_files(Path(args.directory), args.pattern, since)
    if not files:
        print(paint("No files matched", "yellow"))
        return 0

    def on_file(path: Path, outcome: FileOutcome | MimirError) -> None:
        if isinstance(outcome, MimirError):
            print(paint(f"{path}: {outcome.message}", "red"))
        else:
            _report_outcome(path, outcome, args.dry_run)

    with _open_store(args) as store:
        manager = _build_manager(args, store)
        batch = asyncio.run(
            manager.extract_batch(files, force=args.force, dry_run=args.dry_run, on_file=on_file)
        )

    header = "Batch dry-run complete" if args.dry_run else "Batch extract complete"
    print(
        paint(
            f"{header}: files={batch.files} processed={batch.processed}"
            f" skipped_unchanged={batch.skipped_files} facts={batch.facts}"
            f" inserted={batch.inserted} updated={batch.updated}"
            f" skipped={batch.skipped} summaries={batch.summaries}",
            "green",
        )
    )
    return 0


# ---------------------------------------------------------------------- #
# Parser
# ---------------------------------------------------------------------- #


def _add_extract_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--dry-run", action="store_true", help="Print extracted facts without writing")
    parser.add_argument("--engine", help=f"Extraction engine: {', '.join(ENGINES)}")
    parser.add_argument("--model", help="Model name (default depends on engine)")
    parser.add_argument(
        "--force", action="store_true", help="Re-extract even if already processed"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="mimir",
        description="Persistent fact-based memory for assistants",
    )
    parser.add_argument("--db", help="Path to the SQLite database")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    # add command
    add_parser = subparsers.add_parser("add", help="Add or update a fact")
    add_parser.add_argument("category")
    add_parser.add_argument("key")
    add_parser.add_argument("value")
    add_parser.add_argument("--source", help="Fact source")
    add_parser.add_argument("--confidence", default="1.0", help="Confidence score (0-1)")
    add_parser.add_argument("--scope", default="global", help=" | ".join(SCOPES))
    add_parser.add_argument("--tier", default="long-term", help=" | ".join(TIERS))
    add_parser.add_argument("--ttl", help="Auto-expire duration (e.g. 24h, 7d, 30m)")
    add_parser.add_argument("--source-type", default="manual", help=" | ".join(SOURCE_TYPES))
    add_parser.add_argument(
        "--project", help="Sets scope=project and tags the source with the project"
    )

    # get command
    get_parser = subparsers.add_parser("get", help="Get facts by category or key")
    get_parser.add_argument("category")
    get_parser.add_argument("key", nargs="?")

    # search command
    search_parser = subparsers.add_parser("search", help="Full-text search")
    search_parser.add_argument("query")

    # list command
    list_parser = subparsers.add_parser("list", help="List facts with optional filters")
    list_parser.add_argument("--category", help="Filter by category")
    list_parser.add_argument("--scope", help="Filter by scope")
    list_parser.add_argument("--tier", help="Filter by tier")
    list_parser.add_argument("--limit", help="Maximum number of rows")
    list_parser.add_argument(
        "--recent", action="store_true", help="Sort by most recently updated"
    )

    # remove command
    remove_parser = subparsers.add_parser("remove", help="Delete a specific fact")
    remove_parser.add_argument("category")
    remove_parser.add_argument("key")

    # link command
    link_parser = subparsers.add_parser("link", help="Link two facts with a relation")
    link_parser.add_argument("source", help="category/key")
    link_parser.add_argument("target", help="category/key")
    link_parser.add_argument("--type", default="related_to", help=" | ".join(RELATION_TYPES))

    # graph command
    graph_parser = subparsers.add_parser("graph", help="Show a fact and connected facts")
    graph_parser.add_argument("fact", help="category/key")

    subparsers.add_parser("working", help="List working memory and TTL status")
    subparsers.add_parser("expire", help="Delete facts whose TTL has passed")

    # inject command
    inject_parser = subparsers.add_parser("inject", help="Generate markdown for prompts")
    inject_parser.add_argument("--max", help="Maximum facts")
    inject_parser.add_argument("--scope", help="Filter by scope")
    inject_parser.add_argument(
        "--project", help="Global facts plus project facts tagged for this project"
    )
    inject_parser.add_argument(
        "--include-working", action="store_true", help="Include working memory"
    )
    inject_parser.add_argument("--output", help="Write markdown to a file")

    # extract commands
    extract_parser = subparsers.add_parser("extract", help="Extract facts from a file")
    extract_parser.add_argument("file")
    _add_extract_options(extract_parser)

    extract_all_parser = subparsers.add_parser(
        "extract-all", help="Batch extract facts from a directory"
    )
    extract_all_parser.add_argument("directory")
    extract_all_parser.add_argument("--pattern", default="*.md", help="File pattern")
    extract_all_parser.add_argument(
        "--since", help="Only files modified after this ISO date"
    )
    _add_extract_options(extract_all_parser)

    # import / export
    import_parser = subparsers.add_parser("import", help="Import facts from a JSON file")
    import_parser.add_argument("file")

    export_parser = subparsers.add_parser("export", help="Export all facts")
    export_parser.add_argument("--format", default="json", help="json or md")

    subparsers.add_parser("stats", help="Show memory stats")

    # prune command
    prune_parser = subparsers.add_parser("prune", help="Remove old or low-confidence facts")
    prune_parser.add_argument("--before", help="Delete facts updated before this ISO date")
    prune_parser.add_argument(
        "--confidence-below", help="Delete facts with confidence below n"
    )

    return parser


COMMANDS = {
    "add": cmd_add,
    "get": cmd_get,
    "search": cmd_search,
    "list": cmd_list,
    "remove": cmd_remove,
    "link": cmd_link,
    "graph": cmd_graph,
    "working": cmd_working,
    "expire": cmd_expire,
    "inject": cmd_inject,
    "extract": cmd_extract,
    "extract-all": cmd_extract_all,
    "import": cmd_import,
    "export": cmd_export,
    "stats": cmd_stats,
    "prune": cmd_prune,
}


def _resolve_config(args: argparse.Namespace) -> MemoryConfig:
    """Load config and apply the global --db override."""
    config = load_config()
    if args.db:
        derived_logs = config.log_dir == config.db_path.parent / "logs"
        config = replace(
            config,
            db_path=Path(args.db),
            log_dir=None if derived_logs else config.log_dir,
        )
    return config


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, 1 for invalid input or failures,
        2 when nothing matched).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.verbose:
        logging.getLogger("mimir").setLevel(logging.DEBUG)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        args.config = _resolve_config(args)
    except (TypeError, ValueError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1
    events: JSONLLogger = configure_logger(args.config.log_dir)
    args.events = events

    start = time.monotonic()
    error = None
    try:
        code = handler(args)
    except MimirError as e:
        print(paint(f"Error: {e.message}", "red", sys.stderr), file=sys.stderr)
        code = e.exit_code
        error = e.message

    duration_ms = (time.monotonic() - start) * 1000
    events.log_command(
        args.command,
        list(argv if argv is not None else sys.argv[1:]),
        code,
        duration_ms,
        error=error,
    )
    return code


if __name__ == "__main__":
    sys.exit(run_cli())
