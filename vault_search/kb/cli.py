"""
`vault-search` command line.

Builds, inspects and queries the local index of a Markdown vault.

Commands
--------
vault-search index                      -- incremental re-index of the vault
vault-search index --rebuild            -- discard the index and rebuild it
vault-search index --status             -- show index statistics
vault-search search "<query>"           -- hybrid search
vault-search search "<query>" --limit 10 --type project --area work
vault-search search "<query>" --keyword -- keyword overlap only
vault-search related "<note id>"        -- notes most similar to a note

Global options: ``--vault PATH`` (default: CWD), ``--config PATH``,
``-v`` (debug logging).  Every command accepts ``--json``.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from typing import Optional

from tqdm import tqdm

from ..config import Config
from ..errors import EmptyQueryError, NotFoundError, VaultSearchError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _open(args: argparse.Namespace):
    """Build a :class:`VaultSearch` for the parsed global options."""
    from ..api import VaultSearch
    return VaultSearch(args.vault, config=args.config_obj)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _print_results(results: list[dict], title: str) -> None:
    """Pretty-print ranked result dicts."""
    if not results:
        print(f"No results for: {title}")
        return
    print(f"\n{title}  [{len(results)} result(s)]")
    print("-" * 70)
    for i, r in enumerate(results, 1):
        label = r.get("title") or r["note_id"]
        signal = r.get("matched_signal")
        suffix = f"  ({signal})" if signal else ""
        print(f"  [{i}] {r['score']:.4f}  {label}{suffix}")
        if label != r["note_id"]:
            print(f"        {r['note_id']}")


def _format_time(ts: Optional[float]) -> str:
    if ts is None:
        return "never"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts))


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_status(args: argparse.Namespace) -> None:
    """Print index statistics."""
    vs = _open(args)
    stats = vs.status()
    if args.json:
        _print_json(stats)
        return
    print("\nVault Search Index Status")
    print("=" * 40)
    print(f"  {'vault':<20} {vs.vault_root}")
    print(f"  {'database':<20} {stats['db_path']}")
    print(f"  {'notes':<20} {stats['note_count']}")
    print(f"  {'vectors':<20} {stats['vector_count']}")
    print(f"  {'distinct tokens':<20} {stats['token_count']}")
    print(f"  {'dimension':<20} {stats['dimension']}")
    print(f"  {'tokenizer':<20} {stats['tokenizer_version']}")
    print(f"  {'last indexed':<20} {_format_time(stats['last_indexed'])}")
    print(f"  {'size':<20} {stats['file_size_bytes'] / 1024:.1f} KiB")
    if stats["needs_rebuild"]:
        print("\n  Index version differs from the running build; "
              "the next `vault-search index` rebuilds it.")
    print()


def _cmd_index(args: argparse.Namespace) -> None:
    """Run one reindex pass over the vault."""
    if args.status:
        _cmd_status(args)
        return

    vs = _open(args)
    if not args.json:
        print(f"Indexing vault: {vs.vault_root}")

    pbar = tqdm(total=None, unit="note", desc="Embedding", disable=args.json)

    def _progress(current: int, total: int, note_id: str) -> None:
        if pbar.total != total:
            pbar.total = total
            pbar.refresh()
        pbar.set_postfix_str(os.path.basename(note_id), refresh=False)
        pbar.update(1)

    try:
        summary = vs.reindex(rebuild=args.rebuild, progress_callback=_progress)
    finally:
        pbar.close()

    if args.json:
        _print_json(summary)
        return

    print(
        f"\nIndex complete{' (full rebuild)' if summary['full_rebuild'] else ''}:\n"
        f"  Updated:   {summary['updated_count']}\n"
        f"  Deleted:   {summary['deleted_count']}\n"
        f"  Unchanged: {summary['skipped_count']}\n"
        f"  Failed:    {len(summary['failed_ids'])}\n"
        f"  Time:      {summary['elapsed_seconds']:.1f}s"
    )
    for note_id in summary["failed_ids"]:
        print(f"    ! {note_id}")


def _cmd_search(args: argparse.Namespace) -> None:
    """Hybrid (or keyword-only) search over the vault."""
    filters = {
        key: value
        for key, value in (("type", args.type), ("area", args.area), ("status", args.status))
        if value
    }
    vs = _open(args)
    t0 = time.perf_counter()
    results = vs.search(
        args.query,
        filters=filters or None,
        limit=args.limit,
        mode="keyword" if args.keyword else "hybrid",
    )
    elapsed_ms = (time.perf_counter() - t0) * 1000

    if args.json:
        _print_json(results)
        return
    _print_results(results, f"search {args.query!r}")
    print(f"\n  Search time: {elapsed_ms:.1f}ms")


def _cmd_related(args: argparse.Namespace) -> None:
    """List the notes most similar to NOTE_ID."""
    vs = _open(args)
    results = vs.related(args.note_id, limit=args.limit)
    if args.json:
        _print_json(results)
        return
    _print_results(results, f"related to {args.note_id!r}")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    """Build and return the `vault-search` argument parser."""
    parser = argparse.ArgumentParser(
        prog="vault-search",
        description="Local semantic search over a Markdown vault",
    )
    parser.add_argument(
        "--vault", default=".", metavar="PATH",
        help="Vault directory (default: current directory)",
    )
    parser.add_argument(
        "--config", default=None, metavar="PATH",
        help="Path to a .vault_search.yaml config file",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # --- index ---
    index_p = subparsers.add_parser("index", help="Bring the index up to date")
    index_p.add_argument(
        "--rebuild", action="store_true",
        help="Discard the existing index and re-embed every note",
    )
    index_p.add_argument(
        "--status", action="store_true",
        help="Show index statistics instead of indexing",
    )
    index_p.add_argument("--json", action="store_true", help="Print JSON output")
    index_p.set_defaults(func=_cmd_index)

    # --- search ---
    search_p = subparsers.add_parser("search", help="Search notes by free text")
    search_p.add_argument("query", help="Natural-language search query")
    search_p.add_argument(
        "--limit", type=int, default=0,
        help="Number of results to return (default: 5)",
    )
    search_p.add_argument("--type", default=None, help="Only notes of this type")
    search_p.add_argument("--area", default=None, help="Only notes in this area")
    search_p.add_argument("--status", default=None, help="Only notes with this status")
    search_p.add_argument(
        "--keyword", action="store_true",
        help="Rank by keyword overlap only",
    )
    search_p.add_argument("--json", action="store_true", help="Print JSON output")
    search_p.set_defaults(func=_cmd_search)

    # --- related ---
    related_p = subparsers.add_parser("related", help="Find notes similar to a note")
    related_p.add_argument("note_id", help="Note id (vault-relative path without .md)")
    related_p.add_argument(
        "--limit", type=int, default=0,
        help="Number of results to return (default: 10)",
    )
    related_p.add_argument("--json", action="store_true", help="Print JSON output")
    related_p.set_defaults(func=_cmd_related)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for `vault-search`.

    Parameters
    ----------
    argv:
        Argument list without the program name.  Defaults to sys.argv.

    Returns
    -------
    int
        Process exit status.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        args.config_obj = Config.load(args.config)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    # Configure logging if not already configured
    if not logging.root.handlers:
        level = logging.DEBUG if args.verbose else args.config_obj.LOG_LEVEL
        logging.basicConfig(
            level=level,
            format="%(levelname)s  %(name)s  %(message)s",
        )

    try:
        args.func(args)
    except NotFoundError as exc:
        print(f"Note not found: {exc.note_id}. Run `vault-search index` first "
              "if it was added recently.", file=sys.stderr)
        return 1
    except EmptyQueryError:
        print("Query text must not be empty.", file=sys.stderr)
        return 1
    except VaultSearchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
