"""CLI command handlers for Educator Match.

Each public ``handle_*`` function corresponds to a CLI subcommand and
encapsulates the wiring, orchestration, and output for that command.
Heavy imports happen inside the handlers so ``--help`` stays fast.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from educator_match.errors import ActionableError
from educator_match.logging import configure_file_logging, logger
from educator_match.logging import handler as stderr_handler
from educator_match.matching.keyword import SearchFilters
from educator_match.models import EntityKind

if TYPE_CHECKING:
    from educator_match.config import Settings
    from educator_match.matching.ranker import RankedResult
    from educator_match.models import Record
    from educator_match.pipeline.service import MatchService

_RULE = "=" * 60


def _filters_from_args(args: argparse.Namespace) -> SearchFilters:
    return SearchFilters(
        location=getattr(args, "location", None),
        salary_min=getattr(args, "salary_min", None),
        salary_max=getattr(args, "salary_max", None),
        certifications=tuple(getattr(args, "cert", None) or ()),
    )


def _load(args: argparse.Namespace) -> Settings:
    from educator_match.config import load_settings

    return load_settings(args.settings)


def _print_results(title: str, results: list[RankedResult]) -> None:
    print(f"\n{_RULE}")
    print(f" {title} ({len(results)} results)")
    print(f"{_RULE}")
    for ranked in results:
        if ranked.match is not None:
            headline = f"[{ranked.match.overall}]"
        else:
            headline = f"[{ranked.score:.4f}]"
        print(f"{ranked.rank + 1}. {headline} {ranked.label or ranked.candidate_id}")
        print(f"   id: {ranked.candidate_id} | source: {ranked.source}")
        print(f"   {ranked.score_explanation()}")
        print()


def _require_indexed(service: MatchService, kind: EntityKind, entity_id: str) -> Record:
    entry = service.store.get_entry(kind, entity_id)
    if entry is None:
        print(f"Error: No {kind.value} found with ID '{entity_id}'")
        print("The record must be indexed first — run 'index'.")
        sys.exit(1)
    return entry.record


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_index(args: argparse.Namespace) -> None:
    """Embed job and/or teacher JSON files into ChromaDB."""
    from educator_match.pipeline.service import MatchService
    from educator_match.rag.indexer import Indexer

    if not args.jobs and not args.teachers:
        print("Nothing to index: pass --jobs and/or --teachers")
        sys.exit(1)

    settings = _load(args)
    service = MatchService.from_settings(settings)
    indexer = Indexer(
        store=service.store,
        embedder=service.embedder,
        cache=service.cache,
        batch_size=settings.embedding.batch_size,
        batch_delay=settings.embedding.batch_delay_seconds,
        timeout=settings.ollama.timeout_seconds,
    )

    async def _run() -> None:
        try:
            await service.embedder.health_check()
            if args.jobs:
                n_jobs = await indexer.index_file(args.jobs, EntityKind.JOB, reset=args.reset)
                print(f"Indexed {n_jobs} jobs")
            if args.teachers:
                n_teachers = await indexer.index_file(
                    args.teachers, EntityKind.TEACHER, reset=args.reset
                )
                print(f"Indexed {n_teachers} teachers")
        finally:
            await service.close()

    asyncio.run(_run())


def handle_match(args: argparse.Namespace) -> None:
    """Rank jobs for a teacher, or teachers for a job."""
    from educator_match.pipeline.service import MatchService

    service = MatchService.from_settings(_load(args))
    kind = EntityKind.TEACHER if args.teacher else EntityKind.JOB
    entity_id = args.teacher or args.job
    query = _require_indexed(service, kind, entity_id)

    async def _run() -> None:
        try:
            results = await service.rank_candidates(
                query,
                filters=_filters_from_args(args),
                top_n=args.top,
                min_similarity=args.min_similarity,
            )
        finally:
            await service.close()
        _print_results(f"Matches for {kind.value} '{entity_id}'", results)
        stats = service.cache.stats
        logger.debug("Cache stats: %s", stats.to_dict())

    asyncio.run(_run())


def handle_search(args: argparse.Namespace) -> None:
    """Keyword job search, fused with a teacher's vector matches when given."""
    from educator_match.models import TeacherProfile
    from educator_match.pipeline.service import MatchService

    service = MatchService.from_settings(_load(args))
    teacher = None
    if args.teacher:
        record = _require_indexed(service, EntityKind.TEACHER, args.teacher)
        if isinstance(record, TeacherProfile):
            teacher = record

    async def _run() -> None:
        try:
            results = await service.hybrid_search(
                args.query,
                teacher=teacher,
                filters=_filters_from_args(args),
                limit=args.limit,
            )
        finally:
            await service.close()
        _print_results(f"Search '{args.query}'", results)

    asyncio.run(_run())


def handle_visa(args: argparse.Namespace) -> None:
    """Check a teacher's visa eligibility for one or all known countries."""
    import json
    from pathlib import Path

    from educator_match.matching.visa import load_visa_rules, summarize
    from educator_match.models import TeacherProfile

    settings = _load(args)
    rule_book = load_visa_rules(settings.visa_rules_path)

    path = Path(args.teacher_file)
    if not path.exists():
        print(f"Error: Teacher file not found: {path}")
        sys.exit(1)
    try:
        teacher = TeacherProfile.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except json.JSONDecodeError as exc:
        raise ActionableError.parse(
            source=str(path),
            location=f"line {exc.lineno}, column {exc.colno}",
            raw_error=exc.msg,
        ) from None

    countries = [args.country] if args.country else rule_book.countries
    print(f"\n{_RULE}")
    print(f" Visa eligibility — {teacher.full_name or teacher.id}")
    print(f"{_RULE}")
    for country in countries:
        result = rule_book.check(teacher, country)
        print(summarize(result))
        for failed in result.failed_requirements:
            print(f"   ✗ [{failed.priority.value}] {failed.message}")
        for disqualification in result.disqualifications:
            print(f"   ✗ [disqualified] {disqualification}")
        print()

    if not args.country:
        eligible = rule_book.eligible_countries(teacher)
        print(f"Eligible countries: {', '.join(eligible) or 'none'}")


def handle_invalidate(args: argparse.Namespace) -> None:
    """Drop cached match lists for one entity or for everything."""
    from educator_match.pipeline.service import MatchService

    service = MatchService.from_settings(_load(args))

    async def _run() -> None:
        try:
            if args.all:
                await service.invalidate_all_match_caches()
                print("Invalidated all match caches")
            else:
                await service.invalidate_match_cache(args.entity)
                print(f"Invalidated match caches for '{args.entity}'")
        finally:
            await service.close()

    asyncio.run(_run())


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--location", type=str, default=None, help="City or country substring")
    parser.add_argument("--salary-min", type=float, default=None, metavar="USD")
    parser.add_argument("--salary-max", type=float, default=None, metavar="USD")
    parser.add_argument(
        "--cert",
        action="append",
        default=None,
        metavar="NAME",
        help="Certification filter (repeatable)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="educator-match",
        description="Hybrid semantic + constraint matching of teachers and international jobs",
    )
    parser.add_argument(
        "--settings",
        type=str,
        default="config/settings.toml",
        help="Path to settings.toml (default: config/settings.toml)",
    )
    parser.add_argument("--log-dir", type=str, default=None, help="Also write logs to this directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable DEBUG logging")
    sub = parser.add_subparsers(dest="command", required=True)

    # -- index ---------------------------------------------------------------
    index_p = sub.add_parser("index", help="Embed job and teacher records into ChromaDB")
    index_p.add_argument("--jobs", type=str, default=None, metavar="PATH", help="JSON array of jobs")
    index_p.add_argument(
        "--teachers", type=str, default=None, metavar="PATH", help="JSON array of teachers"
    )
    index_p.add_argument(
        "--reset",
        action="store_true",
        help="Empty the affected collections before indexing",
    )

    # -- match ---------------------------------------------------------------
    match_p = sub.add_parser("match", help="Rank candidates for an indexed teacher or job")
    who = match_p.add_mutually_exclusive_group(required=True)
    who.add_argument("--teacher", type=str, default=None, metavar="ID", help="Rank jobs for a teacher")
    who.add_argument("--job", type=str, default=None, metavar="ID", help="Rank teachers for a job")
    match_p.add_argument("--top", type=int, default=None, metavar="N", help="Maximum results")
    match_p.add_argument(
        "--min-similarity",
        type=float,
        default=None,
        metavar="PCT",
        help="Drop candidates whose resume similarity is below this (0–100)",
    )
    _add_filter_args(match_p)

    # -- search --------------------------------------------------------------
    search_p = sub.add_parser("search", help="Keyword job search, optionally fused with a teacher")
    search_p.add_argument("query", type=str, help="Search text")
    search_p.add_argument(
        "--teacher", type=str, default=None, metavar="ID", help="Fuse with this teacher's matches"
    )
    search_p.add_argument("--limit", type=int, default=None, metavar="N", help="Maximum results")
    _add_filter_args(search_p)

    # -- visa ----------------------------------------------------------------
    visa_p = sub.add_parser("visa", help="Check visa eligibility for a teacher profile")
    visa_p.add_argument("--teacher-file", type=str, required=True, metavar="PATH")
    visa_p.add_argument("--country", type=str, default=None, help="Check one country (default: all)")

    # -- invalidate ----------------------------------------------------------
    inval_p = sub.add_parser("invalidate", help="Drop cached match results")
    target = inval_p.add_mutually_exclusive_group(required=True)
    target.add_argument("--entity", type=str, default=None, metavar="ID")
    target.add_argument("--all", action="store_true")

    return parser


_HANDLERS = {
    "index": handle_index,
    "match": handle_match,
    "search": handle_search,
    "visa": handle_visa,
    "invalidate": handle_invalidate,
}


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        for target in (logging.getLogger("educator_match"), logger, stderr_handler):
            target.setLevel(logging.DEBUG)
    if args.log_dir:
        configure_file_logging(args.log_dir, level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        _HANDLERS[args.command](args)
    except ActionableError as exc:
        logger.error("%s failed: %s", args.command, exc.error)
        print(f"Error: {exc.error}", file=sys.stderr)
        if exc.suggestion:
            print(f"Suggestion: {exc.suggestion}", file=sys.stderr)
        sys.exit(1)
