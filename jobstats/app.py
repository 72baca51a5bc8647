import argparse
import dataclasses
import json
import sys
from pathlib import Path

from . import __version__
from . import service
from .config import BACKENDS, Settings
from .logger import get_logger
from .schema import validate_posting
from .store import open_store


def _read_json(path_str: str):
    path = Path(path_str)
    if not path.exists():
        raise SystemExit(f"Input file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _emit(result: dict) -> None:
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    if not result.get("success"):
        raise SystemExit(1)


def _settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    overrides = {}
    if args.backend:
        overrides["backend"] = args.backend
    if args.data_dir:
        overrides["data_dir"] = Path(args.data_dir)
    if args.db_path:
        overrides["db_path"] = Path(args.db_path)
    return dataclasses.replace(settings, **overrides) if overrides else settings


def _store(args: argparse.Namespace):
    return open_store(_settings(args))


def cmd_ingest(args: argparse.Namespace) -> None:
    postings = _read_json(args.input)
    if isinstance(postings, dict):
        postings = [postings]
    settings = _settings(args)
    hours = 0 if args.no_scrape_cache else settings.scrape_cache_hours
    _emit(service.extract_and_save(open_store(settings), postings, scrape_cache_hours=hours))


def cmd_validate(args: argparse.Namespace) -> None:
    postings = _read_json(args.input)
    if isinstance(postings, dict):
        postings = [postings]
    invalid = 0
    for i, posting in enumerate(postings):
        errors = validate_posting(posting)
        if errors:
            invalid += 1
            print(f"Posting {i}: invalid")
            for e in errors:
                print(f" - {e}")
    if invalid:
        raise SystemExit(2)
    print(f"Valid ({len(postings)} postings)")


def cmd_rebuild(args: argparse.Namespace) -> None:
    months = [m.strip() for m in args.months.split(",") if m.strip()] if args.months else None
    _emit(service.rebuild_statistics(_store(args), months, deduplicate=not args.keep_duplicates))


def cmd_clear_index(args: argparse.Namespace) -> None:
    _emit(service.clear_index(_store(args)))


def cmd_index_status(args: argparse.Namespace) -> None:
    _emit(service.index_status(_store(args)))


def cmd_stats(args: argparse.Namespace) -> None:
    _emit(service.get_statistics(_store(args)))


def cmd_archive(args: argparse.Namespace) -> None:
    _emit(service.get_archive(_store(args), args.month))


def cmd_aggregate(args: argparse.Namespace) -> None:
    _emit(service.get_aggregate(_store(args)))


def cmd_verify(args: argparse.Namespace) -> None:
    _emit(service.verify(_store(args)))


def cmd_applied_add(args: argparse.Namespace) -> None:
    event = {
        "jobUrl": args.url,
        "title": args.title or "",
        "company": args.company or "",
        "location": args.location or "",
        "postedDate": args.posted_date or "",
        "roleType": args.role_type,
        "industry": args.industry,
    }
    _emit(service.track_application(_store(args), event))


def cmd_applied_list(args: argparse.Namespace) -> None:
    _emit(service.list_applications(_store(args), args.month))


def cmd_applied_stats(args: argparse.Namespace) -> None:
    _emit(service.applied_stats(_store(args)))


def cmd_applied_clear(args: argparse.Namespace) -> None:
    if not args.yes:
        raise SystemExit("Refusing to delete applications without --yes")
    _emit(service.clear_applications(_store(args)))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jobstats", description="Job posting storage and statistics")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--backend", choices=BACKENDS, help="Override JOBSTATS_BACKEND")
    parser.add_argument("--data-dir", help="Root directory for the local backend")
    parser.add_argument("--db-path", help="SQLite file for the sqlite backend")

    subparsers = parser.add_subparsers(dest="command")

    ing = subparsers.add_parser("ingest", help="Store postings from a JSON file (object or list)")
    ing.add_argument("--input", required=True, help="Path to postings JSON")
    ing.add_argument("--no-scrape-cache", action="store_true", help="Do not consult the 48h scrape cache")
    ing.set_defaults(func=cmd_ingest)

    val = subparsers.add_parser("validate", help="Validate postings JSON without storing")
    val.add_argument("--input", required=True, help="Path to postings JSON")
    val.set_defaults(func=cmd_validate)

    reb = subparsers.add_parser("rebuild", help="Rewrite shards and recompute statistics")
    reb.add_argument("--months", help="Comma-separated YYYY-MM list (default: all)")
    reb.add_argument("--keep-duplicates", action="store_true", help="Do not drop repeated URLs")
    reb.set_defaults(func=cmd_rebuild)

    clr = subparsers.add_parser("clear-index", help="Empty the posting URL index")
    clr.set_defaults(func=cmd_clear_index)

    ids = subparsers.add_parser("index-status", help="Show URL index size and sample")
    ids.set_defaults(func=cmd_index_status)

    sts = subparsers.add_parser("stats", help="Current month statistics and summary")
    sts.set_defaults(func=cmd_stats)

    arc = subparsers.add_parser("archive", help="Statistics for one stored month")
    arc.add_argument("--month", required=True, help="YYYY-MM")
    arc.set_defaults(func=cmd_archive)

    agg = subparsers.add_parser("aggregate", help="Statistics merged across every stored month")
    agg.set_defaults(func=cmd_aggregate)

    ver = subparsers.add_parser("verify", help="Check manifest, shards, statistics and index consistency")
    ver.set_defaults(func=cmd_verify)

    applied = subparsers.add_parser("applied", help="Applied-jobs tracking")
    applied_sub = applied.add_subparsers(dest="applied_command")

    add = applied_sub.add_parser("add", help="Record a click on a posting")
    add.add_argument("--url", required=True, help="Posting URL")
    add.add_argument("--title", help="Job title")
    add.add_argument("--company", help="Company name")
    add.add_argument("--location", help="Raw location text")
    add.add_argument("--posted-date", help="When the job was posted")
    add.add_argument("--role-type", help="Role type")
    add.add_argument("--industry", help="Industry")
    add.set_defaults(func=cmd_applied_add)

    lst = applied_sub.add_parser("list", help="List applications, newest first")
    lst.add_argument("--month", help="YYYY-MM")
    lst.set_defaults(func=cmd_applied_list)

    ast = applied_sub.add_parser("stats", help="Application counts per month")
    ast.set_defaults(func=cmd_applied_stats)

    acl = applied_sub.add_parser("clear", help="Delete all applications")
    acl.add_argument("--yes", action="store_true", help="Confirm deletion")
    acl.set_defaults(func=cmd_applied_clear)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        logger = get_logger()
        logger.set_level(_settings(args).log_level)
        try:
            args.func(args)
        finally:
            logger.log_metrics_summary()
        return

    parser.print_help(sys.stderr)


if __name__ == "__main__":
    main()
