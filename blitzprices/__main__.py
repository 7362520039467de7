"""
Command-line entry point.

    python -m blitzprices run [--source=homedepot] [--test] [--dry-run] [--debug]
    python -m blitzprices migrate <json_file> [--dry-run]
    python -m blitzprices serve [--host 0.0.0.0] [--port 8000]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from blitzprices.config.sources import SOURCES


def _configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="blitzprices", description="BlitzPrices community price pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Crawl retail listings into community_prices")
    run_p.add_argument("--source", default="homedepot", choices=sorted(s.value for s in SOURCES))
    run_p.add_argument("--test", action="store_true", help="First category, one page")
    run_p.add_argument("--dry-run", action="store_true", help="Scrape only, skip all DB writes")
    run_p.add_argument("--debug", action="store_true", help="Save a screenshot and HTML per page")

    mig_p = sub.add_parser("migrate", help="Import a catalog JSON dump into products")
    mig_p.add_argument("json_file")
    mig_p.add_argument("--dry-run", action="store_true", help="Validate and count without writing")

    serve_p = sub.add_parser("serve", help="Run the HTTP RPC surface")
    serve_p.add_argument("--host", default="0.0.0.0")
    serve_p.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(debug=getattr(args, "debug", False))

    if args.command == "run":
        from blitzprices.main import run

        asyncio.run(run(args.source, test=args.test, dry_run=args.dry_run, debug=args.debug))
    elif args.command == "migrate":
        from blitzprices.migrate import run_migration

        run_migration(args.json_file, dry_run=args.dry_run)
    elif args.command == "serve":
        import uvicorn

        uvicorn.run("blitzprices.api:app", host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
