from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Sequence

from ..access import AccessDenied
from ..ai.gateway import AIGatewayClient, GatewayError
from ..catalog import DirectoryDatabase, load_seed
from ..content.articles import ArticleGenerationError, ArticleService
from ..content.translate import ArticleTranslator, TranslationError
from ..domain.calculator import reconstitute
from ..domain.constants import ROLE_ADMIN
from ..logging import get_logger
from ..pricing.scraper import FirecrawlClient
from ..pricing.sync import PriceSyncError, PriceSyncService

LOG = get_logger("cli-main")

COMMAND_ERRORS = (AccessDenied, GatewayError, PriceSyncError, ArticleGenerationError, TranslationError)


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _db(ns: argparse.Namespace) -> DirectoryDatabase:
    return DirectoryDatabase(root_dir=ns.root, db_path=ns.db)


def _handle_init(ns: argparse.Namespace) -> int:
    db = _db(ns)
    LOG.info("Directory DB ready at: %s", db.db_path)
    print(db.db_path)
    return 0


def _handle_seed(ns: argparse.Namespace) -> int:
    counts = load_seed(_db(ns), ns.file)
    _print(counts)
    return 0


def _handle_serve(ns: argparse.Namespace) -> int:
    from ..web import create_app
    import uvicorn

    allow_origins = ns.allow_origins
    if allow_origins and "*" in allow_origins:
        allow_origins = ["*"]

    app = create_app(root_dir=ns.root, allow_origins=allow_origins, db=_db(ns))
    uvicorn.run(
        app,
        host=ns.host,
        port=ns.port,
        reload=ns.reload,
        log_level=ns.log_level,
    )
    return 0


def _handle_sync_prices(ns: argparse.Namespace) -> int:
    service = PriceSyncService(_db(ns), AIGatewayClient.from_env(ns.root), FirecrawlClient.from_env(ns.root))
    result = service.sync_all() if ns.all else service.sync(ns.vendor_id)
    _print(result)
    return 0


def _handle_translate(ns: argparse.Namespace) -> int:
    translator = ArticleTranslator(_db(ns), AIGatewayClient.from_env(ns.root))
    result = translator.translate_article(ns.article_id, ns.lang, ns.all)
    _print(result)
    return 0 if result["success"] else 1


def _handle_meta_titles(ns: argparse.Namespace) -> int:
    result = ArticleService(_db(ns), AIGatewayClient.from_env(ns.root)).generate_meta_titles()
    _print(result)
    return 0


def _handle_auto_article(ns: argparse.Namespace) -> int:
    result = ArticleService(_db(ns), AIGatewayClient.from_env(ns.root)).auto_generate(force=ns.force)
    _print(result)
    return 0


def _handle_calc(ns: argparse.Namespace) -> int:
    try:
        result = reconstitute(ns.mg, ns.ml, ns.dose_mcg)
    except ValueError as exc:
        LOG.error("%s", exc)
        return 2
    _print(result.as_dict())
    return 0


def _handle_grant_admin(ns: argparse.Namespace) -> int:
    db = _db(ns)
    db.grant_role(ns.user_id, ROLE_ADMIN)
    token = db.issue_token(ns.user_id)
    LOG.info("Granted admin to %s", ns.user_id)
    print(token)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="peptide-directory",
        description="Peptide vendor directory: catalog store, API server and content jobs.",
    )
    parser.add_argument("--root", default=os.getcwd(), help="Project root (holds .env and var/)")
    parser.add_argument("--db", default=None, help="SQLite path (overrides DIRECTORY_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Create/ensure the directory DB schema exists")
    init.set_defaults(handler=_handle_init)

    seed = subparsers.add_parser("seed", help="Load products, vendors, listings and articles from JSON")
    seed.add_argument("--file", default=None, help="Seed JSON (defaults to the bundled seed)")
    seed.set_defaults(handler=_handle_seed)

    serve = subparsers.add_parser("serve", help="Run the JSON API and function endpoints")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8001)
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (development only)")
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_handle_serve)

    sync = subparsers.add_parser("sync-prices", help="Scrape vendor sites and refresh listings")
    target = sync.add_mutually_exclusive_group()
    target.add_argument("--vendor-id", type=int, default=None)
    target.add_argument("--all", action="store_true")
    sync.set_defaults(handler=_handle_sync_prices)

    translate = subparsers.add_parser("translate", help="Translate an article")
    translate.add_argument("--article-id", type=int, required=True)
    lang = translate.add_mutually_exclusive_group(required=True)
    lang.add_argument("--lang", default=None, help="Target language code")
    lang.add_argument("--all", action="store_true", help="All supported languages")
    translate.set_defaults(handler=_handle_translate)

    meta = subparsers.add_parser("meta-titles", help="Fill missing meta titles")
    meta.set_defaults(handler=_handle_meta_titles)

    auto = subparsers.add_parser("auto-article", help="Run the article schedule once")
    auto.add_argument("--force", action="store_true", help="Generate even when not due")
    auto.set_defaults(handler=_handle_auto_article)

    calc = subparsers.add_parser("calc", help="Reconstitution calculator")
    calc.add_argument("--mg", type=float, required=True, help="Peptide amount in mg")
    calc.add_argument("--ml", type=float, required=True, help="Bacteriostatic water in ml")
    calc.add_argument("--dose-mcg", type=float, default=None)
    calc.set_defaults(handler=_handle_calc)

    grant = subparsers.add_parser("grant-admin", help="Grant the admin role and print a bearer token")
    grant.add_argument("--user-id", required=True)
    grant.set_defaults(handler=_handle_grant_admin)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.info("CLI invoked with arguments: %s", provided)
    args = build_parser().parse_args(provided)
    try:
        code = args.handler(args)
    except COMMAND_ERRORS as exc:
        LOG.error("%s failed: %s", args.command, exc)
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        code = 1
    LOG.info("Subcommand '%s' finished with exit code %s.", args.command, code)
    return code


if __name__ == "__main__":
    sys.exit(main())
