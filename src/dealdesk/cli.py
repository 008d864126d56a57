from __future__ import annotations

import argparse
import getpass
import logging

import yaml

from .config import ConfigError, bootstrap_runtime_config, load_runtime_config
from .db import get_db_url, get_state_db_path, is_postgres_url
from .errors import DealDeskError
from .services.seed_service import load_seed_file, seed_content
from .services.tweets_service import import_tweets, parse_csv
from .services.users_service import create_user, get_user_by_email, set_admin
from .storage import get_schema_version, init_db
from .utils import configure_logging, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("dealdesk.cli")


def _cmd_init_db(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db()
    try:
        bootstrap_runtime_config(conn)
        version = get_schema_version(conn)
    finally:
        conn.close()
    log_event(
        logger,
        logging.INFO,
        "db_migrated",
        target="postgres" if is_postgres_url(get_db_url()) else get_state_db_path(),
        schema_version=version,
    )
    return 0


def _cmd_create_user(args: argparse.Namespace, logger: logging.Logger) -> int:
    password = args.password or getpass.getpass("Password: ")
    conn = init_db()
    try:
        existing = get_user_by_email(conn, args.email)
        if existing:
            if args.admin and not existing["isAdmin"]:
                set_admin(conn, existing["id"], True)
                log_event(logger, logging.INFO, "user_promoted", user_id=existing["id"])
                return 0
            log_event(logger, logging.ERROR, "create_user_error", error="user already exists")
            return 1
        user = create_user(conn, args.email, password, name=args.name, is_admin=args.admin)
    except DealDeskError as exc:
        log_event(logger, logging.ERROR, "create_user_error", error=exc.message)
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "user_created", user_id=user["id"], admin=user["isAdmin"])
    return 0


def _cmd_seed(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db()
    try:
        bootstrap_runtime_config(conn)
        config = load_runtime_config(conn)
        data = load_seed_file(args.path)
        created = seed_content(conn, data, config)
    except (ConfigError, DealDeskError, OSError, yaml.YAMLError) as exc:
        log_event(logger, logging.ERROR, "seed_error", path=args.path, error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "seeded", path=args.path, **created)
    return 0


def _cmd_import_tweets(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        with open(args.path, "r", encoding="utf-8-sig") as handle:
            text = handle.read()
    except OSError as exc:
        log_event(logger, logging.ERROR, "import_tweets_error", path=args.path, error=str(exc))
        return 1
    tweets, errors, warnings = parse_csv(text)
    for warning in warnings:
        log_event(logger, logging.WARNING, "import_tweets_warning", detail=warning)
    if not tweets:
        log_event(logger, logging.ERROR, "import_tweets_error", error="; ".join(errors))
        return 1
    conn = init_db()
    try:
        result = import_tweets(conn, tweets)
    finally:
        conn.close()
    log_event(
        logger,
        logging.INFO,
        "tweets_imported",
        path=args.path,
        count=result["count"],
        skipped=result["skipped"],
    )
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    log_event(logger, logging.INFO, "serve_start", host=args.host, port=args.port)
    uvicorn.run("dealdesk.admin:app", host=args.host, port=args.port, proxy_headers=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dealdesk", description="DealDesk CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Apply migrations and default config")
    init_parser.set_defaults(func=_cmd_init_db)

    user_parser = subparsers.add_parser("create-user", help="Create a user account")
    user_parser.add_argument("email", help="Login email")
    user_parser.add_argument("--password", default=None, help="Password (prompted if omitted)")
    user_parser.add_argument("--name", default=None, help="Display name")
    user_parser.add_argument(
        "--admin", action="store_true", help="Grant admin rights (promotes an existing user)"
    )
    user_parser.set_defaults(func=_cmd_create_user)

    seed_parser = subparsers.add_parser(
        "seed", help="Create banks, categories and card configs from YAML"
    )
    seed_parser.add_argument("path", help="Path to seed YAML file")
    seed_parser.set_defaults(func=_cmd_seed)

    import_parser = subparsers.add_parser("import-tweets", help="Import raw tweets from CSV")
    import_parser.add_argument("path", help="Path to CSV export")
    import_parser.set_defaults(func=_cmd_import_tweets)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
