import argparse

import uvicorn

from finance_copilot.db.database import create_db_engine, create_session_factory, init_db
from finance_copilot.db.rules import RuleStore
from finance_copilot.db.transactions import TransactionRepository
from finance_copilot.logger import get_logger, get_logging_config, setup_logging

logger = get_logger(__name__)


def serve(args: argparse.Namespace) -> int:
    uvicorn.run(
        "finance_copilot.app:app",
        host=args.host,
        port=args.port,
        log_config=get_logging_config(),
    )
    return 0


def init_database(args: argparse.Namespace) -> int:
    engine = create_db_engine()
    init_db(engine)
    if args.seed:
        with create_session_factory(engine)() as session:
            RuleStore(session).seed_defaults()
    engine.dispose()
    return 0


def seed_rules(args: argparse.Namespace) -> int:
    engine = create_db_engine()
    init_db(engine)
    with create_session_factory(engine)() as session:
        inserted = RuleStore(session).seed_defaults()
    print(f"Seeded {inserted} category rules.")
    engine.dispose()
    return 0


def backfill(args: argparse.Namespace) -> int:
    """Index existing transactions and the default query examples for one or all users."""
    from finance_copilot.app import build_services

    services = build_services()
    if services.rag is None:
        logger.error("[INDEX] OPENAI_API_KEY is not set; embeddings cannot be generated.")
        services.engine.dispose()
        return 1

    with services.session_factory() as session:
        repo = TransactionRepository(session)
        user_ids = [args.user_id] if args.user_id else repo.user_ids()
        counts = {user_id: repo.count(user_id) for user_id in user_ids}

    if not user_ids:
        print("No users found with transactions.")
        services.engine.dispose()
        return 0

    total_indexed = 0
    total_examples = 0
    for user_id in user_ids:
        if args.dry_run:
            print(f"[dry run] {user_id}: would index {counts[user_id]} transactions and add default examples")
            continue
        result = services.rag.bootstrap_user(user_id)
        total_indexed += result.transactions_indexed
        total_examples += result.examples_added
        print(f"{user_id}: indexed {result.transactions_indexed}/{counts[user_id]} transactions, "
              f"{result.examples_added} examples")

    if not args.dry_run:
        print(f"Backfill complete: {total_indexed} transactions and {total_examples} examples "
              f"for {len(user_ids)} user(s).")
    services.engine.dispose()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="finance-copilot", description="Personal finance assistant service")
    commands = parser.add_subparsers(dest="command", required=True)

    serve_parser = commands.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(handler=serve)

    init_parser = commands.add_parser("init-db", help="Create the database tables")
    init_parser.add_argument("--seed", action="store_true", help="Also insert the default category rules")
    init_parser.set_defaults(handler=init_database)

    seed_parser = commands.add_parser("seed-rules", help="Insert the default category rules")
    seed_parser.set_defaults(handler=seed_rules)

    backfill_parser = commands.add_parser("backfill", help="Generate embeddings for existing transactions")
    backfill_parser.add_argument("--user-id", help="Process only this user (default: all users)")
    backfill_parser.add_argument("--dry-run", action="store_true", help="Show what would be indexed")
    backfill_parser.set_defaults(handler=backfill)
    return parser


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
