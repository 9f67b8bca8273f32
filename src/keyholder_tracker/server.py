"""
Keyholder Tracker server startup.

Brings the database schema up to date with alembic and serves the API
with uvicorn.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn
from alembic import command
from alembic.config import Config
from alembic.util import CommandError
from sqlalchemy.exc import SQLAlchemyError

from .config import get_config
from .utils.logging_config import get_logger, initialize_logging

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def alembic_config(database_url: Optional[str] = None) -> Config:
    """Alembic configuration pointing at the project's migration scripts."""
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    # Keep the component loggers configured by initialize_logging()
    config.attributes["configure_logger"] = False
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)
        config.attributes["url_explicit"] = True
    return config


def run_migrations(database_url: Optional[str] = None) -> bool:
    """Upgrade the database to the latest revision."""
    logger = get_logger("database")
    database_url = database_url or get_config().database.url
    logger.info("Running database migrations")
    try:
        command.upgrade(alembic_config(database_url), "head")
    except (CommandError, SQLAlchemyError) as e:
        logger.error(f"Migration failed: {e}")
        return False
    logger.info("Database migrations completed successfully")
    return True


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    config = get_config()
    parser = argparse.ArgumentParser(description="Run the Keyholder Tracker API server")
    parser.add_argument("--host", default=config.server.host)
    parser.add_argument("--port", type=int, default=config.server.port)
    parser.add_argument("--reload", action="store_true", default=config.server.auto_reload)
    parser.add_argument(
        "--skip-migrations", action="store_true", help="Start without upgrading the schema"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    initialize_logging()
    logger = get_logger("main")

    if not args.skip_migrations and not run_migrations():
        logger.error("Cannot start server without database migrations")
        return 1

    logger.info(f"Starting server on http://{args.host}:{args.port} (docs at /docs)")
    uvicorn.run(
        "keyholder_tracker.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
