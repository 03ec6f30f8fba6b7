"""
Entry point: serve the API or run one of the periodic sweeps.

Usage::

    python run.py serve [--host 0.0.0.0] [--port 8000]
    python run.py sweep publishing
    python run.py sweep sessions

Sweeps are meant to be run from cron; each run is idempotent.
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run")


async def run_sweep(name: str) -> dict:
    from blogflow.config import get_settings
    from blogflow.database import get_db
    from blogflow.logging import LogLevel, get_logger, init_logger
    from blogflow.services import build_services

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)
    db = await get_db()
    init_logger(
        log_dir=settings.log_dir,
        db=db,
        min_level=LogLevel.from_name(settings.db_log_min_level),
    )
    services = build_services(db, settings)

    try:
        if name == "publishing":
            recovered = await services.scheduler.recover_stuck_items()
            report = await services.scheduler.process_scheduled_posts()
            return {"recovered": recovered, **report.to_dict()}
        removed = await services.sessions.cleanup_expired()
        return {"removed": removed}
    finally:
        await get_logger().flush()


def serve(host: str, port: int) -> None:
    import uvicorn

    from blogflow.config import validate_env

    validate_env(strict=True)
    uvicorn.run("blogflow.api.app:create_app", factory=True, host=host, port=port)


def main() -> None:
    parser = argparse.ArgumentParser(description="blogflow service")
    commands = parser.add_subparsers(dest="command", required=True)

    serve_cmd = commands.add_parser("serve", help="Run the HTTP API")
    serve_cmd.add_argument("--host", default="0.0.0.0")
    serve_cmd.add_argument("--port", type=int, default=8000)

    sweep_cmd = commands.add_parser("sweep", help="Run a periodic sweep once")
    sweep_cmd.add_argument("name", choices=["publishing", "sessions"])

    args = parser.parse_args()

    if args.command == "serve":
        serve(args.host, args.port)
        return

    try:
        result = asyncio.run(run_sweep(args.name))
    except Exception:
        logger.exception("Sweep '%s' failed", args.name)
        sys.exit(1)
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
