"""
Command-line entry point.

    knowledge-service scheduler   # run the reminder poll loop until interrupted
    knowledge-service poll-once   # process due reminders once, print the report
    knowledge-service serve       # HTTP API (uvicorn)
    knowledge-service mcp         # MCP server
"""

import argparse
import asyncio
import logging
import signal
import sys

from .bootstrap import create_application
from .config import Settings

logger = logging.getLogger(__name__)


async def run_scheduler(settings: Settings) -> None:
    app = await create_application(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await app.scheduler.start()
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down reminder scheduler...")
        await app.close()


async def poll_once(settings: Settings) -> str:
    app = await create_application(settings)
    try:
        report = await app.store.process_due_reminders()
    finally:
        await app.close()
    return report.model_dump_json(indent=2)


def serve(settings: Settings) -> None:
    import uvicorn

    from .web.app import create_app

    uvicorn.run(
        create_app(settings),
        host=settings.http.host,
        port=settings.http.port,
        log_level=settings.http.log_level.lower(),
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="knowledge-service", description="Reminders and memories service")
    parser.add_argument("--log-level", help="Override KS_HTTP_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("scheduler", help="Run the reminder poll loop")
    subparsers.add_parser("poll-once", help="Process due reminders once and print the report")
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")
    subparsers.add_parser("mcp", help="Run the MCP server")
    args = parser.parse_args(argv)

    settings = Settings()
    log_level = (args.log_level or settings.http.log_level).upper()
    logging.basicConfig(level=log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if args.command == "scheduler":
        asyncio.run(run_scheduler(settings))
    elif args.command == "poll-once":
        print(asyncio.run(poll_once(settings)))
    elif args.command == "serve":
        if args.host:
            settings.http.host = args.host
        if args.port:
            settings.http.port = args.port
        serve(settings)
    elif args.command == "mcp":
        from .mcp_server import main as mcp_main

        mcp_main()
    return 0


if __name__ == "__main__":
    sys.exit(main())
