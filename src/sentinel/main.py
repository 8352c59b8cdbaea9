"""Command line entry point.

Run with: python -m sentinel serve | python -m sentinel scrape --regulators MAS
"""

import argparse
import asyncio
import json
import sys

import uvicorn
from dotenv import load_dotenv

from .config import get_settings
from .dependencies import build_services
from .events import BufferSubscriber, EventChannel, RunLogSink
from .logger import setup_logging
from .regulatory.orchestrator import new_regulatory_run_id
from .schemas import RegulatoryRequest, RegulatoryStateSlice


async def run_scrape(regulators, cursor=None) -> dict:
    """One standalone regulatory pass with the configured clients."""
    settings = get_settings()
    services = build_services(settings)
    request = RegulatoryRequest(regulators=regulators, cursor=cursor)
    buffer = BufferSubscriber()
    channel = EventChannel(new_regulatory_run_id(), [buffer, RunLogSink(services.store)])
    try:
        final = await services.orchestrator().run_standalone(
            request.initial_state(), channel, regulator_codes=request.regulators
        )
    finally:
        await services.aclose()
    return {
        "regulators": request.regulators,
        "state": RegulatoryStateSlice.from_state(final).model_dump(),
        "events": len(buffer.events),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sentinel",
        description="Sentinel AML pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m sentinel serve                        # Run API on HOST:PORT from settings
  python -m sentinel serve --port 8080 --reload   # Development server
  python -m sentinel scrape --regulators MAS HKMA # One regulatory pass, JSON to stdout
        """,
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error", "critical"],
        default=None,
        help="Logging level (default: LOG_LEVEL setting)",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    serve = subcommands.add_parser("serve", help="Run the FastAPI server")
    serve.add_argument("--host", type=str, default=None, help="Host to bind to (default: HOST setting)")
    serve.add_argument("--port", type=int, default=None, help="Port to bind to (default: PORT setting)")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload on code changes")

    scrape = subcommands.add_parser("scrape", help="Run one regulatory pass and print the state as JSON")
    scrape.add_argument("--regulators", nargs="*", default=None, help="Regulator codes (default: all)")
    scrape.add_argument("--cursor", type=str, default=None, help="Lookback start date (YYYY-MM-DD)")
    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    settings = get_settings()
    log_level = (args.log_level or settings.LOG_LEVEL).upper()
    setup_logging(log_level=log_level, log_file=settings.LOG_FILE)

    if args.command == "serve":
        host = args.host or settings.HOST
        port = args.port or settings.PORT
        print("\nStarting Sentinel API server")
        print(f"Listening on: http://{host}:{port}")
        print(f"API Documentation: http://{host}:{port}/docs")
        print()
        try:
            uvicorn.run(
                "sentinel.api:create_app",
                factory=True,
                host=host,
                port=port,
                log_level=log_level.lower(),
                reload=args.reload,
            )
        except KeyboardInterrupt:
            print("\nServer stopped by user")
        return 0

    try:
        result = asyncio.run(run_scrape(args.regulators, args.cursor))
    except Exception as e:
        print(f"Scrape failed: {e}", file=sys.stderr)
        return 1
    json.dump(result, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
