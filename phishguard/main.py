"""Main entry point for the PhishGuard scanner."""

import argparse
import asyncio
import json
import logging
import signal
import sys

from .analyzer.models import ScanRequest, ScanResult
from .analyzer.validator import InvalidUrlError
from .api.server import ScanServer
from .config import Config, load_config, validate_config
from .pipeline.engine import ScanEngine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)

EXIT_INVALID_URL = 2


def _configure_logging(config: Config, quiet: bool = False) -> None:
    level = logging.WARNING if quiet else getattr(logging, config.log_level, logging.INFO)
    logging.getLogger().setLevel(level)
    # httpx logs full request URLs at INFO, including query-string API keys.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _format_result(result: ScanResult) -> str:
    lines = [
        f"{result.url}",
        f"  status:     {result.status.value} (score {result.score}, confidence {result.confidence:.2f})",
        f"  category:   {result.verdict.category}",
    ]
    if result.local_score is not None:
        lines.append(f"  scores:     local {result.local_score}, cloud {result.cloud_score}")
    if result.threat.report_count:
        lines.append(f"  reported:   {', '.join(result.threat.flagged_provider_names)}")
    if result.partial:
        lines.append("  note:       most configured providers were unavailable")
    for factor in result.factors:
        lines.append(f"  - {factor}")
    lines.append(f"  {result.recommendation}")
    return "\n".join(lines)


async def run_scan(config: Config, args: argparse.Namespace) -> int:
    """Scan the URLs given on the command line."""
    engine = ScanEngine.from_config(config)
    exit_code = 0
    try:
        for url in args.urls:
            try:
                request = ScanRequest(
                    url=url,
                    local_score=args.local_score,
                    local_factors=tuple(args.local_factor or ()),
                )
                result = await engine.scan(request)
            except InvalidUrlError as e:
                print(f"{url}: invalid URL ({e.reason})", file=sys.stderr)
                exit_code = EXIT_INVALID_URL
                continue

            if args.json:
                print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
            else:
                print(_format_result(result))
    finally:
        await engine.aclose()
    return exit_code


async def run_server(config: Config, args: argparse.Namespace) -> int:
    """Serve the scan API until interrupted."""
    engine = ScanEngine.from_config(config)
    server = ScanServer(engine, host=args.host or config.api_host, port=args.port or config.api_port)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await server.start()
        await stop_event.wait()
    finally:
        await server.stop()
        await engine.aclose()
        logger.info("Scan API stopped")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phishguard",
        description="Score URLs for phishing and malware risk.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan one or more URLs")
    scan.add_argument("urls", nargs="+", metavar="URL")
    scan.add_argument("--local-score", type=float, default=None, help="Client-computed score (0-100)")
    scan.add_argument("--local-factor", action="append", help="Client-computed factor (repeatable)")
    scan.add_argument("--json", action="store_true", help="Print the full result as JSON")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    return parser


def main(argv=None):
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "scan" and args.local_score is not None and not 0 <= args.local_score <= 100:
        parser.error("--local-score must be between 0 and 100")

    config = load_config()
    _configure_logging(config, quiet=args.command == "scan" and args.json)

    validation_errors = validate_config(config)
    if validation_errors:
        for err in validation_errors:
            logger.error(err)
        sys.exit(1)

    if args.command == "scan":
        sys.exit(asyncio.run(run_scan(config, args)))
    sys.exit(asyncio.run(run_server(config, args)))


if __name__ == "__main__":
    main()
