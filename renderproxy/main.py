"""
Main entry point for renderproxy.
"""

import argparse
import asyncio

from renderproxy.utils.config import Settings, get_settings
from renderproxy.utils.logging import configure_logging, get_logger


def build_settings(args: argparse.Namespace) -> Settings:
    """Apply command-line overrides on top of the loaded settings."""
    settings = get_settings().model_copy(deep=True)

    if args.host:
        settings.server.host = args.host
    if args.port:
        settings.server.port = args.port
    if args.log_level:
        settings.general.log_level = args.log_level
    if args.profile:
        settings.browser.profile = args.profile
    if args.public_origin:
        settings.server.public_origin = args.public_origin

    return settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="renderproxy - render pages in a headless browser and serve them "
        "with every reference looped back through the proxy"
    )
    parser.add_argument("--host", type=str, help="Bind address")
    parser.add_argument("--port", "-p", type=int, help="Listen port")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level",
    )
    parser.add_argument(
        "--profile",
        choices=["development", "production"],
        help="Browser deployment profile",
    )
    parser.add_argument(
        "--public-origin",
        type=str,
        help="Origin used in rewritten URLs (e.g. https://proxy.example.com)",
    )
    parser.add_argument(
        "--console-logs",
        action="store_true",
        help="Human-readable console logs instead of JSON",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)
    settings = build_settings(args)

    configure_logging(
        log_level=settings.general.log_level,
        json_format=False if args.console_logs else settings.general.json_logs,
    )

    from renderproxy.proxy.server import main as serve

    logger = get_logger(__name__)
    logger.info(
        "renderproxy starting",
        version=settings.general.version,
        log_level=settings.general.log_level,
    )

    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
