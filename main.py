"""Command line entry point for the financial analysis desktop client."""

from __future__ import annotations

import argparse
import logging
import sys

from financial_analysis.core.config import (
    AVAILABLE_API_HOSTS,
    RUN_MODES,
    ClientConfig,
    build_config,
    load_environment,
)
from financial_analysis.providers.base import Granularity


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Browse listed companies, their trading history and price predictions.",
    )
    parser.add_argument(
        "--host",
        choices=list(AVAILABLE_API_HOSTS),
        help="API host to connect to (default: FINANCIAL_ANALYSIS_API_HOST or the first known host).",
    )
    parser.add_argument("--port", type=int, help="API port (default: FINANCIAL_ANALYSIS_API_PORT or 51411).")
    parser.add_argument(
        "--granularity",
        choices=[g.value for g in Granularity],
        help="Bar period used when a stock window opens.",
    )
    parser.add_argument(
        "--run-mode",
        choices=list(RUN_MODES),
        help="Repaint on events and a timer (reactive) or every frame (continuous).",
    )
    parser.add_argument("--timeout", type=float, help="Request timeout in seconds.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ...).",
    )
    return parser.parse_args(argv)


def run_tkinter_app(config: ClientConfig) -> None:  # pragma: no cover - UI entry
    from financial_analysis.ui import run_app

    run_app(config)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    load_environment()

    try:
        config = build_config(
            api_host=args.host,
            api_port=args.port,
            request_timeout=args.timeout,
            default_granularity=args.granularity,
            run_mode=args.run_mode,
        )
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2

    logging.info("Starting client against %s (%s mode)", config.base_url, config.run_mode)
    try:
        run_tkinter_app(config)
    except KeyboardInterrupt:
        logging.info("Interrupted by user.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
