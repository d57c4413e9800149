"""Budget gateway main entry point.

Command-line options are exported as ``BUDGET_*`` variables before uvicorn
imports the app factory, so ``GatewayConfig.from_env`` sees a single source.
"""

from __future__ import annotations

import argparse
import logging
import os
import secrets
import sys

import uvicorn

from .service.logging import configure_logging

logger = logging.getLogger(__name__)

APP_FACTORY = "budget_gateway.service.app:create_app_from_env"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="budget-gateway",
        description="Institution spending workflow over a remote ledger",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("BUDGET_PORT", "4000")),
        help="Listen port (default: $BUDGET_PORT or 4000)",
    )
    parser.add_argument(
        "--data-path",
        default=None,
        help="Local snapshot file (default: $BUDGET_DATA_PATH or data/state.json)",
    )
    parser.add_argument(
        "--ledger-url",
        default=None,
        help="Remote ledger gateway URL; omit to run the in-process ledger",
    )
    parser.add_argument(
        "--override-constraints",
        action="store_true",
        help="Start even if the snapshot violates its integrity constraints",
    )
    parser.add_argument("--reload", action="store_true", help="Auto-reload for development")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Force JSON log output (default: auto-detect)",
    )
    return parser


def _export(args: argparse.Namespace) -> None:
    os.environ["BUDGET_PORT"] = str(args.port)
    if args.data_path:
        os.environ["BUDGET_DATA_PATH"] = args.data_path
    if args.ledger_url:
        os.environ["BUDGET_LEDGER_URL"] = args.ledger_url
    if args.override_constraints:
        os.environ["BUDGET_OVERRIDE_CONSTRAINTS"] = "1"
    if args.json_logs:
        os.environ["BUDGET_LOG_JSON"] = "1"

    if not os.environ.get("BUDGET_SIGNING_KEY"):
        # Tokens issued under a generated key do not survive a restart.
        os.environ["BUDGET_SIGNING_KEY"] = secrets.token_hex(32)
        logger.warning("BUDGET_SIGNING_KEY not set; using a generated signing key")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level.upper(), json_output=True if args.json_logs else None)
    _export(args)

    logger.info(
        f"Starting budget gateway on {args.host}:{args.port} "
        f"(ledger: {os.environ.get('BUDGET_LEDGER_URL') or 'in-process'})"
    )
    try:
        uvicorn.run(
            APP_FACTORY,
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=args.log_level,
            factory=True,
        )
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
