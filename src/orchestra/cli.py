"""Command-line entrypoint: ``orchestra serve``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from orchestra.config import load_settings


def parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="orchestra", description="Interactive assistant session manager"
    )
    parser.add_argument("command", nargs="?", default="serve", help="Subcommand: serve")
    parser.add_argument("--host", default=None, help="Server bind host")
    parser.add_argument("--port", type=int, default=None, help="Server bind port")
    parser.add_argument("--env-file", type=Path, default=Path(".env"), help="Dotenv file to load")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_cli_args(argv)
    load_dotenv(dotenv_path=args.env_file)
    if args.command != "serve":
        print(f"Unknown command: {args.command}", file=sys.stderr)
        raise SystemExit(2)

    try:
        settings = load_settings()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from orchestra.server.cli import run_server

    run_server(
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
