from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

from formulary.app import create_app
from formulary.app.config import load_config

ROOT = Path(__file__).resolve().parent
DEFAULT_CONFIG = ROOT / "config.json"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the formula configuration service or the editor workbench"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG if DEFAULT_CONFIG.exists() else None,
        help=(
            "Optional JSON/YAML/TOML config file (defaults to config.json when present, "
            "otherwise environment variables and built-in defaults)"
        ),
    )
    parser.add_argument("--host", default=None, help="Host interface to bind (default from config)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default from config)")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable Flask debug mode (includes auto-reload)",
    )
    parser.add_argument("--log-level", default=None, help="Logging level, e.g. DEBUG or INFO")
    parser.add_argument(
        "--workbench",
        action="store_true",
        help="Serve the stateless FastAPI editor workbench instead of the Flask API",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    config_path = str(args.config) if args.config else os.getenv("FORMULARY_CONFIG")
    config = load_config(config_path)
    configure_logging(args.log_level or config["LOG_LEVEL"])

    host = args.host or config["SERVER_HOST"]
    port = args.port or int(config["SERVER_PORT"])

    if args.workbench:
        import uvicorn

        uvicorn.run("formulary.server:app", host=host, port=port)
        return

    app = create_app(config_path)
    app.run(host=host, port=port, debug=args.debug or bool(config["DEBUG"]))


if __name__ == "__main__":
    main()
