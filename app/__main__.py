"""Command line entry: `python -m app --host 0.0.0.0 --port 8000 --upload ./uploads/`."""

import argparse
import sys
from pathlib import Path

import uvicorn

from .core.config import settings
from .core.logging import configure_logging, get_logger

logger = get_logger("app")


def main() -> None:
    parser = argparse.ArgumentParser(description="A microservice for images upload.")
    parser.add_argument("--host", default=settings.host, help="Host address to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen for requests")
    parser.add_argument("--upload", default=settings.upload_path, help="Upload directory")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (e.g. DEBUG)")
    args = parser.parse_args()

    configure_logging(args.log_level)

    try:
        Path(args.upload).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Can't use specified upload path! %s", e)
        sys.exit(f"Can't use specified upload path: {args.upload}")

    settings.host = args.host
    settings.port = args.port
    settings.upload_path = args.upload
    settings.log_level = args.log_level

    from .main import app

    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
