"""Command that serves the registry API from S3-compatible storage."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence

from .config import load
from .s3 import MissingConfigError, storage_from_config
from .server import create_app

logger = logging.getLogger("stratus")


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        payload.update(getattr(record, "fields", None) or {})
        return json.dumps(payload, default=str)


def _configure_logging() -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JSONFormatter())
    logger.handlers = [handler]
    logger.setLevel(logging.INFO)
    logger.propagate = False


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Start the registry server; returns the process exit status."""
    parser = argparse.ArgumentParser(
        prog="stratus",
        description="Serve an OCI registry from S3-compatible storage. "
        "Settings are read from environment variables.",
    )
    parser.parse_args(argv)

    _configure_logging()
    cfg = load()

    try:
        storage = storage_from_config(cfg)
    except (MissingConfigError, ValueError) as exc:
        logger.error("failed to create storage client", extra={"fields": {"error": str(exc)}})
        return 1

    app = create_app(storage, cfg.bucket_name)
    try:
        app.run(host="0.0.0.0", port=int(cfg.port))
    except (OSError, ValueError) as exc:
        logger.error("server error", extra={"fields": {"error": str(exc)}})
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())