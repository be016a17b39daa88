from __future__ import annotations

import logging
import os

logger = logging.getLogger("lemon.config")

BLOB_BACKENDS = ("http", "s3")


def validate_config() -> list[str]:
    """Log configuration problems at startup and return them."""
    problems: list[str] = []

    backend = (os.environ.get("LEMON_BLOB_BACKEND") or "http").strip().lower()
    if backend not in BLOB_BACKENDS:
        problems.append(f"LEMON_BLOB_BACKEND must be one of {', '.join(BLOB_BACKENDS)}")
    elif backend == "http" and not os.environ.get("LEMON_BLOB_READ_WRITE_TOKEN"):
        problems.append("LEMON_BLOB_READ_WRITE_TOKEN is not set; uploads will fail with 500")
    elif backend == "s3" and not os.environ.get("LEMON_S3_BUCKET"):
        problems.append("LEMON_S3_BUCKET is not set; uploads will fail with 500")

    env = (os.environ.get("LEMON_ENV") or "production").strip().lower()
    origin = (os.environ.get("LEMON_APP_ORIGIN") or "").strip()
    if env == "production" and not origin:
        problems.append(
            "LEMON_APP_ORIGIN is not set; generated URLs will trust X-Forwarded-* headers"
        )
    if origin and not origin.startswith(("http://", "https://")):
        problems.append("LEMON_APP_ORIGIN must start with http:// or https://")

    for problem in problems:
        logger.warning(problem)
    return problems
