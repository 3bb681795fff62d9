"""Startup-time helpers for safe config logging and schema bootstrap."""

import os
import time

from ledgerpay.common.logging import logger


def _safe_env(name: str) -> str:
    """Return env value with simple redaction for secret-like variable names."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(secret in name for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN", "DATABASE_URL"]):
        return "<redacted>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)


def ensure_schema(engine, metadata, retries: int = 20) -> None:
    """Create missing tables; retry during cold-start races with the database."""

    for attempt in range(1, retries + 1):
        try:
            metadata.create_all(engine)
            return
        except Exception as exc:
            logger.warning("schema bootstrap retry=%s/%s error=%s", attempt, retries, exc)
            if attempt == retries:
                raise
            time.sleep(1)
