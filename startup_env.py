import logging
import os
from typing import List

from services.feature_flags import BOOL_FLAG_NAMES

logger = logging.getLogger("api.startup")

_BOOL_VALUES = {"1", "0", "true", "false", "yes", "no", "on", "off"}

_POSITIVE_INT_KEYS = (
    "DEFAULT_MAX_RETRIES",
    "QUERY_MAX_LIMIT",
    "STORE_UPDATE_MAX_ATTEMPTS",
    "METRICS_DEFAULT_WINDOW_HOURS",
    "BOTTLENECK_WINDOW_HOURS",
    "BOTTLENECK_QUEUE_SIZE",
    "JOB_RETENTION_DAYS",
)


def _is_blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def _validate_redis_url(value: str | None, key: str, errors: List[str]) -> None:
    if _is_blank(value):
        errors.append(f"{key} is required")
        return
    if not (value.startswith("redis://") or value.startswith("rediss://")):
        errors.append(f"{key} must start with redis:// or rediss://")


def _validate_backend(value: str | None, errors: List[str]) -> str:
    backend = str(value or "memory").strip().lower()
    if backend not in {"memory", "redis"}:
        errors.append(f"STATUS_STORE_BACKEND must be one of memory, redis (got {backend})")
    return backend


def _validate_positive_int(name: str, errors: List[str]) -> None:
    raw = os.getenv(name)
    if _is_blank(raw):
        return
    try:
        value = int(str(raw).strip())
    except ValueError:
        errors.append(f"{name} must be an integer")
        return
    if value < 1:
        errors.append(f"{name} must be >= 1")


def _validate_positive_number(name: str, errors: List[str]) -> None:
    raw = os.getenv(name)
    if _is_blank(raw):
        return
    try:
        value = float(str(raw).strip())
    except ValueError:
        errors.append(f"{name} must be a number")
        return
    if value <= 0:
        errors.append(f"{name} must be > 0")


def _validate_bool_flag_env(name: str, errors: List[str]) -> None:
    raw = os.getenv(name)
    if _is_blank(raw):
        return
    if str(raw).strip().lower() not in _BOOL_VALUES:
        errors.append(f"{name} must be one of {', '.join(sorted(_BOOL_VALUES))}")


def _validate_cors_allow_origins(value: str | None, errors: List[str]) -> None:
    if _is_blank(value):
        return

    origins = [x.strip() for x in str(value).split(",") if x.strip()]
    for origin in origins:
        if origin == "*":
            errors.append("CORS_ALLOW_ORIGINS must not contain '*' in strict allowlist mode")
            continue
        if not (origin.startswith("http://") or origin.startswith("https://")):
            errors.append(f"CORS origin must start with http:// or https://: {origin}")


def validate_startup_env() -> None:
    errors: List[str] = []
    warnings: List[str] = []

    backend = _validate_backend(os.getenv("STATUS_STORE_BACKEND"), errors)
    if backend == "redis":
        _validate_redis_url(os.getenv("REDIS_URL"), "REDIS_URL", errors)
    else:
        warnings.append("STATUS_STORE_BACKEND=memory; job status is lost on restart and not shared between workers")

    for key in _POSITIVE_INT_KEYS:
        _validate_positive_int(key, errors)
    _validate_positive_number("BOTTLENECK_AVG_TIME_MS", errors)

    for flag in BOOL_FLAG_NAMES:
        _validate_bool_flag_env(flag, errors)

    _validate_cors_allow_origins(os.getenv("CORS_ALLOW_ORIGINS"), errors)

    if errors:
        for err in errors:
            logger.error("startup_env_invalid %s", err)
        raise RuntimeError("Startup env validation failed: " + "; ".join(errors))

    for warning in warnings:
        logger.warning("startup_env_warning %s", warning)

    logger.info("startup_env_validated backend=%s", backend)
