import json
import logging
from datetime import datetime, timezone
from typing import Any

from utils.request_id import get_request_id

logger = logging.getLogger("api.stage")


def _norm(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_norm(v) for v in value]
    return str(value)


def log_stage(
    *,
    document_id: str,
    operation: str,
    event: str,
    user: str | None = None,
    stage: str | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    payload = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "document_id": document_id,
        "operation": operation,
        "event": event.upper(),
    }

    if user:
        payload["user"] = user
    if stage:
        payload["stage"] = stage
    if status:
        payload["status"] = status
    if error:
        payload["error"] = error

    request_id = get_request_id()
    if request_id:
        payload["request_id"] = request_id

    for key, value in extra.items():
        norm = _norm(value)
        if norm is not None:
            payload[key] = norm

    msg = json.dumps(payload, ensure_ascii=False)
    if error or payload["event"] == "FAILED":
        logger.error("stage_event %s", msg)
    else:
        logger.info("stage_event %s", msg)
