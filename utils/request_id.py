import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator, Mapping

REQUEST_ID_HEADER = "X-Request-ID"
# Executors that already carry a trace id may send it under this name instead.
CORRELATION_ID_HEADER = "X-Correlation-ID"

_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")


def new_request_id(prefix: str = "req") -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def normalize_request_id(raw: str | None) -> str:
    value = (raw or "").strip()
    if value and _REQUEST_ID_RE.match(value):
        return value
    return new_request_id()


def request_id_from_headers(headers: Mapping[str, str]) -> str:
    return normalize_request_id(headers.get(REQUEST_ID_HEADER) or headers.get(CORRELATION_ID_HEADER))


def set_request_id(value: str | None) -> Token:
    return _REQUEST_ID_CTX.set(value)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


@contextmanager
def bound_request_id(value: str) -> Iterator[str]:
    token = _REQUEST_ID_CTX.set(value)
    try:
        yield value
    finally:
        _REQUEST_ID_CTX.reset(token)
