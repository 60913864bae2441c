import threading
from typing import Any

_LOCK = threading.Lock()
_COUNTERS: dict[tuple, int] = {}
_TIMINGS: dict[tuple, dict[str, float]] = {}


def _key(name: str, labels: dict[str, Any]) -> tuple:
    return (name, tuple(sorted((k, str(v)) for k, v in labels.items())))


def incr(name: str, value: int = 1, **labels: Any) -> None:
    key = _key(name, labels)
    with _LOCK:
        _COUNTERS[key] = _COUNTERS.get(key, 0) + int(value)


def observe_ms(name: str, duration_ms: float, **labels: Any) -> None:
    key = _key(name, labels)
    ms = max(0.0, float(duration_ms))
    with _LOCK:
        agg = _TIMINGS.setdefault(key, {"count": 0, "sum_ms": 0.0, "max_ms": 0.0})
        agg["count"] += 1
        agg["sum_ms"] += ms
        agg["max_ms"] = max(agg["max_ms"], ms)


def snapshot() -> dict:
    with _LOCK:
        counters = [
            {"name": name, "labels": dict(labels), "value": value}
            for (name, labels), value in sorted(_COUNTERS.items())
        ]
        timings = [
            {
                "name": name,
                "labels": dict(labels),
                "count": int(agg["count"]),
                "avg_ms": round(agg["sum_ms"] / agg["count"], 3) if agg["count"] else 0.0,
                "max_ms": round(agg["max_ms"], 3),
            }
            for (name, labels), agg in sorted(_TIMINGS.items())
        ]
    return {"counters": counters, "timings": timings}


def reset() -> None:
    with _LOCK:
        _COUNTERS.clear()
        _TIMINGS.clear()
