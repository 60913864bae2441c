# User value: This file lets operators turn on stricter pipeline checks without a code change.
import os


# User value: supports _flag so rollout switches read the same way everywhere.
def _flag(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "1" if default else "0")).strip().lower()
    return raw in {"1", "true", "yes", "on"}


FEATURE_STRICT_STAGE_ORDER = _flag("FEATURE_STRICT_STAGE_ORDER", False)
FEATURE_CLEANUP_ENDPOINT = _flag("FEATURE_CLEANUP_ENDPOINT", True)

BOOL_FLAG_NAMES = (
    "FEATURE_STRICT_STAGE_ORDER",
    "FEATURE_CLEANUP_ENDPOINT",
)


# User value: rejects out-of-order stage reports when operators want upstream completeness enforced.
def is_strict_stage_order_enabled() -> bool:
    return FEATURE_STRICT_STAGE_ORDER


# User value: lets deployments hide bulk cleanup from the HTTP surface.
def is_cleanup_endpoint_enabled() -> bool:
    return FEATURE_CLEANUP_ENDPOINT
