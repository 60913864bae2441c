# User value: This file estimates per-stage processing time so users know roughly how long a document will take.
from schemas.job_contract import (
    PIPELINE_STAGES,
    STAGE_CHUNKING,
    STAGE_EMBEDDING,
    STAGE_PARSING,
    STAGE_STORAGE,
    STAGE_UPLOAD,
)

BYTES_PER_MB = 1024 * 1024

BASE_STAGE_TIMES_MS = {
    STAGE_UPLOAD: 2000.0,
    STAGE_PARSING: 5000.0,
    STAGE_CHUNKING: 3000.0,
    STAGE_EMBEDDING: 8000.0,
    STAGE_STORAGE: 1500.0,
}

# Stages whose cost grows with document size.
SIZE_SCALED_STAGES = (STAGE_PARSING, STAGE_EMBEDDING)

MODE_MULTIPLIERS = {
    "fast": 0.5,
    "standard": 1.0,
    "detailed": 2.0,
}

WHOLE_DOCUMENT_BASE_MS = 10000.0


def _size_multiplier(file_size_bytes: int | None) -> float:
    size_mb = max(0.0, float(file_size_bytes or 0) / BYTES_PER_MB)
    return max(1.0, size_mb)


# User value: PDFs and Word files take longer to parse, so estimates reflect the real format cost.
def content_complexity_multiplier(content_type: str | None) -> float:
    ct = str(content_type or "").strip().lower()
    if ct == "application/pdf":
        return 1.5
    if "word" in ct:
        return 1.2
    return 1.0


def mode_multiplier(processing_mode: str | None) -> float:
    return MODE_MULTIPLIERS.get(str(processing_mode or "standard").strip().lower(), 1.0)


# User value: returns one estimate per stage so the status view can show remaining time.
def estimate_stage_durations_ms(
    *,
    file_size_bytes: int | None,
    content_type: str | None = None,
    processing_mode: str | None = "standard",
) -> dict[str, float]:
    size_mult = _size_multiplier(file_size_bytes)
    mode_mult = mode_multiplier(processing_mode)
    complexity = content_complexity_multiplier(content_type)

    estimates: dict[str, float] = {}
    for stage in PIPELINE_STAGES:
        value = BASE_STAGE_TIMES_MS[stage] * mode_mult
        if stage in SIZE_SCALED_STAGES:
            value *= size_mult
        if stage == STAGE_PARSING:
            value *= complexity
        estimates[stage] = round(value, 1)
    return estimates


# User value: gives a single whole-document estimate for intake screens and planning.
def estimate_processing_time_ms(
    file_size_bytes: int | None,
    content_type: str | None,
    processing_mode: str | None = "standard",
) -> int:
    value = (
        WHOLE_DOCUMENT_BASE_MS
        * _size_multiplier(file_size_bytes)
        * content_complexity_multiplier(content_type)
        * mode_multiplier(processing_mode)
    )
    return int(round(value))
