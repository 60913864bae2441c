# User value: This file keeps pipeline stage and status names consistent across executors, dashboards and tooling.
CONTRACT_VERSION = "2026-10-18-pipeline-status-v1"

STAGE_UPLOAD = "upload"
STAGE_PARSING = "parsing"
STAGE_CHUNKING = "chunking"
STAGE_EMBEDDING = "embedding"
STAGE_STORAGE = "storage"

PIPELINE_STAGES = (
    STAGE_UPLOAD,
    STAGE_PARSING,
    STAGE_CHUNKING,
    STAGE_EMBEDDING,
    STAGE_STORAGE,
)

JOB_STATUS_PENDING = "pending"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"
JOB_STATUS_CANCELLED = "cancelled"

JOB_STATUSES = (
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_CANCELLED,
)

TERMINAL_STATUSES = (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_CANCELLED,
)

STAGE_STATUS_PENDING = "pending"
STAGE_STATUS_PROCESSING = "processing"
STAGE_STATUS_COMPLETED = "completed"
STAGE_STATUS_FAILED = "failed"
STAGE_STATUS_SKIPPED = "skipped"

STAGE_STATUSES = (
    STAGE_STATUS_PENDING,
    STAGE_STATUS_PROCESSING,
    STAGE_STATUS_COMPLETED,
    STAGE_STATUS_FAILED,
    STAGE_STATUS_SKIPPED,
)

# Stage statuses that count as "done" for advancement and progress.
STAGE_DONE_STATUSES = (
    STAGE_STATUS_COMPLETED,
    STAGE_STATUS_SKIPPED,
)

PROCESSING_MODES = ("standard", "fast", "detailed")
PRIORITIES = ("low", "normal", "high")

ERROR_CODE_PROCESSING_FAILED = "PROCESSING_FAILED"
ERROR_CODE_USER_CANCELLED = "USER_CANCELLED"

STAGE_RECORD_FIELDS = (
    "status",
    "started_at",
    "completed_at",
    "progress",
    "details",
    "error",
    "retry_count",
    "estimated_duration_ms",
)

CANONICAL_FIELDS = (
    "document_id",
    "user_id",
    "current_stage",
    "overall_status",
    "stages",
    "metadata",
    "created_at",
    "updated_at",
    "completed_at",
    "error",
)


# User value: returns the stage after the given one so jobs advance in pipeline order.
def next_stage(stage: str) -> str | None:
    idx = PIPELINE_STAGES.index(stage)
    if idx + 1 < len(PIPELINE_STAGES):
        return PIPELINE_STAGES[idx + 1]
    return None


def stages_from(stage: str) -> tuple[str, ...]:
    return PIPELINE_STAGES[PIPELINE_STAGES.index(stage):]


def stages_before(stage: str) -> tuple[str, ...]:
    return PIPELINE_STAGES[: PIPELINE_STAGES.index(stage)]
