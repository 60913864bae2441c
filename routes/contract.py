# User value: This file publishes the status vocabulary so executors and dashboards stay in sync.
from fastapi import APIRouter

from schemas.job_contract import (
    CANONICAL_FIELDS,
    CONTRACT_VERSION,
    JOB_STATUSES,
    PIPELINE_STAGES,
    PRIORITIES,
    PROCESSING_MODES,
    STAGE_RECORD_FIELDS,
    STAGE_STATUSES,
    TERMINAL_STATUSES,
)
from services.feature_flags import is_cleanup_endpoint_enabled, is_strict_stage_order_enabled

router = APIRouter()


@router.get("/contract/job-status")
# User value: keeps job/status fields consistent across executors and status views.
def job_status_contract():
    return {
        "contract_version": CONTRACT_VERSION,
        "stages": list(PIPELINE_STAGES),
        "job_statuses": list(JOB_STATUSES),
        "stage_statuses": list(STAGE_STATUSES),
        "terminal_statuses": list(TERMINAL_STATUSES),
        "canonical_fields": list(CANONICAL_FIELDS),
        "stage_record_fields": list(STAGE_RECORD_FIELDS),
        "processing_modes": list(PROCESSING_MODES),
        "priorities": list(PRIORITIES),
        "capabilities": {
            "strict_stage_order_enabled": is_strict_stage_order_enabled(),
            "cleanup_endpoint_enabled": is_cleanup_endpoint_enabled(),
        },
    }
