# User value: This file defines the job record so every caller sees the same per-document pipeline state.
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from schemas.job_contract import PIPELINE_STAGES

Stage = Literal["upload", "parsing", "chunking", "embedding", "storage"]
OverallStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]
StageStatus = Literal["pending", "processing", "completed", "failed", "skipped"]
ProcessingMode = Literal["standard", "fast", "detailed"]
Priority = Literal["low", "normal", "high"]

# Executor failures without an explicit flag are treated as transient.
DEFAULT_ERROR_RETRYABLE = True


class ProcessingError(BaseModel):
    # User value: keeps failure cause, stage and retry eligibility together for operator diagnosis.
    code: str
    message: str
    stage: Stage
    timestamp: datetime
    retryable: bool = False
    details: Optional[Dict[str, Any]] = None


class StageErrorReport(BaseModel):
    """Error as reported by a stage executor; stage and timestamp are stamped by the tracker."""

    code: str = Field(..., min_length=1)
    message: str = ""
    retryable: bool = DEFAULT_ERROR_RETRYABLE
    details: Optional[Dict[str, Any]] = None


class StageRecord(BaseModel):
    status: StageStatus = "pending"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    details: Optional[str] = None
    error: Optional[ProcessingError] = None
    retry_count: int = Field(default=0, ge=0)
    # Milliseconds, computed at job creation from file size and mode.
    estimated_duration_ms: Optional[float] = Field(default=None, ge=0)


class ProcessingMetadata(BaseModel):
    # User value: carries upload facts so duration estimates and dashboards stay meaningful.
    file_name: str = Field(..., min_length=1)
    file_size: int = Field(..., ge=0)
    content_type: str = ""
    processing_mode: ProcessingMode = "standard"
    priority: Priority = "normal"
    tags: Optional[List[str]] = None


def empty_stages() -> Dict[str, StageRecord]:
    return {stage: StageRecord() for stage in PIPELINE_STAGES}


class ProcessingJob(BaseModel):
    # User value: one record per document so status polling never needs to join several sources.
    document_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    current_stage: Stage = "upload"
    overall_status: OverallStatus = "pending"
    stages: Dict[Stage, StageRecord] = Field(default_factory=empty_stages)
    metadata: ProcessingMetadata
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[ProcessingError] = None

    @field_validator("stages", mode="before")
    @classmethod
    def _reject_unknown_stages(cls, value):
        if isinstance(value, dict):
            unknown = [k for k in value if k not in PIPELINE_STAGES]
            if unknown:
                raise ValueError(f"unknown pipeline stages: {', '.join(sorted(map(str, unknown)))}")
        return value

    @model_validator(mode="after")
    def _fill_fixed_stages(self):
        # Always exactly the five stages, in pipeline order.
        self.stages = {stage: self.stages.get(stage) or StageRecord() for stage in PIPELINE_STAGES}
        return self
