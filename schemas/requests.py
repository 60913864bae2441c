# User value: This file validates inbound tracker requests so bad input is rejected before any status changes.
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from schemas.jobs import ProcessingMetadata, Stage, StageErrorReport


class CreateJobRequest(BaseModel):
    # User value: registers a freshly uploaded document before any stage executor runs.
    document_id: str = Field(..., min_length=1, max_length=256)
    user_id: str = Field(..., min_length=1, max_length=256)
    metadata: ProcessingMetadata


class StageUpdateRequest(BaseModel):
    # User value: lets stage executors report progress, completion or failure in one call.
    status: Literal["pending", "processing", "completed", "failed", "skipped"]
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    details: Optional[str] = Field(default=None, max_length=2000)
    error: Optional[StageErrorReport] = None


class RetryRequest(BaseModel):
    # User value: operators choose where to resume; defaults to the stage the job stopped at.
    from_stage: Optional[Stage] = None
    max_retries: Optional[int] = Field(default=None, ge=0)


class CancelRequest(BaseModel):
    reason: str = Field(default="Processing cancelled by user", max_length=500)


class CleanupRequest(BaseModel):
    # User value: when omitted the configured retention window decides what is old.
    before_date: Optional[datetime] = None
