# User value: This file gives operators one consistent error vocabulary for pipeline status problems.
from typing import Any, Optional


class TrackerError(Exception):
    error_code = "TRACKER_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        http_status: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        if http_status:
            self.http_status = http_status
        self.details = details or {}

    def to_detail(self) -> dict[str, Any]:
        detail = {"error_code": self.error_code, "error_message": self.message}
        if self.details:
            detail["details"] = self.details
        return detail


class JobNotFound(TrackerError):
    error_code = "JOB_NOT_FOUND"
    http_status = 404

    def __init__(self, document_id: str) -> None:
        super().__init__(
            f"Processing job not found for document {document_id}",
            details={"document_id": document_id},
        )
        self.document_id = document_id


class JobAlreadyExists(TrackerError):
    error_code = "JOB_ALREADY_EXISTS"
    http_status = 409

    def __init__(self, document_id: str) -> None:
        super().__init__(
            f"Processing job already exists for document {document_id}",
            details={"document_id": document_id},
        )
        self.document_id = document_id


class InvalidRequest(TrackerError):
    error_code = "INVALID_REQUEST"
    http_status = 400


class InvalidQuery(InvalidRequest):
    error_code = "INVALID_QUERY"


class StatusTransitionBlocked(TrackerError):
    error_code = "STATE_CONFLICT"
    http_status = 409


class StageOrderViolation(StatusTransitionBlocked):
    error_code = "STAGE_ORDER_VIOLATION"


class RetryLimitExceeded(TrackerError):
    error_code = "RETRY_LIMIT_EXCEEDED"
    http_status = 409

    def __init__(self, document_id: str, stage: str, retry_count: int, max_retries: int) -> None:
        super().__init__(
            f"Maximum retry attempts ({max_retries}) exceeded for stage {stage}",
            details={
                "document_id": document_id,
                "stage": stage,
                "retry_count": retry_count,
                "max_retries": max_retries,
            },
        )
        self.document_id = document_id
        self.stage = stage
        self.retry_count = retry_count
        self.max_retries = max_retries


class StoreUnavailable(TrackerError):
    error_code = "INFRA_STORE"
    http_status = 503


class StoreConflict(TrackerError):
    error_code = "STORE_CONTENTION"
    http_status = 503
