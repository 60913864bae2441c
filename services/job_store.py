# User value: This file stores one status record per document so polling, dashboards and workers agree on progress.
import json
import logging
import os
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Protocol

from redis.exceptions import RedisError, WatchError

from errors import InvalidQuery, InvalidRequest, JobAlreadyExists, JobNotFound, StoreConflict, StoreUnavailable
from schemas.job_contract import JOB_STATUSES, PIPELINE_STAGES
from schemas.jobs import ProcessingJob
from services.redis_client import build_redis_client

logger = logging.getLogger("api.store")

DEFAULT_QUERY_MAX_LIMIT = 100
SCAN_BATCH_SIZE = 200

MutateFn = Callable[[ProcessingJob], ProcessingJob]


@dataclass
class JobFilters:
    user_id: Optional[str] = None
    overall_status: Optional[str] = None
    current_stage: Optional[str] = None

    def matches(self, user_id: Optional[str], overall_status: Optional[str], current_stage: Optional[str]) -> bool:
        if self.user_id and user_id != self.user_id:
            return False
        if self.overall_status and overall_status != self.overall_status:
            return False
        if self.current_stage and current_stage != self.current_stage:
            return False
        return True


@dataclass
class JobPage:
    jobs: List[ProcessingJob] = field(default_factory=list)
    total: int = 0
    has_more: bool = False
    page: int = 1
    limit: int = 20


def _clean(value: Optional[str], *, lower: bool = True) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.lower() if lower else text


# User value: rejects malformed filters before any store read so bad dashboard calls fail fast and clearly.
def validate_query(
    filters: Optional[JobFilters],
    page: int,
    limit: int,
    *,
    max_limit: int = DEFAULT_QUERY_MAX_LIMIT,
) -> tuple[JobFilters, int]:
    filters = filters or JobFilters()
    normalized = JobFilters(
        user_id=_clean(filters.user_id, lower=False),
        overall_status=_clean(filters.overall_status),
        current_stage=_clean(filters.current_stage),
    )
    if normalized.overall_status and normalized.overall_status not in JOB_STATUSES:
        raise InvalidQuery(
            f"Unknown status filter: {normalized.overall_status}",
            details={"status": normalized.overall_status, "allowed": list(JOB_STATUSES)},
        )
    if normalized.current_stage and normalized.current_stage not in PIPELINE_STAGES:
        raise InvalidQuery(
            f"Unknown stage filter: {normalized.current_stage}",
            details={"stage": normalized.current_stage, "allowed": list(PIPELINE_STAGES)},
        )
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise InvalidQuery("page must be an integer >= 1", details={"page": page})
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1 or limit > max_limit:
        raise InvalidQuery(f"limit must be an integer between 1 and {max_limit}", details={"limit": limit})
    return normalized, (page - 1) * limit


def _sort_newest_first(jobs: List[ProcessingJob]) -> List[ProcessingJob]:
    return sorted(jobs, key=lambda j: (j.created_at.timestamp(), j.document_id), reverse=True)


class JobStore(Protocol):
    def create(self, job: ProcessingJob) -> ProcessingJob: ...

    def get(self, document_id: str) -> ProcessingJob: ...

    def update(self, document_id: str, mutate: MutateFn) -> ProcessingJob: ...

    def query(self, filters: Optional[JobFilters], page: int, limit: int) -> JobPage: ...

    def scan(
        self,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> List[ProcessingJob]: ...

    def delete_created_before(self, cutoff: datetime) -> int: ...

    def ping(self) -> bool: ...


class InMemoryJobStore:
    """Process-local store; one lock per document so unrelated updates never wait on each other."""

    backend_name = "memory"

    def __init__(self, *, max_limit: int = DEFAULT_QUERY_MAX_LIMIT) -> None:
        self._max_limit = max_limit
        # Guards the dict structure only; never held while a mutate function runs.
        self._guard = threading.Lock()
        self._jobs: dict[str, ProcessingJob] = {}
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, document_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(document_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[document_id] = lock
            return lock

    @contextmanager
    def _document_lock(self, document_id: str) -> Iterator[None]:
        while True:
            lock = self._lock_for(document_id)
            lock.acquire()
            with self._guard:
                live = self._locks.get(document_id) is lock
            if live:
                break
            # Retired by cleanup while we waited; queue on the current lock instead.
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def create(self, job: ProcessingJob) -> ProcessingJob:
        with self._document_lock(job.document_id):
            with self._guard:
                if job.document_id in self._jobs:
                    raise JobAlreadyExists(job.document_id)
                self._jobs[job.document_id] = job.model_copy(deep=True)
        return job.model_copy(deep=True)

    def get(self, document_id: str) -> ProcessingJob:
        with self._guard:
            job = self._jobs.get(document_id)
        if job is None:
            raise JobNotFound(document_id)
        return job.model_copy(deep=True)

    def update(self, document_id: str, mutate: MutateFn) -> ProcessingJob:
        with self._document_lock(document_id):
            with self._guard:
                current = self._jobs.get(document_id)
            if current is None:
                raise JobNotFound(document_id)
            updated = mutate(current.model_copy(deep=True))
            if updated.document_id != document_id:
                raise InvalidRequest("document_id is immutable", details={"document_id": document_id})
            with self._guard:
                if document_id not in self._jobs:
                    raise JobNotFound(document_id)
                self._jobs[document_id] = updated.model_copy(deep=True)
            return updated

    def _snapshot(self) -> List[ProcessingJob]:
        with self._guard:
            return list(self._jobs.values())

    def query(self, filters: Optional[JobFilters], page: int, limit: int) -> JobPage:
        filters, offset = validate_query(filters, page, limit, max_limit=self._max_limit)
        matched = [
            job
            for job in _sort_newest_first(self._snapshot())
            if filters.matches(job.user_id, job.overall_status, job.current_stage)
        ]
        total = len(matched)
        return JobPage(
            jobs=[job.model_copy(deep=True) for job in matched[offset : offset + limit]],
            total=total,
            has_more=offset + limit < total,
            page=page,
            limit=limit,
        )

    def scan(
        self,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> List[ProcessingJob]:
        out = []
        for job in self._snapshot():
            if created_from is not None and job.created_at < created_from:
                continue
            if created_to is not None and job.created_at > created_to:
                continue
            out.append(job.model_copy(deep=True))
        out.sort(key=lambda j: (j.created_at.timestamp(), j.document_id))
        return out

    def delete_created_before(self, cutoff: datetime) -> int:
        candidates = [job.document_id for job in self._snapshot() if job.created_at < cutoff]
        removed = 0
        for document_id in candidates:
            with self._document_lock(document_id):
                with self._guard:
                    job = self._jobs.get(document_id)
                    if job is None or job.created_at >= cutoff:
                        continue
                    del self._jobs[document_id]
                    # Waiters on the dropped lock move to a fresh one; see _document_lock.
                    self._locks.pop(document_id, None)
                    removed += 1
        return removed

    def ping(self) -> bool:
        return True

    def reset(self) -> None:
        with self._guard:
            self._jobs.clear()
            self._locks.clear()


# User value: flattens a job into a Redis hash so status fields stay readable with plain redis-cli.
def job_to_hash(job: ProcessingJob) -> dict[str, str]:
    data = job.model_dump(mode="json")
    return {
        "document_id": data["document_id"],
        "user_id": data["user_id"],
        "current_stage": data["current_stage"],
        "overall_status": data["overall_status"],
        "created_at": data["created_at"],
        "updated_at": data["updated_at"],
        "completed_at": data["completed_at"] or "",
        "stages": json.dumps(data["stages"], ensure_ascii=False, separators=(",", ":")),
        "metadata": json.dumps(data["metadata"], ensure_ascii=False, separators=(",", ":")),
        "error": json.dumps(data["error"], ensure_ascii=False, separators=(",", ":")) if data["error"] else "",
    }


def job_from_hash(raw: Mapping[str, str]) -> ProcessingJob:
    payload = {
        "document_id": raw.get("document_id"),
        "user_id": raw.get("user_id"),
        "current_stage": raw.get("current_stage"),
        "overall_status": raw.get("overall_status"),
        "created_at": raw.get("created_at"),
        "updated_at": raw.get("updated_at"),
        "completed_at": raw.get("completed_at") or None,
        "stages": json.loads(raw.get("stages") or "{}"),
        "metadata": json.loads(raw.get("metadata") or "{}"),
        "error": json.loads(raw["error"]) if raw.get("error") else None,
    }
    return ProcessingJob.model_validate(payload)


class RedisJobStore:
    """Redis hashes per document plus a created-at sorted set for scans, paging and cleanup."""

    backend_name = "redis"

    def __init__(
        self,
        client,
        *,
        namespace: str = "pipeline",
        max_update_attempts: int = 20,
        max_limit: int = DEFAULT_QUERY_MAX_LIMIT,
    ) -> None:
        self._client = client
        self._namespace = namespace.strip() or "pipeline"
        self._max_update_attempts = max(1, int(max_update_attempts))
        self._max_limit = max_limit

    def job_key(self, document_id: str) -> str:
        return f"{self._namespace}:job:{document_id}"

    def index_key(self) -> str:
        return f"{self._namespace}:jobs:by_created"

    @contextmanager
    def _redis_errors(self, operation: str, document_id: str = "") -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            logger.error(
                "status_store_unavailable operation=%s document_id=%s error=%s: %s",
                operation,
                document_id,
                exc.__class__.__name__,
                exc,
            )
            raise StoreUnavailable(
                "Status store temporarily unavailable",
                details={"operation": operation},
            ) from exc

    def create(self, job: ProcessingJob) -> ProcessingJob:
        key = self.job_key(job.document_id)
        with self._redis_errors("create", job.document_id):
            try:
                with self._client.pipeline() as pipe:
                    pipe.watch(key)
                    if pipe.exists(key):
                        raise JobAlreadyExists(job.document_id)
                    pipe.multi()
                    pipe.hset(key, mapping=job_to_hash(job))
                    pipe.zadd(self.index_key(), {job.document_id: job.created_at.timestamp()})
                    pipe.execute()
            except WatchError:
                # Another writer created the same key between WATCH and EXEC.
                raise JobAlreadyExists(job.document_id)
        return job

    def get(self, document_id: str) -> ProcessingJob:
        with self._redis_errors("get", document_id):
            raw = self._client.hgetall(self.job_key(document_id))
        if not raw:
            raise JobNotFound(document_id)
        return job_from_hash(raw)

    def update(self, document_id: str, mutate: MutateFn) -> ProcessingJob:
        key = self.job_key(document_id)
        with self._redis_errors("update", document_id):
            for attempt in range(1, self._max_update_attempts + 1):
                try:
                    with self._client.pipeline() as pipe:
                        pipe.watch(key)
                        raw = pipe.hgetall(key)
                        if not raw:
                            raise JobNotFound(document_id)
                        updated = mutate(job_from_hash(raw))
                        if updated.document_id != document_id:
                            raise InvalidRequest("document_id is immutable", details={"document_id": document_id})
                        pipe.multi()
                        pipe.hset(key, mapping=job_to_hash(updated))
                        pipe.execute()
                        return updated
                except WatchError:
                    logger.info(
                        "status_store_update_contention document_id=%s attempt=%s max_attempts=%s",
                        document_id,
                        attempt,
                        self._max_update_attempts,
                    )
                    continue

        logger.warning(
            "status_store_update_gave_up document_id=%s attempts=%s",
            document_id,
            self._max_update_attempts,
        )
        raise StoreConflict(
            f"Too many concurrent updates for document {document_id}",
            details={"document_id": document_id, "attempts": self._max_update_attempts},
        )

    def _fetch_many(self, document_ids: List[str]) -> List[ProcessingJob]:
        jobs: List[ProcessingJob] = []
        for start in range(0, len(document_ids), SCAN_BATCH_SIZE):
            batch = document_ids[start : start + SCAN_BATCH_SIZE]
            pipe = self._client.pipeline(transaction=False)
            for document_id in batch:
                pipe.hgetall(self.job_key(document_id))
            for raw in pipe.execute():
                if raw:
                    jobs.append(job_from_hash(raw))
        return jobs

    def query(self, filters: Optional[JobFilters], page: int, limit: int) -> JobPage:
        filters, offset = validate_query(filters, page, limit, max_limit=self._max_limit)
        with self._redis_errors("query"):
            document_ids = self._client.zrevrange(self.index_key(), 0, -1)

            meta_pipe = self._client.pipeline(transaction=False)
            for document_id in document_ids:
                meta_pipe.hmget(self.job_key(document_id), "user_id", "overall_status", "current_stage")
            meta_rows = meta_pipe.execute() if document_ids else []

            matched: List[str] = []
            for idx, row in enumerate(meta_rows):
                if not row or row[0] is None:
                    continue
                if filters.matches(row[0], row[1], row[2]):
                    matched.append(document_ids[idx])

            total = len(matched)
            jobs = self._fetch_many(matched[offset : offset + limit])

        return JobPage(jobs=jobs, total=total, has_more=offset + limit < total, page=page, limit=limit)

    def scan(
        self,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> List[ProcessingJob]:
        low = created_from.timestamp() if created_from is not None else "-inf"
        high = created_to.timestamp() if created_to is not None else "+inf"
        with self._redis_errors("scan"):
            document_ids = self._client.zrangebyscore(self.index_key(), low, high)
            return self._fetch_many(list(document_ids))

    def delete_created_before(self, cutoff: datetime) -> int:
        with self._redis_errors("cleanup"):
            document_ids = list(self._client.zrangebyscore(self.index_key(), "-inf", f"({cutoff.timestamp()}"))
            removed = 0
            for start in range(0, len(document_ids), SCAN_BATCH_SIZE):
                batch = document_ids[start : start + SCAN_BATCH_SIZE]
                pipe = self._client.pipeline(transaction=True)
                for document_id in batch:
                    pipe.delete(self.job_key(document_id))
                pipe.zrem(self.index_key(), *batch)
                results = pipe.execute()
                removed += sum(int(r or 0) for r in results[:-1])
            return removed

    def ping(self) -> bool:
        with self._redis_errors("ping"):
            return bool(self._client.ping())


def create_store_from_env(environ: Mapping[str, str] | None = None) -> InMemoryJobStore | RedisJobStore:
    env = os.environ if environ is None else environ
    backend = env.get("STATUS_STORE_BACKEND", "memory").strip().lower()
    max_limit = int(env.get("QUERY_MAX_LIMIT", str(DEFAULT_QUERY_MAX_LIMIT)))
    if backend == "memory":
        return InMemoryJobStore(max_limit=max_limit)
    if backend == "redis":
        redis_url = env.get("REDIS_URL", "").strip()
        if not redis_url:
            raise ValueError("REDIS_URL must be set when STATUS_STORE_BACKEND=redis")
        return RedisJobStore(
            build_redis_client(redis_url),
            namespace=env.get("STATUS_KEY_PREFIX", "pipeline"),
            max_update_attempts=int(env.get("STORE_UPDATE_MAX_ATTEMPTS", "20")),
            max_limit=max_limit,
        )
    raise RuntimeError(f"unsupported status store backend: {backend}")
