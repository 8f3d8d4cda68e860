"""
Job repositories.

A job document is the single mutable structure shared by every worker of a
generation job. All writes go through ``JobRepository.update(job_id,
mutator)``, which runs the mutator as one atomic read-modify-write for that
job id and recomputes the aggregate status from the assets.

Two backends:
- InMemoryJobRepository: keyed map with one lock per job id
- RedisJobRepository: WATCH/MULTI/EXEC optimistic transactions
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Optional

import redis

from ..config import get_settings
from ..exceptions import ConfigurationError, JobNotFoundError, StorageError
from ..logger import logger
from .models import GenerationJob, Storyboard

JobMutator = Callable[[GenerationJob], None]


class JobRepository(ABC):
    """Storage contract for generation jobs and their storyboards."""

    @abstractmethod
    def create(self, job: GenerationJob) -> GenerationJob:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[GenerationJob]:
        """Return an independent snapshot of the job, or None."""

    @abstractmethod
    def update(self, job_id: str, mutator: JobMutator) -> GenerationJob:
        """
        Atomically apply ``mutator`` to the stored job.

        The status is re-derived from the assets after the mutator runs.
        Raises JobNotFoundError if the job does not exist.
        """

    @abstractmethod
    def list_jobs(self, limit: int = 50) -> List[GenerationJob]:
        ...

    @abstractmethod
    def save_storyboard(self, storyboard: Storyboard) -> None:
        ...

    @abstractmethod
    def get_storyboard(self, storyboard_id: str) -> Optional[Storyboard]:
        ...


class InMemoryJobRepository(JobRepository):
    """Process-local repository; jobs are stored as JSON so reads are copies."""

    def __init__(self):
        self._jobs: Dict[str, str] = {}
        self._order: List[str] = []
        self._storyboards: Dict[str, str] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[job_id] = lock
            return lock

    def create(self, job: GenerationJob) -> GenerationJob:
        job.refresh_status()
        with self._lock_for(job.id):
            self._jobs[job.id] = job.model_dump_json(by_alias=True)
        with self._registry_lock:
            self._order.append(job.id)
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[GenerationJob]:
        with self._lock_for(job_id):
            raw = self._jobs.get(job_id)
        if raw is None:
            return None
        return GenerationJob.model_validate_json(raw)

    def update(self, job_id: str, mutator: JobMutator) -> GenerationJob:
        with self._lock_for(job_id):
            raw = self._jobs.get(job_id)
            if raw is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            job = GenerationJob.model_validate_json(raw)
            mutator(job)
            job.refresh_status()
            self._jobs[job_id] = job.model_dump_json(by_alias=True)
        return job

    def list_jobs(self, limit: int = 50) -> List[GenerationJob]:
        with self._registry_lock:
            ids = list(reversed(self._order))[:limit]
        jobs = [self.get(job_id) for job_id in ids]
        return [job for job in jobs if job is not None]

    def save_storyboard(self, storyboard: Storyboard) -> None:
        with self._registry_lock:
            self._storyboards[storyboard.id] = storyboard.model_dump_json(by_alias=True)

    def get_storyboard(self, storyboard_id: str) -> Optional[Storyboard]:
        with self._registry_lock:
            raw = self._storyboards.get(storyboard_id)
        if raw is None:
            return None
        return Storyboard.model_validate_json(raw)


class RedisJobRepository(JobRepository):
    """Redis-backed repository with optimistic per-key transactions."""

    prefix = "job:"
    storyboard_prefix = "storyboard:"
    timeline_key = "jobs:timeline"
    updates_channel = "job_updates"

    def __init__(self, client: Optional[redis.Redis] = None, ttl: Optional[int] = None, max_retries: int = 20):
        store = get_settings().store
        self.redis = client or redis.Redis(
            host=store.redis_host, port=store.redis_port, db=store.redis_db, decode_responses=True
        )
        self.ttl = ttl or store.job_ttl
        self.max_retries = max_retries

    def _key(self, job_id: str) -> str:
        return f"{self.prefix}{job_id}"

    def create(self, job: GenerationJob) -> GenerationJob:
        job.refresh_status()
        try:
            self.redis.set(self._key(job.id), job.model_dump_json(by_alias=True), ex=self.ttl)
            self.redis.zadd(self.timeline_key, {job.id: datetime.now().timestamp()})
        except redis.exceptions.RedisError as e:
            raise StorageError(f"Could not create job {job.id}: {e}") from e
        return job

    def get(self, job_id: str) -> Optional[GenerationJob]:
        raw = self.redis.get(self._key(job_id))
        if raw is None:
            return None
        return GenerationJob.model_validate_json(raw)

    def update(self, job_id: str, mutator: JobMutator) -> GenerationJob:
        key = self._key(job_id)
        for attempt in range(1, self.max_retries + 1):
            with self.redis.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        raise JobNotFoundError(f"Job {job_id} not found")
                    job = GenerationJob.model_validate_json(raw)
                    mutator(job)
                    job.refresh_status()
                    pipe.multi()
                    pipe.set(key, job.model_dump_json(by_alias=True), ex=self.ttl)
                    pipe.execute()
                except redis.exceptions.WatchError:
                    logger.debug(f"[JobStore] Concurrent write on {job_id}, retry {attempt}")
                    continue
            self._publish(job)
            return job
        raise StorageError(f"Could not update job {job_id} after {self.max_retries} attempts")

    def _publish(self, job: GenerationJob) -> None:
        try:
            self.redis.publish(self.updates_channel, json.dumps({
                "job_id": job.id,
                "status": job.status.value,
            }))
        except redis.exceptions.RedisError as e:
            logger.debug(f"[JobStore] publish failed for {job.id}: {e}")

    def list_jobs(self, limit: int = 50) -> List[GenerationJob]:
        job_ids = self.redis.zrevrange(self.timeline_key, 0, limit - 1)
        jobs = [self.get(job_id) for job_id in job_ids]
        return [job for job in jobs if job is not None]

    def save_storyboard(self, storyboard: Storyboard) -> None:
        self.redis.set(
            f"{self.storyboard_prefix}{storyboard.id}",
            storyboard.model_dump_json(by_alias=True),
            ex=self.ttl,
        )

    def get_storyboard(self, storyboard_id: str) -> Optional[Storyboard]:
        raw = self.redis.get(f"{self.storyboard_prefix}{storyboard_id}")
        if raw is None:
            return None
        return Storyboard.model_validate_json(raw)


def create_job_repository(backend: Optional[str] = None) -> JobRepository:
    """Repository for the configured backend ("memory" or "redis")."""
    backend = (backend or get_settings().store.backend).lower()
    if backend == "redis":
        return RedisJobRepository()
    if backend == "memory":
        return InMemoryJobRepository()
    raise ConfigurationError(f"Unknown job store backend: {backend}")
