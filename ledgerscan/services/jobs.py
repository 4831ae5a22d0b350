"""Background document processing jobs.

Each document gets at most one running asyncio task. Finished job records are
kept for a while so the UI can poll them, then cleaned up by TTL.
"""

import asyncio
import logging
import time
import weakref
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

# TTL for finished job records (15 minutes)
JOB_TTL_SECONDS = 900


@dataclass
class ProcessingJob:
    """Represents a background processing job."""

    document_id: str
    filename: str
    file_hash: str = ""
    status: str = "processing"  # processing, complete, error
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    error_message: str | None = None
    _finished_monotonic: float | None = None

    def to_dict(self) -> dict[str, Any]:
        end = self.completed_at or datetime.now()
        return {
            "document_id": self.document_id,
            "filename": self.filename,
            "file_hash": self.file_hash,
            "status": self.status,
            "elapsed_seconds": round((end - self.started_at).total_seconds(), 1),
            "error": self.error_message,
        }


class DocumentJobQueue:
    """In-process job runner keyed by document id."""

    def __init__(self, ttl_seconds: float = JOB_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._jobs: dict[str, ProcessingJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        # Entries vanish once no caller holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def submit(
        self,
        document_id: str,
        work: Callable[[], Awaitable[Any]],
        filename: str = "",
        file_hash: str = "",
    ) -> asyncio.Task:
        """
        Schedule work for a document.

        Re-submitting while a task for the same id is still running returns the
        running task instead of starting a second one.
        """
        self._cleanup_stale_jobs()

        running = self._tasks.get(document_id)
        if running is not None and not running.done():
            logger.info(f"Job for document {document_id} already running")
            return running

        job = ProcessingJob(document_id=document_id, filename=filename, file_hash=file_hash)
        self._jobs[document_id] = job
        task = asyncio.create_task(self._run(job, work), name=f"document-{document_id}")
        self._tasks[document_id] = task
        logger.info(f"Scheduled processing for document {document_id} ({filename})")
        return task

    async def _run(self, job: ProcessingJob, work: Callable[[], Awaitable[Any]]) -> None:
        try:
            await work()
            job.status = "complete"
        except Exception as e:
            # Nothing escapes to the event loop
            logger.exception(f"Background job for document {job.document_id} crashed")
            job.status = "error"
            job.error_message = str(e)
        finally:
            job.completed_at = datetime.now()
            job._finished_monotonic = time.monotonic()
            self._tasks.pop(job.document_id, None)

    def lock(self, document_id: str) -> asyncio.Lock:
        """Per-document lock for operations that must not interleave."""
        lock = self._locks.get(document_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[document_id] = lock
        return lock

    async def wait(self, document_id: str) -> None:
        """Wait for the running job of a document, if any."""
        task = self._tasks.get(document_id)
        if task is not None:
            await asyncio.shield(task)

    async def wait_all(self) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_job(self, document_id: str) -> ProcessingJob | None:
        return self._jobs.get(document_id)

    def get_all_jobs(self) -> list[dict[str, Any]]:
        """Get status of all tracked jobs."""
        self._cleanup_stale_jobs()
        return [job.to_dict() for job in self._jobs.values()]

    def _cleanup_stale_jobs(self) -> None:
        """Remove finished job records older than TTL."""
        now = time.monotonic()
        stale = [
            doc_id
            for doc_id, job in self._jobs.items()
            if job._finished_monotonic is not None and now - job._finished_monotonic > self.ttl_seconds
        ]
        for doc_id in stale:
            del self._jobs[doc_id]
            logger.debug(f"Cleaned up stale job record: {doc_id}")
