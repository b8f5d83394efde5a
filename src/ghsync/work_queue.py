import threading
from collections import deque

from .models import BackupJob


class QueueClosed(Exception):
    """Raised when a job is pushed after the queue was closed."""


class WorkQueue:
    """A bounded, closable, thread-safe queue of backup jobs.

    The producer pushes one job per discovered repository and calls `close()`
    when discovery ends. Consumers call `get()` until it returns None, which
    happens only once the queue is both closed and empty. Jobs are
    deduplicated by case-insensitive canonical id.

    Attributes:
        maxsize (int): Maximum number of queued (not yet popped) jobs.
    """

    def __init__(self, maxsize: int):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self._items: deque[BackupJob] = deque()
        self._seen: set[str] = set()
        self._closed = False
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)

    def put(self, job: BackupJob) -> bool:
        """Enqueues a job, blocking while the queue is full.

        Returns:
            bool: False if a job with the same canonical id was already queued.

        Raises:
            QueueClosed: If the queue is (or becomes) closed.
        """
        key = job.repository.key
        with self._not_full:
            if self._closed:
                raise QueueClosed(job.canonical_id)
            if key in self._seen:
                return False
            while len(self._items) >= self.maxsize and not self._closed:
                self._not_full.wait()
            if self._closed:
                raise QueueClosed(job.canonical_id)
            self._seen.add(key)
            self._items.append(job)
            self._not_empty.notify()
            return True

    def get(self) -> BackupJob | None:
        """Pops the next job, or returns None once closed and drained."""
        with self._not_empty:
            while not self._items and not self._closed:
                self._not_empty.wait()
            if not self._items:
                return None
            job = self._items.popleft()
            self._not_full.notify()
            return job

    def close(self) -> None:
        """Marks the end of production and wakes every waiter."""
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()

    def drain(self) -> list[BackupJob]:
        """Removes and returns every job that has not been popped yet."""
        with self._lock:
            jobs = list(self._items)
            self._items.clear()
            self._not_full.notify_all()
            return jobs

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def seen(self) -> int:
        """Number of distinct jobs ever accepted."""
        with self._lock:
            return len(self._seen)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
