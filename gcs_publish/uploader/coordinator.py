"""
Bounded-concurrency upload of a whole file set.

Every task is handed to a worker thread as soon as an admission slot is
free; at most ``concurrency`` uploads run at once. Each worker retries its
own file with exponential backoff, frees its slot, and reports exactly one
outcome. A failure marks the run as failed but never cancels the other
uploads: the coordinator waits for every outcome before returning.

Example usage:
    >>> from gcs_publish.uploader import UploadCoordinator, enumerate_files
    >>> coordinator = UploadCoordinator(store, options, concurrency=100)
    >>> result = coordinator.run(enumerate_files("dist"))
    >>> if not result.success:
    ...     print(f"{result.failed_key}: {result.first_error}")
"""

import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from gcs_publish.uploader.enumerator import UploadTask, enumerate_files
from gcs_publish.uploader.store import ObjectStore
from gcs_publish.uploader.uploader import UploadOptions, upload_file
from gcs_publish.utils.logging import get_logger
from gcs_publish.utils.metrics import PrometheusMetrics, get_metrics
from gcs_publish.utils.retry import DEFAULT_MAX_ATTEMPTS, RetryStats, with_retry

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 100


@dataclass(frozen=True)
class UploadOutcome:
    """
    Result of one task.

    Attributes:
        relative_path: Path relative to the source root
        key: Destination object key
        error: Final error, None on success
        attempts: Number of upload attempts made
        bytes_uploaded: Source size in bytes (0 on failure)
    """

    relative_path: str
    key: str
    error: Optional[Exception] = None
    attempts: int = 0
    bytes_uploaded: int = 0

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class RunResult:
    """
    Aggregate result of a run.

    Attributes:
        outcomes: One outcome per dispatched task, in completion order
        first_error: First failure recorded by any worker
        failed_key: Destination key of that first failure
    """

    outcomes: List[UploadOutcome] = field(default_factory=list)
    first_error: Optional[Exception] = None
    failed_key: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.first_error is None

    @property
    def succeeded(self) -> List[UploadOutcome]:
        return [outcome for outcome in self.outcomes if outcome.success]

    @property
    def failed(self) -> List[UploadOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def bytes_uploaded(self) -> int:
        return sum(outcome.bytes_uploaded for outcome in self.outcomes)


class FirstErrorCell:
    """Lock-guarded holder of the earliest failure reported by any worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: Optional[Tuple[str, Exception]] = None

    def record(self, key: str, error: Exception) -> bool:
        """Store ``error`` unless one is already held; True if this one won."""
        with self._lock:
            if self._value is not None:
                return False
            self._value = (key, error)
            return True

    def get(self) -> Optional[Tuple[str, Exception]]:
        with self._lock:
            return self._value


class UploadCoordinator:
    """
    Runs uploads for a list of tasks with a fixed concurrency ceiling.

    Args:
        store: Destination object store, shared by all workers
        options: Run-wide upload settings, shared read-only by all workers
        concurrency: Maximum number of uploads in flight
        max_retries: Retries per file after the first attempt
        sleep: Backoff sleep function
        metrics: Metrics sink (global instance by default)
    """

    def __init__(
        self,
        store: ObjectStore,
        options: UploadOptions,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_retries: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Any] = time.sleep,
        metrics: Optional[PrometheusMetrics] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")

        self.store = store
        self.options = options
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.sleep = sleep
        self.metrics = metrics if metrics is not None else get_metrics()

    def run(self, tasks: Sequence[UploadTask]) -> RunResult:
        """
        Upload every task and collect one outcome per task.

        Args:
            tasks: Files to upload

        Returns:
            RunResult; ``success`` is False if any file failed after retries
        """
        total = len(tasks)
        result = RunResult()
        if total == 0:
            logger.info("Nothing to upload")
            return result

        logger.info(f"Uploading {total} file(s) with up to {self.concurrency} in flight")

        gate = threading.BoundedSemaphore(self.concurrency)
        outcomes: "queue.Queue[UploadOutcome]" = queue.Queue(maxsize=total)
        first_error = FirstErrorCell()

        with ThreadPoolExecutor(
            max_workers=min(self.concurrency, total),
            thread_name_prefix="upload",
        ) as executor:
            for task in tasks:
                gate.acquire()
                executor.submit(self._worker, task, gate, outcomes, first_error)

            for _ in range(total):
                outcome = outcomes.get()
                result.outcomes.append(outcome)
                if outcome.success:
                    logger.info(f"Uploaded {outcome.key}")
                else:
                    logger.error(f"Failed {outcome.key}: {outcome.error}")

        recorded = first_error.get()
        if recorded is not None:
            result.failed_key, result.first_error = recorded

        logger.info(
            f"Upload run finished: {len(result.succeeded)}/{total} succeeded, "
            f"{result.bytes_uploaded} bytes"
        )
        return result

    def _worker(
        self,
        task: UploadTask,
        gate: threading.BoundedSemaphore,
        outcomes: "queue.Queue[UploadOutcome]",
        first_error: FirstErrorCell,
    ) -> None:
        key = task.destination_key(self.options.destination_prefix)
        try:
            outcome = self._upload_with_retry(task, key)
        except BaseException as e:
            # Keep the one-outcome-per-task count intact whatever happens
            outcome = UploadOutcome(relative_path=task.relative_path, key=key, error=e)
            raise
        finally:
            gate.release()
            if not outcome.success:
                first_error.record(key, outcome.error)
            outcomes.put_nowait(outcome)

    def _upload_with_retry(self, task: UploadTask, key: str) -> UploadOutcome:
        stats = RetryStats()
        logger.debug(f"Uploading {task.relative_path} -> {key}")

        with self.metrics.track_in_flight(), self.metrics.track_upload():
            try:
                size = with_retry(
                    lambda: upload_file(key, task.absolute_path, self.options, self.store),
                    max_attempts=self.max_retries,
                    sleep=self.sleep,
                    on_retry=lambda *_: self.metrics.record_retry(),
                    stats=stats,
                    name=f"upload {key}",
                )
            except Exception as e:
                self.metrics.record_upload_failure(type(e).__name__)
                return UploadOutcome(
                    relative_path=task.relative_path,
                    key=key,
                    error=e,
                    attempts=stats.attempts,
                )

        self.metrics.record_upload_success(size)
        return UploadOutcome(
            relative_path=task.relative_path,
            key=key,
            attempts=stats.attempts,
            bytes_uploaded=size,
        )


def publish(
    source: str,
    options: UploadOptions,
    store: ObjectStore,
    ignore: Optional[str] = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    max_retries: int = DEFAULT_MAX_ATTEMPTS,
    sleep: Callable[[float], Any] = time.sleep,
) -> RunResult:
    """
    Enumerate ``source`` and upload everything not matching ``ignore``.

    Raises:
        EnumerationError: If the source tree cannot be walked; nothing is
            uploaded in that case
    """
    tasks = enumerate_files(source, ignore)
    coordinator = UploadCoordinator(
        store,
        options,
        concurrency=concurrency,
        max_retries=max_retries,
        sleep=sleep,
    )
    return coordinator.run(tasks)
