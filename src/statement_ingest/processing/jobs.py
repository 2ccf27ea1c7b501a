"""Background batch jobs with cooperative cancellation."""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Generic, Optional, Protocol, TypeVar

from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

ReportT = TypeVar("ReportT")
ReportT_co = TypeVar("ReportT_co", covariant=True)


class BackgroundJob(Protocol[ReportT_co]):
    """A batch pass that checks a cancel event between units of work."""

    def run(self, cancel_event: Optional[threading.Event] = None) -> ReportT_co:
        ...


@dataclass
class JobHandle(Generic[ReportT]):
    """Handle to a submitted background job."""

    future: "Future[ReportT]"
    cancel_event: threading.Event

    def cancel(self) -> None:
        """Ask the job to stop at its next unit boundary.

        A job still waiting in the queue starts, sees the request and
        returns its (empty) cancelled report, so ``result`` always
        returns a report.
        """
        self.cancel_event.set()

    def result(self, timeout: Optional[float] = None) -> ReportT:
        return self.future.result(timeout=timeout)

    @property
    def done(self) -> bool:
        return self.future.done()


class JobRunner:
    """Runs background jobs one at a time on a dedicated worker thread."""

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="background-job")

    def submit(self, job: BackgroundJob[ReportT]) -> JobHandle[ReportT]:
        """Queue a job and return a cancellable handle."""
        cancel_event = threading.Event()
        logger.debug(f"Queued {type(job).__name__}")
        future = self._executor.submit(job.run, cancel_event)
        return JobHandle(future=future, cancel_event=cancel_event)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "JobRunner":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
