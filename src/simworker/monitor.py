from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future
from pathlib import Path

from .adapters import PROGRESS_MONITOR, AdapterRunner
from .app_logging import log_with_fields
from .errors import AdapterError, TransportExhaustedError
from .models import RunStatus, SimulationRunResult
from .services import ExperimentManagerClient

INTERMEDIATE_RESULT = "intermediate_result.json"


class MonitorHandle:
    """Cancellation token plus completion future for one running monitor.

    ``failed`` is set as soon as the monitor adapter breaks, so the
    executor can be aborted before it finishes on its own.
    """

    def __init__(self, cancel: threading.Event, failed: threading.Event, future: Future) -> None:
        self.cancel = cancel
        self.failed = failed
        self.future = future

    def stop(self) -> None:
        self.cancel.set()

    def wait(self, timeout: float | None = None) -> int:
        """Block until the monitor acknowledged; returns the number of reports sent."""
        return self.future.result(timeout)

    def done(self) -> bool:
        return self.future.done()


class ProgressMonitor:
    """Runs the progress_monitor adapter until stopped and reports ok results.

    ``interval_seconds`` is an upper bound on the pause between runs: a stop
    request ends the pause early, but is only honored after the adapter run
    and its report.
    """

    def __init__(
        self,
        runner: AdapterRunner,
        coordinator: ExperimentManagerClient,
        job_id: int,
        job_dir: Path,
        interval_seconds: float,
        report_timeout_seconds: float,
        logger: logging.Logger,
    ) -> None:
        self.runner = runner
        self.coordinator = coordinator
        self.job_id = job_id
        self.job_dir = job_dir
        self.interval_seconds = interval_seconds
        self.report_timeout_seconds = report_timeout_seconds
        self.logger = logger
        self.cancel = threading.Event()
        self.failed = threading.Event()

    def start(self, pool: Executor) -> MonitorHandle:
        future = pool.submit(self.run)
        return MonitorHandle(self.cancel, self.failed, future)

    def run(self) -> int:
        if not self.runner.has(PROGRESS_MONITOR):
            log_with_fields(self.logger, logging.INFO, "monitor_absent", job_id=self.job_id)
            return 0

        reports = 0
        while True:
            try:
                self.runner.run(PROGRESS_MONITOR, self.job_dir)
            except AdapterError:
                self.failed.set()
                raise

            result = SimulationRunResult.from_file(self.job_dir / INTERMEDIATE_RESULT)
            if result.status is RunStatus.OK:
                if self._report(result):
                    reports += 1
            else:
                log_with_fields(
                    self.logger,
                    logging.INFO,
                    "progress_skipped",
                    job_id=self.job_id,
                    reason=result.reason,
                )

            # Returns early when stopped, but the stop is only honored here,
            # never while the adapter is running.
            self.cancel.wait(self.interval_seconds)
            if self.cancel.is_set():
                log_with_fields(self.logger, logging.INFO, "monitor_stopped", job_id=self.job_id, reports=reports)
                return reports

    def _report(self, result: SimulationRunResult) -> bool:
        log_with_fields(
            self.logger,
            logging.INFO,
            "progress_reported",
            job_id=self.job_id,
            results=result.results,
        )
        try:
            body = self.coordinator.send_progress(self.job_id, result, self.report_timeout_seconds)
        except TransportExhaustedError as exc:
            log_with_fields(self.logger, logging.WARNING, "progress_report_failed", job_id=self.job_id, error=str(exc))
            return False
        log_with_fields(
            self.logger,
            logging.INFO,
            "progress_response",
            job_id=self.job_id,
            body=body.decode("utf-8", "replace"),
        )
        return True
