from __future__ import annotations

import json
import logging
import shutil
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .adapters import EXECUTOR, INPUT_WRITER, OUTPUT_READER, AdapterRunner
from .app_logging import log_with_fields
from .config import PipelineConfig
from .errors import AdapterError
from .models import JobPhase, SimulationJob, SimulationRunResult
from .monitor import MonitorHandle, ProgressMonitor
from .reporter import ResultReporter
from .services import ExperimentManagerClient

INPUT_FILE = "input.json"
OUTPUT_FILE = "output.json"


@dataclass(slots=True)
class JobOutcome:
    job: SimulationJob
    job_dir: Path
    result: SimulationRunResult
    monitor: MonitorHandle
    cleanup: Future


class PipelineOrchestrator:
    """Drives one acquired job through the adapter pipeline.

    The progress monitor runs on ``monitor_pool`` while the executor runs
    here; it is always stopped and awaited before the output reader, the
    report and the directory cleanup.
    """

    def __init__(
        self,
        runner: AdapterRunner,
        coordinator: ExperimentManagerClient,
        reporter: ResultReporter,
        experiment_dir: Path,
        pipeline: PipelineConfig,
        monitor_pool: Executor,
        cleanup_pool: Executor,
        logger: logging.Logger,
        *,
        remove_tree: Callable[[Path], None] = shutil.rmtree,
    ) -> None:
        self.runner = runner
        self.coordinator = coordinator
        self.reporter = reporter
        self.experiment_dir = experiment_dir
        self.pipeline = pipeline
        self.monitor_pool = monitor_pool
        self.cleanup_pool = cleanup_pool
        self.logger = logger
        self.remove_tree = remove_tree

    def job_dir(self, job: SimulationJob) -> Path:
        return self.experiment_dir / f"simulation_{job.job_id}"

    def process(self, job: SimulationJob) -> JobOutcome:
        job_dir = self.prepare(job)

        if self.runner.has(INPUT_WRITER):
            self.runner.run(INPUT_WRITER, job_dir, INPUT_FILE)
            self._enter(job, JobPhase.INPUT_TRANSFORMED)

        monitor = self.execute(job, job_dir)

        if self.runner.has(OUTPUT_READER):
            self.runner.run(OUTPUT_READER, job_dir)
            self._enter(job, JobPhase.OUTPUT_TRANSFORMED)

        result = SimulationRunResult.from_file(job_dir / OUTPUT_FILE)
        self.reporter.report(job, job_dir, result)
        self._enter(job, JobPhase.REPORTED)

        cleanup = self.cleanup_pool.submit(self._cleanup, job, job_dir, monitor)
        return JobOutcome(job=job, job_dir=job_dir, result=result, monitor=monitor, cleanup=cleanup)

    def prepare(self, job: SimulationJob) -> Path:
        job_dir = self.job_dir(job)
        job_dir.mkdir(parents=True, exist_ok=True)
        (job_dir / INPUT_FILE).write_text(
            json.dumps(job.input_parameters, separators=(",", ":")),
            encoding="utf-8",
        )
        self._enter(job, JobPhase.PREPARED, job_dir=str(job_dir))
        return job_dir

    def execute(self, job: SimulationJob, job_dir: Path) -> MonitorHandle:
        """Run the executor next to a progress monitor.

        The monitor is stopped and awaited whatever the executor's fate.
        A failed monitor wins over the executor's own error, since it is
        either the reason the executor was aborted or failed alongside it.
        """
        monitor = ProgressMonitor(
            self.runner,
            self.coordinator,
            job.job_id,
            job_dir,
            self.pipeline.progress_interval_seconds,
            self.pipeline.progress_timeout_seconds,
            self.logger,
        ).start(self.monitor_pool)
        self._enter(job, JobPhase.EXECUTING)

        executor_error: AdapterError | None = None
        try:
            self.runner.run(EXECUTOR, job_dir, abort=monitor.failed)
        except AdapterError as exc:
            executor_error = exc
        finally:
            log_with_fields(self.logger, logging.INFO, "monitor_stop_requested", job_id=job.job_id)
            monitor.stop()

        try:
            monitor.wait()
        except AdapterError as monitor_error:
            raise monitor_error from executor_error
        if executor_error is not None:
            raise executor_error

        self._enter(job, JobPhase.EXECUTED)
        return monitor

    def _cleanup(self, job: SimulationJob, job_dir: Path, monitor: MonitorHandle) -> None:
        monitor.wait()
        try:
            self.remove_tree(job_dir)
        except OSError as exc:
            log_with_fields(self.logger, logging.WARNING, "cleanup_failed", job_id=job.job_id, error=str(exc))
            return
        self._enter(job, JobPhase.CLEANED)

    def _enter(self, job: SimulationJob, phase: JobPhase, **fields: object) -> None:
        log_with_fields(self.logger, logging.INFO, "job_phase", job_id=job.job_id, phase=phase.value, **fields)
