from __future__ import annotations

import logging
from pathlib import Path

from .adapters import STDOUT_LOG
from .app_logging import log_with_fields
from .errors import ResponseDecodeError
from .models import SimulationJob, SimulationRunResult
from .services import ExperimentManagerClient, StorageManagerClient

BINARY_ARCHIVE = "output.tar.gz"


class ResultReporter:
    def __init__(
        self,
        coordinator: ExperimentManagerClient,
        storage: StorageManagerClient,
        logger: logging.Logger,
    ) -> None:
        self.coordinator = coordinator
        self.storage = storage
        self.logger = logger

    def report(self, job: SimulationJob, job_dir: Path, result: SimulationRunResult) -> None:
        if job.job_id is None:
            raise ValueError("cannot report a job without an id")
        log_with_fields(
            self.logger,
            logging.INFO,
            "results_ready",
            job_id=job.job_id,
            status=result.status.value,
            reason=result.reason,
        )
        try:
            status, reason = self.coordinator.mark_as_complete(job.job_id, result)
        except ResponseDecodeError as exc:
            log_with_fields(self.logger, logging.WARNING, "mark_as_complete_unreadable", job_id=job.job_id, error=str(exc))
        else:
            if status is not None and status != "ok":
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "mark_as_complete_rejected",
                    job_id=job.job_id,
                    status=status,
                    reason=reason or "no details",
                )

        archive = job_dir / BINARY_ARCHIVE
        if archive.is_file():
            self.storage.upload_binaries(job.job_id, archive)

        stdout_log = job_dir / STDOUT_LOG
        if stdout_log.is_file():
            self.storage.upload_stdout(job.job_id, stdout_log)
