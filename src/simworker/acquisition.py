from __future__ import annotations

import logging
import time
from typing import Callable

from .app_logging import log_with_fields
from .errors import AcquisitionFailedError, ExperimentFinished, ResponseDecodeError
from .models import AcquisitionStatus, SimulationJob
from .services import ExperimentManagerClient


class JobAcquirer:
    """Asks the coordinators for the next simulation run.

    ``wait`` replies restart the whole acquisition with a fresh retry budget.
    ``error``, unknown statuses and undecodable bodies are retried until
    ``timeout * len(coordinators)`` runs out.
    """

    def __init__(
        self,
        coordinator: ExperimentManagerClient,
        timeout_seconds: float,
        retry_seconds: float,
        logger: logging.Logger,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.coordinator = coordinator
        self.timeout_seconds = timeout_seconds
        self.retry_seconds = retry_seconds
        self.logger = logger
        self.sleep = sleep
        self.clock = clock

    @property
    def budget_seconds(self) -> float:
        return self.timeout_seconds * len(self.coordinator.pool)

    def acquire(self) -> SimulationJob:
        while True:
            job = self._acquire_once()
            if job.acquisition_status is not AcquisitionStatus.WAIT:
                return job
            log_with_fields(
                self.logger,
                logging.INFO,
                "acquisition_wait",
                seconds=job.wait_seconds,
            )
            self.sleep(job.wait_seconds or 0)

    def _acquire_once(self) -> SimulationJob:
        deadline = self.clock() + self.budget_seconds
        while self.clock() < deadline:
            log_with_fields(self.logger, logging.INFO, "acquisition_attempt")
            try:
                job = self.coordinator.next_simulation()
            except ResponseDecodeError as exc:
                log_with_fields(self.logger, logging.WARNING, "acquisition_bad_response", error=str(exc))
            else:
                status = job.acquisition_status
                if status is AcquisitionStatus.OK:
                    log_with_fields(
                        self.logger,
                        logging.INFO,
                        "job_acquired",
                        job_id=job.job_id,
                        execution_constraints=job.execution_constraints,
                    )
                    return job
                if status is AcquisitionStatus.WAIT:
                    return job
                if status is AcquisitionStatus.ALL_SENT:
                    log_with_fields(self.logger, logging.INFO, "experiment_finished")
                    raise ExperimentFinished("There are no more simulations to run in this experiment.")
                log_with_fields(self.logger, logging.WARNING, "acquisition_error_status")

            self.sleep(self.retry_seconds)

        log_with_fields(self.logger, logging.ERROR, "acquisition_failed", budget_seconds=self.budget_seconds)
        raise AcquisitionFailedError("Couldn't get a simulation to run, finishing work.")
