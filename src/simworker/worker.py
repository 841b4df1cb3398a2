from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from .acquisition import JobAcquirer
from .adapters import AdapterRunner
from .app_logging import log_with_fields
from .codebase import ensure_code_base
from .config import WorkerConfig
from .models import EndpointPool
from .orchestrator import JobOutcome, PipelineOrchestrator
from .reporter import ResultReporter
from .services import ExperimentManagerClient, StorageManagerClient, discover_pool
from .transport import RequestDispatcher
from .utils import parse_start_at, seconds_until


class Worker:
    def __init__(
        self,
        config: WorkerConfig,
        dispatcher: RequestDispatcher,
        logger: logging.Logger,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.dispatcher = dispatcher
        self.logger = logger
        self.sleep = sleep
        self.clock = clock
        self.monitor_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="progress-monitor")
        self.cleanup_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="job-cleanup")
        self.coordinator: ExperimentManagerClient | None = None
        self.storage: StorageManagerClient | None = None
        self.acquirer: JobAcquirer | None = None
        self.orchestrator: PipelineOrchestrator | None = None

    def run_forever(self) -> None:
        self.bootstrap()
        while True:
            self.single_cycle()

    def run_once(self) -> JobOutcome:
        self.bootstrap()
        return self.single_cycle()

    def bootstrap(self) -> None:
        if self.orchestrator is not None:
            return
        self.wait_for_start()

        information_service = EndpointPool("information_service", (self.config.information_service_url,))
        coordinators = discover_pool(self.dispatcher, information_service, "experiment_managers", self.logger)
        storage = discover_pool(self.dispatcher, information_service, "storage_managers", self.logger)
        log_with_fields(
            self.logger,
            logging.INFO,
            "pools_discovered",
            experiment_managers=list(coordinators.hosts),
            storage_managers=list(storage.hosts),
        )

        self.config.experiment_dir.mkdir(parents=True, exist_ok=True)
        self.coordinator = ExperimentManagerClient(self.dispatcher, coordinators, self.config.experiment_id, self.logger)
        self.storage = StorageManagerClient(self.dispatcher, storage, self.config.experiment_id, self.logger)
        ensure_code_base(self.coordinator, self.config.code_base_dir, self.logger)

        pipeline = self.config.pipeline
        self.acquirer = JobAcquirer(
            self.coordinator,
            self.config.timeout_seconds,
            pipeline.acquisition_retry_seconds,
            self.logger,
            sleep=self.sleep,
            clock=self.clock,
        )
        self.orchestrator = PipelineOrchestrator(
            runner=AdapterRunner(self.config.code_base_dir, self.logger, pipeline.log_tail_lines),
            coordinator=self.coordinator,
            reporter=ResultReporter(self.coordinator, self.storage, self.logger),
            experiment_dir=self.config.experiment_dir,
            pipeline=pipeline,
            monitor_pool=self.monitor_pool,
            cleanup_pool=self.cleanup_pool,
            logger=self.logger,
        )

    def single_cycle(self) -> JobOutcome:
        if self.acquirer is None or self.orchestrator is None:
            raise RuntimeError("worker is not bootstrapped")
        job = self.acquirer.acquire()
        return self.orchestrator.process(job)

    def wait_for_start(self) -> None:
        if not self.config.start_at:
            return
        try:
            start = parse_start_at(self.config.start_at)
        except ValueError as exc:
            log_with_fields(self.logger, logging.WARNING, "start_at_invalid", value=self.config.start_at, error=str(exc))
            return
        delay = seconds_until(start)
        log_with_fields(self.logger, logging.INFO, "start_at_wait", start_at=start.isoformat(), seconds=delay)
        self.sleep(delay)
        log_with_fields(self.logger, logging.INFO, "start_at_reached")

    def close(self) -> None:
        self.monitor_pool.shutdown(wait=True)
        self.cleanup_pool.shutdown(wait=True)
