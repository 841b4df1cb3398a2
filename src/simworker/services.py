from __future__ import annotations

import logging
from pathlib import Path

from urllib3 import encode_multipart_formdata

from .app_logging import log_with_fields
from .errors import DiscoveryError, ResponseDecodeError
from .models import (
    FORM_CONTENT_TYPE,
    EndpointPool,
    RequestSpec,
    SimulationJob,
    SimulationRunResult,
    decode_host_list,
    decode_next_simulation,
    decode_status_reply,
)
from .transport import RequestDispatcher


def multipart_file_spec(method: str, service_path: str, path: Path) -> RequestSpec:
    # Encoded once so every retry resends identical bytes.
    body, content_type = encode_multipart_formdata(
        {"file": (path.name, path.read_bytes(), "application/octet-stream")}
    )
    return RequestSpec(method, service_path, body=body, content_type=content_type)


def discover_pool(
    dispatcher: RequestDispatcher,
    information_service: EndpointPool,
    role: str,
    logger: logging.Logger,
) -> EndpointPool:
    body = dispatcher.dispatch(RequestSpec("GET", role), information_service)
    log_with_fields(logger, logging.INFO, "discovery_response", role=role, body=body.decode("utf-8", "replace"))
    try:
        pool = decode_host_list(body, role)
    except ResponseDecodeError as exc:
        raise DiscoveryError(str(exc)) from exc
    if not pool.hosts:
        raise DiscoveryError(
            f"There is no {role.replace('_', ' ')} registered in the information service."
        )
    return pool


class ExperimentManagerClient:
    def __init__(
        self,
        dispatcher: RequestDispatcher,
        pool: EndpointPool,
        experiment_id: str,
        logger: logging.Logger,
    ) -> None:
        self.dispatcher = dispatcher
        self.pool = pool
        self.experiment_id = experiment_id
        self.logger = logger

    def _simulation_path(self, job_id: int, action: str) -> str:
        return f"experiments/{self.experiment_id}/simulations/{job_id}/{action}"

    def fetch_code_base(self) -> bytes:
        return self.dispatcher.dispatch(
            RequestSpec("GET", f"experiments/{self.experiment_id}/code_base"),
            self.pool,
        )

    def next_simulation(self) -> SimulationJob:
        body = self.dispatcher.dispatch(
            RequestSpec("GET", f"experiments/{self.experiment_id}/next_simulation"),
            self.pool,
        )
        log_with_fields(
            self.logger,
            logging.INFO,
            "next_simulation_response",
            body=body.decode("utf-8", "replace"),
        )
        return decode_next_simulation(body)

    def send_progress(
        self,
        job_id: int,
        result: SimulationRunResult,
        timeout_seconds: float | None = None,
    ) -> bytes:
        spec = RequestSpec(
            "POST",
            self._simulation_path(job_id, "progress_info"),
            body=result.to_form(),
            content_type=FORM_CONTENT_TYPE,
        )
        return self.dispatcher.dispatch(spec, self.pool, timeout_seconds)

    def mark_as_complete(self, job_id: int, result: SimulationRunResult) -> tuple[str | None, str | None]:
        spec = RequestSpec(
            "POST",
            self._simulation_path(job_id, "mark_as_complete"),
            body=result.to_form(),
            content_type=FORM_CONTENT_TYPE,
        )
        body = self.dispatcher.dispatch(spec, self.pool)
        log_with_fields(
            self.logger,
            logging.INFO,
            "mark_as_complete_response",
            job_id=job_id,
            body=body.decode("utf-8", "replace"),
        )
        return decode_status_reply(body)


class StorageManagerClient:
    def __init__(
        self,
        dispatcher: RequestDispatcher,
        pool: EndpointPool,
        experiment_id: str,
        logger: logging.Logger,
    ) -> None:
        self.dispatcher = dispatcher
        self.pool = pool
        self.experiment_id = experiment_id
        self.logger = logger

    def upload_binaries(self, job_id: int, archive: Path) -> bytes:
        spec = multipart_file_spec("PUT", f"experiments/{self.experiment_id}/simulations/{job_id}", archive)
        return self._upload(spec, job_id, archive)

    def upload_stdout(self, job_id: int, log_file: Path) -> bytes:
        spec = multipart_file_spec(
            "PUT",
            f"experiments/{self.experiment_id}/simulations/{job_id}/stdout",
            log_file,
        )
        return self._upload(spec, job_id, log_file)

    def _upload(self, spec: RequestSpec, job_id: int, path: Path) -> bytes:
        log_with_fields(self.logger, logging.INFO, "upload_started", job_id=job_id, file=path.name)
        body = self.dispatcher.dispatch(spec, self.pool)
        log_with_fields(
            self.logger,
            logging.INFO,
            "upload_response",
            job_id=job_id,
            file=path.name,
            body=body.decode("utf-8", "replace"),
        )
        return body
