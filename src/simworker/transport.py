from __future__ import annotations

import logging
import random
import time
from typing import Callable

import requests

from .app_logging import log_with_fields
from .config import TransportConfig, WorkerConfig
from .errors import TransportExhaustedError
from .models import EndpointPool, RequestSpec

RETRY_BACKOFF_SECONDS = 1.0


def build_session(config: WorkerConfig) -> requests.Session:
    session = requests.Session()
    session.auth = (config.user, config.password)
    transport = config.transport
    if transport.certificate_path is not None:
        if not transport.certificate_path.is_file():
            raise ValueError(f"certificate not found: {transport.certificate_path}")
        session.verify = str(transport.certificate_path)
    if transport.insecure_ssl:
        session.verify = False
    return session


class RequestDispatcher:
    """Turns an endpoint pool into one reliable logical request.

    Any HTTP response counts as success here; callers decide what the
    status code and body mean. Only transport errors move on to the next
    endpoint, and running out of endpoints raises
    :class:`TransportExhaustedError`.
    """

    def __init__(
        self,
        session: requests.Session,
        transport: TransportConfig,
        timeout_seconds: float,
        logger: logging.Logger,
        *,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.scheme = transport.scheme
        self.timeout_seconds = timeout_seconds
        self.logger = logger
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.clock = clock

    def dispatch(
        self,
        spec: RequestSpec,
        pool: EndpointPool,
        timeout_seconds: float | None = None,
    ) -> bytes:
        if not pool.hosts:
            raise ValueError(f"endpoint pool `{pool.role}` is empty")
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds

        hosts = list(pool.hosts)
        self.rng.shuffle(hosts)
        attempted: list[str] = []
        for host in hosts:
            url = f"{self.scheme}://{host}/{spec.service_path}"
            attempted.append(host)
            log_with_fields(
                self.logger,
                logging.INFO,
                "request_attempt",
                method=spec.method,
                url=url,
                role=pool.role,
            )
            body = self._get_with_timeout(spec, url, timeout)
            if body is not None:
                return body
            log_with_fields(
                self.logger,
                logging.WARNING,
                "endpoint_exhausted",
                url=url,
                role=pool.role,
                timeout=timeout,
            )

        raise TransportExhaustedError(pool.role, spec.service_path, attempted)

    def _get_with_timeout(self, spec: RequestSpec, url: str, timeout: float) -> bytes | None:
        headers = {}
        if spec.body is not None and spec.content_type:
            headers["Content-Type"] = spec.content_type

        deadline = self.clock() + timeout
        while self.clock() < deadline:
            try:
                response = self.session.request(
                    spec.method,
                    url,
                    data=spec.body,
                    headers=headers,
                    timeout=timeout,
                )
                return response.content
            except requests.RequestException as exc:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "request_failed",
                    url=url,
                    error=str(exc),
                )
                self.sleep(RETRY_BACKOFF_SECONDS)
        return None
