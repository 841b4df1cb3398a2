from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import requests

from simworker.config import TransportConfig, WorkerConfig


@dataclass(slots=True)
class FakeResponse:
    status_code: int
    content: bytes


@dataclass(slots=True)
class RecordedCall:
    method: str
    url: str
    data: bytes | None
    headers: dict


class FakeSession:
    """In-memory stand-in for ``requests.Session``.

    Routes are keyed by ``(method, url)``; queued bodies are served in order
    and the last one repeats. Hosts listed in ``down`` refuse connections.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[FakeResponse]] = {}
        self.down: set[str] = set()
        self.failures_before_success: dict[str, int] = {}
        self.calls: list[RecordedCall] = []

    def route(self, method: str, url: str, *bodies: bytes, status_code: int = 200) -> None:
        self.routes[(method, url)] = [FakeResponse(status_code, body) for body in bodies]

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.calls.append(RecordedCall(method, url, data, dict(headers or {})))
        host = url.split("://", 1)[1].split("/", 1)[0]
        if host in self.down:
            raise requests.ConnectionError(f"connection refused: {host}")
        remaining = self.failures_before_success.get(host, 0)
        if remaining > 0:
            self.failures_before_success[host] = remaining - 1
            raise requests.Timeout(f"timed out: {host}")
        queue = self.routes.get((method, url))
        if not queue:
            raise requests.ConnectionError(f"no route for {method} {url}")
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    def urls(self, method: str | None = None) -> list[str]:
        return [call.url for call in self.calls if method is None or call.method == method]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@dataclass(slots=True)
class LoggedEvent:
    message: str
    fields: dict = field(default_factory=dict)


class RecordingHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.events: list[LoggedEvent] = []

    def emit(self, record: logging.LogRecord) -> None:
        fields = getattr(record, "extra_fields", None) or {}
        self.events.append(LoggedEvent(record.getMessage(), dict(fields)))

    def messages(self) -> list[str]:
        return [event.message for event in self.events]

    def index_of(self, message: str, **fields: object) -> int:
        for index, event in enumerate(self.events):
            if event.message == message and all(event.fields.get(k) == v for k, v in fields.items()):
                return index
        raise AssertionError(f"event {message} {fields} not logged")


def recording_logger(name: str) -> tuple[logging.Logger, RecordingHandler]:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = RecordingHandler()
    logger.addHandler(handler)
    return logger, handler


def write_adapter(code_base: Path, name: str, body: str) -> Path:
    code_base.mkdir(parents=True, exist_ok=True)
    path = code_base / name
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def make_config(root: Path, **overrides: object) -> WorkerConfig:
    values: dict = {
        "experiment_id": "7",
        "information_service_url": "info:1",
        "user": "alice",
        "password": "secret",
        "root_dir": root,
        "timeout_seconds": 10,
        "transport": TransportConfig(development=True),
    }
    values.update(overrides)
    return WorkerConfig(**values)
