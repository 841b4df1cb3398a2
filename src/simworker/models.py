from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

from .errors import ResponseDecodeError

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class AcquisitionStatus(str, Enum):
    OK = "ok"
    WAIT = "wait"
    ALL_SENT = "all_sent"
    ERROR = "error"


class RunStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


class JobPhase(str, Enum):
    PREPARED = "prepared"
    INPUT_TRANSFORMED = "input-transformed"
    EXECUTING = "executing"
    EXECUTED = "executed"
    OUTPUT_TRANSFORMED = "output-transformed"
    REPORTED = "reported"
    CLEANED = "cleaned"


@dataclass(frozen=True, slots=True)
class EndpointPool:
    role: str
    hosts: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.hosts)


@dataclass(frozen=True, slots=True)
class RequestSpec:
    method: str
    service_path: str
    body: bytes | None = None
    content_type: str | None = None


@dataclass(slots=True)
class SimulationJob:
    acquisition_status: AcquisitionStatus
    job_id: int | None = None
    input_parameters: dict[str, Any] = field(default_factory=dict)
    execution_constraints: dict[str, Any] = field(default_factory=dict)
    wait_seconds: float | None = None


@dataclass(slots=True)
class SimulationRunResult:
    status: RunStatus
    reason: str = ""
    results: Any = None

    @classmethod
    def from_file(cls, path: Path) -> "SimulationRunResult":
        """Read a result file written by an adapter.

        Never raises for a missing or malformed file: the problem becomes an
        ``error`` result whose reason names the file.
        """
        name = path.name
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            return cls(RunStatus.ERROR, f"No '{name}' file found: {exc}")
        except UnicodeDecodeError as exc:
            return cls(RunStatus.ERROR, f"Error during '{name}' parsing: {exc}")
        except OSError as exc:
            return cls(RunStatus.ERROR, f"Could not open '{name}': {exc}")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            return cls(RunStatus.ERROR, f"Error during '{name}' parsing: {exc}")
        if not isinstance(payload, dict):
            return cls(RunStatus.ERROR, f"Error during '{name}' parsing: expected a JSON object")

        raw_status = payload.get("status")
        reason = payload.get("reason") or ""
        try:
            status = RunStatus(raw_status)
        except ValueError:
            status = RunStatus.ERROR
            reason = reason or f"Unsupported status {raw_status!r} in '{name}'"
        return cls(status, str(reason), payload.get("results"))

    def to_form(self) -> bytes:
        data = {
            "status": self.status.value,
            "reason": self.reason,
            "result": json.dumps(self.results),
        }
        return urlencode(data).encode("ascii")


def decode_host_list(body: bytes, role: str) -> EndpointPool:
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ResponseDecodeError(f"{role} list is not JSON: {exc}") from exc
    if not isinstance(payload, list) or not all(isinstance(item, str) for item in payload):
        raise ResponseDecodeError(f"{role} list must be a JSON array of strings")
    return EndpointPool(role=role, hosts=tuple(payload))


def _as_job_id(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ResponseDecodeError(f"simulation_id must be a number, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ResponseDecodeError(f"simulation_id must be integral, got {value!r}")
    return int(value)


def decode_next_simulation(body: bytes) -> SimulationJob:
    """Decode a ``next_simulation`` response into a :class:`SimulationJob`.

    Unrecognized statuses are folded into ``error`` so the caller only
    has four cases to handle. Structural problems raise
    :class:`ResponseDecodeError`.
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ResponseDecodeError(f"next_simulation body is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ResponseDecodeError("next_simulation body must be a JSON object")

    raw_status = payload.get("status")
    try:
        status = AcquisitionStatus(raw_status)
    except ValueError:
        return SimulationJob(acquisition_status=AcquisitionStatus.ERROR)

    if status is AcquisitionStatus.WAIT:
        duration = payload.get("duration_in_seconds", 0)
        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
            raise ResponseDecodeError(f"duration_in_seconds must be a non-negative number, got {duration!r}")
        return SimulationJob(acquisition_status=status, wait_seconds=float(duration))

    if status is not AcquisitionStatus.OK:
        return SimulationJob(acquisition_status=status)

    input_parameters = payload.get("input_parameters") or {}
    constraints = payload.get("execution_constraints") or {}
    if not isinstance(input_parameters, dict):
        raise ResponseDecodeError("input_parameters must be a JSON object")
    if not isinstance(constraints, dict):
        raise ResponseDecodeError("execution_constraints must be a JSON object")
    return SimulationJob(
        acquisition_status=status,
        job_id=_as_job_id(payload.get("simulation_id")),
        input_parameters=input_parameters,
        execution_constraints=constraints,
    )


def decode_status_reply(body: bytes) -> tuple[str | None, str | None]:
    """Return ``(status, reason)`` from a coordinator acknowledgement, if any."""
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ResponseDecodeError(f"reply is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ResponseDecodeError("reply must be a JSON object")
    status = payload.get("status")
    reason = payload.get("reason")
    return (
        str(status) if status is not None else None,
        str(reason) if reason is not None else None,
    )
