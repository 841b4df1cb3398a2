from __future__ import annotations


class UnrecoverableError(RuntimeError):
    """Ends the worker process; ``exit_code`` is what the CLI exits with."""

    exit_code = 1


class TransportExhaustedError(UnrecoverableError):
    def __init__(self, role: str, service_path: str, attempted: list[str]) -> None:
        self.role = role
        self.service_path = service_path
        self.attempted = attempted
        super().__init__(
            f"could not execute request {service_path!r} against any {role} endpoint "
            f"(tried: {', '.join(attempted) or 'none'})"
        )


class DiscoveryError(UnrecoverableError):
    pass


class CodeBaseError(UnrecoverableError):
    exit_code = 2


class AdapterError(UnrecoverableError):
    def __init__(self, adapter: str, detail: str, log_tail: str = "") -> None:
        self.adapter = adapter
        self.detail = detail
        self.log_tail = log_tail
        super().__init__(f"'{adapter}' execution failed: {detail}")


class AcquisitionFailedError(UnrecoverableError):
    exit_code = 0


class ExperimentFinished(UnrecoverableError):
    exit_code = 0


class ResponseDecodeError(ValueError):
    """A service answered, but its body is not what the endpoint promises."""
