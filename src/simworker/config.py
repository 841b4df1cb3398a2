from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_TIMEOUT_SECONDS = 60


@dataclass(slots=True)
class TransportConfig:
    development: bool = False
    insecure_ssl: bool = False
    certificate_path: Path | None = None

    @property
    def scheme(self) -> str:
        return "http" if self.development else "https"


@dataclass(slots=True)
class PipelineConfig:
    progress_interval_seconds: float = 10
    progress_timeout_seconds: float = 30
    acquisition_retry_seconds: float = 5
    log_tail_lines: int = 100


@dataclass(slots=True)
class WorkerConfig:
    experiment_id: str
    information_service_url: str
    user: str
    password: str
    root_dir: Path
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    start_at: str | None = None
    log_path: Path | None = None
    transport: TransportConfig = field(default_factory=TransportConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @property
    def experiment_dir(self) -> Path:
        return self.root_dir / f"experiment_{self.experiment_id}"

    @property
    def code_base_dir(self) -> Path:
        return self.experiment_dir / "code_base"


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def load_config(path: str | Path) -> WorkerConfig:
    config_path = Path(path).expanduser().resolve()
    # JSON is a subset of YAML, so the platform's config.json loads unchanged.
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    def to_path(value: object) -> Path:
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    timeout = float(raw.get("timeout") or 0)
    if timeout <= 0:
        timeout = DEFAULT_TIMEOUT_SECONDS

    certificate = raw.get("scalarm_certificate_path") or raw.get("certificate_path")
    transport = TransportConfig(
        development=_as_bool(raw.get("development", False)),
        insecure_ssl=_as_bool(raw.get("insecure_ssl", False)),
        certificate_path=to_path(certificate) if certificate else None,
    )

    pipeline_raw = raw.get("pipeline", {}) or {}
    if not isinstance(pipeline_raw, dict):
        raise ValueError("`pipeline` must be a mapping")
    pipeline = PipelineConfig(
        progress_interval_seconds=float(pipeline_raw.get("progress_interval_seconds", 10)),
        progress_timeout_seconds=float(pipeline_raw.get("progress_timeout_seconds", 30)),
        acquisition_retry_seconds=float(pipeline_raw.get("acquisition_retry_seconds", 5)),
        log_tail_lines=int(pipeline_raw.get("log_tail_lines", 100)),
    )
    if pipeline.progress_interval_seconds < 0:
        raise ValueError("`pipeline.progress_interval_seconds` must be >= 0")
    if pipeline.log_tail_lines < 1:
        raise ValueError("`pipeline.log_tail_lines` must be >= 1")

    start_at = raw.get("start_at")
    log_path = raw.get("log_path")
    return WorkerConfig(
        experiment_id=str(_require(raw, "experiment_id", "root")),
        information_service_url=str(_require(raw, "information_service_url", "root")),
        user=str(_require(raw, "experiment_manager_user", "root")),
        password=str(_require(raw, "experiment_manager_pass", "root")),
        root_dir=to_path(raw.get("root_dir", ".")),
        timeout_seconds=timeout,
        start_at=str(start_at) if start_at else None,
        log_path=to_path(log_path) if log_path else None,
        transport=transport,
        pipeline=pipeline,
    )


def ensure_local_paths(config: WorkerConfig) -> None:
    config.experiment_dir.mkdir(parents=True, exist_ok=True)
    if config.log_path is not None:
        config.log_path.parent.mkdir(parents=True, exist_ok=True)
