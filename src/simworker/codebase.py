from __future__ import annotations

import logging
import shutil
import stat
import zipfile
from pathlib import Path

from .app_logging import log_with_fields
from .errors import CodeBaseError
from .services import ExperimentManagerClient

CODE_BASE_ARCHIVE = "code_base.zip"
BINARIES_ARCHIVE = "simulation_binaries.zip"
EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def extract_archive(archive: Path, destination: Path) -> None:
    try:
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(destination)
    except (OSError, zipfile.BadZipFile) as exc:
        raise CodeBaseError(f"could not extract '{archive.name}': {exc}") from exc


def mark_executable(directory: Path) -> None:
    for path in directory.iterdir():
        if path.is_file():
            path.chmod(path.stat().st_mode | EXECUTABLE_BITS)


def ensure_code_base(coordinator: ExperimentManagerClient, code_base_dir: Path, logger: logging.Logger) -> bool:
    """Download and unpack the experiment's adapters once.

    Returns ``False`` when the directory already exists from an earlier
    run. A failed install removes the directory so the next start retries.
    """
    if code_base_dir.exists():
        log_with_fields(logger, logging.INFO, "code_base_present", path=str(code_base_dir))
        return False

    code_base_dir.mkdir(parents=True)
    installed = False
    try:
        log_with_fields(logger, logging.INFO, "code_base_download", path=str(code_base_dir))
        body = coordinator.fetch_code_base()
        archive = code_base_dir / CODE_BASE_ARCHIVE
        archive.write_bytes(body)
        extract_archive(archive, code_base_dir)
        extract_archive(code_base_dir / BINARIES_ARCHIVE, code_base_dir)
        mark_executable(code_base_dir)
        installed = True
    except OSError as exc:
        raise CodeBaseError(f"could not install code base: {exc}") from exc
    finally:
        if not installed:
            shutil.rmtree(code_base_dir, ignore_errors=True)
    log_with_fields(logger, logging.INFO, "code_base_ready", path=str(code_base_dir))
    return True
