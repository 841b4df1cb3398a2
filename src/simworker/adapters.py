from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path

from .app_logging import log_with_fields
from .errors import AdapterError
from .utils import tail_lines

INPUT_WRITER = "input_writer"
EXECUTOR = "executor"
OUTPUT_READER = "output_reader"
PROGRESS_MONITOR = "progress_monitor"

STDOUT_LOG = "_stdout.txt"
ABORT_POLL_SECONDS = 0.2


class AdapterRunner:
    """Runs code base adapters inside a job directory.

    Each adapter's stdout and stderr are appended to the job's shared log
    file. A non-zero exit raises :class:`AdapterError` with the log tail.
    """

    def __init__(self, code_base_dir: Path, logger: logging.Logger, tail_count: int = 100) -> None:
        self.code_base_dir = code_base_dir
        self.logger = logger
        self.tail_count = tail_count

    def path_of(self, adapter: str) -> Path:
        return self.code_base_dir / adapter

    def has(self, adapter: str) -> bool:
        return self.path_of(adapter).is_file()

    def log_tail(self, job_dir: Path) -> str:
        return tail_lines(job_dir / STDOUT_LOG, self.tail_count)

    def run(
        self,
        adapter: str,
        job_dir: Path,
        *args: str,
        abort: threading.Event | None = None,
    ) -> None:
        """Run ``adapter`` to completion.

        When ``abort`` is set while the adapter is running the process is
        terminated and :class:`AdapterError` is raised.
        """
        executable = self.path_of(adapter)
        if not executable.is_file():
            raise AdapterError(adapter, f"{executable} does not exist", self.log_tail(job_dir))

        # Through sh so that adapter scripts without a shebang line still run.
        cmd = ["sh", "-c", '"$0" "$@"', str(executable), *args]
        log_with_fields(self.logger, logging.INFO, "adapter_started", adapter=adapter, cwd=str(job_dir))
        try:
            with (job_dir / STDOUT_LOG).open("ab") as log_file:
                process = subprocess.Popen(
                    cmd,
                    cwd=job_dir,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                )
                returncode = self._wait(process, abort)
        except OSError as exc:
            self._fail(adapter, cmd, job_dir, str(exc))

        if returncode is None:
            self._fail(adapter, cmd, job_dir, "aborted because a sibling adapter failed")
        self._require_ok(adapter, cmd, job_dir, returncode)
        log_with_fields(self.logger, logging.INFO, "adapter_finished", adapter=adapter)

    def _wait(self, process: subprocess.Popen, abort: threading.Event | None) -> int | None:
        if abort is None:
            return process.wait()
        while True:
            try:
                return process.wait(timeout=ABORT_POLL_SECONDS)
            except subprocess.TimeoutExpired:
                if abort.is_set():
                    process.terminate()
                    process.wait()
                    return None

    def _require_ok(self, adapter: str, cmd: list[str], job_dir: Path, returncode: int) -> None:
        if returncode != 0:
            self._fail(adapter, cmd, job_dir, f"exit code {returncode}")

    def _fail(self, adapter: str, cmd: list[str], job_dir: Path, detail: str) -> None:
        log_with_fields(
            self.logger,
            logging.ERROR,
            "adapter_failed",
            adapter=adapter,
            command=" ".join(cmd[3:]),
            error=detail,
            hint=f"check if '{adapter}' executes correctly on the selected infrastructure",
        )
        raise AdapterError(adapter, detail, self.log_tail(job_dir))
