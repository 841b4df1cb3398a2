from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml

from .app_logging import LOGGER_NAME, log_with_fields, setup_logger
from .config import WorkerConfig, ensure_local_paths, load_config
from .errors import AdapterError, UnrecoverableError
from .transport import RequestDispatcher, build_session
from .worker import Worker


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="simworker", description="Simulation run worker agent")
    parser.add_argument("--config", default="config.json", help="Path to worker config (JSON or YAML)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Pull and execute simulation runs until the experiment ends")
    run_parser.add_argument(
        "--once",
        action="store_true",
        help="Execute a single simulation run, then exit",
    )
    return parser


def print_log_tail(error: AdapterError, count: int, stream=None) -> None:
    stream = stream or sys.stderr
    print(f"----------\nLast {count} lines of the simulation log:\n----------", file=stream)
    print(error.log_tail, file=stream)


def execute(worker: Worker, *, once: bool = False) -> int:
    """Run ``worker`` and turn its outcome into a process exit code."""
    logger = worker.logger
    try:
        if once:
            worker.run_once()
            return 0
        worker.run_forever()
    except AdapterError as exc:
        log_with_fields(logger, logging.ERROR, "fatal_error", error=str(exc), exit_code=exc.exit_code)
        print_log_tail(exc, worker.config.pipeline.log_tail_lines)
        return exc.exit_code
    except UnrecoverableError as exc:
        level = logging.INFO if exc.exit_code == 0 else logging.ERROR
        log_with_fields(logger, level, "worker_finished", error=str(exc), exit_code=exc.exit_code)
        return exc.exit_code
    except KeyboardInterrupt:
        log_with_fields(logger, logging.INFO, "shutdown", reason="keyboard_interrupt")
        return 0
    except Exception as exc:
        log_with_fields(logger, logging.ERROR, "fatal_error", error=repr(exc), exit_code=1)
        return 1
    finally:
        worker.close()
    return 0


def cmd_run(config: WorkerConfig, *, once: bool = False) -> int:
    ensure_local_paths(config)
    logger = setup_logger(config.log_path)
    log_with_fields(logger, logging.INFO, "worker_starting", root_dir=str(config.root_dir), experiment=config.experiment_id)
    try:
        session = build_session(config)
    except ValueError as exc:
        log_with_fields(logger, logging.ERROR, "transport_invalid", error=str(exc))
        return 1
    dispatcher = RequestDispatcher(session, config.transport, config.timeout_seconds, logger)
    return execute(Worker(config, dispatcher, logger), once=once)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(Path(args.config))
    except (OSError, ValueError, yaml.YAMLError) as exc:
        setup_logger()
        log_with_fields(logging.getLogger(LOGGER_NAME), logging.ERROR, "config_invalid", error=str(exc))
        return 1

    if args.command == "run":
        return cmd_run(config, once=bool(args.once))
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
