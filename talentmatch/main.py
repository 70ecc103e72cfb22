"""Main entry point for the match engine worker service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Tuple

from talentmatch.admin import AdminService
from talentmatch.config.environment import EnvironmentConfig
from talentmatch.config.exceptions import ConfigurationError
from talentmatch.config.loader import load_config
from talentmatch.config.models import AppConfig
from talentmatch.logging import get_logger
from talentmatch.logging.config import configure_logging
from talentmatch.persistence.database import close_database, get_session, init_database
from talentmatch.queue import RecomputeWorker
from talentmatch.scheduler import SchedulerService

logger = get_logger(__name__, component="cli")


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load and prepare runtime configuration.

    Args:
        config_path: Path to configuration file (None searches the defaults)
        log_level_override: Log level from CLI (takes precedence)

    Returns:
        Tuple of (AppConfig, EnvironmentConfig) with the effective log level set

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    # Log level priority: CLI > Environment > Config
    if log_level_override:
        env_config.log_level = log_level_override
    elif env_config.log_level:
        pass
    elif app_config.logging and app_config.logging.level:
        env_config.log_level = app_config.logging.level
    else:
        env_config.log_level = "INFO"

    return app_config, env_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Talent Match Engine - recomputation worker for student/listing match scores"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--manual-run",
        action="store_true",
        help="Drain one batch from the queue and exit (exit code 1 on failures)",
    )
    mode.add_argument(
        "--sweep",
        action="store_true",
        help="Run one staleness sweep and exit",
    )
    mode.add_argument(
        "--stats",
        action="store_true",
        help="Print engine statistics as JSON and exit",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    return parser


def print_statistics(app_config: AppConfig) -> None:
    with get_session() as session:
        stats = AdminService(session, app_config.queue).get_statistics()
    print(json.dumps(stats.to_dict(), indent=2, sort_keys=True))


def run_daemon(worker: RecomputeWorker, app_config: AppConfig) -> None:
    """Run the drain and sweep jobs until SIGINT/SIGTERM."""
    shutdown_event = threading.Event()

    scheduler_service = SchedulerService(
        drain_callable=worker.drain_once,
        drain_interval_seconds=app_config.queue.worker_interval_seconds,
        sweep_callable=worker.sweep_once,
        sweep_interval_seconds=app_config.queue.sweep_interval_seconds,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum}
        )
        scheduler_service.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler_service.start()

    logger.info(
        "Scheduler started. Press Ctrl+C to stop",
        extra={"event": "service.daemon_mode.started", "worker_id": worker.worker_id}
    )

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info(
            "Keyboard interrupt received, shutting down",
            extra={"event": "service.keyboard_interrupt"}
        )
        scheduler_service.shutdown(wait=False)


def main(argv=None) -> int:
    """
    Main entry point for the match engine.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        # Configuration first, so logging can use the configured format
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "Talent Match Engine starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "manual_run": args.manual_run,
                "marketplace_type": app_config.matching.marketplace_type.value,
            },
        )

        init_database(env_config.database_url)

        try:
            if args.stats:
                print_statistics(app_config)
                return 0

            worker = RecomputeWorker(app_config, worker_id=env_config.worker_id)

            if args.sweep:
                result = worker.sweep_once()
                logger.info(
                    f"Manual sweep completed: {result.enqueued} enqueued, "
                    f"{result.released_claims} claims released",
                    extra={"event": "service.manual_sweep.completed"},
                )
                return 0

            if args.manual_run:
                logger.info(
                    "Executing manual drain",
                    extra={"event": "service.manual_run.starting"}
                )
                result = worker.drain_once()
                logger.info(
                    f"Manual drain completed: "
                    f"{result.claimed} claimed, "
                    f"{result.written} written, "
                    f"{result.rejected} rejected, "
                    f"{result.retried} retried, "
                    f"{result.dead_lettered} dead-lettered",
                    extra={
                        "event": "service.manual_run.completed",
                        "duration_seconds": result.total_duration_seconds,
                        "had_errors": result.had_errors,
                    },
                )
                return 1 if result.had_errors else 0

            run_daemon(worker, app_config)
            return 0

        finally:
            close_database()
            logger.info(
                "Talent Match Engine stopped",
                extra={
                    "event": "service.stopping",
                    "uptime_seconds": round(time.time() - start_time, 2),
                },
            )

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"}
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
