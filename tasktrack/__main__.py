"""Entry point for tasktrack.

This module allows running tasktrack as a module:
    python -m tasktrack worker

Or as an installed command:
    tasktrack rebalance <JOB_ID>
"""

import argparse
import asyncio
import sys
from typing import Optional
from uuid import UUID

from tasktrack.logging_config import setup_logging, get_logger

# Initialize logger for this module
logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tasktrack",
        description="Task ordering and rebalancing engine",
    )
    parser.add_argument("--config", help="Path to settings.ini")
    parser.add_argument("--log-level", help="Override TASKTRACK_LOG_LEVEL")
    parser.add_argument("--policy", help="Path to a positioning TOML file (overrides settings.ini)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    worker = subparsers.add_parser("worker", help="Drain the rebalance queue")
    worker.add_argument("--once", action="store_true", help="Run a single pass and exit")

    rebalance = subparsers.add_parser("rebalance", help="Rebalance one group now")
    rebalance.add_argument("job_id", type=UUID)
    rebalance.add_argument("--parent-id", type=UUID, default=None)
    rebalance.add_argument("--spacing", type=int, default=None)
    rebalance.add_argument("--force", action="store_true", help="Rewrite even if healthy")

    subparsers.add_parser("queue", help="Show the rebalance queue")
    return parser


async def _run(options: argparse.Namespace) -> int:
    # Import here to keep --help fast and avoid circular imports
    from pathlib import Path

    from tasktrack.config import Config
    from tasktrack.database import DatabaseManager
    from tasktrack.policy import PositioningPolicy
    from tasktrack.services.rebalance_queue import STATUS_FAILED, RebalanceQueue
    from tasktrack.services.rebalance_worker import RebalanceWorker
    from tasktrack.services.task_service import JobNotFoundError, TaskService

    config = Config(Path(options.config) if options.config else None)
    if options.policy:
        policy = PositioningPolicy.from_toml_file(Path(options.policy))
    else:
        policy = config.get_positioning_policy()
    db_manager = DatabaseManager(config.get_database_config()['url'])
    await db_manager.initialize()

    try:
        if options.command == "worker":
            worker = RebalanceWorker(db_manager, policy, **config.get_worker_config())
            if options.once:
                counts = await worker.run_pending()
                print(
                    f"succeeded={counts['succeeded']} retrying={counts['retrying']} "
                    f"failed={counts['failed']}"
                )
                return 0 if counts['failed'] == 0 else 1
            await worker.run_forever()
            return 0

        if options.command == "rebalance":
            try:
                async with db_manager.get_session() as session:
                    result = await TaskService(session, policy=policy).rebalance_now(
                        options.job_id,
                        parent_id=options.parent_id,
                        spacing=options.spacing,
                        force=options.force,
                    )
            except JobNotFoundError as e:
                print(str(e), file=sys.stderr)
                return 2
            print(
                f"group={result.group} checked={result.checked} "
                f"rebalanced={result.rebalanced} updated={result.updated} ({result.reason})"
            )
            return 0

        async with db_manager.get_session() as session:
            queue = RebalanceQueue(session)
            pending = await queue.count()
            failed = await queue.count(STATUS_FAILED)
        print(f"pending={pending} failed={failed}")
        return 0
    finally:
        await db_manager.close()


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point for tasktrack.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]

    options = _build_parser().parse_args(args)

    # Initialize logging before any other operations
    setup_logging(log_level=options.log_level, console=options.command == "worker")

    try:
        return asyncio.run(_run(options))
    except KeyboardInterrupt:
        # Graceful shutdown on Ctrl+C
        logger.info("tasktrack stopped by user (Ctrl+C)")
        return 0
    except Exception:
        logger.error("Error running tasktrack", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
