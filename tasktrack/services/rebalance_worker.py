"""
Background worker that drains the rebalance queue.

Each queued group is compacted by a RebalanceJob in its own transaction.
Successful entries are removed; failed ones are retried with linear back-off
until the attempt limit is reached.
"""

import asyncio
from datetime import datetime
from typing import Dict, Optional

from tasktrack.database import DatabaseManager
from tasktrack.logging_config import get_logger
from tasktrack.policy import PositioningPolicy
from tasktrack.services.rebalance_job import RebalanceJob
from tasktrack.services.rebalance_queue import RebalanceQueue

logger = get_logger(__name__)


class RebalanceWorker:
    """
    Polls the rebalance queue and runs due jobs.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        policy: Optional[PositioningPolicy] = None,
        batch_size: int = 20,
        max_attempts: int = 5,
        retry_delay: float = 30.0,
        poll_interval: float = 5.0,
    ):
        """
        Initialize the worker.

        Args:
            db_manager: Initialized database manager
            policy: Positioning policy passed to each job
            batch_size: Maximum entries handled per pass
            max_attempts: Attempts before an entry is marked failed
            retry_delay: Base retry delay in seconds
            poll_interval: Seconds between passes in ``run_forever``
        """
        self.db_manager = db_manager
        self.job = RebalanceJob(db_manager, policy)
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if a pass is currently in progress."""
        return self._running

    async def run_pending(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Run every due entry once.

        Args:
            now: Reference time for due-ness and retry scheduling

        Returns:
            Counts of ``succeeded``, ``retrying`` and ``failed`` entries
        """
        counts = {'succeeded': 0, 'retrying': 0, 'failed': 0}

        if self._running:
            logger.warning("Rebalance pass already in progress, skipping")
            return counts

        self._running = True
        try:
            async with self.db_manager.get_session() as session:
                due = await RebalanceQueue(session).get_due(self.batch_size, now)

            if not due:
                logger.debug("No rebalance jobs due")
                return counts

            for entry in due:
                try:
                    result = await self.job.run(entry['group'])
                except Exception as e:
                    async with self.db_manager.get_session() as session:
                        retrying = await RebalanceQueue(session).mark_failed(
                            entry['id'],
                            f"{type(e).__name__}: {e}",
                            retry_delay=self.retry_delay,
                            max_attempts=self.max_attempts,
                            now=now,
                        )
                    counts['retrying' if retrying else 'failed'] += 1
                    continue

                async with self.db_manager.get_session() as session:
                    await RebalanceQueue(session).complete(entry['id'])
                counts['succeeded'] += 1
                logger.debug(
                    f"Rebalance entry {entry['id']} done: rebalanced={result.rebalanced}, "
                    f"updated={result.updated}"
                )

            logger.info(
                f"Rebalance pass complete: {counts['succeeded']} succeeded, "
                f"{counts['retrying']} retrying, {counts['failed']} failed"
            )
            return counts
        finally:
            self._running = False

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Poll the queue until ``stop_event`` is set.

        Args:
            stop_event: Event that ends the loop; a fresh one is used if omitted
        """
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Rebalance worker started (poll_interval={self.poll_interval}s)")

        while not stop_event.is_set():
            try:
                await self.run_pending()
            except Exception as e:
                logger.error(f"Error in rebalance polling loop: {e}", exc_info=True)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Rebalance worker stopped")
