"""
Durable queue of pending rebalance jobs.

Rows are stored in SQLite and survive restarts. Delivery is at-least-once:
a row is only removed after its job ran successfully, and the same group may
be queued more than once.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktrack.database import RebalanceJobORM
from tasktrack.logging_config import get_logger
from tasktrack.models import PositionGroup

logger = get_logger(__name__)

STATUS_PENDING = "pending"
STATUS_FAILED = "failed"


class RebalanceQueue:
    """
    Manages the queue of groups waiting to be rebalanced.

    ``schedule`` only flushes, so a rebalance requested during a write is
    committed or rolled back together with that write.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the rebalance queue.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def schedule(self, group: PositionGroup) -> None:
        """
        Queue a rebalance for ``group``.

        Args:
            group: Position group to compact
        """
        now = datetime.utcnow()
        entry = RebalanceJobORM(
            job_id=str(group.job_id),
            parent_id=str(group.parent_id) if group.parent_id else None,
            status=STATUS_PENDING,
            attempts=0,
            created_at=now,
            available_at=now,
        )
        self.session.add(entry)
        await self.session.flush()

        logger.debug(f"Queued rebalance for group {group} (entry {entry.id})")

    async def get_due(self, limit: int = 20, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Get pending entries whose retry delay has elapsed, oldest first.

        Args:
            limit: Maximum number of entries
            now: Reference time (defaults to utcnow)

        Returns:
            List of dictionaries with id, group and attempts
        """
        now = now or datetime.utcnow()
        result = await self.session.execute(
            select(RebalanceJobORM)
            .where(
                RebalanceJobORM.status == STATUS_PENDING,
                RebalanceJobORM.available_at <= now,
            )
            .order_by(RebalanceJobORM.available_at.asc(), RebalanceJobORM.id.asc())
            .limit(limit)
        )
        return [self._to_dict(entry) for entry in result.scalars().all()]

    async def get_all(self) -> List[Dict[str, Any]]:
        """
        Get every queued entry, including failed ones, in creation order.

        Returns:
            List of entry dictionaries
        """
        result = await self.session.execute(
            select(RebalanceJobORM).order_by(RebalanceJobORM.id.asc())
        )
        return [self._to_dict(entry) for entry in result.scalars().all()]

    async def complete(self, entry_id: int) -> None:
        """
        Remove an entry after its job ran successfully.

        Args:
            entry_id: Database ID of the entry
        """
        await self.session.execute(
            delete(RebalanceJobORM).where(RebalanceJobORM.id == entry_id)
        )
        await self.session.flush()
        logger.debug(f"Completed rebalance entry {entry_id}")

    async def mark_failed(
        self,
        entry_id: int,
        error: str,
        retry_delay: float = 30.0,
        max_attempts: int = 5,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Record a failed attempt and schedule a retry with linear back-off.

        Args:
            entry_id: Database ID of the entry
            error: Error message to store
            retry_delay: Base delay in seconds, multiplied by the attempt count
            max_attempts: Attempts after which the entry is given up on
            now: Reference time (defaults to utcnow)

        Returns:
            True if the entry will be retried, False if it is now failed
        """
        entry = await self.session.get(RebalanceJobORM, entry_id)
        if entry is None:
            logger.warning(f"Rebalance entry {entry_id} vanished before it could be marked failed")
            return False

        now = now or datetime.utcnow()
        entry.attempts += 1
        entry.last_error = error[:2000]

        if entry.attempts >= max_attempts:
            entry.status = STATUS_FAILED
            logger.error(
                f"Rebalance entry {entry_id} failed permanently after {entry.attempts} attempts: {error}"
            )
            retrying = False
        else:
            entry.available_at = now + timedelta(seconds=retry_delay * entry.attempts)
            logger.warning(
                f"Rebalance entry {entry_id} failed (attempt {entry.attempts}), "
                f"retrying at {entry.available_at.isoformat()}: {error}"
            )
            retrying = True

        await self.session.flush()
        return retrying

    async def count(self, status: Optional[str] = STATUS_PENDING) -> int:
        """
        Get the number of queued entries.

        Args:
            status: Only count entries with this status; None counts all

        Returns:
            Count of entries
        """
        query = select(func.count()).select_from(RebalanceJobORM)
        if status is not None:
            query = query.where(RebalanceJobORM.status == status)
        result = await self.session.execute(query)
        return result.scalar() or 0

    @staticmethod
    def _to_dict(entry: RebalanceJobORM) -> Dict[str, Any]:
        return {
            'id': entry.id,
            'group': PositionGroup(
                job_id=UUID(entry.job_id),
                parent_id=UUID(entry.parent_id) if entry.parent_id else None,
            ),
            'status': entry.status,
            'attempts': entry.attempts,
            'last_error': entry.last_error,
            'available_at': entry.available_at,
        }
