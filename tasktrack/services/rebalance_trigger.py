"""
Rebalance trigger for position groups.

Decides, after an insert or a position change, whether a group's positions
have become too dense or too large, and schedules a compaction when they have.
"""

from typing import Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktrack.database import TaskORM
from tasktrack.logging_config import get_logger
from tasktrack.models import PositionGroup
from tasktrack.policy import DEFAULT_POLICY, PositioningPolicy
from tasktrack.services.recursion_guard import is_rebalancing

logger = get_logger(__name__)


class Scheduler(Protocol):
    """Anything that can enqueue a rebalance for a group."""

    async def schedule(self, group: PositionGroup) -> None:
        ...


def needs_rebalancing(
    positions: Sequence[int],
    policy: PositioningPolicy = DEFAULT_POLICY
) -> bool:
    """
    Check whether a group's positions need compaction.

    Only positive gaps between consecutive positions are considered; equal
    neighbours are ignored. The ceiling check applies regardless of gaps.

    Args:
        positions: Member positions of one group
        policy: Thresholds to apply

    Returns:
        True if the smallest positive gap is below ``policy.min_gap`` or the
        largest position exceeds ``policy.ceiling``
    """
    ordered = sorted(positions)
    if len(ordered) < 2:
        return False

    if ordered[-1] > policy.ceiling:
        return True

    gaps = [b - a for a, b in zip(ordered, ordered[1:]) if b - a > 0]
    if not gaps:
        return False

    return min(gaps) < policy.min_gap


def group_filter(query, group: PositionGroup):
    """
    Restrict a TaskORM select to the kept members of one group.

    Args:
        query: SQLAlchemy select over TaskORM or its columns
        group: Group to scope to

    Returns:
        Filtered select statement
    """
    query = query.where(
        TaskORM.job_id == str(group.job_id),
        TaskORM.discarded_at.is_(None),
    )
    if group.parent_id is not None:
        return query.where(TaskORM.parent_id == str(group.parent_id))
    return query.where(TaskORM.parent_id.is_(None))


async def load_group_positions(session: AsyncSession, group: PositionGroup) -> list[int]:
    """
    Read the positions of a group's kept members in ascending order.

    Args:
        session: Active async database session
        group: Group to read

    Returns:
        Ordered list of positions
    """
    query = group_filter(select(TaskORM.position), group).order_by(TaskORM.position)
    result = await session.execute(query)
    return list(result.scalars().all())


class RebalanceTrigger:
    """
    Evaluates a group after a position-affecting write.

    Small groups are skipped, and so is any write made while the rebalance
    guard is active in the current execution context.
    """

    def __init__(
        self,
        session: AsyncSession,
        scheduler: Scheduler,
        policy: Optional[PositioningPolicy] = None
    ) -> None:
        """
        Initialize the trigger.

        Args:
            session: Active async database session used for the sibling read
            scheduler: Receives ``schedule(group)`` when compaction is needed
            policy: Thresholds (defaults to DEFAULT_POLICY)
        """
        self.session = session
        self.scheduler = scheduler
        self.policy = policy or DEFAULT_POLICY

    async def check(self, group: PositionGroup, skip_check: bool = False) -> bool:
        """
        Schedule a rebalance for ``group`` if its positions call for one.

        Args:
            group: Group that was just written to
            skip_check: Caller-supplied bypass, e.g. for writes that are part
                of a rebalance

        Returns:
            True if a rebalance was scheduled
        """
        if skip_check or is_rebalancing():
            logger.debug(f"Rebalance check skipped for group {group}")
            return False

        positions = await load_group_positions(self.session, group)
        if len(positions) < self.policy.min_members:
            return False

        if not needs_rebalancing(positions, self.policy):
            return False

        await self.scheduler.schedule(group)
        logger.info(
            f"Scheduled rebalance for group {group}: members={len(positions)}, "
            f"max_position={positions[-1]}"
        )
        return True
