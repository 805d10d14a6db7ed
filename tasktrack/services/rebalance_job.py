"""
Rebalance job for position groups.

Rewrites the positions of one group into an evenly spaced sequence
(spacing, 2 * spacing, ...), atomically and only if the group still needs it.
Running it again on an already compacted group writes nothing, so duplicate
deliveries from the queue are harmless.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktrack.database import DatabaseManager, TaskORM
from tasktrack.logging_config import get_logger
from tasktrack.models import PositionGroup, RebalanceResult
from tasktrack.policy import DEFAULT_POLICY, PositioningPolicy
from tasktrack.services.rebalance_trigger import group_filter, needs_rebalancing
from tasktrack.services.recursion_guard import rebalancing

logger = get_logger(__name__)


class RebalanceError(Exception):
    """Raised when a group could not be rebalanced."""
    pass


async def rebalance_group(
    session: AsyncSession,
    group: PositionGroup,
    policy: PositioningPolicy = DEFAULT_POLICY,
    spacing: Optional[int] = None,
    force: bool = False,
) -> RebalanceResult:
    """
    Re-space the kept members of ``group`` inside the given session.

    Members keep their current order (position, then creation time, then id).
    Only rows whose position changes are written; no activity log entries are
    recorded and ``reordered_at`` is left alone. The caller owns the
    transaction, so the rewrite is applied or rolled back as a whole.

    Args:
        session: Active async database session
        group: Group to compact
        policy: Thresholds and default spacing
        spacing: Override for the distance between members
        force: Rewrite even if the thresholds say the group is healthy

    Returns:
        RebalanceResult describing what happened

    Raises:
        RebalanceError: If the spacing is too small to leave room between
            members, or the group is too large to fit under the ceiling
    """
    spacing = spacing if spacing is not None else policy.spacing
    if spacing < 2:
        raise RebalanceError(f"Spacing must be at least 2, got {spacing}")

    query = (
        group_filter(select(TaskORM), group)
        .order_by(TaskORM.position, TaskORM.created_at, TaskORM.id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(query)
    members = list(result.scalars().all())

    if len(members) < 2:
        logger.debug(f"Rebalance of group {group} skipped: {len(members)} member(s)")
        return RebalanceResult(
            group=group, checked=len(members), reason="fewer than two members"
        )

    if not force and not needs_rebalancing([m.position for m in members], policy):
        logger.debug(f"Rebalance of group {group} no longer needed")
        return RebalanceResult(
            group=group, checked=len(members), reason="positions already healthy"
        )

    if spacing * len(members) > policy.ceiling:
        fitted = policy.ceiling // len(members)
        if fitted < 2:
            raise RebalanceError(
                f"Group {group} has {len(members)} members, too many to fit under "
                f"the ceiling {policy.ceiling}"
            )
        logger.warning(
            f"Spacing for group {group} reduced from {spacing} to {fitted} "
            f"to stay under the ceiling"
        )
        spacing = fitted

    updated = 0
    for index, member in enumerate(members, start=1):
        new_position = spacing * index
        if member.position != new_position:
            member.position = new_position
            updated += 1

    await session.flush()

    logger.info(
        f"Rebalanced group {group}: members={len(members)}, updated={updated}, spacing={spacing}"
    )
    return RebalanceResult(
        group=group,
        checked=len(members),
        rebalanced=True,
        updated=updated,
        reason="forced" if force else "gap or ceiling threshold crossed",
    )


class RebalanceJob:
    """
    Asynchronous unit of work that compacts one position group.

    Each run opens its own session, so the rewrite commits or rolls back as a
    single transaction. Storage errors propagate to the caller (normally the
    RebalanceWorker, which retries).
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        policy: Optional[PositioningPolicy] = None
    ) -> None:
        """
        Initialize the job.

        Args:
            db_manager: Initialized database manager
            policy: Thresholds and spacing (defaults to DEFAULT_POLICY)
        """
        self.db_manager = db_manager
        self.policy = policy or DEFAULT_POLICY

    async def run(self, group: PositionGroup) -> RebalanceResult:
        """
        Re-check and, if still needed, rewrite the positions of ``group``.

        Args:
            group: Group to compact

        Returns:
            RebalanceResult for the run

        Raises:
            Exception: Any storage error; nothing is written in that case
        """
        logger.debug(f"Rebalance job started for group {group}")
        with rebalancing():
            try:
                async with self.db_manager.get_session() as session:
                    return await rebalance_group(session, group, self.policy)
            except Exception as e:
                logger.error(f"Rebalance job failed for group {group}: {e}", exc_info=True)
                raise
