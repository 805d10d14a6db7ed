"""
Position assignment for tasks in draggable, hierarchical lists.

Computes the ordering key of a task that is being inserted or moved, from a
snapshot of its siblings. The computation is pure: it only touches the task
it is given and never writes to siblings or to the database.
"""

import random
from typing import Optional, Sequence

from tasktrack.logging_config import get_logger
from tasktrack.models import Task
from tasktrack.policy import DEFAULT_POLICY, PositioningPolicy

logger = get_logger(__name__)


class PositionAssigner:
    """
    Assigns integer positions following the placement directives on a task.

    Placement rules, in priority order:
    1. A finalized position is left untouched.
    2. ``insert_at_top`` places the task below the current minimum.
    3. ``insert_after_id`` places the task after an anchor sibling. An anchor
       that is not a member of the group is ignored.
    4. Otherwise the task is appended at the end of the group.

    Random placement inside gaps keeps concurrent inserts against the same
    anchor from landing on the same value; it does not guarantee uniqueness.
    """

    def __init__(
        self,
        policy: Optional[PositioningPolicy] = None,
        rng: Optional[random.Random] = None
    ) -> None:
        """
        Initialize the assigner.

        Args:
            policy: Positioning constants (defaults to DEFAULT_POLICY)
            rng: Random source, injectable for deterministic tests
        """
        self.policy = policy or DEFAULT_POLICY
        self.rng = rng or random.Random()

    def assign(self, task: Task, siblings: Sequence[Task]) -> Task:
        """
        Compute and set ``task.position``, then clear its directives.

        Args:
            task: Task being inserted or repositioned
            siblings: Other kept members of the task's group. The task itself
                is ignored if present.

        Returns:
            The same task instance, with ``position_finalized`` set
        """
        if task.position_finalized:
            return task

        ordered = sorted(
            (s for s in siblings if s.id != task.id and s.position is not None),
            key=lambda s: s.sort_key(),
        )

        if task.insert_at_top:
            position = self._top_position(ordered)
            placement = "top"
        elif task.insert_after_id is not None:
            anchor = next((s for s in ordered if s.id == task.insert_after_id), None)
            if anchor is None:
                logger.debug(
                    f"Anchor {task.insert_after_id} not in group {task.group}, appending task {task.id}"
                )
                position = self._end_position(ordered)
                placement = "end"
            else:
                position = self._after_position(anchor, ordered)
                placement = f"after {anchor.id}"
        else:
            position = self._end_position(ordered)
            placement = "end"

        task.position = position
        task.clear_directives()
        task.position_finalized = True

        logger.debug(
            f"Assigned position {position} to task {task.id} ({placement}, "
            f"group={task.group}, siblings={len(ordered)})"
        )
        return task

    # ==============================================================================
    # PLACEMENT RULES
    # ==============================================================================

    def _baseline(self) -> int:
        """Random starting position for the first member of a group."""
        return self.rng.randint(self.policy.baseline_min, self.policy.baseline_max)

    def _top_position(self, ordered: Sequence[Task]) -> int:
        """Position strictly below the current minimum."""
        if not ordered:
            return self._baseline()

        minimum = ordered[0].position
        upper = minimum - 1
        lower = max(minimum - self.policy.top_insert_offset, self.policy.top_insert_floor)

        # Minimum already at or below the floor: take the smallest step down
        if lower > upper:
            return upper
        return self.rng.randint(lower, upper)

    def _after_position(self, anchor: Task, ordered: Sequence[Task]) -> int:
        """Position following ``anchor`` and preceding its next sibling."""
        following = next((s for s in ordered if s.position > anchor.position), None)

        if following is None:
            return (
                anchor.position
                + self.policy.spacing
                + self.rng.randint(0, self.policy.append_jitter)
            )

        gap = following.position - anchor.position
        if gap <= 1:
            return anchor.position + 1

        # Keep to the middle share of the gap
        margin = int(gap * (1 - self.policy.middle_fraction) / 2)
        low = max(anchor.position + margin, anchor.position + 1)
        high = min(following.position - margin, following.position - 1)
        return self.rng.randint(low, high)

    def _end_position(self, ordered: Sequence[Task]) -> int:
        """Position after the current maximum."""
        if not ordered:
            return self._baseline()
        return ordered[-1].position + self.policy.spacing
