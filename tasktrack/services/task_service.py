"""
Task service for tasktrack.

Implements task creation, movement and removal with database persistence.
Every insert and every position change runs through the position assigner
before it is flushed and through the rebalance trigger afterwards.
"""

import random
from datetime import datetime
from typing import Any, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktrack.database import JobORM, TaskORM
from tasktrack.logging_config import get_logger
from tasktrack.models import PositionGroup, RebalanceResult, RelativeMove, Task
from tasktrack.policy import DEFAULT_POLICY, PositioningPolicy
from tasktrack.services.activity_log import ActivityLog
from tasktrack.services.position_assigner import PositionAssigner
from tasktrack.services.rebalance_job import rebalance_group
from tasktrack.services.rebalance_queue import RebalanceQueue
from tasktrack.services.rebalance_trigger import RebalanceTrigger, Scheduler, group_filter
from tasktrack.services.recursion_guard import rebalancing

logger = get_logger(__name__)

# Sentinel for "parent not given" in reposition_task
_UNSET: Any = object()


class TaskServiceError(Exception):
    """Base exception for task service errors."""
    pass


class TaskNotFoundError(TaskServiceError):
    """Raised when a task is not found."""
    pass


class JobNotFoundError(TaskServiceError):
    """Raised when a job is not found."""
    pass


class InvalidParentError(TaskServiceError):
    """Raised when a parent would be in another job, or would create a cycle."""
    pass


class TaskService:
    """
    Service layer for task operations.

    Handles CRUD operations for tasks with database persistence, position
    assignment within (job, parent) groups and rebalance scheduling.
    """

    def __init__(
        self,
        session: AsyncSession,
        scheduler: Optional[Scheduler] = None,
        activity_log: Optional[ActivityLog] = None,
        policy: Optional[PositioningPolicy] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize task service with database session.

        Args:
            session: Active async database session
            scheduler: Receives rebalance requests (defaults to a durable
                RebalanceQueue on the same session)
            activity_log: Optional ActivityLog for user-visible changes
            policy: Positioning policy (defaults to DEFAULT_POLICY)
            rng: Random source for the position assigner
        """
        self.session = session
        self.policy = policy or DEFAULT_POLICY
        self.scheduler = scheduler if scheduler is not None else RebalanceQueue(session)
        self.activity_log = activity_log
        self.assigner = PositionAssigner(self.policy, rng)
        self.trigger = RebalanceTrigger(session, self.scheduler, self.policy)

    async def _record_activity(self, action: str, task: Task, data: dict) -> None:
        """
        Record activity if an activity log is configured.

        Args:
            action: Action name
            task: Task the action applies to
            data: Action-specific payload
        """
        if self.activity_log:
            await self.activity_log.record(action, task.id, task.job_id, data)

    # ==============================================================================
    # CONVERSION HELPERS
    # ==============================================================================

    @staticmethod
    def _orm_to_pydantic(task_orm: TaskORM) -> Task:
        """
        Convert TaskORM to Pydantic Task model.

        Args:
            task_orm: SQLAlchemy ORM task instance

        Returns:
            Pydantic Task instance
        """
        return Task(
            id=UUID(task_orm.id),
            title=task_orm.title,
            job_id=UUID(task_orm.job_id),
            parent_id=UUID(task_orm.parent_id) if task_orm.parent_id else None,
            position=task_orm.position,
            position_finalized=task_orm.position_finalized,
            created_at=task_orm.created_at,
            reordered_at=task_orm.reordered_at,
            discarded_at=task_orm.discarded_at,
        )

    @staticmethod
    def _pydantic_to_orm(task: Task) -> TaskORM:
        """
        Convert Pydantic Task to TaskORM model.

        Args:
            task: Pydantic Task instance with an assigned position

        Returns:
            SQLAlchemy ORM task instance
        """
        return TaskORM(
            id=str(task.id),
            title=task.title,
            job_id=str(task.job_id),
            parent_id=str(task.parent_id) if task.parent_id else None,
            position=task.position,
            position_finalized=task.position_finalized,
            created_at=task.created_at,
            reordered_at=task.reordered_at,
            discarded_at=task.discarded_at,
        )

    # ==============================================================================
    # VALIDATION HELPERS
    # ==============================================================================

    async def _verify_job_exists(self, job_id: UUID) -> None:
        """
        Verify that a job exists.

        Args:
            job_id: UUID of the job

        Raises:
            JobNotFoundError: If job does not exist
        """
        job_orm = await self.session.get(JobORM, str(job_id))
        if not job_orm:
            raise JobNotFoundError(f"Job with id {job_id} not found")

    async def _get_task_or_raise(self, task_id: UUID) -> TaskORM:
        """
        Get a kept task by ID or raise an exception.

        Args:
            task_id: UUID of the task

        Returns:
            TaskORM instance

        Raises:
            TaskNotFoundError: If task does not exist or was discarded
        """
        result = await self.session.execute(
            select(TaskORM).where(
                TaskORM.id == str(task_id),
                TaskORM.discarded_at.is_(None),
            )
        )
        task_orm = result.scalar_one_or_none()
        if not task_orm:
            raise TaskNotFoundError(f"Task with id {task_id} not found")
        return task_orm

    async def _validate_parent(
        self,
        job_id: UUID,
        parent_id: UUID,
        task_id: Optional[UUID] = None
    ) -> None:
        """
        Validate a parent for a task of ``job_id``.

        Args:
            job_id: Job the child belongs to
            parent_id: Proposed parent
            task_id: The child itself when moving an existing task

        Raises:
            TaskNotFoundError: If the parent does not exist
            InvalidParentError: If the parent is in another job, is the task
                itself, or is one of its descendants
        """
        if task_id is not None and parent_id == task_id:
            raise InvalidParentError("A task cannot be its own parent")

        parent_orm = await self._get_task_or_raise(parent_id)
        if parent_orm.job_id != str(job_id):
            raise InvalidParentError(
                f"Parent task {parent_id} belongs to another job"
            )

        if task_id is not None:
            descendant_ids = await self._get_descendant_ids(task_id)
            if str(parent_id) in descendant_ids:
                raise InvalidParentError("Cannot move a task beneath one of its descendants")

    # ==============================================================================
    # QUERY HELPERS
    # ==============================================================================

    async def get_siblings(
        self,
        group: PositionGroup,
        exclude_id: Optional[UUID] = None
    ) -> List[Task]:
        """
        Get the kept members of a group in display order.

        Args:
            group: Position group to read
            exclude_id: Task to leave out, typically the one being moved

        Returns:
            List of Task instances ordered by position, creation time and id
        """
        query = (
            group_filter(select(TaskORM), group)
            .order_by(TaskORM.position, TaskORM.created_at, TaskORM.id)
            .execution_options(populate_existing=True)
        )
        if exclude_id is not None:
            query = query.where(TaskORM.id != str(exclude_id))

        result = await self.session.execute(query)
        return [self._orm_to_pydantic(task_orm) for task_orm in result.scalars().all()]

    async def _get_descendant_ids(self, task_id: UUID) -> List[str]:
        """
        Collect the ids of every descendant of a task, breadth first.

        Args:
            task_id: UUID of the ancestor

        Returns:
            List of descendant id strings
        """
        collected: List[str] = []
        frontier = [str(task_id)]
        while frontier:
            result = await self.session.execute(
                select(TaskORM.id).where(TaskORM.parent_id.in_(frontier))
            )
            frontier = [row for row in result.scalars().all() if row not in collected]
            collected.extend(frontier)
        return collected

    # ==============================================================================
    # CREATE OPERATIONS
    # ==============================================================================

    async def create_task(
        self,
        job_id: UUID,
        title: str,
        parent_id: Optional[UUID] = None,
        insert_after_id: Optional[UUID] = None,
        insert_at_top: bool = False,
        position: Optional[int] = None,
        task_id: Optional[UUID] = None,
        created_at: Optional[datetime] = None,
        skip_rebalance_check: bool = False,
    ) -> Task:
        """
        Create a new task (top-level or child).

        Args:
            job_id: UUID of the owning job
            title: Task title
            parent_id: Optional parent task UUID
            insert_after_id: Place the task after this sibling
            insert_at_top: Place the task before every sibling
            position: Explicit, finalized position (e.g. imports); the
                directives are ignored when given
            task_id: Optional UUID for the task
            created_at: Optional creation timestamp
            skip_rebalance_check: Do not evaluate the rebalance trigger

        Returns:
            Created Task instance

        Raises:
            JobNotFoundError: If job does not exist
            TaskNotFoundError: If parent task does not exist
            InvalidParentError: If parent belongs to another job
        """
        try:
            logger.debug(
                f"Creating task: title='{title}', job_id={job_id}, parent_id={parent_id}, "
                f"insert_after_id={insert_after_id}, insert_at_top={insert_at_top}"
            )

            await self._verify_job_exists(job_id)
            if parent_id is not None:
                await self._validate_parent(job_id, parent_id)

            task_data = {
                'title': title,
                'job_id': job_id,
                'parent_id': parent_id,
                'position': position,
                'position_finalized': position is not None,
                'insert_after_id': insert_after_id,
                'insert_at_top': insert_at_top,
            }
            if task_id is not None:
                task_data['id'] = task_id
            if created_at is not None:
                task_data['created_at'] = created_at

            task = Task(**task_data)

            if not task.position_finalized:
                siblings = await self.get_siblings(task.group)
                self.assigner.assign(task, siblings)

            self.session.add(self._pydantic_to_orm(task))
            await self.session.flush()

            await self._record_activity(
                "created",
                task,
                {"position": task.position, "parent_id": str(parent_id) if parent_id else None}
            )

            logger.info(f"Created task: id={task.id}, title='{title}', position={task.position}")

            await self.trigger.check(task.group, skip_check=skip_rebalance_check)
            return task
        except (JobNotFoundError, TaskNotFoundError, InvalidParentError) as e:
            logger.error(f"Failed to create task: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to create task: {e}", exc_info=True)
            raise

    async def create_child_task(
        self,
        parent_id: UUID,
        title: str,
        insert_after_id: Optional[UUID] = None,
        insert_at_top: bool = False,
    ) -> Task:
        """
        Create a child task under a parent task.

        Args:
            parent_id: UUID of the parent task
            title: Child task title
            insert_after_id: Place the child after this sibling
            insert_at_top: Place the child before every sibling

        Returns:
            Created Task instance

        Raises:
            TaskNotFoundError: If parent task does not exist
        """
        parent_orm = await self._get_task_or_raise(parent_id)
        return await self.create_task(
            UUID(parent_orm.job_id),
            title,
            parent_id=parent_id,
            insert_after_id=insert_after_id,
            insert_at_top=insert_at_top,
        )

    # ==============================================================================
    # READ OPERATIONS
    # ==============================================================================

    async def get_task_by_id(self, task_id: UUID) -> Optional[Task]:
        """
        Get a task by its ID, including discarded tasks.

        Args:
            task_id: UUID of the task

        Returns:
            Task instance or None if not found
        """
        task_orm = await self.session.get(TaskORM, str(task_id), populate_existing=True)
        if not task_orm:
            return None
        return self._orm_to_pydantic(task_orm)

    async def get_root_tasks(self, job_id: UUID) -> List[Task]:
        """
        Get the root-level tasks of a job in display order.

        Args:
            job_id: UUID of the job

        Returns:
            List of Task instances

        Raises:
            JobNotFoundError: If job does not exist
        """
        await self._verify_job_exists(job_id)
        return await self.get_siblings(PositionGroup(job_id=job_id))

    async def get_children(self, parent_id: UUID) -> List[Task]:
        """
        Get the direct children of a task in display order.

        Args:
            parent_id: UUID of the parent task

        Returns:
            List of Task instances

        Raises:
            TaskNotFoundError: If parent task does not exist
        """
        parent_orm = await self._get_task_or_raise(parent_id)
        return await self.get_siblings(
            PositionGroup(job_id=UUID(parent_orm.job_id), parent_id=parent_id)
        )

    # ==============================================================================
    # UPDATE OPERATIONS
    # ==============================================================================

    async def update_task(self, task_id: UUID, title: str) -> Task:
        """
        Update a task's title. Never affects ordering.

        Args:
            task_id: UUID of the task to update
            title: New title

        Returns:
            Updated Task instance

        Raises:
            TaskNotFoundError: If task does not exist
        """
        task_orm = await self._get_task_or_raise(task_id)
        old_title = task_orm.title
        task = self._orm_to_pydantic(task_orm)
        task.title = title

        task_orm.title = task.title
        await self.session.flush()

        await self._record_activity("updated", task, {"title": {"from": old_title, "to": title}})

        logger.info(f"Updated task: id={task_id}, title='{title}'")
        return task

    async def reposition_task(
        self,
        task_id: UUID,
        insert_after_id: Optional[UUID] = None,
        insert_at_top: bool = False,
        parent_id: Optional[UUID] = _UNSET,
        skip_rebalance_check: bool = False,
    ) -> Task:
        """
        Move a task within its group, or into another group of the same job.

        With no directive the task is moved to the end of the target group.

        Args:
            task_id: UUID of the task to move
            insert_after_id: Place the task after this sibling
            insert_at_top: Place the task before every sibling
            parent_id: New parent (None for root level); omitted keeps the parent
            skip_rebalance_check: Do not evaluate the rebalance trigger

        Returns:
            Updated Task instance

        Raises:
            TaskNotFoundError: If task or new parent does not exist
            InvalidParentError: If the new parent is invalid
        """
        try:
            task_orm = await self._get_task_or_raise(task_id)
            task = self._orm_to_pydantic(task_orm)
            old_position = task.position
            old_parent_id = task.parent_id

            if parent_id is not _UNSET and parent_id != old_parent_id:
                if parent_id is not None:
                    await self._validate_parent(task.job_id, parent_id, task_id=task.id)
                task.parent_id = parent_id

            task.position_finalized = False
            task.insert_after_id = insert_after_id
            task.insert_at_top = insert_at_top

            siblings = await self.get_siblings(task.group, exclude_id=task.id)
            self.assigner.assign(task, siblings)

            parent_changed = task.parent_id != old_parent_id
            position_changed = task.position != old_position

            task_orm.parent_id = str(task.parent_id) if task.parent_id else None
            task_orm.position = task.position
            task_orm.position_finalized = True
            if parent_changed or position_changed:
                task.reordered_at = datetime.utcnow()
                task_orm.reordered_at = task.reordered_at
            await self.session.flush()

            if parent_changed or position_changed:
                await self._record_activity(
                    "repositioned",
                    task,
                    {
                        "from": {
                            "position": old_position,
                            "parent_id": str(old_parent_id) if old_parent_id else None,
                        },
                        "to": {
                            "position": task.position,
                            "parent_id": str(task.parent_id) if task.parent_id else None,
                        },
                    }
                )
                logger.info(
                    f"Repositioned task: id={task_id}, position {old_position} -> {task.position}, "
                    f"parent {old_parent_id} -> {task.parent_id}"
                )
                await self.trigger.check(task.group, skip_check=skip_rebalance_check)

            return task
        except (TaskNotFoundError, InvalidParentError) as e:
            logger.error(f"Failed to reposition task {task_id}: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to reposition task {task_id}: {e}", exc_info=True)
            raise

    async def set_position(
        self,
        task_id: UUID,
        position: int,
        skip_rebalance_check: bool = False,
    ) -> Task:
        """
        Set an explicit, finalized position on a task.

        Args:
            task_id: UUID of the task
            position: New position value
            skip_rebalance_check: Do not evaluate the rebalance trigger

        Returns:
            Updated Task instance

        Raises:
            TaskNotFoundError: If task does not exist
        """
        task_orm = await self._get_task_or_raise(task_id)
        task = self._orm_to_pydantic(task_orm)
        old_position = task.position

        if position == old_position:
            return task

        task.position = position
        task.position_finalized = True
        task.reordered_at = datetime.utcnow()

        task_orm.position = task.position
        task_orm.position_finalized = True
        task_orm.reordered_at = task.reordered_at
        await self.session.flush()

        await self._record_activity(
            "repositioned",
            task,
            {"from": {"position": old_position}, "to": {"position": position}}
        )
        logger.info(f"Set task position: id={task_id}, {old_position} -> {position}")

        await self.trigger.check(task.group, skip_check=skip_rebalance_check)
        return task

    async def batch_reorder_relative(
        self,
        job_id: UUID,
        moves: Iterable[RelativeMove],
    ) -> List[Task]:
        """
        Apply a sequence of relative moves, in order, within one job.

        ``before_task_id`` is translated to "after the sibling preceding the
        target", or to a top insert when the target is first.

        Args:
            job_id: UUID of the job all tasks belong to
            moves: Moves to apply

        Returns:
            Updated tasks in request order

        Raises:
            JobNotFoundError: If job does not exist
            TaskNotFoundError: If a moved task or target is not in the job
            InvalidParentError: If a new parent is invalid
        """
        await self._verify_job_exists(job_id)
        moved: List[Task] = []

        for move in moves:
            task_orm = await self._get_task_or_raise(move.id)
            if task_orm.job_id != str(job_id):
                raise TaskNotFoundError(f"Task with id {move.id} not found in job {job_id}")

            if move.changes_parent:
                parent_id = move.parent_id
            else:
                parent_id = UUID(task_orm.parent_id) if task_orm.parent_id else None

            insert_after_id = None
            insert_at_top = False

            if move.before_task_id is not None:
                target_orm = await self._get_task_or_raise(move.before_task_id)
                if target_orm.job_id != str(job_id):
                    raise TaskNotFoundError(
                        f"Task with id {move.before_task_id} not found in job {job_id}"
                    )
                siblings = await self.get_siblings(
                    PositionGroup(job_id=job_id, parent_id=parent_id), exclude_id=move.id
                )
                preceding = [s for s in siblings if s.position < target_orm.position]
                if preceding:
                    insert_after_id = preceding[-1].id
                else:
                    insert_at_top = True
            elif move.after_task_id is not None:
                insert_after_id = move.after_task_id
            elif move.position == "first":
                insert_at_top = True

            moved.append(await self.reposition_task(
                move.id,
                insert_after_id=insert_after_id,
                insert_at_top=insert_at_top,
                parent_id=parent_id,
            ))

        logger.info(f"Batch reordered {len(moved)} tasks in job {job_id}")
        return moved

    # ==============================================================================
    # DELETE OPERATIONS
    # ==============================================================================

    async def discard_task(self, task_id: UUID) -> int:
        """
        Soft delete a task and all its descendants.

        Discarded tasks are left out of every sibling snapshot, so they no
        longer take part in positioning or rebalancing.

        Args:
            task_id: UUID of the task to discard

        Returns:
            Number of tasks discarded

        Raises:
            TaskNotFoundError: If task does not exist
        """
        task_orm = await self._get_task_or_raise(task_id)
        now = datetime.utcnow()

        ids = [task_orm.id] + await self._get_descendant_ids(task_id)
        result = await self.session.execute(
            select(TaskORM).where(TaskORM.id.in_(ids), TaskORM.discarded_at.is_(None))
        )
        discarded = 0
        for orm in result.scalars().all():
            orm.discarded_at = now
            discarded += 1
        await self.session.flush()

        await self._record_activity(
            "discarded", self._orm_to_pydantic(task_orm), {"descendants": discarded - 1}
        )
        logger.info(f"Discarded task: id={task_id}, total={discarded}")
        return discarded

    async def delete_task(self, task_id: UUID) -> int:
        """
        Permanently delete a task and all its descendants.

        Args:
            task_id: UUID of the task to delete

        Returns:
            Number of tasks deleted

        Raises:
            TaskNotFoundError: If task does not exist
        """
        task_orm = await self.session.get(TaskORM, str(task_id))
        if not task_orm:
            raise TaskNotFoundError(f"Task with id {task_id} not found")

        ids = [task_orm.id] + await self._get_descendant_ids(task_id)
        await self.session.execute(delete(TaskORM).where(TaskORM.id.in_(ids)))
        await self.session.flush()

        logger.info(f"Deleted task: id={task_id}, total={len(ids)}")
        return len(ids)

    # ==============================================================================
    # REBALANCING
    # ==============================================================================

    async def rebalance_now(
        self,
        job_id: UUID,
        parent_id: Optional[UUID] = None,
        spacing: Optional[int] = None,
        force: bool = False,
    ) -> RebalanceResult:
        """
        Rebalance one group synchronously, inside this service's session.

        Args:
            job_id: UUID of the job
            parent_id: Parent of the group (None for root level)
            spacing: Override for the distance between members
            force: Rewrite even if the group looks healthy

        Returns:
            RebalanceResult

        Raises:
            JobNotFoundError: If job does not exist
        """
        await self._verify_job_exists(job_id)
        group = PositionGroup(job_id=job_id, parent_id=parent_id)
        with rebalancing():
            return await rebalance_group(self.session, group, self.policy, spacing, force)
