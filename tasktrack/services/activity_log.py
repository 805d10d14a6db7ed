"""
Activity log for user-visible task changes.

Entries are written in the caller's transaction. Position rewrites made by
rebalancing are an implementation detail and are never recorded here.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktrack.database import ActivityLogORM
from tasktrack.logging_config import get_logger

logger = get_logger(__name__)


class ActivityLog:
    """
    Records task activity (created, repositioned, updated, discarded).
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the activity log.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def record(
        self,
        action: str,
        task_id: UUID,
        job_id: UUID,
        data: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Record one activity entry.

        Args:
            action: Action name, e.g. "repositioned"
            task_id: Task the action applies to
            job_id: Job owning the task
            data: Action-specific payload
        """
        entry = ActivityLogORM(
            action=action,
            task_id=str(task_id),
            job_id=str(job_id),
            data=json.dumps(data or {}),
            created_at=datetime.utcnow()
        )
        self.session.add(entry)
        await self.session.flush()

        logger.debug(f"Recorded activity: {action} for task {task_id}")

    async def get_for_task(self, task_id: UUID) -> List[Dict[str, Any]]:
        """
        Get a task's activity, oldest first.

        Args:
            task_id: Task to look up

        Returns:
            List of entry dictionaries with id, action, task_id, job_id, data, created_at
        """
        result = await self.session.execute(
            select(ActivityLogORM)
            .where(ActivityLogORM.task_id == str(task_id))
            .order_by(ActivityLogORM.created_at.asc(), ActivityLogORM.id.asc())
        )

        return [
            {
                'id': entry.id,
                'action': entry.action,
                'task_id': entry.task_id,
                'job_id': entry.job_id,
                'data': json.loads(entry.data),
                'created_at': entry.created_at,
            }
            for entry in result.scalars().all()
        ]

    async def count(self, action: Optional[str] = None) -> int:
        """
        Get the number of recorded entries.

        Args:
            action: Only count entries with this action

        Returns:
            Count of entries
        """
        query = select(func.count()).select_from(ActivityLogORM)
        if action is not None:
            query = query.where(ActivityLogORM.action == action)
        result = await self.session.execute(query)
        return result.scalar() or 0
