"""
Job service for tasktrack.

Provides CRUD operations for jobs, the owners of ordered task lists.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktrack.database import JobORM, TaskORM
from tasktrack.logging_config import get_logger
from tasktrack.models import Job

logger = get_logger(__name__)


class JobService:
    """
    Service layer for job management.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the job service.

        Args:
            session: Active database session for operations
        """
        self.session = session

    @staticmethod
    def _orm_to_pydantic(job_orm: JobORM) -> Job:
        return Job(
            id=UUID(job_orm.id),
            title=job_orm.title,
            created_at=job_orm.created_at,
        )

    async def create_job(
        self,
        title: str,
        job_id: Optional[UUID] = None,
        created_at: Optional[datetime] = None,
    ) -> Job:
        """
        Create a new job.

        Args:
            title: Job title
            job_id: Optional UUID for the job (auto-generated if not provided)
            created_at: Optional creation timestamp

        Returns:
            Created Job model
        """
        try:
            logger.debug(f"Creating job: title='{title}', job_id={job_id}")

            job = Job(
                id=job_id or uuid4(),
                title=title,
                created_at=created_at or datetime.utcnow(),
            )

            self.session.add(JobORM(
                id=str(job.id),
                title=job.title,
                created_at=job.created_at,
            ))
            await self.session.flush()

            logger.info(f"Created job: id={job.id}, title='{title}'")
            return job
        except Exception as e:
            logger.error(f"Failed to create job: {e}", exc_info=True)
            raise

    async def get_job_by_id(self, job_id: UUID) -> Optional[Job]:
        """
        Retrieve a job by ID.

        Args:
            job_id: UUID of the job

        Returns:
            Job model if found, None otherwise
        """
        job_orm = await self.session.get(JobORM, str(job_id))
        if not job_orm:
            return None
        return self._orm_to_pydantic(job_orm)

    async def get_all_jobs(self) -> List[Job]:
        """
        Retrieve all jobs ordered by creation date.

        Returns:
            List of Job models
        """
        result = await self.session.execute(
            select(JobORM).order_by(JobORM.created_at)
        )
        return [self._orm_to_pydantic(job_orm) for job_orm in result.scalars().all()]

    async def count_tasks(self, job_id: UUID, include_discarded: bool = False) -> int:
        """
        Count the tasks of a job.

        Args:
            job_id: UUID of the job
            include_discarded: Whether soft-deleted tasks are counted

        Returns:
            Number of tasks
        """
        query = select(func.count()).select_from(TaskORM).where(TaskORM.job_id == str(job_id))
        if not include_discarded:
            query = query.where(TaskORM.discarded_at.is_(None))
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def delete_job(self, job_id: UUID) -> bool:
        """
        Delete a job and all of its tasks.

        Args:
            job_id: UUID of the job to delete

        Returns:
            True if deleted, False if not found
        """
        job_orm = await self.session.get(JobORM, str(job_id))
        if not job_orm:
            logger.warning(f"Delete failed - job not found: {job_id}")
            return False

        await self.session.execute(delete(TaskORM).where(TaskORM.job_id == str(job_id)))
        await self.session.execute(delete(JobORM).where(JobORM.id == str(job_id)))
        await self.session.flush()

        logger.info(f"Deleted job: id={job_id}, title='{job_orm.title}'")
        return True
