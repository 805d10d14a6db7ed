"""
Pytest configuration and fixtures for tasktrack tests.

Provides database fixtures, test data factories, and common test utilities.
"""

import random

import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import select

from tasktrack.database import DatabaseManager, JobORM, TaskORM
from tasktrack.models import PositionGroup, Task
from tasktrack.services.rebalance_trigger import group_filter


@pytest_asyncio.fixture
async def db_manager():
    """
    Create an in-memory SQLite database for testing.

    Yields:
        DatabaseManager instance with in-memory database

    Example:
        async def test_something(db_manager):
            async with db_manager.get_session() as session:
                # Test database operations
    """
    # Use in-memory SQLite for tests
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.initialize()

    yield manager

    # Cleanup
    await manager.close()


@pytest_asyncio.fixture
async def db_session(db_manager):
    """
    Provide a database session for tests.

    Args:
        db_manager: Database manager fixture

    Yields:
        AsyncSession for database operations
    """
    async with db_manager.get_session() as session:
        yield session


@pytest.fixture
def sample_job_id():
    """Generate a consistent UUID for testing jobs."""
    return UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def rng():
    """Seeded random source for deterministic position assignment."""
    return random.Random(1234)


@pytest_asyncio.fixture
async def sample_job(db_session, sample_job_id):
    """
    Create a sample job in the database.

    Args:
        db_session: Database session fixture
        sample_job_id: Sample UUID fixture

    Returns:
        JobORM instance
    """
    job = JobORM(
        id=str(sample_job_id),
        title="Website rebuild",
        created_at=datetime.utcnow()
    )
    db_session.add(job)
    await db_session.commit()
    return job


@pytest.fixture
def make_task(sample_job_id):
    """
    Factory for in-memory Task models with finalized positions.

    Returns:
        Callable taking a position and optional overrides
    """
    base_time = datetime(2025, 7, 1, 10, 0, 0)
    counter = {'n': 0}

    def _make(position, **overrides):
        counter['n'] += 1
        data = {
            'title': f"Task {counter['n']}",
            'job_id': sample_job_id,
            'position': position,
            'position_finalized': True,
            'created_at': base_time + timedelta(seconds=counter['n']),
        }
        data.update(overrides)
        return Task(**data)

    return _make


@pytest.fixture
def seed_tasks(db_manager, sample_job_id):
    """
    Factory that writes tasks with explicit positions straight to the database.

    Bypasses the service layer so no rebalance is scheduled.

    Returns:
        Async callable ``seed(positions, parent_id=None) -> list[str]`` of ids
    """
    async def _seed(positions, parent_id=None, job_id=None):
        job_id = job_id or sample_job_id
        base_time = datetime(2025, 7, 1, 10, 0, 0)
        ids = []
        async with db_manager.get_session() as session:
            if await session.get(JobORM, str(job_id)) is None:
                session.add(JobORM(id=str(job_id), title="Seeded job", created_at=base_time))
            for index, position in enumerate(positions):
                task_id = str(uuid4())
                session.add(TaskORM(
                    id=task_id,
                    title=f"Seeded {index}",
                    job_id=str(job_id),
                    parent_id=str(parent_id) if parent_id else None,
                    position=position,
                    position_finalized=True,
                    created_at=base_time + timedelta(seconds=index),
                ))
                ids.append(task_id)
        return ids

    return _seed


@pytest.fixture
def read_positions(db_manager):
    """
    Factory that reads a group's positions in display order through a fresh session.

    Returns:
        Async callable ``read(job_id, parent_id=None) -> list[(id, position)]``
    """
    async def _read(job_id, parent_id=None):
        group = PositionGroup(job_id=job_id, parent_id=parent_id)
        async with db_manager.get_session() as session:
            query = (
                group_filter(select(TaskORM.id, TaskORM.position), group)
                .order_by(TaskORM.position, TaskORM.created_at, TaskORM.id)
            )
            result = await session.execute(query)
            return [(row[0], row[1]) for row in result.all()]

    return _read
