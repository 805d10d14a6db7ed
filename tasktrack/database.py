"""
Database layer for tasktrack.

Provides SQLAlchemy ORM models, async engine/session management, and database
initialization for SQLite persistence.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from tasktrack.logging_config import get_logger

logger = get_logger(__name__)

# Database path in config directory
_PROJECT_ROOT = Path(__file__).parent.parent
_CONFIG_DIR = _PROJECT_ROOT / "config"
_DEFAULT_DB_PATH = _CONFIG_DIR / "tasktrack.db"
DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_DEFAULT_DB_PATH}"


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class JobORM(Base):
    """
    SQLAlchemy ORM model for jobs.

    A job owns the tasks ordered beneath it.
    """
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    tasks: Mapped[list["TaskORM"]] = relationship(
        "TaskORM",
        back_populates="job",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<JobORM(id={self.id}, title={self.title})>"


class TaskORM(Base):
    """
    SQLAlchemy ORM model for tasks.

    Corresponds to the Task Pydantic model. Ordering is scoped to
    (job_id, parent_id); the composite index serves the sibling snapshot
    query used by positioning and rebalancing.
    """
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_group_position", "job_id", "parent_id", "position"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)

    # Hierarchy
    job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("jobs.id"), nullable=False, index=True
    )
    parent_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    # Ordering
    position: Mapped[int] = mapped_column(BigInteger, nullable=False)
    position_finalized: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reordered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    discarded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    job: Mapped["JobORM"] = relationship("JobORM", back_populates="tasks")

    def __repr__(self) -> str:
        return f"<TaskORM(id={self.id}, title={self.title}, position={self.position})>"


class ActivityLogORM(Base):
    """
    SQLAlchemy ORM model for activity log entries.

    Records user-visible task changes. Rebalancing never writes here.
    """
    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    task_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    data: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<ActivityLogORM(id={self.id}, action={self.action}, task_id={self.task_id})>"


class RebalanceJobORM(Base):
    """
    SQLAlchemy ORM model for the durable rebalance queue.

    Each row asks the worker to compact one position group. Duplicate rows
    for the same group are allowed.
    """
    __tablename__ = "rebalance_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False)
    parent_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    available_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<RebalanceJobORM(id={self.id}, job_id={self.job_id}, "
            f"parent_id={self.parent_id}, status={self.status})>"
        )


class DatabaseManager:
    """
    Manages database connections and session lifecycle.

    Handles async engine creation, session management, and database
    initialization for both production and testing scenarios.
    """

    def __init__(self, database_url: str = DEFAULT_DB_URL):
        """
        Initialize database manager with connection URL.

        Args:
            database_url: SQLAlchemy database URL (default: local SQLite file)
        """
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self) -> None:
        """
        Initialize the database engine and create tables.

        Creates the async engine, session maker, and all tables defined
        in the Base metadata.
        """
        try:
            logger.info(f"Initializing database: {self.database_url}")
            if self.database_url == DEFAULT_DB_URL:
                _CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            self.engine = create_async_engine(
                self.database_url,
                echo=False,  # Set to True for SQL query logging
                future=True,
            )

            self.session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            # Create all tables
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    async def close(self) -> None:
        """
        Close the database engine and cleanup resources.
        """
        if self.engine:
            logger.info("Closing database connection")
            try:
                await self.engine.dispose()
                self.engine = None
                self.session_maker = None
                logger.info("Database connection closed successfully")
            except Exception as e:
                logger.error(f"Error closing database connection: {e}", exc_info=True)
                raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with automatic transaction management.

        The session commits when the block exits normally and rolls back
        when it raises, so everything written inside one block is applied
        all-or-nothing.

        Yields:
            AsyncSession for database operations

        Example:
            async with db_manager.get_session() as session:
                result = await session.execute(select(TaskORM))
                tasks = result.scalars().all()
        """
        if not self.session_maker:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                logger.error(f"Database session error, rolling back: {e}", exc_info=True)
                await session.rollback()
                raise
