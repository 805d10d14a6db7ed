"""
Pydantic models for tasktrack.

Defines the core data structures for jobs, positioned tasks, ordering scopes
and rebalance outcomes with validation and proper typing.
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, computed_field, model_validator


class Job(BaseModel):
    """
    Represents a job, the owner of an ordered set of tasks.
    """

    id: UUID = Field(default_factory=uuid4, description="Unique identifier for the job")
    title: str = Field(..., min_length=1, max_length=200, description="Job title")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")

    class Config:
        """Pydantic configuration."""
        json_schema_extra = {
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174000",
                "title": "Website rebuild",
                "created_at": "2025-07-01T10:00:00",
            }
        }


class PositionGroup(BaseModel):
    """
    Ordering scope of a task: the owning job plus the parent task (None for root).

    Positions are only ever compared, subdivided and rebalanced within one group.
    """

    job_id: UUID
    parent_id: Optional[UUID] = None

    class Config:
        """Pydantic configuration."""
        frozen = True

    @computed_field
    @property
    def is_root(self) -> bool:
        """Whether the group is the root level of its job."""
        return self.parent_id is None

    def __str__(self) -> str:
        return f"{self.job_id}/{self.parent_id or 'root'}"


class Task(BaseModel):
    """
    Represents a task placed in a draggable, hierarchical list.

    ``insert_after_id`` and ``insert_at_top`` are per-request placement
    directives. They are consumed by the position assigner and are never
    persisted or serialised.
    """

    id: UUID = Field(default_factory=uuid4, description="Unique identifier for the task")
    title: str = Field(..., min_length=1, max_length=500, description="Task title")

    # Hierarchy
    job_id: UUID = Field(..., description="ID of the job this task belongs to")
    parent_id: Optional[UUID] = Field(default=None, description="Parent task ID for nesting")

    # Ordering
    position: Optional[int] = Field(default=None, description="Ordering key within the group")
    position_finalized: bool = Field(
        default=False,
        description="When true the position is authoritative and is not recomputed",
    )
    insert_after_id: Optional[UUID] = Field(default=None, exclude=True)
    insert_at_top: bool = Field(default=False, exclude=True)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")
    reordered_at: Optional[datetime] = Field(default=None, description="Last reorder timestamp")
    discarded_at: Optional[datetime] = Field(default=None, description="Soft delete timestamp")

    class Config:
        """Pydantic configuration."""
        validate_assignment = True
        json_schema_extra = {
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174001",
                "title": "Install new router",
                "job_id": "123e4567-e89b-12d3-a456-426614174000",
                "parent_id": None,
                "position": 10000,
                "position_finalized": True,
                "created_at": "2025-07-01T10:00:00",
            }
        }

    @computed_field
    @property
    def group(self) -> PositionGroup:
        """The ordering scope this task belongs to."""
        return PositionGroup(job_id=self.job_id, parent_id=self.parent_id)

    @computed_field
    @property
    def is_discarded(self) -> bool:
        """Whether the task has been soft deleted."""
        return self.discarded_at is not None

    def clear_directives(self) -> None:
        """Drop any pending placement directives."""
        self.insert_after_id = None
        self.insert_at_top = False

    def sort_key(self) -> tuple:
        """Display ordering: position first, then creation order and id as tie breakers."""
        return (self.position, self.created_at, str(self.id))


class RebalanceResult(BaseModel):
    """
    Outcome of a rebalance pass over one position group.
    """

    group: PositionGroup
    checked: int = Field(default=0, ge=0, description="Members inspected")
    rebalanced: bool = Field(default=False, description="Whether positions were rewritten")
    updated: int = Field(default=0, ge=0, description="Rows whose position changed")
    reason: str = Field(default="", description="Why the pass did or did not rewrite")


class RelativeMove(BaseModel):
    """
    One entry of a batch reorder request.

    At most one of ``before_task_id``, ``after_task_id`` and ``position`` may
    be given; with none of them the task is appended at the end. ``parent_id``
    only changes the parent when it is explicitly provided (None moves the
    task to the root level).
    """

    id: UUID
    parent_id: Optional[UUID] = None
    before_task_id: Optional[UUID] = None
    after_task_id: Optional[UUID] = None
    position: Optional[Literal["first", "last"]] = None

    @model_validator(mode='after')
    def validate_single_target(self) -> 'RelativeMove':
        """
        Validate that only one placement target is given.

        Returns:
            The validated move

        Raises:
            ValueError: If more than one target is set
        """
        targets = [self.before_task_id, self.after_task_id, self.position]
        if sum(t is not None for t in targets) > 1:
            raise ValueError("Only one of before_task_id, after_task_id or position may be set")
        return self

    @property
    def changes_parent(self) -> bool:
        """Whether the request explicitly sets the parent."""
        return "parent_id" in self.model_fields_set
