"""Positioning policy for tasktrack.

Pydantic model holding the tunable constants used by the position assigner,
the rebalance trigger and the rebalance job, with TOML file loading support.
"""

from pathlib import Path
import sys
import logging

# Use tomllib from stdlib in Python 3.11+, fallback to tomli for earlier versions
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


class PositioningPolicy(BaseModel):
    """Numeric policy for task ordering and compaction.

    Attributes:
        spacing: Distance between consecutive tasks after a rebalance, and the
            step used when appending to the end of a group.
        baseline_min: Lower bound of the random position given to the first
            task of an empty group.
        baseline_max: Upper bound of the baseline range.
        top_insert_offset: Largest distance below the current minimum that a
            top insert may land.
        top_insert_floor: Most negative position a top insert may pick at
            random; below it top inserts step by one.
        append_jitter: Upper bound of the random extra distance added when
            inserting after the last task.
        middle_fraction: Share of a gap, centred, in which inserts between two
            tasks are placed.
        min_gap: Gaps below this value are considered unsafe to subdivide.
        min_members: Groups smaller than this are never auto-rebalanced.
        ceiling: Policy maximum for any position value.
    """

    spacing: int = Field(default=10_000, ge=2)
    baseline_min: int = Field(default=1_000, ge=1)
    baseline_max: int = Field(default=10_000, ge=1)
    top_insert_offset: int = Field(default=10_000, ge=1)
    top_insert_floor: int = Field(default=-10_000, le=0)
    append_jitter: int = Field(default=5_000, ge=0)
    middle_fraction: float = Field(default=0.5, gt=0.0, le=1.0)
    min_gap: int = Field(default=2, ge=1)
    min_members: int = Field(default=10, ge=2)
    ceiling: int = Field(default=2_000_000_000, gt=0)

    @model_validator(mode='after')
    def validate_ranges(self) -> 'PositioningPolicy':
        """
        Validate that the configured ranges are consistent.

        Returns:
            The validated policy instance

        Raises:
            ValueError: If the baseline range is inverted or exceeds the ceiling
        """
        if self.baseline_min > self.baseline_max:
            raise ValueError("baseline_min must not exceed baseline_max")
        if self.baseline_max >= self.ceiling:
            raise ValueError("baseline_max must stay below the ceiling")
        return self

    @classmethod
    def from_toml_file(cls, path: Path = None) -> 'PositioningPolicy':
        """Load the policy from a TOML file with fallback to defaults.

        Args:
            path: Path to the TOML file. If None, defaults to
                  ~/.tasktrack/positioning.toml.

        Returns:
            PositioningPolicy loaded from the ``[positioning]`` table or with
            default values.
        """
        if path is None:
            path = Path.home() / ".tasktrack" / "positioning.toml"

        if not path.exists():
            logger.info(f"Positioning policy not found at {path}. Using defaults.")
            return cls()

        with open(path, 'rb') as f:
            data = tomllib.load(f)

        return cls(**data.get('positioning', {}))


DEFAULT_POLICY = PositioningPolicy()
