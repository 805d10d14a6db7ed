"""
Tests for PositionAssigner - placement of inserted and moved tasks.

Tests cover baseline, append, top and insert-after placement, degenerate
gaps, and the handling of finalized tasks and unknown anchors.
"""

import random

import pytest
from uuid import uuid4

from tasktrack.models import Task
from tasktrack.policy import PositioningPolicy
from tasktrack.services.position_assigner import PositionAssigner


class LowRandom(random.Random):
    """Random source that always picks the low end of a range."""

    def randint(self, a, b):
        assert a <= b
        return a


class HighRandom(random.Random):
    """Random source that always picks the high end of a range."""

    def randint(self, a, b):
        assert a <= b
        return b


@pytest.fixture
def assigner(rng):
    return PositionAssigner(rng=rng)


@pytest.fixture
def new_task(sample_job_id):
    def _new(**directives):
        return Task(title="New", job_id=sample_job_id, **directives)

    return _new


class TestBaselineAndAppend:
    """Tests for empty groups and end-of-group placement."""

    def test_first_task_gets_baseline(self, assigner, new_task):
        """Test the first task of an empty group lands in the baseline range."""
        task = assigner.assign(new_task(), [])

        assert 1_000 <= task.position <= 10_000
        assert task.position_finalized

    def test_baseline_range_is_inclusive(self, new_task):
        """Test both ends of the baseline range are reachable."""
        assert PositionAssigner(rng=LowRandom()).assign(new_task(), []).position == 1_000
        assert PositionAssigner(rng=HighRandom()).assign(new_task(), []).position == 10_000

    def test_append_adds_spacing(self, assigner, new_task, make_task):
        """Test an undirected insert goes one spacing after the maximum."""
        siblings = [make_task(10_000), make_task(30_000), make_task(20_000)]

        task = assigner.assign(new_task(), siblings)

        assert task.position == 40_000

    def test_top_directive_on_empty_group_uses_baseline(self, assigner, new_task):
        """Test a top insert into an empty group behaves like the first insert."""
        task = assigner.assign(new_task(insert_at_top=True), [])

        assert 1_000 <= task.position <= 10_000

    def test_custom_spacing(self, new_task, make_task, rng):
        """Test the policy spacing is used for appends."""
        assigner = PositionAssigner(PositioningPolicy(spacing=100), rng)

        task = assigner.assign(new_task(), [make_task(5_000)])

        assert task.position == 5_100


class TestTopInsert:
    """Tests for insert-at-top placement."""

    def test_top_insert_below_minimum(self, assigner, new_task, make_task):
        """Test a top insert lands within the offset window below the minimum."""
        siblings = [make_task(5_000), make_task(15_000)]

        task = assigner.assign(new_task(insert_at_top=True), siblings)

        assert -5_000 <= task.position <= 4_999

    def test_top_insert_window_bounds(self, new_task, make_task):
        """Test the window spans offset below the minimum up to minimum - 1."""
        siblings = [make_task(50_000)]

        low = PositionAssigner(rng=LowRandom()).assign(new_task(insert_at_top=True), siblings)
        high = PositionAssigner(rng=HighRandom()).assign(new_task(insert_at_top=True), siblings)

        assert low.position == 40_000
        assert high.position == 49_999

    def test_top_insert_clamped_to_floor(self, new_task, make_task):
        """Test the random window never reaches below the floor."""
        siblings = [make_task(-5_000)]

        task = PositionAssigner(rng=LowRandom()).assign(new_task(insert_at_top=True), siblings)

        assert task.position == -10_000

    def test_top_insert_below_floor_steps_by_one(self, assigner, new_task, make_task):
        """Test a minimum at or under the floor yields minimum - 1."""
        siblings = [make_task(-10_000), make_task(0)]

        task = assigner.assign(new_task(insert_at_top=True), siblings)

        assert task.position == -10_001

    def test_top_takes_priority_over_anchor(self, assigner, new_task, make_task):
        """Test insert_at_top wins when both directives are given."""
        first = make_task(10_000)
        siblings = [first, make_task(20_000)]

        task = assigner.assign(new_task(insert_at_top=True, insert_after_id=first.id), siblings)

        assert task.position < 10_000


class TestInsertAfter:
    """Tests for insert-after placement."""

    def test_insert_between_lands_in_middle_half(self, assigner, new_task, make_task):
        """Test an insert between two siblings keeps to the middle of the gap."""
        anchor = make_task(10_000)
        siblings = [anchor, make_task(20_000)]

        task = assigner.assign(new_task(insert_after_id=anchor.id), siblings)

        assert 12_500 <= task.position <= 17_500

    def test_insert_between_bounds(self, new_task, make_task):
        """Test both ends of the middle range are reachable."""
        anchor = make_task(10_000)
        siblings = [anchor, make_task(20_000)]

        low = PositionAssigner(rng=LowRandom()).assign(new_task(insert_after_id=anchor.id), siblings)
        high = PositionAssigner(rng=HighRandom()).assign(new_task(insert_after_id=anchor.id), siblings)

        assert low.position == 12_500
        assert high.position == 17_500

    def test_insert_into_gap_of_one(self, assigner, new_task, make_task):
        """Test a gap of one yields anchor + 1, colliding with the next sibling."""
        anchor = make_task(10_000)
        siblings = [anchor, make_task(10_001)]

        task = assigner.assign(new_task(insert_after_id=anchor.id), siblings)

        assert task.position == 10_001

    def test_insert_into_gap_of_two(self, assigner, new_task, make_task):
        """Test a gap of two yields the single free value."""
        anchor = make_task(10_000)
        siblings = [anchor, make_task(10_002)]

        task = assigner.assign(new_task(insert_after_id=anchor.id), siblings)

        assert task.position == 10_001

    def test_insert_after_last_adds_spacing_and_jitter(self, assigner, new_task, make_task):
        """Test inserting after the last sibling adds spacing plus jitter."""
        anchor = make_task(30_000)
        siblings = [make_task(10_000), anchor]

        task = assigner.assign(new_task(insert_after_id=anchor.id), siblings)

        assert 40_000 <= task.position <= 45_000

    def test_next_sibling_is_first_strictly_greater(self, assigner, new_task, make_task):
        """Test duplicates of the anchor position are skipped when finding the next sibling."""
        anchor = make_task(100)
        siblings = [anchor, make_task(100), make_task(200)]

        task = assigner.assign(new_task(insert_after_id=anchor.id), siblings)

        assert 125 <= task.position <= 175

    def test_unknown_anchor_appends(self, assigner, new_task, make_task):
        """Test an anchor outside the group is ignored and the task appended."""
        siblings = [make_task(10_000), make_task(20_000)]

        task = assigner.assign(new_task(insert_after_id=uuid4()), siblings)

        assert task.position == 30_000

    def test_anchor_from_other_group_appends(self, assigner, new_task, make_task):
        """Test an anchor that was not passed as a sibling is treated as unknown."""
        other_group_task = make_task(15_000, parent_id=uuid4())
        siblings = [make_task(10_000), make_task(20_000)]

        task = assigner.assign(new_task(insert_after_id=other_group_task.id), siblings)

        assert task.position == 30_000

    def test_unknown_anchor_in_empty_group_uses_baseline(self, assigner, new_task):
        """Test an unknown anchor in an empty group falls back to the baseline."""
        task = assigner.assign(new_task(insert_after_id=uuid4()), [])

        assert 1_000 <= task.position <= 10_000

    def test_full_middle_fraction_spans_whole_gap(self, new_task, make_task):
        """Test a middle fraction of one keeps only the strict interior."""
        anchor = make_task(0)
        siblings = [anchor, make_task(10)]
        policy = PositioningPolicy(middle_fraction=1.0)

        low = PositionAssigner(policy, LowRandom()).assign(new_task(insert_after_id=anchor.id), siblings)
        high = PositionAssigner(policy, HighRandom()).assign(new_task(insert_after_id=anchor.id), siblings)

        assert low.position == 1
        assert high.position == 9


class TestAssignContract:
    """Tests for the assign contract."""

    def test_finalized_position_untouched(self, assigner, make_task):
        """Test a finalized task keeps its position and directives are ignored."""
        task = make_task(123, insert_at_top=True)

        result = assigner.assign(task, [make_task(10_000)])

        assert result is task
        assert task.position == 123

    def test_directives_cleared(self, assigner, new_task, make_task):
        """Test directives are consumed by assignment."""
        anchor = make_task(10_000)
        task = assigner.assign(new_task(insert_after_id=anchor.id), [anchor])

        assert task.insert_after_id is None
        assert task.insert_at_top is False
        assert task.position_finalized

    def test_task_itself_ignored_in_siblings(self, assigner, make_task):
        """Test a moved task does not count as its own sibling."""
        other = make_task(10_000)
        task = make_task(90_000)
        task.position_finalized = False

        assigner.assign(task, [other, task])

        assert task.position == 20_000

    def test_siblings_not_mutated(self, assigner, new_task, make_task):
        """Test sibling positions are never changed."""
        anchor = make_task(10_000)
        following = make_task(10_001)

        assigner.assign(new_task(insert_after_id=anchor.id), [anchor, following])

        assert anchor.position == 10_000
        assert following.position == 10_001

    def test_seeded_rng_is_deterministic(self, new_task, make_task):
        """Test the same seed gives the same placement."""
        anchor = make_task(0)
        siblings = [anchor, make_task(1_000_000)]

        first = PositionAssigner(rng=random.Random(7)).assign(new_task(insert_after_id=anchor.id), siblings)
        second = PositionAssigner(rng=random.Random(7)).assign(new_task(insert_after_id=anchor.id), siblings)

        assert first.position == second.position
