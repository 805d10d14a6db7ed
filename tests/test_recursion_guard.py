"""
Tests for the rebalance recursion guard.
"""

import asyncio

import pytest

from tasktrack.services.recursion_guard import is_rebalancing, rebalancing


class TestRecursionGuard:
    """Tests for the context-scoped rebalance flag."""

    def test_inactive_by_default(self):
        """Test the guard is off outside a rebalancing block."""
        assert not is_rebalancing()

    def test_active_inside_block(self):
        """Test the guard is on inside the block and off afterwards."""
        with rebalancing():
            assert is_rebalancing()
        assert not is_rebalancing()

    def test_reset_when_block_raises(self):
        """Test the guard is released even if the block raises."""
        with pytest.raises(RuntimeError):
            with rebalancing():
                raise RuntimeError("storage failure")

        assert not is_rebalancing()

    def test_nested_blocks_restore_outer_value(self):
        """Test leaving an inner block keeps the outer block active."""
        with rebalancing():
            with rebalancing():
                assert is_rebalancing()
            assert is_rebalancing()
        assert not is_rebalancing()

    @pytest.mark.asyncio
    async def test_guard_does_not_leak_across_tasks(self):
        """Test a rebalance in one asyncio task does not silence another task."""
        entered = asyncio.Event()
        release = asyncio.Event()
        observed = {}

        async def rebalancer():
            with rebalancing():
                observed['rebalancer'] = is_rebalancing()
                entered.set()
                await release.wait()

        async def request_handler():
            await entered.wait()
            observed['handler'] = is_rebalancing()
            release.set()

        await asyncio.gather(rebalancer(), request_handler())

        assert observed == {'rebalancer': True, 'handler': False}
        assert not is_rebalancing()

    @pytest.mark.asyncio
    async def test_guard_survives_await(self):
        """Test the guard stays active across awaits within one task."""
        with rebalancing():
            await asyncio.sleep(0)
            assert is_rebalancing()
        assert not is_rebalancing()
