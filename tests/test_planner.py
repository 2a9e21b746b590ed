"""
Tests for gas-bounded chunk planning.

Tests cover:
- Chunk size derived from the gas budget
- Contiguous, order-preserving chunks
- Cost estimates
- Invalid input
"""

import pytest

from src.oracle.models import Chunk, PlanningError, PullConfig
from src.oracle.planner import ChunkPlanner, max_assets_per_chunk, plan, summarize_plan


class TestMaxAssetsPerChunk:
    """Tests for max_assets_per_chunk."""

    def test_default_gas_settings(self):
        assert max_assets_per_chunk(80_000_000, 300_000_000) == 3

    def test_at_least_one(self):
        assert max_assets_per_chunk(500, 100) == 1

    def test_invalid_gas(self):
        with pytest.raises(PlanningError):
            max_assets_per_chunk(0, 100)
        with pytest.raises(PlanningError):
            max_assets_per_chunk(100, -1)


class TestPlan:
    """Tests for plan."""

    def test_chunk_size_two(self):
        chunks = plan(["equity:AAPL", "equity:MSFT", "fx:EUR"], gas_per_asset=100, max_gas_per_request=250)

        assert [c.assets for c in chunks] == [["equity:AAPL", "equity:MSFT"], ["fx:EUR"]]
        assert [c.index for c in chunks] == [0, 1]
        assert chunks[0].encoded_input == "equity:AAPL,equity:MSFT"

    def test_concatenation_preserves_input(self):
        assets = [f"equity:T{i}" for i in range(11)]
        chunks = plan(assets, gas_per_asset=80_000_000, max_gas_per_request=300_000_000)

        flattened = [asset for chunk in chunks for asset in chunk.assets]
        assert flattened == assets
        assert all(1 <= len(chunk) <= 3 for chunk in chunks)
        assert len(chunks) == 4

    def test_single_chunk_when_budget_allows(self):
        chunks = plan(["fx:EUR", "fx:GBP"], gas_per_asset=1, max_gas_per_request=1000)
        assert len(chunks) == 1

    def test_cost_estimate(self):
        chunks = plan(
            ["equity:AAPL", "equity:MSFT", "fx:EUR", "fx:GBP"],
            gas_per_asset=80_000_000,
            max_gas_per_request=300_000_000,
            gas_price=10_000,
        )

        assert chunks[0].estimated_gas_cost == 240_000_000
        assert chunks[0].estimated_cost == 240_000_000 * 10_000 // 10**9
        assert chunks[1].estimated_gas_cost == 80_000_000

    def test_fixed_chunk_size(self):
        assets = ["equity:AAPL", "equity:MSFT", "fx:EUR"]

        single = plan(assets, gas_per_asset=1, max_gas_per_request=1000, max_assets=1)
        bundle = plan(assets, gas_per_asset=80_000_000, max_gas_per_request=300_000_000, max_assets=3)

        assert len(single) == 3
        assert len(bundle) == 1

    def test_empty_assets(self):
        with pytest.raises(PlanningError):
            plan([], gas_per_asset=1, max_gas_per_request=10)

    def test_empty_assets_is_value_error(self):
        with pytest.raises(ValueError):
            plan([], gas_per_asset=1, max_gas_per_request=10)

    def test_invalid_fixed_size(self):
        with pytest.raises(PlanningError):
            plan(["fx:EUR"], gas_per_asset=1, max_gas_per_request=10, max_assets=0)


class TestChunkPlanner:
    """Tests for ChunkPlanner."""

    def test_from_config(self):
        planner = ChunkPlanner.from_config(PullConfig(gas_per_asset=100, max_gas_per_request=250))
        assert planner.chunk_size == 2

    def test_override_chunk_size(self):
        planner = ChunkPlanner.from_config(PullConfig(max_assets_per_chunk=5))
        assert planner.chunk_size == 5

    def test_summary(self):
        planner = ChunkPlanner(gas_per_asset=10, max_gas_per_request=20, gas_price=10**9)
        chunks = planner.plan(["a:1", "a:2", "a:3"])
        summary = summarize_plan(chunks)

        assert summary == {
            "request_count": 2,
            "asset_count": 3,
            "total_estimated_gas": 30,
            "total_estimated_cost": 30,
        }

    def test_chunk_to_dict(self):
        chunk = Chunk(index=0, assets=["fx:EUR"], estimated_gas_cost=80, estimated_cost=1)
        assert chunk.to_dict() == {
            "index": 0,
            "assets": ["fx:EUR"],
            "estimated_gas": "80",
            "estimated_cost": "1",
        }
