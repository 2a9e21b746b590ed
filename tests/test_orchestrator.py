"""
Tests for the price pull orchestrator.

Tests cover:
- End-to-end pulls against the paper network
- Chunking modes (gas-derived, single, bundle)
- Failed submissions and failed executions
- Session deadline handling
- Resolving previously submitted requests
- Report serialization and history file
"""

import json
import logging
import tempfile
from decimal import Decimal
from pathlib import Path

import pytest

from src.network.paper import PaperOracleNetwork
from src.oracle.models import PlanningError, PullConfig, ResolutionPhase
from src.oracle.orchestrator import Orchestrator, save_report
from src.oracle.sequence import SequenceManager


def fast_config(**overrides):
    """Config with no real waiting."""
    values = dict(
        gas_per_asset=80_000_000,
        max_gas_per_request=300_000_000,
        gas_price=10_000,
        max_assets_per_chunk=None,
        inter_submit_delay=0,
        submit_backoff_base=0,
        poll_interval=0,
        max_poll_attempts=10,
        session_deadline=10.0,
        explorer_url="https://explorer.test",
    )
    values.update(overrides)
    return PullConfig(**values)


@pytest.fixture
def network():
    return PaperOracleNetwork()


# =============================================================================
# Test Pulls
# =============================================================================


class TestPullPrices:
    """Tests for Orchestrator.pull_prices."""

    @pytest.mark.asyncio
    async def test_pull_two_assets(self, network):
        async with network:
            report = await Orchestrator(network, fast_config()).pull_prices(["equity:AAPL", "fx:EUR"])

        assert report.is_complete
        assert report.price_of("fx:EUR") == Decimal("1.0842")
        assert report.price_of("equity:AAPL") == Decimal("227.52")
        assert len(report.handles) == 1
        assert report.status_counts() == {"resolved": 1}
        assert report.pending_sequences == 0
        assert not report.timed_out
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_chunks_follow_gas_budget(self, network):
        assets = ["equity:AAPL", "equity:MSFT", "equity:TSLA", "fx:EUR", "fx_r:JPY", "cfd:XAU:USD", "uslf_t:NVDA"]

        report = await Orchestrator(network, fast_config()).pull_prices(assets)

        assert [len(c) for c in report.chunks] == [3, 3, 1]
        assert [a for c in report.chunks for a in c.assets] == assets
        assert set(report.results) == set(assets)
        assert report.total_estimated_gas == 7 * 80_000_000

    @pytest.mark.asyncio
    async def test_single_asset_requests(self, network):
        assets = ["equity:AAPL", "fx:EUR", "fx_r:JPY"]

        report = await Orchestrator(network, fast_config(max_assets_per_chunk=1)).pull_prices(assets)

        assert len(report.handles) == 3
        assert [seq for seq, _ in network.submissions] == [0, 1, 2]
        assert report.is_complete

    @pytest.mark.asyncio
    async def test_bundle(self, network):
        assets = ["equity:AAPL", "fx:EUR", "fx_r:JPY", "cfd:XAU:USD"]

        report = await Orchestrator(network, fast_config(max_assets_per_chunk=len(assets))).pull_prices(assets)

        assert len(report.handles) == 1
        assert report.is_complete

    @pytest.mark.asyncio
    async def test_empty_assets(self, network):
        with pytest.raises(PlanningError):
            await Orchestrator(network, fast_config()).pull_prices([])

    @pytest.mark.asyncio
    async def test_explorer_links(self, network):
        report = await Orchestrator(network, fast_config()).pull_prices(["fx:EUR"])

        handle = report.handles[0]
        assert handle.explorer_url == f"https://explorer.test/data-requests/{handle.request_id}/{handle.height}"

    @pytest.mark.asyncio
    async def test_equity_and_trade_with_same_ticker(self, network, caplog):
        with caplog.at_level(logging.WARNING, logger="src.oracle.orchestrator"):
            report = await Orchestrator(network, fast_config()).pull_prices(["equity:AAPL", "uslf_t:AAPL"])

        assert set(report.results) == {"equity:AAPL"}
        assert report.results["equity:AAPL"].raw_symbol == "AAPL"
        assert report.price_of("equity:AAPL") in (Decimal("227.52"), Decimal("227.60"))
        assert report.missing_assets == ["uslf_t:AAPL"]
        assert "reported as 'AAPL'" in caplog.text

    @pytest.mark.asyncio
    async def test_sequences_continue_across_sessions(self, network):
        manager = SequenceManager()
        orchestrator = Orchestrator(network, fast_config(max_assets_per_chunk=1), sequence_manager=manager)

        await orchestrator.pull_prices(["fx:EUR"])
        await orchestrator.pull_prices(["fx:GBP"])

        assert [seq for seq, _ in network.submissions] == [0, 1]


class TestPartialFailures:
    """Tests for failures that leave the rest of the session intact."""

    @pytest.mark.asyncio
    async def test_failed_chunk_submission(self):
        network = PaperOracleNetwork(fail_submissions=3)
        assets = ["equity:AAPL", "equity:MSFT", "equity:TSLA", "fx:EUR"]

        report = await Orchestrator(network, fast_config()).pull_prices(assets)

        assert report.handles[0].is_failed
        assert report.statuses[0].phase == ResolutionPhase.ERROR
        assert report.statuses[0].error_type == "SubmissionError"
        assert report.statuses[1].phase == ResolutionPhase.RESOLVED
        assert report.missing_assets == ["equity:AAPL", "equity:MSFT", "equity:TSLA"]
        assert report.price_of("fx:EUR") == Decimal("1.0842")

    @pytest.mark.asyncio
    async def test_failed_execution(self):
        network = PaperOracleNetwork(exit_codes={"equity:TSLA": 1})
        assets = ["equity:AAPL", "equity:TSLA", "fx:EUR"]

        report = await Orchestrator(network, fast_config(max_assets_per_chunk=1)).pull_prices(assets)

        statuses = {s.handle.chunk.assets[0]: s for s in report.statuses}
        assert statuses["equity:TSLA"].phase == ResolutionPhase.ERROR
        assert statuses["equity:TSLA"].exit_code == 1
        assert statuses["equity:AAPL"].phase == ResolutionPhase.RESOLVED
        assert set(report.results) == {"equity:AAPL", "fx:EUR"}

    @pytest.mark.asyncio
    async def test_empty_result(self):
        network = PaperOracleNetwork()
        report = await Orchestrator(network, fast_config()).pull_prices(["equity:NOPE"])

        assert report.statuses[0].phase == ResolutionPhase.RESOLVED_EMPTY
        assert report.missing_assets == ["equity:NOPE"]

    @pytest.mark.asyncio
    async def test_raw_result(self):
        network = PaperOracleNetwork(raw_results={"equity:AAPL": "0x" + b"42".hex()})
        report = await Orchestrator(network, fast_config()).pull_prices(["equity:AAPL"])

        assert report.statuses[0].phase == ResolutionPhase.RESOLVED
        assert report.raw_results == ["42"]
        assert report.results == {}

    @pytest.mark.asyncio
    async def test_session_deadline(self):
        network = PaperOracleNetwork(assignment_delay=10_000)
        config = fast_config(poll_interval=0.01, max_poll_attempts=10_000, session_deadline=0.2)

        report = await Orchestrator(network, config).pull_prices(["equity:AAPL", "fx:EUR"])

        assert report.timed_out
        assert report.statuses[0].phase == ResolutionPhase.ERROR
        assert report.statuses[0].error == "timeout"
        assert report.statuses[0].error_type == "SessionTimeout"
        assert report.results == {}

    @pytest.mark.asyncio
    async def test_poll_budget_exhausted(self):
        network = PaperOracleNetwork(assignment_delay=10_000)
        report = await Orchestrator(network, fast_config(max_poll_attempts=3)).pull_prices(["fx:EUR"])

        assert report.statuses[0].phase == ResolutionPhase.NOT_FOUND_TIMEOUT
        assert not report.timed_out


# =============================================================================
# Test Resolving Existing Requests
# =============================================================================


class TestResolveExisting:
    """Tests for Orchestrator.resolve_existing."""

    @pytest.mark.asyncio
    async def test_resolve_by_id_and_height(self, network):
        pulled = await Orchestrator(network, fast_config()).pull_prices(["fx:EUR", "fx_r:JPY"])
        handle = pulled.handles[0]

        report = await Orchestrator(network, fast_config()).resolve_existing([(handle.request_id, handle.height)])

        assert report.statuses[0].phase == ResolutionPhase.RESOLVED
        assert report.price_of("fx:EUR") == Decimal("1.0842")
        assert report.price_of("fx_r:JPY") == Decimal("149.23")
        assert report.handles[0].explorer_url.endswith(f"/{handle.request_id}/{handle.height}")

    @pytest.mark.asyncio
    async def test_resolve_with_known_assets(self, network):
        pulled = await Orchestrator(network, fast_config()).pull_prices(["uslf_t:AAPL"])

        report = await Orchestrator(network, fast_config()).resolve_existing(
            pulled.handles, known_assets=["uslf_q:AAPL"]
        )

        assert set(report.results) == {"uslf_q:AAPL"}
        assert report.requested_assets == ["uslf_q:AAPL"]


# =============================================================================
# Test Report Output
# =============================================================================


class TestReport:
    """Tests for report serialization."""

    @pytest.mark.asyncio
    async def test_to_dict_is_json_safe(self, network):
        report = await Orchestrator(network, fast_config()).pull_prices(["equity:AAPL", "fx:EUR"])
        data = json.loads(json.dumps(report.to_dict()))

        assert data["results"]["fx:EUR"]["price"] == "1.0842"
        assert data["status_counts"] == {"resolved": 1}
        assert data["is_split"] is False
        assert data["gas_optimization"]["total_estimated_gas"] == str(2 * 80_000_000)

    @pytest.mark.asyncio
    async def test_save_report(self, network):
        report = await Orchestrator(network, fast_config()).pull_prices(["fx:EUR"])

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "sessions.jsonl"
            save_report(report, path)
            save_report(report, path)

            lines = path.read_text().splitlines()
            assert len(lines) == 2
            assert json.loads(lines[0])["requested_assets"] == ["fx:EUR"]
