"""
Price pull orchestrator.

Composes the pull pipeline for one caller request:

1. Plan gas-bounded chunks
2. Submit chunks one at a time under one signer
3. Resolve every submitted request concurrently
4. Merge prices as each request finishes
5. Return a SessionReport (partial if the session deadline passes)

Example:
    >>> from src.network import PaperOracleNetwork
    >>> from src.oracle import Orchestrator, PullConfig
    >>>
    >>> async with PaperOracleNetwork() as network:
    ...     orchestrator = Orchestrator(network, PullConfig(poll_interval=0.1))
    ...     report = await orchestrator.pull_prices(["equity:AAPL", "fx:EUR"])
    >>> report.price_of("fx:EUR")
    Decimal('1.0842')
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, Sequence, Union

from ..network.base import BaseOracleClient
from .aggregator import ResultAggregator
from .models import (
    Chunk,
    PendingRequestHandle,
    PlanningError,
    PullConfig,
    ResolutionOutcome,
    ResolutionPhase,
    SessionReport,
)
from .planner import ChunkPlanner
from .resolution import ResolutionStateMachine
from .sequence import SequenceManager
from .submitter import RequestSubmitter, explorer_link
from .symbols import SymbolCodec, catalog_asset_ids

logger = logging.getLogger(__name__)

# Seconds to let cancelled resolution tasks unwind after the deadline
CANCEL_GRACE_PERIOD = 1.0


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _failed_submission_outcome(handle: PendingRequestHandle) -> ResolutionOutcome:
    return ResolutionOutcome(
        handle=handle,
        phase=ResolutionPhase.ERROR,
        error=handle.error or "Submission failed",
        error_type="SubmissionError",
    )


def _session_timeout_outcome(handle: PendingRequestHandle, machine: ResolutionStateMachine) -> ResolutionOutcome:
    return ResolutionOutcome(
        handle=handle,
        phase=ResolutionPhase.ERROR,
        error="timeout",
        error_type="SessionTimeout",
        attempts=machine.attempts,
        batch_number=machine.batch_number,
        block_height=machine.block_height,
        history=list(machine.history),
    )


class Orchestrator:
    """
    Runs price pull sessions against one oracle network client.

    The orchestrator owns the sequence manager of its signing identity; it is
    initialized on first use and reused across sessions.

    Attributes:
        client: Oracle network client (paper or live).
        config: Default session configuration.
        sequence_manager: Local sequence tracker for the signer.
    """

    def __init__(
        self,
        client: BaseOracleClient,
        config: Optional[PullConfig] = None,
        sequence_manager: Optional[SequenceManager] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.config = config or PullConfig()
        self.config.validate()
        self.sequence_manager = sequence_manager or SequenceManager()
        self._sleep = sleep

    async def pull_prices(
        self,
        assets: Sequence[str],
        config: Optional[PullConfig] = None,
    ) -> SessionReport:
        """
        Pull prices for the requested assets.

        Args:
            assets: Asset ids, e.g. ``["equity:AAPL", "fx:EUR"]``.
            config: Session configuration (defaults to the orchestrator's).

        Returns:
            SessionReport. Session timeouts and per-request failures are
            reported in it, never raised.

        Raises:
            PlanningError: If no assets are given.
            ValueError: If the configuration is invalid.
        """
        config = config or self.config
        config.validate()

        assets = list(assets)
        if not assets:
            raise PlanningError("At least one asset is required")

        loop = asyncio.get_running_loop()
        started = loop.time()
        report = SessionReport(requested_assets=assets)
        codec = SymbolCodec(assets)

        for raw_symbol, colliding in codec.collisions().items():
            logger.warning(
                f"Assets {colliding} are all reported as {raw_symbol!r}; "
                f"their prices will be stored under {codec.normalize(raw_symbol)}"
            )

        report.chunks = ChunkPlanner.from_config(config).plan(assets)
        logger.info(
            f"Processing {len(assets)} assets in {len(report.chunks)} requests "
            f"(estimated cost {report.total_estimated_cost} SEDA)"
        )

        if not self.sequence_manager.is_initialized:
            self.sequence_manager.initialize()

        submitter = RequestSubmitter.from_config(
            self.client,
            self.sequence_manager,
            config,
            sleep=self._sleep,
        )
        report.handles = await submitter.submit_all(report.chunks)

        remaining = None
        if config.session_deadline is not None:
            remaining = max(0.0, config.session_deadline - (loop.time() - started))

        await self._resolve_all(report, codec, config, remaining)
        return report

    async def resolve_existing(
        self,
        requests: Iterable[Union[PendingRequestHandle, tuple[str, Optional[int]]]],
        known_assets: Optional[Sequence[str]] = None,
        config: Optional[PullConfig] = None,
    ) -> SessionReport:
        """
        Resolve data requests that were submitted earlier.

        Args:
            requests: Handles, or ``(request_id, height)`` pairs.
            known_assets: Assets used to normalize result symbols
                (defaults to the asset catalog).
            config: Session configuration (defaults to the orchestrator's).

        Returns:
            SessionReport without planning or submission data.
        """
        config = config or self.config
        config.validate()

        handles = []
        for index, request in enumerate(requests):
            if isinstance(request, PendingRequestHandle):
                handles.append(request)
                continue
            request_id, height = request
            handles.append(
                PendingRequestHandle(
                    request_id=request_id,
                    height=height,
                    chunk=Chunk(index=index, assets=[]),
                    explorer_url=explorer_link(config.explorer_url, request_id, height),
                )
            )

        known = list(known_assets) if known_assets is not None else catalog_asset_ids()
        report = SessionReport(requested_assets=list(known_assets or []), handles=handles)
        await self._resolve_all(report, SymbolCodec(known), config, config.session_deadline)
        return report

    async def _run_machine(
        self,
        machine: ResolutionStateMachine,
        aggregator: ResultAggregator,
    ) -> ResolutionOutcome:
        outcome = await machine.run()
        await aggregator.add(outcome)
        return outcome

    async def _resolve_all(
        self,
        report: SessionReport,
        codec: SymbolCodec,
        config: PullConfig,
        timeout: Optional[float],
    ) -> None:
        """Resolve every non-failed handle concurrently and fill the report."""
        aggregator = ResultAggregator(codec)
        statuses: dict[int, ResolutionOutcome] = {}
        machines: dict[int, ResolutionStateMachine] = {}
        tasks: dict[int, asyncio.Task] = {}

        for position, handle in enumerate(report.handles):
            if handle.is_failed:
                statuses[position] = _failed_submission_outcome(handle)
                continue
            machine = ResolutionStateMachine.from_config(self.client, handle, config)
            machines[position] = machine
            tasks[position] = asyncio.create_task(
                self._run_machine(machine, aggregator),
                name=f"resolve-{handle.request_id}",
            )

        pending: set[asyncio.Task] = set()
        if tasks:
            logger.info(f"Polling {len(tasks)} data requests for results...")
            _, pending = await asyncio.wait(tasks.values(), timeout=timeout)

        for position, task in tasks.items():
            handle = report.handles[position]
            if task in pending or task.cancelled():
                machines[position].cancel()
                task.cancel()
                statuses[position] = _session_timeout_outcome(handle, machines[position])
                logger.warning(f"[{handle.request_id}] Session deadline reached in phase {machines[position].phase}")
            elif task.exception() is not None:
                error = task.exception()
                logger.error(f"[{handle.request_id}] Resolution task failed: {error}")
                statuses[position] = ResolutionOutcome(
                    handle=handle,
                    phase=ResolutionPhase.ERROR,
                    error=str(error),
                    error_type=type(error).__name__,
                )
            else:
                statuses[position] = task.result()

        if pending:
            report.timed_out = True
            await asyncio.wait(pending, timeout=CANCEL_GRACE_PERIOD)

        report.results = aggregator.snapshot()
        report.raw_results = list(aggregator.raw_results)
        report.statuses = [statuses[position] for position in range(len(report.handles))]
        report.pending_sequences = self.sequence_manager.pending_count
        report.finished_at = _utc_now()

        counts = report.status_counts()
        logger.info(
            f"Session finished: {len(report.results)} prices, statuses {counts}, "
            f"missing {len(report.missing_assets)}"
        )


def save_report(report: SessionReport, path: Path) -> None:
    """
    Append a session report to a JSONL history file.

    Args:
        report: Finished session report.
        path: History file (one JSON object per line).
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a") as f:
            f.write(json.dumps(report.to_dict()) + "\n")
        logger.info(f"Session report saved to {path}")
    except OSError as e:
        logger.warning(f"Failed to write session report: {e}")
