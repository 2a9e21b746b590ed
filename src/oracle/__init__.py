"""
Price pull pipeline for the SEDA price oracle program.

This module provides tools for:
- Asset id parsing and result symbol normalization (SymbolCodec)
- Gas-bounded chunk planning (ChunkPlanner)
- Sequenced submission with retry (RequestSubmitter, SequenceManager)
- Per-request finality tracking (ResolutionStateMachine)
- Streaming result merging (ResultAggregator)
- Session orchestration (Orchestrator)
"""

from .symbols import SymbolCodec, catalog_asset_ids, parse_asset_id, to_raw_symbol
from .models import (
    Chunk,
    OraclePullError,
    PendingRequestHandle,
    PlanningError,
    PriceResult,
    ProgramExecutionError,
    PullConfig,
    ResolutionOutcome,
    ResolutionPhase,
    SequenceError,
    SessionReport,
)
from .planner import ChunkPlanner, plan
from .sequence import SequenceManager
from .submitter import RequestSubmitter
from .resolution import ResolutionStateMachine, decode_payload
from .aggregator import ResultAggregator, merge
from .orchestrator import Orchestrator, save_report

__all__ = [
    # Orchestration
    "Orchestrator",
    "PullConfig",
    "SessionReport",
    "save_report",
    # Symbols
    "SymbolCodec",
    "catalog_asset_ids",
    "parse_asset_id",
    "to_raw_symbol",
    # Planning and submission
    "ChunkPlanner",
    "Chunk",
    "plan",
    "SequenceManager",
    "RequestSubmitter",
    "PendingRequestHandle",
    # Resolution
    "ResolutionStateMachine",
    "ResolutionPhase",
    "ResolutionOutcome",
    "PriceResult",
    "decode_payload",
    "ResultAggregator",
    "merge",
    # Exceptions
    "OraclePullError",
    "PlanningError",
    "SequenceError",
    "ProgramExecutionError",
]
