"""
Data models for the oracle price pull.

Defines the dataclasses and exceptions shared by the planner, submitter,
resolution state machine, aggregator and orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .. import config

# Request id carried by the handle of a chunk whose submission failed
FAILED_REQUEST_ID = "failed"

# Divisor converting gas * gas price into SEDA token units
GAS_COST_SCALE = 10**9


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class OraclePullError(Exception):
    """Base exception for price pull errors."""

    pass


class PlanningError(OraclePullError, ValueError):
    """Raised for invalid planning input (e.g. an empty asset list)."""

    pass


class SequenceError(OraclePullError):
    """Raised when the sequence manager is misused."""

    pass


class ProgramExecutionError(OraclePullError):
    """Raised when the oracle program exits with a nonzero code."""

    def __init__(self, exit_code: int, message: str = ""):
        self.exit_code = exit_code
        super().__init__(message or f"Data request failed with exit code: {exit_code}")


class PayloadDecodeError(OraclePullError):
    """Raised when a result payload cannot be decoded into price results."""

    pass


class ResolutionPhase(Enum):
    """Finality phases of a submitted data request."""

    SUBMITTED = "submitted"
    ASSIGNMENT_KNOWN = "assignment_known"
    BATCH_FOUND = "batch_found"
    BATCH_SIGNED = "batch_signed"
    RESOLVED = "resolved"
    RESOLVED_EMPTY = "resolved_empty"
    NOT_FOUND_TIMEOUT = "not_found_timeout"
    BATCH_UNSIGNED_TIMEOUT = "batch_unsigned_timeout"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES

    @property
    def is_success(self) -> bool:
        return self in (ResolutionPhase.RESOLVED, ResolutionPhase.RESOLVED_EMPTY)


TERMINAL_PHASES = frozenset(
    {
        ResolutionPhase.RESOLVED,
        ResolutionPhase.RESOLVED_EMPTY,
        ResolutionPhase.NOT_FOUND_TIMEOUT,
        ResolutionPhase.BATCH_UNSIGNED_TIMEOUT,
        ResolutionPhase.ERROR,
    }
)

# Forward order of the non-terminal phases
PHASE_ORDER = (
    ResolutionPhase.SUBMITTED,
    ResolutionPhase.ASSIGNMENT_KNOWN,
    ResolutionPhase.BATCH_FOUND,
    ResolutionPhase.BATCH_SIGNED,
)


@dataclass
class PullConfig:
    """
    Configuration for one price pull session.

    Attributes:
        gas_per_asset: Estimated execution gas per requested asset.
        max_gas_per_request: Gas budget of a single data request.
        gas_price: Execution gas price.
        max_assets_per_chunk: Fixed chunk size; None derives it from gas.
        max_submit_retries: Submission attempts per chunk.
        submit_backoff_base: First retry delay in seconds (doubles).
        inter_submit_delay: Pause between consecutive chunk submissions.
        poll_interval: Seconds between resolution poll cycles.
        max_poll_attempts: Poll cycles before a request times out.
        result_timeout: Budget for the heavier result fetch.
        result_poll_interval: Poll interval inside the result fetch.
        session_deadline: Seconds before unresolved requests are reported
            as timed out; None waits for every request.
        program_id: Oracle program id.
        explorer_url: Block explorer base URL for request links.
    """

    gas_per_asset: int = config.GAS_PER_ASSET
    max_gas_per_request: int = config.MAX_GAS_PER_REQUEST
    gas_price: int = config.GAS_PRICE
    max_assets_per_chunk: Optional[int] = config.MAX_ASSETS_PER_REQUEST
    max_submit_retries: int = config.MAX_SUBMIT_RETRIES
    submit_backoff_base: float = config.SUBMIT_BACKOFF_BASE
    inter_submit_delay: float = config.INTER_SUBMIT_DELAY
    poll_interval: float = config.POLL_INTERVAL
    max_poll_attempts: int = config.MAX_POLL_ATTEMPTS
    result_timeout: float = config.RESULT_TIMEOUT
    result_poll_interval: float = config.RESULT_POLL_INTERVAL
    session_deadline: Optional[float] = config.SESSION_DEADLINE
    program_id: str = config.ORACLE_PROGRAM_ID
    explorer_url: str = config.SEDA_EXPLORER_URL

    def validate(self) -> bool:
        """Validate configuration parameters."""
        if self.gas_per_asset <= 0:
            raise ValueError("gas_per_asset must be positive")
        if self.max_gas_per_request <= 0:
            raise ValueError("max_gas_per_request must be positive")
        if self.gas_price < 0:
            raise ValueError("gas_price must not be negative")
        if self.max_assets_per_chunk is not None and self.max_assets_per_chunk < 1:
            raise ValueError("max_assets_per_chunk must be at least 1")
        if self.max_submit_retries < 1:
            raise ValueError("max_submit_retries must be at least 1")
        if self.max_poll_attempts < 1:
            raise ValueError("max_poll_attempts must be at least 1")
        if min(self.submit_backoff_base, self.inter_submit_delay, self.poll_interval) < 0:
            raise ValueError("delays must not be negative")
        if self.result_timeout <= 0:
            raise ValueError("result_timeout must be positive")
        if self.session_deadline is not None and self.session_deadline <= 0:
            raise ValueError("session_deadline must be positive")
        if not self.program_id:
            raise ValueError("program_id is required")
        return True


@dataclass
class Chunk:
    """
    A gas-bounded slice of the requested assets.

    Attributes:
        index: Position of the chunk in the plan.
        assets: Asset ids, in request order.
        estimated_gas_cost: gas_per_asset * len(assets).
        estimated_cost: Estimated fee in SEDA token units.
    """

    index: int
    assets: list[str]
    estimated_gas_cost: int = 0
    estimated_cost: int = 0

    def __len__(self) -> int:
        return len(self.assets)

    @property
    def encoded_input(self) -> str:
        """Oracle program input for this chunk."""
        return ",".join(self.assets)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "assets": list(self.assets),
            "estimated_gas": str(self.estimated_gas_cost),
            "estimated_cost": str(self.estimated_cost),
        }


@dataclass
class PendingRequestHandle:
    """
    A submitted (or failed) chunk awaiting resolution.

    Attributes:
        request_id: Network data request id, or ``"failed"``.
        height: Submission height; None while pending.
        chunk: The chunk this request covers.
        sequence: Signer sequence number used for the submission.
        memo: Memo posted with the request.
        error: Submission error message for failed handles.
        explorer_url: Link to the request in the block explorer.
        submitted_at: When the handle was created.
    """

    request_id: str
    height: Optional[int]
    chunk: Chunk
    sequence: Optional[int] = None
    memo: str = ""
    error: Optional[str] = None
    explorer_url: Optional[str] = None
    submitted_at: datetime = field(default_factory=_utc_now)

    @property
    def is_failed(self) -> bool:
        return self.request_id == FAILED_REQUEST_ID

    @property
    def height_label(self) -> str:
        """Height as reported to callers ("pending" when unknown)."""
        if self.is_failed:
            return FAILED_REQUEST_ID
        return str(self.height) if self.height is not None else "pending"

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "height": self.height_label,
            "chunk_index": self.chunk.index,
            "assets": list(self.chunk.assets),
            "sequence": self.sequence,
            "memo": self.memo,
            "error": self.error,
            "explorer_url": self.explorer_url,
            "submitted_at": self.submitted_at.isoformat(),
        }


@dataclass(frozen=True)
class PriceResult:
    """
    A single decoded price.

    Attributes:
        symbol: Asset id (or the raw symbol when it could not be normalized).
        price: Reported price.
        raw_symbol: Symbol exactly as reported by the oracle program.
    """

    symbol: str
    price: Decimal
    raw_symbol: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": str(self.price),
            "raw_symbol": self.raw_symbol,
        }


@dataclass
class ResolutionAttempt:
    """One poll cycle of a resolution state machine."""

    attempt: int
    phase: ResolutionPhase
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass
class ResolutionOutcome:
    """
    Terminal state of one request.

    Attributes:
        handle: The request that was resolved.
        phase: Terminal phase.
        results: Decoded prices (raw symbols, not yet normalized).
        raw_result: Opaque payload when it was not a price array.
        error: Error message for failed requests.
        error_type: Error class name (e.g. ``ProgramExecutionError``).
        decode_error: Payload decoding problem, if any (non-fatal).
        attempts: Poll cycles used.
        batch_number: Assigned batch, when observed.
        block_height: Batch block height, when observed.
        exit_code: Oracle program exit code, when observed.
        history: Poll cycles, oldest first.
    """

    handle: PendingRequestHandle
    phase: ResolutionPhase
    results: list[PriceResult] = field(default_factory=list)
    raw_result: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    decode_error: Optional[str] = None
    attempts: int = 0
    batch_number: Optional[int] = None
    block_height: Optional[int] = None
    exit_code: Optional[int] = None
    history: list[ResolutionAttempt] = field(default_factory=list)
    finished_at: datetime = field(default_factory=_utc_now)

    @property
    def is_success(self) -> bool:
        return self.phase.is_success

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.handle.request_id,
            "chunk_index": self.handle.chunk.index,
            "assets": list(self.handle.chunk.assets),
            "status": self.phase.value,
            "results": [r.to_dict() for r in self.results],
            "raw_result": self.raw_result,
            "error": self.error,
            "error_type": self.error_type,
            "decode_error": self.decode_error,
            "attempts": self.attempts,
            "batch_number": self.batch_number,
            "block_height": self.block_height,
            "exit_code": self.exit_code,
            "explorer_url": self.handle.explorer_url,
            "finished_at": self.finished_at.isoformat(),
        }


@dataclass
class SessionReport:
    """
    Outcome of one price pull.

    Attributes:
        requested_assets: Assets the caller asked for, in order.
        chunks: Planned chunks.
        handles: One handle per chunk (failed submissions included).
        results: Aggregated prices keyed by asset id (or raw symbol).
        statuses: Terminal status per handle, in chunk order.
        raw_results: Opaque non-price payloads, in completion order.
        pending_sequences: Sequences still in flight when the report was built.
        timed_out: Whether the session deadline cut resolution short.
    """

    requested_assets: list[str]
    chunks: list[Chunk] = field(default_factory=list)
    handles: list[PendingRequestHandle] = field(default_factory=list)
    results: dict[str, PriceResult] = field(default_factory=dict)
    statuses: list[ResolutionOutcome] = field(default_factory=list)
    raw_results: list[str] = field(default_factory=list)
    pending_sequences: int = 0
    timed_out: bool = False
    started_at: datetime = field(default_factory=_utc_now)
    finished_at: Optional[datetime] = None

    @property
    def total_estimated_gas(self) -> int:
        return sum(chunk.estimated_gas_cost for chunk in self.chunks)

    @property
    def total_estimated_cost(self) -> int:
        return sum(chunk.estimated_cost for chunk in self.chunks)

    @property
    def missing_assets(self) -> list[str]:
        """Requested assets without a price."""
        return [asset for asset in self.requested_assets if asset not in self.results]

    @property
    def is_complete(self) -> bool:
        return not self.missing_assets

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def status_counts(self) -> dict[str, int]:
        """Number of requests per terminal status."""
        counts: dict[str, int] = {}
        for outcome in self.statuses:
            counts[outcome.phase.value] = counts.get(outcome.phase.value, 0) + 1
        return counts

    def price_of(self, asset_id: str) -> Optional[Decimal]:
        result = self.results.get(asset_id)
        return result.price if result else None

    def to_dict(self) -> dict[str, Any]:
        """Convert report to a JSON-safe dictionary."""
        return {
            "requested_assets": list(self.requested_assets),
            "request_count": len(self.handles),
            "is_split": len(self.chunks) > 1,
            "results": {key: r.to_dict() for key, r in self.results.items()},
            "total_results": len(self.results),
            "missing_assets": self.missing_assets,
            "raw_results": list(self.raw_results),
            "handles": [h.to_dict() for h in self.handles],
            "statuses": [s.to_dict() for s in self.statuses],
            "status_counts": self.status_counts(),
            "pending_sequences": self.pending_sequences,
            "timed_out": self.timed_out,
            "gas_optimization": {
                "total_estimated_gas": str(self.total_estimated_gas),
                "total_estimated_cost": str(self.total_estimated_cost),
                "chunks": [c.to_dict() for c in self.chunks],
            },
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }
