"""
Paper oracle network simulator.

Implements BaseOracleClient without touching a real chain. Each submitted
request walks through the same stages the chain exposes:

- not yet assigned to a batch (for ``assignment_delay`` lookups)
- assigned, batch not formed (for ``batch_delay`` lookups)
- batch formed without signatures (for ``signature_delay`` lookups)
- batch signed, result available

Results are hex-encoded JSON arrays with symbols formatted the way the price
oracle program reports them (``EUR/USD``, ``ES:USLF24``, ``AAPL``, ...).

Useful for:
- Dry runs of the full pull pipeline
- Tests of retry, timeout and failure handling
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from ..oracle.symbols import to_raw_symbol
from .base import (
    AssignmentRecord,
    BaseOracleClient,
    BatchRecord,
    DataResult,
    QueryError,
    RequestDescriptor,
    ResultTimeoutError,
    SubmissionError,
    SubmissionReceipt,
)

logger = logging.getLogger(__name__)

# Reference prices used when no price is configured for an asset
DEFAULT_PRICES: dict[str, Decimal] = {
    "equity:AAPL": Decimal("227.52"),
    "equity:MSFT": Decimal("415.10"),
    "equity:TSLA": Decimal("248.98"),
    "equity:AMZN": Decimal("186.40"),
    "equity:NVDA": Decimal("118.85"),
    "equity:GOOG": Decimal("165.30"),
    "equity:META": Decimal("582.77"),
    "equity:UNH": Decimal("590.12"),
    "equity:SPY": Decimal("571.47"),
    "fx:EUR": Decimal("1.0842"),
    "fx:GBP": Decimal("1.3051"),
    "fx_r:JPY": Decimal("149.23"),
    "cfd:XAU:USD": Decimal("2651.40"),
    "cfd:WTI:USD": Decimal("71.25"),
    "cfd:BRN:USD": Decimal("74.90"),
    "uslf_t:NVDA": Decimal("118.91"),
    "uslf_t:TSLA": Decimal("249.10"),
    "uslf_t:GOOG": Decimal("165.22"),
    "uslf_t:AAPL": Decimal("227.60"),
    "uslf_t:UNH": Decimal("589.95"),
    "uslf_t:META": Decimal("583.02"),
    "uslf_t:MSFT": Decimal("415.31"),
    "uslf_t:SPY": Decimal("571.60"),
    "uslf_t:AMZN": Decimal("186.52"),
    "uslf_t:COIN": Decimal("204.75"),
    "uslf_t:CRCL": Decimal("131.40"),
}

STARTING_BLOCK_HEIGHT = 4_000_000


@dataclass
class PaperRequest:
    """Simulated state of one posted data request."""

    request_id: str
    height: int
    sequence: Optional[int]
    assets: list[str]
    descriptor: RequestDescriptor
    batch_number: Optional[int] = None
    assignment_lookups: int = 0
    batch_lookups: int = 0
    result_fetches: int = 0
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PaperOracleNetwork(BaseOracleClient):
    """
    In-memory oracle network.

    Attributes:
        prices: Price per asset id used to build results.
        assignment_delay: Assignment lookups answered "absent" per request.
        batch_delay: Batch lookups answered "absent" per request.
        signature_delay: Batch lookups answered "unsigned" per request.
        result_timeouts: Result fetches that time out per request.
        fail_submissions: Number of upcoming submit calls to reject.
        exit_codes: Program exit code per asset id (nonzero fails the request).
        raw_results: Opaque payload per asset id, returned instead of prices.
        requests: Posted requests by id.
        submissions: Every submit call as (sequence, encoded_input).
    """

    def __init__(
        self,
        prices: Optional[dict[str, Decimal]] = None,
        assignment_delay: int = 1,
        batch_delay: int = 0,
        signature_delay: int = 1,
        result_timeouts: int = 0,
        fail_submissions: int = 0,
        exit_codes: Optional[dict[str, int]] = None,
        raw_results: Optional[dict[str, Any]] = None,
        log_requests: bool = False,
        log_path: str = "data/paper_requests.jsonl",
    ) -> None:
        super().__init__(network="paper", mock_mode=True)
        self._name = "paper"

        self.prices = {**DEFAULT_PRICES, **(prices or {})}
        self.assignment_delay = assignment_delay
        self.batch_delay = batch_delay
        self.signature_delay = signature_delay
        self.result_timeouts = result_timeouts
        self.fail_submissions = fail_submissions
        self.exit_codes = exit_codes or {}
        self.raw_results = raw_results or {}
        self.log_requests = log_requests
        self.log_path = Path(log_path)

        self.requests: dict[str, PaperRequest] = {}
        self.submissions: list[tuple[Optional[int], str]] = []
        self._batches: dict[int, str] = {}
        self._block_height = STARTING_BLOCK_HEIGHT
        self._next_batch = 1

    async def connect(self) -> None:
        self.is_connected = True
        logger.info("Paper oracle network ready - no real data requests will be posted")

    async def disconnect(self) -> None:
        self.is_connected = False

    async def submit(
        self,
        descriptor: RequestDescriptor,
        sequence: Optional[int] = None,
    ) -> SubmissionReceipt:
        self.submissions.append((sequence, descriptor.encoded_input))

        if self.fail_submissions > 0:
            self.fail_submissions -= 1
            raise SubmissionError("account sequence mismatch (simulated)")

        self._block_height += 1
        digest = hashlib.sha256(
            f"{descriptor.program_id}:{descriptor.encoded_input}:{descriptor.memo}:{sequence}:{self._block_height}".encode()
        ).hexdigest()

        request = PaperRequest(
            request_id=digest,
            height=self._block_height,
            sequence=sequence,
            assets=[a for a in descriptor.encoded_input.split(",") if a],
            descriptor=descriptor,
        )
        self.requests[digest] = request
        self._log_event("submit", {"request_id": digest, "height": request.height, **descriptor.to_dict()})

        return SubmissionReceipt(request_id=digest, height=request.height, tx_hash=digest[:64].upper())

    def _get_request(self, request_id: str) -> PaperRequest:
        request = self.requests.get(request_id)
        if request is None:
            raise QueryError(f"Unknown data request {request_id}")
        return request

    async def query_assignment(
        self,
        request_id: str,
        height: Optional[int] = None,
    ) -> Optional[AssignmentRecord]:
        request = self._get_request(request_id)
        request.assignment_lookups += 1

        if request.batch_number is None:
            if request.assignment_lookups <= self.assignment_delay:
                return None
            request.batch_number = self._next_batch
            self._batches[self._next_batch] = request_id
            self._next_batch += 1
            self._log_event("assigned", {"request_id": request_id, "batch_number": request.batch_number})

        return AssignmentRecord(request_id=request_id, batch_number=request.batch_number, height=request.height)

    async def query_batch(self, batch_number: int) -> Optional[BatchRecord]:
        request_id = self._batches.get(batch_number)
        if request_id is None:
            return None
        request = self.requests[request_id]
        request.batch_lookups += 1

        if request.batch_lookups <= self.batch_delay:
            return None

        signed = request.batch_lookups > self.batch_delay + self.signature_delay
        return BatchRecord(
            batch_number=batch_number,
            block_height=request.height + 2,
            signature_count=4 if signed else 0,
        )

    def _build_payload(self, assets: list[str]) -> str:
        for asset in assets:
            if asset in self.raw_results:
                return str(self.raw_results[asset])

        entries = [
            {"symbol": to_raw_symbol(asset), "price": float(self.prices[asset])}
            for asset in assets
            if asset in self.prices
        ]
        return "0x" + json.dumps(entries).encode("utf-8").hex()

    async def await_result(
        self,
        request_id: str,
        height: Optional[int] = None,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
    ) -> DataResult:
        request = self._get_request(request_id)
        request.result_fetches += 1

        if request.result_fetches <= self.result_timeouts:
            raise ResultTimeoutError(f"Timed out waiting for result of {request_id}")

        exit_code = max((self.exit_codes.get(asset, 0) for asset in request.assets), default=0)
        payload = "" if exit_code else self._build_payload(request.assets)

        self._log_event("result", {"request_id": request_id, "exit_code": exit_code})
        return DataResult(
            request_id=request_id,
            exit_code=exit_code,
            result=payload,
            block_height=request.height + 1,
            gas_used=len(request.assets) * 75_000_000,
        )

    def _log_event(self, event: str, data: dict[str, Any]) -> None:
        """Log an event to file."""
        if not self.log_requests:
            return
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            **data,
        }
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.warning(f"Failed to write to request log: {e}")
