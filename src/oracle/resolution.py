"""
Per-request resolution state machine.

A submitted data request only has a trustworthy result once it has been
assigned to a batch and that batch carries validator signatures. The state
machine observes this from the client side by polling the chain:

    SUBMITTED -> ASSIGNMENT_KNOWN -> BATCH_FOUND -> BATCH_SIGNED -> RESOLVED

Terminal failures are NOT_FOUND_TIMEOUT (never assigned), BATCH_UNSIGNED_TIMEOUT
(assigned but the batch never formed or was never signed) and ERROR (query
failure, nonzero program exit code, cancellation). A result that decodes to
zero prices ends in RESOLVED_EMPTY.

Each poll cycle advances as far as the chain currently allows, then waits a
fixed interval. Phases never move backward.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..network.base import BaseOracleClient, BatchRecord, DataResult, ResultTimeoutError
from .models import (
    PHASE_ORDER,
    PayloadDecodeError,
    PendingRequestHandle,
    PriceResult,
    ProgramExecutionError,
    PullConfig,
    ResolutionAttempt,
    ResolutionOutcome,
    ResolutionPhase,
)

logger = logging.getLogger(__name__)

# Default polling discipline: 30 attempts * 2 seconds = 60 seconds max
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_RESULT_TIMEOUT = 30.0
DEFAULT_RESULT_POLL_INTERVAL = 2.0


@dataclass
class DecodedPayload:
    """
    Decoded form of a data result payload.

    Attributes:
        results: Price entries, symbols still as reported.
        raw_result: Payload text when it was not a price array.
        decode_error: Why the payload could not be read as prices, if so.
    """

    results: list[PriceResult] = field(default_factory=list)
    raw_result: Optional[str] = None
    decode_error: Optional[str] = None


def _unhex(text: str) -> str:
    """Decode 0x-prefixed hex text to UTF-8; other text is returned as is."""
    if not text.startswith("0x"):
        return text
    try:
        return bytes.fromhex(text[2:]).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise PayloadDecodeError(f"Invalid hex payload: {e}") from e


def _parse_price_item(item: Any) -> Optional[PriceResult]:
    if not isinstance(item, dict):
        return None
    symbol = item.get("symbol")
    if not isinstance(symbol, str) or not symbol:
        return None
    try:
        price = Decimal(str(item["price"]))
    except (KeyError, InvalidOperation, TypeError, ValueError):
        return None
    if not price.is_finite():
        return None
    return PriceResult(symbol=symbol, price=price, raw_symbol=symbol)


def decode_payload(payload: Any) -> DecodedPayload:
    """
    Decode a raw result payload.

    The payload may be bytes, plain text or 0x-prefixed hex text. A JSON
    array of ``{symbol, price}`` objects yields price results; anything else
    that decodes is passed through as an opaque raw result.

    Args:
        payload: Raw payload from the data result.

    Returns:
        DecodedPayload. Decoding problems are reported in ``decode_error``,
        never raised.
    """
    if payload is None or payload == "" or payload == b"":
        return DecodedPayload()

    if isinstance(payload, (bytes, bytearray)):
        try:
            text = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as e:
            return DecodedPayload(raw_result="0x" + bytes(payload).hex(), decode_error=f"Payload is not UTF-8: {e}")
    else:
        text = str(payload)

    try:
        text = _unhex(text)
    except PayloadDecodeError as e:
        return DecodedPayload(raw_result=text, decode_error=str(e))

    if not text.strip():
        return DecodedPayload()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"Result is not JSON, passing through raw: {text!r}")
        return DecodedPayload(raw_result=text, decode_error=f"Result is not JSON: {e}")

    if not isinstance(parsed, list):
        return DecodedPayload(raw_result=text)

    results = []
    for item in parsed:
        price = _parse_price_item(item)
        if price is None:
            logger.warning(f"Skipping malformed price entry: {item!r}")
            continue
        results.append(price)

    if parsed and not results:
        return DecodedPayload(raw_result=text, decode_error="No valid price entries in result")

    return DecodedPayload(results=results)


class ResolutionStateMachine:
    """
    Drives one pending request to a terminal phase.

    Attributes:
        client: Chain query client.
        handle: Request being resolved.
        phase: Current phase.
        poll_interval: Seconds between poll cycles.
        max_attempts: Poll cycles before giving up.
        result_timeout: Budget of the result fetch within one cycle.
        result_poll_interval: Poll interval inside the result fetch.
        attempts: Poll cycles used so far.
        history: Phase observed after each cycle.

    Example:
        >>> machine = ResolutionStateMachine(client, handle)
        >>> outcome = await machine.run()
        >>> outcome.phase
        <ResolutionPhase.RESOLVED: 'resolved'>
    """

    def __init__(
        self,
        client: BaseOracleClient,
        handle: PendingRequestHandle,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        result_timeout: float = DEFAULT_RESULT_TIMEOUT,
        result_poll_interval: float = DEFAULT_RESULT_POLL_INTERVAL,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.client = client
        self.handle = handle
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.result_timeout = result_timeout
        self.result_poll_interval = result_poll_interval

        self.phase = ResolutionPhase.SUBMITTED
        self.attempts = 0
        self.history: list[ResolutionAttempt] = []
        self.batch_number: Optional[int] = None
        self.block_height: Optional[int] = None
        self.result_timeouts = 0

        self._cancel_event = asyncio.Event()

    @classmethod
    def from_config(
        cls,
        client: BaseOracleClient,
        handle: PendingRequestHandle,
        config: PullConfig,
    ) -> "ResolutionStateMachine":
        return cls(
            client=client,
            handle=handle,
            poll_interval=config.poll_interval,
            max_attempts=config.max_poll_attempts,
            result_timeout=config.result_timeout,
            result_poll_interval=config.result_poll_interval,
        )

    @property
    def request_id(self) -> str:
        return self.handle.request_id

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop at the next polling boundary. Nothing needs rolling back."""
        self._cancel_event.set()

    def _advance(self, phase: ResolutionPhase) -> None:
        if self.phase.is_terminal:
            raise RuntimeError(f"Request {self.request_id} is already terminal ({self.phase})")
        if not phase.is_terminal and PHASE_ORDER.index(phase) <= PHASE_ORDER.index(self.phase):
            raise RuntimeError(f"Cannot move request {self.request_id} from {self.phase} back to {phase}")
        logger.debug(f"[{self.request_id}] {self.phase} -> {phase}")
        self.phase = phase

    def _outcome(self, phase: ResolutionPhase, **kwargs) -> ResolutionOutcome:
        self._advance(phase)
        if self.attempts and (not self.history or self.history[-1].attempt != self.attempts):
            self.history.append(ResolutionAttempt(attempt=self.attempts, phase=phase))
        return ResolutionOutcome(
            handle=self.handle,
            phase=phase,
            attempts=self.attempts,
            batch_number=self.batch_number,
            block_height=self.block_height,
            history=list(self.history),
            **kwargs,
        )

    async def _wait(self) -> None:
        """Wait one poll interval, returning early on cancellation."""
        if self.poll_interval <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _fetch_batch(self) -> Optional[BatchRecord]:
        batch = await self.client.query_batch(self.batch_number)
        if batch is not None:
            self.block_height = batch.block_height
        return batch

    async def _poll_once(self) -> Optional[ResolutionOutcome]:
        """
        Advance as far as the chain allows.

        Returns:
            Terminal outcome, or None to keep polling.
        """
        batch = None

        if self.phase == ResolutionPhase.SUBMITTED:
            assignment = await self.client.query_assignment(self.request_id, self.handle.height)
            if assignment is None:
                logger.debug(f"[{self.request_id}] Data result not found yet")
                return None
            self.batch_number = assignment.batch_number
            self._advance(ResolutionPhase.ASSIGNMENT_KNOWN)
            logger.info(f"[{self.request_id}] Data result found - assigned to batch {self.batch_number}")

        if self.phase == ResolutionPhase.ASSIGNMENT_KNOWN:
            batch = await self._fetch_batch()
            if batch is None:
                logger.debug(f"[{self.request_id}] Batch {self.batch_number} not found yet")
                return None
            self._advance(ResolutionPhase.BATCH_FOUND)

        if self.phase == ResolutionPhase.BATCH_FOUND:
            if batch is None:
                batch = await self._fetch_batch()
            if batch is None or not batch.is_signed:
                logger.debug(f"[{self.request_id}] Batch {self.batch_number} has no signatures yet")
                return None
            self._advance(ResolutionPhase.BATCH_SIGNED)
            logger.info(
                f"[{self.request_id}] Batch {self.batch_number} signed "
                f"({batch.signature_count} signatures)"
            )

        # BATCH_SIGNED: fetch the actual result within its own budget
        try:
            data = await asyncio.wait_for(
                self.client.await_result(
                    self.request_id,
                    self.handle.height,
                    timeout=self.result_timeout,
                    poll_interval=self.result_poll_interval,
                ),
                timeout=self.result_timeout + self.result_poll_interval,
            )
        except (ResultTimeoutError, asyncio.TimeoutError):
            self.result_timeouts += 1
            logger.warning(f"[{self.request_id}] Timed out fetching result, will retry")
            return None

        return self._finish(data)

    def _finish(self, data: DataResult) -> ResolutionOutcome:
        if data.exit_code != 0:
            error = ProgramExecutionError(data.exit_code)
            logger.error(f"[{self.request_id}] {error}")
            return self._outcome(
                ResolutionPhase.ERROR,
                error=str(error),
                error_type=type(error).__name__,
                exit_code=data.exit_code,
            )

        decoded = decode_payload(data.result)
        if decoded.decode_error:
            logger.warning(f"[{self.request_id}] {decoded.decode_error}")

        if decoded.results or decoded.raw_result is not None:
            phase = ResolutionPhase.RESOLVED
        else:
            phase = ResolutionPhase.RESOLVED_EMPTY

        logger.info(f"[{self.request_id}] Resolved with {len(decoded.results)} prices")
        return self._outcome(
            phase,
            results=decoded.results,
            raw_result=decoded.raw_result,
            decode_error=decoded.decode_error,
            exit_code=data.exit_code,
        )

    def _timeout_outcome(self) -> ResolutionOutcome:
        if self.phase == ResolutionPhase.SUBMITTED:
            return self._outcome(
                ResolutionPhase.NOT_FOUND_TIMEOUT,
                error=f"Data request {self.request_id} not found after {self.attempts} attempts",
                error_type="NotFoundTimeout",
            )
        if self.phase in (ResolutionPhase.ASSIGNMENT_KNOWN, ResolutionPhase.BATCH_FOUND):
            return self._outcome(
                ResolutionPhase.BATCH_UNSIGNED_TIMEOUT,
                error=f"Batch {self.batch_number} not signed after {self.attempts} attempts",
                error_type="BatchUnsignedTimeout",
            )
        return self._outcome(
            ResolutionPhase.ERROR,
            error=f"Timed out fetching result after {self.attempts} attempts",
            error_type=ResultTimeoutError.__name__,
        )

    async def run(self) -> ResolutionOutcome:
        """
        Poll until the request reaches a terminal phase.

        Returns:
            ResolutionOutcome. Collaborator failures are captured as ERROR,
            never raised.
        """
        if self.handle.is_failed:
            return self._outcome(
                ResolutionPhase.ERROR,
                error=self.handle.error or "Submission failed",
                error_type="SubmissionError",
            )

        for attempt in range(1, self.max_attempts + 1):
            if self.cancelled:
                break

            self.attempts = attempt
            try:
                outcome = await self._poll_once()
            except Exception as e:
                logger.error(f"[{self.request_id}] Error polling data request: {e}")
                return self._outcome(ResolutionPhase.ERROR, error=str(e), error_type=type(e).__name__)

            if outcome is not None:
                return outcome

            self.history.append(ResolutionAttempt(attempt=attempt, phase=self.phase))

            logger.debug(f"[{self.request_id}] Attempt {attempt}/{self.max_attempts}: {self.phase}")
            if attempt < self.max_attempts:
                await self._wait()

        if self.cancelled:
            logger.info(f"[{self.request_id}] Resolution cancelled in phase {self.phase}")
            return self._outcome(ResolutionPhase.ERROR, error="cancelled", error_type="Cancelled")

        return self._timeout_outcome()
