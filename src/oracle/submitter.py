"""
Sequenced data request submission.

Turns planned chunks into posted data requests under a single signing
identity:

- Each chunk becomes a RequestDescriptor with a unique memo
- A local sequence number is reserved per chunk
- The post is retried with exponential backoff (3 attempts, 2s, 4s)
- A chunk that still fails yields a ``"failed"`` sentinel handle so the
  rest of the batch carries on
- Consecutive submissions are spaced by a fixed delay to avoid sequence
  contention at the network layer
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..network.base import BaseOracleClient, RequestDescriptor, SubmissionError, SubmissionReceipt
from .models import FAILED_REQUEST_ID, Chunk, PendingRequestHandle, PullConfig
from .sequence import SequenceManager

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 2.0  # seconds
DEFAULT_INTER_SUBMIT_DELAY = 1.0  # seconds


def explorer_link(explorer_url: Optional[str], request_id: str, height: Optional[int]) -> Optional[str]:
    """Block explorer link for a data request."""
    if not explorer_url or request_id == FAILED_REQUEST_ID:
        return None
    base = explorer_url.rstrip("/")
    if height is None:
        return f"{base}/data-requests/{request_id}"
    return f"{base}/data-requests/{request_id}/{height}"


class RequestSubmitter:
    """
    Posts chunks as data requests, strictly one at a time.

    Attributes:
        client: Oracle network client used for posting.
        sequence_manager: Local sequence tracker for the signing identity.
        program_id: Oracle program to execute.
        gas_price: Execution gas price.
        max_attempts: Submission attempts per chunk.
        backoff_base: Delay before the first retry (doubles each retry).
        inter_submit_delay: Pause between consecutive chunks.
        explorer_url: Block explorer base URL for handle links.
    """

    def __init__(
        self,
        client: BaseOracleClient,
        sequence_manager: SequenceManager,
        program_id: str,
        gas_price: int,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        inter_submit_delay: float = DEFAULT_INTER_SUBMIT_DELAY,
        explorer_url: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.client = client
        self.sequence_manager = sequence_manager
        self.program_id = program_id
        self.gas_price = gas_price
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.inter_submit_delay = inter_submit_delay
        self.explorer_url = explorer_url
        self._sleep = sleep

        # Total network post calls made (one per attempt)
        self.submission_calls = 0

    @classmethod
    def from_config(
        cls,
        client: BaseOracleClient,
        sequence_manager: SequenceManager,
        config: PullConfig,
        **kwargs,
    ) -> "RequestSubmitter":
        return cls(
            client=client,
            sequence_manager=sequence_manager,
            program_id=config.program_id,
            gas_price=config.gas_price,
            max_attempts=config.max_submit_retries,
            backoff_base=config.submit_backoff_base,
            inter_submit_delay=config.inter_submit_delay,
            explorer_url=config.explorer_url,
            **kwargs,
        )

    def build_descriptor(self, chunk: Chunk) -> RequestDescriptor:
        """
        Build the data request for a chunk.

        The memo combines a UTC timestamp with the chunk index so repeated
        pulls of the same assets are distinct requests to the network.
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        return RequestDescriptor(
            program_id=self.program_id,
            encoded_input=chunk.encoded_input,
            memo=f"{timestamp}#chunk-{chunk.index}",
            gas_price=self.gas_price,
            consensus_options={"method": "none"},
            gas_limit=chunk.estimated_gas_cost or None,
        )

    async def _post(self, descriptor: RequestDescriptor, sequence: int) -> SubmissionReceipt:
        """Single network post; any failure surfaces as SubmissionError."""
        self.submission_calls += 1
        try:
            return await self.client.submit(descriptor, sequence=sequence)
        except SubmissionError:
            raise
        except Exception as e:
            raise SubmissionError(f"Submission failed: {e}") from e

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Attempt {retry_state.attempt_number}/{self.max_attempts} failed: {error}. "
            f"Retrying in {delay:.1f}s..."
        )

    async def submit(self, chunk: Chunk) -> PendingRequestHandle:
        """
        Post one chunk with bounded retry.

        Args:
            chunk: Chunk to submit.

        Returns:
            Pending handle; ``request_id == "failed"`` if every attempt failed.
        """
        descriptor = self.build_descriptor(chunk)
        sequence = self.sequence_manager.next_sequence()

        logger.info(f"Submitting request {chunk.index + 1}: {descriptor.encoded_input} (sequence {sequence})")
        logger.debug(f"  Estimated gas: {chunk.estimated_gas_cost}, estimated cost: {chunk.estimated_cost} SEDA")

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.backoff_base, min=0),
                retry=retry_if_exception_type(SubmissionError),
                before_sleep=self._log_retry,
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    receipt = await self._post(descriptor, sequence)
        except SubmissionError as e:
            self.sequence_manager.mark_failed(sequence)
            logger.error(f"Failed to submit chunk {chunk.index + 1} after {self.max_attempts} attempts: {e}")
            return PendingRequestHandle(
                request_id=FAILED_REQUEST_ID,
                height=None,
                chunk=chunk,
                sequence=sequence,
                memo=descriptor.memo,
                error=str(e),
            )

        self.sequence_manager.mark_complete(sequence)
        logger.info(f"Chunk {chunk.index + 1} accepted as data request {receipt.request_id}")

        return PendingRequestHandle(
            request_id=receipt.request_id,
            height=receipt.height,
            chunk=chunk,
            sequence=sequence,
            memo=descriptor.memo,
            explorer_url=explorer_link(self.explorer_url, receipt.request_id, receipt.height),
        )

    async def submit_all(self, chunks: Sequence[Chunk]) -> list[PendingRequestHandle]:
        """
        Submit chunks in order, one at a time.

        Returns:
            One handle per chunk, in chunk order (failed ones included).
        """
        handles = []
        for position, chunk in enumerate(chunks):
            handles.append(await self.submit(chunk))

            if position < len(chunks) - 1 and self.inter_submit_delay > 0:
                await self._sleep(self.inter_submit_delay)

        failed = sum(1 for h in handles if h.is_failed)
        logger.info(f"Submitted {len(handles) - failed}/{len(handles)} requests ({failed} failed)")
        return handles
