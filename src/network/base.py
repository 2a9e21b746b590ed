"""
Abstract oracle network interface.

This module defines the records exchanged with the SEDA network (submission
receipts, batch assignments, batches and data results), the exception
hierarchy for network collaborators, and the abstract client that all
concrete network implementations must inherit from.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class RequestDescriptor:
    """
    Everything the network needs to post one data request.

    Attributes:
        program_id: Oracle program to execute.
        encoded_input: Execution input (assets joined by commas).
        memo: Free-form memo; unique per submission so identical asset
            lists are still distinct requests.
        gas_price: Execution gas price.
        consensus_options: Consensus filter options.
        tally_inputs: Tally phase input (unused by the price program).
        gas_limit: Optional execution gas limit.
    """

    program_id: str
    encoded_input: str
    memo: str
    gas_price: int
    consensus_options: dict[str, Any] = field(default_factory=lambda: {"method": "none"})
    tally_inputs: str = ""
    gas_limit: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "program_id": self.program_id,
            "encoded_input": self.encoded_input,
            "memo": self.memo,
            "gas_price": str(self.gas_price),
            "consensus_options": self.consensus_options,
            "tally_inputs": self.tally_inputs,
            "gas_limit": str(self.gas_limit) if self.gas_limit is not None else None,
        }


@dataclass
class SubmissionReceipt:
    """
    Result of an accepted submission.

    Attributes:
        request_id: Network-assigned data request id.
        height: Block height of the submission, or None while pending.
        tx_hash: Transaction hash, when known.
    """

    request_id: str
    height: Optional[int] = None
    tx_hash: Optional[str] = None


@dataclass
class AssignmentRecord:
    """A finalized data result together with its batch assignment."""

    request_id: str
    batch_number: int
    height: Optional[int] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchRecord:
    """
    A signing batch.

    Attributes:
        batch_number: Sequential batch number.
        block_height: Height at which the batch was created.
        signature_count: Validator signatures observed so far.
    """

    batch_number: int
    block_height: int
    signature_count: int = 0
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_signed(self) -> bool:
        """Check if at least one validator has signed the batch."""
        return self.signature_count > 0


@dataclass
class DataResult:
    """
    Executed data request result.

    Attributes:
        request_id: Data request id.
        exit_code: Oracle program exit code (0 = success).
        result: Raw payload (possibly 0x-prefixed hex text, or bytes).
        block_height: Height at which the result was committed.
        gas_used: Gas consumed by execution, when reported.
    """

    request_id: str
    exit_code: int
    result: Any = None
    block_height: Optional[int] = None
    gas_used: Optional[int] = None
    fetched_at: datetime = field(default_factory=_utc_now)


class OracleNetworkError(Exception):
    """Base exception for oracle network errors."""

    pass


class SubmissionError(OracleNetworkError):
    """Raised when the network or signing layer rejects or times out a post."""

    pass


class QueryError(OracleNetworkError):
    """Raised when a chain query fails."""

    pass


class ResultTimeoutError(QueryError):
    """Raised when a data result did not appear within its polling budget."""

    pass


class BaseOracleClient(ABC):
    """
    Abstract base class for oracle network clients.

    Attributes:
        name: Client name identifier.
        network: Network name (testnet/mainnet/paper).
        is_connected: Connection status flag.
        is_mock: Whether the client simulates the network.
    """

    def __init__(self, network: str = "testnet", mock_mode: bool = False) -> None:
        self.network = network
        self.is_mock = mock_mode
        self.is_connected = False
        self._name = "base"

    @property
    def name(self) -> str:
        """Client name identifier."""
        return self._name

    @abstractmethod
    async def connect(self) -> None:
        """Open connections to the network."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release network resources."""
        pass

    @abstractmethod
    async def submit(
        self,
        descriptor: RequestDescriptor,
        sequence: Optional[int] = None,
    ) -> SubmissionReceipt:
        """
        Post a data request.

        Args:
            descriptor: Request to post.
            sequence: Locally managed signer sequence number.

        Returns:
            Receipt with the request id and submission height (if known).

        Raises:
            SubmissionError: If the post is rejected or times out.
        """
        pass

    @abstractmethod
    async def query_assignment(
        self,
        request_id: str,
        height: Optional[int] = None,
    ) -> Optional[AssignmentRecord]:
        """
        Look up the data result and batch assignment of a request.

        Args:
            request_id: Data request id.
            height: Submission height, or None for latest.

        Returns:
            AssignmentRecord, or None if the request is not yet assigned.

        Raises:
            QueryError: If the query fails.
        """
        pass

    @abstractmethod
    async def query_batch(self, batch_number: int) -> Optional[BatchRecord]:
        """
        Fetch a batch by number.

        Returns:
            BatchRecord, or None if the batch has not formed yet.

        Raises:
            QueryError: If the query fails.
        """
        pass

    @abstractmethod
    async def await_result(
        self,
        request_id: str,
        height: Optional[int] = None,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
    ) -> DataResult:
        """
        Wait for and fetch the executed result of a request.

        Raises:
            ResultTimeoutError: If no result appears within ``timeout``.
            QueryError: If the query fails.
        """
        pass

    async def __aenter__(self) -> "BaseOracleClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def __repr__(self) -> str:
        mode = "mock" if self.is_mock else self.network
        status = "connected" if self.is_connected else "disconnected"
        return f"<{self.__class__.__name__} mode={mode} status={status}>"
