"""
SEDA chain client.

This module provides a concrete implementation of the BaseOracleClient
interface over the SEDA chain REST (LCD) gateway. Queries are plain HTTP
via httpx; posting data requests needs a signed transaction, which is
delegated to an injected signer so key handling stays outside this client.
"""

import asyncio
import base64
import binascii
import logging
from typing import Any, Optional, Protocol

import httpx

from .. import config
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

# gRPC status code returned in error bodies for missing records
GRPC_NOT_FOUND = 5


class DataRequestSigner(Protocol):
    """Signs and broadcasts data request transactions."""

    async def post_data_request(
        self,
        descriptor: RequestDescriptor,
        sequence: Optional[int] = None,
    ) -> SubmissionReceipt:
        ...


def _with_retry(max_retries: int = 2, base_delay: float = 0.5):
    """
    Decorator for retry logic with exponential backoff on transport errors.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Initial delay in seconds (doubles each retry).
    """

    def decorator(func):
        async def wrapper(*args, **kwargs):
            last_exception = None
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except httpx.TransportError as e:
                    last_exception = e
                    if attempt < max_retries:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            f"Transport error: {e}, retrying in {delay}s (attempt {attempt + 1}/{max_retries})"
                        )
                        await asyncio.sleep(delay)
            raise QueryError(f"Chain query failed: {last_exception}") from last_exception

        return wrapper

    return decorator


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _result_to_hex(value: Optional[str]) -> str:
    """Re-encode a base64 ``bytes`` field from the gateway as 0x hex."""
    if not value:
        return ""
    try:
        return "0x" + base64.b64decode(value, validate=True).hex()
    except (binascii.Error, ValueError):
        return value


class SedaChainClient(BaseOracleClient):
    """
    SEDA chain client over the REST gateway.

    Supports:
    - Testnet (default) and mainnet gateways
    - Batch assignment, batch and data result queries
    - Submission through an injected signer
    - Retry on transport errors

    Example:
        >>> async with SedaChainClient(signer=my_signer) as client:
        ...     receipt = await client.submit(descriptor, sequence=12)
        ...     result = await client.await_result(receipt.request_id, receipt.height)
    """

    DATA_RESULT_PATH = "/seda-chain/batching/data_result/{request_id}/{height}"
    BATCH_PATH = "/seda-chain/batching/batch/{batch_number}"

    def __init__(
        self,
        rest_url: Optional[str] = None,
        network: Optional[str] = None,
        signer: Optional[DataRequestSigner] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(network=network or config.SEDA_NETWORK, mock_mode=False)
        self._name = "seda"
        self.rest_url = (rest_url or config.SEDA_REST_URL).rstrip("/")
        self.signer = signer
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.rest_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )
        self.is_connected = True
        logger.info(f"Connected to SEDA {self.network} at {self.rest_url}")
        if self.signer is None:
            logger.warning("No signer configured - data requests cannot be posted")

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.is_connected = False

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            raise QueryError("Not connected. Call connect() first.")
        return self._client

    @_with_retry()
    async def _get(self, path: str) -> Optional[dict[str, Any]]:
        """GET a gateway path; None if the record does not exist (yet)."""
        client = self._ensure_connected()
        response = await client.get(path)

        if response.status_code == 404:
            return None

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            if isinstance(body, dict) and body.get("code") == GRPC_NOT_FOUND:
                return None
            raise QueryError(f"GET {path} failed with HTTP {response.status_code}: {response.text[:200]}")

        if not isinstance(body, dict):
            raise QueryError(f"GET {path} returned a non-object body")
        return body

    async def submit(
        self,
        descriptor: RequestDescriptor,
        sequence: Optional[int] = None,
    ) -> SubmissionReceipt:
        if self.signer is None:
            raise SubmissionError("No signer configured for data request submission")

        try:
            receipt = await self.signer.post_data_request(descriptor, sequence=sequence)
        except SubmissionError:
            raise
        except Exception as e:
            raise SubmissionError(f"Signer failed to post data request: {e}") from e

        logger.debug(f"Posted data request {receipt.request_id} at height {receipt.height}")
        return receipt

    def _data_result_path(self, request_id: str, height: Optional[int]) -> str:
        return self.DATA_RESULT_PATH.format(request_id=request_id, height=height or 0)

    async def query_assignment(
        self,
        request_id: str,
        height: Optional[int] = None,
    ) -> Optional[AssignmentRecord]:
        body = await self._get(self._data_result_path(request_id, height))
        if body is None:
            return None

        assignment = body.get("batch_assignment")
        if not assignment or assignment.get("batch_number") in (None, ""):
            return None

        return AssignmentRecord(
            request_id=request_id,
            batch_number=int(assignment["batch_number"]),
            height=_to_int(assignment.get("data_request_height")) or height,
            raw=body,
        )

    async def query_batch(self, batch_number: int) -> Optional[BatchRecord]:
        body = await self._get(self.BATCH_PATH.format(batch_number=batch_number))
        if body is None or not body.get("batch"):
            return None

        batch = body["batch"]
        return BatchRecord(
            batch_number=int(batch.get("batch_number", batch_number)),
            block_height=_to_int(batch.get("block_height")) or 0,
            signature_count=len(body.get("batch_signatures") or []),
            raw=body,
        )

    async def _fetch_result(self, request_id: str, height: Optional[int]) -> Optional[DataResult]:
        body = await self._get(self._data_result_path(request_id, height))
        if body is None or not body.get("data_result"):
            return None

        data_result = body["data_result"]
        return DataResult(
            request_id=request_id,
            exit_code=int(data_result.get("exit_code", 0)),
            result=_result_to_hex(data_result.get("result")),
            block_height=_to_int(data_result.get("block_height")),
            gas_used=_to_int(data_result.get("gas_used")),
        )

    async def await_result(
        self,
        request_id: str,
        height: Optional[int] = None,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
    ) -> DataResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            result = await self._fetch_result(request_id, height)
            if result is not None:
                return result

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ResultTimeoutError(f"No result for {request_id} within {timeout}s")
            await asyncio.sleep(min(poll_interval, remaining))
