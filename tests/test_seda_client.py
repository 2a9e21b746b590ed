"""
Tests for the SEDA chain REST client.

Tests cover:
- Data result / batch assignment queries
- Batch queries and signature counts
- Not-found handling (HTTP 404 and gRPC code 5)
- Result polling and timeouts
- Submission through the injected signer
- Transport retry
"""

import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.network.base import QueryError, RequestDescriptor, ResultTimeoutError, SubmissionError, SubmissionReceipt
from src.network.seda import SedaChainClient

REST_URL = "https://lcd.test"
PAYLOAD = json.dumps([{"symbol": "EUR/USD", "price": 1.0842}]).encode("utf-8")

DATA_RESULT_BODY = {
    "data_result": {
        "dr_id": "abc",
        "dr_block_height": "100",
        "block_height": "105",
        "exit_code": 0,
        "gas_used": "75000000",
        "result": base64.b64encode(PAYLOAD).decode("ascii"),
    },
    "batch_assignment": {
        "batch_number": "42",
        "data_request_id": "abc",
        "data_request_height": "100",
    },
}

BATCH_BODY = {
    "batch": {"batch_number": "42", "block_height": "110"},
    "batch_signatures": [{"validator_address": "v1"}, {"validator_address": "v2"}],
}


def make_client(handler, **kwargs) -> SedaChainClient:
    return SedaChainClient(rest_url=REST_URL, network="testnet", transport=httpx.MockTransport(handler), **kwargs)


def json_routes(routes):
    """Handler answering JSON bodies by path; unknown paths get 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path in routes:
            status, body = routes[request.url.path]
            return httpx.Response(status, json=body)
        return httpx.Response(404, json={"code": 5, "message": "not found"})

    return handler


def descriptor():
    return RequestDescriptor(program_id="prog", encoded_input="fx:EUR", memo="m", gas_price=1)


class TestConnection:
    """Tests for connection handling."""

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self):
        client = make_client(json_routes({}))
        await client.connect()
        assert client.is_connected
        assert client.name == "seda"
        await client.disconnect()
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_query_requires_connection(self):
        client = make_client(json_routes({}))
        with pytest.raises(QueryError):
            await client.query_batch(1)


class TestQueries:
    """Tests for chain queries."""

    @pytest.mark.asyncio
    async def test_query_assignment(self):
        routes = {"/seda-chain/batching/data_result/abc/100": (200, DATA_RESULT_BODY)}
        async with make_client(json_routes(routes)) as client:
            assignment = await client.query_assignment("abc", 100)

        assert assignment.batch_number == 42
        assert assignment.height == 100

    @pytest.mark.asyncio
    async def test_assignment_not_found(self):
        async with make_client(json_routes({})) as client:
            assert await client.query_assignment("abc", 100) is None

    @pytest.mark.asyncio
    async def test_grpc_not_found_code(self):
        routes = {"/seda-chain/batching/data_result/abc/0": (500, {"code": 5, "message": "not found"})}
        async with make_client(json_routes(routes)) as client:
            assert await client.query_assignment("abc") is None

    @pytest.mark.asyncio
    async def test_result_without_assignment(self):
        body = {"data_result": DATA_RESULT_BODY["data_result"]}
        routes = {"/seda-chain/batching/data_result/abc/100": (200, body)}
        async with make_client(json_routes(routes)) as client:
            assert await client.query_assignment("abc", 100) is None

    @pytest.mark.asyncio
    async def test_server_error(self):
        routes = {"/seda-chain/batching/batch/42": (500, {"code": 13, "message": "internal"})}
        async with make_client(json_routes(routes)) as client:
            with pytest.raises(QueryError):
                await client.query_batch(42)

    @pytest.mark.asyncio
    async def test_query_batch(self):
        routes = {"/seda-chain/batching/batch/42": (200, BATCH_BODY)}
        async with make_client(json_routes(routes)) as client:
            batch = await client.query_batch(42)

        assert batch.batch_number == 42
        assert batch.block_height == 110
        assert batch.signature_count == 2
        assert batch.is_signed

    @pytest.mark.asyncio
    async def test_unsigned_batch(self):
        routes = {"/seda-chain/batching/batch/42": (200, {"batch": BATCH_BODY["batch"]})}
        async with make_client(json_routes(routes)) as client:
            batch = await client.query_batch(42)
        assert not batch.is_signed

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            if calls["count"] == 1:
                raise httpx.ConnectError("connection refused")
            return httpx.Response(200, json=BATCH_BODY)

        with patch("src.network.seda.asyncio.sleep", new=AsyncMock()):
            async with make_client(handler) as client:
                batch = await client.query_batch(42)

        assert batch.batch_number == 42
        assert calls["count"] == 2

    @pytest.mark.asyncio
    async def test_transport_errors_exhausted(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with patch("src.network.seda.asyncio.sleep", new=AsyncMock()):
            async with make_client(handler) as client:
                with pytest.raises(QueryError):
                    await client.query_batch(42)


class TestAwaitResult:
    """Tests for result polling."""

    @pytest.mark.asyncio
    async def test_result_is_hex_encoded(self):
        routes = {"/seda-chain/batching/data_result/abc/100": (200, DATA_RESULT_BODY)}
        async with make_client(json_routes(routes)) as client:
            result = await client.await_result("abc", 100)

        assert result.exit_code == 0
        assert result.result == "0x" + PAYLOAD.hex()
        assert result.block_height == 105
        assert result.gas_used == 75_000_000

    @pytest.mark.asyncio
    async def test_polls_until_available(self):
        responses = [
            httpx.Response(404, json={"code": 5}),
            httpx.Response(200, json=DATA_RESULT_BODY),
        ]

        def handler(request):
            return responses.pop(0)

        async with make_client(handler) as client:
            result = await client.await_result("abc", 100, timeout=5.0, poll_interval=0.01)

        assert result.exit_code == 0
        assert responses == []

    @pytest.mark.asyncio
    async def test_timeout(self):
        async with make_client(json_routes({})) as client:
            with pytest.raises(ResultTimeoutError):
                await client.await_result("abc", 100, timeout=0.05, poll_interval=0.01)


class TestSubmit:
    """Tests for submission through the signer."""

    @pytest.mark.asyncio
    async def test_without_signer(self):
        async with make_client(json_routes({})) as client:
            with pytest.raises(SubmissionError):
                await client.submit(descriptor(), sequence=0)

    @pytest.mark.asyncio
    async def test_with_signer(self):
        signer = MagicMock()
        signer.post_data_request = AsyncMock(return_value=SubmissionReceipt(request_id="abc", height=100))

        async with make_client(json_routes({}), signer=signer) as client:
            receipt = await client.submit(descriptor(), sequence=4)

        assert receipt.request_id == "abc"
        signer.post_data_request.assert_awaited_once()
        assert signer.post_data_request.await_args.kwargs["sequence"] == 4

    @pytest.mark.asyncio
    async def test_signer_failure_is_submission_error(self):
        signer = MagicMock()
        signer.post_data_request = AsyncMock(side_effect=RuntimeError("account sequence mismatch"))

        async with make_client(json_routes({}), signer=signer) as client:
            with pytest.raises(SubmissionError):
                await client.submit(descriptor(), sequence=4)
