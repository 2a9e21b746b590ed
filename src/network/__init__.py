"""
Oracle network clients for the price puller.

This module provides network abstractions and implementations:
- BaseOracleClient: Abstract base class for all network clients
- PaperOracleNetwork: In-memory simulator for dry runs and tests
- SedaChainClient: SEDA chain REST gateway client (testnet/mainnet)

Usage:
    from src.network import PaperOracleNetwork

    async with PaperOracleNetwork() as network:
        receipt = await network.submit(descriptor, sequence=0)
"""

from .base import (
    AssignmentRecord,
    BaseOracleClient,
    BatchRecord,
    DataResult,
    OracleNetworkError,
    QueryError,
    RequestDescriptor,
    ResultTimeoutError,
    SubmissionError,
    SubmissionReceipt,
)
from .paper import PaperOracleNetwork
from .seda import DataRequestSigner, SedaChainClient

__all__ = [
    # Base classes and records
    "BaseOracleClient",
    "RequestDescriptor",
    "SubmissionReceipt",
    "AssignmentRecord",
    "BatchRecord",
    "DataResult",
    # Exceptions
    "OracleNetworkError",
    "SubmissionError",
    "QueryError",
    "ResultTimeoutError",
    # Implementations
    "PaperOracleNetwork",
    "SedaChainClient",
    "DataRequestSigner",
]
