"""
Gas-bounded chunk planning.

Splits a requested asset list into contiguous chunks that each fit the gas
budget of a single data request. With the default gas settings
(80M gas per asset, 300M gas per request) every chunk holds 3 assets.
"""

import logging
from typing import Optional, Sequence

from .models import GAS_COST_SCALE, Chunk, PlanningError, PullConfig

logger = logging.getLogger(__name__)


def max_assets_per_chunk(gas_per_asset: int, max_gas_per_request: int) -> int:
    """
    Number of assets that fit in one request's gas budget (at least 1).

    Raises:
        PlanningError: If either gas value is not positive.
    """
    if gas_per_asset <= 0:
        raise PlanningError(f"gas_per_asset must be positive, got {gas_per_asset}")
    if max_gas_per_request <= 0:
        raise PlanningError(f"max_gas_per_request must be positive, got {max_gas_per_request}")
    return max(1, max_gas_per_request // gas_per_asset)


def plan(
    assets: Sequence[str],
    gas_per_asset: int,
    max_gas_per_request: int,
    gas_price: int = 0,
    max_assets: Optional[int] = None,
) -> list[Chunk]:
    """
    Split assets into ordered, gas-bounded chunks.

    Args:
        assets: Requested asset ids, in order.
        gas_per_asset: Estimated execution gas per asset.
        max_gas_per_request: Gas budget of one data request.
        gas_price: Execution gas price, used for the cost estimate.
        max_assets: Fixed chunk size overriding the gas-derived one
            (1 = one asset per request, len(assets) = single bundle).

    Returns:
        Chunks whose concatenated assets equal the input exactly.

    Raises:
        PlanningError: If the asset list is empty or a parameter is invalid.
    """
    if not assets:
        raise PlanningError("At least one asset is required")

    size = max_assets_per_chunk(gas_per_asset, max_gas_per_request)
    if max_assets is not None:
        if max_assets < 1:
            raise PlanningError(f"max_assets must be at least 1, got {max_assets}")
        size = max_assets

    chunks = []
    for index, start in enumerate(range(0, len(assets), size)):
        chunk_assets = list(assets[start:start + size])
        estimated_gas_cost = gas_per_asset * len(chunk_assets)
        chunks.append(
            Chunk(
                index=index,
                assets=chunk_assets,
                estimated_gas_cost=estimated_gas_cost,
                estimated_cost=estimated_gas_cost * gas_price // GAS_COST_SCALE,
            )
        )

    logger.info(f"Split {len(assets)} assets into {len(chunks)} requests (max {size} per request)")
    for chunk in chunks:
        logger.debug(
            f"  Request {chunk.index + 1}: {chunk.encoded_input} "
            f"(gas={chunk.estimated_gas_cost}, cost={chunk.estimated_cost})"
        )

    return chunks


def summarize_plan(chunks: Sequence[Chunk]) -> dict[str, int]:
    """Totals across a plan."""
    return {
        "request_count": len(chunks),
        "asset_count": sum(len(chunk) for chunk in chunks),
        "total_estimated_gas": sum(chunk.estimated_gas_cost for chunk in chunks),
        "total_estimated_cost": sum(chunk.estimated_cost for chunk in chunks),
    }


class ChunkPlanner:
    """
    Planner bound to one gas configuration.

    Attributes:
        gas_per_asset: Estimated execution gas per asset.
        max_gas_per_request: Gas budget of one data request.
        gas_price: Execution gas price.
        max_assets: Optional fixed chunk size.
    """

    def __init__(
        self,
        gas_per_asset: int,
        max_gas_per_request: int,
        gas_price: int = 0,
        max_assets: Optional[int] = None,
    ):
        self.gas_per_asset = gas_per_asset
        self.max_gas_per_request = max_gas_per_request
        self.gas_price = gas_price
        self.max_assets = max_assets

    @classmethod
    def from_config(cls, config: PullConfig) -> "ChunkPlanner":
        return cls(
            gas_per_asset=config.gas_per_asset,
            max_gas_per_request=config.max_gas_per_request,
            gas_price=config.gas_price,
            max_assets=config.max_assets_per_chunk,
        )

    @property
    def chunk_size(self) -> int:
        if self.max_assets is not None:
            return self.max_assets
        return max_assets_per_chunk(self.gas_per_asset, self.max_gas_per_request)

    def plan(self, assets: Sequence[str]) -> list[Chunk]:
        return plan(
            assets,
            gas_per_asset=self.gas_per_asset,
            max_gas_per_request=self.max_gas_per_request,
            gas_price=self.gas_price,
            max_assets=self.max_assets,
        )
