"""
Streaming merge of resolved price results.

Resolution tasks finish in any order; each finished outcome is fed into the
aggregator, which normalizes raw symbols to asset ids and merges them into
one map. Merging is last-write-wins per asset id: when two requests report
the same asset, the one merged most recently is kept. That is the intended
"most recent wins" policy, not an ordering bug.
"""

import asyncio
import logging
from typing import Iterable, Mapping

from .models import PriceResult, ResolutionOutcome
from .symbols import SymbolCodec

logger = logging.getLogger(__name__)


def merge(
    current: Mapping[str, PriceResult],
    incoming: Iterable[PriceResult],
    codec: SymbolCodec,
) -> dict[str, PriceResult]:
    """
    Merge incoming results into a copy of ``current``.

    Each incoming raw symbol is normalized first; a symbol that matches no
    known asset is stored under its raw form rather than dropped.

    Args:
        current: Existing results keyed by asset id.
        incoming: Newly decoded results (raw symbols).
        codec: Symbol normalizer.

    Returns:
        New mapping; ``current`` is not modified.
    """
    merged = dict(current)
    for result in incoming:
        raw_symbol = result.raw_symbol or result.symbol
        key = codec.normalize(raw_symbol) or raw_symbol
        merged[key] = PriceResult(symbol=key, price=result.price, raw_symbol=raw_symbol)
    return merged


class ResultAggregator:
    """
    Concurrent sink for resolution outcomes.

    ``add`` may be awaited concurrently by many resolution tasks; updates are
    serialized with an asyncio lock and never perform I/O while holding it.

    Attributes:
        codec: Symbol normalizer built from the requested assets.
        results: Aggregated results keyed by asset id (or raw symbol).
        raw_results: Opaque payloads that were not price arrays.
        unmatched_symbols: Raw symbols stored under their raw form.
        outcomes: Outcomes in completion order.
    """

    def __init__(self, codec: SymbolCodec):
        self.codec = codec
        self.results: dict[str, PriceResult] = {}
        self.raw_results: list[str] = []
        self.unmatched_symbols: list[str] = []
        self.outcomes: list[ResolutionOutcome] = []
        self._lock = asyncio.Lock()

    def _merge_results(self, incoming: list[PriceResult]) -> list[str]:
        """Merge results and return the raw symbols that matched no asset."""
        unmatched = [
            raw_symbol
            for raw_symbol in (result.raw_symbol or result.symbol for result in incoming)
            if self.codec.normalize(raw_symbol) is None
        ]
        self.unmatched_symbols.extend(unmatched)
        self.results = merge(self.results, incoming, self.codec)
        return unmatched

    def _warn_unmatched(self, unmatched: Iterable[str]) -> None:
        for raw_symbol in unmatched:
            logger.warning(f"No requested asset matches {raw_symbol!r}; keeping raw symbol")

    def merge(self, incoming: Iterable[PriceResult]) -> dict[str, PriceResult]:
        """Merge results into the aggregate map and return it."""
        self._warn_unmatched(self._merge_results(list(incoming)))
        return self.results

    async def add(self, outcome: ResolutionOutcome) -> None:
        """
        Record a terminal outcome and merge its prices.

        Logging happens after the lock is released.

        Args:
            outcome: Finished resolution of one request.
        """
        unmatched: list[str] = []
        async with self._lock:
            self.outcomes.append(outcome)
            if outcome.raw_result is not None:
                self.raw_results.append(outcome.raw_result)
            if outcome.results:
                unmatched = self._merge_results(list(outcome.results))
            total = len(self.results)

        self._warn_unmatched(unmatched)
        if outcome.results:
            logger.info(
                f"Merged {len(outcome.results)} prices from {outcome.handle.request_id} "
                f"(total {total})"
            )

    def snapshot(self) -> dict[str, PriceResult]:
        """Copy of the current aggregate map."""
        return dict(self.results)
