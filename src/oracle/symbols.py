"""
Asset identifier parsing and result-symbol normalization.

Requested assets use ``category:TICKER`` (or ``category:BASE:QUOTE``) ids.
The oracle program reports prices under the feed's own symbols, e.g.
``EUR/USD``, ``USD/JPY``, ``XAU/USD:BFX``, ``ES:USLF24`` or a bare ``AAPL``.
SymbolCodec maps those raw symbols back to the requested asset ids.

Example:
    >>> codec = SymbolCodec(["fx:EUR", "fx_r:JPY", "uslf_q:ES"])
    >>> codec.normalize("EUR/USD")
    'fx:EUR'
    >>> codec.normalize("ES:USLF24")
    'uslf_q:ES'
"""

import logging
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


# Categories understood by the price oracle program
EQUITY = "equity"
FX = "fx"
FX_REVERSE = "fx_r"
CFD = "cfd"
USLF_QUOTE = "uslf_q"
USLF_TRADE = "uslf_t"

KNOWN_CATEGORIES = (EQUITY, FX, FX_REVERSE, CFD, USLF_QUOTE, USLF_TRADE)

# Raw symbol conventions
USLF_SUFFIX = ":USLF24"
BFX_SUFFIX = ":BFX"
USLF_FAMILY = "uslf"
QUOTE_CURRENCY = "USD"

# Assets offered by default, grouped for display
DEFAULT_ASSET_CATALOG: dict[str, list[tuple[str, str]]] = {
    "US Equities & ETFs": [
        ("equity:AAPL", "Apple Inc. (AAPL)"),
        ("equity:MSFT", "Microsoft Corp. (MSFT)"),
        ("equity:TSLA", "Tesla Inc. (TSLA)"),
        ("equity:AMZN", "Amazon.com Inc. (AMZN)"),
        ("equity:NVDA", "NVIDIA Corp. (NVDA)"),
        ("equity:GOOG", "Alphabet Inc. (GOOG)"),
        ("equity:META", "Meta Platforms Inc. (META)"),
        ("equity:UNH", "UnitedHealth Group Inc. (UNH)"),
        ("equity:SPY", "SPDR S&P 500 ETF (SPY)"),
    ],
    "Forex (*/USD)": [
        ("fx:EUR", "EUR/USD"),
        ("fx:GBP", "GBP/USD"),
    ],
    "Forex Reverse (USD/*)": [
        ("fx_r:JPY", "USD/JPY"),
    ],
    "Commodities (CFD)": [
        ("cfd:XAU:USD", "Gold (XAU/USD)"),
        ("cfd:WTI:USD", "WTI Crude Oil (WTI/USD)"),
        ("cfd:BRN:USD", "Brent Crude Oil (BRN/USD)"),
    ],
    "US Listed Funds - Trade (Overnight Session)": [
        ("uslf_t:NVDA", "NVDA (Trade, Overnight)"),
        ("uslf_t:TSLA", "TSLA (Trade, Overnight)"),
        ("uslf_t:GOOG", "GOOG (Trade, Overnight)"),
        ("uslf_t:AAPL", "AAPL (Trade, Overnight)"),
        ("uslf_t:UNH", "UNH (Trade, Overnight)"),
        ("uslf_t:META", "META (Trade, Overnight)"),
        ("uslf_t:MSFT", "MSFT (Trade, Overnight)"),
        ("uslf_t:SPY", "SPY (Trade, Overnight)"),
        ("uslf_t:AMZN", "AMZN (Trade, Overnight)"),
        ("uslf_t:COIN", "COIN (Trade, Overnight)"),
        ("uslf_t:CRCL", "CRCL (Trade, Overnight)"),
    ],
}


def catalog_asset_ids() -> list[str]:
    """All asset ids in the default catalog, in display order."""
    return [asset_id for assets in DEFAULT_ASSET_CATALOG.values() for asset_id, _ in assets]


def parse_asset_id(asset_id: str) -> tuple[str, str]:
    """
    Split an asset id into (category, base).

    The category is everything before the first colon; the remaining parts
    form the base, so ``cfd:XAU:USD`` gives ``("cfd", "XAU:USD")``. An id
    without a colon has an empty category.
    """
    category, sep, base = asset_id.partition(":")
    if not sep:
        return "", asset_id
    return category, base


def to_raw_symbol(asset_id: str) -> str:
    """
    Format an asset id the way the oracle program reports its price.

    Only ``uslf_q`` quotes carry the ``:USLF24`` suffix; ``uslf_t`` trades
    come back as the bare ticker, like equities.

    Args:
        asset_id: Requested asset id (e.g. ``fx_r:JPY``).

    Returns:
        Raw result symbol (e.g. ``USD/JPY``).
    """
    category, base = parse_asset_id(asset_id)

    if category == FX:
        return f"{base}/{QUOTE_CURRENCY}"
    if category == FX_REVERSE:
        return f"{QUOTE_CURRENCY}/{base}"
    if category == CFD:
        if ":" in base:
            symbol, _, quote = base.partition(":")
            return f"{symbol}/{quote}{BFX_SUFFIX}"
        return base
    if category == USLF_QUOTE:
        return f"{base}{USLF_SUFFIX}"
    return base


def _pair_key(base: str) -> str:
    return base.replace("/", ":")


def _candidates(raw: str) -> list[tuple[Optional[str], str]]:
    """
    Interpretations of a raw symbol as (category, base), most specific first.

    A category of None matches any asset with the same base.
    """
    if raw.endswith(USLF_SUFFIX):
        return [(USLF_FAMILY, raw[: -len(USLF_SUFFIX)])]

    if raw.endswith(BFX_SUFFIX):
        return [(CFD, raw[: -len(BFX_SUFFIX)])]

    if "/" in raw:
        base, _, quote = raw.partition("/")
        if quote == QUOTE_CURRENCY:
            return [(FX, base), (CFD, raw)]
        if base == QUOTE_CURRENCY:
            return [(FX_REVERSE, quote), (CFD, raw)]
        return [(CFD, raw)]

    if ":" in raw:
        prefix, _, rest = raw.partition(":")
        return [(prefix, rest)]

    return [(EQUITY, raw), (None, raw)]


def _matches(category: Optional[str], base: str, asset_category: str, asset_base: str) -> bool:
    if category is None:
        return asset_base == base
    if category == USLF_FAMILY:
        # The feed suffix does not say whether it was a quote or a trade
        return asset_category.startswith(USLF_FAMILY + "_") and asset_base == base
    if category == CFD:
        return asset_category == CFD and _pair_key(asset_base) == _pair_key(base)
    return asset_category == category and asset_base == base


class SymbolCodec:
    """
    Maps raw result symbols to known asset ids.

    Resolution order (first match wins):
        1. Exact match with a known asset id.
        2. ``:USLF24`` / ``:BFX`` suffix (uslf family / cfd pair).
        3. Slash pair: ``X/USD`` -> fx, ``USD/X`` -> fx_r, other -> cfd.
        4. Colon pair: ``prefix:rest``.
        5. Bare ticker: equity first, then any category with that base.

    When several known assets satisfy the same interpretation (for example
    both ``uslf_q:ES`` and ``uslf_t:ES`` for ``ES:USLF24``), the one listed
    first in ``known_assets`` wins. Build the codec from the caller's
    requested assets so their order decides.

    Some assets are reported under the same raw symbol and cannot be told
    apart in a result: ``equity:AAPL`` and ``uslf_t:AAPL`` both come back as
    ``AAPL``. Such a symbol always resolves to the equity, so when both are
    requested the equity holds whichever ``AAPL`` price was merged last and
    the ``uslf_t`` asset is reported missing. ``collisions()`` lists these
    groups so callers can warn before submitting.

    Attributes:
        known_assets: Asset ids eligible as normalization targets.
    """

    def __init__(self, known_assets: Iterable[str]):
        self.known_assets: list[str] = list(dict.fromkeys(known_assets))
        self._known_set = set(self.known_assets)
        self._parsed = [(asset_id, parse_asset_id(asset_id)) for asset_id in self.known_assets]

    def matches(self, raw: str) -> list[str]:
        """
        All known assets matching the first interpretation that matches any.

        Returns:
            Matching asset ids in known order (empty if none).
        """
        if raw in self._known_set:
            return [raw]

        for category, base in _candidates(raw):
            found = [
                asset_id
                for asset_id, (asset_category, asset_base) in self._parsed
                if _matches(category, base, asset_category, asset_base)
            ]
            if found:
                return found
        return []

    def normalize(self, raw: str) -> Optional[str]:
        """
        Translate a raw result symbol to a known asset id.

        Args:
            raw: Symbol as reported by the oracle program.

        Returns:
            Canonical asset id, or None if no known asset matches.
        """
        found = self.matches(raw)
        if not found:
            return None
        if len(found) > 1:
            logger.debug(f"Ambiguous symbol {raw!r} matches {found}; using {found[0]}")
        return found[0]

    def collisions(self) -> dict[str, list[str]]:
        """
        Known assets that the oracle program reports under one raw symbol.

        Returns:
            Raw symbol -> asset ids (known order), only for symbols shared
            by more than one known asset.
        """
        groups: dict[str, list[str]] = {}
        for asset_id in self.known_assets:
            groups.setdefault(to_raw_symbol(asset_id), []).append(asset_id)
        return {raw: asset_ids for raw, asset_ids in groups.items() if len(asset_ids) > 1}

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self._known_set

    def __len__(self) -> int:
        return len(self.known_assets)
