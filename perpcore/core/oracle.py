"""
Oracle quote validation.

The host fetches ``PriceQuote``s and supplies its clock; this module only
decides, deterministically, whether a quote may price a liquidation or a
margin withdrawal.
"""

from __future__ import annotations

from .errors import InvalidOraclePrice, PriceConfidenceTooLow, StaleOraclePrice
from .fixed_point import BPS_SCALE
from .types import PriceQuote


def is_fresh(quote: PriceQuote, now: int, max_staleness_seconds: int) -> bool:
    """True if the quote timestamp lies within ``[now - max_staleness, now]``."""
    if now < 0:
        raise ValueError(f"now must be non-negative: {now}")
    if quote.timestamp > now:
        return False
    return (now - quote.timestamp) <= max_staleness_seconds


def confidence_ok(quote: PriceQuote, max_confidence_bps: int) -> bool:
    """True when ``confidence / price <= max_confidence_bps / 10000``.

    Uses cross-multiplication to avoid division.
    """
    return quote.confidence * BPS_SCALE <= quote.price * max_confidence_bps


def validate_quote(
    quote: PriceQuote | None,
    now: int,
    *,
    max_staleness_seconds: int,
    max_confidence_bps: int,
) -> int:
    """Return the usable price of ``quote`` or raise."""
    if quote is None:
        raise InvalidOraclePrice("oracle quote required")
    if not isinstance(quote.price, int) or isinstance(quote.price, bool) or quote.price <= 0:
        raise InvalidOraclePrice(f"oracle price must be a positive int: {quote.price!r}")
    if quote.confidence < 0:
        raise InvalidOraclePrice(f"oracle confidence must be non-negative: {quote.confidence}")
    if not is_fresh(quote, now, max_staleness_seconds):
        raise StaleOraclePrice(f"quote at {quote.timestamp} is stale at {now}")
    if not confidence_ok(quote, max_confidence_bps):
        raise PriceConfidenceTooLow(
            f"confidence {quote.confidence} exceeds {max_confidence_bps} bps of {quote.price}"
        )
    return quote.price
