"""
Virtual constant-product AMM pricing for perpetual markets.

Algorithm Design:
- Type: Fixed-Point Integer Arithmetic / Deterministic Rounding
- Time Complexity: O(1) per quote or reserve update
- Invariant: the curve constant is ``k_initial``. After every trade
  k_initial <= x' * y' < k_initial + x', so rounding drift is bounded by the
  single trade that produced it and never accumulates across a sequence.

Reserve direction:
- opening a Long or closing a Short takes base out of the pool (price rises),
- opening a Short or closing a Long puts base into the pool (price falls).

The post-trade quote reserve is ``ceil(k_initial / x')``: rounding dust always
favors the pool, and an open followed by the matching close lands back on the
initial reserves exactly.
"""

from __future__ import annotations

from dataclasses import replace

from ..config import EngineConfig
from .errors import (
    InvalidAMMState,
    InvalidFundingInterval,
    InvalidFundingRate,
    InvalidLeverage,
    InvalidMarginRatio,
    InvalidMarketSymbol,
    MarketInactive,
    TradeSizeTooLarge,
    ValidationError,
)
from .fixed_point import (
    BPS_SCALE,
    PRICE_SCALE,
    U64,
    U128,
    checked_add,
    checked_div_ceil,
    checked_mul,
    checked_sub,
    mul_div,
)
from .types import Market, MarketParams, MarketParamsUpdate, Side


# -- Parameter validation -----------------------------------------------------

def validate_margin_ratios(maintenance_margin_ratio: int, initial_margin_ratio: int) -> None:
    if not (0 < maintenance_margin_ratio < BPS_SCALE):
        raise InvalidMarginRatio(f"maintenance_margin_ratio must be in (0, 10000): {maintenance_margin_ratio}")
    if not (maintenance_margin_ratio <= initial_margin_ratio < BPS_SCALE):
        raise InvalidMarginRatio(
            f"initial_margin_ratio must be in [{maintenance_margin_ratio}, 10000): {initial_margin_ratio}"
        )


def validate_liquidation_fee_ratio(ratio: int) -> None:
    if not (0 < ratio < BPS_SCALE):
        raise ValidationError(f"liquidation_fee_ratio must be in (0, 10000): {ratio}")


def validate_funding_rate(rate: int, config: EngineConfig) -> None:
    if not isinstance(rate, int) or isinstance(rate, bool):
        raise InvalidFundingRate("funding rate must be an int")
    if abs(rate) > config.max_abs_funding_rate:
        raise InvalidFundingRate(f"|funding rate| exceeds {config.max_abs_funding_rate}: {rate}")


def validate_market_params(params: MarketParams, config: EngineConfig) -> None:
    if not isinstance(params.market_symbol, str) or not params.market_symbol.strip():
        raise InvalidMarketSymbol("market symbol must be a non-empty string")
    if params.funding_interval <= 0:
        raise InvalidFundingInterval(f"funding_interval must be positive: {params.funding_interval}")
    validate_margin_ratios(params.maintenance_margin_ratio, params.initial_margin_ratio)
    if params.max_leverage <= 0:
        raise InvalidLeverage(f"max_leverage must be positive: {params.max_leverage}")
    validate_liquidation_fee_ratio(params.liquidation_fee_ratio)
    validate_funding_rate(params.initial_funding_rate, config)
    if params.virtual_base_reserve < 0 or params.virtual_quote_reserve < 0:
        raise InvalidAMMState("virtual reserves must be non-negative")


# -- Lifecycle ----------------------------------------------------------------

def init_market(
    market_id: str,
    authority: str,
    params: MarketParams,
    now: int,
    config: EngineConfig,
) -> Market:
    """Build a fresh, active market from validated ``params``."""
    validate_market_params(params, config)
    base = params.virtual_base_reserve or config.default_virtual_base_reserve
    quote = params.virtual_quote_reserve or config.default_virtual_quote_reserve
    if not U64.contains(base) or not U64.contains(quote):
        raise InvalidAMMState(f"virtual reserves must fit in u64: ({base}, {quote})")
    k = checked_mul(base, quote, U128)
    market = Market(
        market_id=market_id,
        authority=authority,
        market_symbol=params.market_symbol,
        virtual_base_reserve=base,
        virtual_quote_reserve=quote,
        k_initial=k,
        funding_rate=params.initial_funding_rate,
        last_funding_time=now,
        funding_interval=params.funding_interval,
        maintenance_margin_ratio=params.maintenance_margin_ratio,
        initial_margin_ratio=params.initial_margin_ratio,
        liquidation_fee_ratio=params.liquidation_fee_ratio,
        max_leverage=params.max_leverage,
        last_update_time=now,
    )
    return replace(market, last_price=spot_price(market))


def apply_params_update(market: Market, update: MarketParamsUpdate) -> Market:
    """Return ``market`` with every non-``None`` field of ``update`` applied."""
    mmr = market.maintenance_margin_ratio if update.maintenance_margin_ratio is None else update.maintenance_margin_ratio
    imr = market.initial_margin_ratio if update.initial_margin_ratio is None else update.initial_margin_ratio
    validate_margin_ratios(mmr, imr)

    interval = market.funding_interval if update.funding_interval is None else update.funding_interval
    if interval <= 0:
        raise InvalidFundingInterval(f"funding_interval must be positive: {interval}")

    max_leverage = market.max_leverage if update.max_leverage is None else update.max_leverage
    if max_leverage <= 0:
        raise InvalidLeverage(f"max_leverage must be positive: {max_leverage}")

    fee_ratio = market.liquidation_fee_ratio if update.liquidation_fee_ratio is None else update.liquidation_fee_ratio
    validate_liquidation_fee_ratio(fee_ratio)

    return replace(
        market,
        maintenance_margin_ratio=mmr,
        initial_margin_ratio=imr,
        funding_interval=interval,
        max_leverage=max_leverage,
        liquidation_fee_ratio=fee_ratio,
    )


def require_active(market: Market) -> None:
    if not market.is_active:
        raise MarketInactive(f"market {market.market_id} is paused")


# -- Pricing ------------------------------------------------------------------

def _require_reserves(market: Market) -> None:
    if market.virtual_base_reserve == 0 or market.virtual_quote_reserve == 0:
        raise InvalidAMMState("virtual reserves cannot be zero")


def spot_price(market: Market) -> int:
    """``quote * 1e6 / base`` (floor)."""
    _require_reserves(market)
    return mul_div(market.virtual_quote_reserve, PRICE_SCALE, market.virtual_base_reserve)


def removes_base(side: Side, is_closing: bool) -> bool:
    """True when the trade takes base out of the pool.

    A close trades against the curve as the opposite side of the position.
    """
    trade_side = side.opposite() if is_closing else side
    if trade_side is Side.LONG:
        return True
    if trade_side is Side.SHORT:
        return False
    raise ValueError(f"unknown side: {side!r}")


def constant_product(market: Market) -> int:
    return checked_mul(market.virtual_base_reserve, market.virtual_quote_reserve, U128)


def reserves_after_trade(market: Market, side: Side, size: int, is_closing: bool) -> tuple[int, int]:
    """Post-trade ``(base, quote)`` reserves for a trade of ``size`` base units.

    ``side`` is the side of the position being opened or closed.
    """
    _require_reserves(market)
    if size <= 0:
        raise ValueError(f"size must be positive: {size}")
    if market.k_initial <= 0:
        raise InvalidAMMState("curve constant must be positive")
    if removes_base(side, is_closing):
        if size >= market.virtual_base_reserve:
            raise InvalidAMMState(f"trade of {size} would drain base reserve {market.virtual_base_reserve}")
        new_base = checked_sub(market.virtual_base_reserve, size)
    else:
        new_base = checked_add(market.virtual_base_reserve, size)
    new_quote = checked_div_ceil(market.k_initial, new_base, U128)
    if not U64.contains(new_quote):
        raise InvalidAMMState(f"quote reserve {new_quote} exceeds u64")
    return new_base, new_quote


def price_with_impact(market: Market, side: Side, size: int, is_closing: bool) -> int:
    """Execution price of a trade: the post-trade spot price of the curve."""
    new_base, new_quote = reserves_after_trade(market, side, size, is_closing)
    return mul_div(new_quote, PRICE_SCALE, new_base)


def check_trade_size(market: Market, size: int, config: EngineConfig) -> None:
    """A single trade may not exceed ``max_trade_bps_of_base`` of the base reserve."""
    if size * BPS_SCALE > market.virtual_base_reserve * config.max_trade_bps_of_base:
        raise TradeSizeTooLarge(
            f"trade size {size} exceeds {config.max_trade_bps_of_base} bps of base reserve "
            f"{market.virtual_base_reserve}"
        )


def k_within_tolerance(k_ref: int, k_new: int, divisor: int) -> bool:
    """``|k_new - k_ref| <= k_ref / divisor`` (cross-multiplied, no division)."""
    return abs(k_new - k_ref) * divisor <= k_ref


def update_reserves(
    market: Market,
    side: Side,
    size: int,
    is_closing: bool,
    now: int,
    config: EngineConfig,
) -> Market:
    """Commit a trade to the curve and refresh ``last_price``.

    The new constant product must stay within ``1 / k_tolerance_divisor`` of
    both the pre-trade product and ``k_initial``.
    """
    k = constant_product(market)
    new_base, new_quote = reserves_after_trade(market, side, size, is_closing)
    k_new = checked_mul(new_base, new_quote, U128)
    if not k_within_tolerance(k, k_new, config.k_tolerance_divisor):
        raise InvalidAMMState(f"constant product drifted from {k} to {k_new}")
    if not k_within_tolerance(market.k_initial, k_new, config.k_tolerance_divisor):
        raise InvalidAMMState(f"constant product {k_new} drifted from initial {market.k_initial}")
    return replace(
        market,
        virtual_base_reserve=new_base,
        virtual_quote_reserve=new_quote,
        last_price=mul_div(new_quote, PRICE_SCALE, new_base),
        last_update_time=now,
    )
