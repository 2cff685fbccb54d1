"""Position lifecycle: open -> (margin adjusted)* -> closed | liquidated.

Pricing comes from the market's AMM curve (``market.py``); margin comes from the
owner's account (``margin.py``). This module only computes and builds records.

PnL sign convention (``pnl``): a Long gains when the price rises, a Short gains
when it falls; ``floor((price - entry) * size / 1e6)`` for Long and
``floor((entry - price) * size / 1e6)`` for Short, so rounding never favors the
trader.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from ..config import EngineConfig
from .errors import (
    InsufficientMargin,
    InvalidLeverage,
    InvalidOrderSize,
    LeverageTooHigh,
    PositionClosed,
    PositionLiquidated,
    PositionSizeTooSmall,
    Unauthorized,
)
from .fixed_point import (
    BPS_SCALE,
    I64,
    I128,
    PRICE_SCALE,
    U128,
    bps_of_ceil,
    checked_add,
    checked_div_floor,
    checked_mul,
    checked_sub,
    mul_div,
    notional,
    to_unsigned,
)
from .margin import initial_margin_requirement
from .market import check_trade_size, price_with_impact
from .types import Market, Position, PositionStatus, Side


@dataclass(frozen=True)
class OpenQuote:
    execution_price: int
    position_value: int
    required_margin: int


def side_sign(side: Side) -> int:
    if side is Side.LONG:
        return 1
    if side is Side.SHORT:
        return -1
    raise ValueError(f"unknown side: {side!r}")


def pnl(side: Side, size: int, entry_price: int, price: int) -> int:
    """Signed PnL of ``size`` units entered at ``entry_price`` and valued at ``price``."""
    move = checked_mul(side_sign(side), price - entry_price, I128)
    return mul_div(move, size, PRICE_SCALE, I64)


def liquidation_price(side: Side, entry_price: int, collateral: int, size: int, maintenance_margin_ratio: int) -> int:
    """Mark price at which the position's margin buffer is used up.

    ``buffer = floor(collateral * 1e6 * (10000 - mmr) / (size * 10000))``;
    Long: ``entry - buffer`` (floored at 0), Short: ``entry + buffer``.
    """
    if size <= 0:
        raise InvalidOrderSize(f"size must be positive: {size}")
    buffer = checked_div_floor(
        checked_mul(checked_mul(collateral, PRICE_SCALE, U128), BPS_SCALE - maintenance_margin_ratio, U128),
        checked_mul(size, BPS_SCALE, U128),
        U128,
    )
    if side is Side.LONG:
        return max(0, entry_price - buffer)
    if side is Side.SHORT:
        return checked_add(entry_price, buffer)
    raise ValueError(f"unknown side: {side!r}")


def require_open(position: Position) -> None:
    if position.status is PositionStatus.LIQUIDATED:
        raise PositionLiquidated(f"position {position.position_id} has been liquidated")
    if position.status is not PositionStatus.OPEN:
        raise PositionClosed(f"position {position.position_id} is closed")


def require_owner(position: Position, caller: str) -> None:
    if position.trader != caller:
        raise Unauthorized(f"{caller!r} does not own position {position.position_id}")


# -- Open ---------------------------------------------------------------------

def validate_open(market: Market, size: int, leverage: int) -> None:
    if not isinstance(size, int) or isinstance(size, bool) or size <= 0:
        raise InvalidOrderSize(f"size must be a positive int: {size!r}")
    if not isinstance(leverage, int) or isinstance(leverage, bool) or leverage < 1:
        raise InvalidLeverage(f"leverage must be >= 1: {leverage!r}")
    if leverage > market.max_leverage:
        raise LeverageTooHigh(f"leverage {leverage} exceeds max {market.max_leverage}")


def quote_open(market: Market, side: Side, size: int, leverage: int, config: EngineConfig) -> OpenQuote:
    """Execution price, notional and initial margin for opening ``size`` on ``side``."""
    validate_open(market, size, leverage)
    check_trade_size(market, size, config)
    price = price_with_impact(market, side, size, is_closing=False)
    value = notional(size, price)
    if value == 0:
        raise PositionSizeTooSmall(f"position of {size} units at {price} has no quote value")
    required = initial_margin_requirement(value, market.initial_margin_ratio, leverage)
    return OpenQuote(execution_price=price, position_value=value, required_margin=required)


def new_position(
    position_id: str,
    trader: str,
    account_id: str,
    market: Market,
    side: Side,
    size: int,
    leverage: int,
    quote: OpenQuote,
    now: int,
) -> Position:
    return Position(
        position_id=position_id,
        trader=trader,
        account_id=account_id,
        market_id=market.market_id,
        side=side,
        size=size,
        collateral=quote.required_margin,
        entry_price=quote.execution_price,
        entry_funding_rate=market.funding_rate,
        leverage=leverage,
        liquidation_price=liquidation_price(
            side, quote.execution_price, quote.required_margin, size, market.maintenance_margin_ratio,
        ),
        last_funding_payment_time=now,
        last_cumulative_funding=market.cumulative_funding,
        opened_at=now,
    )


# -- Close --------------------------------------------------------------------

def quote_close(market: Market, position: Position, config: EngineConfig) -> tuple[int, int]:
    """``(exit_price, realized_pnl)`` for closing ``position`` against the curve."""
    check_trade_size(market, position.size, config)
    exit_price = price_with_impact(market, position.side, position.size, is_closing=True)
    return exit_price, pnl(position.side, position.size, position.entry_price, exit_price)


def terminate(position: Position, status: PositionStatus, exit_price: int, realized: int, now: int) -> Position:
    return replace(
        position,
        status=status,
        exit_price=exit_price,
        realized_pnl=checked_add(position.realized_pnl, realized, I64),
        closed_at=now,
    )


# -- Adjust margin ------------------------------------------------------------

def adjust_collateral(position: Position, market: Market, margin_change: int, mark_price: int | None) -> Position:
    """Add (+) or remove (-) collateral and recompute the liquidation price.

    Removal must leave at least ``ceil(value * imr / 10000)`` at ``mark_price``.
    """
    if margin_change >= 0:
        collateral = checked_add(position.collateral, margin_change)
    else:
        removed = to_unsigned(-margin_change)
        if removed > position.collateral:
            raise InsufficientMargin(f"cannot remove {removed} from collateral {position.collateral}")
        collateral = checked_sub(position.collateral, removed)
        if mark_price is None:
            raise ValueError("mark_price required to remove margin")
        minimum = bps_of_ceil(notional(position.size, mark_price), market.initial_margin_ratio)
        if collateral < minimum:
            raise InsufficientMargin(f"collateral {collateral} would fall below initial requirement {minimum}")
    return replace(
        position,
        collateral=collateral,
        liquidation_price=liquidation_price(
            position.side, position.entry_price, collateral, position.size, market.maintenance_margin_ratio,
        ),
    )


def position_value(position: Position, price: int) -> int:
    return notional(position.size, price)


__all__ = [
    "OpenQuote",
    "adjust_collateral",
    "liquidation_price",
    "new_position",
    "pnl",
    "position_value",
    "quote_close",
    "quote_open",
    "require_open",
    "require_owner",
    "side_sign",
    "terminate",
    "validate_open",
]
