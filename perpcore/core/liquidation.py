"""Liquidation engine: maintenance check and fee split at an oracle price.

Callable by any actor. A position is liquidatable iff

    equity < ceil(position_value * mmr / 10000)

where ``equity = max(0, collateral + pnl)``. The fee on notional is split
``liquidator = fee // 2``, ``insurance = fee - liquidator`` so the odd unit goes
to the insurance fund.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import PositionNotLiquidatable
from .fixed_point import bps_of, bps_of_ceil, notional
from .position import pnl
from .types import Market, Position


@dataclass(frozen=True)
class LiquidationOutcome:
    mark_price: int
    position_value: int
    pnl: int
    equity: int
    maintenance_margin: int
    fee: int
    liquidator_fee: int
    insurance_fee: int
    residual: int       # equity left after the fee (Isolated accounts keep this)
    loss: int           # fee minus PnL, absorbed by a Cross account (signed)
    shortfall: int      # part of the fee not covered by equity


def maintenance_requirement(position_value: int, maintenance_margin_ratio: int) -> int:
    return bps_of_ceil(position_value, maintenance_margin_ratio)


def equity(position: Position, price: int) -> int:
    """Collateral plus unrealized PnL, floored at zero."""
    return max(0, position.collateral + pnl(position.side, position.size, position.entry_price, price))


def is_liquidatable(position: Position, market: Market, price: int) -> bool:
    value = notional(position.size, price)
    return equity(position, price) < maintenance_requirement(value, market.maintenance_margin_ratio)


def split_fee(fee: int) -> tuple[int, int]:
    """``(liquidator_fee, insurance_fee)``."""
    liquidator = fee // 2
    return liquidator, fee - liquidator


def assess(position: Position, market: Market, price: int) -> LiquidationOutcome:
    """Evaluate ``position`` at ``price``; raise unless it is liquidatable."""
    value = notional(position.size, price)
    unrealized = pnl(position.side, position.size, position.entry_price, price)
    eq = max(0, position.collateral + unrealized)
    maintenance = maintenance_requirement(value, market.maintenance_margin_ratio)
    if eq >= maintenance:
        raise PositionNotLiquidatable(
            f"position {position.position_id}: equity {eq} >= maintenance {maintenance}"
        )

    fee = bps_of(value, market.liquidation_fee_ratio)
    liquidator_fee, insurance_fee = split_fee(fee)
    covered = min(fee, eq)
    return LiquidationOutcome(
        mark_price=price,
        position_value=value,
        pnl=unrealized,
        equity=eq,
        maintenance_margin=maintenance,
        fee=fee,
        liquidator_fee=liquidator_fee,
        insurance_fee=insurance_fee,
        residual=eq - covered,
        loss=fee - unrealized,
        shortfall=fee - covered,
    )
