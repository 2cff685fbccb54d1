"""Order records: synchronous market orders and AMM-matched limit orders.

A market order is filled in the same step that places it; its record is kept
(inactive) as a receipt linking the account to the resulting position.

A limit order rests until a keeper asks to fill it. It fills iff the AMM
execution price for its full size is at or better than the limit:

    Long:  exec_price <= limit_price
    Short: exec_price >= limit_price
"""

from __future__ import annotations

from dataclasses import replace

from .errors import InvalidOrderPrice, OrderNotActive, OrderNotFillable, Unauthorized
from .position import validate_open
from .types import Market, Order, OrderType, Side


def new_market_order(
    order_id: str,
    trader: str,
    account_id: str,
    market: Market,
    side: Side,
    size: int,
    leverage: int,
    execution_price: int,
    collateral: int,
    position_id: str,
    now: int,
) -> Order:
    return Order(
        order_id=order_id,
        trader=trader,
        account_id=account_id,
        market_id=market.market_id,
        side=side,
        order_type=OrderType.MARKET,
        price=execution_price,
        size=size,
        leverage=leverage,
        filled_size=size,
        collateral=collateral,
        created_at=now,
        is_active=False,
        position_id=position_id,
    )


def new_limit_order(
    order_id: str,
    trader: str,
    account_id: str,
    market: Market,
    side: Side,
    price: int,
    size: int,
    leverage: int,
    now: int,
) -> Order:
    if not isinstance(price, int) or isinstance(price, bool) or price <= 0:
        raise InvalidOrderPrice(f"limit price must be a positive int: {price!r}")
    validate_open(market, size, leverage)
    return Order(
        order_id=order_id,
        trader=trader,
        account_id=account_id,
        market_id=market.market_id,
        side=side,
        order_type=OrderType.LIMIT,
        price=price,
        size=size,
        leverage=leverage,
        created_at=now,
    )


def require_active(order: Order) -> None:
    if not order.is_active:
        raise OrderNotActive(f"order {order.order_id} is not active")


def limit_crosses(order: Order, execution_price: int) -> bool:
    if order.side is Side.LONG:
        return execution_price <= order.price
    if order.side is Side.SHORT:
        return execution_price >= order.price
    raise ValueError(f"unknown side: {order.side!r}")


def check_fillable(order: Order, execution_price: int) -> None:
    require_active(order)
    if order.order_type is not OrderType.LIMIT:
        raise OrderNotFillable(f"order {order.order_id} is not a limit order")
    if not limit_crosses(order, execution_price):
        raise OrderNotFillable(
            f"{order.side.value} limit {order.price} not reached by execution price {execution_price}"
        )


def mark_filled(order: Order, position_id: str, collateral: int) -> Order:
    return replace(
        order,
        filled_size=order.size,
        collateral=collateral,
        is_active=False,
        position_id=position_id,
    )


def cancel(order: Order, caller: str) -> Order:
    if order.trader != caller:
        raise Unauthorized(f"{caller!r} does not own order {order.order_id}")
    require_active(order)
    return replace(order, is_active=False)
