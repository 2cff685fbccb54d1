"""
Margin account ledger.

Pure functions over ``MarginAccount`` records; each returns a new record or
raises. Margin-type policy:

- Isolated: collateral is explicitly allocated per position,
  ``allocated_margin <= collateral`` and
  ``available_margin = collateral - allocated_margin``.
- Cross: all collateral is shared, ``available_margin = collateral``.

Requirements are rounded up, so the account can never look better funded than
it is.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Mapping

from ..config import EngineConfig
from .errors import (
    DepositTooSmall,
    DuplicateReference,
    InsufficientCollateral,
    InsufficientMargin,
    TooManyOrders,
    TooManyPositions,
    ValidationError,
    WithdrawalBelowMaintenanceMargin,
    WithdrawalExceedsAvailableMargin,
    WithdrawalTooSmall,
)
from .fixed_point import (
    BPS_SCALE,
    U128,
    apply_signed,
    checked_add,
    checked_div_ceil,
    checked_mul,
    checked_sub,
    notional,
    to_unsigned,
)
from .types import MarginAccount, MarginType, Market, Position


def create_account(
    account_id: str,
    owner: str,
    margin_type: MarginType,
    market_id: str | None,
    now: int,
) -> MarginAccount:
    if not owner:
        raise ValidationError("owner must be non-empty")
    if not isinstance(margin_type, MarginType):
        raise ValidationError(f"unknown margin type: {margin_type!r}")
    if margin_type is MarginType.ISOLATED and not market_id:
        raise ValidationError("isolated accounts must be bound to a market")
    return MarginAccount(
        account_id=account_id,
        owner=owner,
        margin_type=margin_type,
        market_id=market_id or None,
        created_at=now,
    )


def initial_margin_requirement(position_value: int, initial_margin_ratio: int, leverage: int) -> int:
    """``ceil(position_value * imr / 10000 / leverage)``."""
    return checked_div_ceil(
        checked_mul(position_value, initial_margin_ratio, U128),
        checked_mul(BPS_SCALE, leverage, U128),
        U128,
    )


def available_margin(account: MarginAccount) -> int:
    if account.margin_type is MarginType.ISOLATED:
        return checked_sub(account.collateral, account.allocated_margin)
    if account.margin_type is MarginType.CROSS:
        return account.collateral
    raise ValueError(f"unknown margin type: {account.margin_type!r}")


def required_margin_for_positions(
    positions: Iterable[Position],
    markets: Mapping[str, Market],
) -> int:
    """Summed initial requirement of ``positions`` at their entry prices."""
    total = 0
    for position in positions:
        if not position.is_open:
            continue
        market = markets[position.market_id]
        value = notional(position.size, position.entry_price)
        total = checked_add(
            total,
            initial_margin_requirement(value, market.initial_margin_ratio, position.leverage),
        )
    return total


# -- Collateral movements -----------------------------------------------------

def deposit(account: MarginAccount, amount: int, config: EngineConfig) -> MarginAccount:
    if amount < config.min_deposit:
        raise DepositTooSmall(f"deposit {amount} below minimum {config.min_deposit}")
    return replace(account, collateral=checked_add(account.collateral, amount))


def withdraw(
    account: MarginAccount,
    amount: int,
    config: EngineConfig,
    *,
    required_margin: int = 0,
) -> MarginAccount:
    """Withdraw ``amount``.

    ``required_margin`` is only consulted for Cross accounts: the summed initial
    requirement of every open position referenced by the account.
    """
    if amount < config.min_withdrawal:
        raise WithdrawalTooSmall(f"withdrawal {amount} below minimum {config.min_withdrawal}")
    if amount > account.collateral:
        raise InsufficientCollateral(f"withdrawal {amount} exceeds collateral {account.collateral}")

    if account.margin_type is MarginType.ISOLATED:
        if amount > available_margin(account):
            raise WithdrawalExceedsAvailableMargin(
                f"withdrawal {amount} exceeds available margin {available_margin(account)}"
            )
    elif account.margin_type is MarginType.CROSS:
        remaining = account.collateral - amount
        if remaining < required_margin:
            raise WithdrawalBelowMaintenanceMargin(
                f"remaining collateral {remaining} below required margin {required_margin}"
            )
    else:
        raise ValueError(f"unknown margin type: {account.margin_type!r}")

    return replace(account, collateral=checked_sub(account.collateral, amount))


def open_allocate(account: MarginAccount, required_margin: int) -> MarginAccount:
    """Reserve ``required_margin`` for a new position."""
    if account.margin_type is MarginType.ISOLATED:
        if available_margin(account) < required_margin:
            raise InsufficientMargin(
                f"available margin {available_margin(account)} below required {required_margin}"
            )
        return replace(account, allocated_margin=checked_add(account.allocated_margin, required_margin))
    if account.margin_type is MarginType.CROSS:
        if account.collateral < required_margin:
            raise InsufficientMargin(f"collateral {account.collateral} below required {required_margin}")
        return account
    raise ValueError(f"unknown margin type: {account.margin_type!r}")


def close_release(account: MarginAccount, position_collateral: int, pnl: int) -> MarginAccount:
    """Release a closed position's margin and settle its signed ``pnl``."""
    if account.margin_type is MarginType.ISOLATED:
        allocated = checked_sub(account.allocated_margin, position_collateral)
    elif account.margin_type is MarginType.CROSS:
        allocated = account.allocated_margin
    else:
        raise ValueError(f"unknown margin type: {account.margin_type!r}")

    if pnl < 0 and -pnl > account.collateral:
        raise InsufficientCollateral(f"realized loss {-pnl} exceeds collateral {account.collateral}")
    collateral = apply_signed(account.collateral, pnl)
    if collateral < allocated:
        raise InsufficientCollateral(
            f"realized loss {-pnl} would consume margin allocated to other positions"
        )
    return replace(account, collateral=collateral, allocated_margin=allocated)


def reallocate(account: MarginAccount, delta: int, *, committed: int = 0) -> MarginAccount:
    """Move ``delta`` of account margin into (+) or out of (-) a position.

    ``committed`` is only consulted for Cross accounts: the collateral already
    held by the account's open positions. A top-up may not commit more than
    the account holds.
    """
    if delta == 0:
        return account
    if delta > 0:
        if account.margin_type is MarginType.ISOLATED:
            if available_margin(account) < delta:
                raise InsufficientMargin(f"available margin {available_margin(account)} below {delta}")
            return replace(account, allocated_margin=checked_add(account.allocated_margin, delta))
        if account.margin_type is MarginType.CROSS:
            free = max(0, account.collateral - committed)
            if free < delta:
                raise InsufficientMargin(f"uncommitted collateral {free} below {delta}")
            return account
        raise ValueError(f"unknown margin type: {account.margin_type!r}")
    if account.margin_type is MarginType.ISOLATED:
        return replace(account, allocated_margin=checked_sub(account.allocated_margin, to_unsigned(-delta)))
    return account


def settle_liquidation(account: MarginAccount, position_collateral: int, residual: int, loss: int) -> MarginAccount:
    """Write a liquidated position's outcome into the account.

    Isolated: the position's allocated margin is replaced by the ``residual``
    equity left after the fee. Cross: the pool absorbs the signed ``loss``
    (fee minus PnL) and never goes below zero.
    """
    if account.margin_type is MarginType.ISOLATED:
        allocated = checked_sub(account.allocated_margin, position_collateral)
        base = checked_sub(account.collateral, min(position_collateral, account.collateral))
        return replace(account, collateral=checked_add(base, residual), allocated_margin=allocated)
    if account.margin_type is MarginType.CROSS:
        return replace(account, collateral=max(0, account.collateral - loss))
    raise ValueError(f"unknown margin type: {account.margin_type!r}")


def apply_funding_delta(account: MarginAccount, delta: int) -> MarginAccount:
    """Move collateral (and Isolated allocation) by a signed funding ``delta``."""
    if delta == 0:
        return account
    collateral = apply_signed(account.collateral, delta)
    if account.margin_type is MarginType.ISOLATED:
        return replace(account, collateral=collateral, allocated_margin=apply_signed(account.allocated_margin, delta))
    return replace(account, collateral=collateral)


# -- Reference lists ----------------------------------------------------------

def add_position(account: MarginAccount, position_id: str, config: EngineConfig) -> MarginAccount:
    if position_id in account.positions:
        raise DuplicateReference(f"position {position_id} already linked to {account.account_id}")
    if len(account.positions) >= config.max_positions_per_account:
        raise TooManyPositions(f"account {account.account_id} holds {len(account.positions)} positions")
    return replace(account, positions=account.positions + (position_id,))


def remove_position(account: MarginAccount, position_id: str) -> MarginAccount:
    """Unlink ``position_id``; absent entries are a no-op."""
    if position_id not in account.positions:
        return account
    return replace(account, positions=tuple(p for p in account.positions if p != position_id))


def add_order(account: MarginAccount, order_id: str, config: EngineConfig) -> MarginAccount:
    if order_id in account.orders:
        raise DuplicateReference(f"order {order_id} already linked to {account.account_id}")
    if len(account.orders) >= config.max_orders_per_account:
        raise TooManyOrders(f"account {account.account_id} holds {len(account.orders)} orders")
    return replace(account, orders=account.orders + (order_id,))


def remove_order(account: MarginAccount, order_id: str) -> MarginAccount:
    """Unlink ``order_id``; absent entries are a no-op."""
    if order_id not in account.orders:
        return account
    return replace(account, orders=tuple(o for o in account.orders if o != order_id))
