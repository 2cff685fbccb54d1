"""Exchange state access and serialization.

`initial_state()` returns the empty exchange.

Round-trip property (tested): ``state_from_dict(state_to_dict(s)) == s`` for
every reachable state. The dict form only contains ``str``/``int``/``bool``/
``None``/lists/dicts, so it can be written as JSON or YAML by the host's store.
"""

from __future__ import annotations

from dataclasses import fields, replace
from enum import Enum
from typing import Any, Mapping

from .errors import AccountNotFound, MarketNotFound, OrderNotFound, PositionNotFound
from .types import (
    ExchangeState,
    MarginAccount,
    MarginType,
    Market,
    Order,
    OrderType,
    Position,
    PositionStatus,
    Side,
)

STATE_VERSION: int = 1

_ENUM_FIELDS: dict[str, type[Enum]] = {
    "margin_type": MarginType,
    "side": Side,
    "order_type": OrderType,
    "status": PositionStatus,
}
_TUPLE_FIELDS = frozenset({"positions", "orders"})


def initial_state() -> ExchangeState:
    return ExchangeState()


# -- Lookup -------------------------------------------------------------------

def get_market(state: ExchangeState, market_id: str) -> Market:
    try:
        return state.markets[market_id]
    except KeyError:
        raise MarketNotFound(f"market {market_id!r} not found") from None


def get_account(state: ExchangeState, account_id: str) -> MarginAccount:
    try:
        return state.accounts[account_id]
    except KeyError:
        raise AccountNotFound(f"account {account_id!r} not found") from None


def get_position(state: ExchangeState, position_id: str) -> Position:
    try:
        return state.positions[position_id]
    except KeyError:
        raise PositionNotFound(f"position {position_id!r} not found") from None


def get_order(state: ExchangeState, order_id: str) -> Order:
    try:
        return state.orders[order_id]
    except KeyError:
        raise OrderNotFound(f"order {order_id!r} not found") from None


def open_positions(state: ExchangeState, account: MarginAccount) -> list[Position]:
    """Open positions referenced by ``account`` (dangling references skipped)."""
    out: list[Position] = []
    for pid in account.positions:
        p = state.positions.get(pid)
        if p is not None and p.is_open:
            out.append(p)
    return out


def with_records(
    state: ExchangeState,
    *,
    markets: Mapping[str, Market] | None = None,
    accounts: Mapping[str, MarginAccount] | None = None,
    positions: Mapping[str, Position] | None = None,
    orders: Mapping[str, Order] | None = None,
) -> ExchangeState:
    """Return ``state`` with the given records inserted or replaced (copy-on-write)."""
    def merged(current: Mapping[str, Any], new: Mapping[str, Any] | None) -> Mapping[str, Any]:
        if not new:
            return current
        out = dict(current)
        out.update(new)
        return out

    return replace(
        state,
        markets=merged(state.markets, markets),
        accounts=merged(state.accounts, accounts),
        positions=merged(state.positions, positions),
        orders=merged(state.orders, orders),
    )


# -- Serialization ------------------------------------------------------------

def _record_to_dict(record: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(record):
        val = getattr(record, f.name)
        if isinstance(val, Enum):
            val = val.value
        elif isinstance(val, tuple):
            val = list(val)
        out[f.name] = val
    return out


def _record_from_dict(cls: type, d: Mapping[str, Any]) -> Any:
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in d:
            continue
        val = d[f.name]
        if f.name in _ENUM_FIELDS:
            val = _ENUM_FIELDS[f.name](val)
        elif f.name in _TUPLE_FIELDS:
            val = tuple(str(x) for x in val)
        elif isinstance(val, bool) or val is None or isinstance(val, str):
            pass
        elif isinstance(val, int):
            val = int(val)  # normalize int subclasses
        else:
            raise TypeError(f"{cls.__name__}.{f.name} must be bool|int|str|None, got {type(val).__name__}")
        kwargs[f.name] = val
    return cls(**kwargs)


def state_to_dict(state: ExchangeState) -> dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "seq": state.seq,
        "markets": {k: _record_to_dict(v) for k, v in sorted(state.markets.items())},
        "accounts": {k: _record_to_dict(v) for k, v in sorted(state.accounts.items())},
        "positions": {k: _record_to_dict(v) for k, v in sorted(state.positions.items())},
        "orders": {k: _record_to_dict(v) for k, v in sorted(state.orders.items())},
    }


def state_from_dict(d: Mapping[str, Any]) -> ExchangeState:
    """Deserialize a dict produced by ``state_to_dict``. Raises on unknown versions."""
    version = d.get("version")
    if version != STATE_VERSION:
        raise ValueError(f"unsupported state version: {version!r}")
    return ExchangeState(
        markets={k: _record_from_dict(Market, v) for k, v in d["markets"].items()},
        accounts={k: _record_from_dict(MarginAccount, v) for k, v in d["accounts"].items()},
        positions={k: _record_from_dict(Position, v) for k, v in d["positions"].items()},
        orders={k: _record_from_dict(Order, v) for k, v in d["orders"].items()},
        seq=int(d["seq"]),
    )
