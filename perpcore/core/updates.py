"""State transition functions for the exchange engine.

One pure function per action. Each evaluates against the PRE-state and returns
a ``Transition``: the POST-state, the value transfers the host must perform
after commit, and the figures the effect builders report.

Records are never mutated; every change goes through ``dataclasses.replace()``
and ``state.with_records()``. Any ``ExchangeError`` raised here aborts the
whole step.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Mapping

from ..config import EngineConfig
from .errors import ValidationError
from .fixed_point import checked_add
from .funding import settle
from .liquidation import assess
from .margin import (
    add_order,
    add_position,
    close_release,
    create_account,
    deposit,
    open_allocate,
    reallocate,
    remove_order,
    remove_position,
    required_margin_for_positions,
    settle_liquidation,
    withdraw,
)
from .market import (
    apply_params_update,
    check_trade_size,
    init_market,
    price_with_impact,
    update_reserves,
    validate_funding_rate,
)
from .oracle import validate_quote
from .orders import (
    cancel,
    check_fillable,
    mark_filled,
    new_limit_order,
    new_market_order,
)
from .position import (
    OpenQuote,
    adjust_collateral,
    new_position,
    quote_close,
    quote_open,
    terminate,
)
from .state import (
    get_account,
    get_market,
    get_order,
    get_position,
    open_positions,
    with_records,
)
from .types import (
    ActionParams,
    ExchangeState,
    MarginAccount,
    MarginType,
    Order,
    Position,
    PositionStatus,
    Side,
    Transfer,
    TransferKind,
    Value,
)


@dataclass(frozen=True)
class Transition:
    state: ExchangeState
    transfers: tuple[Transfer, ...] = ()
    market_id: str = ""
    account_id: str = ""
    position_id: str = ""
    order_id: str = ""
    data: Mapping[str, Value] = field(default_factory=dict)


def _require_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError(f"amount must be a positive int: {amount!r}")


def _oracle_price(params: ActionParams, config: EngineConfig) -> int:
    return validate_quote(
        params.quote,
        params.now,
        max_staleness_seconds=config.max_oracle_staleness_seconds,
        max_confidence_bps=config.max_oracle_confidence_bps,
    )


def _unlink_orders(
    state: ExchangeState, account: MarginAccount, position_id: str,
) -> tuple[MarginAccount, dict[str, Order]]:
    """Deactivate and unlink every order of ``account`` that produced ``position_id``."""
    orders: dict[str, Order] = {}
    for oid in account.orders:
        order = state.orders.get(oid)
        if order is not None and order.position_id == position_id:
            orders[oid] = replace(order, is_active=False)
    for oid in orders:
        account = remove_order(account, oid)
    return account, orders


# -- Market administration ----------------------------------------------------

def apply_initialize_market(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    market_id = params.market_id or params.market_params.market_symbol
    market = init_market(market_id, params.caller, params.market_params, params.now, config)
    return Transition(
        state=with_records(state, markets={market_id: market}),
        market_id=market_id,
        data=dict(
            market_symbol=market.market_symbol,
            virtual_base_reserve=market.virtual_base_reserve,
            virtual_quote_reserve=market.virtual_quote_reserve,
            initial_price=market.last_price,
            max_leverage=market.max_leverage,
        ),
    )


def apply_update_market_params(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    market = apply_params_update(get_market(state, params.market_id), params.params_update)
    return Transition(
        state=with_records(state, markets={market.market_id: market}),
        market_id=market.market_id,
        data=dict(
            maintenance_margin_ratio=market.maintenance_margin_ratio,
            initial_margin_ratio=market.initial_margin_ratio,
            funding_interval=market.funding_interval,
            max_leverage=market.max_leverage,
            liquidation_fee_ratio=market.liquidation_fee_ratio,
        ),
    )


def apply_pause_market(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    market = replace(get_market(state, params.market_id), is_active=False)
    return Transition(state=with_records(state, markets={market.market_id: market}), market_id=market.market_id)


def apply_resume_market(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    market = replace(get_market(state, params.market_id), is_active=True)
    return Transition(state=with_records(state, markets={market.market_id: market}), market_id=market.market_id)


def apply_update_funding_rate(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    validate_funding_rate(params.funding_rate, config)
    old = get_market(state, params.market_id)
    market = replace(old, funding_rate=params.funding_rate)
    return Transition(
        state=with_records(state, markets={market.market_id: market}),
        market_id=market.market_id,
        data=dict(old_funding_rate=old.funding_rate, new_funding_rate=market.funding_rate),
    )


def apply_update_funding(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    market = get_market(state, params.market_id)
    result = settle(market, state.positions, state.accounts, params.now)
    if result.market is market:
        return Transition(state=state, market_id=market.market_id, data=dict(intervals=0))
    intervals = (result.market.last_funding_time - market.last_funding_time) // market.funding_interval
    return Transition(
        state=with_records(
            state,
            markets={market.market_id: result.market},
            positions=result.positions,
            accounts=result.accounts,
        ),
        market_id=market.market_id,
        data=dict(
            funding_rate=market.funding_rate,
            intervals=intervals,
            funding_increment=result.market.cumulative_funding - market.cumulative_funding,
            cumulative_funding=result.market.cumulative_funding,
            positions_settled=len(result.positions),
            collected=result.collected,
            paid_out=result.paid_out,
            insurance_credit=result.insurance_credit,
        ),
    )


# -- Accounts -----------------------------------------------------------------

def apply_create_margin_account(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    market_id = params.market_id if params.margin_type is MarginType.ISOLATED else None
    account = create_account(params.account_id, params.caller, params.margin_type, market_id, params.now)
    return Transition(
        state=with_records(state, accounts={account.account_id: account}),
        market_id=market_id or "",
        account_id=account.account_id,
        data=dict(margin_type=account.margin_type.value),
    )


def apply_deposit_collateral(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    _require_amount(params.amount)
    account = deposit(get_account(state, params.account_id), params.amount, config)
    return Transition(
        state=with_records(state, accounts={account.account_id: account}),
        transfers=(Transfer(TransferKind.DEPOSIT, account.account_id, params.caller, params.amount),),
        account_id=account.account_id,
        data=dict(amount=params.amount, collateral=account.collateral),
    )


def apply_withdraw_collateral(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    _require_amount(params.amount)
    account = get_account(state, params.account_id)
    required = 0
    if account.margin_type is MarginType.CROSS:
        required = required_margin_for_positions(open_positions(state, account), state.markets)
    account = withdraw(account, params.amount, config, required_margin=required)
    return Transition(
        state=with_records(state, accounts={account.account_id: account}),
        transfers=(Transfer(TransferKind.WITHDRAWAL, account.account_id, params.caller, params.amount),),
        account_id=account.account_id,
        data=dict(amount=params.amount, collateral=account.collateral),
    )


# -- Positions ----------------------------------------------------------------

def _open(
    state: ExchangeState,
    *,
    trader: str,
    account_id: str,
    market_id: str,
    position_id: str,
    side: Side,
    size: int,
    leverage: int,
    now: int,
    config: EngineConfig,
) -> tuple[ExchangeState, Position, MarginAccount, OpenQuote]:
    market = get_market(state, market_id)
    account = get_account(state, account_id)
    quote = quote_open(market, side, size, leverage, config)
    account = open_allocate(account, quote.required_margin)
    account = add_position(account, position_id, config)
    position = new_position(position_id, trader, account_id, market, side, size, leverage, quote, now)
    market = update_reserves(market, side, size, False, now, config)
    new_state = with_records(
        state,
        markets={market.market_id: market},
        accounts={account.account_id: account},
        positions={position.position_id: position},
    )
    return new_state, position, account, quote


def _opened_data(position: Position, quote: OpenQuote) -> dict[str, Value]:
    return dict(
        side=position.side.value,
        size=position.size,
        entry_price=position.entry_price,
        position_value=quote.position_value,
        collateral=position.collateral,
        leverage=position.leverage,
        liquidation_price=position.liquidation_price,
    )


def apply_open_position(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    new_state, position, account, quote = _open(
        state,
        trader=params.caller,
        account_id=params.account_id,
        market_id=params.market_id,
        position_id=params.position_id,
        side=params.side,
        size=params.size,
        leverage=params.leverage,
        now=params.now,
        config=config,
    )
    return Transition(
        state=new_state,
        market_id=position.market_id,
        account_id=account.account_id,
        position_id=position.position_id,
        data=_opened_data(position, quote),
    )


def apply_close_position(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    position = get_position(state, params.position_id)
    market = get_market(state, position.market_id)
    account = get_account(state, position.account_id)

    exit_price, realized = quote_close(market, position, config)
    account = close_release(account, position.collateral, realized)
    account = remove_position(account, position.position_id)
    account, orders = _unlink_orders(state, account, position.position_id)
    market = update_reserves(market, position.side, position.size, True, params.now, config)
    closed = terminate(position, PositionStatus.CLOSED, exit_price, realized, params.now)

    return Transition(
        state=with_records(
            state,
            markets={market.market_id: market},
            accounts={account.account_id: account},
            positions={closed.position_id: closed},
            orders=orders,
        ),
        market_id=market.market_id,
        account_id=account.account_id,
        position_id=closed.position_id,
        data=dict(
            side=closed.side.value,
            size=closed.size,
            entry_price=closed.entry_price,
            exit_price=exit_price,
            realized_pnl=realized,
            collateral_after=account.collateral,
        ),
    )


def apply_adjust_margin(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    position = get_position(state, params.position_id)
    market = get_market(state, position.market_id)
    account = get_account(state, position.account_id)

    mark_price = None if params.margin_change > 0 else _oracle_price(params, config)
    adjusted = adjust_collateral(position, market, params.margin_change, mark_price)
    committed = 0
    if account.margin_type is MarginType.CROSS:
        committed = sum(p.collateral for p in open_positions(state, account))
    account = reallocate(account, params.margin_change, committed=committed)

    return Transition(
        state=with_records(
            state,
            accounts={account.account_id: account},
            positions={adjusted.position_id: adjusted},
        ),
        market_id=market.market_id,
        account_id=account.account_id,
        position_id=adjusted.position_id,
        data=dict(
            margin_change=params.margin_change,
            collateral=adjusted.collateral,
            liquidation_price=adjusted.liquidation_price,
        ),
    )


def apply_liquidate_position(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    position = get_position(state, params.position_id)
    market = get_market(state, position.market_id)
    account = get_account(state, position.account_id)

    price = _oracle_price(params, config)
    outcome = assess(position, market, price)

    account = settle_liquidation(account, position.collateral, outcome.residual, outcome.loss)
    account = remove_position(account, position.position_id)
    account, orders = _unlink_orders(state, account, position.position_id)
    # Forced close: no trade-size guard.
    market = update_reserves(market, position.side, position.size, True, params.now, config)
    market = replace(market, insurance_fund=checked_add(market.insurance_fund, outcome.insurance_fee))
    liquidated = terminate(position, PositionStatus.LIQUIDATED, price, outcome.pnl, params.now)

    transfers: tuple[Transfer, ...] = ()
    if outcome.liquidator_fee > 0:
        transfers = (
            Transfer(TransferKind.LIQUIDATOR_FEE, account.account_id, params.caller, outcome.liquidator_fee),
        )
    return Transition(
        state=with_records(
            state,
            markets={market.market_id: market},
            accounts={account.account_id: account},
            positions={liquidated.position_id: liquidated},
            orders=orders,
        ),
        transfers=transfers,
        market_id=market.market_id,
        account_id=account.account_id,
        position_id=liquidated.position_id,
        data=dict(
            liquidator=params.caller,
            mark_price=price,
            position_value=outcome.position_value,
            equity=outcome.equity,
            maintenance_margin=outcome.maintenance_margin,
            liquidation_fee=outcome.fee,
            liquidator_fee=outcome.liquidator_fee,
            insurance_fee=outcome.insurance_fee,
            shortfall=outcome.shortfall,
            collateral_after=account.collateral,
        ),
    )


# -- Orders -------------------------------------------------------------------

def apply_place_market_order(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    new_state, position, account, quote = _open(
        state,
        trader=params.caller,
        account_id=params.account_id,
        market_id=params.market_id,
        position_id=params.position_id,
        side=params.side,
        size=params.size,
        leverage=params.leverage,
        now=params.now,
        config=config,
    )
    order = new_market_order(
        params.order_id, params.caller, account.account_id, get_market(new_state, params.market_id),
        params.side, params.size, params.leverage, quote.execution_price, quote.required_margin,
        position.position_id, params.now,
    )
    account = add_order(account, order.order_id, config)
    data = _opened_data(position, quote)
    data["order_type"] = order.order_type.value
    return Transition(
        state=with_records(new_state, accounts={account.account_id: account}, orders={order.order_id: order}),
        market_id=position.market_id,
        account_id=account.account_id,
        position_id=position.position_id,
        order_id=order.order_id,
        data=data,
    )


def apply_place_limit_order(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    market = get_market(state, params.market_id)
    account = get_account(state, params.account_id)
    order = new_limit_order(
        params.order_id, params.caller, account.account_id, market,
        params.side, params.price, params.size, params.leverage, params.now,
    )
    account = add_order(account, order.order_id, config)
    return Transition(
        state=with_records(state, accounts={account.account_id: account}, orders={order.order_id: order}),
        market_id=market.market_id,
        account_id=account.account_id,
        order_id=order.order_id,
        data=dict(
            order_type=order.order_type.value,
            side=order.side.value,
            price=order.price,
            size=order.size,
            leverage=order.leverage,
        ),
    )


def apply_fill_limit_order(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    order = get_order(state, params.order_id)
    market = get_market(state, order.market_id)
    check_trade_size(market, order.size, config)
    check_fillable(order, price_with_impact(market, order.side, order.size, is_closing=False))

    new_state, position, account, quote = _open(
        state,
        trader=order.trader,
        account_id=order.account_id,
        market_id=order.market_id,
        position_id=params.position_id or order.order_id,
        side=order.side,
        size=order.size,
        leverage=order.leverage,
        now=params.now,
        config=config,
    )
    filled = mark_filled(order, position.position_id, quote.required_margin)
    data = _opened_data(position, quote)
    data.update(keeper=params.caller, limit_price=order.price)
    return Transition(
        state=with_records(new_state, orders={filled.order_id: filled}),
        market_id=position.market_id,
        account_id=account.account_id,
        position_id=position.position_id,
        order_id=filled.order_id,
        data=data,
    )


def apply_cancel_order(state: ExchangeState, params: ActionParams, config: EngineConfig) -> Transition:
    order = cancel(get_order(state, params.order_id), params.caller)
    account = remove_order(get_account(state, order.account_id), order.order_id)
    return Transition(
        state=with_records(state, accounts={account.account_id: account}, orders={order.order_id: order}),
        market_id=order.market_id,
        account_id=account.account_id,
        order_id=order.order_id,
        data=dict(side=order.side.value, price=order.price, size=order.size),
    )
