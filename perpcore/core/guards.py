"""Guard functions for the exchange engine.

One pure function per action. Each inspects the PRE-state and the parameters
and raises an ``ExchangeError`` if the action is not allowed; returning means
the update may run. Economic checks that need the computed trade (margin,
collateral, liquidatability) live in the update functions.
"""

from __future__ import annotations

from ..config import EngineConfig
from .errors import (
    AccountAlreadyExists,
    MarketAlreadyActive,
    MarketAlreadyExists,
    MarketAlreadyPaused,
    OrderAlreadyExists,
    PositionAlreadyExists,
    Unauthorized,
    ValidationError,
)
from .market import require_active
from .position import require_open, require_owner
from .state import get_account, get_market, get_order, get_position
from .types import ActionParams, ExchangeState, MarginAccount, MarginType, Market


def _require_id(name: str, value: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{name} must be a non-empty string")


def _require_authority(market: Market, caller: str) -> None:
    if market.authority != caller:
        raise Unauthorized(f"{caller!r} is not the authority of market {market.market_id}")


def _require_account_owner(account: MarginAccount, caller: str) -> None:
    if account.owner != caller:
        raise Unauthorized(f"{caller!r} does not own account {account.account_id}")


def _require_trading_account(state: ExchangeState, params: ActionParams) -> None:
    """Owner's account exists and may trade on the active target market."""
    market = get_market(state, params.market_id)
    require_active(market)
    account = get_account(state, params.account_id)
    _require_account_owner(account, params.caller)
    if account.margin_type is MarginType.ISOLATED and account.market_id != market.market_id:
        raise ValidationError(
            f"isolated account {account.account_id} is bound to market {account.market_id}"
        )


# -- Market administration ----------------------------------------------------

def guard_initialize_market(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    if params.market_params is None:
        raise ValidationError("market_params required")
    _require_id("caller", params.caller)
    market_id = params.market_id or params.market_params.market_symbol
    _require_id("market_id", market_id)
    if market_id in state.markets:
        raise MarketAlreadyExists(f"market {market_id!r} already exists")
    symbols = {m.market_symbol for m in state.markets.values()}
    if params.market_params.market_symbol in symbols:
        raise MarketAlreadyExists(f"symbol {params.market_params.market_symbol!r} already listed")


def guard_update_market_params(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    if params.params_update is None:
        raise ValidationError("params_update required")
    _require_authority(get_market(state, params.market_id), params.caller)


def guard_pause_market(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    market = get_market(state, params.market_id)
    _require_authority(market, params.caller)
    if not market.is_active:
        raise MarketAlreadyPaused(f"market {market.market_id} is already paused")


def guard_resume_market(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    market = get_market(state, params.market_id)
    _require_authority(market, params.caller)
    if market.is_active:
        raise MarketAlreadyActive(f"market {market.market_id} is already active")


def guard_update_funding_rate(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    market = get_market(state, params.market_id)
    _require_authority(market, params.caller)
    require_active(market)


def guard_update_funding(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    require_active(get_market(state, params.market_id))


# -- Accounts -----------------------------------------------------------------

def guard_create_margin_account(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    _require_id("account_id", params.account_id)
    _require_id("caller", params.caller)
    if params.account_id in state.accounts:
        raise AccountAlreadyExists(f"account {params.account_id!r} already exists")
    if params.margin_type is MarginType.ISOLATED:
        get_market(state, params.market_id)


def guard_deposit_collateral(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    _require_account_owner(get_account(state, params.account_id), params.caller)


def guard_withdraw_collateral(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    account = get_account(state, params.account_id)
    _require_account_owner(account, params.caller)
    if account.market_id is not None:
        require_active(get_market(state, account.market_id))


# -- Positions ----------------------------------------------------------------

def guard_open_position(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    _require_id("position_id", params.position_id)
    if params.position_id in state.positions:
        raise PositionAlreadyExists(f"position {params.position_id!r} already exists")
    _require_trading_account(state, params)


def _require_owned_open_position(state: ExchangeState, params: ActionParams) -> None:
    position = get_position(state, params.position_id)
    require_open(position)
    require_owner(position, params.caller)
    require_active(get_market(state, position.market_id))


def guard_close_position(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    _require_owned_open_position(state, params)


def guard_adjust_margin(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    if not isinstance(params.margin_change, int) or isinstance(params.margin_change, bool):
        raise ValidationError("margin_change must be an int")
    if params.margin_change == 0:
        raise ValidationError("margin_change must be non-zero")
    _require_owned_open_position(state, params)


def guard_liquidate_position(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    _require_id("caller", params.caller)
    position = get_position(state, params.position_id)
    require_open(position)
    require_active(get_market(state, position.market_id))


# -- Orders -------------------------------------------------------------------

def _require_new_order(state: ExchangeState, params: ActionParams) -> None:
    _require_id("order_id", params.order_id)
    if params.order_id in state.orders:
        raise OrderAlreadyExists(f"order {params.order_id!r} already exists")


def guard_place_market_order(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    _require_new_order(state, params)
    guard_open_position(state, params, config)


def guard_place_limit_order(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    _require_new_order(state, params)
    _require_trading_account(state, params)


def guard_fill_limit_order(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    _require_id("caller", params.caller)
    order = get_order(state, params.order_id)
    require_active(get_market(state, order.market_id))
    position_id = params.position_id or order.order_id
    if position_id in state.positions:
        raise PositionAlreadyExists(f"position {position_id!r} already exists")


def guard_cancel_order(state: ExchangeState, params: ActionParams, config: EngineConfig) -> None:
    get_order(state, params.order_id)
