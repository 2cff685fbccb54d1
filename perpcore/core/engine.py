"""Dispatch-table engine for the exchange.

``step(state, params)`` is the single entry point. It:

1. Dispatches to the action's guard / update / effect functions.
2. Runs the guard on the PRE-state (identity, existence, market status).
3. Runs the update, which performs the economic checks and builds the POST-state.
4. Checks all invariants on the POST-state.
5. Returns a ``StepResult`` (accepted, or rejected with the error code).

The input state is never mutated; a rejected step has no state at all.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable

from ..config import DEFAULT_CONFIG, EngineConfig
from .effects import (
    effect_adjust_margin,
    effect_cancel_order,
    effect_close_position,
    effect_create_margin_account,
    effect_deposit_collateral,
    effect_fill_limit_order,
    effect_initialize_market,
    effect_liquidate_position,
    effect_open_position,
    effect_pause_market,
    effect_place_limit_order,
    effect_place_market_order,
    effect_resume_market,
    effect_update_funding,
    effect_update_funding_rate,
    effect_update_market_params,
    effect_withdraw_collateral,
)
from .errors import ExchangeError, InvariantViolation, ValidationError
from .guards import (
    guard_adjust_margin,
    guard_cancel_order,
    guard_close_position,
    guard_create_margin_account,
    guard_deposit_collateral,
    guard_fill_limit_order,
    guard_initialize_market,
    guard_liquidate_position,
    guard_open_position,
    guard_pause_market,
    guard_place_limit_order,
    guard_place_market_order,
    guard_resume_market,
    guard_update_funding,
    guard_update_funding_rate,
    guard_update_market_params,
    guard_withdraw_collateral,
)
from .invariants import check_all
from .types import (
    Action,
    ActionParams,
    Effect,
    ExchangeState,
    MarginType,
    PriceQuote,
    Side,
    StepResult,
)
from .updates import (
    Transition,
    apply_adjust_margin,
    apply_cancel_order,
    apply_close_position,
    apply_create_margin_account,
    apply_deposit_collateral,
    apply_fill_limit_order,
    apply_initialize_market,
    apply_liquidate_position,
    apply_open_position,
    apply_pause_market,
    apply_place_limit_order,
    apply_place_market_order,
    apply_resume_market,
    apply_update_funding,
    apply_update_funding_rate,
    apply_update_market_params,
    apply_withdraw_collateral,
)

GuardFn = Callable[[ExchangeState, ActionParams, EngineConfig], None]
UpdateFn = Callable[[ExchangeState, ActionParams, EngineConfig], Transition]
EffectFn = Callable[[ActionParams, Transition], tuple[Effect, ...]]

_DISPATCH: dict[Action, tuple[GuardFn, UpdateFn, EffectFn]] = {
    Action.INITIALIZE_MARKET: (
        guard_initialize_market, apply_initialize_market, effect_initialize_market,
    ),
    Action.UPDATE_MARKET_PARAMS: (
        guard_update_market_params, apply_update_market_params, effect_update_market_params,
    ),
    Action.PAUSE_MARKET: (
        guard_pause_market, apply_pause_market, effect_pause_market,
    ),
    Action.RESUME_MARKET: (
        guard_resume_market, apply_resume_market, effect_resume_market,
    ),
    Action.UPDATE_FUNDING_RATE: (
        guard_update_funding_rate, apply_update_funding_rate, effect_update_funding_rate,
    ),
    Action.UPDATE_FUNDING: (
        guard_update_funding, apply_update_funding, effect_update_funding,
    ),
    Action.CREATE_MARGIN_ACCOUNT: (
        guard_create_margin_account, apply_create_margin_account, effect_create_margin_account,
    ),
    Action.DEPOSIT_COLLATERAL: (
        guard_deposit_collateral, apply_deposit_collateral, effect_deposit_collateral,
    ),
    Action.WITHDRAW_COLLATERAL: (
        guard_withdraw_collateral, apply_withdraw_collateral, effect_withdraw_collateral,
    ),
    Action.OPEN_POSITION: (
        guard_open_position, apply_open_position, effect_open_position,
    ),
    Action.CLOSE_POSITION: (
        guard_close_position, apply_close_position, effect_close_position,
    ),
    Action.ADJUST_MARGIN: (
        guard_adjust_margin, apply_adjust_margin, effect_adjust_margin,
    ),
    Action.LIQUIDATE_POSITION: (
        guard_liquidate_position, apply_liquidate_position, effect_liquidate_position,
    ),
    Action.PLACE_MARKET_ORDER: (
        guard_place_market_order, apply_place_market_order, effect_place_market_order,
    ),
    Action.PLACE_LIMIT_ORDER: (
        guard_place_limit_order, apply_place_limit_order, effect_place_limit_order,
    ),
    Action.FILL_LIMIT_ORDER: (
        guard_fill_limit_order, apply_fill_limit_order, effect_fill_limit_order,
    ),
    Action.CANCEL_ORDER: (
        guard_cancel_order, apply_cancel_order, effect_cancel_order,
    ),
}


_INT_FIELDS = ("now", "size", "leverage", "price", "amount", "margin_change", "funding_rate")


def _validate_params(params: ActionParams) -> None:
    """Type checks shared by every action; runs before any state is read."""
    for name in _INT_FIELDS:
        value = getattr(params, name)
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{name} must be an int: {value!r}")
    if params.now < 0:
        raise ValidationError(f"now must be non-negative: {params.now}")
    for name in ("caller", "market_id", "account_id", "position_id", "order_id"):
        if not isinstance(getattr(params, name), str):
            raise ValidationError(f"{name} must be a string")
    if not isinstance(params.side, Side):
        raise ValidationError(f"side must be a Side: {params.side!r}")
    if not isinstance(params.margin_type, MarginType):
        raise ValidationError(f"margin_type must be a MarginType: {params.margin_type!r}")
    if params.quote is not None and not isinstance(params.quote, PriceQuote):
        raise ValidationError(f"quote must be a PriceQuote: {params.quote!r}")


def _run(state: ExchangeState, params: ActionParams, config: EngineConfig) -> StepResult:
    entry = _DISPATCH.get(params.action)
    if entry is None:
        raise ValidationError(f"unknown action: {params.action!r}", code=f"unknown_action:{params.action}")
    _validate_params(params)

    guard_fn, update_fn, effect_fn = entry
    guard_fn(state, params, config)
    transition = update_fn(state, params, config)

    violations = check_all(transition.state, config)
    if violations:
        raise InvariantViolation(violations)

    new_state = replace(transition.state, seq=state.seq + 1)
    return StepResult(
        accepted=True,
        state=new_state,
        effects=effect_fn(params, transition),
        transfers=transition.transfers,
    )


def step(state: ExchangeState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> StepResult:
    """Execute one action against the given state.

    Returns ``StepResult`` with ``accepted=True`` on success, or
    ``accepted=False`` with the error ``code`` as ``rejection``
    (``invariant:<ids>`` for post-state violations).
    """
    try:
        return _run(state, params, config)
    except ExchangeError as exc:
        return StepResult(accepted=False, rejection=exc.code)


def step_or_raise(state: ExchangeState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> StepResult:
    """Like ``step()`` but raises the ``ExchangeError`` instead of rejecting.

    Raises:
        ValidationError: Malformed parameters.
        MathOverflow: A checked arithmetic operation failed.
        StateError: Record state or caller identity forbids the action.
        EconomicError: Margin, collateral or liquidation rule violated.
        InvariantViolation: Post-state violates one or more invariants.
    """
    return _run(state, params, config)
