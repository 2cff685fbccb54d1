"""Effect functions for the exchange engine.

One pure function per action. Each builds the notifications for a committed
step from the POST-state transition; effects are purely observational and
never feed back into engine logic.
"""

from __future__ import annotations

from .types import ActionParams, Effect, Event
from .updates import Transition


def _effect(event: Event, params: ActionParams, t: Transition) -> Effect:
    return Effect(
        event=event,
        market_id=t.market_id,
        account_id=t.account_id,
        position_id=t.position_id,
        order_id=t.order_id,
        actor=params.caller,
        timestamp=params.now,
        data=dict(t.data),
    )


def effect_initialize_market(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.MARKET_INITIALIZED, params, t),)


def effect_update_market_params(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.MARKET_PARAMS_UPDATED, params, t),)


def effect_pause_market(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.MARKET_PAUSED, params, t),)


def effect_resume_market(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.MARKET_RESUMED, params, t),)


def effect_update_funding_rate(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.FUNDING_RATE_UPDATED, params, t),)


def effect_update_funding(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    # Nothing due yet: the call is a no-op and stays silent.
    if not t.data.get("intervals"):
        return ()
    return (_effect(Event.FUNDING_UPDATED, params, t),)


def effect_create_margin_account(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.ACCOUNT_CREATED, params, t),)


def effect_deposit_collateral(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.COLLATERAL_DEPOSITED, params, t),)


def effect_withdraw_collateral(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.COLLATERAL_WITHDRAWN, params, t),)


def effect_open_position(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.POSITION_OPENED, params, t),)


def effect_close_position(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.POSITION_CLOSED, params, t),)


def effect_adjust_margin(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.MARGIN_ADJUSTED, params, t),)


def effect_liquidate_position(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.POSITION_LIQUIDATED, params, t),)


def effect_place_market_order(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (
        _effect(Event.ORDER_PLACED, params, t),
        _effect(Event.POSITION_OPENED, params, t),
        _effect(Event.ORDER_FILLED, params, t),
    )


def effect_place_limit_order(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.ORDER_PLACED, params, t),)


def effect_fill_limit_order(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (
        _effect(Event.POSITION_OPENED, params, t),
        _effect(Event.ORDER_FILLED, params, t),
    )


def effect_cancel_order(params: ActionParams, t: Transition) -> tuple[Effect, ...]:
    return (_effect(Event.ORDER_CANCELLED, params, t),)
