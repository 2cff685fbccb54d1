"""Funding accrual and distribution.

Funding accrues in whole intervals only. With ``n`` elapsed intervals the
market's cumulative index moves by ``increment = funding_rate * n`` and
``last_funding_time`` advances by ``n * funding_interval`` (never to ``now``, so
partial intervals carry over).

Sign convention: a positive increment means longs pay shorts, a negative one
means shorts pay longs. Per position:

- payers owe ``ceil(|increment| * size / 1e6)``, capped at what the position
  (and its account) can cover,
- receivers are entitled to ``floor(|increment| * size / 1e6)`` and are paid
  from the collected pot, pro-rata when the pot is short,
- whatever the receivers do not take goes to the insurance fund.

Rounding therefore never creates value: ``paid_out + insurance_credit == pot``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Mapping

from .fixed_point import (
    I64,
    PRICE_SCALE,
    U128,
    apply_signed,
    checked_add,
    checked_mul,
    checked_sub,
    mul_div,
    mul_div_ceil,
)
from .margin import apply_funding_delta
from .position import liquidation_price
from .types import MarginAccount, MarginType, Market, Position, Side


@dataclass(frozen=True)
class FundingSchedule:
    intervals: int
    increment: int
    next_funding_time: int


@dataclass(frozen=True)
class FundingSettlement:
    market: Market
    positions: Mapping[str, Position] = field(default_factory=dict)
    accounts: Mapping[str, MarginAccount] = field(default_factory=dict)
    collected: int = 0
    paid_out: int = 0
    insurance_credit: int = 0


def is_due(market: Market, now: int) -> bool:
    return now >= market.last_funding_time + market.funding_interval


def elapsed_intervals(market: Market, now: int) -> int:
    if now <= market.last_funding_time:
        return 0
    return (now - market.last_funding_time) // market.funding_interval


def schedule(market: Market, now: int) -> FundingSchedule:
    """Whole intervals due at ``now`` and the resulting funding increment."""
    n = elapsed_intervals(market, now)
    return FundingSchedule(
        intervals=n,
        increment=checked_mul(market.funding_rate, n, I64),
        next_funding_time=checked_add(
            market.last_funding_time, checked_mul(n, market.funding_interval)
        ),
    )


def payer_side(increment: int) -> Side:
    return Side.LONG if increment > 0 else Side.SHORT


def amount_owed(increment: int, size: int) -> int:
    return mul_div_ceil(abs(increment), size, PRICE_SCALE)


def amount_entitled(increment: int, size: int) -> int:
    return mul_div(abs(increment), size, PRICE_SCALE)


def _payable(position: Position, account: MarginAccount, owed: int) -> int:
    cap = position.collateral
    if account.margin_type is MarginType.CROSS:
        cap = min(cap, account.collateral)
    return min(owed, cap)


def _touch(position: Position, market: Market, delta: int, now: int) -> Position:
    collateral = apply_signed(position.collateral, delta)
    return replace(
        position,
        collateral=collateral,
        realized_pnl=checked_add(position.realized_pnl, delta, I64),
        last_cumulative_funding=market.cumulative_funding,
        last_funding_payment_time=now,
        liquidation_price=liquidation_price(
            position.side, position.entry_price, collateral, position.size, market.maintenance_margin_ratio,
        ),
    )


def settle(
    market: Market,
    positions: Mapping[str, Position],
    accounts: Mapping[str, MarginAccount],
    now: int,
) -> FundingSettlement:
    """Apply every whole interval due at ``now`` to ``market`` and its open positions.

    ``positions`` may hold records of other markets or closed records; they are
    ignored. Returns only the records that changed. Not due -> ``market``
    unchanged and nothing touched.
    """
    due = schedule(market, now)
    if due.intervals == 0:
        return FundingSettlement(market=market)

    market = replace(
        market,
        cumulative_funding=checked_add(market.cumulative_funding, due.increment, I64),
        last_funding_time=due.next_funding_time,
    )
    open_positions = sorted(
        (p for p in positions.values() if p.is_open and p.market_id == market.market_id),
        key=lambda p: p.position_id,
    )
    touched_accounts: dict[str, MarginAccount] = {}

    def account_of(p: Position) -> MarginAccount:
        return touched_accounts.get(p.account_id, accounts[p.account_id])

    deltas: dict[str, int] = {p.position_id: 0 for p in open_positions}
    pot = 0
    entitlements: dict[str, int] = {}

    if due.increment != 0:
        paying = payer_side(due.increment)
        for p in open_positions:
            if p.side is paying:
                paid = _payable(p, account_of(p), amount_owed(due.increment, p.size))
                deltas[p.position_id] = -paid
                touched_accounts[p.account_id] = apply_funding_delta(account_of(p), -paid)
                pot = checked_add(pot, paid)
            else:
                entitlements[p.position_id] = amount_entitled(due.increment, p.size)

    total_entitled = sum(entitlements.values())
    paid_out = 0
    for pid, entitled in entitlements.items():
        if pot >= total_entitled:
            credit = entitled
        else:
            credit = mul_div(pot, entitled, total_entitled, U128)
        deltas[pid] = credit
        paid_out = checked_add(paid_out, credit)

    updated: dict[str, Position] = {}
    for p in open_positions:
        delta = deltas[p.position_id]
        if delta > 0:
            touched_accounts[p.account_id] = apply_funding_delta(account_of(p), delta)
        updated[p.position_id] = _touch(p, market, delta, now)

    insurance_credit = checked_sub(pot, paid_out)
    market = replace(market, insurance_fund=checked_add(market.insurance_fund, insurance_credit))
    return FundingSettlement(
        market=market,
        positions=updated,
        accounts=touched_accounts,
        collected=pot,
        paid_out=paid_out,
        insurance_credit=insurance_credit,
    )
