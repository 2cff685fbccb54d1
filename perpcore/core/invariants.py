"""Invariant checkers for the exchange state.

Each function returns True when the invariant holds over the whole state, and
`check_all()` returns the list of violated invariant IDs (empty = all pass).
The engine runs `check_all()` on every post-state and rejects the step on any
violation, so a bug in an update function can never be committed.
"""

from __future__ import annotations

from typing import Callable

from ..config import DEFAULT_CONFIG, EngineConfig
from .fixed_point import BPS_SCALE, U64
from .market import constant_product, k_within_tolerance
from .types import ExchangeState, MarginType


def inv_reserves_positive(s: ExchangeState) -> bool:
    return all(
        m.virtual_base_reserve > 0 and m.virtual_quote_reserve > 0
        for m in s.markets.values()
    )


def inv_k_not_below_initial(s: ExchangeState) -> bool:
    """Ceil rounding keeps the product at or above the curve constant."""
    return all(constant_product(m) >= m.k_initial for m in s.markets.values())


def inv_margin_ratios_ordered(s: ExchangeState) -> bool:
    return all(
        0 < m.maintenance_margin_ratio <= m.initial_margin_ratio < BPS_SCALE
        for m in s.markets.values()
    )


def inv_funding_interval_positive(s: ExchangeState) -> bool:
    return all(m.funding_interval > 0 for m in s.markets.values())


def inv_accumulators_in_range(s: ExchangeState) -> bool:
    return all(
        U64.contains(m.insurance_fund) and U64.contains(m.fee_pool)
        for m in s.markets.values()
    )


def inv_balances_in_range(s: ExchangeState) -> bool:
    return all(
        U64.contains(a.collateral) and U64.contains(a.allocated_margin)
        for a in s.accounts.values()
    )


def inv_isolated_allocation_covered(s: ExchangeState) -> bool:
    return all(
        a.allocated_margin <= a.collateral
        for a in s.accounts.values()
        if a.margin_type is MarginType.ISOLATED
    )


def inv_cross_has_no_allocation(s: ExchangeState) -> bool:
    return all(
        a.allocated_margin == 0
        for a in s.accounts.values()
        if a.margin_type is MarginType.CROSS
    )


def inv_no_duplicate_refs(s: ExchangeState) -> bool:
    return all(
        len(set(a.positions)) == len(a.positions) and len(set(a.orders)) == len(a.orders)
        for a in s.accounts.values()
    )


def inv_position_refs_open(s: ExchangeState) -> bool:
    """An account links exactly its own open positions."""
    for a in s.accounts.values():
        for pid in a.positions:
            p = s.positions.get(pid)
            if p is None or not p.is_open or p.account_id != a.account_id:
                return False
    for p in s.positions.values():
        if p.is_open:
            a = s.accounts.get(p.account_id)
            if a is None or p.position_id not in a.positions:
                return False
    return True


def inv_order_refs_exist(s: ExchangeState) -> bool:
    return all(
        oid in s.orders and s.orders[oid].account_id == a.account_id
        for a in s.accounts.values()
        for oid in a.orders
    )


def inv_isolated_positions_in_market(s: ExchangeState) -> bool:
    for p in s.positions.values():
        if not p.is_open:
            continue
        a = s.accounts.get(p.account_id)
        if a is not None and a.margin_type is MarginType.ISOLATED and p.market_id != a.market_id:
            return False
    return True


def inv_isolated_allocation_matches(s: ExchangeState) -> bool:
    """Isolated ``allocated_margin`` equals the collateral of its open positions."""
    for a in s.accounts.values():
        if a.margin_type is not MarginType.ISOLATED:
            continue
        total = sum(s.positions[pid].collateral for pid in a.positions if pid in s.positions)
        if total != a.allocated_margin:
            return False
    return True


def inv_open_positions_well_formed(s: ExchangeState) -> bool:
    return all(
        p.size > 0 and p.entry_price > 0 and p.leverage >= 1 and p.market_id in s.markets
        for p in s.positions.values()
        if p.is_open
    )


# ---------------------------------------------------------------------------
# Registry + check_all
# ---------------------------------------------------------------------------

INVARIANT_REGISTRY: dict[str, Callable[[ExchangeState], bool]] = {
    "inv_reserves_positive": inv_reserves_positive,
    "inv_k_not_below_initial": inv_k_not_below_initial,
    "inv_margin_ratios_ordered": inv_margin_ratios_ordered,
    "inv_funding_interval_positive": inv_funding_interval_positive,
    "inv_accumulators_in_range": inv_accumulators_in_range,
    "inv_balances_in_range": inv_balances_in_range,
    "inv_isolated_allocation_covered": inv_isolated_allocation_covered,
    "inv_cross_has_no_allocation": inv_cross_has_no_allocation,
    "inv_no_duplicate_refs": inv_no_duplicate_refs,
    "inv_position_refs_open": inv_position_refs_open,
    "inv_order_refs_exist": inv_order_refs_exist,
    "inv_isolated_positions_in_market": inv_isolated_positions_in_market,
    "inv_isolated_allocation_matches": inv_isolated_allocation_matches,
    "inv_open_positions_well_formed": inv_open_positions_well_formed,
}


def check_all(s: ExchangeState, config: EngineConfig = DEFAULT_CONFIG) -> list[str]:
    """Return the IDs of every violated invariant (empty list = all pass)."""
    violated = [name for name, fn in INVARIANT_REGISTRY.items() if not fn(s)]
    if not all(
        k_within_tolerance(m.k_initial, constant_product(m), config.k_tolerance_divisor)
        for m in s.markets.values()
    ):
        violated.append("inv_k_within_tolerance")
    if not all(len(a.positions) <= config.max_positions_per_account for a in s.accounts.values()):
        violated.append("inv_position_list_bounded")
    if not all(len(a.orders) <= config.max_orders_per_account for a in s.accounts.values()):
        violated.append("inv_order_list_bounded")
    return violated
