"""Tests for perpcore/core/invariants.py — state-wide invariant checkers."""

from dataclasses import replace

from perpcore.config import DEFAULT_CONFIG
from perpcore.core.invariants import INVARIANT_REGISTRY, check_all
from perpcore.core.market import init_market
from perpcore.core.state import initial_state, with_records
from perpcore.core.types import (
    MarginAccount,
    MarginType,
    MarketParams,
    Order,
    OrderType,
    Position,
    PositionStatus,
    Side,
)


def _market():
    return init_market("M", "admin", MarketParams(market_symbol="M"), 0, DEFAULT_CONFIG)


def _position(pid: str = "p1", account_id: str = "iso", collateral: int = 1_000, **kw) -> Position:
    base = dict(
        position_id=pid, trader="t", account_id=account_id, market_id="M", side=Side.LONG, size=10,
        collateral=collateral, entry_price=1_000_000_000, entry_funding_rate=0, leverage=1,
        liquidation_price=900_000_000,
    )
    base.update(kw)
    return Position(**base)


def _healthy():
    """One market, one Isolated account holding one open position."""
    account = MarginAccount(
        "iso", "t", MarginType.ISOLATED, market_id="M", collateral=5_000,
        allocated_margin=1_000, positions=("p1",),
    )
    return with_records(
        initial_state(),
        markets={"M": _market()},
        accounts={"iso": account, "x": MarginAccount("x", "t", MarginType.CROSS, collateral=10)},
        positions={"p1": _position()},
    )


def _with_account(s, **changes):
    a = replace(s.accounts["iso"], **changes)
    return with_records(s, accounts={"iso": a})


class TestRegistry:
    def test_initial_state_passes_all(self):
        assert check_all(initial_state()) == []

    def test_healthy_state_passes_all(self):
        assert check_all(_healthy()) == []

    def test_registry_size(self):
        assert len(INVARIANT_REGISTRY) == 14


class TestMarketInvariants:
    def test_k_below_initial(self):
        s = _healthy()
        m = replace(s.markets["M"], virtual_quote_reserve=s.markets["M"].virtual_quote_reserve - 1)
        assert "inv_k_not_below_initial" in check_all(with_records(s, markets={"M": m}))

    def test_k_drift_measured_from_initial(self):
        s = _healthy()
        quote = s.markets["M"].virtual_quote_reserve
        inside = replace(s.markets["M"], virtual_quote_reserve=quote + quote // 2000)
        assert check_all(with_records(s, markets={"M": inside})) == []

        drifted = replace(s.markets["M"], virtual_quote_reserve=quote + quote // 500)
        v = check_all(with_records(s, markets={"M": drifted}))
        assert "inv_k_within_tolerance" in v
        assert "inv_k_not_below_initial" not in v

    def test_zero_reserve(self):
        s = _healthy()
        m = replace(s.markets["M"], virtual_base_reserve=0)
        assert "inv_reserves_positive" in check_all(with_records(s, markets={"M": m}))

    def test_margin_ratios(self):
        s = _healthy()
        m = replace(s.markets["M"], maintenance_margin_ratio=2_000, initial_margin_ratio=1_000)
        assert "inv_margin_ratios_ordered" in check_all(with_records(s, markets={"M": m}))

    def test_funding_interval(self):
        s = _healthy()
        m = replace(s.markets["M"], funding_interval=0)
        assert "inv_funding_interval_positive" in check_all(with_records(s, markets={"M": m}))

    def test_insurance_out_of_range(self):
        s = _healthy()
        m = replace(s.markets["M"], insurance_fund=-1)
        assert "inv_accumulators_in_range" in check_all(with_records(s, markets={"M": m}))


class TestAccountInvariants:
    def test_allocation_exceeds_collateral(self):
        v = check_all(_with_account(_healthy(), collateral=999))
        assert "inv_isolated_allocation_covered" in v

    def test_allocation_mismatch(self):
        v = check_all(_with_account(_healthy(), allocated_margin=1_001))
        assert "inv_isolated_allocation_matches" in v

    def test_cross_allocation(self):
        s = _healthy()
        x = replace(s.accounts["x"], allocated_margin=1)
        assert "inv_cross_has_no_allocation" in check_all(with_records(s, accounts={"x": x}))

    def test_negative_collateral(self):
        s = _healthy()
        x = replace(s.accounts["x"], collateral=-1)
        assert "inv_balances_in_range" in check_all(with_records(s, accounts={"x": x}))

    def test_duplicate_refs(self):
        v = check_all(_with_account(_healthy(), positions=("p1", "p1")))
        assert "inv_no_duplicate_refs" in v

    def test_dangling_order(self):
        v = check_all(_with_account(_healthy(), orders=("missing",)))
        assert "inv_order_refs_exist" in v

    def test_order_of_other_account(self):
        s = _healthy()
        o = Order("o", "t", "x", "M", Side.LONG, OrderType.LIMIT, 1, 1, 1)
        s = with_records(_with_account(s, orders=("o",)), orders={"o": o})
        assert "inv_order_refs_exist" in check_all(s)

    def test_position_list_bound(self):
        s = _with_account(_healthy(), positions=tuple(f"p{i}" for i in range(11)))
        assert "inv_position_list_bounded" in check_all(s)

    def test_order_list_bound_uses_config(self):
        s = _healthy()
        orders = {f"o{i}": Order(f"o{i}", "t", "x", "M", Side.LONG, OrderType.LIMIT, 1, 1, 1) for i in range(3)}
        x = replace(s.accounts["x"], orders=tuple(orders))
        s = with_records(s, accounts={"x": x}, orders=orders)
        assert check_all(s) == []
        assert "inv_order_list_bounded" in check_all(s, replace(DEFAULT_CONFIG, max_orders_per_account=2))


class TestPositionInvariants:
    def test_open_position_not_linked(self):
        s = _with_account(_healthy(), positions=(), allocated_margin=0)
        assert "inv_position_refs_open" in check_all(s)

    def test_closed_position_still_linked(self):
        s = _healthy()
        p = replace(s.positions["p1"], status=PositionStatus.CLOSED)
        assert "inv_position_refs_open" in check_all(with_records(s, positions={"p1": p}))

    def test_isolated_position_in_other_market(self):
        s = _healthy()
        other = replace(_market(), market_id="N", market_symbol="N")
        p = replace(s.positions["p1"], market_id="N")
        v = check_all(with_records(s, markets={"N": other}, positions={"p1": p}))
        assert "inv_isolated_positions_in_market" in v

    def test_malformed_open_position(self):
        s = _healthy()
        p = replace(s.positions["p1"], leverage=0)
        assert "inv_open_positions_well_formed" in check_all(with_records(s, positions={"p1": p}))

    def test_archived_positions_are_ignored(self):
        s = _healthy()
        p = _position("old", account_id="x", status=PositionStatus.LIQUIDATED, leverage=0)
        assert check_all(with_records(s, positions={"old": p})) == []
