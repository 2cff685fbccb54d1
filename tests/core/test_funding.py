"""Tests for perpcore/core/funding.py — whole-interval accrual and distribution."""

from dataclasses import replace

from perpcore.config import DEFAULT_CONFIG
from perpcore.core.funding import (
    amount_entitled,
    amount_owed,
    elapsed_intervals,
    is_due,
    schedule,
    settle,
)
from perpcore.core.margin import create_account
from perpcore.core.market import init_market
from perpcore.core.types import MarginType, MarketParams, Position, PositionStatus, Side

T0 = 1_000


def _market(rate: int = 0):
    params = MarketParams(market_symbol="BTC-PERP", funding_interval=3600, initial_funding_rate=rate)
    return init_market("BTC-PERP", "admin", params, T0, DEFAULT_CONFIG)


def _position(pid: str, side: Side, size: int, collateral: int, account: str) -> Position:
    return Position(
        position_id=pid, trader="t", account_id=account, market_id="BTC-PERP",
        side=side, size=size, collateral=collateral, entry_price=1_000_000,
        entry_funding_rate=0, leverage=1, liquidation_price=0,
    )


def _accounts(*specs):
    out = {}
    for account_id, margin_type, collateral, allocated in specs:
        market_id = "BTC-PERP" if margin_type is MarginType.ISOLATED else None
        a = create_account(account_id, "t", margin_type, market_id, 0)
        out[account_id] = replace(a, collateral=collateral, allocated_margin=allocated)
    return out


class TestSchedule:
    def test_gate(self):
        m = _market()
        assert not is_due(m, T0 + 3599)
        assert is_due(m, T0 + 3600)

    def test_whole_intervals_only(self):
        m = _market(rate=5)
        s = schedule(m, T0 + 3 * 3600 + 1799)
        assert s.intervals == 3
        assert s.increment == 15
        # partial interval carried over, not dropped
        assert s.next_funding_time == T0 + 3 * 3600

    def test_clock_behind(self):
        assert elapsed_intervals(_market(), T0 - 10) == 0

    def test_rounding_directions(self):
        assert amount_owed(3, 1) == 1
        assert amount_entitled(3, 1) == 0
        assert amount_owed(-2_000_000, 5) == 10


class TestSettle:
    def test_not_due_is_noop(self):
        m = _market(rate=1_000_000)
        out = settle(m, {}, {}, T0 + 10)
        assert out.market is m
        assert out.positions == {}

    def test_schedule_advances_without_positions(self):
        m = _market(rate=1_000)
        out = settle(m, {}, {}, T0 + 7_300)
        assert out.market.last_funding_time == T0 + 7_200
        assert out.market.cumulative_funding == 2_000
        assert out.collected == 0

    def test_longs_pay_shorts(self):
        m = _market(rate=1_000_000)  # 1.0 quote per base unit per interval
        positions = {
            "L": _position("L", Side.LONG, 100, 500, "al"),
            "S": _position("S", Side.SHORT, 100, 500, "as"),
        }
        accounts = _accounts(
            ("al", MarginType.ISOLATED, 1_000, 500),
            ("as", MarginType.CROSS, 1_000, 0),
        )
        out = settle(m, positions, accounts, T0 + 3600)
        assert out.positions["L"].collateral == 400
        assert out.positions["L"].realized_pnl == -100
        assert out.positions["S"].collateral == 600
        assert out.positions["S"].realized_pnl == 100
        assert out.accounts["al"].collateral == 900
        assert out.accounts["al"].allocated_margin == 400
        assert out.accounts["as"].collateral == 1_100
        assert out.insurance_credit == 0
        assert out.positions["L"].last_cumulative_funding == out.market.cumulative_funding == 1_000_000
        assert out.positions["S"].last_funding_payment_time == T0 + 3600

    def test_negative_rate_shorts_pay(self):
        m = _market(rate=-1_000_000)
        positions = {
            "L": _position("L", Side.LONG, 100, 500, "c"),
            "S": _position("S", Side.SHORT, 50, 500, "c"),
        }
        out = settle(m, positions, _accounts(("c", MarginType.CROSS, 2_000, 0)), T0 + 3600)
        # shorts pay 50 into the pot; the long is entitled to 100, gets the whole pot
        assert out.positions["S"].collateral == 450
        assert out.positions["L"].collateral == 550
        assert out.accounts["c"].collateral == 2_000
        assert out.collected == out.paid_out == 50

    def test_payer_capped_and_pot_prorated(self):
        m = _market(rate=1_000_000)
        positions = {
            "L": _position("L", Side.LONG, 100, 30, "a"),
            "S1": _position("S1", Side.SHORT, 60, 500, "b"),
            "S2": _position("S2", Side.SHORT, 40, 500, "b"),
        }
        accounts = _accounts(("a", MarginType.CROSS, 5_000, 0), ("b", MarginType.CROSS, 5_000, 0))
        out = settle(m, positions, accounts, T0 + 3600)
        assert out.positions["L"].collateral == 0
        assert out.collected == 30
        # pot 30 split 60:40
        assert out.positions["S1"].collateral == 518
        assert out.positions["S2"].collateral == 512
        assert out.insurance_credit == 0

    def test_surplus_goes_to_insurance(self):
        m = _market(rate=1_000_000)
        positions = {"L": _position("L", Side.LONG, 100, 500, "a")}
        out = settle(m, positions, _accounts(("a", MarginType.CROSS, 1_000, 0)), T0 + 3600)
        assert out.collected == 100
        assert out.insurance_credit == 100
        assert out.market.insurance_fund == 100

    def test_ignores_closed_and_foreign_positions(self):
        m = _market(rate=1_000_000)
        closed = replace(_position("C", Side.LONG, 100, 500, "a"), status=PositionStatus.CLOSED)
        foreign = replace(_position("F", Side.LONG, 100, 500, "a"), market_id="ETH-PERP")
        out = settle(m, {"C": closed, "F": foreign}, _accounts(("a", MarginType.CROSS, 1_000, 0)), T0 + 3600)
        assert out.positions == {}
        assert out.collected == 0

    def test_value_conserved(self):
        m = _market(rate=333_333)
        positions = {
            "L1": _position("L1", Side.LONG, 7, 100, "a"),
            "L2": _position("L2", Side.LONG, 11, 100, "a"),
            "S1": _position("S1", Side.SHORT, 13, 100, "a"),
        }
        out = settle(m, positions, _accounts(("a", MarginType.CROSS, 1_000, 0)), T0 + 2 * 3600)
        moved = sum(p.collateral for p in out.positions.values()) - 300
        assert moved == -out.insurance_credit
        assert out.accounts["a"].collateral == 1_000 - out.insurance_credit
