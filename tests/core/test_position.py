"""Tests for perpcore/core/position.py — open / close / adjust math."""

from dataclasses import replace

import pytest

from perpcore.config import DEFAULT_CONFIG
from perpcore.core.errors import (
    InsufficientMargin,
    InvalidLeverage,
    InvalidOrderSize,
    LeverageTooHigh,
    PositionClosed,
    PositionLiquidated,
    PositionSizeTooSmall,
    TradeSizeTooLarge,
    Unauthorized,
)
from perpcore.core.market import init_market, update_reserves
from perpcore.core.position import (
    adjust_collateral,
    liquidation_price,
    new_position,
    pnl,
    quote_close,
    quote_open,
    require_open,
    require_owner,
    terminate,
)
from perpcore.core.types import MarketParams, Position, PositionStatus, Side


def _market(base: int = 1_000_000, quote: int = 1_000_000):
    params = MarketParams(market_symbol="BTC-PERP", virtual_base_reserve=base, virtual_quote_reserve=quote)
    return init_market("BTC-PERP", "admin", params, 0, DEFAULT_CONFIG)


def _position(side: Side = Side.LONG, collateral: int = 10, size: int = 100, entry: int = 1_000_000) -> Position:
    return Position(
        position_id="p1", trader="alice", account_id="a1", market_id="BTC-PERP",
        side=side, size=size, collateral=collateral, entry_price=entry,
        entry_funding_rate=0, leverage=1, liquidation_price=0,
    )


# ---------------------------------------------------------------------------
# PnL
# ---------------------------------------------------------------------------

class TestPnl:
    def test_long_gain_and_loss(self):
        assert pnl(Side.LONG, 100, 1_000_000, 1_100_000) == 10
        assert pnl(Side.LONG, 100, 1_000_000, 950_000) == -5

    def test_short_is_mirror(self):
        assert pnl(Side.SHORT, 100, 1_000_000, 1_100_000) == -10
        assert pnl(Side.SHORT, 100, 1_000_000, 950_000) == 5

    def test_rounding_favors_exchange(self):
        # Sub-unit moves: losses round away from zero, gains toward zero.
        assert pnl(Side.LONG, 3, 1_000_000, 999_999) == -1
        assert pnl(Side.SHORT, 3, 1_000_000, 999_999) == 0


class TestLiquidationPrice:
    def test_long(self):
        # buffer = 10 * 1e6 * 9500 / (100 * 10000) = 95_000
        assert liquidation_price(Side.LONG, 1_000_000, 10, 100, 500) == 905_000

    def test_short(self):
        assert liquidation_price(Side.SHORT, 1_000_000, 10, 100, 500) == 1_095_000

    def test_long_floored_at_zero(self):
        assert liquidation_price(Side.LONG, 1_000_000, 1_000, 100, 500) == 0

    def test_zero_size(self):
        with pytest.raises(InvalidOrderSize):
            liquidation_price(Side.LONG, 1_000_000, 10, 0, 500)


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------

class TestQuoteOpen:
    def test_exact_long(self):
        q = quote_open(_market(), Side.LONG, 10_000, 2, DEFAULT_CONFIG)
        # new reserves (990_000, ceil(1e12 / 990_000) = 1_010_102)
        assert q.execution_price == 1_020_305
        assert q.position_value == 10_203
        # ceil(10_203 * 1000 / 10000 / 2) = 511
        assert q.required_margin == 511

    @pytest.mark.parametrize("leverage", [1, 2, 3, 7, 10])
    def test_round_trip_leverage(self, leverage):
        m = _market(base=1_000_000_000, quote=1_000_000_000_000)
        q = quote_open(m, Side.SHORT, 7_777_777, leverage, DEFAULT_CONFIG)
        exact = q.position_value * m.initial_margin_ratio
        # required * L is within one leverage step of value * imr / 10000
        assert 0 <= q.required_margin * leverage * 10_000 - exact < leverage * 10_000

    def test_leverage_bounds(self):
        with pytest.raises(InvalidLeverage):
            quote_open(_market(), Side.LONG, 100, 0, DEFAULT_CONFIG)
        with pytest.raises(LeverageTooHigh):
            quote_open(_market(), Side.LONG, 100, 11, DEFAULT_CONFIG)

    def test_size_must_be_positive(self):
        with pytest.raises(InvalidOrderSize):
            quote_open(_market(), Side.LONG, 0, 1, DEFAULT_CONFIG)

    def test_dust_position_rejected(self):
        with pytest.raises(PositionSizeTooSmall):
            quote_open(_market(), Side.SHORT, 1, 1, DEFAULT_CONFIG)

    def test_trade_size_guard(self):
        with pytest.raises(TradeSizeTooLarge):
            quote_open(_market(), Side.LONG, 100_001, 1, DEFAULT_CONFIG)

    def test_new_position_record(self):
        m = replace(_market(), funding_rate=7, cumulative_funding=-3)
        q = quote_open(m, Side.LONG, 10_000, 2, DEFAULT_CONFIG)
        p = new_position("p1", "alice", "a1", m, Side.LONG, 10_000, 2, q, 42)
        assert p.entry_price == 1_020_305
        assert p.collateral == 511
        assert p.entry_funding_rate == 7
        assert p.last_cumulative_funding == -3
        assert p.opened_at == p.last_funding_payment_time == 42
        # buffer = 511 * 1e6 * 9500 / (10_000 * 10000) = 48_545
        assert p.liquidation_price == 1_020_305 - 48_545
        assert p.is_open


# ---------------------------------------------------------------------------
# Close
# ---------------------------------------------------------------------------

class TestClose:
    def test_round_trip_pays_impact(self):
        m = _market()
        q = quote_open(m, Side.LONG, 10_000, 2, DEFAULT_CONFIG)
        p = new_position("p1", "alice", "a1", m, Side.LONG, 10_000, 2, q, 0)
        after_open = update_reserves(m, Side.LONG, 10_000, False, 0, DEFAULT_CONFIG)
        exit_price, realized = quote_close(after_open, p, DEFAULT_CONFIG)
        assert exit_price == 1_000_000
        # floor((1_000_000 - 1_020_305) * 10_000 / 1e6) = floor(-203.05)
        assert realized == -204

    def test_terminate(self):
        p = terminate(_position(), PositionStatus.CLOSED, 990_000, -1, 9)
        assert not p.is_open
        assert (p.exit_price, p.realized_pnl, p.closed_at) == (990_000, -1, 9)

    def test_require_open(self):
        require_open(_position())
        with pytest.raises(PositionClosed):
            require_open(replace(_position(), status=PositionStatus.CLOSED))
        with pytest.raises(PositionLiquidated):
            require_open(replace(_position(), status=PositionStatus.LIQUIDATED))

    def test_require_owner(self):
        require_owner(_position(), "alice")
        with pytest.raises(Unauthorized):
            require_owner(_position(), "mallory")


# ---------------------------------------------------------------------------
# Adjust margin
# ---------------------------------------------------------------------------

class TestAdjust:
    def test_add_recomputes_liquidation_price(self):
        p = adjust_collateral(_position(collateral=10), _market(), 10, None)
        assert p.collateral == 20
        # buffer = 20 * 1e6 * 9500 / (100 * 10000) = 190_000
        assert p.liquidation_price == 810_000

    def test_remove_checked_at_mark_price(self):
        p = _position(collateral=2_000, size=10_000)
        # requirement at mark 1.0: ceil(10_000 * 1000 / 10000) = 1000
        assert adjust_collateral(p, _market(), -1_000, 1_000_000).collateral == 1_000
        with pytest.raises(InsufficientMargin):
            adjust_collateral(p, _market(), -1_001, 1_000_000)

    def test_remove_uses_current_not_entry_price(self):
        p = _position(collateral=2_000, size=10_000)
        # at mark 0.5 the requirement halves to 500
        assert adjust_collateral(p, _market(), -1_500, 500_000).collateral == 500

    def test_remove_more_than_collateral(self):
        with pytest.raises(InsufficientMargin):
            adjust_collateral(_position(collateral=10), _market(), -11, 1_000_000)
