"""Property tests: the virtual AMM and the engine under random action sequences.

Uses Hypothesis to drive random trades and actions. Checks that the constant
product stays within tolerance of its initial value, and that every accepted
step leaves a state that passes all invariants.
"""

from __future__ import annotations

import importlib.util
from dataclasses import replace

import pytest

if importlib.util.find_spec("hypothesis") is None:  # pragma: no cover
    pytest.skip("hypothesis not installed", allow_module_level=True)

import hypothesis.strategies as st
from hypothesis import given, settings

from perpcore.config import DEFAULT_CONFIG
from perpcore.core import (
    Action,
    ActionParams,
    MarginType,
    MarketParams,
    PriceQuote,
    Side,
    initial_state,
    step,
    step_or_raise,
)
from perpcore.core.errors import ExchangeError
from perpcore.core.funding import settle
from perpcore.core.invariants import check_all
from perpcore.core.market import constant_product, init_market, update_reserves
from perpcore.core.types import MarginAccount, Position

MARKET = "BTC-PERP"
OWNERS = ("alice", "bob")
T0 = 1_000


# ---------------------------------------------------------------------------
# AMM curve
# ---------------------------------------------------------------------------

trade_strategy = st.tuples(
    st.sampled_from([Side.LONG, Side.SHORT]),
    st.integers(min_value=1, max_value=50_000_000),
    st.booleans(),
)


class TestCurve:
    @given(trades=st.lists(trade_strategy, min_size=1, max_size=40))
    @settings(max_examples=200, deadline=2000)
    def test_k_bounded_by_initial(self, trades):
        market = init_market(MARKET, "admin", MarketParams(market_symbol=MARKET), 0, DEFAULT_CONFIG)
        k0 = market.k_initial
        for side, size, closing in trades:
            try:
                market = update_reserves(market, side, size, closing, 0, DEFAULT_CONFIG)
            except ExchangeError:
                continue
            k_after = constant_product(market)
            # drift is the dust of the last trade only
            assert k0 <= k_after < k0 + market.virtual_base_reserve
            assert abs(k_after - k0) * 1000 <= k0

    @given(size=st.integers(min_value=1, max_value=100_000_000))
    @settings(max_examples=200, deadline=2000)
    def test_open_then_close_restores_base(self, size):
        m0 = init_market(MARKET, "admin", MarketParams(market_symbol=MARKET), 0, DEFAULT_CONFIG)
        for side in (Side.LONG, Side.SHORT):
            m1 = update_reserves(m0, side, size, False, 0, DEFAULT_CONFIG)
            m2 = update_reserves(m1, side, size, True, 0, DEFAULT_CONFIG)
            assert m2.virtual_base_reserve == m0.virtual_base_reserve
            assert m2.virtual_quote_reserve == m0.virtual_quote_reserve


# ---------------------------------------------------------------------------
# Funding conservation
# ---------------------------------------------------------------------------

position_strategy = st.tuples(
    st.sampled_from([Side.LONG, Side.SHORT]),
    st.integers(min_value=1, max_value=10_000_000),
    st.integers(min_value=0, max_value=50_000),
)


class TestFundingConservation:
    @given(
        rate=st.integers(min_value=-1_000_000, max_value=1_000_000),
        intervals=st.integers(min_value=1, max_value=5),
        specs=st.lists(position_strategy, min_size=1, max_size=8),
    )
    @settings(max_examples=200, deadline=2000)
    def test_pot_fully_accounted(self, rate, intervals, specs):
        market = init_market(MARKET, "admin", MarketParams(market_symbol=MARKET, initial_funding_rate=rate), 0, DEFAULT_CONFIG)
        positions = {}
        accounts = {}
        for i, (side, size, collateral) in enumerate(specs):
            pid = f"p{i}"
            accounts[f"a{i}"] = MarginAccount(f"a{i}", "t", MarginType.CROSS, collateral=collateral)
            positions[pid] = Position(
                position_id=pid, trader="t", account_id=f"a{i}", market_id=MARKET, side=side, size=size,
                collateral=collateral, entry_price=1_000_000_000, entry_funding_rate=0, leverage=1,
                liquidation_price=0,
            )
        result = settle(market, positions, accounts, intervals * market.funding_interval)
        assert result.paid_out + result.insurance_credit == result.collected
        assert result.market.insurance_fund == result.insurance_credit
        before = sum(p.collateral for p in positions.values())
        after = sum(result.positions[pid].collateral for pid in positions)
        assert before - after == result.insurance_credit


# ---------------------------------------------------------------------------
# Engine under random actions
# ---------------------------------------------------------------------------

def _setup():
    s = initial_state()
    for params in (
        ActionParams(action=Action.INITIALIZE_MARKET, caller="admin", now=T0, market_params=MarketParams(market_symbol=MARKET)),
        ActionParams(action=Action.CREATE_MARGIN_ACCOUNT, caller="alice", now=T0, account_id="alice"),
        ActionParams(action=Action.CREATE_MARGIN_ACCOUNT, caller="bob", now=T0, account_id="bob",
                     margin_type=MarginType.ISOLATED, market_id=MARKET),
    ):
        r = step_or_raise(s, params)
        assert r.state is not None
        s = r.state
    return s


def action_params_strategy() -> st.SearchStrategy[ActionParams]:
    owner = st.sampled_from(OWNERS)
    pid = st.sampled_from(["p0", "p1", "p2", "p3"])
    oid = st.sampled_from(["o0", "o1", "o2"])
    side = st.sampled_from([Side.LONG, Side.SHORT])
    price = st.integers(min_value=100_000_000, max_value=2_000_000_000)
    return st.one_of(
        st.builds(ActionParams, action=st.just(Action.DEPOSIT_COLLATERAL), caller=owner,
                  account_id=owner, amount=st.integers(min_value=1, max_value=10_000_000)),
        st.builds(ActionParams, action=st.just(Action.WITHDRAW_COLLATERAL), caller=owner,
                  account_id=owner, amount=st.integers(min_value=1, max_value=10_000_000)),
        st.builds(ActionParams, action=st.just(Action.OPEN_POSITION), caller=owner, account_id=owner,
                  market_id=st.just(MARKET), position_id=pid, side=side,
                  size=st.integers(min_value=1, max_value=200_000), leverage=st.integers(min_value=1, max_value=12)),
        st.builds(ActionParams, action=st.just(Action.CLOSE_POSITION), caller=owner, position_id=pid),
        st.builds(ActionParams, action=st.just(Action.ADJUST_MARGIN), caller=owner, position_id=pid,
                  margin_change=st.integers(min_value=-50_000, max_value=50_000),
                  quote=st.builds(PriceQuote, price=price, confidence=st.just(0), timestamp=st.just(T0))),
        st.builds(ActionParams, action=st.just(Action.LIQUIDATE_POSITION), caller=st.just("keeper"),
                  position_id=pid,
                  quote=st.builds(PriceQuote, price=price, confidence=st.just(0), timestamp=st.just(T0))),
        st.builds(ActionParams, action=st.just(Action.UPDATE_FUNDING_RATE), caller=st.just("admin"),
                  market_id=st.just(MARKET), funding_rate=st.integers(min_value=-1_000_000, max_value=1_000_000)),
        st.builds(ActionParams, action=st.just(Action.PLACE_LIMIT_ORDER), caller=owner, account_id=owner,
                  market_id=st.just(MARKET), order_id=oid, side=side, price=price,
                  size=st.integers(min_value=1, max_value=200_000), leverage=st.integers(min_value=1, max_value=10)),
        st.builds(ActionParams, action=st.just(Action.FILL_LIMIT_ORDER), caller=st.just("keeper"),
                  order_id=oid, position_id=pid),
        st.builds(ActionParams, action=st.just(Action.CANCEL_ORDER), caller=owner, order_id=oid),
    )


class TestEngineSequences:
    @given(
        actions=st.lists(action_params_strategy(), min_size=1, max_size=30),
        ticks=st.lists(st.integers(min_value=0, max_value=1_800), min_size=30, max_size=30),
    )
    @settings(max_examples=150, deadline=5000)
    def test_accepted_states_hold_invariants(self, actions, ticks):
        s = _setup()
        now = T0
        for params, tick in zip(actions, ticks):
            now += tick
            params = replace(params, now=now)
            if params.quote is not None:
                params = replace(params, quote=PriceQuote(params.quote.price, 0, now))
            r = step(s, params)
            if not r.accepted:
                assert r.state is None
                assert r.rejection
                continue
            assert r.state is not None
            assert r.state.seq == s.seq + 1
            assert check_all(r.state) == []
            s = r.state

            r = step(s, ActionParams(action=Action.UPDATE_FUNDING, caller="keeper", now=now, market_id=MARKET))
            assert r.accepted and r.state is not None
            s = r.state
