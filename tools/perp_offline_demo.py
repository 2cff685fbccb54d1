#!/usr/bin/env python3
"""Run an end-to-end perpetuals scenario on the in-memory host and print its effects.

    python tools/perp_offline_demo.py [--config engine.yaml] [-v]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from perpcore.config import DEFAULT_CONFIG, load_config
from perpcore.core.types import Action, ActionParams, MarginType, MarketParams, PriceQuote, Side
from perpcore.integration.exchange import Exchange
from perpcore.integration.sinks import LoggingSink, MemorySink

ADMIN = "admin"
ALICE = "alice"
BOB = "bob"
KEEPER = "keeper"
MARKET = "BTC-PERP"


def _submit(ex: Exchange, label: str, params: ActionParams) -> bool:
    r = ex.submit(params)
    status = "ok" if r.accepted else f"REJECTED ({r.rejection})"
    print(f"[perp-demo] seq={ex.seq:<3} {label:<34} {status}")
    return r.accepted


def main() -> int:
    ap = argparse.ArgumentParser(description="Offline perpetuals exchange demo")
    ap.add_argument("--config", type=Path, default=None, help="YAML engine config overrides")
    ap.add_argument("-v", "--verbose", action="store_true", help="log every effect")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING, format="%(name)s: %(message)s")
    config = load_config(args.config) if args.config is not None else DEFAULT_CONFIG

    memory = MemorySink()
    ex = Exchange(config=config, sinks=[memory, LoggingSink()])
    for wallet in (ALICE, BOB):
        ex.ledger.fund(wallet, 1_000_000)

    t = 1_700_000_000
    steps = [
        ("initialize market", ActionParams(
            action=Action.INITIALIZE_MARKET, caller=ADMIN, now=t, market_id=MARKET,
            market_params=MarketParams(market_symbol=MARKET, funding_interval=3600),
        )),
        ("alice: create cross account", ActionParams(
            action=Action.CREATE_MARGIN_ACCOUNT, caller=ALICE, now=t, account_id="acct-alice",
            margin_type=MarginType.CROSS,
        )),
        ("bob: create isolated account", ActionParams(
            action=Action.CREATE_MARGIN_ACCOUNT, caller=BOB, now=t, account_id="acct-bob",
            margin_type=MarginType.ISOLATED, market_id=MARKET,
        )),
        ("alice: deposit 50000", ActionParams(
            action=Action.DEPOSIT_COLLATERAL, caller=ALICE, now=t, account_id="acct-alice", amount=50_000,
        )),
        ("bob: deposit 20000", ActionParams(
            action=Action.DEPOSIT_COLLATERAL, caller=BOB, now=t, account_id="acct-bob", amount=20_000,
        )),
        ("alice: short 400 @ 1x", ActionParams(
            action=Action.OPEN_POSITION, caller=ALICE, now=t + 1, account_id="acct-alice",
            market_id=MARKET, position_id="pos-alice", side=Side.SHORT, size=400, leverage=1,
        )),
        ("bob: long 100 @ 1x", ActionParams(
            action=Action.OPEN_POSITION, caller=BOB, now=t + 2, account_id="acct-bob",
            market_id=MARKET, position_id="pos-bob", side=Side.LONG, size=100, leverage=1,
        )),
        ("admin: funding rate +2.0/interval", ActionParams(
            action=Action.UPDATE_FUNDING_RATE, caller=ADMIN, now=t + 3, market_id=MARKET, funding_rate=2_000_000,
        )),
        ("keeper: settle funding", ActionParams(
            action=Action.UPDATE_FUNDING, caller=KEEPER, now=t + 3_600, market_id=MARKET,
        )),
        ("keeper: liquidate bob @ 1000.5 (early)", ActionParams(
            action=Action.LIQUIDATE_POSITION, caller=KEEPER, now=t + 3_601, position_id="pos-bob",
            quote=PriceQuote(price=1_000_500_000, confidence=100_000, timestamp=t + 3_600),
        )),
        ("keeper: liquidate bob @ 880", ActionParams(
            action=Action.LIQUIDATE_POSITION, caller=KEEPER, now=t + 3_700, position_id="pos-bob",
            quote=PriceQuote(price=880_000_000, confidence=100_000, timestamp=t + 3_690),
        )),
        ("alice: close short", ActionParams(
            action=Action.CLOSE_POSITION, caller=ALICE, now=t + 3_800, position_id="pos-alice",
        )),
        ("alice: withdraw 40000", ActionParams(
            action=Action.WITHDRAW_COLLATERAL, caller=ALICE, now=t + 3_900, account_id="acct-alice", amount=40_000,
        )),
    ]
    for label, params in steps:
        _submit(ex, label, params)

    market = ex.state.markets[MARKET]
    print(f"[perp-demo] effects={len(memory.effects)} events={[e.value for e in memory.events()]}")
    print(
        f"[perp-demo] reserves=({market.virtual_base_reserve}, {market.virtual_quote_reserve}) "
        f"last_price={market.last_price} insurance_fund={market.insurance_fund}"
    )
    for wallet in (ALICE, BOB, KEEPER):
        print(f"[perp-demo] wallet {wallet:<6} balance={ex.ledger.balance_of(wallet)}")
    print(f"[perp-demo] vault balance={ex.ledger.vault_balance}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
