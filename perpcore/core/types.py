"""Data types for the perpcore exchange engine.

All records are frozen dataclasses (immutable); transitions build new records
with ``dataclasses.replace()``.

Units/conventions:
- prices (``*_price``, ``price``) are quote-per-base scaled by 1e6,
- ``*_ratio`` fields are basis points (1/10_000),
- ``size`` is unsigned base units, ``collateral`` / balances are quote units,
- ``funding_rate`` is signed, price-scaled quote per base unit per interval,
- timestamps are unix seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Mapping


Value = bool | int | str | None


@unique
class Side(Enum):
    LONG = "long"
    SHORT = "short"

    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG


@unique
class MarginType(Enum):
    ISOLATED = "isolated"
    CROSS = "cross"


@unique
class OrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"


@unique
class PositionStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"
    LIQUIDATED = "liquidated"


@unique
class Action(Enum):
    """One member per engine command."""
    INITIALIZE_MARKET = "initialize_market"
    UPDATE_MARKET_PARAMS = "update_market_params"
    PAUSE_MARKET = "pause_market"
    RESUME_MARKET = "resume_market"
    UPDATE_FUNDING_RATE = "update_funding_rate"
    UPDATE_FUNDING = "update_funding"
    CREATE_MARGIN_ACCOUNT = "create_margin_account"
    DEPOSIT_COLLATERAL = "deposit_collateral"
    WITHDRAW_COLLATERAL = "withdraw_collateral"
    OPEN_POSITION = "open_position"
    CLOSE_POSITION = "close_position"
    ADJUST_MARGIN = "adjust_margin"
    LIQUIDATE_POSITION = "liquidate_position"
    PLACE_MARKET_ORDER = "place_market_order"
    PLACE_LIMIT_ORDER = "place_limit_order"
    FILL_LIMIT_ORDER = "fill_limit_order"
    CANCEL_ORDER = "cancel_order"


@unique
class Event(Enum):
    """One member per notification emitted to the host's sinks."""
    MARKET_INITIALIZED = "MarketInitialized"
    MARKET_PARAMS_UPDATED = "MarketParamsUpdated"
    MARKET_PAUSED = "MarketPaused"
    MARKET_RESUMED = "MarketResumed"
    FUNDING_RATE_UPDATED = "FundingRateUpdated"
    FUNDING_UPDATED = "FundingUpdated"
    ACCOUNT_CREATED = "MarginAccountCreated"
    COLLATERAL_DEPOSITED = "CollateralDeposited"
    COLLATERAL_WITHDRAWN = "CollateralWithdrawn"
    POSITION_OPENED = "PositionOpened"
    POSITION_CLOSED = "PositionClosed"
    POSITION_LIQUIDATED = "PositionLiquidated"
    MARGIN_ADJUSTED = "MarginAdjusted"
    ORDER_PLACED = "OrderPlaced"
    ORDER_FILLED = "OrderFilled"
    ORDER_CANCELLED = "OrderCancelled"


@unique
class TransferKind(Enum):
    DEPOSIT = "deposit"              # trader -> vault
    WITHDRAWAL = "withdrawal"        # vault -> trader
    LIQUIDATOR_FEE = "liquidator_fee"  # vault -> liquidator


# -- Records ------------------------------------------------------------------

@dataclass(frozen=True)
class Market:
    """One synthetic market priced by a virtual constant-product AMM.

    ``fee_pool`` is reserved for a trading fee; no action credits it yet, so
    it stays at 0. Liquidation penalties go to ``insurance_fund``.
    """

    market_id: str
    authority: str
    market_symbol: str
    virtual_base_reserve: int
    virtual_quote_reserve: int
    k_initial: int
    funding_rate: int
    last_funding_time: int
    funding_interval: int
    maintenance_margin_ratio: int
    initial_margin_ratio: int
    liquidation_fee_ratio: int
    max_leverage: int
    cumulative_funding: int = 0
    insurance_fund: int = 0
    fee_pool: int = 0
    is_active: bool = True
    last_price: int = 0
    last_update_time: int = 0


@dataclass(frozen=True)
class MarginAccount:
    """Collateral ledger of one owner (Cross) or one (owner, market) pair (Isolated)."""

    account_id: str
    owner: str
    margin_type: MarginType
    market_id: str | None = None
    collateral: int = 0
    allocated_margin: int = 0
    positions: tuple[str, ...] = ()
    orders: tuple[str, ...] = ()
    created_at: int = 0


@dataclass(frozen=True)
class Position:
    position_id: str
    trader: str
    account_id: str
    market_id: str
    side: Side
    size: int
    collateral: int
    entry_price: int
    entry_funding_rate: int
    leverage: int
    liquidation_price: int
    realized_pnl: int = 0
    last_funding_payment_time: int = 0
    last_cumulative_funding: int = 0
    status: PositionStatus = PositionStatus.OPEN
    opened_at: int = 0
    closed_at: int = 0
    exit_price: int = 0

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN


@dataclass(frozen=True)
class Order:
    order_id: str
    trader: str
    account_id: str
    market_id: str
    side: Side
    order_type: OrderType
    price: int
    size: int
    leverage: int
    filled_size: int = 0
    collateral: int = 0
    created_at: int = 0
    is_active: bool = True
    position_id: str | None = None


@dataclass(frozen=True)
class PriceQuote:
    """One oracle observation, as delivered by the host's price collaborator."""

    price: int
    confidence: int
    timestamp: int


@dataclass(frozen=True)
class ExchangeState:
    """Every record the engine knows about, keyed by stable identifiers.

    ``seq`` counts committed steps; the host uses it for optimistic checks.
    """

    markets: Mapping[str, Market] = field(default_factory=dict)
    accounts: Mapping[str, MarginAccount] = field(default_factory=dict)
    positions: Mapping[str, Position] = field(default_factory=dict)
    orders: Mapping[str, Order] = field(default_factory=dict)
    seq: int = 0


# -- Commands -----------------------------------------------------------------

@dataclass(frozen=True)
class MarketParams:
    """Arguments of ``initialize_market``.

    Reserves left at 0 are filled from ``EngineConfig`` defaults.
    """

    market_symbol: str
    initial_funding_rate: int = 0
    funding_interval: int = 3600
    maintenance_margin_ratio: int = 500
    initial_margin_ratio: int = 1000
    max_leverage: int = 10
    liquidation_fee_ratio: int = 250
    virtual_base_reserve: int = 0
    virtual_quote_reserve: int = 0


@dataclass(frozen=True)
class MarketParamsUpdate:
    """Arguments of ``update_market_params``; ``None`` leaves a field unchanged."""

    maintenance_margin_ratio: int | None = None
    initial_margin_ratio: int | None = None
    funding_interval: int | None = None
    max_leverage: int | None = None
    liquidation_fee_ratio: int | None = None


@dataclass(frozen=True)
class ActionParams:
    """Parameters for an action. Unused fields keep their defaults.

    ``caller`` is the identity already authenticated by the host; ``now`` is the
    host clock in unix seconds.
    """

    action: Action
    caller: str = ""
    now: int = 0
    market_id: str = ""
    account_id: str = ""
    position_id: str = ""
    order_id: str = ""
    side: Side = Side.LONG
    size: int = 0                       # open / orders
    leverage: int = 0                   # open / orders
    price: int = 0                      # limit orders
    amount: int = 0                     # deposit / withdraw
    margin_change: int = 0              # adjust_margin (signed)
    funding_rate: int = 0               # update_funding_rate
    margin_type: MarginType = MarginType.CROSS  # create_margin_account
    quote: PriceQuote | None = None     # adjust_margin / liquidate
    market_params: MarketParams | None = None
    params_update: MarketParamsUpdate | None = None


# -- Results ------------------------------------------------------------------

@dataclass(frozen=True)
class Effect:
    """One notification for the host's sinks. Purely observational."""

    event: Event
    market_id: str = ""
    account_id: str = ""
    position_id: str = ""
    order_id: str = ""
    actor: str = ""
    timestamp: int = 0
    data: Mapping[str, Value] = field(default_factory=dict)


@dataclass(frozen=True)
class Transfer:
    """Value movement the host must perform after the step commits."""

    kind: TransferKind
    account_id: str
    counterparty: str
    amount: int


@dataclass(frozen=True)
class StepResult:
    """Result of a single engine step."""

    accepted: bool
    state: ExchangeState | None = None
    effects: tuple[Effect, ...] = ()
    transfers: tuple[Transfer, ...] = ()
    rejection: str | None = None
