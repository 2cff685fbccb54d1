"""`perpcore.core`: functional core of the perpetual-futures exchange.

- deterministic, integer-only transitions,
- immutable state (frozen dataclasses),
- fail-closed guards and invariant checks.

Public API:
- `initial_state() -> ExchangeState`
- `step(state, params, config=DEFAULT_CONFIG) -> StepResult`
- `step_or_raise(state, params, config=DEFAULT_CONFIG) -> StepResult` (raises on rejection)
"""

from .engine import step, step_or_raise
from .errors import (
    EconomicError,
    ExchangeError,
    InvariantViolation,
    MathOverflow,
    StaleStateError,
    StateError,
    ValidationError,
)
from .state import initial_state, state_from_dict, state_to_dict
from .types import (
    Action,
    ActionParams,
    Effect,
    Event,
    ExchangeState,
    MarginAccount,
    MarginType,
    Market,
    MarketParams,
    MarketParamsUpdate,
    Order,
    OrderType,
    Position,
    PositionStatus,
    PriceQuote,
    Side,
    StepResult,
    Transfer,
    TransferKind,
)

__all__ = [
    "step",
    "step_or_raise",
    "initial_state",
    "state_from_dict",
    "state_to_dict",
    "Action",
    "ActionParams",
    "Effect",
    "Event",
    "ExchangeState",
    "MarginAccount",
    "MarginType",
    "Market",
    "MarketParams",
    "MarketParamsUpdate",
    "Order",
    "OrderType",
    "Position",
    "PositionStatus",
    "PriceQuote",
    "Side",
    "StepResult",
    "Transfer",
    "TransferKind",
    "EconomicError",
    "ExchangeError",
    "InvariantViolation",
    "MathOverflow",
    "StaleStateError",
    "StateError",
    "ValidationError",
]
