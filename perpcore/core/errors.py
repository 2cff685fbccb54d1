"""Exception types for the perpcore exchange engine.

Every rejection carries a stable ``code`` string. ``step()`` in ``engine.py``
turns these into ``StepResult.rejection`` values; ``step_or_raise()`` re-raises
them for callers that prefer exceptions over ``StepResult`` inspection.

Families:
- ``ValidationError``: malformed input, rejected before any state is read.
- ``MathOverflow``: a checked arithmetic operation failed.
- ``StateError``: record state or caller identity does not allow the action.
- ``EconomicError``: business-rule rejection (margin, collateral, liquidation).
"""

from __future__ import annotations


class ExchangeError(Exception):
    """Base class for every engine rejection."""

    code: str = "exchange_error"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


# -- Input validation ---------------------------------------------------------

class ValidationError(ExchangeError):
    code = "invalid_parameter"


class InvalidOrderSize(ValidationError):
    code = "invalid_order_size"


class InvalidOrderPrice(ValidationError):
    code = "invalid_order_price"


class InvalidLeverage(ValidationError):
    code = "invalid_leverage"


class LeverageTooHigh(ValidationError):
    code = "leverage_too_high"


class InvalidMarginRatio(ValidationError):
    code = "invalid_margin_ratio"


class InvalidMarketSymbol(ValidationError):
    code = "invalid_market_symbol"


class InvalidFundingInterval(ValidationError):
    code = "invalid_funding_interval"


class InvalidFundingRate(ValidationError):
    code = "invalid_funding_rate"


class DepositTooSmall(ValidationError):
    code = "deposit_too_small"


class WithdrawalTooSmall(ValidationError):
    code = "withdrawal_too_small"


class PositionSizeTooSmall(ValidationError):
    code = "position_size_too_small"


class TradeSizeTooLarge(ValidationError):
    code = "trade_size_too_large"


# -- Arithmetic ---------------------------------------------------------------

class MathOverflow(ExchangeError):
    """Raised on overflow, underflow, division by zero or out-of-domain operands."""

    code = "math_overflow"


# -- State / authorization ----------------------------------------------------

class StateError(ExchangeError):
    code = "invalid_state"


class Unauthorized(StateError):
    code = "unauthorized"


class MarketInactive(StateError):
    code = "market_inactive"


class MarketAlreadyPaused(StateError):
    code = "market_already_paused"


class MarketAlreadyActive(StateError):
    code = "market_already_active"


class MarketAlreadyExists(StateError):
    code = "market_already_exists"


class MarketNotFound(StateError):
    code = "market_not_found"


class AccountAlreadyExists(StateError):
    code = "account_already_exists"


class AccountNotFound(StateError):
    code = "account_not_found"


class PositionAlreadyExists(StateError):
    code = "position_already_exists"


class PositionNotFound(StateError):
    code = "position_not_found"


class PositionClosed(StateError):
    code = "position_closed"


class PositionLiquidated(StateError):
    code = "position_liquidated"


class OrderAlreadyExists(StateError):
    code = "order_already_exists"


class OrderNotFound(StateError):
    code = "order_not_found"


class OrderNotActive(StateError):
    code = "order_not_active"


class OrderNotFillable(StateError):
    code = "order_not_fillable"


class InvalidAMMState(StateError):
    code = "invalid_amm_state"


class DuplicateReference(StateError):
    code = "duplicate_reference"


class TooManyPositions(StateError):
    code = "too_many_positions"


class TooManyOrders(StateError):
    code = "too_many_orders"


class InvalidOraclePrice(StateError):
    code = "invalid_oracle_price"


class StaleOraclePrice(StateError):
    code = "stale_oracle_price"


class PriceConfidenceTooLow(StateError):
    code = "price_confidence_too_low"


# -- Economic -----------------------------------------------------------------

class EconomicError(ExchangeError):
    code = "economic_rejection"


class InsufficientMargin(EconomicError):
    code = "insufficient_margin"


class InsufficientCollateral(EconomicError):
    code = "insufficient_collateral"


class WithdrawalExceedsAvailableMargin(EconomicError):
    code = "withdrawal_exceeds_available_margin"


class WithdrawalBelowMaintenanceMargin(EconomicError):
    code = "withdrawal_below_maintenance_margin"


class PositionNotLiquidatable(EconomicError):
    code = "position_not_liquidatable"


# -- Post-state / host --------------------------------------------------------

class InvariantViolation(ExchangeError):
    """Raised when a post-state violates one or more invariants."""

    code = "invariant"

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(
            f"invariant violations: {', '.join(violations)}",
            code=f"invariant:{','.join(violations)}",
        )


class StaleStateError(ExchangeError):
    """Raised by the host when an optimistic sequence check fails."""

    code = "stale_state"
