"""Checked integer arithmetic for prices, sizes and collateral.

Every function is stateless and operates on plain Python ints. Python ints never
wrap, so the fixed-width domains of the exchange (u64 sizes and balances, i64
PnL and funding, u128 intermediates such as the AMM constant product) are
enforced explicitly: any result outside its domain raises ``MathOverflow``.

Rounding is always explicit:
- ``checked_div`` truncates toward zero,
- ``checked_div_floor`` rounds toward -inf,
- ``checked_div_ceil`` rounds toward +inf.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import MathOverflow

PRICE_SCALE: int = 1_000_000  # 1e6, prices are quote-per-base scaled by 1e6
BPS_SCALE: int = 10_000


@dataclass(frozen=True)
class IntDomain:
    """Closed integer interval ``[lo, hi]`` that a checked result must fall in."""

    name: str
    lo: int
    hi: int

    def contains(self, x: int) -> bool:
        return self.lo <= x <= self.hi


U64 = IntDomain("u64", 0, (1 << 64) - 1)
I64 = IntDomain("i64", -(1 << 63), (1 << 63) - 1)
U128 = IntDomain("u128", 0, (1 << 128) - 1)
I128 = IntDomain("i128", -(1 << 127), (1 << 127) - 1)

U64_MAX: int = U64.hi
I64_MAX: int = I64.hi
I64_MIN: int = I64.lo


def _require_int(name: str, x: int) -> None:
    if not isinstance(x, int) or isinstance(x, bool):
        raise MathOverflow(f"{name} must be an int, got {type(x).__name__}")


def _in_domain(x: int, domain: IntDomain, op: str) -> int:
    if not domain.contains(x):
        raise MathOverflow(f"{op} result {x} outside {domain.name}")
    return x


def _operands(op: str, a: int, b: int, domain: IntDomain) -> None:
    _require_int("a", a)
    _require_int("b", b)
    if not domain.contains(a) or not domain.contains(b):
        raise MathOverflow(f"{op} operand outside {domain.name}: ({a}, {b})")


# -- Basic checked operations -------------------------------------------------

def checked_add(a: int, b: int, domain: IntDomain = U64) -> int:
    _operands("add", a, b, domain)
    return _in_domain(a + b, domain, "add")


def checked_sub(a: int, b: int, domain: IntDomain = U64) -> int:
    _operands("sub", a, b, domain)
    return _in_domain(a - b, domain, "sub")


def checked_mul(a: int, b: int, domain: IntDomain = U64) -> int:
    _operands("mul", a, b, domain)
    return _in_domain(a * b, domain, "mul")


def checked_div(a: int, b: int, domain: IntDomain = U64) -> int:
    """Division truncating toward zero."""
    _operands("div", a, b, domain)
    if b == 0:
        raise MathOverflow("division by zero")
    q = abs(a) // abs(b)
    if (a < 0) != (b < 0):
        q = -q
    return _in_domain(q, domain, "div")


def checked_div_floor(a: int, b: int, domain: IntDomain = U64) -> int:
    """Division rounding toward -inf."""
    _operands("div", a, b, domain)
    if b == 0:
        raise MathOverflow("division by zero")
    return _in_domain(a // b, domain, "div")


def checked_div_ceil(a: int, b: int, domain: IntDomain = U64) -> int:
    """Division rounding toward +inf."""
    _operands("div", a, b, domain)
    if b == 0:
        raise MathOverflow("division by zero")
    return _in_domain(-((-a) // b), domain, "div")


# -- Composite helpers --------------------------------------------------------

def mul_div(a: int, b: int, d: int, domain: IntDomain = U64) -> int:
    """``floor(a * b / d)`` with a u128/i128 intermediate product."""
    wide = I128 if domain.lo < 0 else U128
    return _in_domain(checked_div_floor(checked_mul(a, b, wide), d, wide), domain, "mul_div")


def mul_div_ceil(a: int, b: int, d: int, domain: IntDomain = U64) -> int:
    """``ceil(a * b / d)`` with a u128/i128 intermediate product."""
    wide = I128 if domain.lo < 0 else U128
    return _in_domain(checked_div_ceil(checked_mul(a, b, wide), d, wide), domain, "mul_div")


def to_signed(x: int) -> int:
    """Reinterpret a u64 quantity as i64 (fails instead of wrapping)."""
    _require_int("x", x)
    if not U64.contains(x):
        raise MathOverflow(f"{x} is not a u64")
    return _in_domain(x, I64, "to_signed")


def to_unsigned(x: int) -> int:
    """Reinterpret a non-negative i64 quantity as u64."""
    _require_int("x", x)
    if not I64.contains(x):
        raise MathOverflow(f"{x} is not an i64")
    return _in_domain(x, U64, "to_unsigned")


def apply_signed(balance: int, delta: int) -> int:
    """``balance + delta`` for an unsigned balance and a signed delta."""
    if delta >= 0:
        return checked_add(balance, to_unsigned(delta))
    return checked_sub(balance, to_unsigned(-delta))


# -- Domain formulas ----------------------------------------------------------

def notional(size: int, price: int) -> int:
    """Quote value of ``size`` base units at a 1e6-scaled price (floor)."""
    return mul_div(size, price, PRICE_SCALE)


def bps_of(amount: int, bps: int) -> int:
    """``floor(amount * bps / 10000)``."""
    return mul_div(amount, bps, BPS_SCALE)


def bps_of_ceil(amount: int, bps: int) -> int:
    """``ceil(amount * bps / 10000)``; used for requirements."""
    return mul_div_ceil(amount, bps, BPS_SCALE)
