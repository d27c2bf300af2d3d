"""
Money -- Immutable integer minor-unit amount.

Responsibility:
    Provides MoneyAmount, the only representation of a monetary value in
    the kernel.  An amount is a signed integer count of minor units (for
    example cents); there is no float and no Decimal on any arithmetic path.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module, the services and the selectors.

Invariants enforced:
    - amount is always an int (bool rejected), never float or Decimal.
    - amount stays inside the signed 64-bit range of the BIGINT columns
      that persist it; add/subtract/multiply_by_integer raise
      ArithmeticOverflowError instead of producing an unstorable value.
    - from_major rounds to the nearest minor unit with ROUND_HALF_EVEN.

Failure modes:
    - TypeError on construction from a non-int.
    - ArithmeticOverflowError when a result leaves the 64-bit range.
    - TypeError when from_major is handed a float.

Audit relevance:
    format_major is a presentation helper only.  Nothing in the kernel
    parses a formatted string back into an amount.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation, localcontext

from ledger_kernel.db.base import BIGINT_MAX, BIGINT_MIN
from ledger_kernel.exceptions import ArithmeticOverflowError


def _checked(operation: str, value: int) -> int:
    if value > BIGINT_MAX or value < BIGINT_MIN:
        raise ArithmeticOverflowError(operation=operation, result=value)
    return value


@dataclass(frozen=True, slots=True, order=True)
class MoneyAmount:
    """
    Exact integer count of minor currency units.

    Contract:
        Immutable; every arithmetic operation returns a new MoneyAmount.
        Equality and ordering compare the underlying integer.

    Guarantees:
        - minor is an int within [-(2**63), 2**63 - 1].
        - Hashable, so amounts can key dicts and sets.

    Non-goals:
        - Does NOT carry a currency; currency exchange is out of scope and
          every amount in one ledger shares the tenant's currency.
    """

    minor: int

    def __post_init__(self) -> None:
        if isinstance(self.minor, bool) or not isinstance(self.minor, int):
            raise TypeError(
                f"MoneyAmount requires an int of minor units, got {type(self.minor).__name__}"
            )
        _checked("construct", self.minor)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def zero(cls) -> MoneyAmount:
        """Zero minor units."""
        return cls(0)

    @classmethod
    def of(cls, minor: int) -> MoneyAmount:
        """Factory for readability at call sites: ``MoneyAmount.of(15050)``."""
        return cls(minor)

    @classmethod
    def from_major(cls, value: Decimal | str | int, decimal_places: int = 2) -> MoneyAmount:
        """
        Convert a major-unit value to minor units.

        Preconditions:
            - value is a Decimal, a numeric string, or an int.  float is
              rejected because it cannot represent most decimal amounts.
        Postconditions:
            - Returns the nearest minor-unit amount; exact halves round to
              the even neighbour (ROUND_HALF_EVEN).

        Raises:
            TypeError: value is a float or another unsupported type.
            ValueError: value is not a parseable number.
            ArithmeticOverflowError: the minor-unit value is outside the
                64-bit range.
        """
        if isinstance(value, float) or isinstance(value, bool):
            raise TypeError("MoneyAmount.from_major does not accept float or bool")
        if not isinstance(value, (Decimal, str, int)):
            raise TypeError(f"Unsupported major-unit type: {type(value).__name__}")
        try:
            major = Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"Invalid major-unit amount: {value!r}") from exc
        if not major.is_finite():
            raise ValueError(f"Invalid major-unit amount: {value!r}")

        # 10**19 > BIGINT_MAX: anything that large cannot be stored, whatever
        # the rounding, and would exceed the default Decimal precision.
        if major and major.adjusted() + decimal_places >= 19:
            raise ArithmeticOverflowError(operation="from_major", result=str(value))

        with localcontext() as exact:
            exact.prec = max(exact.prec, len(major.as_tuple().digits) + decimal_places + 1)
            scaled = major.scaleb(decimal_places).quantize(Decimal(1), rounding=ROUND_HALF_EVEN)
        return cls(_checked("from_major", int(scaled)))

    @classmethod
    def sum_of(cls, amounts: Iterable[MoneyAmount]) -> MoneyAmount:
        """Sum amounts with overflow detection at each step."""
        total = cls.zero()
        for amount in amounts:
            total = total.add(amount)
        return total

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add(self, other: MoneyAmount) -> MoneyAmount:
        return MoneyAmount(_checked("add", self.minor + _minor_of(other)))

    def subtract(self, other: MoneyAmount) -> MoneyAmount:
        return MoneyAmount(_checked("subtract", self.minor - _minor_of(other)))

    def multiply_by_integer(self, factor: int) -> MoneyAmount:
        if isinstance(factor, bool) or not isinstance(factor, int):
            raise TypeError(f"factor must be an int, got {type(factor).__name__}")
        return MoneyAmount(_checked("multiply_by_integer", self.minor * factor))

    def negate(self) -> MoneyAmount:
        return MoneyAmount(_checked("negate", -self.minor))

    def __add__(self, other: MoneyAmount) -> MoneyAmount:
        return self.add(other)

    def __sub__(self, other: MoneyAmount) -> MoneyAmount:
        return self.subtract(other)

    def __mul__(self, factor: int) -> MoneyAmount:
        return self.multiply_by_integer(factor)

    def __rmul__(self, factor: int) -> MoneyAmount:
        return self.multiply_by_integer(factor)

    def __neg__(self) -> MoneyAmount:
        return self.negate()

    def __abs__(self) -> MoneyAmount:
        return self.negate() if self.minor < 0 else self

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    @property
    def is_positive(self) -> bool:
        return self.minor > 0

    @property
    def is_negative(self) -> bool:
        return self.minor < 0

    @property
    def is_zero(self) -> bool:
        return self.minor == 0

    def __int__(self) -> int:
        return self.minor

    def __str__(self) -> str:
        return str(self.minor)

    def __repr__(self) -> str:
        return f"MoneyAmount({self.minor})"


def _minor_of(other: MoneyAmount) -> int:
    if not isinstance(other, MoneyAmount):
        raise TypeError(f"Expected MoneyAmount, got {type(other).__name__}")
    return other.minor


def format_major(amount: MoneyAmount, decimal_places: int = 2) -> str:
    """
    Render an amount as a major-unit string, e.g. 15050 -> "150.50".

    Presentation only: the result is never parsed back or used in any
    computation.
    """
    sign = "-" if amount.minor < 0 else ""
    digits = abs(amount.minor)
    if decimal_places == 0:
        return f"{sign}{digits}"
    whole, fraction = divmod(digits, 10**decimal_places)
    return f"{sign}{whole}.{fraction:0{decimal_places}d}"
