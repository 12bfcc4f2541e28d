"""Fixed-precision money arithmetic.

Amounts are held as integers in the currency's minor unit (cents for USD),
so $10.00 = 1000 cents. Intermediate products stay exact as Decimal and are
rounded once, at the end of a calculation, with ROUND_HALF_EVEN.
"""

from dataclasses import dataclass
from decimal import Decimal, Inexact, InvalidOperation, ROUND_HALF_EVEN, localcontext

from core.exceptions import InvoiceValidationError

# ISO 4217 currencies whose minor unit is not 2 digits.
_MINOR_UNIT_EXPONENTS = {
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "VND": 0, "VUV": 0, "XAF": 0,
    "XOF": 0, "XPF": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
}

HUNDRED = Decimal(100)

# Largest magnitude any single amount may reach, in minor units.
MAX_MINOR_UNITS = 10 ** 15


def minor_unit_exponent(currency: str) -> int:
    """Number of decimal places in the currency's minor unit."""
    return _MINOR_UNIT_EXPONENTS.get(currency.upper(), 2)


def normalize_currency(currency: str) -> str:
    """
    Validate and upper-case an ISO 4217 code.

    Raises InvoiceValidationError for anything that is not three letters.
    """
    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise InvoiceValidationError(
            f"Invalid currency code '{currency}'", code="INVALID_CURRENCY"
        )
    return code


def parse_decimal(value, code: str = "INVALID_AMOUNT") -> Decimal:
    """
    Convert ``value`` to a finite Decimal.

    Raises InvoiceValidationError with ``code`` for text that is not a
    number, NaN or infinity.
    """
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvoiceValidationError(f"Invalid number '{value}'", code=code)
    if not number.is_finite():
        raise InvoiceValidationError(f"Invalid number '{value}'", code=code)
    return number


def _out_of_range(value) -> InvoiceValidationError:
    return InvoiceValidationError(
        f"Amount {value} is outside the supported range", code="AMOUNT_OUT_OF_RANGE"
    )


def exact_product(cents: int, factor: Decimal, scale: int = 0) -> Decimal:
    """
    ``cents * factor * 10**scale`` with every digit kept.

    The context precision is widened to the combined digits of both
    operands, so the product is never rounded before ``round_minor``.
    """
    amount = Decimal(cents)
    with localcontext() as ctx:
        ctx.prec = len(amount.as_tuple().digits) + len(factor.as_tuple().digits)
        ctx.traps[Inexact] = True
        try:
            return (amount * factor).scaleb(scale)
        except Inexact:
            raise _out_of_range(f"{cents} x {factor}")


def round_minor(value: Decimal) -> int:
    """Round an exact minor-unit quantity to an integer, half to even."""
    if value.copy_abs() >= MAX_MINOR_UNITS:
        raise _out_of_range(value)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


@dataclass(frozen=True, order=True)
class Money:
    """An amount of one currency, in integer minor units."""

    cents: int
    currency: str = "USD"

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(0, currency)

    @classmethod
    def from_decimal(cls, value, currency: str) -> "Money":
        """
        Build Money from a major-unit amount such as Decimal("12.55").

        The value must already be at minor-unit precision; "12.555" USD is
        rejected rather than silently rounded.
        """
        amount = parse_decimal(value)
        scaled = exact_product(1, amount, minor_unit_exponent(currency))
        if scaled != scaled.to_integral_value():
            raise InvoiceValidationError(
                f"Amount {value} has more precision than {currency} allows",
                code="INVALID_PRECISION",
            )
        if scaled.copy_abs() >= MAX_MINOR_UNITS:
            raise _out_of_range(value)
        return cls(int(scaled), currency)

    @property
    def amount(self) -> Decimal:
        """Major-unit amount as a Decimal at minor-unit precision."""
        exponent = minor_unit_exponent(self.currency)
        return Decimal(self.cents).scaleb(-exponent).quantize(
            Decimal(1).scaleb(-exponent)
        )

    def __str__(self) -> str:
        return str(self.amount)

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise InvoiceValidationError(
                f"Currency mismatch: {self.currency} vs {other.currency}",
                code="CURRENCY_MISMATCH",
            )

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.cents + other.cents, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.cents - other.cents, self.currency)

    def times(self, factor) -> "Money":
        """Multiply by a scalar, rounding once."""
        return Money(round_minor(exact_product(self.cents, parse_decimal(factor))), self.currency)

    def percent(self, rate) -> "Money":
        """Take ``rate`` percent (0-100 scale) of this amount, rounding once."""
        return Money(
            round_minor(exact_product(self.cents, parse_decimal(rate), -2)),
            self.currency,
        )

    def min(self, other: "Money") -> "Money":
        self._check(other)
        return self if self.cents <= other.cents else other

    def clamp_non_negative(self) -> "Money":
        """Negative results collapse to zero."""
        if self.cents < 0:
            return Money(0, self.currency)
        return self

    @property
    def is_zero(self) -> bool:
        return self.cents == 0

    @property
    def is_positive(self) -> bool:
        return self.cents > 0
