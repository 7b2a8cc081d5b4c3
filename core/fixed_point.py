"""
Fixed-point decimal arithmetic for the Liquidation Queue model.

Decimal256 mirrors the on-chain Decimal256 type: an unsigned decimal with 18
fractional digits stored as an integer number of atoms. All operations round
toward zero (floor), so repeated accounting never credits more than was put in.
Token amounts (Uint256) are plain non-negative Python ints.
"""

from functools import total_ordering

from queue_errors import Underflow

# 1.0 expressed in atoms
DECIMAL_FRACTIONAL = 10 ** 18
DECIMAL_PLACES = 18


@total_ordering
class Decimal256:
    """
    Unsigned fixed-point decimal with 18 fractional digits.
    """

    __slots__ = ("atoms",)

    def __init__(self, atoms=0):
        atoms = int(atoms)
        if atoms < 0:
            raise Underflow(f"Decimal256 cannot be negative: {atoms} atoms")
        self.atoms = atoms

    @classmethod
    def zero(cls):
        return cls(0)

    @classmethod
    def one(cls):
        return cls(DECIMAL_FRACTIONAL)

    @classmethod
    def from_uint256(cls, value):
        """Converts an integer token amount into a decimal."""
        return cls(int(value) * DECIMAL_FRACTIONAL)

    @classmethod
    def from_ratio(cls, numerator, denominator):
        """
        Returns numerator / denominator, floored to 18 fractional digits.

        Args:
            numerator: Integer numerator
            denominator: Integer denominator, must be non-zero

        Returns:
            The ratio as a Decimal256
        """
        if denominator == 0:
            raise ZeroDivisionError("Decimal256 ratio with zero denominator")
        return cls(int(numerator) * DECIMAL_FRACTIONAL // int(denominator))

    @classmethod
    def from_str(cls, text):
        """
        Parses a decimal string such as "0.05" or "1000".
        """
        text = str(text).strip()
        if not text or text.startswith("-"):
            raise ValueError(f"Invalid Decimal256 string: {text!r}")
        whole, _, fraction = text.partition(".")
        if (whole and not whole.isdigit()) or (fraction and not fraction.isdigit()):
            raise ValueError(f"Invalid Decimal256 string: {text!r}")
        if len(fraction) > DECIMAL_PLACES:
            raise ValueError(f"Too many fractional digits: {text!r}")
        fraction = fraction.ljust(DECIMAL_PLACES, "0")
        return cls(int(whole or "0") * DECIMAL_FRACTIONAL + int(fraction))

    @classmethod
    def percent(cls, value):
        """Convenience constructor, percent(5) == 0.05."""
        return cls(int(value) * DECIMAL_FRACTIONAL // 100)

    def is_zero(self):
        return self.atoms == 0

    def floor(self):
        """Integer part, used when converting a decimal amount to a token amount."""
        return self.atoms // DECIMAL_FRACTIONAL

    def fract(self):
        """Fractional part as a decimal."""
        return Decimal256(self.atoms % DECIMAL_FRACTIONAL)

    def mul_uint(self, value):
        """
        Multiplies an integer token amount by this decimal, floored to an int.
        """
        return int(value) * self.atoms // DECIMAL_FRACTIONAL

    def __add__(self, other):
        if not isinstance(other, Decimal256):
            return NotImplemented
        return Decimal256(self.atoms + other.atoms)

    def __sub__(self, other):
        if not isinstance(other, Decimal256):
            return NotImplemented
        if other.atoms > self.atoms:
            raise Underflow(f"Decimal256 subtraction underflow: {self} - {other}")
        return Decimal256(self.atoms - other.atoms)

    def __mul__(self, other):
        if not isinstance(other, Decimal256):
            return NotImplemented
        return Decimal256(self.atoms * other.atoms // DECIMAL_FRACTIONAL)

    def __truediv__(self, other):
        if not isinstance(other, Decimal256):
            return NotImplemented
        if other.atoms == 0:
            raise ZeroDivisionError("Decimal256 division by zero")
        return Decimal256(self.atoms * DECIMAL_FRACTIONAL // other.atoms)

    def __eq__(self, other):
        if not isinstance(other, Decimal256):
            return NotImplemented
        return self.atoms == other.atoms

    def __lt__(self, other):
        if not isinstance(other, Decimal256):
            return NotImplemented
        return self.atoms < other.atoms

    def __hash__(self):
        return hash(self.atoms)

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __bool__(self):
        return self.atoms != 0

    def __str__(self):
        whole, fraction = divmod(self.atoms, DECIMAL_FRACTIONAL)
        if fraction == 0:
            return str(whole)
        return f"{whole}.{str(fraction).rjust(DECIMAL_PLACES, '0').rstrip('0')}"

    def __repr__(self):
        return f"Decimal256('{self}')"


def to_uint256(value):
    """
    Validates a token amount coming from a message (int or decimal string).
    """
    if isinstance(value, (bool, float)):
        raise ValueError(f"Invalid Uint256: {value!r}")
    if isinstance(value, str):
        if not value.strip().isdigit():
            raise ValueError(f"Invalid Uint256: {value!r}")
        value = int(value)
    value = int(value)
    if value < 0:
        raise Underflow(f"Uint256 cannot be negative: {value}")
    return value


def to_decimal256(value):
    """Accepts a Decimal256 or its string form."""
    if isinstance(value, Decimal256):
        return value
    return Decimal256.from_str(value)
