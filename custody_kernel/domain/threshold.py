"""
Threshold arithmetic (``custody_kernel.domain.threshold``).

Responsibility
--------------
Converts an oracle price sample into a redirection threshold expressed in
the native asset's smallest unit.  Pure integer/Decimal arithmetic, no I/O.

Price samples are fixed-point integers with ``price_decimals`` places
(100000 with 6 decimals is 0.10 fiat per native unit).  The threshold is

    target_fiat_value * 10**price_decimals * 10**native_decimals // price

so a 5-unit fiat target at 0.10 per native unit gives 50 native units
(50_000_000 smallest units with 6 native decimals).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from custody_kernel.exceptions import InvalidPriceSampleError, InvalidThresholdError


@dataclass(frozen=True)
class ThresholdParameters:
    """Fixed inputs of the threshold formula."""

    baseline: int
    target_fiat_value: Decimal
    price_decimals: int = 6
    native_decimals: int = 6

    def to_smallest_unit(self, native_units: int | Decimal) -> int:
        """Express a whole native amount in smallest units."""
        scaled = Decimal(native_units) * (Decimal(10) ** self.native_decimals)
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def compute_threshold(
    params: ThresholdParameters,
    price_sample: int,
    correlation_id: str = "",
) -> int:
    """Return the threshold for ``price_sample``.

    Raises:
        InvalidPriceSampleError: price_sample is not a positive integer.
        InvalidThresholdError: the result rounds down to zero.
    """
    if isinstance(price_sample, bool) or not isinstance(price_sample, int) or price_sample <= 0:
        raise InvalidPriceSampleError(correlation_id, price_sample)

    numerator = (
        params.target_fiat_value
        * (Decimal(10) ** params.price_decimals)
        * (Decimal(10) ** params.native_decimals)
    )
    threshold = int((numerator / Decimal(price_sample)).to_integral_value(rounding=ROUND_FLOOR))
    if threshold <= 0:
        raise InvalidThresholdError(threshold)
    return threshold
