"""Unit-tagged quantities for health samples.

The store keeps every quantity in whatever unit the producing app wrote it
in. Readers ask for a fixed unit per kind and convert at read time, the same
way HealthKit's ``HKQuantity.doubleValue(for:)`` does.

Supported dimensions:
- count:        count
- glucose:      mg/dL, mmol/L (molar mass of glucose, 180.156 g/mol)
- insulin:      IU
- mass:         g, kg, lb, oz
- volume:       mL, L, fl_oz_us
- length:       m, km, mi, ft
- energy:       kcal, kJ
- time:         s, min, h
"""

from __future__ import annotations

from dataclasses import dataclass


class UnitConversionError(ValueError):
    """Raised when a unit is unknown or belongs to a different dimension."""


# unit -> (dimension, factor to the dimension's base unit)
_UNITS: dict[str, tuple[str, float]] = {
    "count": ("count", 1.0),
    "mg/dL": ("glucose", 1.0),
    "mmol/L": ("glucose", 18.0156),
    "IU": ("insulin", 1.0),
    "g": ("mass", 1.0),
    "kg": ("mass", 1000.0),
    "lb": ("mass", 453.59237),
    "oz": ("mass", 28.349523125),
    "mL": ("volume", 1.0),
    "L": ("volume", 1000.0),
    "fl_oz_us": ("volume", 29.5735295625),
    "m": ("length", 1.0),
    "km": ("length", 1000.0),
    "mi": ("length", 1609.344),
    "ft": ("length", 0.3048),
    "kcal": ("energy", 1.0),
    "kJ": ("energy", 1.0 / 4.184),
    "s": ("time", 1.0),
    "min": ("time", 60.0),
    "h": ("time", 3600.0),
}


def dimension_of(unit: str) -> str:
    """Return the dimension name for *unit*.

    Raises:
        UnitConversionError: If the unit is not known.
    """
    try:
        return _UNITS[unit][0]
    except KeyError:
        raise UnitConversionError(f"Unknown unit: {unit!r}") from None


def is_compatible(unit: str, other: str) -> bool:
    """True if both units are known and share a dimension."""
    if unit not in _UNITS or other not in _UNITS:
        return False
    return _UNITS[unit][0] == _UNITS[other][0]


@dataclass(frozen=True)
class Quantity:
    """A numeric value tagged with its unit."""

    value: float
    unit: str

    def __post_init__(self) -> None:
        dimension_of(self.unit)

    def value_in(self, unit: str) -> float:
        """Return this quantity's value expressed in *unit*."""
        if unit == self.unit:
            return float(self.value)
        src_dim, src_factor = _UNITS[self.unit]
        dst_dim = dimension_of(unit)
        if src_dim != dst_dim:
            raise UnitConversionError(
                f"Cannot convert {self.unit!r} ({src_dim}) to {unit!r} ({dst_dim})"
            )
        return float(self.value) * src_factor / _UNITS[unit][1]

    def to(self, unit: str) -> Quantity:
        return Quantity(self.value_in(unit), unit)

    def __add__(self, other: Quantity) -> Quantity:
        if not isinstance(other, Quantity):
            return NotImplemented
        return Quantity(self.value + other.value_in(self.unit), self.unit)
