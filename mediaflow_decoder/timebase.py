"""
Stream time base arithmetic.

A time base is the rational number of seconds per stream tick. All the
conversions here stay in ``fractions.Fraction`` until the final rounding
step, so large pts values on long-running streams do not lose precision.
"""

from dataclasses import dataclass
from datetime import timedelta
from fractions import Fraction

# FFmpeg's internal time base (AV_TIME_BASE), used for container-wide durations.
AV_TIME_BASE = 1_000_000

_MICROSECOND = Fraction(1, 1_000_000)


@dataclass(frozen=True, slots=True)
class TimeBase:
    numerator: int
    denominator: int

    @classmethod
    def from_fraction(cls, value: Fraction | None) -> "TimeBase":
        if value is None:
            return cls(0, 1)
        value = Fraction(value)
        return cls(value.numerator, value.denominator)

    @property
    def valid(self) -> bool:
        return self.numerator > 0 and self.denominator > 0

    def as_fraction(self) -> Fraction:
        if self.denominator == 0:
            return Fraction(0)
        return Fraction(self.numerator, self.denominator)

    def to_seconds(self, ticks: int | None) -> Fraction:
        """Exact number of seconds covered by ``ticks``."""
        if ticks is None or self.denominator == 0:
            return Fraction(0)
        return Fraction(ticks * self.numerator, self.denominator)

    def to_timedelta(self, ticks: int | None) -> timedelta:
        return seconds_to_timedelta(self.to_seconds(ticks))

    def to_ticks(self, duration: timedelta | float | Fraction) -> int:
        """
        Convert a wall-clock duration into stream ticks (inverse of the time base).

        The result is floored so that a backward seek never lands after the
        requested position.
        """
        if not self.valid:
            raise ValueError(f"invalid time base {self.numerator}/{self.denominator}")
        seconds = duration_to_seconds(duration)
        return seconds * self.denominator // self.numerator

    def __str__(self) -> str:
        return f"{self.numerator}/{self.denominator}"


def duration_to_seconds(duration: timedelta | float | Fraction) -> Fraction:
    if isinstance(duration, timedelta):
        return Fraction(duration // timedelta(microseconds=1), 1_000_000)
    return Fraction(duration)


def seconds_to_timedelta(seconds: Fraction) -> timedelta:
    return timedelta(microseconds=round(seconds / _MICROSECOND))
