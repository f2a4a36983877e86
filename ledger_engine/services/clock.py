"""
Clocks

The engine asks a clock, never the system directly, whether a date
is in the future.
"""

from datetime import date


class SystemClock:
    """Today's date from the local system."""

    def today(self) -> date:
        return date.today()


class FixedClock:
    """A clock pinned to one day."""

    def __init__(self, today: date):
        self._today = today

    def today(self) -> date:
        return self._today

    def advance_to(self, day: date) -> None:
        self._today = day
