"""
Logical clocks. The engines only ever ask "what time unit is it now?".

LogicalClock is a manual counter for tests and the CLI's --now flag.
SlotClock derives time units from wall time (2 units per second, the
rate LiquidityPoolConfig.time_units_per_year assumes) and never goes
backwards.
"""

import time


class LogicalClock:

    def __init__(self, start: int = 0):
        self._now = start

    def now(self) -> int:
        return self._now

    def set(self, value: int) -> None:
        if value < self._now:
            raise ValueError(f"clock can't go backwards: {value} < {self._now}")
        self._now = value


class SlotClock:

    def __init__(self, units_per_second: int = 2):
        self.units_per_second = units_per_second
        self._last = 0

    def now(self) -> int:
        current = int(time.time() * self.units_per_second)
        self._last = max(self._last, current)
        return self._last
