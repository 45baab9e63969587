"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock interface so that domain, engine, and service
    code never call ``datetime.now()`` directly.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).

Failure modes:
    None.  ``DeterministicClock`` never raises.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services that stamp movements, transactions or stage intervals
        receive a Clock via constructor injection.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()`` or ``set_time()`` is called.
        - ``tick()`` advances by exactly 1 second and returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        self._advance_seconds = 0

    def now(self) -> datetime:
        return (self._fixed_time + timedelta(seconds=self._advance_seconds)).astimezone(UTC)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._advance_seconds += seconds

    def advance_hours(self, hours: float) -> None:
        self.advance(int(hours * 3600))

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()
