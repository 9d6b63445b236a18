"""
Vital-sign collection from wearable sources.

Key patterns:
- Protocol-based dependency injection (any VitalsSource can feed a stream)
- Generic Result type for expected failures
- Explicit start/stop lifecycle and subscriber list instead of a global singleton
- Async context manager for the stream lifecycle
"""

import asyncio
import inspect
import random
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Generic, Protocol, TypeVar

import structlog

from vitalwatch.domain.models import VitalReading

logger = structlog.get_logger(__name__)

# Generic Result type for explicit error handling
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    Why: Makes error paths visible in type system, forces handling decisions.
    When to use: When failure is expected business logic, not exceptional.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore[return-value]

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class VitalsSource(Protocol):
    """
    How a stream obtains readings from a device, simulator or manual entry.

    Why Protocol over ABC: Structural typing, easier mocking, less coupling.
    """

    source_name: str

    async def read_vitals(self) -> Result[VitalReading, Exception]:
        """Take one reading from the source."""
        ...


Listener = Callable[[VitalReading], None | Awaitable[None]]

_ECG_BASE_PATTERN = (0.1, 0.2, 0.8, 1.2, 0.4, 0.0, -0.3, 0.1, 0.1)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SimulatedWristbandSource:
    """
    Simulated wristband with circadian variation.

    Readings drift lower at night and slightly higher in the evening, with
    uniform noise clamped to a realistic range.
    """

    def __init__(
        self,
        source_name: str = "wristband-sim",
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.source_name = source_name
        self.rng = rng or random.Random()
        self.clock = clock
        self.logger = logger.bind(source=source_name)

    async def read_vitals(self) -> Result[VitalReading, Exception]:
        try:
            reading = self.generate_reading(self.clock())
            self.logger.debug(
                "vitals_generated",
                heart_rate=reading.heart_rate,
                blood_pressure=reading.blood_pressure,
            )
            return Result.ok(reading)
        except Exception as e:
            self.logger.exception("vitals_generation_failed", error=str(e))
            return Result.err(e)

    def generate_reading(self, at: datetime) -> VitalReading:
        """Generate one realistic reading for the given wall-clock time."""
        rng = self.rng
        hour = at.hour
        is_night = hour >= 22 or hour <= 6
        is_evening = 18 <= hour < 22

        base_heart_rate = 72.0
        base_systolic = 120.0
        base_diastolic = 80.0
        base_temp = 98.6
        base_steps = int(hour / 24 * 12000)  # Steps accumulate through the day

        if is_night:
            base_heart_rate -= 10
            base_systolic -= 5
            base_diastolic -= 3
            base_temp -= 0.5
        elif is_evening:
            base_heart_rate += 5
            base_temp += 0.3

        heart_rate = _clamp(base_heart_rate + (rng.random() - 0.5) * 20, 50, 120)
        systolic = _clamp(base_systolic + (rng.random() - 0.5) * 30, 90, 180)
        diastolic = _clamp(base_diastolic + (rng.random() - 0.5) * 20, 60, 110)
        oxygen = _clamp(98 + (rng.random() - 0.5) * 6, 92, 100)
        temperature = _clamp(base_temp + (rng.random() - 0.5) * 2, 96.5, 100.5)

        sleep_hours = rng.random() * 2 + 6 if is_night else rng.random() + 7

        return VitalReading(
            heart_rate=round(heart_rate),
            blood_pressure_systolic=round(systolic),
            blood_pressure_diastolic=round(diastolic),
            oxygen_saturation=round(oxygen),
            body_temperature=round(temperature, 1),
            steps=base_steps + int(rng.random() * 1000),
            sleep_hours=round(sleep_hours, 1),
            ecg_trace_ref=self._ecg_pattern(),
            timestamp=at,
        )

    def _ecg_pattern(self) -> str:
        samples = [base + (self.rng.random() - 0.5) * 0.1 for base in _ECG_BASE_PATTERN]
        return ",".join(f"{s:.2f}" for s in samples)

    def generate_history(self, days: int = 7) -> list[VitalReading]:
        """Hourly readings going back `days`, with gaps, oldest first."""
        if days <= 0:
            raise ValueError("days must be positive")

        now = self.clock()
        readings = []
        for hours_ago in range(days * 24, -1, -1):
            # Skip some hours so the series has realistic gaps
            if self.rng.random() < 0.3:
                continue
            readings.append(self.generate_reading(now - timedelta(hours=hours_ago)))
        return readings


class VitalsStream:
    """
    Pushes readings from one source to subscribers on a fixed cadence.

    Design principles:
    - The source is injected, nothing is global
    - Explicit lifecycle: start()/stop() or `async with stream.session(...)`
    - Subscriber failures are isolated and logged
    - Bounded recent history, newest first
    """

    def __init__(self, source: VitalsSource, history_size: int = 50) -> None:
        if history_size <= 0:
            raise ValueError("history_size must be positive")
        self.source = source
        self.logger = logger.bind(component="vitals_stream", source=source.source_name)
        self._listeners: list[Listener] = []
        self._history: deque[VitalReading] = deque(maxlen=history_size)
        self._current: VitalReading | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current(self) -> VitalReading | None:
        return self._current

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def recent(self, limit: int = 20) -> list[VitalReading]:
        """Most recent readings, newest first."""
        return list(self._history)[:limit]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener and return a callable that removes it.

        A new listener is handed the current reading straight away if there is one.
        """
        self._listeners.append(listener)
        self.logger.info("subscriber_added", listeners=len(self._listeners))

        if self._current is not None:
            self._deliver_now(listener, self._current)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
                self.logger.info("subscriber_removed", listeners=len(self._listeners))

        return unsubscribe

    def _deliver_now(self, listener: Listener, reading: VitalReading) -> None:
        try:
            outcome = listener(reading)
        except Exception as e:
            self.logger.exception("listener_failed", error=str(e))
            return

        if inspect.isawaitable(outcome):
            # Async listeners need a running loop to receive the replayed reading
            future = asyncio.get_running_loop().create_task(self._await_listener(outcome))
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)

    async def _await_listener(self, outcome: Awaitable[None]) -> None:
        try:
            await outcome
        except Exception as e:
            self.logger.exception("listener_failed", error=str(e))

    async def poll_once(self) -> Result[VitalReading, Exception]:
        """Read from the source once and publish the reading if there is one."""
        result = await self.source.read_vitals()
        if result.is_ok():
            await self._publish(result.unwrap())
        else:
            self.logger.warning("source_read_failed", error=str(result.unwrap_err()))
        return result

    async def _publish(self, reading: VitalReading) -> None:
        self._current = reading
        self._history.appendleft(reading)

        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                outcome = listener(reading)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self.logger.exception("listener_failed", error=str(e))

    def start(self, interval_seconds: float = 15.0) -> None:
        """Begin polling in the background. Must be called from a running event loop."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self._task is not None and not self._task.done():
            self._task.cancel()

        self._task = asyncio.get_running_loop().create_task(self._run(interval_seconds))
        self.logger.info("stream_started", interval_seconds=interval_seconds)

    async def _run(self, interval_seconds: float) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                self.logger.exception("unexpected_stream_error", error=str(e))
            await asyncio.sleep(interval_seconds)

    async def stop(self) -> None:
        """Stop polling and wait for the background task to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("stream_stopped")

    @asynccontextmanager
    async def session(self, interval_seconds: float = 15.0) -> AsyncIterator["VitalsStream"]:
        """Run the stream for the duration of the block, stopping it on exit."""
        self.start(interval_seconds)
        try:
            yield self
        finally:
            await self.stop()
