from __future__ import annotations

"""
Single time source for session countdowns.

Design intent:
- Every session timer reads one monotonic clock, never `time.time()` directly.
- Timers are cooperative callbacks pumped by `Scheduler.run_due()`, not threads.
- `ManualClock` makes countdown behavior deterministic under test.
"""

import datetime as _dt
import heapq
import itertools
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol


class Clock(Protocol):
    def monotonic(self) -> float:
        ...

    def wall(self) -> _dt.datetime:
        ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def wall(self) -> _dt.datetime:
        return _dt.datetime.now(_dt.timezone.utc)


class ManualClock:
    """Clock that only moves when told to. Seconds, like `time.monotonic()`."""

    def __init__(self, start: float = 0.0, wall_start: Optional[_dt.datetime] = None) -> None:
        self._now = float(start)
        self._start = float(start)
        self._wall_start = wall_start or _dt.datetime(2024, 1, 1, tzinfo=_dt.timezone.utc)

    def monotonic(self) -> float:
        return self._now

    def wall(self) -> _dt.datetime:
        return self._wall_start + _dt.timedelta(seconds=self._now - self._start)

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += float(seconds)

    def advance_minutes(self, minutes: float) -> None:
        self.advance(float(minutes) * 60.0)


@dataclass(order=True)
class _Timer:
    due: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    name: str = field(default="", compare=False)
    cancelled: bool = field(default=False, compare=False)


# Below this many cancelled entries the heap is left alone.
_COMPACT_MIN_CANCELLED = 64


class TimerHandle:
    def __init__(self, timer: _Timer, scheduler: "Scheduler") -> None:
        self._timer = timer
        self._scheduler = scheduler

    @property
    def due(self) -> float:
        return self._timer.due

    @property
    def name(self) -> str:
        return self._timer.name

    @property
    def cancelled(self) -> bool:
        return self._timer.cancelled

    def cancel(self) -> None:
        if self._timer.cancelled:
            return
        self._timer.cancelled = True
        self._scheduler._note_cancelled()


class Scheduler:
    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[_Timer] = []
        self._seq = itertools.count()
        self._cancelled = 0

    @property
    def clock(self) -> Clock:
        return self._clock

    def call_at(self, due: float, callback: Callable[[], None], *, name: str = "") -> TimerHandle:
        timer = _Timer(due=float(due), seq=next(self._seq), callback=callback, name=name)
        heapq.heappush(self._heap, timer)
        return TimerHandle(timer, self)

    def call_later(self, delay: float, callback: Callable[[], None], *, name: str = "") -> TimerHandle:
        return self.call_at(self._clock.monotonic() + max(0.0, float(delay)), callback, name=name)

    def run_due(self) -> int:
        """Run every timer whose due time has passed, in due order. Returns how many ran."""
        ran = 0
        now = self._clock.monotonic()
        while self._heap and self._heap[0].due <= now:
            timer = heapq.heappop(self._heap)
            if timer.cancelled:
                self._cancelled -= 1
                continue
            timer.cancelled = True
            timer.callback()
            ran += 1
        return ran

    def next_due(self) -> Optional[float]:
        self._drop_cancelled_head()
        return self._heap[0].due if self._heap else None

    def pending(self) -> int:
        return sum(1 for timer in self._heap if not timer.cancelled)

    def __len__(self) -> int:
        """Queued entries, cancelled ones included."""
        return len(self._heap)

    def cancel_all(self) -> None:
        for timer in self._heap:
            timer.cancelled = True
        self._heap = []
        self._cancelled = 0

    def _note_cancelled(self) -> None:
        self._cancelled += 1
        if self._cancelled >= _COMPACT_MIN_CANCELLED and self._cancelled * 2 >= len(self._heap):
            self._compact()

    def _compact(self) -> None:
        self._heap = [timer for timer in self._heap if not timer.cancelled]
        heapq.heapify(self._heap)
        self._cancelled = 0

    def _drop_cancelled_head(self) -> None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)
            self._cancelled -= 1
