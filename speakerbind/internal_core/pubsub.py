from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Literal

logger = logging.getLogger(__name__)

ChangeTopic = Literal["registry", "edits", "overrides", "session"]


@dataclass(frozen=True)
class ChangeEvent:
    topic: ChangeTopic
    reason: str
    version: int
    speaker_id: str | None = None


Listener = Callable[[ChangeEvent], None]


class ChangeFeed:
    """Synchronous publish/subscribe shared by every component of one session."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, topic: ChangeTopic, reason: str, *, speaker_id: str | None = None) -> ChangeEvent:
        self._version += 1
        event = ChangeEvent(topic=topic, reason=reason, version=self._version, speaker_id=speaker_id)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # A failing listener is logged and skipped.
                logger.exception("change listener failed topic=%s reason=%s", topic, reason)
        return event

    def clear(self) -> None:
        self._listeners = []
