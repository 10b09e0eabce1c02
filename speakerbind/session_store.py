from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from threading import RLock
from typing import Dict, Iterator, Optional

from speakerbind.internal_core.clock import Clock, SystemClock
from speakerbind.internal_core.config import SessionConfig
from speakerbind.workspace import SpeakerWorkspace

logger = logging.getLogger(__name__)


class InMemorySessionStore:
    """Process-local map of workspace_id -> SpeakerWorkspace. Nothing touches disk."""

    def __init__(self, config: SessionConfig, clock: Optional[Clock] = None):
        self._config = config
        self._clock: Clock = clock or SystemClock()
        self._lock = RLock()
        self._workspaces: Dict[str, SpeakerWorkspace] = {}

    @property
    def clock(self) -> Clock:
        return self._clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._workspaces)

    def create_workspace(self) -> str:
        workspace_id = uuid.uuid4().hex
        workspace = SpeakerWorkspace(self._config, clock=self._clock)
        with self._lock:
            self._workspaces[workspace_id] = workspace
        logger.info("workspace created workspace_id=%s", workspace_id)
        return workspace_id

    @contextmanager
    def workspace(self, workspace_id: str) -> Iterator[SpeakerWorkspace]:
        with self._lock:
            found = self._workspaces.get(workspace_id)
            if found is None:
                raise KeyError(f"Unknown workspace_id: {workspace_id}")
            yield found

    def destroy_workspace(self, workspace_id: str, reason: str) -> bool:
        with self._lock:
            workspace = self._workspaces.pop(workspace_id, None)
        if workspace is None:
            return False
        workspace.shutdown()
        logger.info("workspace destroyed workspace_id=%s reason=%s", workspace_id, reason)
        return True

    def tick_all(self) -> int:
        """Run due timers on every workspace; returns how many callbacks ran."""
        ran = 0
        with self._lock:
            for workspace in self._workspaces.values():
                ran += workspace.tick()
        return ran

    def cleanup_expired_workspaces(self) -> int:
        grace_seconds = self._config.SPEAKERBIND_STORE_IDLE_GRACE_MINUTES * 60.0
        now = self._clock.monotonic()
        stale = []
        with self._lock:
            for workspace_id, workspace in self._workspaces.items():
                workspace.tick()
                expired_at = workspace.lifecycle.expired_at
                if expired_at is not None and now - expired_at >= grace_seconds:
                    stale.append(workspace_id)
        for workspace_id in stale:
            self.destroy_workspace(workspace_id, reason="expired_idle")
        return len(stale)

    def shutdown(self) -> None:
        with self._lock:
            workspace_ids = list(self._workspaces)
        for workspace_id in workspace_ids:
            self.destroy_workspace(workspace_id, reason="shutdown")
