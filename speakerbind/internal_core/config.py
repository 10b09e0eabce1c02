from __future__ import annotations

import os
from dataclasses import dataclass


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class SessionConfig:
    SPEAKERBIND_SESSION_TIMEOUT_MINUTES: float
    SPEAKERBIND_WARNING_THRESHOLD_MINUTES: float
    SPEAKERBIND_WARNING_REARM_MINUTES: float
    SPEAKERBIND_KEEP_WORKING_MINUTES: float
    SPEAKERBIND_EXTEND_MINUTES: float
    SPEAKERBIND_TICK_SECONDS: float
    SPEAKERBIND_SPEAKER_PREFIX: str
    SPEAKERBIND_STORE_IDLE_GRACE_MINUTES: float
    SPEAKERBIND_CORS_ORIGINS: tuple[str, ...]
    SPEAKERBIND_LOG_LEVEL: str

    def __post_init__(self) -> None:
        if self.SPEAKERBIND_SESSION_TIMEOUT_MINUTES <= 0:
            raise ValueError("SPEAKERBIND_SESSION_TIMEOUT_MINUTES must be > 0")
        if not 0 <= self.SPEAKERBIND_WARNING_THRESHOLD_MINUTES < self.SPEAKERBIND_SESSION_TIMEOUT_MINUTES:
            raise ValueError(
                "SPEAKERBIND_WARNING_THRESHOLD_MINUTES must be >= 0 and below the session timeout"
            )
        if self.SPEAKERBIND_TICK_SECONDS <= 0:
            raise ValueError("SPEAKERBIND_TICK_SECONDS must be > 0")


def load_config() -> SessionConfig:
    return SessionConfig(
        SPEAKERBIND_SESSION_TIMEOUT_MINUTES=_getenv_float("SPEAKERBIND_SESSION_TIMEOUT_MINUTES", 120.0),
        SPEAKERBIND_WARNING_THRESHOLD_MINUTES=_getenv_float("SPEAKERBIND_WARNING_THRESHOLD_MINUTES", 5.0),
        SPEAKERBIND_WARNING_REARM_MINUTES=_getenv_float("SPEAKERBIND_WARNING_REARM_MINUTES", 5.0),
        SPEAKERBIND_KEEP_WORKING_MINUTES=_getenv_float("SPEAKERBIND_KEEP_WORKING_MINUTES", 5.0),
        SPEAKERBIND_EXTEND_MINUTES=_getenv_float("SPEAKERBIND_EXTEND_MINUTES", 120.0),
        SPEAKERBIND_TICK_SECONDS=_getenv_float("SPEAKERBIND_TICK_SECONDS", 5.0),
        SPEAKERBIND_SPEAKER_PREFIX=_getenv_str("SPEAKERBIND_SPEAKER_PREFIX", "Speaker "),
        SPEAKERBIND_STORE_IDLE_GRACE_MINUTES=_getenv_float("SPEAKERBIND_STORE_IDLE_GRACE_MINUTES", 30.0),
        SPEAKERBIND_CORS_ORIGINS=_getenv_csv("SPEAKERBIND_CORS_ORIGINS", ("*",)),
        SPEAKERBIND_LOG_LEVEL=_getenv_str("SPEAKERBIND_LOG_LEVEL", "INFO"),
    )
