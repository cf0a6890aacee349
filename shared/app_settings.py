"""Application-wide preferences with pluggable persistence.

The store itself is pure Python. The GUI layer injects a QSettings-backed
persistence (see ``gui.qsettings_adapter``); headless runs and tests use
:class:`InMemoryPersistence`.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Callable, Dict, Optional

from .errors import ConfigurationError
from .models import ChannelGroupLayout

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class AppSettings:
    serial_port: Optional[str] = None
    baudrate: int = 115200
    device_profile: str = "LOGIC_SNIFFER"
    strict_identification: bool = False
    sample_rate: int = 1_000_000
    sample_count: int = 4096
    group_mask: int = 0x0F
    trigger_ratio: float = 0.5
    noise_filter: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.baudrate <= 0:
            raise ValueError("baudrate must be positive")
        if not 0.0 <= self.trigger_ratio <= 1.0:
            raise ValueError("trigger_ratio must lie within [0, 1]")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_LOG_LEVELS}")
        object.__setattr__(self, "log_level", self.log_level.upper())

    def capture_settings(self, **overrides: Any):
        """CaptureSettings for the stored defaults (keyword overrides win)."""
        from daq.sump_protocol import CaptureSettings

        try:
            layout = ChannelGroupLayout.from_group_mask(self.group_mask)
        except ConfigurationError:
            logger.warning("Stored group mask 0x%X enables nothing; using all groups", self.group_mask)
            layout = ChannelGroupLayout.all_enabled()
        values: Dict[str, Any] = dict(
            sample_rate=self.sample_rate,
            sample_count=self.sample_count,
            layout=layout,
            ratio=self.trigger_ratio,
            noise_filter=self.noise_filter,
        )
        values.update(overrides)
        return CaptureSettings(**values)


class SettingsPersistence(ABC):
    """Where AppSettings live between runs."""

    @abstractmethod
    def load(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def save(self, data: Dict[str, Any]) -> None:
        ...


class InMemoryPersistence(SettingsPersistence):
    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self.data: Dict[str, Any] = dict(initial or {})

    def load(self) -> Dict[str, Any]:
        return dict(self.data)

    def save(self, data: Dict[str, Any]) -> None:
        for key, value in data.items():
            if value is None:
                self.data.pop(key, None)
            else:
                self.data[key] = value


def _coerce_bool(value: Any) -> bool:
    # QSettings hands back strings for values written as ints on some backends.
    if isinstance(value, str):
        value = value.strip().lower()
        if value in ("true", "yes", "on"):
            return True
        if value in ("false", "no", "off", ""):
            return False
        return bool(int(value))
    return bool(value)


def _coerce(raw: Any, default: Any) -> Any:
    if default is None:
        return None if raw is None else str(raw)
    if isinstance(default, bool):
        return _coerce_bool(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return str(raw)


class AppSettingsStore:
    """Thread-safe settings store for application-wide preferences."""

    def __init__(self, *, persistence: Optional[SettingsPersistence] = None) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Callable[[AppSettings], None]] = {}
        self._next_token = 0
        self._persistence = persistence or InMemoryPersistence()
        self._settings = self._load_settings()

    def _load_settings(self) -> AppSettings:
        stored = self._persistence.load()
        defaults = AppSettings()
        values: Dict[str, Any] = {}
        for f in fields(AppSettings):
            if f.name not in stored:
                continue
            default = getattr(defaults, f.name)
            try:
                values[f.name] = _coerce(stored[f.name], default)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid stored value %r for %s", stored[f.name], f.name)
        try:
            return replace(defaults, **values)
        except ValueError as exc:
            logger.warning("Stored settings rejected (%s); using defaults", exc)
            return defaults

    def get(self) -> AppSettings:
        with self._lock:
            return self._settings

    def update(self, **kwargs: Any) -> AppSettings:
        with self._lock:
            new_settings = replace(self._settings, **kwargs)
            self._settings = new_settings
            callbacks = list(self._subscribers.values())
            self._persistence.save(asdict(new_settings))
        for callback in callbacks:
            try:
                callback(new_settings)
            except Exception as exc:
                logger.warning("App settings subscriber callback failed: %s", exc)
                continue
        return new_settings

    def subscribe(self, callback: Callable[[AppSettings], None], *, replay: bool = True) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback
            snapshot = self._settings
        if replay:
            callback(snapshot)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe


__all__ = ["AppSettings", "AppSettingsStore", "SettingsPersistence", "InMemoryPersistence"]
