"""Device profiles describing the capabilities of SUMP-compatible analyzers.

The registry is an ordinary object owned by whoever needs it (usually the
capture session); there is no module-level instance. Updates build a new
immutable :class:`DeviceProfile` and swap it in under a lock, so readers
never see a half-applied change.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_TYPE = "LOGIC_SNIFFER"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class DeviceProfile:
    """Static description of one analyzer model."""

    type: str
    description: str = ""
    clockspeed: int = 100_000_000
    channel_count: int = 32
    channel_group_count: int = 4
    max_sample_memory: int = 24 * 1024
    supports_rle: bool = True
    supports_noise_filter: bool = True
    supports_test_mode: bool = True
    default_baudrate: int = 115200

    def __post_init__(self) -> None:
        if not self.type:
            raise ValueError("profile type must not be empty")
        if self.clockspeed <= 0:
            raise ValueError("clockspeed must be positive")
        if not 1 <= self.channel_group_count <= 4:
            raise ValueError("channel_group_count must be between 1 and 4")
        if not 1 <= self.channel_count <= 8 * self.channel_group_count:
            raise ValueError("channel_count does not fit the channel groups")
        if self.max_sample_memory <= 0:
            raise ValueError("max_sample_memory must be positive")

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "DeviceProfile":
        """Parse a configuration mapping whose values may be strings."""
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, raw in properties.items():
            name = str(key).replace(".", "_").replace("-", "_").lower()
            if name.startswith("device_"):
                name = name[len("device_"):]
            field_def = known.get(name)
            if field_def is None:
                logger.debug("Ignoring unknown device profile property %r", key)
                continue
            if field_def.type in ("int", int):
                try:
                    kwargs[name] = int(raw)
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"profile property {key!r} must be an integer, got {raw!r}") from exc
            elif field_def.type in ("bool", bool):
                kwargs[name] = _as_bool(raw)
            else:
                kwargs[name] = str(raw)
        if "type" not in kwargs:
            raise ValueError("profile properties must include 'type'")
        return cls(**kwargs)


class DeviceProfileRegistry:
    """Thread-safe set of device profiles keyed by configuration id (pid)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._profiles: Dict[str, DeviceProfile] = {}

    @classmethod
    def with_defaults(cls) -> "DeviceProfileRegistry":
        registry = cls()
        registry.updated(
            "ols.profile.default",
            {"type": DEFAULT_PROFILE_TYPE, "description": "OpenBench Logic Sniffer"},
        )
        return registry

    def updated(self, pid: str, properties: Mapping[str, Any]) -> DeviceProfile:
        """Create or replace the profile for `pid`, returning the stored entry."""
        profile = DeviceProfile.from_properties(properties)
        with self._lock:
            previous = self._profiles.get(pid)
            self._profiles[pid] = profile
        if previous is None:
            logger.info("Registered device profile %s (%s)", profile.type, pid)
        else:
            logger.info("Updated device profile %s (%s)", profile.type, pid)
        return profile

    def deleted(self, pid: str) -> Optional[DeviceProfile]:
        with self._lock:
            return self._profiles.pop(pid, None)

    def get_profile(self, profile_type: str) -> Optional[DeviceProfile]:
        with self._lock:
            for profile in self._profiles.values():
                if profile.type == profile_type:
                    return profile
        return None

    def profile_types(self) -> List[str]:
        with self._lock:
            return sorted(profile.type for profile in self._profiles.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)


__all__ = ["DeviceProfile", "DeviceProfileRegistry", "DEFAULT_PROFILE_TYPE"]
