"""QSettings-backed persistence adapter for AppSettings.

Keeps preferences such as the last serial port and capture defaults across
restarts while keeping PySide6 out of the shared module.
"""
from __future__ import annotations

from dataclasses import fields
from typing import Any, Dict

from PySide6.QtCore import QSettings

from shared.app_settings import AppSettings, AppSettingsStore, SettingsPersistence


class QSettingsPersistence(SettingsPersistence):
    """QSettings-backed persistence for GUI mode."""

    def __init__(
        self,
        organization: str = "SumpHound",
        application: str = "SumpHound",
        *,
        qsettings: QSettings | None = None,
    ) -> None:
        self._qsettings = qsettings if qsettings is not None else QSettings(organization, application)
        self._field_names = [f.name for f in fields(AppSettings)]

    def load(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for name in self._field_names:
            val = self._qsettings.value(name)
            if val is not None:
                data[name] = val
        return data

    def save(self, data: Dict[str, Any]) -> None:
        for key, val in data.items():
            if val is None:
                self._qsettings.remove(key)
            elif isinstance(val, bool):
                # Stored as int so every QSettings backend reads it back the same way.
                self._qsettings.setValue(key, int(val))
            else:
                self._qsettings.setValue(key, val)
        self._qsettings.sync()


def create_gui_settings_store() -> AppSettingsStore:
    """Settings store persisted through QSettings."""
    return AppSettingsStore(persistence=QSettingsPersistence())


__all__ = ["QSettingsPersistence", "create_gui_settings_store"]
