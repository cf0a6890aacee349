__all__ = ["QSettingsPersistence", "TaskSignalBridge", "create_gui_settings_store"]

from .qsettings_adapter import QSettingsPersistence, create_gui_settings_store
from .task_bridge import TaskSignalBridge
