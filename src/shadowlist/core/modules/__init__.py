# src/shadowlist/core/modules/__init__.py
"""
Независимые модули ядра: проверка драйвера, хранилище профилей,
перечисление процессов и отслеживание фокуса.
"""

from .driver_gate import DriverGate
from .focus_tracker import FocusTracker
from .process_enumerator import ProcessEnumerator
from .profile_store import ProfileStore
from .wmi_base import WMIBase

__all__ = [
    "DriverGate",
    "FocusTracker",
    "ProcessEnumerator",
    "ProfileStore",
    "WMIBase",
]
