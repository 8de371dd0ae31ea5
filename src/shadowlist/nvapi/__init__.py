# src/shadowlist/nvapi/__init__.py
"""
Привязки к NVIDIA NVAPI: загрузка библиотеки и сессия DRS.

Пакет ничего не знает о процессах и сопоставлении, он лишь
переводит вызовы Python в функции драйвера.
"""

from .ffi import (
    SHADOWPLAY_DISABLED,
    SHADOWPLAY_ENABLED,
    SHADOWPLAY_SETTING_ID,
    NvApi,
    load_nvapi,
    reset_nvapi,
)
from .session import ApplicationRecord, DrsSession, ProfileRecord

__all__ = [
    "SHADOWPLAY_DISABLED",
    "SHADOWPLAY_ENABLED",
    "SHADOWPLAY_SETTING_ID",
    "NvApi",
    "load_nvapi",
    "reset_nvapi",
    "ApplicationRecord",
    "DrsSession",
    "ProfileRecord",
]
