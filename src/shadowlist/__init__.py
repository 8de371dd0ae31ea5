# src/shadowlist/__init__.py
"""
Инициализация пакета ShadowList.

ShadowList сопоставляет запущенные процессы Windows с профилями драйвера
NVIDIA (DRS) и управляет флагом ShadowPlay ("черный список") для них.
Этот файл определяет основные метаданные приложения.
"""

__version__ = "1.0.0"
__author__ = "CLC corporation"

APP_NAME = "ShadowList"
APP_VERSION = __version__
ORG_NAME = __author__

__all__ = [
    "__version__",
    "__author__",
    "APP_NAME",
    "APP_VERSION",
    "ORG_NAME",
]
