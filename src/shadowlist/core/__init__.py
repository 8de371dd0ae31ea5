# src/shadowlist/core/__init__.py
"""
Ядро ShadowList: сопоставление процессов с профилями драйвера.

Не зависит от внешнего слоя (GUI/CLI) и общается с ним только через
CommandBridge и PollingSession.
"""

from .bridge import CommandBridge
from .poller import PollingSession
from .reconciler import ReconciliationEngine

__all__ = [
    "CommandBridge",
    "PollingSession",
    "ReconciliationEngine",
]
