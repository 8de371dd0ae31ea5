# src/shadowlist/core/modules/focus_tracker.py
"""
Определение процесса, которому принадлежит активное (foreground) окно.
"""
import logging
from typing import Optional

import psutil

try:
    import win32gui
    import win32process
except ImportError:
    win32gui = None
    win32process = None

from ..models import FocusInfo

logger = logging.getLogger(__name__)


class FocusTracker:
    """Отвечает на вопрос "какое приложение сейчас в фокусе"."""

    def current_focus(self) -> Optional[FocusInfo]:
        """
        Returns:
            FocusInfo или None, если активного окна нет (заблокированный экран,
            рабочий стол) либо процесс уже завершился.
        """
        if win32gui is None or win32process is None:
            return None

        hwnd = win32gui.GetForegroundWindow()
        if not hwnd:
            return None

        _thread_id, pid = win32process.GetWindowThreadProcessId(hwnd)
        if not pid:
            return None

        try:
            name = psutil.Process(pid).name()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
            logger.debug(f"Не удалось определить процесс активного окна (PID {pid}): {e}")
            return None
        if not name:
            return None

        return FocusInfo(process_name=name, window_title=win32gui.GetWindowText(hwnd) or "", process_id=pid)
