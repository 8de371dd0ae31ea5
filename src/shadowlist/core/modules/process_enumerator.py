# src/shadowlist/core/modules/process_enumerator.py
"""
Перечисление процессов, у которых есть видимое окно верхнего уровня.

Фоновые службы и процессы без окна в список не попадают: пользователя
интересуют только приложения, которые он видит на экране.
"""
import logging
from typing import Dict, Iterable, List, Optional, Set

import psutil

try:
    import win32gui
    import win32process
except ImportError:
    # Не Windows: перечисление окон недоступно
    win32gui = None
    win32process = None

from ...errors import ProcessListingUnavailable
from ..models import ProcessInfo

logger = logging.getLogger(__name__)


class ProcessEnumerator:
    """
    Собирает список процессов с видимыми окнами.
    """

    def __init__(self, excluded_processes: Optional[Iterable[str]] = None):
        logger.info("Инициализация ProcessEnumerator...")
        # Множество для быстрой проверки `in`
        self.excluded_processes: Set[str] = {name.casefold() for name in (excluded_processes or [])}

    def list_processes(self) -> List[ProcessInfo]:
        """
        Синхронный проход по окнам. Предназначен для запуска через `asyncio.to_thread`.

        Returns:
            Процессы, отсортированные по имени (без учета регистра), затем по PID.
            Каждый PID встречается не более одного раза.

        Raises:
            ProcessListingUnavailable: ОС не позволила перечислить окна.
        """
        if win32gui is None or win32process is None:
            raise ProcessListingUnavailable("Перечисление окон не поддерживается на этой платформе")

        # PID -> заголовок первого найденного видимого окна
        titles_by_pid: Dict[int, str] = {}

        def _collect(hwnd, _extra):
            if not win32gui.IsWindowVisible(hwnd):
                return True
            title = win32gui.GetWindowText(hwnd)
            if not title or not title.strip():
                return True
            _thread_id, pid = win32process.GetWindowThreadProcessId(hwnd)
            if pid and pid not in titles_by_pid:
                titles_by_pid[pid] = title
            return True

        try:
            win32gui.EnumWindows(_collect, None)
        except Exception as e:
            raise ProcessListingUnavailable(f"Не удалось перечислить окна: {e}") from e

        processes: List[ProcessInfo] = []
        for pid, title in titles_by_pid.items():
            info = self._describe_process(pid, title)
            if info is None or info.process_name.casefold() in self.excluded_processes:
                continue
            processes.append(info)

        processes.sort(key=lambda p: (p.process_name.casefold(), p.process_id))
        logger.debug(f"Найдено {len(processes)} процессов с видимыми окнами.")
        return processes

    @staticmethod
    def _describe_process(pid: int, title: str) -> Optional[ProcessInfo]:
        try:
            proc = psutil.Process(pid)
            name = proc.name()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            # Процесс завершился или без имени сопоставить его не с чем
            return None
        if not name:
            return None

        try:
            exe_path = proc.exe() or None
        except (psutil.AccessDenied, psutil.ZombieProcess):
            exe_path = None
        except psutil.NoSuchProcess:
            return None

        return ProcessInfo(process_name=name, window_title=title, process_id=pid, executable_path=exe_path)
