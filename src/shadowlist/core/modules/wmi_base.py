# src/shadowlist/core/modules/wmi_base.py
"""
Содержит базовый класс для модулей, работающих с Windows Management Instrumentation (WMI).

WMI нужен ядру только для диагностики: когда NVAPI недоступен, по списку
видеоадаптеров можно объяснить пользователю причину. COM-объект WMI
создается лениво, в том потоке, который к нему обратился.
"""
import logging
import threading
from typing import Any, Optional

try:
    import wmi
except ImportError:
    # Нет pywin32/wmi (не Windows, CI) - диагностика через WMI недоступна.
    wmi = None

try:
    import pythoncom
except ImportError:
    pythoncom = None

logger = logging.getLogger(__name__)


class WMIBase:
    """
    Базовый класс, предоставляющий потокобезопасный доступ к WMI.

    Экземпляр WMI привязан к потоку: вызовы ядра выполняются через
    `asyncio.to_thread`, и каждый рабочий поток получает свое подключение.
    """

    def __init__(self):
        self._local = threading.local()

    @property
    def wmi_available(self) -> bool:
        return wmi is not None

    @property
    def wmi_instance(self) -> Any:
        """
        Лениво инициализирует и возвращает экземпляр WMI для текущего потока.

        Raises:
            RuntimeError: Модуль wmi не установлен.
            wmi.x_wmi: Не удалось подключиться к службе WMI.
        """
        instance: Optional[Any] = getattr(self._local, "wmi", None)
        if instance is None:
            if wmi is None:
                raise RuntimeError("Модуль wmi недоступен на этой платформе.")
            thread_id = threading.get_ident()
            logger.debug(f"Инициализация нового экземпляра WMI для потока {thread_id}...")
            if pythoncom is not None:
                pythoncom.CoInitialize()
            try:
                instance = wmi.WMI()
            except wmi.x_wmi as e:
                logger.error(f"Ошибка при инициализации WMI в потоке {thread_id}: {e}", exc_info=True)
                raise
            self._local.wmi = instance
            logger.info(f"Экземпляр WMI успешно создан для потока {thread_id}.")
        return instance
