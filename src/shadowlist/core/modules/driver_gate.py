# src/shadowlist/core/modules/driver_gate.py
"""
Проверка доступности NVAPI ("шлюз" драйвера).

Все остальные операции ядра допустимы только при доступном NVAPI.
Результат проверки можно кэшировать ненадолго, но после любого сбоя
класса "подсистема недоступна" его нужно сбросить и проверить заново:
драйвер могут установить или перезагрузить после запуска приложения.
"""
import ctypes
import logging
import threading
import time
from typing import Any, Callable, List, Optional

from ...errors import (
    CONNECTIVITY_STATUSES, NVAPI_NVIDIA_DEVICE_NOT_FOUND, NVAPI_OK,
    ShadowListError, StoreUnavailable,
)
from ...nvapi.ffi import NvApi, load_nvapi, reset_nvapi
from ..models import NvApiStatus
from .wmi_base import WMIBase

logger = logging.getLogger(__name__)

REQUIRED_FUNCTIONS = (
    "NvAPI_DRS_CreateSession",
    "NvAPI_DRS_LoadSettings",
    "NvAPI_DRS_SaveSettings",
    "NvAPI_DRS_EnumProfiles",
    "NvAPI_DRS_EnumApplications",
    "NvAPI_DRS_FindApplicationByName",
    "NvAPI_DRS_CreateProfile",
    "NvAPI_DRS_CreateApplication",
    "NvAPI_DRS_GetSetting",
    "NvAPI_DRS_SetSetting",
)


class DriverGate(WMIBase):
    """
    Определяет, доступен ли NVAPI, и хранит последний результат проверки.
    """

    def __init__(
        self,
        cache_ttl: float = 10.0,
        api_loader: Callable[[], NvApi] = load_nvapi,
        api_reset: Callable[[], None] = reset_nvapi,
    ):
        super().__init__()
        self.cache_ttl = cache_ttl
        self._api_loader = api_loader
        self._api_reset = api_reset
        self._lock = threading.Lock()
        self._cached: Optional[NvApiStatus] = None
        self._checked_at = 0.0

    def check_status(self) -> NvApiStatus:
        """
        Проверяет NVAPI без побочных эффектов для хранилища профилей.
        Никогда не выбрасывает исключений: сбой кодируется в результате.
        """
        try:
            api = self._api_loader()
            missing = [name for name in REQUIRED_FUNCTIONS if not api.has_function(name)]
            if missing:
                status = NvApiStatus(available=False, error=f"В NVAPI отсутствуют функции DRS: {', '.join(missing)}")
            else:
                self._check_session(api)
                status = NvApiStatus(available=True)
        except ShadowListError as e:
            message = str(e)
            if e.status == NVAPI_NVIDIA_DEVICE_NOT_FOUND:
                adapters = self._describe_display_adapters()
                if adapters:
                    message = f"{message}. Обнаруженные видеоадаптеры: {', '.join(adapters)}"
            status = NvApiStatus(available=False, error=message)
        except Exception as e:
            logger.error(f"Непредвиденная ошибка при проверке NVAPI: {e}", exc_info=True)
            status = NvApiStatus(available=False, error=f"Непредвиденная ошибка: {e}")

        if status.available:
            logger.debug("NVAPI доступен.")
        else:
            logger.warning(f"NVAPI недоступен: {status.error}")

        with self._lock:
            self._cached = status
            self._checked_at = time.monotonic()
        return status

    def cached_status(self) -> NvApiStatus:
        """Последний результат проверки, если он не старше cache_ttl; иначе новая проверка."""
        with self._lock:
            cached = self._cached
            fresh = cached is not None and (time.monotonic() - self._checked_at) < self.cache_ttl
        if fresh:
            return cached
        return self.check_status()

    def _check_session(self, api: NvApi) -> None:
        """
        Открывает и сразу закрывает пробную сессию DRS: наличие функций в уже
        загруженной библиотеке не говорит о том, что драйвер все еще работает.
        """
        handle = ctypes.c_void_p()
        status = api.NvAPI_DRS_CreateSession(ctypes.byref(handle))
        if status != NVAPI_OK:
            if status in CONNECTIVITY_STATUSES:
                # Библиотека загружена для драйвера, которого больше нет
                self._api_reset()
            raise StoreUnavailable("Драйвер не смог создать сессию DRS", status)
        api.NvAPI_DRS_DestroySession(handle)

    def invalidate(self) -> None:
        """Сбрасывает кэш: следующая проверка обязательно обратится к драйверу."""
        with self._lock:
            if self._cached is not None:
                logger.info("Кэш состояния NVAPI сброшен, требуется повторная проверка.")
            self._cached = None

    def ensure_available(self) -> None:
        """
        Raises:
            StoreUnavailable: NVAPI недоступен (по кэшированному результату).
        """
        status = self.cached_status()
        if not status.available:
            raise StoreUnavailable(status.error or "NVAPI недоступен")

    def _describe_display_adapters(self) -> List[str]:
        """Список видеоадаптеров по данным WMI для диагностического сообщения."""
        if not self.wmi_available:
            return []
        try:
            controllers: List[Any] = self.wmi_instance.query(
                "SELECT Name, AdapterCompatibility FROM Win32_VideoController")
            return [c.Name.strip() for c in controllers if c.Name]
        except Exception as e:
            logger.warning(f"Не удалось получить список видеоадаптеров через WMI: {e}")
            return []
