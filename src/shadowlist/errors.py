# src/shadowlist/errors.py
"""
Доменные исключения ShadowList и расшифровка кодов состояния NVAPI.

Все ожидаемые сбои ядра выражаются через наследников ShadowListError,
чтобы внешний слой (CommandBridge) мог превратить их в структурированный
ответ, не теряя деталей.
"""
from typing import Dict, Optional

# Коды состояния NVAPI (nvapi.h), используемые ядром
NVAPI_OK = 0
NVAPI_ERROR = -1
NVAPI_LIBRARY_NOT_FOUND = -2
NVAPI_NO_IMPLEMENTATION = -3
NVAPI_API_NOT_INITIALIZED = -4
NVAPI_INVALID_ARGUMENT = -5
NVAPI_NVIDIA_DEVICE_NOT_FOUND = -6
NVAPI_END_ENUMERATION = -7
NVAPI_INVALID_HANDLE = -8
NVAPI_INCOMPATIBLE_STRUCT_VERSION = -9
NVAPI_PROFILE_NOT_FOUND = -163
NVAPI_PROFILE_NAME_IN_USE = -164
NVAPI_SETTING_NOT_FOUND = -160
NVAPI_EXECUTABLE_NOT_FOUND = -166
NVAPI_EXECUTABLE_ALREADY_IN_USE = -167

# Статусы, после которых сессия DRS и загруженная библиотека считаются потерянными
CONNECTIVITY_STATUSES = frozenset({
    NVAPI_LIBRARY_NOT_FOUND,
    NVAPI_API_NOT_INITIALIZED,
    NVAPI_NVIDIA_DEVICE_NOT_FOUND,
    NVAPI_INVALID_HANDLE,
})

_STATUS_DESCRIPTIONS: Dict[int, str] = {
    NVAPI_OK: "успешно",
    NVAPI_ERROR: "общая ошибка NVAPI",
    NVAPI_LIBRARY_NOT_FOUND: "библиотека NVAPI не найдена",
    NVAPI_NO_IMPLEMENTATION: "функция не реализована драйвером",
    NVAPI_API_NOT_INITIALIZED: "NVAPI не инициализирован",
    NVAPI_INVALID_ARGUMENT: "неверный аргумент",
    NVAPI_NVIDIA_DEVICE_NOT_FOUND: "видеокарта NVIDIA не найдена",
    NVAPI_END_ENUMERATION: "конец перечисления",
    NVAPI_INVALID_HANDLE: "неверный дескриптор",
    NVAPI_INCOMPATIBLE_STRUCT_VERSION: "несовместимая версия структуры",
    NVAPI_SETTING_NOT_FOUND: "настройка не найдена",
    NVAPI_PROFILE_NOT_FOUND: "профиль не найден",
    NVAPI_PROFILE_NAME_IN_USE: "имя профиля уже занято",
    NVAPI_EXECUTABLE_NOT_FOUND: "исполняемый файл не найден",
    NVAPI_EXECUTABLE_ALREADY_IN_USE: "исполняемый файл уже привязан к другому профилю",
}


def describe_status(status: int) -> str:
    """Возвращает человекочитаемое описание кода состояния NVAPI."""
    description = _STATUS_DESCRIPTIONS.get(status, "неизвестная ошибка")
    return f"{description} (код {status})"


class ShadowListError(RuntimeError):
    """Базовое исключение для всех доменных сбоев ShadowList."""

    def __init__(self, message: str, status: Optional[int] = None):
        if status is not None:
            message = f"{message}: {describe_status(status)}"
        super().__init__(message)
        self.status = status


class StoreUnavailable(ShadowListError):
    """Подсистема драйвера отсутствует или не может быть инициализирована."""


class StoreReadError(ShadowListError):
    """Хранилище профилей доступно, но чтение (перечисление) не удалось."""


class StoreWriteError(ShadowListError):
    """Изменение хранилища профилей не удалось."""


class NotFound(ShadowListError):
    """Операция сослалась на исполняемый файл без записи в хранилище."""


class Timeout(ShadowListError):
    """Вызов ОС или драйвера превысил отведенное время."""


class PermissionDenied(ShadowListError):
    """ОС отказала в доступе к сведениям о процессе."""


class InvalidRequest(ShadowListError):
    """Некорректные аргументы запроса или неизвестная команда."""


class ProcessListingUnavailable(ShadowListError):
    """Примитив перечисления окон ОС недоступен."""
