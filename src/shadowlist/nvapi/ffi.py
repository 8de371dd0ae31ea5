# src/shadowlist/nvapi/ffi.py
"""
Низкоуровневые ctypes-привязки к NVAPI (подсистема DRS).

NVAPI экспортирует единственную функцию `nvapi_QueryInterface`, которая
по числовому идентификатору возвращает указатель на нужную функцию.
Этот модуль загружает библиотеку, получает через нее функции DRS
и описывает структуры NVDRS_PROFILE, NVDRS_APPLICATION и NVDRS_SETTING.
"""
import ctypes
import logging
import struct
import sys
import threading
from typing import Any, Dict, Optional

from ..errors import (
    NVAPI_OK, NVAPI_LIBRARY_NOT_FOUND, NVAPI_NO_IMPLEMENTATION,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

NVAPI_UNICODE_STRING_MAX = 2048
NVAPI_BINARY_DATA_MAX = 4096

# ShadowPlay: идентификатор настройки и ее значения
SHADOWPLAY_SETTING_ID = 0x809D5F60
SHADOWPLAY_DISABLED = 0x10000000
SHADOWPLAY_ENABLED = 0x08000001

NVDRS_DWORD_TYPE = 0

# Идентификаторы функций для nvapi_QueryInterface
FUNCTION_IDS: Dict[str, int] = {
    "NvAPI_Initialize": 0x0150E828,
    "NvAPI_Unload": 0xD22BDD7E,
    "NvAPI_DRS_CreateSession": 0x0694D52E,
    "NvAPI_DRS_DestroySession": 0xDAD9CFF8,
    "NvAPI_DRS_LoadSettings": 0x375DBD6B,
    "NvAPI_DRS_SaveSettings": 0xFCBC7E14,
    "NvAPI_DRS_EnumProfiles": 0xBC371EE0,
    "NvAPI_DRS_GetProfileInfo": 0x61CD6FD6,
    "NvAPI_DRS_FindProfileByName": 0x7E4A9A0B,
    "NvAPI_DRS_CreateProfile": 0xCC176068,
    "NvAPI_DRS_EnumApplications": 0x7FA2173A,
    "NvAPI_DRS_FindApplicationByName": 0xEEE566B2,
    "NvAPI_DRS_CreateApplication": 0x4347A9DE,
    "NvAPI_DRS_GetSetting": 0x73BF8338,
    "NvAPI_DRS_SetSetting": 0x577DD202,
}

UnicodeString = ctypes.c_uint16 * NVAPI_UNICODE_STRING_MAX


class NvdrsProfile(ctypes.Structure):
    """NVDRS_PROFILE_V1"""
    _fields_ = [
        ("version", ctypes.c_uint32),
        ("profile_name", UnicodeString),
        ("gpu_support", ctypes.c_uint32),
        ("is_predefined", ctypes.c_uint32),
        ("num_of_apps", ctypes.c_uint32),
        ("num_of_settings", ctypes.c_uint32),
    ]


class NvdrsApplication(ctypes.Structure):
    """NVDRS_APPLICATION_V3"""
    _fields_ = [
        ("version", ctypes.c_uint32),
        ("is_predefined", ctypes.c_uint32),
        ("app_name", UnicodeString),
        ("user_friendly_name", UnicodeString),
        ("launcher", UnicodeString),
        ("file_in_folder", UnicodeString),
        ("flags", ctypes.c_uint32),  # isMetro:1, isCommandLine:1, reserved:30
    ]


class NvdrsBinarySetting(ctypes.Structure):
    _fields_ = [
        ("value_length", ctypes.c_uint32),
        ("value_data", ctypes.c_uint8 * NVAPI_BINARY_DATA_MAX),
    ]


class NvdrsSettingValue(ctypes.Union):
    _fields_ = [
        ("u32_value", ctypes.c_uint32),
        ("binary_value", NvdrsBinarySetting),
        ("wsz_value", UnicodeString),
    ]


class NvdrsSetting(ctypes.Structure):
    """NVDRS_SETTING_V1"""
    _fields_ = [
        ("version", ctypes.c_uint32),
        ("setting_name", UnicodeString),
        ("setting_id", ctypes.c_uint32),
        ("setting_type", ctypes.c_uint32),
        ("setting_location", ctypes.c_uint32),
        ("is_current_predefined", ctypes.c_uint32),
        ("is_predefined_valid", ctypes.c_uint32),
        ("predefined_value", NvdrsSettingValue),
        ("current_value", NvdrsSettingValue),
    ]


def make_nvapi_version(structure: type, version: int) -> int:
    """Аналог макроса MAKE_NVAPI_VERSION: размер структуры | (версия << 16)."""
    return ctypes.sizeof(structure) | (version << 16)


NVDRS_PROFILE_VER = make_nvapi_version(NvdrsProfile, 1)
NVDRS_APPLICATION_VER = make_nvapi_version(NvdrsApplication, 3)
NVDRS_SETTING_VER = make_nvapi_version(NvdrsSetting, 1)

_HANDLE = ctypes.c_void_p
_PHANDLE = ctypes.POINTER(ctypes.c_void_p)

# Сигнатуры функций (соглашение __cdecl)
_PROTOTYPES: Dict[str, Any] = {
    "NvAPI_Initialize": ctypes.CFUNCTYPE(ctypes.c_int),
    "NvAPI_Unload": ctypes.CFUNCTYPE(ctypes.c_int),
    "NvAPI_DRS_CreateSession": ctypes.CFUNCTYPE(ctypes.c_int, _PHANDLE),
    "NvAPI_DRS_DestroySession": ctypes.CFUNCTYPE(ctypes.c_int, _HANDLE),
    "NvAPI_DRS_LoadSettings": ctypes.CFUNCTYPE(ctypes.c_int, _HANDLE),
    "NvAPI_DRS_SaveSettings": ctypes.CFUNCTYPE(ctypes.c_int, _HANDLE),
    "NvAPI_DRS_EnumProfiles": ctypes.CFUNCTYPE(ctypes.c_int, _HANDLE, ctypes.c_uint32, _PHANDLE),
    "NvAPI_DRS_GetProfileInfo": ctypes.CFUNCTYPE(
        ctypes.c_int, _HANDLE, _HANDLE, ctypes.POINTER(NvdrsProfile)),
    "NvAPI_DRS_FindProfileByName": ctypes.CFUNCTYPE(
        ctypes.c_int, _HANDLE, ctypes.POINTER(UnicodeString), _PHANDLE),
    "NvAPI_DRS_CreateProfile": ctypes.CFUNCTYPE(
        ctypes.c_int, _HANDLE, ctypes.POINTER(NvdrsProfile), _PHANDLE),
    "NvAPI_DRS_EnumApplications": ctypes.CFUNCTYPE(
        ctypes.c_int, _HANDLE, _HANDLE, ctypes.c_uint32,
        ctypes.POINTER(ctypes.c_uint32), ctypes.POINTER(NvdrsApplication)),
    "NvAPI_DRS_FindApplicationByName": ctypes.CFUNCTYPE(
        ctypes.c_int, _HANDLE, ctypes.POINTER(UnicodeString), _PHANDLE,
        ctypes.POINTER(NvdrsApplication)),
    "NvAPI_DRS_CreateApplication": ctypes.CFUNCTYPE(
        ctypes.c_int, _HANDLE, _HANDLE, ctypes.POINTER(NvdrsApplication)),
    "NvAPI_DRS_GetSetting": ctypes.CFUNCTYPE(
        ctypes.c_int, _HANDLE, _HANDLE, ctypes.c_uint32, ctypes.POINTER(NvdrsSetting)),
    "NvAPI_DRS_SetSetting": ctypes.CFUNCTYPE(
        ctypes.c_int, _HANDLE, _HANDLE, ctypes.POINTER(NvdrsSetting)),
}


def wchar_to_string(buffer: Any) -> str:
    """Преобразует UTF-16 буфер с завершающим нулем в строку Python."""
    units = list(buffer)
    if 0 in units:
        units = units[:units.index(0)]
    raw = struct.pack(f"<{len(units)}H", *units)
    return raw.decode("utf-16-le", errors="replace")


def string_to_wchar(value: str, buffer: Any) -> None:
    """Записывает строку в UTF-16 буфер, обрезая ее и добавляя завершающий ноль."""
    encoded = value.encode("utf-16-le")
    units = struct.unpack(f"<{len(encoded) // 2}H", encoded)
    length = min(len(units), len(buffer) - 1)
    for i in range(length):
        buffer[i] = units[i]
    buffer[length] = 0


def new_unicode_string(value: str) -> UnicodeString:
    buffer = UnicodeString()
    string_to_wchar(value, buffer)
    return buffer


class NvApi:
    """
    Загруженная библиотека NVAPI с разрешенными функциями DRS.

    Функции доступны как атрибуты с именами из FUNCTION_IDS
    (например, `api.NvAPI_DRS_LoadSettings`).
    """

    def __init__(self, library: Any):
        self._library = library
        query_interface = library.nvapi_QueryInterface
        query_interface.restype = ctypes.c_void_p
        query_interface.argtypes = [ctypes.c_uint32]
        self._query_interface = query_interface
        self._functions: Dict[str, Any] = {}
        for name, function_id in FUNCTION_IDS.items():
            pointer = query_interface(function_id)
            if pointer:
                self._functions[name] = _PROTOTYPES[name](pointer)

    def __getattr__(self, name: str) -> Any:
        functions = self.__dict__.get("_functions", {})
        if name in functions:
            return functions[name]
        if name in FUNCTION_IDS:
            raise StoreUnavailable(f"Функция {name} не найдена в NVAPI", NVAPI_NO_IMPLEMENTATION)
        raise AttributeError(name)

    def has_function(self, name: str) -> bool:
        return name in self._functions

    @property
    def function_count(self) -> int:
        return len(self._functions)

    def initialize(self) -> None:
        status = self.NvAPI_Initialize()
        if status != NVAPI_OK:
            raise StoreUnavailable("Не удалось инициализировать NVAPI", status)


_nvapi: Optional[NvApi] = None
_nvapi_lock = threading.Lock()


def _library_name() -> str:
    return "nvapi64.dll" if struct.calcsize("P") == 8 else "nvapi.dll"


def load_nvapi() -> NvApi:
    """
    Загружает и инициализирует NVAPI. Успешная загрузка кэшируется на все
    время работы процесса, неудачная - нет, чтобы установка драйвера после
    запуска приложения была замечена при следующей проверке.

    Raises:
        StoreUnavailable: Библиотека отсутствует, платформа не Windows
            или инициализация завершилась ошибкой.
    """
    global _nvapi
    with _nvapi_lock:
        if _nvapi is not None:
            return _nvapi

        if sys.platform != "win32":
            raise StoreUnavailable("Не поддерживается на этой платформе")

        library_name = _library_name()
        try:
            library = ctypes.CDLL(library_name)
        except OSError as e:
            logger.warning(f"Не удалось загрузить {library_name}: {e}")
            raise StoreUnavailable(
                "Библиотека NVAPI не найдена - убедитесь, что установлены драйверы NVIDIA",
                NVAPI_LIBRARY_NOT_FOUND,
            ) from e

        try:
            api = NvApi(library)
        except AttributeError as e:
            raise StoreUnavailable("В библиотеке NVAPI нет nvapi_QueryInterface") from e

        api.initialize()
        logger.info(f"NVAPI загружен ({library_name}), доступно функций: {api.function_count}.")
        _nvapi = api
        return api


def reset_nvapi() -> None:
    """
    Забывает загруженную библиотеку: следующий load_nvapi() загрузит и
    инициализирует NVAPI заново (например, после перезапуска драйвера).
    """
    global _nvapi
    with _nvapi_lock:
        if _nvapi is not None:
            logger.info("Загруженный NVAPI сброшен, при следующем обращении он будет загружен заново.")
        _nvapi = None
