# src/shadowlist/nvapi/session.py
"""
Сессия DRS (Driver Settings) поверх ctypes-привязок NVAPI.

DrsSession владеет единственным дескриптором сессии и предоставляет
операции над профилями, приложениями и DWORD-настройками. Класс не
потокобезопасен: синхронизацию обеспечивает ProfileStore, который
является единственным владельцем сессии.
"""
import ctypes
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from ..errors import (
    NVAPI_OK, NVAPI_END_ENUMERATION, NVAPI_PROFILE_NOT_FOUND,
    NVAPI_EXECUTABLE_NOT_FOUND, NVAPI_SETTING_NOT_FOUND,
    StoreReadError, StoreUnavailable, StoreWriteError,
)
from .ffi import (
    NvApi, NvdrsApplication, NvdrsProfile, NvdrsSetting,
    NVDRS_APPLICATION_VER, NVDRS_PROFILE_VER, NVDRS_SETTING_VER, NVDRS_DWORD_TYPE,
    load_nvapi, new_unicode_string, string_to_wchar, wchar_to_string,
)

logger = logging.getLogger(__name__)

APPLICATION_BATCH_SIZE = 32


@dataclass(frozen=True)
class ProfileRecord:
    handle: Any
    name: str
    is_predefined: bool
    num_of_apps: int


@dataclass(frozen=True)
class ApplicationRecord:
    executable: str
    friendly_name: str
    is_predefined: bool


class DrsSession:
    """
    Обертка над NvDRSSessionHandle.

    Методы чтения выбрасывают StoreReadError, методы записи - StoreWriteError.
    Статусы "не найдено" превращаются в None, а не в исключения.
    """

    def __init__(self, api_loader: Callable[[], NvApi] = load_nvapi):
        self._api_loader = api_loader
        self._api: Optional[NvApi] = None
        self._handle = ctypes.c_void_p()

    @property
    def is_open(self) -> bool:
        return bool(self._handle.value)

    def open(self) -> None:
        """Создает сессию и загружает в нее настройки драйвера."""
        if self.is_open:
            return
        self._api = self._api_loader()
        handle = ctypes.c_void_p()
        status = self._api.NvAPI_DRS_CreateSession(ctypes.byref(handle))
        if status != NVAPI_OK:
            raise StoreUnavailable("Не удалось создать сессию DRS", status)

        status = self._api.NvAPI_DRS_LoadSettings(handle)
        if status != NVAPI_OK:
            self._api.NvAPI_DRS_DestroySession(handle)
            raise StoreUnavailable("Не удалось загрузить настройки драйвера", status)

        self._handle = handle
        logger.info("Сессия DRS создана, настройки загружены.")

    def close(self) -> None:
        if self.is_open and self._api is not None:
            self._api.NvAPI_DRS_DestroySession(self._handle)
            logger.info("Сессия DRS закрыта.")
        self._handle = ctypes.c_void_p()

    @property
    def api(self) -> NvApi:
        if self._api is None or not self.is_open:
            raise StoreUnavailable("Сессия DRS не открыта")
        return self._api

    # --- Загрузка и сохранение ---

    def load_settings(self) -> None:
        status = self.api.NvAPI_DRS_LoadSettings(self._handle)
        if status != NVAPI_OK:
            raise StoreReadError("Не удалось перечитать настройки драйвера", status)

    def save_settings(self) -> None:
        status = self.api.NvAPI_DRS_SaveSettings(self._handle)
        if status != NVAPI_OK:
            raise StoreWriteError("Не удалось сохранить настройки драйвера", status)

    # --- Профили ---

    def get_profile_info(self, profile_handle: Any) -> ProfileRecord:
        info = NvdrsProfile()
        info.version = NVDRS_PROFILE_VER
        status = self.api.NvAPI_DRS_GetProfileInfo(self._handle, profile_handle, ctypes.byref(info))
        if status != NVAPI_OK:
            raise StoreReadError("Не удалось получить сведения о профиле", status)
        return ProfileRecord(
            handle=profile_handle,
            name=wchar_to_string(info.profile_name),
            is_predefined=info.is_predefined != 0,
            num_of_apps=info.num_of_apps,
        )

    def enum_profiles(self) -> List[ProfileRecord]:
        """Перечисляет все профили в порядке, заданном драйвером."""
        profiles: List[ProfileRecord] = []
        index = 0
        while True:
            profile_handle = ctypes.c_void_p()
            status = self.api.NvAPI_DRS_EnumProfiles(self._handle, index, ctypes.byref(profile_handle))
            if status == NVAPI_END_ENUMERATION:
                break
            if status != NVAPI_OK:
                raise StoreReadError(f"Ошибка перечисления профилей (индекс {index})", status)
            profiles.append(self.get_profile_info(profile_handle))
            index += 1
        return profiles

    def find_profile_by_name(self, name: str) -> Optional[Any]:
        profile_handle = ctypes.c_void_p()
        wide_name = new_unicode_string(name)
        status = self.api.NvAPI_DRS_FindProfileByName(
            self._handle, ctypes.byref(wide_name), ctypes.byref(profile_handle))
        if status == NVAPI_PROFILE_NOT_FOUND:
            return None
        if status != NVAPI_OK:
            raise StoreReadError(f"Ошибка поиска профиля '{name}'", status)
        return profile_handle

    def create_profile(self, name: str) -> Any:
        info = NvdrsProfile()
        info.version = NVDRS_PROFILE_VER
        string_to_wchar(name, info.profile_name)
        profile_handle = ctypes.c_void_p()
        status = self.api.NvAPI_DRS_CreateProfile(self._handle, ctypes.byref(info), ctypes.byref(profile_handle))
        if status != NVAPI_OK:
            raise StoreWriteError(f"Не удалось создать профиль '{name}'", status)
        return profile_handle

    # --- Приложения ---

    def enum_applications(self, profile: ProfileRecord) -> List[ApplicationRecord]:
        """Перечисляет приложения профиля пакетами по APPLICATION_BATCH_SIZE."""
        applications: List[ApplicationRecord] = []
        start_index = 0
        while start_index < profile.num_of_apps:
            batch = (NvdrsApplication * APPLICATION_BATCH_SIZE)()
            for app in batch:
                app.version = NVDRS_APPLICATION_VER
            count = ctypes.c_uint32(APPLICATION_BATCH_SIZE)
            status = self.api.NvAPI_DRS_EnumApplications(
                self._handle, profile.handle, start_index, ctypes.byref(count), batch)
            if status == NVAPI_END_ENUMERATION or count.value == 0:
                break
            if status != NVAPI_OK:
                raise StoreReadError(f"Ошибка перечисления приложений профиля '{profile.name}'", status)
            for app in batch[:count.value]:
                applications.append(_to_application_record(app))
            start_index += count.value
        return applications

    def find_application(self, executable: str) -> Optional[Tuple[Any, ApplicationRecord]]:
        """Возвращает (дескриптор профиля, приложение) или None."""
        profile_handle = ctypes.c_void_p()
        app = NvdrsApplication()
        app.version = NVDRS_APPLICATION_VER
        wide_name = new_unicode_string(executable)
        status = self.api.NvAPI_DRS_FindApplicationByName(
            self._handle, ctypes.byref(wide_name), ctypes.byref(profile_handle), ctypes.byref(app))
        if status == NVAPI_EXECUTABLE_NOT_FOUND:
            return None
        if status != NVAPI_OK:
            raise StoreReadError(f"Ошибка поиска приложения '{executable}'", status)
        return profile_handle, _to_application_record(app)

    def create_application(self, profile_handle: Any, executable: str, friendly_name: str) -> None:
        app = NvdrsApplication()
        app.version = NVDRS_APPLICATION_VER
        string_to_wchar(executable, app.app_name)
        string_to_wchar(friendly_name, app.user_friendly_name)
        status = self.api.NvAPI_DRS_CreateApplication(self._handle, profile_handle, ctypes.byref(app))
        if status != NVAPI_OK:
            raise StoreWriteError(f"Не удалось добавить '{executable}' в профиль", status)

    # --- Настройки ---

    def get_dword_setting(self, profile_handle: Any, setting_id: int) -> Optional[int]:
        """Значение DWORD-настройки или None, если в профиле ее нет."""
        setting = NvdrsSetting()
        setting.version = NVDRS_SETTING_VER
        status = self.api.NvAPI_DRS_GetSetting(self._handle, profile_handle, setting_id, ctypes.byref(setting))
        if status == NVAPI_SETTING_NOT_FOUND:
            return None
        if status != NVAPI_OK:
            raise StoreReadError(f"Не удалось прочитать настройку 0x{setting_id:08X}", status)
        return setting.current_value.u32_value

    def set_dword_setting(self, profile_handle: Any, setting_id: int, value: int) -> None:
        setting = NvdrsSetting()
        setting.version = NVDRS_SETTING_VER
        setting.setting_id = setting_id
        setting.setting_type = NVDRS_DWORD_TYPE
        setting.current_value.u32_value = value
        status = self.api.NvAPI_DRS_SetSetting(self._handle, profile_handle, ctypes.byref(setting))
        if status != NVAPI_OK:
            raise StoreWriteError(f"Не удалось записать настройку 0x{setting_id:08X}", status)


def _to_application_record(app: NvdrsApplication) -> ApplicationRecord:
    return ApplicationRecord(
        executable=wchar_to_string(app.app_name),
        friendly_name=wchar_to_string(app.user_friendly_name),
        is_predefined=app.is_predefined != 0,
    )
