# tests/nvapi/test_nvapi.py
"""
Тесты для ctypes-привязок NVAPI и сессии DRS.

Реальная библиотека не загружается: функции NVAPI заменяются моками,
которые заполняют переданные по ссылке структуры так же, как драйвер.
"""

import ctypes
import sys
import pytest
from unittest.mock import MagicMock

from src.shadowlist.errors import (
    NVAPI_END_ENUMERATION, NVAPI_EXECUTABLE_NOT_FOUND, NVAPI_INVALID_HANDLE,
    NVAPI_LIBRARY_NOT_FOUND, NVAPI_OK, NVAPI_SETTING_NOT_FOUND,
    StoreReadError, StoreUnavailable, StoreWriteError,
)
from src.shadowlist.nvapi import ffi
from src.shadowlist.nvapi.ffi import (
    NVDRS_APPLICATION_VER, NVDRS_PROFILE_VER, NVDRS_SETTING_VER,
    SHADOWPLAY_DISABLED, SHADOWPLAY_SETTING_ID,
    NvApi, UnicodeString, load_nvapi, new_unicode_string, reset_nvapi, string_to_wchar, wchar_to_string,
)
from src.shadowlist.nvapi.session import DrsSession


class TestStructuresAndStrings:

    def test_structure_versions_match_nvapi_headers(self):
        assert NVDRS_PROFILE_VER == 0x11014
        assert NVDRS_APPLICATION_VER == 0x3400C
        assert NVDRS_SETTING_VER == 0x13020

    def test_wide_string_helpers(self):
        # GIVEN
        buffer = UnicodeString()

        # WHEN
        string_to_wchar("Игра.exe", buffer)

        # THEN
        assert wchar_to_string(buffer) == "Игра.exe"
        assert wchar_to_string(new_unicode_string("obs64.exe")) == "obs64.exe"

    def test_long_string_is_truncated_with_terminator(self):
        # GIVEN
        buffer = (ctypes.c_uint16 * 4)()

        # WHEN
        string_to_wchar("abcdef", buffer)

        # THEN
        assert wchar_to_string(buffer) == "abc"
        assert buffer[3] == 0


class TestLoader:

    @pytest.fixture(autouse=True)
    def reset_cache(self, monkeypatch):
        monkeypatch.setattr(ffi, "_nvapi", None)

    def test_non_windows_platform(self, monkeypatch):
        # GIVEN
        monkeypatch.setattr(sys, "platform", "linux")

        # WHEN / THEN
        with pytest.raises(StoreUnavailable, match="Не поддерживается на этой платформе"):
            load_nvapi()

    def test_missing_library(self, monkeypatch, mocker):
        # GIVEN
        monkeypatch.setattr(sys, "platform", "win32")
        mocker.patch("ctypes.CDLL", side_effect=OSError("not found"))

        # WHEN / THEN
        with pytest.raises(StoreUnavailable) as exc_info:
            load_nvapi()
        assert exc_info.value.status == NVAPI_LIBRARY_NOT_FOUND
        # Неудачная загрузка не кэшируется
        assert ffi._nvapi is None

    def test_successful_load_is_cached(self, monkeypatch, mocker):
        # GIVEN
        monkeypatch.setattr(sys, "platform", "win32")
        api = MagicMock()
        api_class = mocker.patch.object(ffi, "NvApi", return_value=api)
        mocker.patch("ctypes.CDLL")

        # WHEN
        first = load_nvapi()
        second = load_nvapi()

        # THEN
        assert first is second is api
        api_class.assert_called_once()
        api.initialize.assert_called_once()

    def test_reset_forces_fresh_load(self, monkeypatch, mocker):
        # GIVEN
        monkeypatch.setattr(sys, "platform", "win32")
        first_api, second_api = MagicMock(), MagicMock()
        mocker.patch.object(ffi, "NvApi", side_effect=[first_api, second_api])
        mocker.patch("ctypes.CDLL")
        assert load_nvapi() is first_api

        # WHEN
        reset_nvapi()

        # THEN
        assert ffi._nvapi is None
        assert load_nvapi() is second_api
        second_api.initialize.assert_called_once()

    def test_unknown_function_raises_store_unavailable(self):
        # GIVEN: библиотека, в которой QueryInterface ничего не находит
        library = MagicMock()
        library.nvapi_QueryInterface.return_value = None
        api = NvApi(library)

        # WHEN / THEN
        assert api.function_count == 0
        assert api.has_function("NvAPI_DRS_LoadSettings") is False
        with pytest.raises(StoreUnavailable):
            api.NvAPI_DRS_LoadSettings
        with pytest.raises(AttributeError):
            api.not_an_nvapi_function


# --- Сессия DRS поверх мока NVAPI ---

def _fill_profile(name: str, apps: int, predefined: bool):
    def get_profile_info(session, handle, info_ref):
        info = info_ref._obj
        string_to_wchar(name, info.profile_name)
        info.num_of_apps = apps
        info.is_predefined = int(predefined)
        return NVAPI_OK
    return get_profile_info


@pytest.fixture
def mock_api() -> MagicMock:
    api = MagicMock()
    api.NvAPI_DRS_CreateSession.side_effect = lambda handle_ref: (
        setattr(handle_ref._obj, "value", 0x1234) or NVAPI_OK)
    api.NvAPI_DRS_LoadSettings.return_value = NVAPI_OK
    api.NvAPI_DRS_SaveSettings.return_value = NVAPI_OK
    api.NvAPI_DRS_DestroySession.return_value = NVAPI_OK
    return api


@pytest.fixture
def session(mock_api) -> DrsSession:
    drs = DrsSession(api_loader=lambda: mock_api)
    drs.open()
    return drs


class TestDrsSession:

    def test_open_and_close(self, session, mock_api):
        assert session.is_open is True
        mock_api.NvAPI_DRS_LoadSettings.assert_called_once()

        session.close()

        assert session.is_open is False
        mock_api.NvAPI_DRS_DestroySession.assert_called_once()

    def test_open_fails_when_settings_cannot_load(self, mock_api):
        # GIVEN
        mock_api.NvAPI_DRS_LoadSettings.return_value = NVAPI_INVALID_HANDLE
        drs = DrsSession(api_loader=lambda: mock_api)

        # WHEN / THEN
        with pytest.raises(StoreUnavailable):
            drs.open()
        assert drs.is_open is False
        mock_api.NvAPI_DRS_DestroySession.assert_called_once()

    def test_enum_profiles_stops_at_end_of_enumeration(self, session, mock_api):
        # GIVEN
        mock_api.NvAPI_DRS_EnumProfiles.side_effect = [NVAPI_OK, NVAPI_END_ENUMERATION]
        mock_api.NvAPI_DRS_GetProfileInfo.side_effect = _fill_profile("Cyberpunk 2077", 1, True)

        # WHEN
        profiles = session.enum_profiles()

        # THEN
        assert len(profiles) == 1
        assert profiles[0].name == "Cyberpunk 2077"
        assert profiles[0].is_predefined is True
        assert profiles[0].num_of_apps == 1

    def test_enum_profiles_error(self, session, mock_api):
        # GIVEN
        mock_api.NvAPI_DRS_EnumProfiles.return_value = NVAPI_INVALID_HANDLE

        # WHEN / THEN
        with pytest.raises(StoreReadError):
            session.enum_profiles()

    def test_find_application_not_found_returns_none(self, session, mock_api):
        mock_api.NvAPI_DRS_FindApplicationByName.return_value = NVAPI_EXECUTABLE_NOT_FOUND
        assert session.find_application("notepad.exe") is None

    def test_find_application_returns_record(self, session, mock_api):
        # GIVEN
        def find(handle, name_ref, profile_ref, app_ref):
            app = app_ref._obj
            string_to_wchar(wchar_to_string(name_ref._obj), app.app_name)
            string_to_wchar("OBS Studio", app.user_friendly_name)
            return NVAPI_OK
        mock_api.NvAPI_DRS_FindApplicationByName.side_effect = find

        # WHEN
        _handle, record = session.find_application("obs64.exe")

        # THEN
        assert record.executable == "obs64.exe"
        assert record.friendly_name == "OBS Studio"
        assert record.is_predefined is False

    def test_missing_setting_returns_none(self, session, mock_api):
        mock_api.NvAPI_DRS_GetSetting.return_value = NVAPI_SETTING_NOT_FOUND
        assert session.get_dword_setting(ctypes.c_void_p(1), SHADOWPLAY_SETTING_ID) is None

    def test_set_dword_setting_fills_structure(self, session, mock_api):
        # GIVEN
        captured = {}

        def set_setting(handle, profile, setting_ref):
            setting = setting_ref._obj
            captured.update(id=setting.setting_id, value=setting.current_value.u32_value,
                            version=setting.version)
            return NVAPI_OK
        mock_api.NvAPI_DRS_SetSetting.side_effect = set_setting

        # WHEN
        session.set_dword_setting(ctypes.c_void_p(1), SHADOWPLAY_SETTING_ID, SHADOWPLAY_DISABLED)

        # THEN
        assert captured == {"id": SHADOWPLAY_SETTING_ID, "value": SHADOWPLAY_DISABLED, "version": NVDRS_SETTING_VER}

    def test_save_failure_raises_write_error(self, session, mock_api):
        mock_api.NvAPI_DRS_SaveSettings.return_value = NVAPI_INVALID_HANDLE
        with pytest.raises(StoreWriteError):
            session.save_settings()

    def test_calls_on_closed_session_raise(self, mock_api):
        drs = DrsSession(api_loader=lambda: mock_api)
        with pytest.raises(StoreUnavailable):
            drs.enum_profiles()
