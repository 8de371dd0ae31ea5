# tests/core/conftest.py
"""
Общие фикстуры для тестов модулей ядра (`src/shadowlist/core`).

Этот файл автоматически обнаруживается pytest и предоставляет фикстуры
для всех тестовых файлов в этой директории и ее поддиректориях.

Сессия DRS заменяется FakeDrsSession - хранилищем в памяти с теми же
методами, что и у DrsSession. Благодаря этому хранилище профилей, движок,
мост команд и опрос тестируются на любой ОС без драйвера NVIDIA.
"""

import copy
import itertools
import pytest
from unittest.mock import MagicMock
from typing import Any, Dict, List, Optional, Tuple

# --- Импорты тестируемых классов и их зависимостей ---
from src.shadowlist.errors import (
    NVAPI_EXECUTABLE_ALREADY_IN_USE, NVAPI_OK, NVAPI_PROFILE_NAME_IN_USE,
    StoreWriteError,
)
from src.shadowlist.nvapi.ffi import SHADOWPLAY_DISABLED, SHADOWPLAY_SETTING_ID
from src.shadowlist.nvapi.session import ApplicationRecord, ProfileRecord
from src.shadowlist.core.config import DEFAULT_ENGINE_CONFIG
from src.shadowlist.core.bridge import CommandBridge
from src.shadowlist.core.models import FocusInfo, ProcessInfo
from src.shadowlist.core.modules import DriverGate, FocusTracker, ProcessEnumerator, ProfileStore
from src.shadowlist.core.reconciler import ReconciliationEngine


class FakeDrsSession:
    """
    Хранилище профилей в памяти, повторяющее контракт DrsSession.

    Ошибки драйвера имитируются через `fail_on`: имя метода -> исключение,
    которое этот метод выбросит при следующем вызове.
    """

    def __init__(self, profiles: Optional[List[Dict[str, Any]]] = None):
        self._ids = itertools.count(1)
        self._profiles: Dict[int, Dict[str, Any]] = {}
        for profile in profiles or []:
            self._profiles[next(self._ids)] = copy.deepcopy(profile)
        self.is_open = False
        self.fail_on: Dict[str, Exception] = {}
        self.calls: List[str] = []
        # Сохраненное на "диск" состояние для проверки reload
        self.saved_profiles = copy.deepcopy(self._profiles)

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        error = self.fail_on.pop(method, None)
        if error is not None:
            raise error

    def open(self) -> None:
        self._enter("open")
        self.is_open = True

    def close(self) -> None:
        self.calls.append("close")
        self.is_open = False

    def load_settings(self) -> None:
        self._enter("load_settings")
        self._profiles = copy.deepcopy(self.saved_profiles)

    def save_settings(self) -> None:
        self._enter("save_settings")
        self.saved_profiles = copy.deepcopy(self._profiles)

    def get_profile_info(self, handle: int) -> ProfileRecord:
        profile = self._profiles[handle]
        return ProfileRecord(
            handle=handle,
            name=profile["name"],
            is_predefined=profile.get("predefined", False),
            num_of_apps=len(profile["apps"]),
        )

    def enum_profiles(self) -> List[ProfileRecord]:
        self._enter("enum_profiles")
        return [self.get_profile_info(handle) for handle in self._profiles]

    def find_profile_by_name(self, name: str) -> Optional[int]:
        for handle, profile in self._profiles.items():
            if profile["name"].casefold() == name.casefold():
                return handle
        return None

    def create_profile(self, name: str) -> int:
        self._enter("create_profile")
        if self.find_profile_by_name(name) is not None:
            raise StoreWriteError(f"Не удалось создать профиль '{name}'", NVAPI_PROFILE_NAME_IN_USE)
        handle = next(self._ids)
        self._profiles[handle] = {"name": name, "predefined": False, "apps": [], "settings": {}}
        return handle

    def enum_applications(self, profile: ProfileRecord) -> List[ApplicationRecord]:
        self._enter("enum_applications")
        return [
            ApplicationRecord(executable=exe, friendly_name=friendly, is_predefined=predefined)
            for exe, friendly, predefined in self._profiles[profile.handle]["apps"]
        ]

    def find_application(self, executable: str) -> Optional[Tuple[int, ApplicationRecord]]:
        self._enter("find_application")
        for handle, profile in self._profiles.items():
            for exe, friendly, predefined in profile["apps"]:
                if exe.casefold() == executable.casefold():
                    return handle, ApplicationRecord(exe, friendly, predefined)
        return None

    def create_application(self, handle: int, executable: str, friendly_name: str) -> None:
        self._enter("create_application")
        if self.find_application(executable) is not None:
            raise StoreWriteError(f"Не удалось добавить '{executable}' в профиль", NVAPI_EXECUTABLE_ALREADY_IN_USE)
        self._profiles[handle]["apps"].append((executable, friendly_name, False))

    def get_dword_setting(self, handle: int, setting_id: int) -> Optional[int]:
        self._enter("get_dword_setting")
        return self._profiles[handle].setdefault("settings", {}).get(setting_id)

    def set_dword_setting(self, handle: int, setting_id: int, value: int) -> None:
        self._enter("set_dword_setting")
        self._profiles[handle].setdefault("settings", {})[setting_id] = value


# --- Данные по умолчанию ---

def default_profiles() -> List[Dict[str, Any]]:
    """Встроенный базовый профиль, встроенный игровой профиль и пользовательский профиль в черном списке."""
    return [
        {"name": "Base Profile", "predefined": True, "apps": [], "settings": {}},
        {
            "name": "Cyberpunk 2077",
            "predefined": True,
            "apps": [("Cyberpunk2077.exe", "Cyberpunk 2077", True)],
            "settings": {},
        },
        {
            "name": "OBS Studio",
            "predefined": False,
            "apps": [("obs64.exe", "OBS Studio", False), ("obs32.exe", "OBS Studio", False)],
            "settings": {SHADOWPLAY_SETTING_ID: SHADOWPLAY_DISABLED},
        },
    ]


# --- Фикстуры для мокирования внешних систем ---

@pytest.fixture
def engine_config() -> Dict[str, Any]:
    config = copy.deepcopy(DEFAULT_ENGINE_CONFIG)
    config.update({"call_timeout": 2.0, "snapshot_ttl": 60.0, "gate_cache_ttl": 60.0})
    return config


@pytest.fixture
def fake_session() -> FakeDrsSession:
    return FakeDrsSession(default_profiles())


@pytest.fixture
def mock_nvapi() -> MagicMock:
    """Загруженная библиотека NVAPI, в которой есть все нужные функции."""
    api = MagicMock()
    api.has_function.return_value = True
    api.NvAPI_DRS_CreateSession.return_value = NVAPI_OK
    return api


@pytest.fixture
def gate(mock_nvapi: MagicMock, engine_config: Dict[str, Any]) -> DriverGate:
    return DriverGate(cache_ttl=engine_config["gate_cache_ttl"], api_loader=lambda: mock_nvapi)


@pytest.fixture
def store(gate: DriverGate, fake_session: FakeDrsSession, engine_config: Dict[str, Any]) -> ProfileStore:
    return ProfileStore(gate, session_factory=lambda: fake_session, snapshot_ttl=engine_config["snapshot_ttl"])


@pytest.fixture
def mock_enumerator() -> MagicMock:
    enumerator = MagicMock(spec=ProcessEnumerator)
    enumerator.list_processes.return_value = [
        ProcessInfo("Cyberpunk2077.exe", "Cyberpunk 2077 (C) 2020 by CD Projekt RED", 4120, "C:\\Games\\Cyberpunk2077.exe"),
        ProcessInfo("notepad.exe", "Безымянный - Блокнот", 5300, "C:\\Windows\\notepad.exe"),
        ProcessInfo("OBS64.EXE", "OBS 30.0.2 - Профиль: Без названия", 6100, None),
    ]
    return enumerator


@pytest.fixture
def mock_focus_tracker() -> MagicMock:
    tracker = MagicMock(spec=FocusTracker)
    tracker.current_focus.return_value = FocusInfo("Cyberpunk2077.exe", "Cyberpunk 2077", 4120)
    return tracker


# --- Фикстуры для создания экземпляров тестируемых классов ---

@pytest.fixture
def engine(
    gate: DriverGate,
    store: ProfileStore,
    mock_enumerator: MagicMock,
    mock_focus_tracker: MagicMock,
    engine_config: Dict[str, Any],
) -> ReconciliationEngine:
    return ReconciliationEngine(gate, store, mock_enumerator, mock_focus_tracker, engine_config)


@pytest.fixture
def bridge(engine: ReconciliationEngine) -> CommandBridge:
    return CommandBridge(engine)
