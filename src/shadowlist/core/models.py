# src/shadowlist/core/models.py
"""
Неизменяемые структуры данных ядра.

Каждая структура умеет превращать себя в словарь для внешней границы
(`to_dict`). Имена полей и значения перечислений отображаются явно:
неявного переименования между snake_case ядра и camelCase клиента нет.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class BlacklistState(Enum):
    """
    Состояние флага ShadowPlay для процесса.

    UNKNOWN означает, что записи в хранилище нет и состояние не определено.
    Это не то же самое, что ALLOWED.
    """
    BLACKLISTED = "blacklisted"
    ALLOWED = "allowed"
    UNKNOWN = "unknown"

    @classmethod
    def from_flag(cls, is_blacklisted: bool) -> "BlacklistState":
        return cls.BLACKLISTED if is_blacklisted else cls.ALLOWED

    def to_wire(self) -> Optional[bool]:
        """Отображение на nullable boolean внешнего протокола."""
        if self is BlacklistState.BLACKLISTED:
            return True
        if self is BlacklistState.ALLOWED:
            return False
        return None


@dataclass(frozen=True)
class Profile:
    """Профиль драйвера (DRS)."""
    name: str
    is_predefined: bool
    application_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "isPredefined": self.is_predefined,
            "applicationCount": self.application_count,
        }


@dataclass(frozen=True)
class ApplicationEntry:
    """Привязка исполняемого файла к профилю драйвера."""
    name: str
    executable: str
    profile_name: str
    is_predefined: bool
    is_blacklisted: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "executable": self.executable,
            "profileName": self.profile_name,
            "isPredefined": self.is_predefined,
            "isBlacklisted": self.is_blacklisted,
        }


@dataclass(frozen=True)
class ProcessInfo:
    """Сырые сведения о процессе с видимым окном, до сопоставления."""
    process_name: str
    window_title: str
    process_id: int
    executable_path: Optional[str] = None


@dataclass(frozen=True)
class FocusInfo:
    """Сырые сведения о процессе, владеющем активным окном."""
    process_name: str
    window_title: str
    process_id: int


@dataclass(frozen=True)
class RunningProcess:
    """Запущенный процесс, обогащенный результатом сопоставления с хранилищем."""
    process_name: str
    window_title: str
    process_id: int
    executable_path: Optional[str]
    has_profile: bool
    profile_name: Optional[str]
    blacklist: BlacklistState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processName": self.process_name,
            "windowTitle": self.window_title,
            "processId": self.process_id,
            "executablePath": self.executable_path,
            "hasDrsProfile": self.has_profile,
            "profileName": self.profile_name,
            "isBlacklisted": self.blacklist.to_wire(),
        }


@dataclass(frozen=True)
class FocusedApplication:
    """Приложение в фокусе, обогащенное результатом сопоставления."""
    process_name: str
    window_title: str
    process_id: int
    is_in_store: bool
    profile_name: Optional[str]
    blacklist: BlacklistState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processName": self.process_name,
            "windowTitle": self.window_title,
            "processId": self.process_id,
            "isInDrs": self.is_in_store,
            "profileName": self.profile_name,
            "isBlacklisted": self.blacklist.to_wire(),
        }


@dataclass(frozen=True)
class BlacklistResult:
    success: bool
    executable: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "executable": self.executable,
            "message": self.message,
        }


@dataclass(frozen=True)
class NvApiStatus:
    available: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"available": self.available, "error": self.error}


@dataclass(frozen=True)
class StoreSnapshot:
    """
    Согласованный снимок хранилища, прочитанный за один проход под блокировкой.
    Читатели получают либо состояние до изменения, либо после, но не промежуточное.
    """
    profiles: Tuple[Profile, ...]
    applications: Tuple[ApplicationEntry, ...]
    taken_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ProcessView:
    """
    Результат прохода сопоставления. `stale=True` означает, что последний
    проход не удался и возвращено предыдущее успешное представление.
    """
    processes: Tuple[RunningProcess, ...]
    taken_at: datetime
    stale: bool = False
    error: Optional[str] = None

    def as_list(self) -> List[RunningProcess]:
        return list(self.processes)
