# src/shadowlist/core/modules/profile_store.py
"""
Доступ к хранилищу профилей драйвера (DRS).

ProfileStore - единственный владелец сессии DRS. Все изменения (создание
профиля, переключение флага ShadowPlay, перечитывание настроек) и построение
снимков выполняются под одной блокировкой. Читатели получают неизменяемый
снимок, построенный за один проход, поэтому никогда не видят хранилище
посреди изменения.

Блокировка берется с ограничением по времени: если вызов драйвера завис
под ней, остальные операции завершаются с Timeout, а не занимают потоки
исполнителя бесконечно.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple

from ...errors import (
    CONNECTIVITY_STATUSES, NVAPI_EXECUTABLE_ALREADY_IN_USE,
    InvalidRequest, NotFound, ShadowListError, StoreUnavailable, StoreWriteError, Timeout,
)
from ...nvapi.ffi import SHADOWPLAY_DISABLED, SHADOWPLAY_ENABLED, SHADOWPLAY_SETTING_ID
from ...nvapi.session import DrsSession, ProfileRecord
from ..models import ApplicationEntry, BlacklistResult, Profile, StoreSnapshot
from .driver_gate import DriverGate

logger = logging.getLogger(__name__)

_PATH_SEPARATORS = ("\\", "/")


def executable_key(executable: str) -> str:
    """Ключ сопоставления: имена файлов в Windows не чувствительны к регистру."""
    return executable.casefold()


class ProfileStore:
    """
    Читает профили и приложения драйвера и выполняет изменения над ними.
    """

    def __init__(
        self,
        gate: DriverGate,
        session_factory: Callable[[], DrsSession] = DrsSession,
        snapshot_ttl: float = 2.0,
        lock_timeout: float = 5.0,
    ):
        logger.info("Инициализация ProfileStore...")
        self._gate = gate
        self._session_factory = session_factory
        self._session: Optional[DrsSession] = None
        self.snapshot_ttl = snapshot_ttl
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        # (снимок, время построения) - пара заменяется целиком одним присваиванием
        self._cached: Optional[Tuple[StoreSnapshot, float]] = None

    # --- Сессия ---

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """
        Raises:
            Timeout: Блокировку удерживает другая операция дольше lock_timeout.
        """
        if not self._lock.acquire(timeout=self.lock_timeout):
            logger.warning(f"Хранилище профилей занято дольше {self.lock_timeout}с.")
            raise Timeout(f"Хранилище профилей занято другой операцией дольше {self.lock_timeout}с")
        try:
            yield
        finally:
            self._lock.release()

    @contextmanager
    def _connection_guard(self) -> Iterator[None]:
        """
        Превращает потерю связи с драйвером в StoreUnavailable.

        После перезапуска драйвера дескриптор сессии становится недействительным,
        и любые вызовы возвращают статусы из CONNECTIVITY_STATUSES. Такая сессия
        закрывается, а шлюз сбрасывается, чтобы следующая операция проверила
        драйвер заново и открыла новую сессию.
        """
        try:
            yield
        except StoreUnavailable:
            self._drop_session()
            raise
        except ShadowListError as e:
            if e.status not in CONNECTIVITY_STATUSES:
                raise
            self._drop_session()
            raise StoreUnavailable("Связь с драйвером потеряна", e.status) from e

    def _drop_session(self) -> None:
        """Вызывать только под self._lock."""
        if self._session is not None:
            logger.warning("Сессия DRS недействительна и будет открыта заново.")
            self._session.close()
            self._session = None
        self._cached = None
        self._gate.invalidate()

    def _ensure_session(self) -> DrsSession:
        """Открывает сессию при первом обращении. Вызывать только под self._lock."""
        self._gate.ensure_available()
        if self._session is None or not self._session.is_open:
            session = self._session_factory()
            with self._connection_guard():
                session.open()
            self._session = session
        return self._session

    def close(self) -> None:
        try:
            with self._locked():
                if self._session is not None:
                    self._session.close()
                    self._session = None
                self._cached = None
        except Timeout:
            logger.error("Сессия DRS не закрыта: хранилище занято зависшей операцией.")

    def _invalidate_snapshot(self) -> None:
        self._cached = None

    # --- Чтение ---

    def snapshot(self) -> StoreSnapshot:
        """
        Возвращает согласованный снимок (профили + приложения).

        Пока снимок моложе snapshot_ttl, он отдается без блокировки,
        так что параллельные чтения не мешают друг другу.

        Raises:
            StoreUnavailable: NVAPI недоступен.
            StoreReadError: Ошибка перечисления в драйвере.
            Timeout: Хранилище занято зависшей операцией.
        """
        snapshot = self._fresh_snapshot()
        if snapshot is not None:
            return snapshot

        with self._locked():
            # Пока ждали блокировку, снимок мог построить другой поток
            snapshot = self._fresh_snapshot()
            if snapshot is None:
                session = self._ensure_session()
                with self._connection_guard():
                    snapshot = self._build_snapshot(session)
                self._cached = (snapshot, time.monotonic())
            return snapshot

    def _fresh_snapshot(self) -> Optional[StoreSnapshot]:
        cached = self._cached
        if cached is not None and (time.monotonic() - cached[1]) < self.snapshot_ttl:
            return cached[0]
        return None

    def _build_snapshot(self, session: DrsSession) -> StoreSnapshot:
        started = time.perf_counter()
        profiles: List[Profile] = []
        applications: List[ApplicationEntry] = []

        for record in session.enum_profiles():
            profiles.append(Profile(
                name=record.name,
                is_predefined=record.is_predefined,
                application_count=record.num_of_apps,
            ))
            if record.num_of_apps == 0:
                continue
            # Флаг ShadowPlay хранится на уровне профиля и общий для всех его приложений
            is_blacklisted = self._read_blacklist_flag(session, record)
            for app in session.enum_applications(record):
                applications.append(ApplicationEntry(
                    name=app.friendly_name,
                    executable=app.executable,
                    profile_name=record.name,
                    is_predefined=app.is_predefined,
                    is_blacklisted=is_blacklisted,
                ))

        elapsed = time.perf_counter() - started
        logger.debug(f"Снимок хранилища построен за {elapsed:.3f}с: "
                     f"профилей {len(profiles)}, приложений {len(applications)}.")
        return StoreSnapshot(profiles=tuple(profiles), applications=tuple(applications))

    @staticmethod
    def _read_blacklist_flag(session: DrsSession, record: ProfileRecord) -> bool:
        value = session.get_dword_setting(record.handle, SHADOWPLAY_SETTING_ID)
        # Отсутствие настройки означает значение драйвера по умолчанию (ShadowPlay включен)
        return value == SHADOWPLAY_DISABLED

    def list_profiles(self) -> List[Profile]:
        return list(self.snapshot().profiles)

    def list_applications(self) -> List[ApplicationEntry]:
        return list(self.snapshot().applications)

    def find_application(self, executable: str) -> Optional[ApplicationEntry]:
        key = executable_key(executable)
        for entry in self.snapshot().applications:
            if executable_key(entry.executable) == key:
                return entry
        return None

    # --- Изменения ---

    def create_profile(self, executable: str, profile_name: str) -> None:
        """
        Создает профиль и привязывает к нему исполняемый файл.

        Повторный вызов с теми же аргументами - успешная операция без изменений.
        Если профиль с таким именем уже создан пользователем, файл добавляется в него.

        Raises:
            InvalidRequest: Пустое имя файла/профиля, путь вместо имени файла
                или имя встроенного профиля драйвера.
            StoreWriteError: Файл уже привязан к другому профилю или драйвер
                отказал в записи.
        """
        executable = self._validate_executable(executable)
        profile_name = (profile_name or "").strip()
        if not profile_name:
            raise InvalidRequest("Имя профиля не может быть пустым")

        with self._locked():
            session = self._ensure_session()
            try:
                with self._connection_guard():
                    self._create_profile(session, executable, profile_name)
            finally:
                self._invalidate_snapshot()

    @staticmethod
    def _create_profile(session: DrsSession, executable: str, profile_name: str) -> None:
        existing = session.find_application(executable)
        if existing is not None:
            owner = session.get_profile_info(existing[0])
            if owner.name.casefold() == profile_name.casefold():
                logger.info(f"'{executable}' уже привязан к профилю '{owner.name}', изменений нет.")
                return
            raise StoreWriteError(
                f"'{executable}' уже привязан к профилю '{owner.name}'",
                NVAPI_EXECUTABLE_ALREADY_IN_USE,
            )

        profile_handle = session.find_profile_by_name(profile_name)
        if profile_handle is None:
            profile_handle = session.create_profile(profile_name)
            logger.info(f"Создан профиль '{profile_name}'.")
        elif session.get_profile_info(profile_handle).is_predefined:
            raise InvalidRequest(f"Имя '{profile_name}' принадлежит встроенному профилю драйвера")

        session.create_application(profile_handle, executable, profile_name)
        session.save_settings()
        logger.info(f"'{executable}' добавлен в профиль '{profile_name}', настройки сохранены.")

    def set_blacklist(self, executable: str, blacklisted: bool) -> BlacklistResult:
        """
        Включает или выключает ShadowPlay для исполняемого файла.

        Если записи для файла нет, возвращается результат с success=False:
        вызывающая сторона могла опередить синхронизацию представления.
        """
        executable = self._validate_executable(executable)
        with self._locked():
            session = self._ensure_session()
            try:
                with self._connection_guard():
                    profile_handle = self._require_application(session, executable)
            except NotFound as e:
                logger.info(str(e))
                return BlacklistResult(
                    success=False,
                    executable=executable,
                    message="Приложение не найдено в настройках драйвера. Сначала создайте профиль.",
                )

            value = SHADOWPLAY_DISABLED if blacklisted else SHADOWPLAY_ENABLED
            try:
                with self._connection_guard():
                    session.set_dword_setting(profile_handle, SHADOWPLAY_SETTING_ID, value)
                    session.save_settings()
            finally:
                self._invalidate_snapshot()

        action = "добавлено в черный список" if blacklisted else "убрано из черного списка"
        logger.info(f"'{executable}': {action}.")
        return BlacklistResult(success=True, executable=executable, message=f"Приложение {action}")

    def reload(self) -> None:
        """
        Перечитывает настройки драйвера с диска (например, после внешних правок).

        Raises:
            StoreReadError: Драйвер не смог загрузить настройки.
        """
        with self._locked():
            session = self._ensure_session()
            try:
                with self._connection_guard():
                    session.load_settings()
            finally:
                self._invalidate_snapshot()
        logger.info("Настройки драйвера перечитаны.")

    # --- Вспомогательные ---

    @staticmethod
    def _require_application(session: DrsSession, executable: str):
        found = session.find_application(executable)
        if found is None:
            raise NotFound(f"Приложение '{executable}' отсутствует в хранилище профилей")
        return found[0]

    @staticmethod
    def _validate_executable(executable: str) -> str:
        executable = (executable or "").strip()
        if not executable:
            raise InvalidRequest("Имя исполняемого файла не может быть пустым")
        if any(sep in executable for sep in _PATH_SEPARATORS):
            raise InvalidRequest(f"Ожидается имя файла, а не путь: '{executable}'")
        return executable
