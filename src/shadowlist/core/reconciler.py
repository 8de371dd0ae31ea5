# src/shadowlist/core/reconciler.py
"""
Движок сопоставления запущенных процессов с профилями драйвера.

Два независимо меняющихся источника (список окон ОС и хранилище DRS)
опрашиваются параллельно и объединяются по имени исполняемого файла.
Каждый блокирующий вызов выполняется в рабочем потоке и ограничен по времени.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import ShadowListError, StoreReadError, StoreUnavailable, Timeout, ProcessListingUnavailable
from .config import DEFAULT_ENGINE_CONFIG
from .models import (
    ApplicationEntry, BlacklistResult, BlacklistState, FocusedApplication, FocusInfo,
    NvApiStatus, ProcessInfo, ProcessView, Profile, RunningProcess,
)
from .modules import DriverGate, FocusTracker, ProcessEnumerator, ProfileStore
from .modules.profile_store import executable_key

logger = logging.getLogger(__name__)

# Сбои одного прохода опроса: следующий плановый проход повторит попытку
RECOVERABLE_ERRORS = (StoreReadError, Timeout, ProcessListingUnavailable)


# ===================================================================
# Чистые функции сопоставления
# ===================================================================

def build_application_index(applications: Iterable[ApplicationEntry]) -> Dict[str, ApplicationEntry]:
    """Индекс casefold(имя файла) -> запись. При дубликатах побеждает первая."""
    index: Dict[str, ApplicationEntry] = {}
    for entry in applications:
        index.setdefault(executable_key(entry.executable), entry)
    return index


def reconcile_processes(
    processes: Iterable[ProcessInfo], index: Dict[str, ApplicationEntry]
) -> List[RunningProcess]:
    """
    Каждый экземпляр процесса сопоставляется отдельно: у двух окон одного
    исполняемого файла будут одинаковые, но независимо вычисленные результаты.
    """
    result: List[RunningProcess] = []
    for proc in processes:
        entry = index.get(executable_key(proc.process_name))
        result.append(RunningProcess(
            process_name=proc.process_name,
            window_title=proc.window_title,
            process_id=proc.process_id,
            executable_path=proc.executable_path,
            has_profile=entry is not None,
            profile_name=entry.profile_name if entry else None,
            blacklist=BlacklistState.from_flag(entry.is_blacklisted) if entry else BlacklistState.UNKNOWN,
        ))
    return result


def reconcile_focus(
    focus: Optional[FocusInfo], index: Dict[str, ApplicationEntry]
) -> Optional[FocusedApplication]:
    if focus is None:
        return None
    entry = index.get(executable_key(focus.process_name))
    return FocusedApplication(
        process_name=focus.process_name,
        window_title=focus.window_title,
        process_id=focus.process_id,
        is_in_store=entry is not None,
        profile_name=entry.profile_name if entry else None,
        blacklist=BlacklistState.from_flag(entry.is_blacklisted) if entry else BlacklistState.UNKNOWN,
    )


# ===================================================================
# Движок
# ===================================================================

class ReconciliationEngine:
    """
    Асинхронный фасад над модулями ядра.

    Хранит только последнее успешное представление списка процессов:
    оно возвращается с пометкой stale, если очередной проход не удался.
    """

    def __init__(
        self,
        gate: DriverGate,
        store: ProfileStore,
        enumerator: ProcessEnumerator,
        focus_tracker: FocusTracker,
        config: Optional[Dict[str, Any]] = None,
    ):
        logger.info("Инициализация ReconciliationEngine...")
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.gate = gate
        self.store = store
        self.enumerator = enumerator
        self.focus_tracker = focus_tracker
        self.call_timeout: float = float(self.config.get("call_timeout", DEFAULT_ENGINE_CONFIG["call_timeout"]))
        self._last_view: Optional[ProcessView] = None

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        """
        Выполняет блокирующий вызов в рабочем потоке с ограничением по времени.

        Raises:
            Timeout: Вызов не уложился в call_timeout.
            StoreUnavailable: Драйвер недоступен (кэш шлюза при этом сбрасывается).
        """
        name = getattr(func, "__qualname__", repr(func))
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            # Поток продолжит работу в фоне, но его результат уже никому не нужен
            logger.warning(f"Вызов {name} не уложился в {self.call_timeout}с.")
            raise Timeout(f"Операция {name} превысила лимит времени {self.call_timeout}с") from None
        except StoreUnavailable:
            self.gate.invalidate()
            raise

    # --- Состояние драйвера ---

    async def check_status(self) -> NvApiStatus:
        """Никогда не выбрасывает исключений."""
        try:
            return await self._call(self.gate.check_status)
        except Timeout as e:
            self.gate.invalidate()
            return NvApiStatus(available=False, error=str(e))

    # --- Чтение ---

    async def get_profiles(self) -> List[Profile]:
        return await self._call(self.store.list_profiles)

    async def get_applications(self) -> List[ApplicationEntry]:
        return await self._call(self.store.list_applications)

    async def get_running_processes(self) -> ProcessView:
        """
        Один проход сопоставления: снимок хранилища и список процессов
        запрашиваются параллельно, затем объединяются.

        Raises:
            StoreUnavailable: Всегда, даже при наличии прошлого представления.
            StoreReadError, Timeout, ProcessListingUnavailable: Только если
                прошлого успешного представления еще нет.
        """
        results = await asyncio.gather(
            self._call(self.store.snapshot),
            self._call(self.enumerator.list_processes),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            for error in errors:
                if isinstance(error, StoreUnavailable):
                    raise error
            error = errors[0]
            if not isinstance(error, RECOVERABLE_ERRORS):
                raise error
            return self._fallback_view(error)

        snapshot, processes = results
        index = build_application_index(snapshot.applications)
        view = ProcessView(
            processes=tuple(reconcile_processes(processes, index)),
            taken_at=datetime.now(),
        )
        self._last_view = view
        logger.debug(f"Проход сопоставления завершен: процессов {len(view.processes)}.")
        return view

    def _fallback_view(self, error: ShadowListError) -> ProcessView:
        if self._last_view is None:
            logger.error(f"Проход сопоставления не удался, прошлого представления нет: {error}")
            raise error
        logger.warning(f"Проход сопоставления не удался, возвращено прошлое представление: {error}")
        return ProcessView(
            processes=self._last_view.processes,
            taken_at=self._last_view.taken_at,
            stale=True,
            error=str(error),
        )

    async def get_focus_application(self) -> Optional[FocusedApplication]:
        snapshot, focus = await asyncio.gather(
            self._call(self.store.snapshot),
            self._call(self.focus_tracker.current_focus),
        )
        return reconcile_focus(focus, build_application_index(snapshot.applications))

    # --- Изменения ---

    async def create_profile(self, executable: str, profile_name: str) -> None:
        await self._call(self.store.create_profile, executable, profile_name)

    async def set_blacklist(self, executable: str, blacklisted: bool) -> BlacklistResult:
        return await self._call(self.store.set_blacklist, executable, blacklisted)

    async def reload(self) -> None:
        await self._call(self.store.reload)

    def close(self) -> None:
        self.store.close()
