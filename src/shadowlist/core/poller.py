# src/shadowlist/core/poller.py
"""
Периодический опрос движка: быстрый цикл фокуса и медленный цикл
полного списка процессов.

Результаты доставляются в обратные вызовы внешнего слоя. Результат прохода,
завершившегося после stop() или после запуска более нового прохода того же
вида, отбрасывается: внешний слой никогда не получает устаревших данных
поверх свежих.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..errors import ShadowListError, StoreUnavailable
from .config import DEFAULT_ENGINE_CONFIG
from .models import FocusedApplication, ProcessView
from .reconciler import ReconciliationEngine

logger = logging.getLogger(__name__)

FocusCallback = Callable[[Optional[FocusedApplication]], None]
ProcessCallback = Callable[[ProcessView], None]
ErrorCallback = Callable[[Exception], None]


class PollingSession:
    """
    Управляет двумя циклами опроса.

    Пока драйвер недоступен, опрос приостанавливается: цикл процессов
    с периодом process_interval повторно проверяет NVAPI, цикл фокуса ждет.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        on_focus: FocusCallback,
        on_processes: ProcessCallback,
        on_error: Optional[ErrorCallback] = None,
        focus_interval: Optional[float] = None,
        process_interval: Optional[float] = None,
    ):
        self.engine = engine
        self.on_focus = on_focus
        self.on_processes = on_processes
        self.on_error = on_error
        self.focus_interval = focus_interval or DEFAULT_ENGINE_CONFIG["focus_interval"]
        self.process_interval = process_interval or DEFAULT_ENGINE_CONFIG["process_interval"]

        self._tasks: List[asyncio.Task] = []
        self._generation = 0
        self._sequence: Dict[str, int] = {"focus": 0, "processes": 0}
        self._driver_ready: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def paused(self) -> bool:
        return self._driver_ready is not None and not self._driver_ready.is_set()

    async def start(self) -> None:
        if self.running:
            logger.warning("Опрос уже запущен.")
            return
        self._generation += 1
        self._driver_ready = asyncio.Event()
        self._driver_ready.set()
        self._tasks = [
            asyncio.create_task(self._focus_loop(), name="shadowlist-focus"),
            asyncio.create_task(self._process_loop(), name="shadowlist-processes"),
        ]
        logger.info(f"Опрос запущен: фокус каждые {self.focus_interval}с, "
                    f"процессы каждые {self.process_interval}с.")

    async def stop(self) -> None:
        """Немедленно отменяет оба цикла и дожидается их завершения."""
        self._generation += 1
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Опрос остановлен.")

    async def refresh_now(self) -> None:
        """Внеплановый проход по списку процессов (например, после изменения профиля)."""
        await self._run_pass("processes", self.engine.get_running_processes, self.on_processes)

    # --- Циклы ---

    async def _focus_loop(self) -> None:
        while True:
            await self._driver_ready.wait()
            await self._run_pass("focus", self.engine.get_focus_application, self.on_focus)
            await asyncio.sleep(self.focus_interval)

    async def _process_loop(self) -> None:
        while True:
            if self._driver_ready.is_set():
                await self._run_pass("processes", self.engine.get_running_processes, self.on_processes)
            else:
                await self._probe_driver()
            await asyncio.sleep(self.process_interval)

    async def _probe_driver(self) -> None:
        status = await self.engine.check_status()
        if status.available:
            logger.info("Драйвер снова доступен, опрос возобновлен.")
            self._driver_ready.set()
            await self._run_pass("processes", self.engine.get_running_processes, self.on_processes)
        else:
            logger.debug(f"Драйвер по-прежнему недоступен: {status.error}")

    async def _run_pass(
        self,
        kind: str,
        fetch: Callable[[], Awaitable[Any]],
        deliver: Callable[[Any], None],
    ) -> None:
        self._sequence[kind] += 1
        sequence = self._sequence[kind]
        generation = self._generation

        try:
            result = await fetch()
        except StoreUnavailable as e:
            if self._is_current(kind, sequence, generation):
                if self._driver_ready is not None and self._driver_ready.is_set():
                    logger.warning(f"Драйвер недоступен, опрос приостановлен: {e}")
                    self._driver_ready.clear()
                self._report(e)
            return
        except ShadowListError as e:
            if self._is_current(kind, sequence, generation):
                self._report(e)
            return
        except Exception as e:
            logger.error(f"Непредвиденная ошибка в проходе '{kind}': {e}", exc_info=True)
            if self._is_current(kind, sequence, generation):
                self._report(e)
            return

        if not self._is_current(kind, sequence, generation):
            logger.debug(f"Результат устаревшего прохода '{kind}' #{sequence} отброшен.")
            return
        deliver(result)

    def _is_current(self, kind: str, sequence: int, generation: int) -> bool:
        return generation == self._generation and sequence == self._sequence[kind]

    def _report(self, error: Exception) -> None:
        if self.on_error is not None:
            self.on_error(error)
        else:
            logger.warning(f"Ошибка опроса: {error}")
