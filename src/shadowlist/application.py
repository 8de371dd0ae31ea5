# src/shadowlist/application.py
"""
Основной модуль приложения ShadowList.
Содержит класс Application, который инкапсулирует всю логику запуска:
логирование, конфигурацию, сборку ядра и консольный интерфейс.
"""
import sys
import os
import json
import logging
import asyncio
import argparse
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

load_dotenv()

from src.shadowlist import APP_NAME, APP_VERSION
from src.shadowlist.core import CommandBridge, PollingSession, ReconciliationEngine
from src.shadowlist.core.config import load_engine_config
from src.shadowlist.core.models import FocusedApplication, ProcessView
from src.shadowlist.core.modules import DriverGate, FocusTracker, ProcessEnumerator, ProfileStore
from src.utils.admin import check_admin_rights, relaunch_as_admin

logger = logging.getLogger(__name__)

# Подкоманда CLI -> команда CommandBridge
CLI_COMMANDS: Dict[str, str] = {
    "status": "check_nvapi_status",
    "profiles": "get_profiles",
    "apps": "get_all_applications",
    "processes": "get_running_processes",
    "focus": "get_focus_application",
    "create": "create_profile",
    "blacklist": "blacklist_application",
    "unblacklist": "unblacklist_application",
    "reload": "reload_settings",
}

# Команды, которые записывают настройки драйвера
MUTATING_COMMANDS = {"create", "blacklist", "unblacklist"}


def build_engine(config: Dict[str, Any]) -> ReconciliationEngine:
    """Собирает движок из модулей ядра согласно конфигурации."""
    gate = DriverGate(cache_ttl=config["gate_cache_ttl"])
    # Ожидание блокировки хранилища не дольше лимита на один вызов
    store = ProfileStore(gate, snapshot_ttl=config["snapshot_ttl"], lock_timeout=config["call_timeout"])
    enumerator = ProcessEnumerator(excluded_processes=config["excluded_processes"])
    return ReconciliationEngine(gate, store, enumerator, FocusTracker(), config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shadowlist",
        description=f"{APP_NAME} v{APP_VERSION}: управление черным списком ShadowPlay в профилях драйвера NVIDIA.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Путь к config.yaml")
    parser.add_argument("--elevate", action="store_true",
                        help="Перезапуститься с правами администратора для команд записи")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Проверить доступность NVAPI")
    sub.add_parser("profiles", help="Список профилей драйвера")
    sub.add_parser("apps", help="Список приложений во всех профилях")
    sub.add_parser("processes", help="Запущенные приложения и их профили")
    sub.add_parser("focus", help="Приложение в фокусе")
    create = sub.add_parser("create", help="Создать профиль для исполняемого файла")
    create.add_argument("executable")
    create.add_argument("profile_name")
    for name, text in (("blacklist", "Отключить ShadowPlay для приложения"),
                       ("unblacklist", "Включить ShadowPlay для приложения")):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("executable")
    sub.add_parser("reload", help="Перечитать настройки драйвера")
    sub.add_parser("monitor", help="Следить за фокусом и списком процессов до Ctrl+C")
    return parser


class Application:
    """
    Класс, инкапсулирующий жизненный цикл приложения ShadowList.
    """
    def __init__(self, app_paths: Dict[str, Path]):
        self.app_paths = app_paths
        self.config: Dict[str, Any] = {}
        self.engine: Optional[ReconciliationEngine] = None
        self.bridge: Optional[CommandBridge] = None
        self.log_file_path: Optional[Path] = None
        self._last_focus: Optional[Tuple[int, Optional[bool]]] = None

        self._setup_exception_hook()

    def initialize(self, config_path: Optional[Path] = None) -> None:
        """Выполняет всю предварительную настройку приложения."""
        self._setup_logging()
        self._load_config(config_path)
        self._initialize_core()

    def exec(self, args: argparse.Namespace) -> int:
        """Выполняет подкоманду CLI и возвращает код завершения."""
        if args.command in MUTATING_COMMANDS and not check_admin_rights():
            if args.elevate:
                relaunch_as_admin()
                return 0
            logger.warning("Нет прав администратора: драйвер может отказать в сохранении настроек.")

        try:
            if args.command == "monitor":
                return asyncio.run(self._run_monitor())
            return asyncio.run(self._run_command(args))
        except KeyboardInterrupt:
            logger.info("Остановлено пользователем.")
            return 0
        finally:
            self.engine.close()

    def _setup_logging(self):
        log_dir = self.app_paths["logs"]
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file_path = log_dir / 'shadowlist.log'

        log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
        log_level = getattr(logging, log_level_str, logging.INFO)

        file_handler = RotatingFileHandler(self.log_file_path, maxBytes=5*1024*1024, backupCount=3, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] - %(message)s'))

        # stdout занят JSON-ответами команд, поэтому консольный лог идет в stderr
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        if root_logger.hasHandlers():
            root_logger.handlers.clear()
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)
        logger.info(f"Система логирования для {APP_NAME} v{APP_VERSION} инициализирована. Уровень: {log_level_str}")

    def _setup_exception_hook(self):
        self.original_hook = sys.excepthook
        sys.excepthook = self._handle_exception

    def _handle_exception(self, exc_type, exc, tb):
        if issubclass(exc_type, KeyboardInterrupt):
            self.original_hook(exc_type, exc, tb)
            return
        logger.critical("Перехвачено необработанное исключение:", exc_info=(exc_type, exc, tb))
        print(f"Произошла непредвиденная ошибка: {exc}\nПодробности в файле shadowlist.log.", file=sys.stderr)

    def _load_config(self, config_path: Optional[Path]):
        if config_path is None:
            env_path = os.getenv("SHADOWLIST_CONFIG")
            config_path = Path(env_path) if env_path else self.app_paths.get("config")
        try:
            self.config = load_engine_config(config_path)
        except yaml.YAMLError as e:
            logger.critical(f"Критическая ошибка: не удалось прочитать конфигурацию. {e}", exc_info=True)
            raise RuntimeError(f"Не удалось загрузить или прочитать файл конфигурации: {e}") from e

    def _initialize_core(self):
        logger.info("Инициализация ядра ShadowList...")
        self.engine = build_engine(self.config)
        self.bridge = CommandBridge(self.engine)

    # --- Подкоманды ---

    async def _run_command(self, args: argparse.Namespace) -> int:
        params = self._command_params(args)
        response = await self.bridge.invoke(CLI_COMMANDS[args.command], params)
        payload = response["data"] if response["ok"] else response["error"]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0 if response["ok"] else 1

    @staticmethod
    def _command_params(args: argparse.Namespace) -> Dict[str, Any]:
        if args.command == "create":
            return {"executable": args.executable, "profileName": args.profile_name}
        if args.command in ("blacklist", "unblacklist"):
            return {"executable": args.executable}
        return {}

    async def _run_monitor(self) -> int:
        status = await self.engine.check_status()
        if not status.available:
            logger.warning(f"NVAPI недоступен: {status.error}. Опрос будет ждать драйвер.")

        session = PollingSession(
            self.engine,
            on_focus=self._on_focus,
            on_processes=self._on_processes,
            on_error=self._on_error,
            focus_interval=self.config["focus_interval"],
            process_interval=self.config["process_interval"],
        )
        await session.start()
        try:
            # Работаем до Ctrl+C: asyncio.run отменит эту задачу
            await asyncio.Event().wait()
        finally:
            await session.stop()
        return 0

    def _on_focus(self, focused: Optional[FocusedApplication]):
        key = (focused.process_id, focused.blacklist.to_wire()) if focused else None
        if key == self._last_focus:
            return
        self._last_focus = key
        if focused is None:
            logger.info("Фокус: нет активного окна.")
            return
        logger.info(f"Фокус: {focused.process_name} (PID {focused.process_id}), "
                    f"профиль: {focused.profile_name or '-'}, состояние: {focused.blacklist.value}")

    def _on_processes(self, view: ProcessView):
        suffix = f" (устаревшие данные: {view.error})" if view.stale else ""
        logger.info(f"Приложений с окнами: {len(view.processes)}{suffix}")
        for proc in view.processes:
            logger.info(f"  {proc.process_name:<32} PID {proc.process_id:<7} "
                        f"{proc.profile_name or '-':<32} {proc.blacklist.value}")

    def _on_error(self, error: Exception):
        logger.warning(f"Ошибка опроса ({type(error).__name__}): {error}")


# --- Точка входа ---
def main(app_paths: Dict[str, Path], argv: Optional[List[str]] = None) -> int:
    """
    Создает и запускает экземпляр приложения.
    """
    args = build_parser().parse_args(argv)
    app_instance = Application(app_paths)
    app_instance.initialize(args.config)
    return app_instance.exec(args)
