# src/main.py
"""
Главная точка входа и "лаунчер" для приложения ShadowList.

Задачи этого файла:
1.  Проверить совместимость окружения (ОС, версия Python).
2.  Настроить "аварийное" логирование на случай сбоев при импорте.
3.  Определить базовые пути для работы приложения, учитывая,
    запущено оно из исходников или как собранный .exe (PyInstaller).
4.  Передать управление основному модулю приложения.
"""
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Dict, List, NoReturn, Optional
import multiprocessing

# --- 1. Константы и флаги ---

IS_FROZEN = getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')
MIN_PYTHON_VERSION = (3, 10)


# --- 2. Функции проверки и аварийного логирования ---

def _show_critical_error_message(title: str, message: str) -> None:
    print(f"Критическая ошибка: {title}\n{message}", file=sys.stderr)

def check_environment() -> None:
    """Проверяет, подходит ли текущее окружение для запуска."""
    if sys.platform != "win32":
        _show_critical_error_message(
            "Ошибка совместимости",
            "ShadowList работает только в Windows с установленным драйвером NVIDIA."
        )
        sys.exit(1)

    if sys.version_info < MIN_PYTHON_VERSION:
        error_msg = (f"Требуется Python версии {'.'.join(map(str, MIN_PYTHON_VERSION))} или выше.\n"
                     f"Ваша версия: {sys.version.split(' ')[0]}")
        _show_critical_error_message("Ошибка версии Python", error_msg)
        sys.exit(1)

def emergency_log(error_message: str) -> None:
    """
    Записывает критическую ошибку в файл, если основной логгер еще не работает.
    """
    try:
        log_dir = Path.home() / ".shadowlist"
        log_dir.mkdir(exist_ok=True)

        log_file = log_dir / "shadowlist_crash.log"
        with log_file.open("a", encoding="utf-8") as f:
            f.write(f"--- CRASH AT {datetime.now().strftime('%Y-%m-%d %H:%M:%S')} ---\n")
            f.write(error_message + "\n\n")
    except Exception as e:
        print(f"Не удалось записать аварийный лог: {e}", file=sys.stderr)
        print(f"Оригинальная ошибка:\n{error_message}", file=sys.stderr)


# --- 3. Основная функция-лаунчер ---

def run_app(argv: Optional[List[str]] = None) -> NoReturn:
    """
    Главная функция-лаунчер.
    Настраивает окружение и передает управление основному приложению.
    """
    check_environment()

    app_paths: Dict[str, Path]

    try:
        if IS_FROZEN:
            # Режим .exe: логи и конфигурация рядом с исполняемым файлом
            base_path = Path(sys._MEIPASS)
            app_dir = Path(sys.executable).parent
        else:
            # Режим разработки: base_path -> .../src
            base_path = Path(__file__).parent.resolve()
            app_dir = base_path.parent

        if not IS_FROZEN:
            src_root = str(base_path.parent)
            if src_root not in sys.path:
                sys.path.insert(0, src_root)

        from src.shadowlist.application import main as app_main

        app_paths = {
            "base": base_path,
            "logs": app_dir / 'logs',
            "config": app_dir / 'config.yaml',
        }

        sys.exit(app_main(app_paths, argv))

    except Exception:
        full_error_message = f"Критическая ошибка на этапе запуска:\n{traceback.format_exc()}"
        emergency_log(full_error_message)
        _show_critical_error_message(
            "Критическая ошибка запуска",
            "Не удалось запустить приложение из-за непредвиденной ошибки.\n\n"
            "Подробности были записаны в файл 'shadowlist_crash.log' в папке .shadowlist вашей домашней директории."
        )
        sys.exit(1)

if __name__ == "__main__":
    multiprocessing.freeze_support()
    run_app()
