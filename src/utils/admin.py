# src/utils/admin.py
import ctypes
import subprocess
import sys
import logging

logger = logging.getLogger(__name__)

def check_admin_rights() -> bool:
    """Проверяет, запущено ли приложение с правами администратора (нужны для сохранения настроек драйвера)."""
    try:
        return ctypes.windll.shell32.IsUserAnAdmin() != 0
    except AttributeError:
        # На системах, отличных от Windows, или в тестовых окружениях
        return False

def relaunch_as_admin() -> None:
    """Перезапускает текущую команду CLI с правами администратора через UAC."""
    logger.info("Отправлен запрос на перезапуск с правами администратора.")
    params = subprocess.list2cmdline([arg for arg in sys.argv if arg != "--elevate"])
    try:
        ctypes.windll.shell32.ShellExecuteW(None, "runas", sys.executable, params, None, 1)
    except Exception as e:
        logger.error(f"Не удалось перезапустить с правами администратора: {e}")
