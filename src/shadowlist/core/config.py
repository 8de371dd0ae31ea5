# src/shadowlist/core/config.py
"""
Резервная (fallback) конфигурация ядра и ее загрузка из YAML.

Значения по умолчанию используются, если файл конфигурации отсутствует
или в нем нет соответствующего ключа. Путь к файлу задается переменной
окружения SHADOWLIST_CONFIG или аргументом командной строки.
"""
import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

# ===================================================================
# Резервная конфигурация движка сопоставления
# ===================================================================
DEFAULT_ENGINE_CONFIG: Dict[str, Any] = {
    # Периоды опроса (секунды): фокус - быстрый, полный список - медленный
    "focus_interval": 1.0,
    "process_interval": 10.0,

    # Предельное время одного вызова ОС или драйвера
    "call_timeout": 5.0,

    # Сколько живет снимок хранилища профилей и результат проверки NVAPI
    "snapshot_ttl": 2.0,
    "gate_cache_ttl": 10.0,

    # Процессы оболочки Windows, которые не показываются в списке
    "excluded_processes": [
        "explorer.exe",
        "searchhost.exe",
        "shellexperiencehost.exe",
        "startmenuexperiencehost.exe",
        "textinputhost.exe",
        "applicationframehost.exe",
        "systemsettings.exe",
        "runtimebroker.exe",
        "dwm.exe",
        "csrss.exe",
        "winlogon.exe",
        "services.exe",
        "lsass.exe",
        "svchost.exe",
    ],
}


def load_engine_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Возвращает конфигурацию движка: значения по умолчанию, поверх которых
    наложены ключи из YAML-файла (если он задан и существует).

    Raises:
        yaml.YAMLError: Файл существует, но не является словарем YAML.
    """
    config = copy.deepcopy(DEFAULT_ENGINE_CONFIG)
    if config_path is None:
        return config

    if not config_path.is_file():
        logger.warning(f"Файл конфигурации не найден: {config_path}. Используются значения по умолчанию.")
        return config

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"Файл {config_path.name} должен содержать словарь.")

    unknown_keys = set(data) - set(DEFAULT_ENGINE_CONFIG)
    if unknown_keys:
        logger.warning(f"Неизвестные ключи конфигурации будут проигнорированы: {sorted(unknown_keys)}")

    for key in DEFAULT_ENGINE_CONFIG:
        if key in data:
            config[key] = data[key]

    logger.info(f"Конфигурация загружена из {config_path}.")
    return config
