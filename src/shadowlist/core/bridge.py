# src/shadowlist/core/bridge.py
"""
Граница запрос/ответ между ядром и внешним слоем (GUI, CLI).

Каждый ответ - помеченный словарь из простых данных:
    {"ok": True, "data": ...}
    {"ok": False, "error": {"kind": "<имя класса ошибки>", "message": "..."}}
Имена параметров приходят в camelCase и переводятся в snake_case.
"""
import logging
import re
from typing import Any, Callable, Awaitable, Dict, Optional, Tuple

from ..errors import InvalidRequest, ShadowListError
from .reconciler import ReconciliationEngine

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

# Команда -> обязательные параметры (в snake_case)
_COMMAND_PARAMS: Dict[str, Tuple[str, ...]] = {
    "get_profiles": (),
    "get_all_applications": (),
    "get_running_processes": (),
    "get_focus_application": (),
    "create_profile": ("executable", "profile_name"),
    "blacklist_application": ("executable",),
    "unblacklist_application": ("executable",),
    "check_nvapi_status": (),
    "reload_settings": (),
}


def to_snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def ok(data: Any = None) -> Dict[str, Any]:
    return {"ok": True, "data": data}


def failure(kind: str, message: str) -> Dict[str, Any]:
    return {"ok": False, "error": {"kind": kind, "message": message}}


class CommandBridge:
    """Принимает команды внешнего слоя и вызывает соответствующие операции движка."""

    def __init__(self, engine: ReconciliationEngine):
        self.engine = engine
        self._handlers: Dict[str, Callable[..., Awaitable[Any]]] = {
            "get_profiles": self._get_profiles,
            "get_all_applications": self._get_all_applications,
            "get_running_processes": self._get_running_processes,
            "get_focus_application": self._get_focus_application,
            "create_profile": self._create_profile,
            "blacklist_application": self._blacklist_application,
            "unblacklist_application": self._unblacklist_application,
            "check_nvapi_status": self._check_nvapi_status,
            "reload_settings": self._reload_settings,
        }

    @property
    def commands(self) -> Tuple[str, ...]:
        return tuple(_COMMAND_PARAMS)

    async def invoke(self, command: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Выполняет команду. Никогда не выбрасывает исключений ядра наружу."""
        try:
            kwargs = self._translate_params(command, params or {})
            data = await self._handlers[command](**kwargs)
            return ok(data)
        except ShadowListError as e:
            logger.error(f"Команда '{command}' завершилась ошибкой {type(e).__name__}: {e}")
            return failure(type(e).__name__, str(e))
        except Exception as e:
            logger.critical(f"Непредвиденная ошибка при выполнении команды '{command}': {e}", exc_info=True)
            return failure("InternalError", str(e))

    @staticmethod
    def _translate_params(command: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if command not in _COMMAND_PARAMS:
            raise InvalidRequest(f"Неизвестная команда: '{command}'")
        expected = _COMMAND_PARAMS[command]
        kwargs = {to_snake_case(key): value for key, value in params.items()}

        unexpected = sorted(set(kwargs) - set(expected))
        if unexpected:
            raise InvalidRequest(f"Неожиданные параметры для '{command}': {', '.join(unexpected)}")
        missing = [name for name in expected if name not in kwargs]
        if missing:
            raise InvalidRequest(f"Не хватает параметров для '{command}': {', '.join(missing)}")
        for name in expected:
            if not isinstance(kwargs[name], str):
                raise InvalidRequest(f"Параметр '{name}' должен быть строкой")
        return kwargs

    # --- Обработчики ---

    async def _get_profiles(self):
        return [p.to_dict() for p in await self.engine.get_profiles()]

    async def _get_all_applications(self):
        return [a.to_dict() for a in await self.engine.get_applications()]

    async def _get_running_processes(self):
        view = await self.engine.get_running_processes()
        if view.stale:
            logger.info(f"Отдано устаревшее представление процессов от {view.taken_at:%H:%M:%S}.")
        return [p.to_dict() for p in view.processes]

    async def _get_focus_application(self):
        focused = await self.engine.get_focus_application()
        return focused.to_dict() if focused else None

    async def _create_profile(self, executable: str, profile_name: str):
        await self.engine.create_profile(executable, profile_name)
        return None

    async def _blacklist_application(self, executable: str):
        return (await self.engine.set_blacklist(executable, True)).to_dict()

    async def _unblacklist_application(self, executable: str):
        return (await self.engine.set_blacklist(executable, False)).to_dict()

    async def _check_nvapi_status(self):
        return (await self.engine.check_status()).to_dict()

    async def _reload_settings(self):
        await self.engine.reload()
        return None
