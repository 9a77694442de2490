# /flowcore/workflows/registry.py

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from flowcore.models.flow import Step

# Lookup table of built-in command modules. A command module is any object
# whose attributes are async functions taking (call_params, step).

logger = logging.getLogger(__name__)

CommandFunction = Callable[[Dict[str, Any], Step], Awaitable[Any]]


class CommandRegistry:
    def __init__(self):
        self._modules: Dict[str, Any] = {}
        self._builtins_loaded = False

    def _load_builtins(self):
        if self._builtins_loaded:
            return
        self._builtins_loaded = True
        from flowcore.commands import llm, retrieve

        self._modules.setdefault("retrieve", retrieve)
        self._modules.setdefault("llm", llm)
        logger.debug(f"Built-in commands registered: {sorted(self._modules)}")

    def register(self, name: str, module: Any):
        self._load_builtins()
        self._modules[name] = module

    def unregister(self, name: str):
        self._modules.pop(name, None)

    def get(self, name: str) -> Optional[Any]:
        self._load_builtins()
        return self._modules.get(name)

    def names(self) -> List[str]:
        self._load_builtins()
        return sorted(self._modules)


def resolve_function(module: Any, function_name: str) -> Optional[CommandFunction]:
    if module is None or function_name.startswith("_"):
        return None
    function = getattr(module, function_name, None)
    if function is None or inspect.isclass(function) or not callable(function):
        return None
    return function


# Globally accessible instance
command_registry = CommandRegistry()
