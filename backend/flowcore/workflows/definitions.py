# /flowcore/workflows/definitions.py

"""
AI application and flow definition loading.

Apps live at `<aiapps_dir>/<org>/<aiappid>/<aiappid>.yaml`, falling back to the
default org. Parsed apps and flow sections are cached and shared read-only
between requests; `clear_cache()` drops them wholesale. Debug mode bypasses
the caches so edits are picked up on the next request.
"""

import asyncio
import importlib
import importlib.util
import json
import logging
import os
from typing import Any, Callable, Dict, Optional, Tuple

import yaml
from pydantic import ValidationError

from flowcore.config.settings import settings
from flowcore.models.aiapp import AIApp
from flowcore.models.flow import FlowDefinition
from flowcore.models.llm import ModelConfig
from flowcore.services.model_registry import ModelRegistry, deep_merge, model_registry
from flowcore.workflows.registry import CommandRegistry, command_registry

logger = logging.getLogger(__name__)


class FlowLoadError(Exception):
    """An app or one of its flow sections could not be found or parsed."""


def _read_definition_file(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        if path.lower().endswith((".yaml", ".yml")):
            return yaml.safe_load(f)
        return json.load(f)


class AppDefinitionLoader:
    def __init__(
        self,
        aiapps_dir: str,
        default_org: str,
        registry: CommandRegistry,
        models: ModelRegistry,
        debug_mode: bool = False,
    ):
        self.aiapps_dir = aiapps_dir
        self.default_org = default_org
        self.registry = registry
        self.models = models
        self.debug_mode = debug_mode
        self._registered: Dict[Tuple[str, str], AIApp] = {}
        self._app_cache: Dict[Tuple[str, str], AIApp] = {}
        self._flow_cache: Dict[Tuple[str, str, str, str], FlowDefinition] = {}
        self._module_cache: Dict[Tuple[str, str, str], Any] = {}

    def register_app(self, org: str, aiappid: str, definition: Dict[str, Any], app_dir: Optional[str] = None) -> AIApp:
        """Registers an app held in memory rather than on disk."""
        app = AIApp.model_validate({**definition, "id": aiappid, "org": org, "app_dir": app_dir})
        self._registered[(org, aiappid)] = app
        self._drop_app_entries(org, aiappid)
        return app

    def clear_cache(self):
        self._app_cache = {}
        self._flow_cache = {}
        self._module_cache = {}
        logger.info("AI app definition caches cleared.")

    def _drop_app_entries(self, org: str, aiappid: str):
        self._app_cache.pop((org, aiappid), None)
        self._flow_cache = {k: v for k, v in self._flow_cache.items() if (k[1], k[2]) != (org, aiappid)}
        self._module_cache = {k: v for k, v in self._module_cache.items() if (k[0], k[1]) != (org, aiappid)}

    def app_dir(self, org: str, aiappid: str) -> str:
        org_dir = os.path.join(self.aiapps_dir, org, aiappid)
        if os.path.isdir(org_dir):
            return org_dir
        return os.path.join(self.aiapps_dir, self.default_org, aiappid)

    async def get_app(self, id: str, org: str, aiappid: str) -> AIApp:
        key = (org, aiappid)
        if key in self._registered:
            return self._registered[key]
        if key in self._app_cache and not self.debug_mode:
            return self._app_cache[key]

        app_dir = self.app_dir(org, aiappid)
        app_file = os.path.join(app_dir, f"{aiappid}.yaml")
        try:
            raw = await asyncio.to_thread(_read_definition_file, app_file)
            app = AIApp.model_validate({**(raw or {}), "id": aiappid, "org": org, "app_dir": app_dir})
        except (OSError, yaml.YAMLError, ValueError, ValidationError) as e:
            raise FlowLoadError(f"Error loading AI app {aiappid} for org {org}: {e}") from e
        self._app_cache[key] = app
        logger.debug(f"Loaded AI app {aiappid} for org {org} from {app_file}.")
        return app

    async def get_flow(self, id: str, org: str, aiappid: str, flow_name: str) -> FlowDefinition:
        cache_key = (id, org, aiappid, flow_name)
        if cache_key in self._flow_cache and not self.debug_mode:
            return self._flow_cache[cache_key]

        app = await self.get_app(id, org, aiappid)
        section = app.flow_section(flow_name)
        try:
            if isinstance(section, str):
                if not app.app_dir:
                    raise FlowLoadError(f"Flow {flow_name} of app {aiappid} points to a file but the app has no directory")
                section = await asyncio.to_thread(_read_definition_file, os.path.join(app.app_dir, section))
            flow = FlowDefinition.parse(flow_name, section)
        except (OSError, yaml.YAMLError, ValueError, ValidationError) as e:
            raise FlowLoadError(f"Error parsing flow {flow_name} of app {aiappid}: {e}") from e
        self._flow_cache[cache_key] = flow
        return flow

    def _load_app_module(self, app: AIApp, command: str) -> Any:
        cache_key = (app.org, app.id, command)
        if cache_key in self._module_cache and not self.debug_mode:
            return self._module_cache[cache_key]

        target = app.modules[command]
        if target.endswith(".py"):
            path = os.path.join(app.app_dir or "", target)
            spec = importlib.util.spec_from_file_location(f"flowcore_aiapp_{app.org}_{app.id}_{command}", path)
            if spec is None or spec.loader is None:
                raise ImportError(f"Cannot load command module {path}")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        else:
            module = importlib.import_module(target)
        self._module_cache[cache_key] = module
        return module

    def resolve_module(self, app: AIApp, command: str) -> Any:
        """The app's own module map wins over the built-in registry."""
        if command in app.modules:
            return self._load_app_module(app, command)
        return self.registry.get(command)

    async def get_command_module(self, id: str, org: str, aiappid: str, command: str) -> Any:
        app = await self.get_app(id, org, aiappid)
        return self.resolve_module(app, command)

    def requirer(self, app: AIApp) -> Callable[[str], Any]:
        def require(name: str) -> Any:
            module = self.resolve_module(app, name)
            if module is None:
                raise LookupError(f"Unknown command module '{name}'")
            return module
        return require

    async def get_model(
        self,
        model_name: str,
        model_overrides: Optional[Dict[str, Any]] = None,
        id: Optional[str] = None,
        org: Optional[str] = None,
        aiappid: Optional[str] = None,
    ) -> ModelConfig:
        """Resolves a model with the app's global overrides under the caller's own."""
        global_overrides: Dict[str, Any] = {}
        if id and org and aiappid:
            app = await self.get_app(id, org, aiappid)
            global_overrides = app.overrides_for(model_name)
        return self.models.get_model(model_name, deep_merge(global_overrides, model_overrides or {}))


# Globally accessible instance
app_loader = AppDefinitionLoader(
    settings.aiapps_dir, settings.default_org, command_registry, model_registry, settings.debug_mode
)
