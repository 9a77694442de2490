# /flowcore/services/model_registry.py

import copy
import logging
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from flowcore.config.settings import settings
from flowcore.models.llm import ModelConfig

# Named model definitions loaded from a YAML registry, with override merging.

logger = logging.getLogger(__name__)


class ModelNotFoundError(Exception):
    """The requested model is unknown or its definition is invalid."""


def deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ModelRegistry:
    def __init__(self, models_file: Optional[str] = None):
        self.models_file = models_file
        self._models: Dict[str, Dict[str, Any]] = {}
        self._loaded = False

    def _load(self):
        if self._loaded:
            return
        self._loaded = True
        if not self.models_file or not os.path.exists(self.models_file):
            logger.warning(f"Model registry file {self.models_file} not found, starting with no file-defined models.")
            return
        with open(self.models_file, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        for name, definition in (raw.get("models") or raw).items():
            self._models.setdefault(name, {**(definition or {}), "name": name})
        logger.info(f"Loaded {len(self._models)} model definitions from {self.models_file}.")

    def register(self, name: str, definition: Dict[str, Any]):
        self._load()
        self._models[name] = {**definition, "name": name}

    def get_model(self, name: str, overrides: Optional[Dict[str, Any]] = None) -> ModelConfig:
        self._load()
        if name not in self._models:
            raise ModelNotFoundError(f"Model '{name}' is not defined")
        try:
            return ModelConfig.model_validate(deep_merge(self._models[name], overrides or {}))
        except ValidationError as e:
            raise ModelNotFoundError(f"Model '{name}' has an invalid definition: {e}") from e


# Globally accessible instance
model_registry = ModelRegistry(settings.models_file)
