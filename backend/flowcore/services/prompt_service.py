# /flowcore/services/prompt_service.py

import asyncio
import logging
import os
from typing import Dict

from flowcore.config.settings import settings

logger = logging.getLogger(__name__)

_BUNDLED_PROMPTS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "prompts")

_prompts: Dict[str, str] = {}


def _read_prompt(name: str) -> str:
    for directory in (settings.prompts_dir, _BUNDLED_PROMPTS_DIR):
        path = os.path.join(directory, name)
        if os.path.isfile(path):
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
    raise FileNotFoundError(f"Prompt {name} not found")


async def load_prompt(name: str) -> str:
    """Reads a prompt template off the event loop, preferring the configured prompts dir over the bundled ones."""
    if name not in _prompts or settings.debug_mode:
        _prompts[name] = await asyncio.to_thread(_read_prompt, name)
        logger.debug(f"Prompt {name} loaded.")
    return _prompts[name]


def clear_prompts():
    _prompts.clear()
