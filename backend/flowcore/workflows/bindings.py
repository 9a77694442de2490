# /flowcore/workflows/bindings.py

"""
Expansion of step bindings against working memory.

Templates and expressions both run in a jinja2 sandbox: templates render with
`{{ name }}` placeholders, expressions are jinja expressions evaluated with the
working memory exposed as `working_memory` plus each of its keys, and a
`require(name)` helper that resolves whitelisted command modules.
"""

import inspect
import json
import logging
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from jinja2 import Template
from jinja2.sandbox import SandboxedEnvironment

from flowcore.models.flow import (
    Binding,
    ExpressionBinding,
    LiteralBinding,
    RawBinding,
    StructuredBinding,
    TemplateBinding,
)

logger = logging.getLogger(__name__)

Requirer = Callable[[str], Any]


class ExpressionError(Exception):
    """Raised when a template or expression cannot be rendered or evaluated."""


def _json_escape(value: Any) -> Any:
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    return json.dumps(text)[1:-1]


_env = SandboxedEnvironment(autoescape=False, keep_trailing_newline=True)
# Placeholders inside JSON structures must stay valid JSON string content.
_json_env = SandboxedEnvironment(autoescape=False, keep_trailing_newline=True, finalize=_json_escape)


@lru_cache(maxsize=512)
def _template(source: str) -> Template:
    return _env.from_string(source)


@lru_cache(maxsize=256)
def _json_template(source: str) -> Template:
    return _json_env.from_string(source)


@lru_cache(maxsize=256)
def _expression(source: str):
    return _env.compile_expression(source, undefined_to_none=True)


def _render_context(memory: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in memory.items() if isinstance(key, str)}


def render_template(source: str, memory: Dict[str, Any]) -> str:
    try:
        return _template(source).render(_render_context(memory))
    except Exception as e:
        raise ExpressionError(f"Error rendering template {source!r}: {e}") from e


def render_structured(value: Any, memory: Dict[str, Any]) -> Any:
    source = json.dumps(value, ensure_ascii=False)
    try:
        return json.loads(_json_template(source).render(_render_context(memory)))
    except Exception as e:
        raise ExpressionError(f"Error rendering structured binding {source!r}: {e}") from e


async def evaluate_expression(source: str, memory: Dict[str, Any], require: Optional[Requirer] = None) -> Any:
    code = render_template(source, memory)
    context = {**_render_context(memory), "working_memory": memory, "require": require or _no_modules}
    try:
        value = _expression(code)(**context)
        if inspect.isawaitable(value):
            value = await value
        return value
    except Exception as e:
        raise ExpressionError(f"Error evaluating expression {code!r}: {e}") from e


def _no_modules(name: str) -> Any:
    raise LookupError(f"Module '{name}' is not available to expressions")


async def expand_binding(binding: Binding, memory: Dict[str, Any], require: Optional[Requirer] = None) -> Any:
    """Expands one binding. Raises ExpressionError when rendering or evaluation fails."""
    if isinstance(binding, RawBinding):
        return binding.value
    if isinstance(binding, ExpressionBinding):
        return await evaluate_expression(binding.source, memory, require)
    if isinstance(binding, StructuredBinding):
        return render_structured(binding.value, memory)
    if isinstance(binding, TemplateBinding):
        return render_template(binding.source, memory)
    if isinstance(binding, LiteralBinding):
        return binding.value
    raise TypeError(f"Unknown binding type {type(binding).__name__}")


_FALSY_RENDERED = ("", "false", "0", "none", "null")


def is_truthy(binding: Binding, value: Any) -> bool:
    """Rendered templates are text, so their falsy spellings count as false."""
    if isinstance(binding, TemplateBinding) and isinstance(value, str):
        return value.strip().lower() not in _FALSY_RENDERED
    return bool(value)
