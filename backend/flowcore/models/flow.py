# /flowcore/models/flow.py

from dataclasses import dataclass
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, model_validator

# Declarative flow definitions. Binding kinds are decided here, when a flow is
# parsed, so execution never inspects key suffixes.

DEFAULT_OUT = "lastStepOutput"
CONDITION_KEY = "condition"

RAW_SUFFIXES = ("noinflate",)
EXPRESSION_SUFFIXES = ("expr", "js")
SPECIAL_KEY_SUFFIXES = RAW_SUFFIXES + EXPRESSION_SUFFIXES


class Binding:
    """Base type for step input values."""
    __slots__ = ()


@dataclass(frozen=True)
class LiteralBinding(Binding):
    value: Any


@dataclass(frozen=True)
class TemplateBinding(Binding):
    source: str


@dataclass(frozen=True)
class StructuredBinding(Binding):
    value: Any


@dataclass(frozen=True)
class RawBinding(Binding):
    value: Any


@dataclass(frozen=True)
class ExpressionBinding(Binding):
    source: str


def _key_suffix(key: str) -> Optional[str]:
    if "_" not in key:
        return None
    return key.rsplit("_", 1)[1]


def extract_raw_key_name(key: str) -> str:
    """Strips a recognised suffix token from key; other underscores are kept."""
    if _key_suffix(key) in SPECIAL_KEY_SUFFIXES:
        return key.rsplit("_", 1)[0]
    return key


def parse_binding(key: str, value: Any) -> Binding:
    suffix = _key_suffix(key)
    if suffix in RAW_SUFFIXES:
        return RawBinding(value)
    if suffix in EXPRESSION_SUFFIXES:
        return ExpressionBinding(str(value))
    if isinstance(value, (dict, list)):
        return StructuredBinding(value)
    if isinstance(value, str):
        return TemplateBinding(value)
    return LiteralBinding(value)


class Step(BaseModel):
    """
    One flow step. `inputs` maps de-suffixed parameter names to parsed bindings;
    keys the engine does not know about stay available as extra fields so
    commands can read their own step-level settings.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, populate_by_name=True, extra="allow")

    command: str
    inputs: Dict[str, Binding] = Field(default_factory=dict, alias="in")
    out: str = DEFAULT_OUT
    condition: Optional[Binding] = None

    @model_validator(mode="before")
    @classmethod
    def parse_bindings(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw_inputs = data.pop("in", None)
        if raw_inputs is None:
            raw_inputs = data.pop("inputs", None) or {}
        if not isinstance(raw_inputs, dict):
            raise ValueError("Step 'in' must be a mapping")
        data["inputs"] = {
            extract_raw_key_name(key): value if isinstance(value, Binding) else parse_binding(key, value)
            for key, value in raw_inputs.items()
        }
        for key in [k for k in data if extract_raw_key_name(k) == CONDITION_KEY]:
            value = data.pop(key)
            data[CONDITION_KEY] = value if isinstance(value, Binding) else parse_binding(key, value)
        if data.get("out") is None:
            data.pop("out", None)
        return data

    @property
    def module_name(self) -> str:
        return self.command.split(".", 1)[0]

    @property
    def function_name(self) -> Optional[str]:
        parts = self.command.split(".", 1)
        return parts[1] if len(parts) > 1 and parts[1] else None


class FlowDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    steps: List[Step] = Field(default_factory=list)

    @classmethod
    def parse(cls, name: str, raw_steps: Any) -> "FlowDefinition":
        if raw_steps is None:
            raw_steps = []
        if not isinstance(raw_steps, list):
            raise ValueError(f"Flow '{name}' must be a list of steps")
        return cls(name=name, steps=[Step.model_validate(step) for step in raw_steps])
