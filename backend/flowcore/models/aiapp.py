# /flowcore/models/aiapp.py

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_LLM_FLOW = "llm_flow"
DEFAULT_ENTRY_FUNCTIONS = {"llm_flow": "answer", "pregen_flow": "generate"}


class GlobalModel(BaseModel):
    name: str
    model_overrides: Dict[str, Any] = Field(default_factory=dict)


class AIApp(BaseModel):
    """
    An AI application definition. Flow sections are either inline step lists
    or paths (relative to the app directory) of YAML/JSON files holding them.
    """
    model_config = ConfigDict(extra="allow")

    id: str
    org: str
    app_dir: Optional[str] = None
    llm_flow: Any = None
    pregen_flow: Any = None
    modules: Dict[str, str] = Field(default_factory=dict)
    global_models: List[GlobalModel] = Field(default_factory=list)
    disable_quota_checks: bool = False

    def flow_section(self, name: str) -> Any:
        if name in ("llm_flow", "pregen_flow"):
            return getattr(self, name)
        return (self.model_extra or {}).get(name)

    def overrides_for(self, model_name: str) -> Dict[str, Any]:
        for global_model in self.global_models:
            if global_model.name == model_name:
                return global_model.model_overrides
        return {}
