# /flowcore/models/llm.py

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field, model_validator

from flowcore.config.settings import settings


class RetryPolicy(BaseModel):
    """
    Per-model retry policy. Unset fields take the service-wide model_* settings.
    A "*" entry in retry_statuses retries any failed status.
    """
    retry_statuses: List[Union[int, str]] = Field(default_factory=lambda: [408, 429, 500, 502, 503, 504])
    max_retries: int = Field(default_factory=lambda: settings.model_max_retries, ge=0)
    base_wait_seconds: float = Field(default_factory=lambda: settings.model_backoff_base_seconds, ge=0)
    exponent: float = Field(default_factory=lambda: settings.model_backoff_exponent, ge=1)
    timeout_seconds: float = Field(default_factory=lambda: settings.model_timeout_seconds, gt=0)

    def is_retryable(self, status: int) -> bool:
        return "*" in self.retry_statuses or status in self.retry_statuses or str(status) in self.retry_statuses


class ModelConfig(BaseModel):
    """
    A model driver definition. `request` is the transport request template;
    its `max_tokens` is the model's context size and is reduced by the prompt
    size before each call.
    """
    name: str
    endpoint: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    ai_key: Optional[str] = None
    request: Dict[str, Any] = Field(default_factory=dict)
    request_contentpath: Optional[str] = None
    response_contentpath: str = "choices[0].message.content"
    response_finishreason: Optional[str] = None
    response_ok_finish_reasons: List[str] = Field(default_factory=lambda: ["stop"])
    response_cost_of_query_path: Optional[str] = None
    tokenizer: Optional[str] = None
    token_approximation_uplift: float = 1.05
    max_memory_tokens: int = 1000
    system_role: str = "system"
    system_message: str = "You are a helpful assistant."
    user_role: str = "user"
    assistant_role: str = "assistant"
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    read_ai_response_from_samples: bool = False
    sample_ai_response: Optional[str] = None

    @model_validator(mode="after")
    def request_must_declare_context_size(self):
        if int(self.request.get("max_tokens") or 0) <= 0:
            raise ValueError(f"Model {self.name} must declare a positive request.max_tokens")
        return self

    @property
    def max_tokens(self) -> int:
        return int(self.request["max_tokens"])


class ModelCallResult(BaseModel):
    airesponse: Any
    metric_cost: Optional[float] = None
