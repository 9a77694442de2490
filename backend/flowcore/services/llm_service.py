# /flowcore/services/llm_service.py

import asyncio
import copy
import json
import logging
import math
import os
import random
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import tenacity
import tiktoken

from flowcore.config.settings import settings
from flowcore.models.llm import ModelCallResult, ModelConfig
from flowcore.services.language_service import has_ideographs, segment_words
from flowcore.utils.metrics import ai_requests_counter, ai_retries_counter
from flowcore.utils.objpath import get_path, set_path
from flowcore.workflows.bindings import render_template

# Client for model endpoints described by ModelConfig: prompt rendering, token
# budgeting, resilient POSTs and response validation. Failures are reported by
# returning None, never by raising.

logger = logging.getLogger(__name__)

PROMPT_PLACEHOLDER = "${__PROMPT__}"
DEFAULT_UPLIFT = 1.05


class RetryableModelError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ModelRequestError(Exception):
    """A failed model call that must not be retried."""


def is_effectively_2xx(status: int) -> bool:
    # Same set as 200 <= status < 300. Kept in this form for gateways that send
    # nonstandard codes inside the 2xx block.
    return status // 200 == 1 and status % 200 < 100


class wait_jittered_exponential(tenacity.wait.wait_base):
    """Waits base * exponent**attempt * (1 + jitter), attempt counted from 0."""

    def __init__(self, base: float, exponent: float, jitter: Callable[[], float] = random.random):
        self.base = base
        self.exponent = exponent
        self.jitter = jitter

    def __call__(self, retry_state: tenacity.RetryCallState) -> float:
        attempt = retry_state.attempt_number - 1
        return self.base * (self.exponent ** attempt) * (1 + self.jitter())


@lru_cache(maxsize=8)
def _encoding(name: str):
    return tiktoken.get_encoding(name)


def count_tokens(text: str, uplift: float = DEFAULT_UPLIFT, tokenizer: Optional[str] = None) -> int:
    """
    Estimates the token count of text. Uses the named tiktoken encoding when one
    is configured, otherwise a character based approximation (a segment count
    for ideographic scripts). The uplift biases the estimate upwards.
    """
    count: Optional[float] = None
    if tokenizer:
        try:
            count = len(_encoding(tokenizer).encode(text))
        except Exception as e:
            logger.warning(f"Tokenizer {tokenizer} not usable, using approximate token estimation instead. The error is {e}.")
    if count is None:
        if has_ideographs(text):
            count = len(segment_words(text))
        else:
            count = len(text) / 4
    return math.ceil(count * uplift)


def count_model_tokens(text: str, model: ModelConfig) -> int:
    return count_tokens(text, model.token_approximation_uplift, model.tokenizer)


def _inject_prompt(value: Any, prompt: str) -> Any:
    if isinstance(value, str):
        return value.replace(PROMPT_PLACEHOLDER, prompt)
    if isinstance(value, dict):
        return {key: _inject_prompt(item, prompt) for key, item in value.items()}
    if isinstance(value, list):
        return [_inject_prompt(item, prompt) for item in value]
    return value


def build_request(prompt: str, model: ModelConfig, max_tokens: int) -> Dict[str, Any]:
    """Builds the transport payload; the prompt goes to request_contentpath or replaces the placeholder."""
    request = copy.deepcopy(model.request)
    request["max_tokens"] = max_tokens
    if model.request_contentpath:
        set_path(request, model.request_contentpath, json.loads(prompt))
        return request
    return _inject_prompt(request, prompt)


class ModelClient:
    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self._client = http_client
        self._sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Per-attempt deadlines are enforced with asyncio.wait_for.
            self._client = httpx.AsyncClient(timeout=None)
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def process(self, data: Optional[Dict[str, Any]], prompt: str, api_key: Optional[str], model: ModelConfig) -> Optional[ModelCallResult]:
        """
        Renders prompt with data (or uses it as-is when data is None), checks it
        fits the model's context and calls the model.

        Returns:
            ModelCallResult, or None on any failure.
        """
        try:
            return await self._process(data, prompt, api_key, model)
        except Exception as e:
            logger.error(f"Error calling model {model.name}: {e}", exc_info=True)
            ai_requests_counter.labels(model=model.name, status="error").inc()
            return None

    async def _process(self, data, prompt, api_key, model: ModelConfig) -> Optional[ModelCallResult]:
        text = (prompt if data is None else render_template(prompt, data)).replace("\r\n", "\n")

        tokens = count_model_tokens(text, model)
        if tokens > model.max_tokens - 1:
            logger.error(
                f"Request too large for the model's context length - the token count is {tokens}, "
                f"the model's max context length is {model.max_tokens}."
            )
            ai_requests_counter.labels(model=model.name, status="too_large").inc()
            return None

        payload = build_request(text, model, model.max_tokens - tokens)
        if model.read_ai_response_from_samples:
            logger.info(f"Reading sample response for model {model.name} as requested by the model.")
            response = await self._sample_response(model)
        else:
            response = await self._post(model, payload, api_key)
        if response is None:
            return None

        content = get_path(response, model.response_contentpath)
        if not content:
            logger.error(f"Response from model {model.name} is missing content at {model.response_contentpath}.")
            ai_requests_counter.labels(model=model.name, status="bad_response").inc()
            return None
        if model.response_finishreason:
            finish_reason = get_path(response, model.response_finishreason)
            if finish_reason not in model.response_ok_finish_reasons:
                logger.error(f"Response from model {model.name} didn't stop properly, finish reason was {finish_reason}.")
                ai_requests_counter.labels(model=model.name, status="bad_finish").inc()
                return None

        cost = get_path(response, model.response_cost_of_query_path) if model.response_cost_of_query_path else None
        ai_requests_counter.labels(model=model.name, status="success").inc()
        return ModelCallResult(airesponse=content, metric_cost=cost)

    async def _post(self, model: ModelConfig, payload: Dict[str, Any], api_key: Optional[str]) -> Optional[Dict[str, Any]]:
        if not model.endpoint:
            logger.error(f"Model {model.name} has no endpoint configured.")
            return None

        policy = model.retry
        headers = dict(model.headers)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        def log_retry(retry_state: tenacity.RetryCallState):
            ai_retries_counter.labels(model=model.name).inc()
            logger.warning(
                f"Model call to {model.name} failed on attempt {retry_state.attempt_number}: "
                f"{retry_state.outcome.exception()}. Retrying in {retry_state.next_action.sleep:.2f}s."
            )

        retrying = tenacity.AsyncRetrying(
            retry=tenacity.retry_if_exception_type(RetryableModelError),
            stop=tenacity.stop_after_attempt(policy.max_retries + 1),
            wait=wait_jittered_exponential(policy.base_wait_seconds, policy.exponent),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        response = None
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._attempt(model, payload, headers)
        except RetryableModelError as e:
            logger.error(f"Model call to {model.name} failed after {policy.max_retries + 1} attempts: {e}")
            ai_requests_counter.labels(model=model.name, status="retries_exhausted").inc()
            return None
        except ModelRequestError as e:
            logger.error(f"Model call to {model.name} failed: {e}")
            ai_requests_counter.labels(model=model.name, status="failed").inc()
            return None
        return response

    async def _attempt(self, model: ModelConfig, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        timeout = model.retry.timeout_seconds
        try:
            response = await asyncio.wait_for(self.client.post(model.endpoint, json=payload, headers=headers), timeout=timeout)
        except asyncio.TimeoutError:
            raise RetryableModelError(f"timed out after {timeout}s")
        except httpx.RequestError as e:
            raise RetryableModelError(f"transport error {e!r}")

        status = response.status_code
        if not is_effectively_2xx(status):
            if model.retry.is_retryable(status):
                raise RetryableModelError(f"status {status}", status)
            raise ModelRequestError(f"status {status}, response was {response.text[:500]}")
        try:
            return response.json()
        except ValueError as e:
            raise ModelRequestError(f"response was not JSON: {e}")

    async def _sample_response(self, model: ModelConfig) -> Optional[Dict[str, Any]]:
        if not model.sample_ai_response:
            logger.error(f"Model {model.name} reads sample responses but names no sample file.")
            return None
        path = os.path.join(settings.samples_dir, model.sample_ai_response)

        def read() -> Dict[str, Any]:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)

        try:
            return await asyncio.to_thread(read)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading sample response {path}: {e}")
            return None


# Globally accessible instance
model_client = ModelClient()
