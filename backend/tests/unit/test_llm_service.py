# backend/tests/unit/test_llm_service.py
import asyncio
import json

import httpx
import pytest

from flowcore.config.settings import settings
from flowcore.models.llm import ModelConfig
from flowcore.services.llm_service import (
    ModelClient,
    build_request,
    count_tokens,
    is_effectively_2xx,
)

ENDPOINT = "https://models.test/v1/chat/completions"


def ok_body(content="Refunds are accepted within 30 days.", finish_reason="stop"):
    return {"choices": [{"message": {"content": content}, "finish_reason": finish_reason}], "usage": {"total_tokens": 42}}


def make_model(**overrides):
    definition = {
        "name": "test-model",
        "endpoint": ENDPOINT,
        "request": {"model": "m", "max_tokens": 1000, "messages": [{"role": "user", "content": "${__PROMPT__}"}]},
        "token_approximation_uplift": 1.0,
        "response_finishreason": "choices[0].finish_reason",
        "response_cost_of_query_path": "usage.total_tokens",
        "retry": {"max_retries": 5, "base_wait_seconds": 1.0, "exponent": 2.0, "timeout_seconds": 5},
    }
    definition.update(overrides)
    return ModelConfig.model_validate(definition)


class ScriptedEndpoint:
    """Answers each POST with the next scripted response; the last one repeats."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    async def __call__(self, request: httpx.Request):
        self.requests.append(request)
        response = self.responses[min(len(self.requests), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return await response(request)
        status, body = response
        return httpx.Response(status, json=body)


def make_client(endpoint):
    waits = []

    async def record_sleep(seconds):
        waits.append(seconds)

    client = ModelClient(httpx.AsyncClient(transport=httpx.MockTransport(endpoint)), sleep=record_sleep)
    return client, waits


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 3])
async def test_retries_until_success_with_growing_waits(failures):
    endpoint = ScriptedEndpoint(*([(503, {})] * failures), (200, ok_body()))
    client, waits = make_client(endpoint)

    result = await client.process(None, "What is the refund policy?", "key", make_model())

    assert result.airesponse == "Refunds are accepted within 30 days."
    assert result.metric_cost == 42
    assert len(endpoint.requests) == failures + 1
    assert len(waits) == failures
    for attempt, wait in enumerate(waits, start=2):
        assert wait >= 1.0 * 2.0 ** (attempt - 2)
        assert wait < 2 * 1.0 * 2.0 ** (attempt - 2)


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    endpoint = ScriptedEndpoint((429, {}))
    client, waits = make_client(endpoint)

    result = await client.process(None, "hello", None, make_model(retry={"max_retries": 2, "base_wait_seconds": 0.1}))

    assert result is None
    assert len(endpoint.requests) == 3
    assert len(waits) == 2


@pytest.mark.asyncio
async def test_non_retryable_status_fails_immediately():
    endpoint = ScriptedEndpoint((400, {"error": "bad request"}))
    client, waits = make_client(endpoint)

    assert await client.process(None, "hello", None, make_model()) is None
    assert len(endpoint.requests) == 1
    assert waits == []


@pytest.mark.asyncio
async def test_wildcard_retry_statuses():
    endpoint = ScriptedEndpoint((418, {}), (200, ok_body("ok")))
    client, _ = make_client(endpoint)

    result = await client.process(None, "hello", None, make_model(retry={"retry_statuses": ["*"], "base_wait_seconds": 0}))

    assert result.airesponse == "ok"


@pytest.mark.asyncio
async def test_transport_errors_are_retried():
    endpoint = ScriptedEndpoint(httpx.ConnectError("connection refused"), (200, ok_body("back")))
    client, waits = make_client(endpoint)

    result = await client.process(None, "hello", None, make_model())

    assert result.airesponse == "back"
    assert len(waits) == 1


@pytest.mark.asyncio
async def test_attempt_timeouts_are_retried():
    async def slow(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json=ok_body("late"))

    endpoint = ScriptedEndpoint(slow, (200, ok_body("fast")))
    client, waits = make_client(endpoint)
    model = make_model(retry={"timeout_seconds": 0.05, "base_wait_seconds": 0})

    result = await client.process(None, "hello", None, model)

    assert result.airesponse == "fast"
    assert len(endpoint.requests) == 2


@pytest.mark.asyncio
async def test_prompt_too_large_fails_fast():
    endpoint = ScriptedEndpoint((200, ok_body()))
    client, _ = make_client(endpoint)
    model = make_model(request={"max_tokens": 10, "messages": "${__PROMPT__}"})

    assert await client.process(None, "x" * 200, None, model) is None
    assert endpoint.requests == []


@pytest.mark.asyncio
async def test_bad_finish_reason_is_a_failure_without_retry():
    endpoint = ScriptedEndpoint((200, ok_body(finish_reason="length")))
    client, waits = make_client(endpoint)

    assert await client.process(None, "hello", None, make_model()) is None
    assert len(endpoint.requests) == 1
    assert waits == []


@pytest.mark.asyncio
async def test_missing_content_is_a_failure():
    endpoint = ScriptedEndpoint((200, {"choices": []}))
    client, _ = make_client(endpoint)

    assert await client.process(None, "hello", None, make_model()) is None


@pytest.mark.asyncio
async def test_request_carries_rendered_prompt_budget_and_key():
    endpoint = ScriptedEndpoint((200, ok_body()))
    client, _ = make_client(endpoint)

    await client.process({"topic": "refunds"}, "Tell me about {{ topic }}", "secret", make_model())

    sent = endpoint.requests[0]
    body = json.loads(sent.content)
    assert sent.headers["Authorization"] == "Bearer secret"
    assert body["messages"][0]["content"] == "Tell me about refunds"
    # "Tell me about refunds" is 21 characters, so 6 tokens at uplift 1.0.
    assert body["max_tokens"] == 1000 - 6


@pytest.mark.asyncio
async def test_sample_responses_skip_the_network(tmp_path, mocker):
    (tmp_path / "sample.json").write_text(json.dumps(ok_body("from sample")))
    mocker.patch.object(settings, "samples_dir", str(tmp_path))
    endpoint = ScriptedEndpoint((500, {}))
    client, _ = make_client(endpoint)

    result = await client.process(None, "hello", None, make_model(read_ai_response_from_samples=True, sample_ai_response="sample.json"))

    assert result.airesponse == "from sample"
    assert endpoint.requests == []


def test_build_request_with_content_path():
    model = make_model(request={"max_tokens": 100}, request_contentpath="messages")
    prompt = json.dumps([{"role": "user", "content": "hi"}])

    request = build_request(prompt, model, 90)

    assert request == {"max_tokens": 90, "messages": [{"role": "user", "content": "hi"}]}
    assert model.request == {"max_tokens": 100}


@pytest.mark.parametrize("status, expected", [
    (200, True), (204, True), (250, True), (299, True),
    (199, False), (300, False), (404, False), (500, False),
])
def test_is_effectively_2xx(status, expected):
    assert is_effectively_2xx(status) is expected


def test_count_tokens_approximation():
    assert count_tokens("a" * 80, uplift=1.0) == 20
    assert count_tokens("a" * 80, uplift=1.5) == 30
    assert count_tokens("a" * 81, uplift=1.0) == 21


def test_count_tokens_ideographs_count_per_character():
    assert count_tokens("今日は良い天気", uplift=1.0) == 7


def test_count_tokens_with_unknown_tokenizer_falls_back():
    assert count_tokens("a" * 40, uplift=1.0, tokenizer="no-such-encoding") == 10
