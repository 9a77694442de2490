# backend/tests/conftest.py
import os

import pytest
from dotenv import load_dotenv
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

# Load test settings before any flowcore import builds the settings object.
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env.test"))

from flowcore.main import app  # noqa: E402
from flowcore.models.llm import ModelConfig  # noqa: E402
from flowcore.services.knowledge_service import knowledge_service  # noqa: E402
from flowcore.services.model_registry import ModelRegistry  # noqa: E402
from flowcore.services.session_store import MemorySessionStore  # noqa: E402
from flowcore.workflows.definitions import AppDefinitionLoader  # noqa: E402
from flowcore.workflows.engine import FlowEngine  # noqa: E402
from flowcore.workflows.registry import CommandRegistry  # noqa: E402


CHAT_MODEL = {
    "endpoint": "https://models.test/v1/chat/completions",
    "request": {"model": "test-model", "max_tokens": 4096},
    "request_contentpath": "messages",
    "token_approximation_uplift": 1.0,
    "retry": {"max_retries": 2, "base_wait_seconds": 0.5, "exponent": 2},
}


@pytest.fixture
def command_registry():
    return CommandRegistry()


@pytest.fixture
def model_registry():
    registry = ModelRegistry(None)
    registry.register("test-chat", CHAT_MODEL)
    return registry


@pytest.fixture
def loader(tmp_path, command_registry, model_registry):
    """An app loader over an empty temporary apps directory."""
    return AppDefinitionLoader(str(tmp_path), "_default", command_registry, model_registry)


@pytest.fixture
def flow_engine(loader):
    return FlowEngine(loader)


@pytest.fixture
def memory_store():
    return MemorySessionStore()


@pytest.fixture
def chat_model():
    return ModelConfig.model_validate({**CHAT_MODEL, "name": "test-chat"})


@pytest.fixture
def clean_knowledge():
    knowledge_service.clear()
    yield knowledge_service
    knowledge_service.clear()


@pytest.fixture(scope="function")
def test_client(mocker):
    """
    Provides a TestClient for API integration tests.
    The shared HTTP client is never opened, so closing it on shutdown is mocked.
    """
    mocker.patch("flowcore.utils.lifecycle.model_client.close", new_callable=AsyncMock)
    with TestClient(app) as client:
        yield client
