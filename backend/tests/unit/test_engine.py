# backend/tests/unit/test_engine.py
import pytest
import yaml

from flowcore.models.api import Reason


class RecordingCommands:
    """A command module that records the params of every call."""

    def __init__(self):
        self.calls = []

    async def echo(self, params, step):
        self.calls.append(("echo", params))
        return params.get("value")

    async def fail(self, params, step):
        self.calls.append(("fail", params))
        params["return_error"]("No documents matched.", Reason.NOKNOWLEDGE)

    async def explode(self, params, step):
        self.calls.append(("explode", params))
        raise RuntimeError("boom")

    def sync_echo(self, params, step):
        self.calls.append(("sync_echo", params))
        return params.get("value")

    async def answer(self, params, step):
        self.calls.append(("answer", params))
        return "default entry"


@pytest.fixture
def commands(command_registry):
    module = RecordingCommands()
    command_registry.register("rec", module)
    return module


def run(flow_engine, query="refund policy", request=None):
    return flow_engine.execute(query, "user1", "org1", "app1", request)


@pytest.mark.asyncio
async def test_flow_stops_at_first_error(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value": "one"}},
        {"command": "rec.fail"},
        {"command": "rec.echo", "in": {"value": "three"}},
    ]})

    result = await run(flow_engine)

    assert result.ok is False
    assert result.reason == Reason.NOKNOWLEDGE
    assert result.error == "No documents matched."
    assert [name for name, _ in commands.calls] == ["echo", "fail"]


@pytest.mark.asyncio
async def test_airesponse_is_returned(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value": "Q: {{ query }}"}, "out": "airesponse"},
    ]})

    result = await run(flow_engine)

    assert result.ok is True
    assert result.reason == Reason.OK
    assert result.response == "Q: refund policy"


@pytest.mark.asyncio
@pytest.mark.parametrize("flag", [False, 0, ""])
async def test_falsy_condition_skips_step(flow_engine, loader, commands, flag):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value": "skipped"}, "condition": "{{ request.flag }}", "out": "airesponse"},
        {"command": "rec.echo", "in": {"value": "gated"}, "condition_js": "request.flag"},
    ]})

    result = await run(flow_engine, request={"flag": flag})

    assert result.ok is True
    assert result.response is None
    assert commands.calls == []


@pytest.mark.asyncio
async def test_truthy_or_missing_condition_runs_step(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value": "a"}, "condition": "{{ request.flag }}"},
        {"command": "rec.echo", "in": {"value": "b"}},
    ]})

    result = await run(flow_engine, request={"flag": True})

    assert result.ok is True
    assert [params["value"] for _, params in commands.calls] == ["a", "b"]


@pytest.mark.asyncio
async def test_failing_condition_expression_skips_step(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value": "a"}, "condition_js": "1 / 0"},
    ]})

    result = await run(flow_engine)

    assert result.ok is True
    assert commands.calls == []


@pytest.mark.asyncio
async def test_failing_input_expression_is_internal_error(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value_js": "1 / 0"}},
    ]})

    result = await run(flow_engine)

    assert result.ok is False
    assert result.reason == Reason.INTERNAL
    assert commands.calls == []


@pytest.mark.asyncio
async def test_raw_binding_is_passed_unexpanded(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value_noinflate": "{{ query }}"}, "out": "airesponse"},
    ]})

    result = await run(flow_engine)

    assert result.response == "{{ query }}"


@pytest.mark.asyncio
async def test_outputs_feed_later_steps(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value": ["doc-1", "doc-2"]}, "out": "results.documents"},
        {"command": "rec.echo", "in": {"value_js": "results.documents | length"}, "out": "count"},
        {"command": "rec.echo", "in": {"value": "{{ count }} documents"}, "out": "airesponse"},
    ]})

    result = await run(flow_engine)

    assert result.response == "2 documents"


@pytest.mark.asyncio
async def test_default_output_is_last_step_output(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value": "first"}},
        {"command": "rec.echo", "in": {"value": "{{ lastStepOutput }} then second"}, "out": "airesponse"},
    ]})

    result = await run(flow_engine)

    assert result.response == "first then second"


@pytest.mark.asyncio
async def test_command_exception_is_internal_error(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.explode"},
        {"command": "rec.echo", "in": {"value": "never"}},
    ]})

    result = await run(flow_engine)

    assert result.ok is False
    assert result.reason == Reason.INTERNAL
    assert "boom" in result.error
    assert [name for name, _ in commands.calls] == ["explode"]


@pytest.mark.asyncio
async def test_sync_commands_and_default_entry_function(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.sync_echo", "in": {"value": "sync"}, "out": "first"},
        {"command": "rec", "out": "airesponse"},
    ]})

    result = await run(flow_engine)

    assert result.ok is True
    assert result.response == "default entry"


@pytest.mark.asyncio
async def test_commands_receive_request_identity(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [{"command": "rec.echo"}]})

    await run(flow_engine, request={"channel": "web"})

    params = commands.calls[0][1]
    assert (params["id"], params["org"], params["aiappid"]) == ("user1", "org1", "app1")
    assert params["query"] == "refund policy"
    assert params["request"] == {"channel": "web"}
    assert callable(params["return_error"])


@pytest.mark.asyncio
@pytest.mark.parametrize("command", ["missing.run", "rec._private", "rec.nothing"])
async def test_unknown_commands_are_internal_errors(flow_engine, loader, commands, command):
    loader.register_app("org1", "app1", {"llm_flow": [{"command": command}]})

    result = await run(flow_engine)

    assert result.ok is False
    assert result.reason == Reason.INTERNAL


@pytest.mark.asyncio
async def test_unknown_app_is_internal_error(flow_engine):
    result = await flow_engine.execute("hi", "user1", "org1", "nope")

    assert result.ok is False
    assert result.reason == Reason.INTERNAL


@pytest.mark.asyncio
async def test_app_loaded_from_default_org_directory(tmp_path, flow_engine, commands):
    app_dir = tmp_path / "_default" / "faq"
    app_dir.mkdir(parents=True)
    (app_dir / "faq.yaml").write_text(yaml.safe_dump({"llm_flow": "flows/answer.yaml"}))
    (app_dir / "flows").mkdir()
    (app_dir / "flows" / "answer.yaml").write_text(yaml.safe_dump([
        {"command": "rec.echo", "in": {"value": "from disk: {{ org }}"}, "out": "airesponse"},
    ]))

    result = await flow_engine.execute("hi", "user1", "acme", "faq")

    assert result.ok is True
    assert result.response == "from disk: acme"


@pytest.mark.asyncio
async def test_app_modules_override_builtins(tmp_path, flow_engine, loader):
    app_dir = tmp_path / "org1" / "custom"
    app_dir.mkdir(parents=True)
    (app_dir / "helpers.py").write_text(
        "async def answer(params, step):\n"
        "    return 'custom ' + params['query']\n"
    )
    loader.register_app("org1", "custom", {
        "modules": {"llm": "helpers.py"},
        "llm_flow": [{"command": "llm", "out": "airesponse"}],
    }, app_dir=str(app_dir))

    result = await flow_engine.execute("question", "user1", "org1", "custom")

    assert result.response == "custom question"


@pytest.mark.asyncio
async def test_named_flow_section(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {
        "llm_flow": [],
        "pregen_flow": [{"command": "rec.echo", "in": {"value": "pre"}, "out": "airesponse"}],
    })

    result = await flow_engine.execute("q", "user1", "org1", "app1", None, "pregen_flow")

    assert result.response == "pre"


@pytest.mark.asyncio
async def test_command_modules_resolve_through_the_registry(loader, command_registry, commands):
    loader.register_app("org1", "app1", {"llm_flow": []})

    assert await loader.get_command_module("user1", "org1", "app1", "rec") is commands
    assert "retrieve" in command_registry.names() and "llm" in command_registry.names()

    command_registry.unregister("rec")

    assert await loader.get_command_module("user1", "org1", "app1", "rec") is None


@pytest.mark.asyncio
async def test_condition_template_runtime_error_skips_step(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value": "a"}, "condition": "{{ 1 + 'a' }}"},
        {"command": "rec.echo", "in": {"value": "b"}, "out": "airesponse"},
    ]})

    result = await run(flow_engine)

    assert result.ok is True
    assert result.response == "b"
    assert [params["value"] for _, params in commands.calls] == ["b"]


@pytest.mark.asyncio
async def test_expression_source_runtime_error_is_internal_error(flow_engine, loader, commands):
    loader.register_app("org1", "app1", {"llm_flow": [
        {"command": "rec.echo", "in": {"value_expr": "{{ 1 + 'a' }}"}},
    ]})

    result = await run(flow_engine)

    assert result.ok is False
    assert result.reason == Reason.INTERNAL
    assert commands.calls == []
