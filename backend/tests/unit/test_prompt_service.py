# backend/tests/unit/test_prompt_service.py
import pytest

from flowcore.config.settings import settings
from flowcore.services import prompt_service
from flowcore.services.prompt_service import clear_prompts, load_prompt


@pytest.fixture(autouse=True)
def fresh_prompts():
    clear_prompts()
    yield
    clear_prompts()


@pytest.mark.asyncio
async def test_prompts_are_read_off_the_event_loop_and_cached(mocker, tmp_path):
    mocker.patch.object(settings, "prompts_dir", str(tmp_path))
    mocker.patch.object(settings, "debug_mode", False)
    to_thread = mocker.spy(prompt_service.asyncio, "to_thread")

    first = await load_prompt("docchat_prompt.txt")
    second = await load_prompt("docchat_prompt.txt")

    assert first == second
    assert first
    assert to_thread.call_count == 1
    assert to_thread.call_args.args[1] == "docchat_prompt.txt"


@pytest.mark.asyncio
async def test_configured_prompts_dir_wins_over_bundled(mocker, tmp_path):
    (tmp_path / "docchat_prompt.txt").write_text("Custom prompt {{ query }}", encoding="utf-8")
    mocker.patch.object(settings, "prompts_dir", str(tmp_path))
    mocker.patch.object(settings, "debug_mode", False)

    assert await load_prompt("docchat_prompt.txt") == "Custom prompt {{ query }}"


@pytest.mark.asyncio
async def test_debug_mode_rereads_prompts(mocker, tmp_path):
    prompt_file = tmp_path / "custom.txt"
    prompt_file.write_text("v1", encoding="utf-8")
    mocker.patch.object(settings, "prompts_dir", str(tmp_path))
    mocker.patch.object(settings, "debug_mode", True)

    assert await load_prompt("custom.txt") == "v1"
    prompt_file.write_text("v2", encoding="utf-8")
    assert await load_prompt("custom.txt") == "v2"


@pytest.mark.asyncio
async def test_missing_prompt_raises(mocker, tmp_path):
    mocker.patch.object(settings, "prompts_dir", str(tmp_path))

    with pytest.raises(FileNotFoundError):
        await load_prompt("nope.txt")
