# /flowcore/commands/llm.py

"""
Flow command module `llm`.

answer: chats over retrieved documents. Reads `documents` (or `context`),
    `question` (defaults to the query), `prompt` / `prompt_<lang>`, `model`
    ({name, model_overrides} or a name), `session_id`, `auto_summary` and
    `matchers_for_reference_links`. Signals NOKNOWLEDGE when no documents
    were found.
prompt: sends a single prompt through SimpleLLM and returns the raw answer.
"""

import copy
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from flowcore.config.settings import settings
from flowcore.models.api import ChatRequest, Reason
from flowcore.models.chat import ChatMessage
from flowcore.models.retrieval import REFERENCELINK_KEY
from flowcore.services.chat_service import chat_service
from flowcore.services.language_service import language_detector
from flowcore.services.model_registry import ModelNotFoundError
from flowcore.services.prompt_service import load_prompt
from flowcore.services.quota_service import quota_service
from flowcore.services.simplellm_service import simple_llm
from flowcore.workflows.bindings import render_template
from flowcore.workflows.definitions import app_loader

logger = logging.getLogger(__name__)

DOCCHAT_PROMPT = "docchat_prompt.txt"


def _model_spec(params: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    model = params.get("model")
    if isinstance(model, dict):
        return model.get("name") or settings.default_docchat_model, model.get("model_overrides") or {}
    return model or settings.default_docchat_model, {}


def _as_documents(raw: Any) -> List[Dict[str, Any]]:
    if isinstance(raw, str):
        return [{"text": raw, "metadata": {}}] if raw.strip() else []
    return [doc if isinstance(doc, dict) else {"text": str(doc), "metadata": {}} for doc in (raw or [])]


def rewrite_reference_link(metadata: Dict[str, Any], matchers: Optional[List[str]]) -> Dict[str, Any]:
    metadata = copy.deepcopy(metadata)
    link = metadata.get(REFERENCELINK_KEY)
    if not matchers or not link:
        return metadata
    for matcher in matchers:
        match = re.search(matcher, link)
        if match:
            metadata[REFERENCELINK_KEY] = "/".join(group for group in match.groups() if group is not None)
    return metadata


async def answer(params: Dict[str, Any], step=None) -> Optional[Dict[str, Any]]:
    id, org, aiappid = params["id"], params["org"], params["aiappid"]
    return_error = params["return_error"]

    app = await app_loader.get_app(id, org, aiappid)
    if not app.disable_quota_checks and not await quota_service.check_quota(id, org):
        return_error(f"Disallowing the doc chat call, as the user {id} of org {org} is over their quota.", Reason.LIMIT)
        return None

    documents = _as_documents(params.get("documents") or params.get("context"))
    if not documents:
        return_error("No knowledge of this topic.", Reason.NOKNOWLEDGE)
        return None

    model_name, overrides = _model_spec(params)
    try:
        model = await app_loader.get_model(model_name, overrides, id, org, aiappid)
    except ModelNotFoundError as e:
        return_error(f"Bad AI model {model_name}: {e}", Reason.BAD_MODEL)
        return None

    question = params.get("question") or params.get("query") or ""
    lang = language_detector.detect(question)
    documents_for_prompt, metadatas = [], []
    for index, document in enumerate(documents, start=1):
        documents_for_prompt.append({"content": document.get("text", ""), "document_index": index})
        metadatas.append(rewrite_reference_link(document.get("metadata") or {}, params.get("matchers_for_reference_links")))

    template = params.get(f"prompt_{lang}") or params.get("prompt") or await load_prompt(DOCCHAT_PROMPT)
    context = {key: value for key, value in params.items() if key != "return_error"}
    knowledge_prompt = render_template(template, {**context, "documents": documents_for_prompt, "question": question})

    request = ChatRequest(
        id=id,
        org=org,
        session=[ChatMessage(role=model.user_role, content=knowledge_prompt)],
        session_id=params.get("session_id"),
        maintain_session=True,
        auto_chat_summary_enabled=bool(params.get("auto_summary")),
        raw_question=question,
        aiappid=aiappid,
    )
    response = await chat_service.chat(request, model=model, check_quota=False)
    if not response.ok:
        return_error(response.error or "The AI model call failed.", response.reason)
        return None
    return {"response": response.response, "session_id": response.session_id, "metadatas": metadatas}


async def prompt(params: Dict[str, Any], step=None) -> Optional[Any]:
    result = await simple_llm.prompt_answer(
        params.get("prompt") or params.get("query") or "",
        params.get("id"),
        params.get("data"),
        params.get("model"),
        params.get("org"),
    )
    if result is None:
        params["return_error"]("The AI model call failed.", Reason.INTERNAL)
    return result
