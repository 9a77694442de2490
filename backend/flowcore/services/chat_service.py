# /flowcore/services/chat_service.py

import logging
import re
import time
from typing import Any, Dict, List, NamedTuple, Optional, Union

from flowcore.config.settings import settings
from flowcore.models.api import ChatRequest, ChatResponse, Reason
from flowcore.models.chat import ChatMessage, ChatSession
from flowcore.models.llm import ModelConfig
from flowcore.services.crypt_service import CredentialError, resolve_api_key
from flowcore.services.llm_service import ModelClient, count_model_tokens, model_client
from flowcore.services.model_registry import ModelNotFoundError
from flowcore.services.prompt_service import load_prompt
from flowcore.services.quota_service import QuotaService, quota_service
from flowcore.services.session_store import SessionStore, session_store
from flowcore.workflows.definitions import AppDefinitionLoader, app_loader

# Chat sessions: history lookup, token-budget trimming and append-only updates.

logger = logging.getLogger(__name__)

CHAT_SESSION_KEY_PREFIX = "flowcore_chatsession"
DEFAULT_MAX_MEMORY_TOKENS = 1000
PROMPT_WITH_AUTO_SUMMARY = "chat_prompt_auto_summary.txt"
PROMPT_NO_SUMMARY = "chat_prompt_no_summary.txt"

_SUMMARY_RE = re.compile(r'\{"*user"*:\s*"*(.*?)"*,\s*"*ai"*:\s*"*(.*?)"*\}', re.DOTALL)


class SessionHandle(NamedTuple):
    history: List[Dict[str, Any]]
    session_id: str
    storage_key: str


def new_session_id() -> str:
    return str(int(time.time() * 1000))


def unmarshal_summary(response: str, user_prompt: str, auto_summary: bool):
    """Splits an auto-summarised response into (answer, user summary, answer summary)."""
    if not auto_summary:
        return response, user_prompt, response
    match = _SUMMARY_RE.search(response.strip())
    if not match:
        logger.error(f"Can't parse chat summaries out of the response, storing the full conversation. The response is {response}")
        return response, user_prompt, response
    return _SUMMARY_RE.sub("", response).strip(), match.group(1).strip(), match.group(2).strip()


class ChatService:
    def __init__(self, store: SessionStore, client: ModelClient, loader: AppDefinitionLoader, quota: QuotaService):
        self.store = store
        self.client = client
        self.loader = loader
        self.quota = quota

    @staticmethod
    def storage_key(user_id: str, session_id: str) -> str:
        # Keyed per (user, session); a write never touches another session.
        return f"{CHAT_SESSION_KEY_PREFIX}_{user_id}_{session_id}"

    async def get_session(self, user_id: str, session_id: Optional[str] = None) -> SessionHandle:
        session_id = str(session_id) if session_id else new_session_id()
        key = self.storage_key(user_id, session_id)
        stored = await self.store.get(key, None) or {}
        return SessionHandle(list(stored.get("messages", [])), session_id, key)

    @staticmethod
    def trim(max_tokens: int, messages: List[Dict[str, Any]], model: ModelConfig) -> List[Dict[str, Any]]:
        """Keeps the newest messages whose estimated tokens fit in max_tokens, oldest first."""
        tokens_so_far = 0
        trimmed: List[Dict[str, Any]] = []
        for message in reversed(messages):
            tokens_so_far += count_model_tokens(str(message["content"]), model)
            if tokens_so_far > max_tokens:
                break
            trimmed.insert(0, message)
        return trimmed

    def trim_for_request(self, messages: List[Dict[str, Any]], model: ModelConfig) -> List[Dict[str, Any]]:
        if not messages:
            return []
        trimmed = self.trim(model.max_memory_tokens or DEFAULT_MAX_MEMORY_TOKENS, messages, model)
        # Never send a request with empty context.
        return trimmed or [messages[-1]]

    async def append(self, handle: SessionHandle, user_message: Dict[str, Any], assistant_message: Dict[str, Any]):
        stored = ChatSession.model_validate(await self.store.get(handle.storage_key, None) or {"session_id": handle.session_id})
        stored.messages.extend([ChatMessage.model_validate(user_message), ChatMessage.model_validate(assistant_message)])
        stored.last_update = time.time()
        await self.store.set(handle.storage_key, stored.model_dump())
        logger.debug(f"Chat session {handle.session_id} saved under {handle.storage_key}.")

    async def chat(self, request: Union[ChatRequest, Dict[str, Any]], model: Optional[ModelConfig] = None, check_quota: bool = True) -> ChatResponse:
        if isinstance(request, dict):
            try:
                request = ChatRequest.model_validate(request)
            except ValueError as e:
                logger.error(f"Chat request validation failure: {e}")
                return ChatResponse(ok=False, reason=Reason.VALIDATION, error="Invalid chat request")
        if not (request.id and request.org and request.session):
            logger.error("Chat request validation failure.")
            return ChatResponse(ok=False, reason=Reason.VALIDATION, error="Invalid chat request")

        if check_quota and not await self.quota.check_quota(request.id, request.org):
            logger.error(f"Disallowing the LLM chat call, as the user {request.id} is over their quota.")
            return ChatResponse(ok=False, reason=Reason.LIMIT, error="Quota exceeded")

        model_name = model.name if model else (request.model or settings.default_chat_model)
        try:
            if model is None:
                model = await self.loader.get_model(model_name, None, request.id, request.org, request.aiappid)
            api_key = resolve_api_key(model.ai_key)
        except (ModelNotFoundError, CredentialError) as e:
            logger.error(f"Bad AI model {model_name}: {e}")
            return ChatResponse(ok=False, reason=Reason.BAD_MODEL, error=f"Bad AI model {model_name}")
        except Exception as e:
            logger.error(f"Error resolving AI model {model_name}: {e}")
            return ChatResponse(ok=False, reason=Reason.INTERNAL, error=f"Error resolving AI model {model_name}")

        handle = await self.get_session(request.id, request.session_id)
        incoming = [message.model_dump() for message in request.session]
        final_session = self.trim_for_request(handle.history + incoming, model)

        prompt = await load_prompt(PROMPT_WITH_AUTO_SUMMARY if request.auto_chat_summary_enabled else PROMPT_NO_SUMMARY)
        data = {"session": final_session, "system_role": model.system_role, "system_message": model.system_message}
        response = await self.client.process(data, prompt, api_key, model)
        if response is None:
            logger.error(f"AI library error processing chat request for user {request.id}.")
            return ChatResponse(ok=False, reason=Reason.INTERNAL, session_id=handle.session_id, error="AI model call failed")

        await self.quota.log_usage(request.id, response.metric_cost, model.name)
        ai_response, prompt_summary, response_summary = unmarshal_summary(
            str(response.airesponse), request.raw_question or incoming[-1]["content"], request.auto_chat_summary_enabled
        )
        if request.maintain_session:
            await self.append(
                handle,
                {"role": model.user_role, "content": prompt_summary},
                {"role": model.assistant_role, "content": response_summary},
            )
        return ChatResponse(ok=True, response=ai_response, reason=Reason.OK, session_id=handle.session_id)


# Globally accessible instance
chat_service = ChatService(session_store, model_client, app_loader, quota_service)
