# /flowcore/routes/llmflow.py

import logging
from fastapi import APIRouter

from flowcore.models.api import AnswerRequest, ChatRequest, ChatResponse, FlowResult
from flowcore.services.chat_service import chat_service
from flowcore.workflows import engine

logger = logging.getLogger(__name__)

# Both endpoints always answer 200 with an ok flag and a reason; failures are
# outcomes of the flow, not transport errors.

router = APIRouter(prefix="/llmflow", tags=["LLM Flow"])


@router.post("/answer", response_model=FlowResult)
async def answer(payload: AnswerRequest) -> FlowResult:
    """Runs the named flow of an AI app for the query."""
    logger.info(f"Flow {payload.flow} requested for app {payload.aiappid} by {payload.id} of org {payload.org}.")
    return await engine.answer(payload.query, payload.id, payload.org, payload.aiappid, payload.request, payload.flow)


@router.post("/chat", response_model=ChatResponse)
async def chat(payload: ChatRequest) -> ChatResponse:
    return await chat_service.chat(payload)
