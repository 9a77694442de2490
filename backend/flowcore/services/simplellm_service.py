# /flowcore/services/simplellm_service.py

import json
import logging
from typing import Any, Dict, Optional

from flowcore.config.settings import settings
from flowcore.services.crypt_service import CredentialError, resolve_api_key
from flowcore.services.llm_service import ModelClient, model_client
from flowcore.services.model_registry import ModelNotFoundError, ModelRegistry, model_registry
from flowcore.services.quota_service import QuotaService, quota_service
from flowcore.workflows.bindings import render_template

logger = logging.getLogger(__name__)


class SimpleLLM:
    """Sends a single system + user prompt to a model and returns the raw answer."""

    def __init__(self, client: ModelClient, models: ModelRegistry, quota: QuotaService):
        self.client = client
        self.models = models
        self.quota = quota

    async def prompt_answer(
        self,
        prompt: str,
        id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        model_name: Optional[str] = None,
        org: Optional[str] = None,
    ) -> Optional[Any]:
        """
        Renders prompt with data when data is given, otherwise sends it as-is.
        Returns None when the quota is exhausted, the model is unusable or the call fails.
        """
        if id and not await self.quota.check_quota(id, org):
            logger.error(f"SimpleLLM: Disallowing the LLM call, as the user {id} is over their quota.")
            return None

        model_name = model_name or settings.default_simple_model
        try:
            model = self.models.get_model(model_name)
            api_key = resolve_api_key(model.ai_key)
        except (ModelNotFoundError, CredentialError) as e:
            logger.error(f"SimpleLLM: Bad AI model {model_name}: {e}")
            return None

        text = render_template(prompt, data) if data is not None else prompt
        messages = json.dumps([
            {"role": model.system_role, "content": model.system_message},
            {"role": model.user_role, "content": text},
        ])
        response = await self.client.process(None, messages, api_key, model)
        if response is None:
            logger.error("SimpleLLM: LLM call returned no response.")
            return None

        if id:
            await self.quota.log_usage(id, response.metric_cost, model_name)
        return response.airesponse


# Globally accessible instance
simple_llm = SimpleLLM(model_client, model_registry, quota_service)
