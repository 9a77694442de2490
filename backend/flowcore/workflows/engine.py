# /flowcore/workflows/engine.py

"""
Flow execution engine.

Runs the ordered steps of an AI app's flow for one request:
- evaluates each step's condition and skips the step when it is falsy
- expands the step's input bindings against working memory
- resolves and awaits the step's command
- writes the command's result into working memory at the step's `out` path
- stops at the first recorded error

Working memory lives for one request only. The engine never raises to its
caller and never retries; retries belong to the model client.
"""

import inspect
import json
import logging
from functools import partial
from typing import Any, Dict, Optional, Union

from flowcore.models.aiapp import DEFAULT_ENTRY_FUNCTIONS, DEFAULT_LLM_FLOW
from flowcore.models.api import FlowResult, Reason
from flowcore.models.flow import Step
from flowcore.utils.metrics import flow_results_counter, flow_steps_counter
from flowcore.utils.objpath import set_path
from flowcore.workflows.bindings import ExpressionError, Requirer, expand_binding, is_truthy
from flowcore.workflows.definitions import AppDefinitionLoader, app_loader
from flowcore.workflows.registry import resolve_function

logger = logging.getLogger(__name__)

ERROR_KEY = "__error"
ERROR_MESSAGE_KEY = "__error_message"
ERROR_REASON_KEY = "__error_reason"
RESPONSE_KEY = "airesponse"


def _as_reason(reason: Union[Reason, str, None]) -> Reason:
    if isinstance(reason, Reason):
        return reason
    try:
        return Reason(str(reason).upper())
    except ValueError:
        return Reason.INTERNAL


def record_error(memory: Dict[str, Any], message: str, reason: Union[Reason, str, None] = Reason.INTERNAL):
    """The error-signal callback handed to commands as `return_error`."""
    memory[ERROR_KEY] = True
    memory[ERROR_MESSAGE_KEY] = message
    memory[ERROR_REASON_KEY] = _as_reason(reason)
    logger.error(message)


def new_working_memory(query: str, id: str, org: str, aiappid: str, request: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    memory: Dict[str, Any] = {
        ERROR_KEY: False,
        ERROR_MESSAGE_KEY: "",
        ERROR_REASON_KEY: Reason.OK,
        "query": query,
        "queryJSON": json.dumps(query),
        "id": id,
        "org": org,
        "aiappid": aiappid,
        "request": request or {},
    }
    memory["return_error"] = partial(record_error, memory)
    return memory


class FlowEngine:
    def __init__(self, loader: AppDefinitionLoader):
        self.loader = loader

    async def execute(
        self,
        query: str,
        id: str,
        org: str,
        aiappid: str,
        request: Optional[Dict[str, Any]] = None,
        flow_name: str = DEFAULT_LLM_FLOW,
    ) -> FlowResult:
        try:
            result = await self._run(query, id, org, aiappid, request, flow_name)
        except Exception as e:
            logger.error(f"Unexpected error running flow {flow_name} of app {aiappid} for id {id} and org {org}: {e}", exc_info=True)
            result = FlowResult(ok=False, error=f"Unexpected error running flow {flow_name}", reason=Reason.INTERNAL)
        flow_results_counter.labels(reason=result.reason.value).inc()
        return result

    async def _run(self, query, id, org, aiappid, request, flow_name) -> FlowResult:
        memory = new_working_memory(query, id, org, aiappid, request)

        try:
            app = await self.loader.get_app(id, org, aiappid)
            flow = await self.loader.get_flow(id, org, aiappid, flow_name)
        except Exception as e:
            logger.error(f"Error loading flow {flow_name} of app {aiappid}: {e}")
            return FlowResult(ok=False, error=f"Error parsing app for {aiappid}", reason=Reason.INTERNAL)

        require = self.loader.requirer(app)
        default_function = DEFAULT_ENTRY_FUNCTIONS.get(flow_name, DEFAULT_ENTRY_FUNCTIONS[DEFAULT_LLM_FLOW])

        for step in flow.steps:
            if not await self._condition_allows(step, memory, require):
                logger.debug(f"Skipping step {step.command}, its condition is falsy.")
                flow_steps_counter.labels(command=step.command, status="skipped").inc()
                continue

            try:
                module = self.loader.resolve_module(app, step.module_name)
            except Exception as e:
                record_error(memory, f"Error loading command module {step.module_name} for app {aiappid}: {e}", Reason.INTERNAL)
                break
            function = resolve_function(module, step.function_name or default_function)
            if function is None:
                record_error(memory, f"Flow command {step.command} of app {aiappid} is not available", Reason.INTERNAL)
                break

            try:
                call_params = await self._call_params(step, memory, require)
            except ExpressionError as e:
                record_error(memory, f"Error expanding inputs of flow command {step.command}: {e}", Reason.INTERNAL)
                break

            try:
                output = function(call_params, step)
                if inspect.isawaitable(output):
                    output = await output
            except Exception as e:
                record_error(
                    memory,
                    f"Error running flow command {step.command} for id {id} and org {org} and ai app {aiappid}. The error is {e!r}",
                    Reason.INTERNAL,
                )
                logger.debug("Flow command traceback", exc_info=True)
                flow_steps_counter.labels(command=step.command, status="error").inc()
                break

            if memory[ERROR_KEY]:
                flow_steps_counter.labels(command=step.command, status="error").inc()
                break
            set_path(memory, step.out, output)
            flow_steps_counter.labels(command=step.command, status="success").inc()

        if memory[ERROR_KEY]:
            return FlowResult(ok=False, error=memory[ERROR_MESSAGE_KEY], reason=memory[ERROR_REASON_KEY])
        return FlowResult(ok=True, response=memory.get(RESPONSE_KEY), reason=Reason.OK)

    async def _condition_allows(self, step: Step, memory: Dict[str, Any], require: Requirer) -> bool:
        if step.condition is None:
            return True
        try:
            value = await expand_binding(step.condition, memory, require)
        except ExpressionError as e:
            logger.error(f"Error evaluating condition of step {step.command}: {e}")
            return False
        return is_truthy(step.condition, value)

    async def _call_params(self, step: Step, memory: Dict[str, Any], require: Requirer) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "id": memory["id"],
            "org": memory["org"],
            "query": memory["query"],
            "aiappid": memory["aiappid"],
            "request": memory["request"],
            "return_error": memory["return_error"],
        }
        for key, binding in step.inputs.items():
            params[key] = await expand_binding(binding, memory, require)
        return params


# Globally accessible instance
flow_engine = FlowEngine(app_loader)


async def answer(
    query: str,
    id: str,
    org: str,
    aiappid: str,
    request: Optional[Dict[str, Any]] = None,
    flow_name: str = DEFAULT_LLM_FLOW,
) -> FlowResult:
    """Public entry point: answers a query by running the app's flow. Never raises."""
    return await flow_engine.execute(query, id, org, aiappid, request, flow_name)
