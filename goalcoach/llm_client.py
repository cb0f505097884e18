# goalcoach/llm_client.py
import json
import logging
import random
import threading
import time
from typing import Any, Callable, Dict, Optional, TypeVar

import openai
from openai import OpenAI
from langchain_google_vertexai import ChatVertexAI
from langchain_core.messages import HumanMessage, SystemMessage

from goalcoach import settings
from goalcoach.errors import ShapeError, TransportError
from goalcoach.model_props import ModelProfile, render_instruction, request_params, resolve_model_profile

logger = logging.getLogger("goalcoach")

T = TypeVar("T")


# Global backoff state (shared across all gateways)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 30.0
_GLOBAL_BACKOFF_MAX = 600.0


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run a sync completion call with global 429/timeout backoff + retries.

    Only TransportError is retried; a ShapeError (or anything else) is raised
    on the spot. When every attempt fails the last TransportError is re-raised.
    """
    last_exception: TransportError | None = None

    def _needs_backoff(e: TransportError) -> bool:
        return e.timeout or e.status_code == 429

    def _respect_global_backoff() -> None:
        while True:
            with _global_backoff_lock:
                now = time.monotonic()
                wait = _global_wait_until - now
            if wait <= 0:
                return
            time.sleep(min(wait, 1.0))

    def _register_429_and_get_delay() -> float:
        global _global_wait_until, _global_backoff_seconds

        with _global_backoff_lock:
            now = time.monotonic()
            base = _global_backoff_seconds
            delay = random.uniform(base * 0.95, base * 1.35)
            _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
            _global_wait_until = max(_global_wait_until, now + delay)
            return delay

    def _reset_backoff_on_success() -> None:
        global _global_backoff_seconds
        with _global_backoff_lock:
            _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)

    for attempt in range(max(1, retries)):
        _respect_global_backoff()
        start_time = time.time()
        try:
            result = fn()
            _reset_backoff_on_success()
            return result
        except TransportError as e:
            elapsed = time.time() - start_time
            last_exception = e

            if _needs_backoff(e) and attempt + 1 < retries:
                delay = _register_429_and_get_delay()
                msg = f"Attempt {attempt+1} got 429/timeout, backing off ~{delay:.1f}s."
            else:
                msg = f"Attempt {attempt+1} failed."

            if log:
                log(f"{msg} (elapsed={elapsed:.2f}s): {e}")

    raise last_exception


class BaseLlmClient:
    """
    Token usage accounting, summed across every call made by one gateway.
    """

    last_usage: Optional[Dict[str, int]]

    def _add_usage(self, inc: Dict[str, int]) -> None:
        if self.last_usage is None:
            self.last_usage = dict(inc)
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def _merge_usage(self, resp: Any) -> None:
        usage = getattr(resp, "usage", None) if resp is not None else None
        if usage is None:
            return
        self._add_usage({
            "prompt_token_count": getattr(usage, "prompt_tokens", 0) or 0,
            "candidates_token_count": getattr(usage, "completion_tokens", 0) or 0,
            "total_token_count": getattr(usage, "total_tokens", 0) or 0,
        })

    def _merge_vertex_usage(self, usage_metadata: Any) -> None:
        if not usage_metadata:
            return

        def get(*keys: str) -> int:
            for k in keys:
                v = usage_metadata.get(k) if isinstance(usage_metadata, dict) else getattr(usage_metadata, k, None)
                if v:
                    return int(v)
            return 0

        self._add_usage({
            "prompt_token_count": get("prompt_token_count", "input_tokens"),
            "candidates_token_count": get("candidates_token_count", "output_tokens"),
            "total_token_count": get("total_token_count", "total_tokens"),
        })

    def get_accrued_usage(self) -> Dict[str, int]:
        return dict(self.last_usage or {})


class CompletionGateway(BaseLlmClient):
    """
    complete(service_tag, system_instruction, user_prompt) -> raw text

    Under the hood:
    - DeepSeek / OpenAI profiles: openai SDK chat.completions.create
      (model, [system, user], temperature, max_tokens)
    - Vertex profile: ChatVertexAI.invoke([SystemMessage, HumanMessage])

    Failures surface as TransportError (network / timeout / non-2xx) or
    ShapeError (no choices[0].message.content).
    """

    def __init__(
        self,
        model_name: str | None = None,
        *,
        timeout: float | None = None,
        retries: int | None = None,
        client: Any = None,
        vertex: Any = None,
    ):
        self.profile: ModelProfile = resolve_model_profile(model_name)
        self.model_name = self.profile.model_name
        self._timeout = settings.LLM_TIMEOUT if timeout is None else timeout
        self._retries = settings.LLM_RETRIES if retries is None else retries
        self._client = client
        self._vertex = vertex
        self.last_usage: Optional[Dict[str, int]] = None

    # -----------------------
    # Provider clients
    # -----------------------

    def _openai_client(self, profile: ModelProfile):
        if self._client is None:
            client_kwargs: Dict[str, Any] = {"max_retries": 0, "timeout": self._timeout}
            if profile.endpoint:
                # Accept both ".../v1" and the full ".../v1/chat/completions" URL.
                client_kwargs["base_url"] = profile.endpoint.removesuffix("/chat/completions")
            client_kwargs["api_key"] = profile.api_key() or "missing-api-key"
            self._client = OpenAI(**client_kwargs)
        return self._client

    def _vertex_client(self, profile: ModelProfile, params: Dict[str, Any]):
        if self._vertex is None:
            self._vertex = ChatVertexAI(
                project=profile.project,
                location=profile.region,
                model_name=profile.model_name,
                timeout=self._timeout,
                temperature=params["temperature"],
                max_output_tokens=params["max_tokens"],
            )
        return self._vertex

    # -----------------------
    # Calls
    # -----------------------

    def _complete_openai(self, profile: ModelProfile, system: str, user: str, params: Dict[str, Any]) -> str:
        client = self._openai_client(profile)
        try:
            resp = client.chat.completions.create(
                model=profile.model_name,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                **params,
            )
        except openai.APITimeoutError as e:
            raise TransportError(f"completion request timed out: {e}", timeout=True) from e
        except openai.APIConnectionError as e:
            raise TransportError(f"completion service unreachable: {e}") from e
        except openai.APIStatusError as e:
            raise TransportError(f"completion service returned {e.status_code}: {e}", status_code=e.status_code) from e

        self._merge_usage(resp)
        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise ShapeError("response is missing choices[0].message.content") from e
        if not content:
            raise ShapeError("response is missing choices[0].message.content")
        return content

    def _complete_vertex(self, profile: ModelProfile, system: str, user: str, params: Dict[str, Any]) -> str:
        chat = self._vertex_client(profile, params)
        try:
            resp = chat.invoke([SystemMessage(content=system), HumanMessage(content=user)])
        except TimeoutError as e:
            raise TransportError(f"completion request timed out: {e}", timeout=True) from e
        except Exception as e:
            code = getattr(e, "code", None)
            raise TransportError(
                f"vertex completion failed: {e}",
                status_code=code if isinstance(code, int) else None,
            ) from e

        usage_md = getattr(resp, "usage_metadata", None)
        if usage_md is None:
            rm = getattr(resp, "response_metadata", None)
            if isinstance(rm, dict):
                usage_md = rm.get("usage_metadata")
        self._merge_vertex_usage(usage_md)

        content = getattr(resp, "content", None)
        if isinstance(content, list):
            content = "".join(c if isinstance(c, str) else str(c.get("text", "")) for c in content)
        if not content:
            raise ShapeError("vertex response carries no text content")
        return content

    def complete(
        self,
        service_tag: str,
        system_instruction: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """
        Synchronous call with global 429/timeout backoff + retries.
        """
        profile = self.profile
        params = request_params(profile, temperature, max_tokens)
        system = render_instruction(profile, system_instruction)
        logger.info(f"[{service_tag}] completion request -> {profile.model_name} ({len(user_prompt)} chars)")

        if profile.provider == "vertex":
            fn = lambda: self._complete_vertex(profile, system, user_prompt, params)
        else:
            fn = lambda: self._complete_openai(profile, system, user_prompt, params)

        return call_with_retries_sync(
            fn,
            retries=self._retries,
            log=lambda msg: logger.warning(f"[LLM-RETRY][{service_tag}] {msg}"),
        )


class SimulatedGateway(BaseLlmClient):
    """
    Offline gateway: canned text per service tag. Used when GOALCOACH_SIMULATE
    is set, or when no API key is configured for the selected model.
    """

    model_name = "simulated"

    CANNED: Dict[str, str] = {
        "analyze-goal": json.dumps({
            "completeness": 0.6,
            "needsClarification": True,
            "insights": "Break the goal into small steps; a fixed weekly review keeps momentum.",
            "suggestedQuestions": [
                {
                    "text": "By when do you want to reach this goal?",
                    "type": "text",
                    "purpose": "Pin down the deadline",
                    "priority": 1,
                }
            ],
            "suggestedTasks": [
                {"title": "Write a detailed plan", "timeline": "this week", "priority": "high"},
                {"title": "Review progress weekly", "timeline": "every Sunday", "priority": "medium"},
                {"title": "Adjust the approach", "timeline": "monthly", "priority": "low"},
            ],
        }),
        "generate-question": json.dumps({
            "text": "How much time can you set aside for this each week?",
            "type": "text",
            "purpose": "Size the plan to the time available",
            "priority": 2,
        }),
        "generate-plan": json.dumps([
            {"title": "Write a detailed plan", "description": "List the steps and their order", "timeline": "this week", "priority": "high"},
            {"title": "Review progress weekly", "description": "Check what worked and what did not", "timeline": "every Sunday", "priority": "medium"},
            {"title": "Adjust the approach", "description": "Change what is not working", "timeline": "monthly", "priority": "low"},
        ]),
        "process-feedback": json.dumps({
            "updatedTasks": [],
            "suggestions": ["Shorten the first sessions", "Move the review to a fixed day"],
            "confidenceLevel": 0.7,
        }),
        "suggestions": "1. **Start small(first 15 minutes)**\n2. **Fixed time slot(builds the habit)**\n3. **Track progress(daily check-in)**",
        "plan": (
            "## Getting started\n"
            "### Approach\nBegin with short sessions and grow them week by week.\n"
            "### Subtasks\n- Pick a fixed time slot\n- Prepare what you need\n- Do a first short session\n- Note how it went"
        ),
    }
    FALLBACK = "I need more specific information about your goal before I can help."

    def __init__(self, responses: Dict[str, str] | None = None):
        self.responses = dict(self.CANNED)
        self.responses.update(responses or {})
        self.last_usage: Optional[Dict[str, int]] = None
        self.calls: list[tuple[str, str, str]] = []

    def complete(
        self,
        service_tag: str,
        system_instruction: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        logger.info(f"[{service_tag}] simulated completion")
        self.calls.append((service_tag, system_instruction, user_prompt))
        text = self.responses.get(service_tag, self.FALLBACK)
        # rough 4-chars-per-token estimate
        self._add_usage({
            "prompt_token_count": (len(system_instruction) + len(user_prompt)) // 4,
            "candidates_token_count": len(text) // 4,
            "total_token_count": (len(system_instruction) + len(user_prompt) + len(text)) // 4,
        })
        return text


def build_gateway(model_name: str | None = None):
    """
    Gateway factory used by the server: simulated when asked to, or when the
    selected OpenAI-compatible profile has no API key configured.
    """
    if settings.SIMULATE:
        logger.info("GOALCOACH_SIMULATE is set: using the simulated gateway")
        return SimulatedGateway()
    profile = resolve_model_profile(model_name)
    if profile.provider != "vertex" and not profile.api_key():
        logger.warning(f"{profile.api_key_env} is not configured: using the simulated gateway")
        return SimulatedGateway()
    return CompletionGateway(model_name)
