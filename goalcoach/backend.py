# goalcoach/backend.py

import json
import logging
import traceback
from dataclasses import dataclass
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError

from goalcoach.base_utils import BaseUtils
from goalcoach.entities import (
    AnalyzeRequest,
    FeedbackRequest,
    NextQuestionRequest,
    PlanRequest,
    SuggestionRequest,
    Task,
)
from goalcoach.errors import GatewayError, InputError
from goalcoach.llm_client import build_gateway
from goalcoach.normalizer import Normalized, ResponseNormalizer
from goalcoach.prompts import (
    ANALYSIS_PROMPT,
    COACH_INSTRUCTIONS,
    DETAILED_PLAN_PROMPT,
    FEEDBACK_PROMPT,
    NEXT_QUESTION_PROMPT,
    PLANNER_INSTRUCTIONS,
    SUGGESTION_INSTRUCTIONS,
    SUGGESTION_PROMPT,
    TASK_PLAN_PROMPT,
    detect_task_type,
    render_user_profile,
)
from goalcoach.relevance import select_relevant_context
from goalcoach.settings import CONTEXT_CHAR_BUDGET

logger = logging.getLogger("goalcoach")

R = TypeVar("R", bound=BaseModel)

# Canned plan used when the service produced no usable task at all.
DEFAULT_PLAN_TASKS: tuple[tuple[str, str, str], ...] = (
    ("Define the first concrete step", "today", "high"),
    ("Schedule regular sessions", "this week", "medium"),
    ("Review progress", "every week", "medium"),
)


@dataclass(frozen=True)
class OperationResult:
    """
    data:       the typed value of the operation's declared shape
    degraded:   True when the value comes (partly) from fallbacks
    diagnostic: why it is degraded (transport error, parse warnings)
    """
    data: Any
    degraded: bool = False
    diagnostic: str | None = None
    wire_key: str | None = None

    def to_wire(self) -> dict:
        data = self.data
        if isinstance(data, BaseModel):
            payload: Any = data.to_wire()
        elif isinstance(data, (list, tuple)):
            payload = [d.to_wire() if isinstance(d, BaseModel) else d for d in data]
        else:
            payload = data
        body = {self.wire_key: payload} if self.wire_key else dict(payload)
        body["degraded"] = self.degraded
        body["diagnostic"] = self.diagnostic
        return body


class Backend(BaseUtils):
    """
    The five workflow operations. Each one validates its input (InputError,
    no fallback), builds the prompt, calls the gateway and normalizes the
    answer into its declared shape. Gateway and parse failures never escape:
    they come back as degraded results.
    """

    def __init__(self, gateway=None, normalizer: ResponseNormalizer | None = None, context_budget: int = CONTEXT_CHAR_BUDGET):
        self.gateway = gateway if gateway is not None else build_gateway()
        self.normalizer = normalizer or ResponseNormalizer()
        self.context_budget = context_budget

    def _process_request_data(self, request_data: dict) -> dict:
        """
        Core request handling logic.
        Takes a parsed JSON dict ({"type": ..., "payload": {...}}) and returns the response_data dict.
        """
        request_type = (request_data or {}).get("type")
        payload = (request_data or {}).get("payload")

        try:
            preview = json.dumps(request_data, indent=2)
        except (TypeError, ValueError):
            preview = str(request_data)
        logger.debug(f"process_request request {preview}")

        response_data = {
            "status": "success",
            "message": "",
        }

        handlers = {
            "analyze": self.analyze,
            "next_question": self.next_question,
            "generate_plan": self.generate_plan,
            "process_feedback": self.process_feedback,
            "suggest_options": self.suggest_options,
        }

        try:
            if request_type in handlers:
                result = handlers[request_type](payload)
                response_data["data"] = result.to_wire()
                if result.degraded:
                    response_data["message"] = result.diagnostic or "degraded"
            else:
                response_data["status"] = "error"
                response_data["message"] = f"Unknown request type: {request_type}"
        except InputError as e:
            response_data["status"] = "error"
            response_data["message"] = e.message
            response_data["field"] = e.field
        except Exception as e:
            logger.info(f"Error while processing request data: {e}")
            traceback.print_exc()
            raise

        logger.debug(f"response {response_data}")
        return response_data

    # -----------------------
    # Helpers
    # -----------------------

    def _validate(self, model_cls: Type[R], payload: Any) -> R:
        if isinstance(payload, model_cls):
            return payload
        if not isinstance(payload, dict):
            raise InputError("body", "request body must be a JSON object")
        try:
            return model_cls.model_validate(payload)
        except ValidationError as e:
            err = e.errors()[0]
            field = ".".join(str(p) for p in err.get("loc", ())) or "body"
            raise InputError(field, f"{field}: {err.get('msg', 'invalid value')}") from e

    def _require(self, value: str | None, field: str) -> str:
        value = (value or "").strip()
        if not value:
            raise InputError(field)
        return value

    def _complete(self, service_tag: str, system: str, prompt: str, **options) -> tuple[str | None, str | None]:
        """Gateway call; GatewayError becomes (None, diagnostic)."""
        try:
            return self.gateway.complete(service_tag, system, prompt, **options), None
        except GatewayError as e:
            self.color_print(
                f"[{service_tag}] gateway failure, falling back to defaults: {type(e).__name__}: {e}",
                color="yellow",
                level=logging.WARNING,
            )
            return None, f"{type(e).__name__}: {e}"

    def _result(self, normalized: Normalized, failure: str | None, value: Any = None, wire_key: str | None = None) -> OperationResult:
        value = normalized.value if value is None else value
        if failure:
            return OperationResult(value, True, failure, wire_key)
        if normalized.degraded:
            diagnostic = "; ".join(normalized.warnings) or f"parsed with the {normalized.strategy} strategy"
            return OperationResult(value, True, f"{normalized.strategy}: {diagnostic}", wire_key)
        if normalized.warnings:
            logger.info(f"normalizer warnings: {'; '.join(normalized.warnings)}")
        return OperationResult(value, False, None, wire_key)

    # -----------------------
    # Operations
    # -----------------------

    def analyze(self, payload, id_prefix: str = "q") -> OperationResult:
        req = self._validate(AnalyzeRequest, payload)
        title = self._require(req.goal_title, "goalTitle")

        previous = "\n".join(
            f"Q: {pa.question_text()}\nA: {pa.answer}" for pa in req.previous_answers
        ) or "No previous answers"

        prompt = self.unsafe_string_format(
            ANALYSIS_PROMPT,
            GOAL_TITLE=title,
            GOAL_DESCRIPTION=f"Description: {req.goal_description}" if req.goal_description else "",
            PREVIOUS_ANSWERS=previous,
            CURRENT_STEP=req.current_step or "initial",
        )
        raw, failure = self._complete("analyze-goal", COACH_INSTRUCTIONS, prompt)
        normalized = self.normalizer.normalize_analysis(raw, id_prefix=id_prefix)
        analysis = normalized.value
        logger.info(
            f"analysis: completeness={analysis.completeness:g} questions={len(analysis.suggested_questions)} "
            f"needs_clarification={analysis.needs_clarification} strategy={normalized.strategy}"
        )
        return self._result(normalized, failure)

    def next_question(self, payload, id_prefix: str = "q") -> OperationResult:
        """Returns OperationResult(Question | None); None means no further question is needed."""
        req = self._validate(NextQuestionRequest, payload)
        title = self._require(req.goal.title, "goal.title")
        context = req.context

        asked = [e.content for e in context.clarification_history if e.type == "question"]
        prompt = self.unsafe_string_format(
            NEXT_QUESTION_PROMPT,
            GOAL_TITLE=title,
            CATEGORY=context.category or "Unknown",
            MISSING_ELEMENTS=", ".join(context.missing_elements) or "None identified",
            PREVIOUS_QUESTIONS="\n".join(asked) or "None",
            RELEVANT_CONTEXT=select_relevant_context(
                context.clarification_history, title, max_chars=self.context_budget
            ) or "None",
        )
        raw, failure = self._complete("generate-question", COACH_INSTRUCTIONS, prompt)
        normalized = self.normalizer.normalize_question_list(raw, id_prefix=id_prefix)
        questions = normalized.value
        question = questions[0] if questions else None
        result = self._result(normalized, failure, wire_key="question")
        return OperationResult(question, result.degraded, result.diagnostic, "question")

    def generate_plan(self, payload, id_prefix: str | None = None) -> OperationResult:
        req = self._validate(PlanRequest, payload)
        title = self._require(req.goal_title, "goalTitle")

        kwargs = dict(
            GOAL_TITLE=title,
            SELECTED_OPTION=req.selected_option or "None selected",
            TASK_TYPE=detect_task_type(title),
            USER_PROFILE=render_user_profile(req.user_profile),
            RELEVANT_CONTEXT=req.relevant_context or "No additional information",
        )

        if req.shape == "plan-with-subtasks":
            prompt = self.unsafe_string_format(DETAILED_PLAN_PROMPT, **kwargs)
            raw, failure = self._complete("plan", PLANNER_INSTRUCTIONS, prompt, temperature=0.8)
            normalized = self.normalizer.normalize_plan_with_subtasks(
                raw,
                task_title=title,
                selected_option=req.selected_option,
                id_prefix=id_prefix or "subtask",
            )
            return self._result(normalized, failure)

        prompt = self.unsafe_string_format(TASK_PLAN_PROMPT, **kwargs)
        raw, failure = self._complete("generate-plan", PLANNER_INSTRUCTIONS, prompt)
        normalized = self.normalizer.normalize_task_list(raw, id_prefix=id_prefix or "task")
        if not normalized.value:
            tasks = self.default_plan_tasks(id_prefix or "task")
            return OperationResult(
                tasks, True, failure or "no tasks in the response; using the default plan", "tasks"
            )
        return self._result(normalized, failure, wire_key="tasks")

    def default_plan_tasks(self, id_prefix: str = "task") -> tuple[Task, ...]:
        return tuple(
            Task(id=f"{id_prefix}-{i}", title=title, timeline=timeline, priority=priority)
            for i, (title, timeline, priority) in enumerate(DEFAULT_PLAN_TASKS, start=1)
        )

    def process_feedback(self, payload, id_prefix: str = "task") -> OperationResult:
        req = self._validate(FeedbackRequest, payload)
        title = self._require(req.goal.title, "goal.title")
        feedback = self._require(req.feedback, "feedback")
        context = req.context

        prompt = self.unsafe_string_format(
            FEEDBACK_PROMPT,
            GOAL_TITLE=title,
            CURRENT_TASKS=json.dumps([t.to_wire() for t in (req.goal.tasks or ())], indent=2, ensure_ascii=False),
            FEEDBACK=feedback,
            RELEVANT_CONTEXT=select_relevant_context(
                context.clarification_history, title, feedback, max_chars=self.context_budget
            ) or "None",
            CATEGORY=context.category or "Unknown",
        )
        raw, failure = self._complete("process-feedback", COACH_INSTRUCTIONS, prompt)
        normalized = self.normalizer.normalize_feedback_result(raw, id_prefix=id_prefix)
        return self._result(normalized, failure)

    def suggest_options(self, payload) -> OperationResult:
        req = self._validate(SuggestionRequest, payload)
        title = self._require(req.task_title, "taskTitle")

        prompt = self.unsafe_string_format(
            SUGGESTION_PROMPT,
            TASK_TITLE=title,
            USER_PROFILE=render_user_profile(req.user_profile, req.recent_feedback),
            IMPLICIT_NEEDS=", ".join(req.implicit_needs or ()) or "None stated",
            TASK_TYPE=detect_task_type(title),
            RECENT_FEEDBACK=req.recent_feedback or "None",
            CONTEXT_HISTORY=select_relevant_context(
                req.context_history, title, max_chars=self.context_budget
            ) or "No history",
        )
        raw, failure = self._complete("suggestions", SUGGESTION_INSTRUCTIONS, prompt, max_tokens=800)
        normalized = self.normalizer.normalize_tri_option_suggestions(raw, task_title=title)
        return self._result(normalized, failure)
