# goalcoach/workflow.py
"""
Calling workflow: decides WHEN to talk to the completion service and which
event its answer becomes.

- after ANALYSIS_COMPLETE with completeness < 80: ask for exactly one new
  question (CLARIFICATION_NEEDED)
- once the question queue is empty: fetch the next question, or plan when
  the service says none is needed (PLAN_GENERATED); a failed question
  request also plans, with a note in GoalWorkflow.notes
- after plan feedback: apply updated tasks; while confidence < 0.8 ask
  another question

The loop has no built-in bound; stop() halts automatic requests and
resume() picks up from the current stage.
"""

import asyncio
import logging
from typing import Any, Callable

from goalcoach.backend import Backend, OperationResult
from goalcoach.entities import (
    AnalysisComplete,
    AnalyzeRequest,
    ClarificationNeeded,
    FeedbackProvided,
    FeedbackRequest,
    GoalInput,
    GoalState,
    NextQuestionRequest,
    PlanGenerated,
    PlanRequest,
    PreviousAnswer,
    QuestionAnswered,
    Reset,
)
from goalcoach.errors import InputError
from goalcoach.relevance import select_relevant_context
from goalcoach.session import GoalSession, RequestToken
from goalcoach.settings import CONFIDENCE_TARGET, CONTEXT_CHAR_BUDGET, PLANNING_COMPLETENESS_THRESHOLD

logger = logging.getLogger("goalcoach")

QUESTION_UNAVAILABLE_NOTE = "generate-question: no question could be obtained, planning with the answers so far"


class StaleResult(Exception):
    """The request was cancelled or the session was reset while it was in flight."""


class GoalWorkflow:

    def __init__(
        self,
        backend: Backend,
        session: GoalSession | None = None,
        *,
        user_profile: dict | None = None,
        selected_option: str = "",
        context_budget: int = CONTEXT_CHAR_BUDGET,
    ):
        self.backend = backend
        self.session = session or GoalSession("local")
        self.user_profile = user_profile or {}
        self.selected_option = selected_option
        self.context_budget = context_budget
        self.last_confidence: float | None = None
        # warnings / diagnostics collected by the last handler call
        self.notes: list[str] = []
        self._pending: RequestToken | None = None

    @property
    def state(self) -> GoalState:
        return self.session.state

    @property
    def stopped(self) -> bool:
        return self.session.stopped

    # -----------------------
    # Plumbing
    # -----------------------

    async def _request(self, service_tag: str, fn: Callable[..., OperationResult], payload: Any, **kwargs):
        """
        Run a backend operation off the event loop under a fresh request token.
        Raises StaleResult when the token died while the call was running.
        """
        token = self.session.begin_request(service_tag)
        self._pending = token
        try:
            result = await asyncio.to_thread(fn, payload, **kwargs)
        except BaseException:
            self.session.finish(token)
            raise
        finally:
            if self._pending is token:
                self._pending = None

        if not self.session.is_live(token):
            logger.info(f"session {self.session.session_id}: dropping stale {service_tag} result")
            self.notes.append(f"{service_tag}: result discarded (request no longer current)")
            raise StaleResult(service_tag)
        if result.degraded:
            self.notes.append(f"{service_tag}: {result.diagnostic}")
        return token, result

    def _note(self, warning: str | None) -> None:
        if warning:
            self.notes.append(warning)

    def _dispatch(self, event) -> bool:
        result = self.session.dispatch(event)
        self._note(result.warning)
        return result.applied

    def _apply(self, token: RequestToken, event) -> bool:
        result = self.session.apply(token, event)
        if result is None:
            raise StaleResult(token.service_tag)
        self._note(result.warning)
        return result.applied

    def _previous_answers(self, state: GoalState) -> tuple[PreviousAnswer, ...]:
        return tuple(
            PreviousAnswer(question={"text": (e.metadata or {}).get("question", "")}, answer=e.content)
            for e in state.context.clarification_history
            if e.type == "answer" and (e.metadata or {}).get("questionId")
        )

    # -----------------------
    # Steps (lock held)
    # -----------------------

    async def _analyze(self) -> None:
        state = self.state
        payload = AnalyzeRequest(
            goal_title=state.goal.title,
            goal_description=state.goal.description,
            previous_answers=self._previous_answers(state),
            current_step=state.current_stage,
        )
        token, result = await self._request("analyze-goal", self.backend.analyze, payload)
        if not self._apply(token, AnalysisComplete(analysis=result.data)) or self.stopped:
            return

        if result.data.completeness < PLANNING_COMPLETENESS_THRESHOLD:
            await self._ask_one_question()
        if self.stopped:
            return
        if self.state.current_stage == "planning" or not self.state.questions:
            await self._plan()

    async def _ask_one_question(self) -> bool:
        """True if a question was queued; False if none is needed or none could be obtained."""
        state = self.state
        payload = NextQuestionRequest(goal=state.goal, context=state.context)
        prefix = f"q{len(state.context.clarification_history)}"
        token, result = await self._request("generate-question", self.backend.next_question, payload, id_prefix=prefix)
        if result.data is None:
            self.session.finish(token)
            if result.degraded:
                logger.warning(
                    f"session {self.session.session_id}: no question could be obtained ({result.diagnostic}); "
                    "planning with the answers so far"
                )
                self.notes.append(QUESTION_UNAVAILABLE_NOTE)
            else:
                logger.info(f"session {self.session.session_id}: no further question needed")
            return False
        return self._apply(token, ClarificationNeeded(questions=(result.data,)))

    async def _plan(self) -> None:
        state = self.state
        payload = PlanRequest(
            goal_title=state.goal.title,
            selected_option=self.selected_option,
            user_profile=self.user_profile,
            relevant_context=select_relevant_context(
                state.context.clarification_history,
                state.goal.title,
                self.selected_option,
                max_chars=self.context_budget,
            ),
            shape="task-list",
        )
        token, result = await self._request("generate-plan", self.backend.generate_plan, payload)
        self._apply(token, PlanGenerated(tasks=tuple(result.data)))

    async def _advance(self) -> None:
        """Queue is empty: next question, else plan."""
        if self.stopped or self.state.questions:
            return
        asked = await self._ask_one_question()
        if not asked and not self.stopped and not self.state.questions:
            await self._plan()

    # -----------------------
    # Public API
    # -----------------------

    async def handle_goal_input(self, text: str) -> GoalState:
        if not (text or "").strip():
            raise InputError("text", "goal text is required")
        async with self.session.lock:
            self.notes = []
            self._dispatch(GoalInput(text=text))
            if not self.stopped:
                try:
                    await self._analyze()
                except StaleResult:
                    pass
            return self.state

    async def handle_question_answer(self, question_id: str, answer: str) -> GoalState:
        if not (answer or "").strip():
            raise InputError("answer", "answer is required")
        async with self.session.lock:
            self.notes = []
            if self._dispatch(QuestionAnswered(question_id=question_id, answer=answer)) and not self.state.questions:
                try:
                    await self._advance()
                except StaleResult:
                    pass
            return self.state

    async def handle_plan_feedback(self, feedback: str) -> GoalState:
        if not (feedback or "").strip():
            raise InputError("feedback", "feedback is required")
        async with self.session.lock:
            self.notes = []
            self._dispatch(FeedbackProvided(text=feedback))
            if self.stopped:
                return self.state
            try:
                await self._process_feedback(feedback)
            except StaleResult:
                pass
            return self.state

    async def _process_feedback(self, feedback: str) -> None:
        state = self.state
        payload = FeedbackRequest(goal=state.goal, feedback=feedback, context=state.context)
        token, result = await self._request("process-feedback", self.backend.process_feedback, payload)
        outcome = result.data
        if outcome.updated_tasks:
            self._apply(token, PlanGenerated(tasks=outcome.updated_tasks))
        else:
            self.session.finish(token)

        self.last_confidence = outcome.confidence_level
        if outcome.confidence_level < CONFIDENCE_TARGET and not self.stopped:
            await self._ask_one_question()

    def cancel_pending(self) -> bool:
        """Abandon the in-flight gateway request, if any; its result will be dropped."""
        token = self._pending
        return self.session.cancel(token) if token is not None else False

    async def reset(self) -> GoalState:
        # Kill outstanding tokens before waiting for the lock, so an in-flight
        # result cannot land first.
        self.session.cancel_all()
        async with self.session.lock:
            self.notes = []
            self._dispatch(Reset())
            self.session.stopped = False
            self.last_confidence = None
            return self.state

    def stop(self) -> None:
        self.session.stopped = True
        logger.info(f"session {self.session.session_id}: workflow stopped")

    async def resume(self) -> GoalState:
        self.session.stopped = False
        async with self.session.lock:
            self.notes = []
            try:
                stage = self.state.current_stage
                if stage == "analysis":
                    await self._analyze()
                elif stage in ("clarification", "planning") and not self.state.questions:
                    await self._advance()
            except StaleResult:
                pass
            return self.state
