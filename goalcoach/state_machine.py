# goalcoach/state_machine.py
"""
Clarification state machine.

    initial -> analysis -> {clarification <-> analysis} -> planning -> refinement
    RESET from anywhere -> initial

reduce() is the pure transition function; GoalStateMachine owns the current
GoalState of one session plus its transition log.
"""

import logging
from dataclasses import dataclass
from typing import Any

from goalcoach.entities import (
    GOAL_EVENT_ADAPTER,
    AnalysisComplete,
    ClarificationNeeded,
    FeedbackProvided,
    Goal,
    GoalContext,
    GoalInput,
    GoalState,
    GoalStateLog,
    PlanGenerated,
    Question,
    QuestionAnswered,
    Reset,
    Task,
    initial_state,
)
from goalcoach.errors import InvalidTransition, UnknownEventError
from goalcoach.interaction_log import InteractionLog
from goalcoach.settings import CONFIDENCE_TARGET, PLANNING_COMPLETENESS_THRESHOLD

logger = logging.getLogger("goalcoach")

EVENT_TYPES = (GoalInput, AnalysisComplete, QuestionAnswered, ClarificationNeeded, PlanGenerated, FeedbackProvided, Reset)
EVENT_TYPE_NAMES = {cls.model_fields["type"].default for cls in EVENT_TYPES}

CONFIDENCE_WEIGHTS = {"completeness": 0.4, "clarity_of_answers": 0.3, "task_specificity": 0.3}
# answers this long (in words) count as fully clear
CLEAR_ANSWER_WORDS = 5


@dataclass(frozen=True)
class DispatchResult:
    state: GoalState
    applied: bool = True
    warning: str | None = None


# -----------------------
# Derived values
# -----------------------

def calculate_confidence(context: GoalContext, tasks: tuple[Task, ...] | None = None) -> float:
    """
    Weighted 0-1 score:
    - 0.4 analysis completeness (0-100, rescaled),
    - 0.3 clarity of answers (metadata["confidence"] when given, else answer length),
    - 0.3 task specificity (share of tasks carrying a timeline or a description).
    """
    analysis = context.last_analysis
    completeness = (analysis.completeness / 100.0) if analysis else 0.0

    answers = [e for e in context.clarification_history if e.type == "answer"]
    clarity_scores = []
    for a in answers:
        reported = (a.metadata or {}).get("confidence")
        if isinstance(reported, (int, float)) and not isinstance(reported, bool):
            clarity_scores.append(max(0.0, min(1.0, float(reported))))
        else:
            clarity_scores.append(min(1.0, len(a.content.split()) / CLEAR_ANSWER_WORDS))
    clarity = sum(clarity_scores) / len(clarity_scores) if clarity_scores else 0.0

    tasks = tasks or ()
    specificity = (sum(1 for t in tasks if t.timeline or t.description) / len(tasks)) if tasks else 0.0

    score = (
        completeness * CONFIDENCE_WEIGHTS["completeness"]
        + clarity * CONFIDENCE_WEIGHTS["clarity_of_answers"]
        + specificity * CONFIDENCE_WEIGHTS["task_specificity"]
    )
    return round(max(0.0, min(1.0, score)), 4)


def current_question(state: GoalState) -> Question | None:
    return state.questions[0] if state.questions else None


def has_more_questions(state: GoalState) -> bool:
    return len(state.questions) > 0


def is_complete(state: GoalState) -> bool:
    return state.current_stage == "refinement" and state.context.confidence_level >= CONFIDENCE_TARGET


# -----------------------
# Transition function
# -----------------------

def _with_entry(state: GoalState, entry_type: str, content: str, metadata: dict | None = None) -> tuple[GoalContext, InteractionLog]:
    log = InteractionLog(state.context.clarification_history).append(entry_type, content, metadata)
    return state.context.model_copy(update={"clarification_history": log.entries}), log


def _rekey(questions: tuple[Question, ...], queued: tuple[Question, ...]) -> tuple[Question, ...]:
    taken = {q.id for q in queued}
    out = []
    for q in questions:
        qid, n = q.id, 2
        while qid in taken:
            qid = f"{q.id}-{n}"
            n += 1
        taken.add(qid)
        out.append(q if qid == q.id else q.model_copy(update={"id": qid}))
    return tuple(out)


def _finish(state: GoalState, **update: Any) -> GoalState:
    nxt = state.model_copy(update=update)
    goal_tasks = nxt.goal.tasks or ()
    context = nxt.context.model_copy(update={"confidence_level": calculate_confidence(nxt.context, goal_tasks)})
    return nxt.model_copy(update={"context": context})


def reduce(state: GoalState, event: Any) -> GoalState:
    """
    Pure: returns a new GoalState, never mutates `state`.
    Raises InvalidTransition (recoverable) or UnknownEventError (programmer error).
    """
    if isinstance(event, Reset):
        return initial_state()

    if isinstance(event, GoalInput):
        context, _ = _with_entry(state, "answer", event.text)
        goal = state.goal.model_copy(update={"title": event.text.strip()})
        return _finish(state, current_stage="analysis", goal=goal, context=context)

    if isinstance(event, AnalysisComplete):
        if state.current_stage != "analysis":
            raise InvalidTransition(f"ANALYSIS_COMPLETE is only valid in stage 'analysis' (current: '{state.current_stage}')")
        analysis = event.analysis
        context, _ = _with_entry(
            state,
            "suggestion",
            analysis.insights or f"Goal completeness {analysis.completeness:g}/100",
            {"completeness": analysis.completeness, "needsClarification": analysis.needs_clarification},
        )
        context = context.model_copy(update={
            "missing_elements": analysis.missing_elements or context.missing_elements,
            "category": analysis.category or context.category,
            "last_analysis": analysis,
        })
        stage = "planning" if analysis.completeness > PLANNING_COMPLETENESS_THRESHOLD else "clarification"
        return _finish(
            state,
            current_stage=stage,
            analysis=analysis,
            questions=_rekey(analysis.suggested_questions, ()),
            context=context,
        )

    if isinstance(event, QuestionAnswered):
        question = next((q for q in state.questions if q.id == event.question_id), None)
        if question is None:
            raise InvalidTransition(f"QUESTION_ANSWERED references unknown question id '{event.question_id}'")
        context, _ = _with_entry(
            state, "answer", event.answer, {"questionId": question.id, "question": question.text}
        )
        remaining = tuple(q for q in state.questions if q.id != event.question_id)
        stage = state.current_stage if remaining else "planning"
        return _finish(state, current_stage=stage, questions=remaining, context=context)

    if isinstance(event, ClarificationNeeded):
        added = _rekey(event.questions, state.questions)
        context, _ = _with_entry(
            state, "question", "\n".join(q.text for q in added), {"questionIds": [q.id for q in added]}
        )
        return _finish(state, current_stage="clarification", questions=state.questions + added, context=context)

    if isinstance(event, PlanGenerated):
        titles = "; ".join(t.title for t in event.tasks)
        context, _ = _with_entry(
            state,
            "suggestion",
            f"Plan: {titles}" if titles else "Plan: (no tasks)",
            {"tag": "New Task", "taskIds": [t.id for t in event.tasks]},
        )
        goal = state.goal.model_copy(update={"tasks": tuple(event.tasks)})
        return _finish(state, current_stage="refinement", goal=goal, context=context)

    if isinstance(event, FeedbackProvided):
        context, _ = _with_entry(state, "feedback", event.text)
        return _finish(state, context=context)

    raise UnknownEventError(f"Unrecognized event: {event!r}")


def coerce_event(event: Any):
    """Accept event models or their wire dicts ({"type": "GOAL_INPUT", ...})."""
    if isinstance(event, EVENT_TYPES):
        return event
    if isinstance(event, dict) and event.get("type") in EVENT_TYPE_NAMES:
        return GOAL_EVENT_ADAPTER.validate_python(event)
    raise UnknownEventError(f"Unrecognized event: {event!r}")


# -----------------------
# State machine
# -----------------------

class GoalStateMachine:
    """
    Owns one session's GoalState. Nothing else writes it; readers get the
    current (frozen) instance through .state.
    """

    def __init__(self, state: GoalState | None = None):
        self._state = state or initial_state()
        self._transitions: list[GoalStateLog] = []

    @property
    def state(self) -> GoalState:
        return self._state

    @property
    def transitions(self) -> tuple[GoalStateLog, ...]:
        return tuple(self._transitions)

    def dispatch(self, event: Any) -> DispatchResult:
        try:
            event = coerce_event(event)
            previous = self._state
            nxt = reduce(previous, event)
        except UnknownEventError:
            logger.error(f"GoalStateMachine: unknown event ignored, state untouched: {event!r}")
            raise
        except InvalidTransition as e:
            logger.warning(f"GoalStateMachine: {event.type} ignored: {e}")
            self._transitions.append(GoalStateLog(
                event_type=event.type,
                previous_stage=previous.current_stage,
                next_stage=previous.current_stage,
                applied=False,
                warning=str(e),
            ))
            return DispatchResult(previous, applied=False, warning=str(e))

        self._state = nxt
        self._transitions.append(GoalStateLog(
            event_type=event.type,
            previous_stage=previous.current_stage,
            next_stage=nxt.current_stage,
        ))
        logger.info(f"GoalStateMachine: {event.type} {previous.current_stage} -> {nxt.current_stage}")
        return DispatchResult(nxt)

    def current_question(self) -> Question | None:
        return current_question(self._state)

    def has_more_questions(self) -> bool:
        return has_more_questions(self._state)

    def is_complete(self) -> bool:
        return is_complete(self._state)

    @property
    def goal(self) -> Goal:
        return self._state.goal
