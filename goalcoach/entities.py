# goalcoach/entities.py
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Annotated, Any, Literal, Mapping, TypeAlias, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer, field_validator
from pydantic.alias_generators import to_camel

Stage: TypeAlias = Literal["initial", "analysis", "clarification", "planning", "refinement"]
EntryType: TypeAlias = Literal["question", "answer", "suggestion", "feedback"]
Priority: TypeAlias = Literal["low", "medium", "high"]
QuestionType: TypeAlias = Literal["choice", "yes_no", "multiple_choice", "text"]

STAGES: tuple[str, ...] = ("initial", "analysis", "clarification", "planning", "refinement")
PRIORITIES: tuple[str, ...] = ("low", "medium", "high")
QUESTION_TYPES: tuple[str, ...] = ("choice", "yes_no", "multiple_choice", "text")


class CamelModel(BaseModel):
    """
    Wire models are camelCase (goalTitle, clarificationHistory, ...),
    Python attributes are snake_case. Both spellings are accepted on input.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# -----------------------
# Goal / tasks
# -----------------------

class TaskSuggestion(CamelModel):
    title: str
    timeline: str = ""
    priority: Priority = "medium"


class Task(CamelModel):
    id: str
    title: str
    description: str | None = None
    timeline: str | None = None
    completed: bool = False
    priority: Priority = "medium"
    dependencies: tuple[str, ...] = ()


Subtask: TypeAlias = Task


class Goal(CamelModel):
    title: str = ""
    description: str | None = None
    tasks: tuple[Task, ...] | None = None


class DetailedPlan(CamelModel):
    title: str
    description: str
    subtasks: tuple[Subtask, ...]


class FeedbackResult(CamelModel):
    updated_tasks: tuple[Task, ...] = ()
    suggestions: tuple[str, ...] = ()
    confidence_level: float = 0.0


class SuggestionSet(CamelModel):
    suggestions: tuple[str, str, str]


# -----------------------
# Questions / analysis
# -----------------------

class QuestionOption(CamelModel):
    id: str
    text: str
    emoji: str = ""
    tasks: tuple[TaskSuggestion, ...] = ()


class Question(CamelModel):
    id: str
    text: str
    type: QuestionType = "text"
    purpose: str = ""
    options: tuple[QuestionOption, ...] = ()
    priority: int = Field(default=1, ge=1, le=5)


class GoalAnalysis(CamelModel):
    completeness: float = Field(default=0.0, ge=0.0, le=100.0)
    needs_clarification: bool = False
    insights: str = ""
    suggested_questions: tuple[Question, ...] = ()
    suggested_tasks: tuple[TaskSuggestion, ...] = ()
    category: str | None = None
    missing_elements: tuple[str, ...] = ()
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


# -----------------------
# Interaction log / context
# -----------------------

def new_entry_id() -> str:
    return f"entry-{uuid4().hex[:12]}"


class ClarificationEntry(CamelModel):
    id: str = Field(default_factory=new_entry_id)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: EntryType
    content: str
    metadata: Mapping[str, Any] | None = None

    @field_validator("metadata", mode="after")
    @classmethod
    def _freeze_metadata(cls, value):
        return MappingProxyType(dict(value)) if value is not None else None

    @field_serializer("metadata")
    def _dump_metadata(self, value):
        return dict(value) if value is not None else None


class GoalContext(CamelModel):
    clarification_history: tuple[ClarificationEntry, ...] = ()
    missing_elements: tuple[str, ...] = ()
    confidence_level: float = Field(default=0.0, ge=0.0, le=1.0)
    category: str | None = None
    last_analysis: GoalAnalysis | None = None


class GoalState(CamelModel):
    current_stage: Stage = "initial"
    goal: Goal = Field(default_factory=Goal)
    analysis: GoalAnalysis | None = None
    questions: tuple[Question, ...] = ()
    context: GoalContext = Field(default_factory=GoalContext)


def initial_state() -> GoalState:
    return GoalState()


# -----------------------
# Events
# -----------------------

class GoalInput(CamelModel):
    type: Literal["GOAL_INPUT"] = "GOAL_INPUT"
    text: str


class AnalysisComplete(CamelModel):
    type: Literal["ANALYSIS_COMPLETE"] = "ANALYSIS_COMPLETE"
    analysis: GoalAnalysis


class QuestionAnswered(CamelModel):
    type: Literal["QUESTION_ANSWERED"] = "QUESTION_ANSWERED"
    question_id: str
    answer: str


class ClarificationNeeded(CamelModel):
    type: Literal["CLARIFICATION_NEEDED"] = "CLARIFICATION_NEEDED"
    questions: tuple[Question, ...]


class PlanGenerated(CamelModel):
    type: Literal["PLAN_GENERATED"] = "PLAN_GENERATED"
    tasks: tuple[Task, ...]


class FeedbackProvided(CamelModel):
    type: Literal["FEEDBACK_PROVIDED"] = "FEEDBACK_PROVIDED"
    text: str


class Reset(CamelModel):
    type: Literal["RESET"] = "RESET"


GoalEvent = Annotated[
    Union[GoalInput, AnalysisComplete, QuestionAnswered, ClarificationNeeded, PlanGenerated, FeedbackProvided, Reset],
    Field(discriminator="type"),
]
GOAL_EVENT_ADAPTER: TypeAdapter = TypeAdapter(GoalEvent)


class GoalStateLog(CamelModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: str
    previous_stage: Stage
    next_stage: Stage
    applied: bool = True
    warning: str | None = None


# -----------------------
# Workflow-facing requests
# -----------------------

class PreviousAnswer(CamelModel):
    question: Any
    answer: str

    def question_text(self) -> str:
        q = self.question
        if isinstance(q, dict):
            return str(q.get("text") or "")
        return str(getattr(q, "text", q) or "")


class AnalyzeRequest(CamelModel):
    goal_title: str = Field(min_length=1)
    goal_description: str | None = None
    previous_answers: tuple[PreviousAnswer, ...] = ()
    current_step: str = "initial"


class NextQuestionRequest(CamelModel):
    goal: Goal
    context: GoalContext = Field(default_factory=GoalContext)


class PlanRequest(CamelModel):
    goal_title: str = Field(min_length=1)
    selected_option: str = ""
    user_profile: dict[str, Any] = Field(default_factory=dict)
    relevant_context: str = ""
    shape: Literal["task-list", "plan-with-subtasks"] = "task-list"


class FeedbackRequest(CamelModel):
    goal: Goal
    feedback: str = Field(min_length=1)
    context: GoalContext = Field(default_factory=GoalContext)


class SuggestionRequest(CamelModel):
    task_title: str = Field(min_length=1)
    user_profile: dict[str, Any] = Field(default_factory=dict)
    implicit_needs: tuple[str, ...] | None = None
    recent_feedback: str | None = None
    context_history: str | None = None
