# goalcoach/normalizer.py
"""
Response Normalizer: raw completion text -> typed records.

Every public method returns a fully-typed value and never raises. The
recovery ladder is the same for every shape:

1. strip code fences,
2. strict structured parse (json, commentjson, yaml, json_repair),
3. shape-specific pattern extraction (headed sections, list items,
   labelled numbers),
4. typed defaults (empty list, "medium" priority, generated ids, False).

Generated ids are "<prefix>-<n>" (1-based) so they are predictable and
unique within one response.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from goalcoach.base_utils import BaseUtils
from goalcoach.entities import (
    PRIORITIES,
    QUESTION_TYPES,
    DetailedPlan,
    FeedbackResult,
    GoalAnalysis,
    Question,
    QuestionOption,
    SuggestionSet,
    Task,
    TaskSuggestion,
)

logger = logging.getLogger("goalcoach")


class Shape(str, Enum):
    ANALYSIS = "analysis"
    QUESTION_LIST = "question-list"
    TASK_LIST = "task-list"
    PLAN_WITH_SUBTASKS = "plan-with-subtasks"
    TRI_OPTION_SUGGESTIONS = "tri-option-suggestions"
    FEEDBACK_RESULT = "feedback-result"


STRUCTURED = "structured"
PATTERN = "pattern"
DEFAULT = "default"


@dataclass
class Normalized:
    value: Any
    strategy: str
    warnings: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.strategy != STRUCTURED


# Read-only keyword buckets for canned suggestions. Order matters: first match wins.
SUGGESTION_BUCKETS: tuple[tuple[str, re.Pattern, tuple[str, str, str]], ...] = (
    (
        "exercise",
        re.compile(r"exercise|workout|run|training", re.IGNORECASE),
        ("Slow jogging(gentle on the joints)", "Indoor cycling(works in any weather)", "Bodyweight circuit(no equipment needed)"),
    ),
    (
        "diet",
        re.compile(r"diet|fasting|6pm", re.IGNORECASE),
        ("Drink water(curbs hunger)", "Sugar-free gum(keeps cravings busy)", "Eat vegetables(low-calorie filler)"),
    ),
    (
        "study",
        re.compile(r"study|read|review|write", re.IGNORECASE),
        ("Pomodoro technique(25-minute focus blocks)", "Flashcard review(active recall)", "Mind mapping(links key ideas)"),
    ),
)
GENERIC_SUGGESTIONS: tuple[str, str, str] = (
    "Start small(first 15 minutes)",
    "Fixed time slot(builds the habit)",
    "Track progress(daily check-in)",
)

DEFAULT_SUBTASKS: tuple[str, ...] = (
    "Set a reminder",
    "Prepare a coping strategy",
    "Record how it went",
    "Adjust the schedule",
    "Review progress",
    "Plan the next session",
)
SUBTASK_MIN = 4
SUBTASK_MAX = 6
SUBTASK_MAX_CHARS = 30
DESCRIPTION_MAX_CHARS = 100
SUGGESTION_MAX_CHARS = 60

QUESTION_TYPE_ALIASES = {
    "open": "text",
    "open_ended": "text",
    "free_text": "text",
    "yesno": "yes_no",
    "yes/no": "yes_no",
    "boolean": "yes_no",
    "multiple-choice": "multiple_choice",
    "multiplechoice": "multiple_choice",
    "single_choice": "choice",
}

SUGGESTION_MARKER_RE = re.compile(r"^(?:\d+\s*[.)、]|[-•>]|\*(?!\*)|#+|【|】)\s*")
SUBTASK_MARKER_RE = re.compile(r"^(?:[-*•]|\d+\s*[.)、])\s*(?:\[[ xX]?\]\s*)?")


def suggestion_bucket(task_title: str) -> tuple[str, tuple[str, str, str]]:
    for name, pattern, suggestions in SUGGESTION_BUCKETS:
        if pattern.search(task_title or ""):
            return name, suggestions
    return "generic", GENERIC_SUGGESTIONS


def _norm_key(key: Any) -> str:
    return re.sub(r"[\s_\-]", "", str(key).lower())


def _get(data: dict, *names: str, default=None):
    """Case / underscore / camelCase-insensitive dict lookup."""
    if not isinstance(data, dict):
        return default
    wanted = [_norm_key(n) for n in names]
    keyed = {_norm_key(k): v for k, v in data.items()}
    for w in wanted:
        if w in keyed and keyed[w] is not None:
            return keyed[w]
    return default


def _has_any(data: Any, *names: str) -> bool:
    return isinstance(data, dict) and _get(data, *names) is not None


TASK_FIELDS = ("id", "title", "name", "task", "description", "details", "timeline", "when", "duration",
               "priority", "completed", "dependencies", "dependsOn")
QUESTION_FIELDS = ("id", "text", "question", "prompt", "type", "purpose", "reason", "options", "choices", "priority")
OPTION_FIELDS = ("id", "text", "label", "value", "title", "emoji", "tasks")
SUGGESTION_FIELDS = ("name", "title", "text", "option", "rationale", "reason", "why")


def _bullet_pair(item: Any, known: tuple[str, ...]) -> tuple[str, str] | None:
    """
    yaml reads a markdown bullet "- Book a coach: this week" as
    {"Book a coach": "this week"}. Returns (label, detail) for such an item,
    None for a real record (one keyed by a known field name).
    """
    if not isinstance(item, dict) or len(item) != 1:
        return None
    key, value = next(iter(item.items()))
    if not isinstance(key, str) or _norm_key(key) in {_norm_key(k) for k in known}:
        return None
    if value is None or isinstance(value, (bool, dict, list)):
        return key.strip(), ""
    return key.strip(), str(value).strip()


def _to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "yes", "y", "1"):
            return True
        if v in ("false", "no", "n", "0"):
            return False
    return None


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = re.search(r"-?\d+(?:\.\d+)?", value)
        if m:
            return float(m.group(0))
    return None


def canonical_completeness(value: Any) -> float | None:
    """0-100 scale. Values in [0, 1] are read as fractions."""
    v = _to_float(value)
    if v is None:
        return None
    if 0.0 <= v <= 1.0:
        v *= 100.0
    return max(0.0, min(100.0, v))


def canonical_confidence(value: Any) -> float | None:
    """0-1 scale. Values above 1 are read as percentages."""
    v = _to_float(value)
    if v is None:
        return None
    if v > 1.0:
        v /= 100.0
    return max(0.0, min(1.0, v))


def _priority(value: Any) -> str:
    v = str(value or "").strip().lower()
    return v if v in PRIORITIES else "medium"


def _question_type(value: Any) -> str:
    v = str(value or "").strip().lower()
    v = QUESTION_TYPE_ALIASES.get(v, v)
    return v if v in QUESTION_TYPES else "text"


def _question_priority(value: Any) -> int:
    v = _to_float(value)
    if v is None:
        return 1
    return int(max(1, min(5, round(v))))


class _IdAllocator:
    """Keeps ids unique within one response; falls back to <prefix>-<n>."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self.seen: set[str] = set()

    def take(self, candidate: Any, index: int) -> str:
        cid = str(candidate).strip() if candidate is not None else ""
        if not cid or cid in self.seen:
            cid = f"{self.prefix}-{index}"
            n = index
            while cid in self.seen:
                n += 1
                cid = f"{self.prefix}-{n}"
        self.seen.add(cid)
        return cid


class ResponseNormalizer(BaseUtils):

    def normalize(self, raw: str | None, shape: Shape | str, **context) -> Normalized:
        handlers: dict[Shape, Callable[..., Normalized]] = {
            Shape.ANALYSIS: self.normalize_analysis,
            Shape.QUESTION_LIST: self.normalize_question_list,
            Shape.TASK_LIST: self.normalize_task_list,
            Shape.PLAN_WITH_SUBTASKS: self.normalize_plan_with_subtasks,
            Shape.TRI_OPTION_SUGGESTIONS: self.normalize_tri_option_suggestions,
            Shape.FEEDBACK_RESULT: self.normalize_feedback_result,
        }
        return handlers[Shape(shape)](raw, **context)

    # -----------------------
    # Shared helpers
    # -----------------------

    def _guarded(self, shape: Shape, fn: Callable[[], Normalized], fallback: Callable[[], Any]) -> Normalized:
        try:
            return fn()
        except Exception as e:
            logger.exception("normalizer[%s]: unexpected failure, using defaults", shape.value)
            return Normalized(fallback(), DEFAULT, [f"{type(e).__name__}: {e}"])

    def _structured(self, raw: str | None) -> tuple[Any, str, list[str]]:
        """Returns (data or None, fence-stripped text, warnings)."""
        text = self.clean_triple_backticks(raw or "").strip()
        if not text:
            return None, text, ["empty response"]
        try:
            return self.load_fault_tolerant_json(text), text, []
        except ValueError as e:
            return None, text, [f"structured parse failed: {str(e).splitlines()[0]}"]

    def _is_null(self, text: str) -> bool:
        return text.strip().strip('"').lower() in ("null", "none", "[]", "{}")

    def _clean_line(self, line: str) -> str:
        line = (line or "").strip()
        line = SUGGESTION_MARKER_RE.sub("", line, count=1)
        return self.strip_emphasis(line)

    # -----------------------
    # Tasks
    # -----------------------

    def _task_suggestion(self, item: Any) -> TaskSuggestion | None:
        if isinstance(item, str):
            title, timeline, priority = self._split_task_line(item)
            return TaskSuggestion(title=title, timeline=timeline or "", priority=priority) if title else None
        pair = _bullet_pair(item, TASK_FIELDS)
        if pair:
            title, timeline, priority = self._split_task_line(pair[0])
            return TaskSuggestion(title=title, timeline=pair[1] or timeline or "", priority=priority) if title else None
        if not isinstance(item, dict):
            return None
        title = self._coerce_field_to_str(_get(item, "title", "name", "task")) or "Untitled Task"
        return TaskSuggestion(
            title=title,
            timeline=self._coerce_field_to_str(_get(item, "timeline", "when", "duration")),
            priority=_priority(_get(item, "priority")),
        )

    def _split_task_line(self, line: str) -> tuple[str, str | None, str]:
        """'**Book a coach** [high] (this week)' -> ('Book a coach', 'this week', 'high')"""
        text = self._clean_line(line)
        priority = "medium"
        m = re.search(r"\[(low|medium|high)\]|\((low|medium|high)(?:\s+priority)?\)", text, flags=re.IGNORECASE)
        if m:
            priority = (m.group(1) or m.group(2)).lower()
            text = (text[: m.start()] + text[m.end():]).strip()
        timeline = None
        m = re.search(r"\(([^()]+)\)\s*$", text)
        if m:
            timeline = m.group(1).strip()
            text = text[: m.start()].strip()
        return self.strip_emphasis(text.rstrip(" -–:")), timeline, priority

    def _task(self, item: Any, index: int, ids: _IdAllocator) -> Task | None:
        if isinstance(item, str):
            title, timeline, priority = self._split_task_line(item)
            if not title:
                return None
            return Task(id=ids.take(None, index), title=title, timeline=timeline, priority=priority)
        pair = _bullet_pair(item, TASK_FIELDS)
        if pair:
            title, timeline, priority = self._split_task_line(pair[0])
            if not title:
                return None
            return Task(id=ids.take(None, index), title=title, timeline=pair[1] or timeline, priority=priority)
        if not isinstance(item, dict):
            return None
        deps = _get(item, "dependencies", "dependsOn", default=[])
        if isinstance(deps, str):
            deps = [d.strip() for d in deps.split(",") if d.strip()]
        description = _get(item, "description", "details")
        timeline = _get(item, "timeline", "when", "duration")
        return Task(
            id=ids.take(_get(item, "id"), index),
            title=self._coerce_field_to_str(_get(item, "title", "name", "task")) or "Untitled Task",
            description=self._coerce_field_to_str(description) if description is not None else None,
            timeline=self._coerce_field_to_str(timeline) if timeline is not None else None,
            completed=False,
            priority=_priority(_get(item, "priority")),
            dependencies=tuple(str(d) for d in deps) if isinstance(deps, (list, tuple)) else (),
        )

    def _tasks_from(self, items: Any, id_prefix: str) -> tuple[Task, ...]:
        if not isinstance(items, (list, tuple)):
            return ()
        ids = _IdAllocator(id_prefix)
        out = []
        for item in items:
            task = self._task(item, len(out) + 1, ids)
            if task is not None:
                out.append(task)
        return tuple(out)

    def normalize_task_list(self, raw: str | None, id_prefix: str = "task", **_) -> Normalized:
        return self._guarded(Shape.TASK_LIST, lambda: self._task_list(raw, id_prefix), tuple)

    def _task_list(self, raw, id_prefix) -> Normalized:
        data, text, warnings = self._structured(raw)
        if isinstance(data, dict):
            data = _get(data, "tasks", "updatedTasks", "plan", "items", default=None)
        if isinstance(data, list):
            return Normalized(self._tasks_from(data, id_prefix), STRUCTURED, warnings)
        if text and self._is_null(text):
            return Normalized((), STRUCTURED, warnings)

        section = self.extract_section(text, "Tasks", "Task Plan", "Plan", "Updated Tasks")
        items = self.extract_list_items(section or text)
        tasks = self._tasks_from(items, id_prefix)
        if tasks:
            return Normalized(tasks, PATTERN, warnings)
        return Normalized((), DEFAULT, warnings + ["no tasks found"])

    # -----------------------
    # Questions
    # -----------------------

    def _option(self, item: Any, qid: str, index: int, ids: _IdAllocator) -> QuestionOption | None:
        if isinstance(item, str):
            text = self._clean_line(item)
            return QuestionOption(id=ids.take(None, index), text=text) if text else None
        pair = _bullet_pair(item, OPTION_FIELDS)
        if pair:
            text = self._clean_line(": ".join(p for p in pair if p))
            return QuestionOption(id=ids.take(None, index), text=text) if text else None
        if not isinstance(item, dict):
            return None
        text = self._coerce_field_to_str(_get(item, "text", "label", "value", "title"))
        if not text:
            return None
        tasks = _get(item, "tasks", default=[])
        suggestions = [self._task_suggestion(t) for t in tasks] if isinstance(tasks, list) else []
        return QuestionOption(
            id=ids.take(_get(item, "id"), index),
            text=text,
            emoji=self._coerce_field_to_str(_get(item, "emoji")),
            tasks=tuple(s for s in suggestions if s is not None),
        )

    def _question(self, item: Any, index: int, ids: _IdAllocator) -> Question | None:
        if isinstance(item, str):
            text = self._clean_line(item)
            return Question(id=ids.take(None, index), text=text) if text else None
        pair = _bullet_pair(item, QUESTION_FIELDS)
        if pair:
            text = self._clean_line(": ".join(p for p in pair if p))
            return Question(id=ids.take(None, index), text=text) if text else None
        if not isinstance(item, dict):
            return None
        text = self._coerce_field_to_str(_get(item, "text", "question", "prompt"))
        if not text:
            return None
        qid = ids.take(_get(item, "id"), index)
        raw_options = _get(item, "options", "choices", default=[])
        option_ids = _IdAllocator(f"{qid}-opt")
        options = []
        if isinstance(raw_options, list):
            for opt in raw_options:
                o = self._option(opt, qid, len(options) + 1, option_ids)
                if o is not None:
                    options.append(o)
        return Question(
            id=qid,
            text=text,
            type=_question_type(_get(item, "type")),
            purpose=self._coerce_field_to_str(_get(item, "purpose", "reason")),
            options=tuple(options),
            priority=_question_priority(_get(item, "priority")),
        )

    def _questions_from(self, items: Any, id_prefix: str) -> tuple[Question, ...]:
        if not isinstance(items, (list, tuple)):
            return ()
        ids = _IdAllocator(id_prefix)
        out = []
        for item in items:
            q = self._question(item, len(out) + 1, ids)
            if q is not None:
                out.append(q)
        return tuple(out)

    def _pattern_questions(self, text: str) -> list[str]:
        section = self.extract_section(text, "Clarifying Questions", "Suggested Questions", "Questions", "Question")
        if section:
            items = self.extract_list_items(section) or [l for l in section.splitlines() if l.strip()]
            if items:
                return items
        return [self._clean_line(l) for l in text.splitlines() if l.strip().endswith(("?", "？"))]

    def normalize_question_list(self, raw: str | None, id_prefix: str = "q", **_) -> Normalized:
        return self._guarded(Shape.QUESTION_LIST, lambda: self._question_list(raw, id_prefix), tuple)

    def _question_list(self, raw, id_prefix) -> Normalized:
        data, text, warnings = self._structured(raw)
        if isinstance(data, dict):
            if _has_any(data, "text", "question") and not _has_any(data, "questions", "suggestedQuestions"):
                data = [data]
            else:
                data = _get(data, "questions", "suggestedQuestions", default=[])
        if isinstance(data, list):
            return Normalized(self._questions_from(data, id_prefix), STRUCTURED, warnings)
        if text and self._is_null(text):
            return Normalized((), STRUCTURED, warnings)

        questions = self._questions_from(self._pattern_questions(text), id_prefix)
        if questions:
            return Normalized(questions, PATTERN, warnings)
        return Normalized((), DEFAULT, warnings + ["no questions found"])

    # -----------------------
    # Analysis
    # -----------------------

    def normalize_analysis(self, raw: str | None, id_prefix: str = "q", **_) -> Normalized:
        return self._guarded(Shape.ANALYSIS, lambda: self._analysis(raw, id_prefix), GoalAnalysis)

    def _analysis(self, raw, id_prefix) -> Normalized:
        data, text, warnings = self._structured(raw)
        if isinstance(data, dict) and _has_any(
            data, "completeness", "needsClarification", "insights", "suggestedQuestions", "suggestedTasks"
        ):
            completeness = canonical_completeness(_get(data, "completeness"))
            needs = _to_bool(_get(data, "needsClarification"))
            if needs is None:
                needs = completeness <= 80 if completeness is not None else False
            missing = _get(data, "missingElements", default=[])
            tasks = _get(data, "suggestedTasks", default=[])
            category = _get(data, "category")
            analysis = GoalAnalysis(
                completeness=completeness or 0.0,
                needs_clarification=needs,
                insights=self._coerce_field_to_str(_get(data, "insights")),
                suggested_questions=self._questions_from(_get(data, "suggestedQuestions", "questions", default=[]), id_prefix),
                suggested_tasks=tuple(
                    t for t in (self._task_suggestion(x) for x in (tasks if isinstance(tasks, list) else [])) if t
                ),
                category=self._coerce_field_to_str(category) or None if category is not None else None,
                missing_elements=tuple(str(m) for m in missing) if isinstance(missing, list) else (),
                confidence=canonical_confidence(_get(data, "confidence")),
            )
            return Normalized(analysis, STRUCTURED, warnings)

        # Pattern extraction
        completeness = canonical_completeness(self.extract_labeled_number(text, "completeness"))
        insights = self.extract_section(text, "Insights", "Insight", "Analysis", "Summary")
        questions = self._questions_from(self._pattern_questions(text), id_prefix)
        tasks_section = self.extract_section(text, "Suggested Tasks", "Tasks")
        tasks = tuple(
            t for t in (self._task_suggestion(x) for x in self.extract_list_items(tasks_section)) if t
        )
        missing = tuple(self.extract_list_items(self.extract_section(text, "Missing Elements", "Missing Information")))
        category = self.extract_section(text, "Category").splitlines()[:1]
        confidence = canonical_confidence(self.extract_labeled_number(text, "confidence"))

        if completeness is None and not insights and not questions and not tasks:
            return Normalized(GoalAnalysis(), DEFAULT, warnings + ["no analysis fields found"])

        m = re.search(r"needs[\s_]*clarification\W{0,5}(true|false|yes|no)", text, flags=re.IGNORECASE)
        needs = _to_bool(m.group(1)) if m else None
        if needs is None:
            needs = completeness <= 80 if completeness is not None else False

        analysis = GoalAnalysis(
            completeness=completeness or 0.0,
            needs_clarification=needs,
            insights=insights,
            suggested_questions=questions,
            suggested_tasks=tasks,
            category=self.strip_emphasis(category[0]) if category else None,
            missing_elements=missing,
            confidence=confidence,
        )
        return Normalized(analysis, PATTERN, warnings)

    # -----------------------
    # Detailed plan (subtasks)
    # -----------------------

    def _clean_subtask(self, item: Any) -> str:
        pair = _bullet_pair(item, TASK_FIELDS)
        if pair:
            item = pair[0]
        elif isinstance(item, dict):
            item = _get(item, "title", "name", "task", default="")
        text = SUBTASK_MARKER_RE.sub("", str(item or "").strip(), count=1)
        return self.strip_emphasis(text)

    def _fit_subtasks(self, titles: list[str], id_prefix: str) -> tuple[tuple[Task, ...], list[str]]:
        warnings = []
        kept = [t for t in titles if t and len(t) <= SUBTASK_MAX_CHARS]
        if len(kept) < len(titles):
            warnings.append(f"dropped {len(titles) - len(kept)} subtask(s) outside the length ceiling")
        if len(kept) > SUBTASK_MAX:
            warnings.append(f"truncated subtasks from {len(kept)} to {SUBTASK_MAX}")
            kept = kept[:SUBTASK_MAX]
        if len(kept) < SUBTASK_MIN:
            warnings.append(f"padded subtasks from {len(kept)} to {SUBTASK_MIN}")
            for default in DEFAULT_SUBTASKS:
                if len(kept) >= SUBTASK_MIN:
                    break
                if default not in kept:
                    kept.append(default)
        subtasks = tuple(
            Task(id=f"{id_prefix}-{i}", title=title, completed=False) for i, title in enumerate(kept, start=1)
        )
        return subtasks, warnings

    def _fit_description(self, description: str) -> str:
        description = (description or "").strip()
        if len(description) > DESCRIPTION_MAX_CHARS:
            description = description[: DESCRIPTION_MAX_CHARS - 3] + "..."
        return description

    def normalize_plan_with_subtasks(
        self,
        raw: str | None,
        task_title: str = "",
        selected_option: str = "",
        id_prefix: str = "subtask",
        **_,
    ) -> Normalized:
        return self._guarded(
            Shape.PLAN_WITH_SUBTASKS,
            lambda: self._plan_with_subtasks(raw, task_title, selected_option, id_prefix),
            lambda: self.default_plan(task_title, selected_option, id_prefix),
        )

    def default_plan(self, task_title: str, selected_option: str, id_prefix: str = "subtask") -> DetailedPlan:
        subtasks, _ = self._fit_subtasks([], id_prefix)
        return DetailedPlan(
            title=task_title or "Untitled Task",
            description=self._fit_description(selected_option),
            subtasks=subtasks,
        )

    def _plan_with_subtasks(self, raw, task_title, selected_option, id_prefix) -> Normalized:
        data, text, warnings = self._structured(raw)
        if isinstance(data, dict) and _has_any(data, "subtasks", "title", "description", "summary"):
            items = _get(data, "subtasks", "steps", "checklist", default=[])
            titles = [self._clean_subtask(x) for x in items] if isinstance(items, list) else []
            subtasks, fit_warnings = self._fit_subtasks(titles, id_prefix)
            plan = DetailedPlan(
                title=self._coerce_field_to_str(_get(data, "title")) or task_title or "Untitled Task",
                description=self._fit_description(
                    self._coerce_field_to_str(_get(data, "description", "summary")) or selected_option
                ),
                subtasks=subtasks,
            )
            return Normalized(plan, STRUCTURED, warnings + fit_warnings)

        title = None
        m = re.search(r"^[ \t]*#{1,2}(?!#)[ \t]*(.+?)[ \t]*$", text, flags=re.MULTILINE)
        if m:
            title = self.strip_emphasis(m.group(1))

        parts = [
            self.extract_section(text, "Approach", "Method", "Description", "Summary", "方案逻辑"),
            self.extract_section(text, "Notes", "Risks", "注意事项"),
        ]
        description = " ".join(p for p in parts if p)

        section = self.extract_section(text, "Subtasks", "Subtask List", "Checklist", "Steps", "子任务清单")
        if section:
            lines = self.extract_list_items(section) or [l for l in section.splitlines() if l.strip()]
        else:
            lines = self.extract_list_items(text)
        titles = [self._clean_subtask(l) for l in lines]

        if not title and not description and not titles:
            return Normalized(
                self.default_plan(task_title, selected_option, id_prefix),
                DEFAULT,
                warnings + ["no plan structure found"],
            )

        subtasks, fit_warnings = self._fit_subtasks(titles, id_prefix)
        plan = DetailedPlan(
            title=title or task_title or "Untitled Task",
            description=self._fit_description(description or selected_option),
            subtasks=subtasks,
        )
        return Normalized(plan, PATTERN, warnings + fit_warnings)

    # -----------------------
    # Tri-option suggestions
    # -----------------------

    def _suggestion_text(self, item: Any) -> str:
        pair = _bullet_pair(item, SUGGESTION_FIELDS)
        if pair:
            name = self._clean_line(pair[0])
            return f"{name}({pair[1]})" if name and pair[1] else name
        if isinstance(item, dict):
            name = self._coerce_field_to_str(_get(item, "name", "title", "text", "option"))
            why = self._coerce_field_to_str(_get(item, "rationale", "reason", "why"))
            return f"{name}({why})" if name and why else name
        return self._clean_line(str(item or ""))

    def _pattern_suggestions(self, text: str) -> list[str]:
        lines = [l for l in text.splitlines() if l.strip()]
        marked = [l for l in lines if SUGGESTION_MARKER_RE.match(l.strip())]
        out = []
        for line in marked or lines:
            s = self._clean_line(line)
            if len(s) < 2 or len(s) > SUGGESTION_MAX_CHARS:
                continue
            if s.endswith((":", "：")) or re.match(r"^(core\s+)?(dimension|options?)\b", s, flags=re.IGNORECASE):
                continue
            m = re.match(r"^([^:：()]{2,30})\s*[:：]\s*(.+)$", s)
            if m:
                s = f"{m.group(1).strip()}({m.group(2).strip()})"
            out.append(s)
        return out

    def _fit_suggestions(self, items: list[str], task_title: str) -> tuple[tuple[str, str, str], list[str]]:
        warnings = []
        items = [i for i in items if i]
        if len(items) > 3:
            words = [w for w in (task_title or "").lower().split() if w]
            candidates = items[:5]
            candidates = sorted(candidates, key=lambda s: sum(1 for w in words if w in s.lower()), reverse=True)
            warnings.append(f"truncated suggestions from {len(items)} to 3")
            items = candidates[:3]
        if len(items) < 3:
            bucket_name, bucket = suggestion_bucket(task_title)
            warnings.append(f"padded suggestions from {len(items)} to 3 from the {bucket_name} bucket")
            for default in bucket + GENERIC_SUGGESTIONS:
                if len(items) >= 3:
                    break
                if default not in items:
                    items.append(default)
        return (items[0], items[1], items[2]), warnings

    def normalize_tri_option_suggestions(self, raw: str | None, task_title: str = "", **_) -> Normalized:
        return self._guarded(
            Shape.TRI_OPTION_SUGGESTIONS,
            lambda: self._tri_option(raw, task_title),
            lambda: SuggestionSet(suggestions=self._fit_suggestions([], task_title)[0]),
        )

    def _tri_option(self, raw, task_title) -> Normalized:
        data, text, warnings = self._structured(raw)
        if isinstance(data, dict):
            data = _get(data, "suggestions", "options", default=None)
        if isinstance(data, list):
            items = [self._suggestion_text(x) for x in data]
            fitted, fit_warnings = self._fit_suggestions(items, task_title)
            return Normalized(SuggestionSet(suggestions=fitted), STRUCTURED, warnings + fit_warnings)

        items = self._pattern_suggestions(text)
        fitted, fit_warnings = self._fit_suggestions(items, task_title)
        strategy = PATTERN if items else DEFAULT
        return Normalized(SuggestionSet(suggestions=fitted), strategy, warnings + fit_warnings)

    # -----------------------
    # Feedback
    # -----------------------

    def normalize_feedback_result(self, raw: str | None, id_prefix: str = "task", **_) -> Normalized:
        return self._guarded(Shape.FEEDBACK_RESULT, lambda: self._feedback(raw, id_prefix), FeedbackResult)

    def _feedback(self, raw, id_prefix) -> Normalized:
        data, text, warnings = self._structured(raw)
        if isinstance(data, dict) and _has_any(data, "updatedTasks", "suggestions", "confidenceLevel", "confidence"):
            suggestions = _get(data, "suggestions", default=[])
            result = FeedbackResult(
                updated_tasks=self._tasks_from(_get(data, "updatedTasks", "tasks", default=[]), id_prefix),
                suggestions=tuple(self._coerce_field_to_str(s) for s in suggestions if s)
                if isinstance(suggestions, list) else (),
                confidence_level=canonical_confidence(_get(data, "confidenceLevel", "confidence")) or 0.0,
            )
            return Normalized(result, STRUCTURED, warnings)

        tasks = self._tasks_from(
            self.extract_list_items(self.extract_section(text, "Updated Tasks", "Tasks")), id_prefix
        )
        suggestions = tuple(self.extract_list_items(self.extract_section(text, "Suggestions", "Improvements")))
        confidence = canonical_confidence(self.extract_labeled_number(text, "confidence"))
        if not tasks and not suggestions and confidence is None:
            return Normalized(FeedbackResult(), DEFAULT, warnings + ["no feedback fields found"])
        result = FeedbackResult(updated_tasks=tasks, suggestions=suggestions, confidence_level=confidence or 0.0)
        return Normalized(result, PATTERN, warnings)
