"""
Response normalizer: structured replies pass through, free-form replies are
pattern-extracted, anything else falls back to typed defaults.
"""

import json

import pytest

from goalcoach.entities import DetailedPlan, FeedbackResult, GoalAnalysis, Question, SuggestionSet, Task
from goalcoach.normalizer import (
    DEFAULT,
    DEFAULT_SUBTASKS,
    GENERIC_SUGGESTIONS,
    PATTERN,
    STRUCTURED,
    ResponseNormalizer,
    Shape,
    canonical_completeness,
    canonical_confidence,
    suggestion_bucket,
)


@pytest.fixture
def normalizer():
    return ResponseNormalizer()


class TestScales:

    @pytest.mark.parametrize("raw, expected", [(0.75, 75.0), ("60%", 60.0), (45, 45.0), (150, 100.0), (-3, 0.0)])
    def test_completeness(self, raw, expected):
        assert canonical_completeness(raw) == expected

    @pytest.mark.parametrize("raw, expected", [(0.85, 0.85), (85, 0.85), ("90%", 0.9), (1000, 1.0)])
    def test_confidence(self, raw, expected):
        assert canonical_confidence(raw) == pytest.approx(expected)

    def test_unparseable(self):
        assert canonical_completeness("n/a") is None
        assert canonical_confidence(None) is None


class TestAnalysis:

    def test_structured_passes_through(self, normalizer):
        raw = json.dumps({
            "completeness": 45,
            "needsClarification": True,
            "insights": "Needs a deadline.",
            "suggestedQuestions": [{"id": "q-1", "text": "When?", "type": "text", "purpose": "deadline", "priority": 1}],
            "suggestedTasks": [{"title": "Buy shoes", "timeline": "today", "priority": "high"}],
        })
        result = normalizer.normalize(raw, Shape.ANALYSIS)
        assert result.strategy == STRUCTURED
        assert not result.degraded
        analysis = result.value
        assert analysis.completeness == 45
        assert analysis.needs_clarification is True
        assert analysis.suggested_questions == (Question(id="q-1", text="When?", purpose="deadline"),)
        assert analysis.suggested_tasks[0].priority == "high"

    def test_fenced_json_with_fraction_completeness(self, normalizer):
        raw = '```json\n{"completeness": 0.75, "insights": "ok"}\n```'
        result = normalizer.normalize_analysis(raw)
        assert result.strategy == STRUCTURED
        assert result.value.completeness == 75
        assert result.value.needs_clarification is True

    def test_markdown_is_pattern_extracted(self, normalizer):
        raw = (
            "Completeness: 60%\n\n"
            "## Insights\nThe goal lacks a deadline.\n\n"
            "## Questions\n- When do you want to finish?\n- How many days a week can you train?"
        )
        result = normalizer.normalize_analysis(raw)
        assert result.strategy == PATTERN
        assert result.degraded
        analysis = result.value
        assert analysis.completeness == 60
        assert analysis.insights == "The goal lacks a deadline."
        assert [q.id for q in analysis.suggested_questions] == ["q-1", "q-2"]
        assert analysis.suggested_questions[0].text == "When do you want to finish?"
        assert analysis.needs_clarification is True

    def test_garbage_gives_default(self, normalizer):
        result = normalizer.normalize_analysis("lorem ipsum")
        assert result.strategy == DEFAULT
        assert result.value == GoalAnalysis()
        assert result.warnings


class TestQuestions:

    def test_null_is_an_empty_structured_list(self, normalizer):
        result = normalizer.normalize_question_list("null")
        assert result.value == ()
        assert result.strategy == STRUCTURED

    def test_fields_are_repaired(self, normalizer):
        raw = json.dumps([{"id": "q-1", "text": "Why?", "type": "open", "options": ["A", "B"], "priority": 9}])
        [q] = normalizer.normalize_question_list(raw).value
        assert q.type == "text"
        assert q.priority == 5
        assert [o.id for o in q.options] == ["q-1-opt-1", "q-1-opt-2"]
        assert [o.text for o in q.options] == ["A", "B"]

    def test_ids_are_generated_and_deduplicated(self, normalizer):
        raw = json.dumps([{"id": "a", "text": "One?"}, {"id": "a", "text": "Two?"}, {"text": "Three?"}])
        questions = normalizer.normalize_question_list(raw).value
        assert [q.id for q in questions] == ["a", "q-2", "q-3"]

    def test_single_question_object(self, normalizer):
        result = normalizer.normalize_question_list('{"id": "q-9", "text": "Where?"}')
        assert [q.id for q in result.value] == ["q-9"]

    def test_prose_questions(self, normalizer):
        result = normalizer.normalize_question_list("Thanks!\nWhat time of day suits you?\nGreat goal.")
        assert result.strategy == PATTERN
        assert [q.text for q in result.value] == ["What time of day suits you?"]

    def test_bulleted_label_questions_keep_their_text(self, normalizer):
        raw = "- Deadline: when do you want to finish?\n- Budget: how much can you spend?"
        result = normalizer.normalize_question_list(raw)
        assert result.strategy == STRUCTURED
        assert [(q.id, q.text) for q in result.value] == [
            ("q-1", "Deadline: when do you want to finish?"),
            ("q-2", "Budget: how much can you spend?"),
        ]


class TestTasks:

    def test_structured_unchanged(self, normalizer):
        raw = json.dumps([{"id": "task-1", "title": "Buy shoes", "timeline": "today", "priority": "high"}])
        result = normalizer.normalize_task_list(raw)
        assert result.strategy == STRUCTURED
        assert result.value == (Task(id="task-1", title="Buy shoes", timeline="today", priority="high"),)

    def test_bad_fields_fixed(self, normalizer):
        raw = json.dumps({"tasks": [{"title": "", "priority": "urgent"}, {"id": "x", "name": "Run"}]})
        tasks = normalizer.normalize_task_list(raw).value
        assert tasks[0] == Task(id="task-1", title="Untitled Task", priority="medium")
        assert tasks[1].id == "x"
        assert tasks[1].title == "Run"

    def test_markdown_list(self, normalizer):
        raw = "- **Book a coach** [high] (this week)\n- Buy shoes"
        result = normalizer.normalize_task_list(raw)
        assert result.strategy == PATTERN
        assert result.value == (
            Task(id="task-1", title="Book a coach", timeline="this week", priority="high"),
            Task(id="task-2", title="Buy shoes"),
        )

    def test_bulleted_label_tasks_keep_titles(self, normalizer):
        raw = "- Book a coach: this week\n- Run 5k: every Sunday"
        result = normalizer.normalize_task_list(raw)
        assert result.strategy == STRUCTURED
        assert not result.degraded
        assert result.value == (
            Task(id="task-1", title="Book a coach", timeline="this week"),
            Task(id="task-2", title="Run 5k", timeline="every Sunday"),
        )

    def test_keyed_records_are_not_folded(self, normalizer):
        raw = "- title: Book a coach\n  timeline: this week\n- title: Run 5k"
        tasks = normalizer.normalize_task_list(raw).value
        assert [(t.title, t.timeline) for t in tasks] == [("Book a coach", "this week"), ("Run 5k", None)]

    def test_null_and_garbage(self, normalizer):
        assert normalizer.normalize_task_list("null").strategy == STRUCTURED
        result = normalizer.normalize_task_list("no idea")
        assert result.value == ()
        assert result.strategy == DEFAULT


class TestPlanWithSubtasks:

    def test_markdown_plan(self, normalizer):
        raw = (
            "## Morning run plan\n"
            "### Approach\nStart slow and build up.\n"
            "### Notes\nStop if knees hurt.\n"
            "### Subtasks\n- Lay out shoes\n- Set alarm\n- Run 10 minutes\n- Stretch\n- Log the run"
        )
        result = normalizer.normalize_plan_with_subtasks(raw, task_title="Morning run")
        assert result.strategy == PATTERN
        plan = result.value
        assert plan.title == "Morning run plan"
        assert plan.description == "Start slow and build up. Stop if knees hurt."
        assert [s.title for s in plan.subtasks] == ["Lay out shoes", "Set alarm", "Run 10 minutes", "Stretch", "Log the run"]
        assert [s.id for s in plan.subtasks] == [f"subtask-{i}" for i in range(1, 6)]
        assert not any(s.completed for s in plan.subtasks)

    def test_garbage_gives_default_plan(self, normalizer):
        result = normalizer.normalize_plan_with_subtasks("lorem ipsum", task_title="Run", selected_option="Jog slowly")
        assert result.strategy == DEFAULT
        assert result.value == DetailedPlan(
            title="Run",
            description="Jog slowly",
            subtasks=tuple(Task(id=f"subtask-{i}", title=t) for i, t in enumerate(DEFAULT_SUBTASKS[:4], start=1)),
        )

    def test_structured_plan_is_fitted(self, normalizer):
        raw = json.dumps({
            "title": "Run plan",
            "description": "x" * 150,
            "subtasks": ["Buy shoes", "y" * 31, "Warm up", "Run", "Cool down", "Stretch", "Hydrate", "Sleep", "Log it"],
        })
        result = normalizer.normalize_plan_with_subtasks(raw)
        assert result.strategy == STRUCTURED
        plan = result.value
        assert len(plan.description) == 100
        assert plan.description.endswith("...")
        assert [s.title for s in plan.subtasks] == ["Buy shoes", "Warm up", "Run", "Cool down", "Stretch", "Hydrate"]
        assert len(result.warnings) == 2

    def test_short_plan_is_padded(self, normalizer):
        raw = json.dumps({"title": "Run plan", "subtasks": ["Stretch"]})
        plan = normalizer.normalize_plan_with_subtasks(raw).value
        assert [s.title for s in plan.subtasks] == ["Stretch", *DEFAULT_SUBTASKS[:3]]

    def test_labelled_sections(self, normalizer):
        raw = "SUMMARY: Run gently three times a week.\nSUBTASKS:\n- Buy shoes\n- Plan route\n- Warm up\n- Cool down"
        result = normalizer.normalize_plan_with_subtasks(raw, task_title="Run")
        plan = result.value
        assert plan.title == "Run"
        assert plan.description == "Run gently three times a week."
        assert [s.title for s in plan.subtasks] == ["Buy shoes", "Plan route", "Warm up", "Cool down"]

    def test_bulleted_label_subtasks_keep_titles(self, normalizer):
        raw = (
            "title: Jog plan\n"
            "description: Easy jogs.\n"
            "subtasks:\n"
            "  - Warm up: 5 min\n"
            "  - Jog: 20 min\n"
            "  - Stretch: 5 min\n"
            "  - Log the run: notes\n"
        )
        result = normalizer.normalize_plan_with_subtasks(raw, task_title="Run")
        assert result.strategy == STRUCTURED
        assert result.warnings == []
        assert result.value.title == "Jog plan"
        assert [s.title for s in result.value.subtasks] == ["Warm up", "Jog", "Stretch", "Log the run"]

    @pytest.mark.parametrize("raw", ["", "lorem", '{"subtasks": []}', "- " + "z" * 40])
    def test_subtask_count_always_within_bounds(self, normalizer, raw):
        plan = normalizer.normalize_plan_with_subtasks(raw, task_title="Run").value
        assert 4 <= len(plan.subtasks) <= 6
        assert all(len(s.title) <= 30 for s in plan.subtasks)
        assert len(plan.description) <= 100


class TestTriOptionSuggestions:

    def test_numbered_bold_list_is_padded_from_bucket(self, normalizer):
        raw = "1. **Quiet study (focus session)**\n2. **Group study (peer pressure)**"
        result = normalizer.normalize_tri_option_suggestions(raw, task_title="study for exams")
        assert result.strategy == PATTERN
        assert result.value.suggestions == (
            "Quiet study (focus session)",
            "Group study (peer pressure)",
            "Pomodoro technique(25-minute focus blocks)",
        )

    def test_more_than_three_ranked_by_title_overlap(self, normalizer):
        raw = json.dumps(["Read a book", "Morning run", "Evening run outdoors", "Stretch at home", "Cook dinner"])
        result = normalizer.normalize_tri_option_suggestions(raw, task_title="evening run")
        assert list(result.value.suggestions) == ["Evening run outdoors", "Morning run", "Read a book"]

    def test_headers_skipped_and_labels_folded(self, normalizer):
        raw = "# Options\n1. Walk: easy start\n2. Swim: low impact\n3. Yoga: flexibility"
        result = normalizer.normalize_tri_option_suggestions(raw, task_title="Get fit")
        assert result.value.suggestions == ("Walk(easy start)", "Swim(low impact)", "Yoga(flexibility)")

    def test_bulleted_label_suggestions_are_kept(self, normalizer):
        raw = "- Quiet study: focus session\n- Group study: peer pressure\n- Library hours: fixed place"
        result = normalizer.normalize_tri_option_suggestions(raw, task_title="study for exams")
        assert result.strategy == STRUCTURED
        assert result.warnings == []
        assert result.value.suggestions == (
            "Quiet study(focus session)",
            "Group study(peer pressure)",
            "Library hours(fixed place)",
        )

    def test_object_items(self, normalizer):
        raw = json.dumps({"suggestions": [{"name": "Walk", "rationale": "easy"}, {"name": "Swim"}, "Yoga"]})
        result = normalizer.normalize_tri_option_suggestions(raw)
        assert result.strategy == STRUCTURED
        assert result.value.suggestions == ("Walk(easy)", "Swim", "Yoga")

    def test_empty_reply_uses_generic_set(self, normalizer):
        result = normalizer.normalize_tri_option_suggestions("", task_title="Learn guitar")
        assert result.strategy == DEFAULT
        assert result.value == SuggestionSet(suggestions=GENERIC_SUGGESTIONS)

    @pytest.mark.parametrize(
        "title, bucket",
        [("Morning workout", "exercise"), ("No food after 6pm", "diet"), ("Review notes", "study"), ("Paint", "generic")],
    )
    def test_buckets(self, title, bucket):
        assert suggestion_bucket(title)[0] == bucket


class TestFeedback:

    def test_structured_feedback(self, normalizer):
        raw = json.dumps({
            "updatedTasks": [{"id": "task-1", "title": "Run 10 min", "priority": "low"}],
            "suggestions": ["Go slower"],
            "confidenceLevel": 85,
        })
        result = normalizer.normalize(raw, "feedback-result")
        assert result.strategy == STRUCTURED
        assert result.value == FeedbackResult(
            updated_tasks=(Task(id="task-1", title="Run 10 min", priority="low"),),
            suggestions=("Go slower",),
            confidence_level=0.85,
        )

    def test_garbage_feedback(self, normalizer):
        result = normalizer.normalize_feedback_result("sounds good")
        assert result.strategy == DEFAULT
        assert result.value == FeedbackResult()


ADVERSARIAL = [
    None,
    "",
    "{",
    "[[[",
    '```json\n{"a":',
    "\x00\x01\x02",
    "null",
    "12",
    '"just a string"',
    "- \n- \n",
    '{"completeness": "abc", "subtasks": 7, "suggestions": {"x": 1}}',
    "## \n### \n**",
    "[1, 2, 3]",
]

EXPECTED_TYPES = {
    Shape.ANALYSIS: GoalAnalysis,
    Shape.QUESTION_LIST: tuple,
    Shape.TASK_LIST: tuple,
    Shape.PLAN_WITH_SUBTASKS: DetailedPlan,
    Shape.TRI_OPTION_SUGGESTIONS: SuggestionSet,
    Shape.FEEDBACK_RESULT: FeedbackResult,
}


@pytest.mark.parametrize("shape", list(Shape))
@pytest.mark.parametrize("raw", ADVERSARIAL)
def test_never_raises(normalizer, shape, raw):
    result = normalizer.normalize(raw, shape, task_title="Run")
    assert isinstance(result.value, EXPECTED_TYPES[shape])
    assert result.strategy in (STRUCTURED, PATTERN, DEFAULT)
