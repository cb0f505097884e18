"""
Unit tests for the clarification state machine (goalcoach/state_machine.py).
"""

import pytest

from goalcoach.entities import (
    AnalysisComplete,
    ClarificationEntry,
    ClarificationNeeded,
    FeedbackProvided,
    GoalAnalysis,
    GoalContext,
    GoalInput,
    PlanGenerated,
    Question,
    QuestionAnswered,
    Reset,
    STAGES,
    Task,
    initial_state,
)
from goalcoach.errors import UnknownEventError
from goalcoach.state_machine import GoalStateMachine, calculate_confidence, reduce


def _analysis(completeness, *qids):
    return GoalAnalysis(
        completeness=completeness,
        needs_clarification=completeness <= 80,
        insights="Needs a deadline.",
        suggested_questions=tuple(Question(id=q, text=f"Question {q}?") for q in qids),
    )


@pytest.fixture
def machine():
    return GoalStateMachine()


@pytest.fixture
def analysing(machine):
    machine.dispatch(GoalInput(text="Run a marathon"))
    return machine


class TestTransitions:

    def test_initial_state(self, machine):
        assert machine.state == initial_state()
        assert machine.state.current_stage == "initial"
        assert machine.state.context.clarification_history == ()

    def test_goal_input_moves_to_analysis(self, machine):
        result = machine.dispatch(GoalInput(text="Run a marathon"))
        assert result.applied
        state = machine.state
        assert state.current_stage == "analysis"
        assert state.goal.title == "Run a marathon"
        [entry] = state.context.clarification_history
        assert entry.type == "answer"
        assert entry.content == "Run a marathon"

    def test_low_completeness_goes_to_clarification(self, analysing):
        analysing.dispatch(AnalysisComplete(analysis=_analysis(45, "q-1")))
        state = analysing.state
        assert state.current_stage == "clarification"
        assert len(state.questions) > 0
        assert state.analysis.completeness == 45
        assert state.context.last_analysis == state.analysis
        assert state.context.clarification_history[-1].type == "suggestion"

    def test_high_completeness_goes_to_planning(self, analysing):
        analysing.dispatch(AnalysisComplete(analysis=_analysis(92)))
        assert analysing.state.current_stage == "planning"

    def test_completeness_of_exactly_80_still_clarifies(self, analysing):
        analysing.dispatch(AnalysisComplete(analysis=_analysis(80)))
        assert analysing.state.current_stage == "clarification"

    def test_analysis_merges_category_and_missing_elements(self, analysing):
        analysis = _analysis(50).model_copy(update={"category": "health", "missing_elements": ("deadline",)})
        analysing.dispatch(AnalysisComplete(analysis=analysis))
        assert analysing.state.context.category == "health"
        assert analysing.state.context.missing_elements == ("deadline",)

    def test_answering_last_question_moves_to_planning(self, analysing):
        analysing.dispatch(AnalysisComplete(analysis=_analysis(45, "q-1")))
        analysing.dispatch(QuestionAnswered(question_id="q-1", answer="In October"))
        state = analysing.state
        assert state.current_stage == "planning"
        assert state.questions == ()
        last = state.context.clarification_history[-1]
        assert last.type == "answer"
        assert last.metadata["questionId"] == "q-1"

    def test_answering_one_of_two_keeps_stage(self, analysing):
        analysing.dispatch(AnalysisComplete(analysis=_analysis(45, "q-1", "q-2")))
        analysing.dispatch(QuestionAnswered(question_id="q-2", answer="Three times a week"))
        state = analysing.state
        assert state.current_stage == "clarification"
        assert [q.id for q in state.questions] == ["q-1"]

    def test_clarification_needed_appends_and_rekeys(self, analysing):
        analysing.dispatch(AnalysisComplete(analysis=_analysis(45, "q-1")))
        analysing.dispatch(ClarificationNeeded(questions=(Question(id="q-1", text="Where?"),)))
        state = analysing.state
        assert state.current_stage == "clarification"
        assert [q.id for q in state.questions] == ["q-1", "q-1-2"]
        assert state.context.clarification_history[-1].type == "question"

    def test_plan_generated_moves_to_refinement(self, analysing):
        tasks = (Task(id="task-1", title="Buy shoes"), Task(id="task-2", title="Run 5k"))
        analysing.dispatch(PlanGenerated(tasks=tasks))
        state = analysing.state
        assert state.current_stage == "refinement"
        assert state.goal.tasks == tasks
        last = state.context.clarification_history[-1]
        assert last.type == "suggestion"
        assert last.metadata["tag"] == "New Task"

    def test_feedback_twice_appends_two_entries(self, analysing):
        analysing.dispatch(PlanGenerated(tasks=(Task(id="task-1", title="Buy shoes"),)))
        stage = analysing.state.current_stage
        analysing.dispatch(FeedbackProvided(text="too slow"))
        analysing.dispatch(FeedbackProvided(text="too slow"))
        feedback = [e for e in analysing.state.context.clarification_history if e.type == "feedback"]
        assert len(feedback) == 2
        assert feedback[0].timestamp < feedback[1].timestamp
        assert analysing.state.current_stage == stage

    def test_dict_events_are_accepted(self, machine):
        machine.dispatch({"type": "GOAL_INPUT", "text": "Learn Spanish"})
        assert machine.state.goal.title == "Learn Spanish"


class TestReset:

    def test_reset_from_every_stage_returns_initial_state(self, machine):
        sequences = [
            [],
            [GoalInput(text="Read more")],
            [GoalInput(text="Read more"), AnalysisComplete(analysis=_analysis(30, "q-1"))],
            [GoalInput(text="Read more"), AnalysisComplete(analysis=_analysis(95))],
            [GoalInput(text="Read more"), PlanGenerated(tasks=(Task(id="t", title="Read"),))],
        ]
        for events in sequences:
            m = GoalStateMachine()
            for event in events:
                m.dispatch(event)
            m.dispatch(Reset())
            assert m.state == initial_state()


class TestInvalidTransitions:

    def test_unknown_question_id_is_a_noop(self, analysing):
        analysing.dispatch(AnalysisComplete(analysis=_analysis(45, "q-1")))
        before = analysing.state
        result = analysing.dispatch(QuestionAnswered(question_id="nope", answer="?"))
        assert not result.applied
        assert result.warning
        assert analysing.state is before
        assert analysing.state.questions == before.questions
        assert analysing.state.current_stage == "clarification"

    def test_analysis_outside_analysis_stage_is_a_noop(self, machine):
        before = machine.state
        result = machine.dispatch(AnalysisComplete(analysis=_analysis(90)))
        assert not result.applied
        assert machine.state is before
        log = machine.transitions[-1]
        assert log.applied is False
        assert log.previous_stage == log.next_stage == "initial"

    def test_unknown_event_raises_without_mutation(self, analysing):
        before = analysing.state
        with pytest.raises(UnknownEventError):
            analysing.dispatch({"type": "TELEPORT"})
        with pytest.raises(UnknownEventError):
            analysing.dispatch("GOAL_INPUT")
        assert analysing.state is before

    def test_reduce_rejects_non_events(self):
        with pytest.raises(UnknownEventError):
            reduce(initial_state(), object())


class TestInvariants:

    def test_history_only_grows_and_never_changes(self, machine):
        events = [
            GoalInput(text="Write a novel"),
            AnalysisComplete(analysis=_analysis(40, "q-1", "q-2")),
            QuestionAnswered(question_id="q-1", answer="Fantasy"),
            QuestionAnswered(question_id="missing", answer="x"),
            QuestionAnswered(question_id="q-2", answer="One year"),
            ClarificationNeeded(questions=(Question(id="q-3", text="Daily word count?"),)),
            QuestionAnswered(question_id="q-3", answer="500"),
            PlanGenerated(tasks=(Task(id="t-1", title="Outline"),)),
            FeedbackProvided(text="too slow"),
        ]
        previous: tuple[ClarificationEntry, ...] = ()
        for event in events:
            machine.dispatch(event)
            history = machine.state.context.clarification_history
            assert len(history) >= len(previous)
            assert history[: len(previous)] == previous
            assert machine.state.current_stage in STAGES
            previous = history

    def test_reduce_is_pure(self):
        state = initial_state()
        nxt = reduce(state, GoalInput(text="Sleep earlier"))
        assert state == initial_state()
        assert nxt is not state

    def test_transition_log_records_stages(self, machine):
        machine.dispatch(GoalInput(text="Sleep earlier"))
        machine.dispatch(AnalysisComplete(analysis=_analysis(90)))
        assert [(t.event_type, t.previous_stage, t.next_stage) for t in machine.transitions] == [
            ("GOAL_INPUT", "initial", "analysis"),
            ("ANALYSIS_COMPLETE", "analysis", "planning"),
        ]


class TestHelpers:

    def test_current_question_and_has_more(self, analysing):
        assert analysing.current_question() is None
        assert not analysing.has_more_questions()
        analysing.dispatch(AnalysisComplete(analysis=_analysis(45, "q-1", "q-2")))
        assert analysing.current_question().id == "q-1"
        assert analysing.has_more_questions()

    def test_calculate_confidence_weights(self):
        analysis = GoalAnalysis(completeness=100)
        assert calculate_confidence(GoalContext(last_analysis=analysis)) == pytest.approx(0.4)

        answer = ClarificationEntry(type="answer", content="yes", metadata={"confidence": 1.0})
        ctx = GoalContext(last_analysis=analysis, clarification_history=(answer,))
        assert calculate_confidence(ctx) == pytest.approx(0.7)

        tasks = (Task(id="t", title="Run", timeline="daily"),)
        assert calculate_confidence(ctx, tasks) == pytest.approx(1.0)

    def test_calculate_confidence_empty_context(self):
        assert calculate_confidence(GoalContext()) == 0.0

    def test_is_complete_requires_refinement_and_confidence(self, analysing):
        assert not analysing.is_complete()
        analysing.dispatch(AnalysisComplete(analysis=_analysis(100)))
        tasks = (Task(id="t", title="Run", timeline="daily"),)
        analysing.dispatch(PlanGenerated(tasks=tasks))
        # completeness 1.0*0.4 + "Run a marathon" (3 words -> 0.6)*0.3 + 1.0*0.3
        assert analysing.state.context.confidence_level == pytest.approx(0.88)
        assert analysing.is_complete()
