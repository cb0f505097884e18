import pytest
from pydantic import ValidationError

from goalcoach.entities import ClarificationEntry
from goalcoach.interaction_log import InteractionLog, entry_tag, render_entry


class TestInteractionLog:

    def test_append_returns_new_log(self):
        log = InteractionLog()
        grown = log.append("answer", "Run a marathon")
        assert len(log) == 0
        assert len(grown) == 1
        assert grown[0].content == "Run a marathon"
        assert grown[0].id.startswith("entry-")

    def test_timestamps_strictly_increase(self):
        log = InteractionLog()
        for i in range(50):
            log = log.append("feedback", f"note {i}")
        stamps = [e.timestamp for e in log]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    def test_entries_are_frozen(self):
        entry = InteractionLog().append("answer", "yes")[0]
        with pytest.raises(ValidationError):
            entry.content = "no"

    def test_entry_metadata_is_read_only_copy(self):
        metadata = {"questionId": "q-1"}
        entry = InteractionLog().append("answer", "May", metadata)[0]
        metadata["questionId"] = "q-2"
        assert entry.metadata["questionId"] == "q-1"
        with pytest.raises(TypeError):
            entry.metadata["questionId"] = "q-3"
        assert entry.to_wire()["metadata"] == {"questionId": "q-1"}

    def test_of_type(self):
        log = InteractionLog().append("question", "When?").append("answer", "May").append("answer", "Daily")
        assert [e.content for e in log.of_type("answer")] == ["May", "Daily"]
        assert log.of_type("feedback") == []

    def test_as_lines(self):
        log = InteractionLog().append("question", "When?").append("feedback", "too\nslow")
        assert log.as_lines() == ["[Question] When?", "[Task Feedback] too slow"]


class TestRendering:

    @pytest.mark.parametrize(
        "entry_type, tag",
        [("question", "Question"), ("answer", "Answer"), ("suggestion", "Suggestion"), ("feedback", "Task Feedback")],
    )
    def test_default_tags(self, entry_type, tag):
        assert entry_tag(ClarificationEntry(type=entry_type, content="x")) == tag

    def test_metadata_tag_overrides(self):
        entry = ClarificationEntry(type="suggestion", content="Plan: Run", metadata={"tag": "New Task"})
        assert render_entry(entry) == "[New Task] Plan: Run"
