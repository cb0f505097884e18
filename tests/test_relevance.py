from goalcoach.entities import ClarificationEntry
from goalcoach.relevance import extract_keywords, score_entry, select_relevant_context


HISTORY = [
    "[Answer] something else",
    "[Task Feedback] too slow",
    "[Answer] running in the morning",
]


class TestKeywords:

    def test_short_words_dropped(self):
        assert extract_keywords("Run a 5k race") == ["race"]

    def test_option_words_included_once(self):
        assert extract_keywords("Morning running", "running outdoors") == ["morning", "running", "outdoors"]

    def test_score_counts_keywords_and_tag_bonus(self):
        assert score_entry("[Task Feedback] morning is hard", ["morning"]) == 3
        assert score_entry("[New Task] Stretch", []) == 1
        assert score_entry("[Answer] nothing", ["morning"]) == 0


class TestSelectRelevantContext:

    def test_empty_history(self):
        assert select_relevant_context([], "Morning running") == ""
        assert select_relevant_context("", "Morning running") == ""
        assert select_relevant_context(None, "Morning running") == ""

    def test_ranking_keeps_log_order_on_ties(self):
        out = select_relevant_context(HISTORY, "Morning running")
        assert out == "[Task Feedback] too slow\n[Answer] running in the morning\n[Answer] something else\n"

    def test_string_history(self):
        out = select_relevant_context("\n".join(HISTORY), "Morning running")
        assert out.splitlines()[0] == "[Task Feedback] too slow"

    def test_entry_history(self):
        entries = [
            ClarificationEntry(type="answer", content="something else"),
            ClarificationEntry(type="feedback", content="too slow"),
        ]
        assert select_relevant_context(entries, "Morning running") == "[Task Feedback] too slow\n[Answer] something else\n"

    def test_budget_respected_and_lines_never_cut(self):
        lines = [f"[Answer] entry number {i} about running" for i in range(40)]
        for budget in (0, 10, 40, 120, 500):
            out = select_relevant_context(lines, "running", max_chars=budget)
            assert len(out) <= budget
            for line in out.splitlines():
                assert line in lines

    def test_stops_at_first_entry_that_does_not_fit(self):
        lines = ["[Task Feedback] " + "x" * 50, "[Answer] short"]
        out = select_relevant_context(lines, "nothing", max_chars=30)
        assert out == ""

    def test_idempotent(self):
        first = select_relevant_context(HISTORY, "Morning running", max_chars=60)
        second = select_relevant_context(first, "Morning running", max_chars=60)
        assert first == second
