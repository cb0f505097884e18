# goalcoach/relevance.py

from typing import Iterable, Union

from goalcoach.entities import ClarificationEntry
from goalcoach.interaction_log import render_entry

HistoryLike = Union[str, Iterable[Union[str, ClarificationEntry]]]

TAG_BONUSES: tuple[tuple[str, int], ...] = (
    ("[Task Feedback]", 2),
    ("[Task Update]", 1),
    ("[New Task]", 1),
)


def _history_lines(history: HistoryLike | None) -> list[str]:
    if not history:
        return []
    if isinstance(history, str):
        raw = history.split("\n")
    else:
        raw = [render_entry(h) if isinstance(h, ClarificationEntry) else str(h) for h in history]
    return [line.strip() for line in raw if line and line.strip()]


def extract_keywords(title: str, selected_option: str = "") -> list[str]:
    """
    Lowercase whitespace tokens of title + option, longer than 3 characters.
    Duplicates are dropped, first occurrence wins.
    """
    words = (title or "").lower().split() + (selected_option or "").lower().split()
    seen: set[str] = set()
    out: list[str] = []
    for w in words:
        if len(w) > 3 and w not in seen:
            seen.add(w)
            out.append(w)
    return out


def score_entry(line: str, keywords: list[str]) -> int:
    lower = line.lower()
    score = sum(1 for k in keywords if k in lower)
    for tag, bonus in TAG_BONUSES:
        if tag in line:
            score += bonus
    return score


def select_relevant_context(
    history: HistoryLike | None,
    title: str,
    selected_option: str = "",
    max_chars: int = 1000,
) -> str:
    """
    Rank interaction-log entries against a task/goal title and pack the best
    ones into at most max_chars characters, one entry per line.

    The packing stops at the first entry that does not fit; entries are never
    cut in half. Ties keep their log order (sorted() is stable).
    """
    lines = _history_lines(history)
    if not lines or max_chars <= 0:
        return ""

    keywords = extract_keywords(title, selected_option)
    ranked = sorted(lines, key=lambda line: score_entry(line, keywords), reverse=True)

    out = ""
    for line in ranked:
        if len(out) + len(line) + 1 > max_chars:
            break
        out += line + "\n"
    return out
