# goalcoach/interaction_log.py

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Iterator, Mapping, Sequence

from goalcoach.entities import ClarificationEntry, EntryType


DEFAULT_TAGS: dict[str, str] = {
    "question": "Question",
    "answer": "Answer",
    "suggestion": "Suggestion",
    "feedback": "Task Feedback",
}


class InteractionLog(Sequence[ClarificationEntry]):
    """
    Append-only, timestamped record of one goal session.

    - Backed by a tuple; append() returns a NEW log and never touches the old one.
    - Timestamps are strictly increasing: an entry created within the same clock
      tick as the previous one is nudged forward by one microsecond.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[ClarificationEntry] = ()):
        self._entries: tuple[ClarificationEntry, ...] = tuple(entries)

    def __getitem__(self, index):
        return self._entries[index]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ClarificationEntry]:
        return iter(self._entries)

    @property
    def entries(self) -> tuple[ClarificationEntry, ...]:
        return self._entries

    def _next_timestamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._entries:
            last = self._entries[-1].timestamp
            if now <= last:
                now = last + timedelta(microseconds=1)
        return now

    def create_entry(
        self,
        entry_type: EntryType,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> ClarificationEntry:
        # entries hold a read-only copy of metadata
        return ClarificationEntry(
            timestamp=self._next_timestamp(),
            type=entry_type,
            content=content,
            metadata=metadata,
        )

    def append(
        self,
        entry_type: EntryType,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> "InteractionLog":
        entry = self.create_entry(entry_type, content, metadata)
        return InteractionLog(self._entries + (entry,))

    def of_type(self, entry_type: EntryType) -> list[ClarificationEntry]:
        return [e for e in self._entries if e.type == entry_type]

    def as_lines(self) -> list[str]:
        return [render_entry(e) for e in self._entries]


def entry_tag(entry: ClarificationEntry) -> str:
    tag = (entry.metadata or {}).get("tag")
    if isinstance(tag, str) and tag.strip():
        return tag.strip()
    return DEFAULT_TAGS.get(entry.type, entry.type.title())


def render_entry(entry: ClarificationEntry) -> str:
    """
    One line per entry, e.g. "[Task Feedback] too slow".
    Embedded newlines are flattened so one entry never spans two lines.
    """
    content = " ".join((entry.content or "").split())
    return f"[{entry_tag(entry)}] {content}"
