"""Per-session record of feed entries already submitted for translation."""

from __future__ import annotations


class DeduplicationStore:
    """Set of processed entry ids, cleared wholesale on every session transition."""

    def __init__(self) -> None:
        self._processed: set[str] = set()

    def __len__(self) -> int:
        return len(self._processed)

    def has_processed(self, entry_id: str) -> bool:
        return entry_id in self._processed

    def mark_processed(self, entry_id: str) -> None:
        self._processed.add(entry_id)

    def reset(self) -> int:
        count = len(self._processed)
        self._processed.clear()
        return count
