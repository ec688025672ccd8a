from __future__ import annotations

from ffireduce.oracle.base import Outcome


class OutcomeCache:
    """In-run memo of oracle outcomes keyed by candidate identity.

    The first outcome stored for a key wins, so a flaky oracle still yields one
    stable answer per candidate for the rest of the run.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Outcome] = {}
        self.hits = 0
        self.misses = 0

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: str) -> Outcome | None:
        outcome = self._entries.get(key)
        if outcome is None:
            self.misses += 1
        else:
            self.hits += 1
        return outcome

    def put(self, key: str, outcome: Outcome) -> Outcome:
        return self._entries.setdefault(key, outcome)

    def snapshot(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for outcome in self._entries.values():
            counts[outcome.value] = counts.get(outcome.value, 0) + 1
        return counts
