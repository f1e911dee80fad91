"""Change tracker: a ledger of changed paths and their prior values.

Each entry maps a path (a tuple of keys) to the value that lived there before
the first change seen in the current tracking window. The state manager keeps
one global tracker plus one per subscriber.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable

from atomstate._utils import MISSING

Path = tuple[Hashable, ...]


def _validate(path: Path) -> None:
    if not path:
        raise ValueError("Path must have at least one item.")


class ChangeTracker:
    """Path -> prior value, at most one entry per distinct path."""

    __slots__ = ("_changes",)

    missing = MISSING

    def __init__(self) -> None:
        self._changes: dict[Path, object] = {}

    def keys(self) -> list[Path]:
        return list(self._changes)

    def get(self, path: Iterable[Hashable]) -> object:
        """Prior value recorded for exactly this path, or ChangeTracker.missing."""
        path = tuple(path)
        _validate(path)
        return self._changes.get(path, MISSING)

    def set(self, path: Iterable[Hashable], prior: object) -> None:
        """Record prior for path. An existing entry keeps its first prior value."""
        path = tuple(path)
        _validate(path)
        self._changes.setdefault(path, prior)

    def delete(self, path: Iterable[Hashable]) -> None:
        self._changes.pop(tuple(path), None)

    def has_prefix(self, path: Iterable[Hashable]) -> bool:
        """Has anything at or below path changed?

        A tracked ("a", "b") satisfies ("a",) but a tracked ("a",) does not
        satisfy ("a", "b").
        """
        path = tuple(path)
        n = len(path)
        return any(len(p) >= n and p[:n] == path for p in self._changes)

    def __contains__(self, path: Iterable[Hashable]) -> bool:
        """Is there an entry for exactly this path? Unlike get(), this tells a
        tracked MISSING prior (the key was added) apart from no entry."""
        return tuple(path) in self._changes

    def __len__(self) -> int:
        return len(self._changes)

    def __bool__(self) -> bool:
        return bool(self._changes)

    def __repr__(self) -> str:
        return f"ChangeTracker({sorted(map(repr, self._changes))})"
