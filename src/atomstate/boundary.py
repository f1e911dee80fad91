"""Reentrancy boundary: delimits one atomic unit of work.

Entering while already inside joins the outer unit. on_enter runs when the
outermost entry begins and on_exit runs once it has completed without raising.
on_exit runs with the depth back at zero, so work it triggers (e.g. a
subscriber calling update()) enters as a fresh outermost unit.

The boundary knows nothing about state or listeners.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from atomstate.errors import BoundaryCannotEnterError

R = TypeVar("R")

Hook = Callable[[], None]


class Boundary:
    """Depth-counting reentrancy guard with enter/exit hooks."""

    __slots__ = ("_on_enter", "_on_exit", "_depth", "_in_on_enter")

    def __init__(self, on_enter: Hook | None = None, on_exit: Hook | None = None) -> None:
        self._on_enter = on_enter
        self._on_exit = on_exit
        self._depth = 0
        self._in_on_enter = False

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def inside(self) -> bool:
        return self._depth > 0

    def _begin(self) -> bool:
        """Increment depth, running on_enter for the outermost entry."""
        if self._in_on_enter:
            raise BoundaryCannotEnterError()
        outermost = self._depth == 0
        self._depth += 1
        if outermost and self._on_enter is not None:
            self._in_on_enter = True
            try:
                self._on_enter()
            except BaseException:
                self._depth -= 1
                raise
            finally:
                self._in_on_enter = False
        return outermost

    def _end(self, outermost: bool) -> None:
        if outermost and self._on_exit is not None:
            self._on_exit()

    def enter(self, action: Callable[[], R] | None = None) -> R | None:
        """Run action inside the boundary and return its result.

        If action raises, the depth is restored and on_exit is skipped.
        """
        outermost = self._begin()
        try:
            result = action() if action is not None else None
        finally:
            self._depth -= 1
        self._end(outermost)
        return result

    @contextmanager
    def entered(self) -> Iterator[None]:
        """Context manager form of enter().

        Usage:
            with boundary.entered():
                ...  # on_exit runs after this block, if it did not raise
        """
        outermost = self._begin()
        try:
            yield
        finally:
            self._depth -= 1
        self._end(outermost)

    def __repr__(self) -> str:
        return f"Boundary(depth={self._depth})"
