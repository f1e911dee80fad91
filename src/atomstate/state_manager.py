"""StateManager: atomic updates with path-scoped change notification.

All mutation happens inside update(). Writes made through the state it hands
out are tracked per subscriber. When the outermost update() finishes, each
subscriber with pending changes is invoked, in registration order, with a
has_changed(*path) query over its own changes and a read-only view of the
state. A subscriber may call update() itself; the nested update settles the
whole loop (restarting it from the first subscriber) before control returns.

Unretrieved subscriber exceptions are re-raised later, off the current stack,
through a scheduler. Call set_scheduler() once to choose how:
    atomstate.set_scheduler(loop.call_soon_threadsafe)
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Hashable, Iterator, TypeVar

from atomstate._utils import MISSING, is_plain, same_value
from atomstate.boundary import Boundary
from atomstate.change_tracker import ChangeTracker, Path
from atomstate.errors import BoundaryCannotEnterError, CannotUpdateFromBeforeUpdateError
from atomstate.proxy import StateDict, StateList, make_readonly, wrap

logger = logging.getLogger("atomstate.state_manager")

R = TypeVar("R")

State = StateDict | StateList
HasChanged = Callable[..., bool]
Listener = Callable[[HasChanged, State], None]
Scheduler = Callable[[Callable[[], None]], None]

# ─── Deferred re-raise ───────────────────────────────────────────────────────
_scheduler: Scheduler | None = None


def set_scheduler(scheduler: Scheduler | None) -> None:
    """Set the process-wide scheduler used to re-raise unhandled listener errors.

    scheduler(callback) must run callback later, outside the current stack.
    Pass None to restore the default: loop.call_soon when an asyncio loop is
    running in this thread, otherwise a daemon thread (the error then reaches
    threading.excepthook).

    The thread fallback starts immediately, so its error may be reported
    before the update() that collected it returns, and may never be reported
    if the interpreter exits first. Programs without an event loop that care
    about either should install their own scheduler.
    """
    global _scheduler
    _scheduler = scheduler


def _default_schedule(callback: Callable[[], None]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        threading.Thread(target=callback, name="atomstate-reraise", daemon=True).start()
    else:
        loop.call_soon(callback)


def _reraise(exc: BaseException) -> None:
    raise exc


class AfterUpdateInput:
    """What after_update receives once all subscribers have settled."""

    __slots__ = ("state", "exception_occurred", "_exceptions", "_retrieved")

    def __init__(self, state: State, exceptions: list[Exception]) -> None:
        self.state = state
        self.exception_occurred = bool(exceptions)
        self._exceptions = exceptions
        self._retrieved = False

    @property
    def retrieved(self) -> bool:
        return self._retrieved

    def retrieve_exceptions(self) -> list[Exception]:
        """Take ownership of subscriber exceptions. They will not be re-raised."""
        self._retrieved = True
        return list(self._exceptions)

    def __repr__(self) -> str:
        return f"AfterUpdateInput(exception_occurred={self.exception_occurred})"


class _HasChanged:
    """The has_changed(*path) a listener receives, over its own pending changes."""

    __slots__ = ("_changes",)

    def __init__(self, changes: ChangeTracker) -> None:
        self._changes = changes

    def __call__(self, *path: Hashable) -> bool:
        return self._changes.has_prefix(path)

    def paths(self) -> list[Path]:
        """Every changed path, for callers that merge several deliveries."""
        return self._changes.keys()


class ListenerHandle:
    """A registered subscriber. Call remove() to unsubscribe."""

    __slots__ = ("_manager", "_listener", "_changes", "_removed")

    def __init__(self, manager: StateManager, listener: Listener) -> None:
        self._manager = manager
        self._listener = listener
        self._changes = ChangeTracker()
        self._removed = False

    @property
    def removed(self) -> bool:
        return self._removed

    def remove(self) -> None:
        """Unsubscribe. Safe to call more than once, including from a listener."""
        if self._removed:
            return
        self._removed = True
        self._manager._listeners.remove(self)

    def __repr__(self) -> str:
        state = "removed" if self._removed else "active"
        name = getattr(self._listener, "__name__", repr(self._listener))
        return f"ListenerHandle({name}, {state})"


class StateManager:
    """A controlled, observable state container.

    Usage:
        sm = StateManager({"a": 1, "b": {"c": 2}})

        def on_change(has_changed, state):
            print(has_changed("a"), has_changed("b", "c"), state["b"]["c"])

        sm.subscribe(on_change)
        sm.update(lambda state: state["b"].update(c=3))
        # prints: False True 3

    The initial state must not be mutated directly after it is handed over.
    """

    def __init__(
        self,
        state: dict | list,
        *,
        before_update: Callable[[State], None] | None = None,
        after_update: Callable[[AfterUpdateInput], None] | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        if not is_plain(state):
            raise TypeError(f"State must be a dict or list, not {type(state).__name__}")
        self._state = state
        self._wrapped_state = wrap(state, self._after_change)
        self._readonly_state = make_readonly(state, follow=self._wrapped_state)
        self._changes = ChangeTracker()
        self._listeners: list[ListenerHandle] = []
        self._before_update_fn = before_update
        self._after_update_fn = after_update
        self._scheduler = scheduler
        self._boundary = Boundary(on_enter=self._on_enter, on_exit=self._on_exit)
        self._exit_detector: object | None = None
        self._listener_exceptions: list[Exception] = []

    def get_state(self) -> State:
        """A live read-only view of the state (not a snapshot)."""
        return self._readonly_state

    def has_changed(self, *path: Hashable) -> bool:
        """Has anything at or below path changed since construction?

        With no path: has anything changed at all.
        """
        return self._changes.has_prefix(path)

    def update(self, fn: Callable[[State], R] | None = None) -> R | None:
        """Run fn with a mutable view of the state and return its result.

        Nested calls join the outermost one; subscribers and after_update run
        once the outermost call completes. Without fn, only before_update and
        after_update run. If fn raises, the error propagates, writes made so far
        stay applied and no subscriber is notified for this call.
        """
        try:
            if fn is None:
                return self._boundary.enter()
            return self._boundary.enter(lambda: fn(self._wrapped_state))
        except BoundaryCannotEnterError:
            raise CannotUpdateFromBeforeUpdateError() from None

    @contextmanager
    def transaction(self) -> Iterator[State]:
        """Context manager form of update().

        Usage:
            with sm.transaction() as state:
                state["a"] = 2
                state["b"]["c"] = 3
            # subscribers have run here
        """
        try:
            with self._boundary.entered():
                yield self._wrapped_state
        except BoundaryCannotEnterError:
            raise CannotUpdateFromBeforeUpdateError() from None

    def subscribe(self, listener: Listener) -> ListenerHandle:
        """Call listener(has_changed, state) after updates that changed something.

        has_changed(*path) is true if something at or below path changed since
        this listener was last invoked. Listeners run in registration order; if
        one updates the state, the loop restarts from the first listener.
        A listener exception does not stop the others; see after_update.
        """
        handle = ListenerHandle(self, listener)
        self._listeners.append(handle)
        return handle

    def subscribe_individual(
        self, *path: Hashable, listener: Callable[[object], None]
    ) -> ListenerHandle:
        """Call listener(value) whenever the value at path (or below it) changes.

        Usage:
            sm.subscribe_individual("b", "c", listener=print)

        A value that was removed is passed as MISSING.
        """
        if not path:
            raise ValueError("subscribe_individual() needs at least one path key")
        keys = path

        def _on_change(has_changed: HasChanged, state: State) -> None:
            if has_changed(*keys):
                listener(_lookup(state, keys))

        return self.subscribe(_on_change)

    # --- Internals ---

    def _after_change(self, path: Path, old: object, new: object) -> None:
        if same_value(old, new):
            return
        for changes in [self._changes, *(h._changes for h in self._listeners)]:
            if path not in changes:
                changes.set(path, old)
            elif same_value(new, changes.get(path)):
                # back to where this window started
                changes.delete(path)

    def _on_enter(self) -> None:
        if self._before_update_fn is not None:
            self._before_update_fn(self._wrapped_state)

    def _on_exit(self) -> None:
        self._exit_detector = exit_detector = object()
        # listeners may remove themselves or each other mid-loop
        for handle in list(self._listeners):
            if handle.removed:
                continue
            try:
                self._update_listener(handle)
            except Exception as e:
                logger.debug("Listener %r raised %r; collected for after_update", handle, e)
                self._listener_exceptions.append(e)
            if self._exit_detector is not exit_detector:
                # a nested update() settled every listener already; anything
                # raised after it settled has no after_update left to see it
                if self._listener_exceptions:
                    late, self._listener_exceptions = self._listener_exceptions, []
                    self._throw_async(late)
                return
        self._after_update()

    def _update_listener(self, handle: ListenerHandle) -> None:
        changes = handle._changes
        if not changes:
            return
        handle._changes = ChangeTracker()
        handle._listener(_HasChanged(changes), self._readonly_state)

    def _after_update(self) -> None:
        exceptions = self._listener_exceptions
        self._listener_exceptions = []
        info = AfterUpdateInput(self._readonly_state, exceptions)
        try:
            if self._after_update_fn is not None:
                self._after_update_fn(info)
        finally:
            if exceptions and not info.retrieved:
                self._throw_async(exceptions)

    def _throw_async(self, exceptions: list[Exception]) -> None:
        logger.warning(
            "%d listener exception(s) not retrieved in after_update; re-raising asynchronously",
            len(exceptions),
        )
        schedule = self._scheduler or _scheduler or _default_schedule
        for exc in exceptions:
            schedule(functools.partial(_reraise, exc))

    def __repr__(self) -> str:
        return f"StateManager({self._state!r}, listeners={len(self._listeners)})"


def _lookup(state: State, keys: Path) -> object:
    node: object = state
    for key in keys:
        try:
            node = node[key]
        except (KeyError, IndexError, TypeError):
            return MISSING
    return node
