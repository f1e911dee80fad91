"""Textual integration for atomstate. Opt-in, requires textual.

Subscribers that update widgets need three guards: hold back while the widget
tree is being replaced or the app is not running, tolerate widgets that are
not mounted (NoMatches), and run on the app thread. subscribe() applies all
three.

Changes that arrive while a subscriber is held back are not lost. They are
merged into its next delivery, and leaving the outermost pause() delivers
them straight away:

    with stx.pause(app):
        await app.query_one("#body").remove_children()
        sm.update(load_document)
        await app.query_one("#body").mount(DocumentView())
    # subscribers have now seen load_document's changes
"""

import logging
import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from atomstate._utils import MISSING
from atomstate.change_tracker import ChangeTracker

logger = logging.getLogger("atomstate.textual")

# Module-owned, keyed by id(app) so multiple apps work in tests.
_pause_depth: dict[int, int] = {}
_bridges: dict[int, list["_Bridge"]] = {}


@contextmanager
def pause(app):
    """Hold back guarded subscribers during widget replacement.

    Pauses nest. When the outermost one exits normally, every subscriber of
    app that missed changes is called once with all of them. If the body
    raises, the missed changes wait for the next update instead.
    """
    key = id(app)
    _pause_depth[key] = _pause_depth.get(key, 0) + 1
    try:
        yield
    finally:
        depth = _pause_depth.pop(key) - 1
        if depth:
            _pause_depth[key] = depth
    if key not in _pause_depth:
        _catch_up(app)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _pause_depth


def subscribe(app, state_manager, listener):
    """state_manager.subscribe() that safely bridges to Textual widgets.

    Returns the ListenerHandle. While app is paused or not running, changes
    are collected instead of delivered. NoMatches from widget queries is
    swallowed, and calls made off the app thread go through call_from_thread.
    """
    bridge = _Bridge(app, state_manager, listener)
    bridges = _bridges.setdefault(id(app), [])
    bridges[:] = [b for b in bridges if not b.handle.removed]
    bridges.append(bridge)
    return bridge.handle


def _catch_up(app) -> None:
    bridges = _bridges.get(id(app))
    if not bridges:
        return
    bridges[:] = [b for b in bridges if not b.handle.removed]
    for bridge in list(bridges):
        bridge.catch_up()


class _Bridge:
    """One guarded subscription and the changes it has not delivered yet."""

    __slots__ = ("_app", "_state_manager", "_listener", "_main", "_missed", "handle")

    def __init__(self, app, state_manager, listener):
        self._app = app
        self._state_manager = state_manager
        self._listener = listener
        self._main = threading.get_ident()
        self._missed = ChangeTracker()
        self.handle = state_manager.subscribe(self._on_change)

    def _on_change(self, has_changed, state):
        if not is_safe(self._app):
            for path in has_changed.paths():
                self._missed.set(path, MISSING)
            logger.debug("Listener %r held back: app not safe", self._listener)
            return
        self._deliver(has_changed, state)

    def catch_up(self) -> None:
        if self.handle.removed or not self._missed or not is_safe(self._app):
            return
        self._deliver(lambda *path: False, self._state_manager.get_state())

    def _deliver(self, has_changed, state):
        if self._missed:
            missed, self._missed = self._missed, ChangeTracker()
            current = has_changed

            def has_changed(*path):
                return missed.has_prefix(path) or current(*path)

        if threading.get_ident() != self._main:
            self._app.call_from_thread(self._safe, has_changed, state)
        else:
            self._safe(has_changed, state)

    def _safe(self, has_changed, state):
        try:
            self._listener(has_changed, state)
        except NoMatches:
            logger.debug("Listener %r skipped: widget not mounted", self._listener)
