"""Tests for atomstate.textual: Textual integration layer."""

import threading

import pytest
from textual.css.query import NoMatches

from atomstate import StateManager
from atomstate import textual as stx


class _MockApp:
    """Minimal mock matching the Textual App interface stx needs."""

    def __init__(self, *, is_running=True):
        self.is_running = is_running
        self._call_from_thread_log = []

    def call_from_thread(self, fn, *args):
        self._call_from_thread_log.append((fn, args))
        fn(*args)


def _set_a(value):
    def fn(state):
        state["a"] = value
    return fn


class TestSubscribe:
    def test_skips_when_not_running(self):
        app = _MockApp(is_running=False)
        sm = StateManager({"a": 1})
        effects = []
        stx.subscribe(app, sm, lambda has_changed, state: effects.append(state["a"]))
        sm.update(_set_a(2))
        assert effects == []

    def test_holds_back_during_pause(self):
        app = _MockApp()
        sm = StateManager({"a": 1})
        effects = []
        stx.subscribe(app, sm, lambda has_changed, state: effects.append(state["a"]))
        with stx.pause(app):
            sm.update(_set_a(2))
            assert effects == []

        # leaving the pause delivers what was held back
        assert effects == [2]

    def test_catch_up_reports_held_back_paths(self):
        app = _MockApp()
        sm = StateManager({"a": 1, "b": 1})
        seen = []
        stx.subscribe(app, sm, lambda has_changed, state: seen.append(
            (has_changed("a"), has_changed("b"), has_changed())
        ))
        with stx.pause(app):
            sm.update(_set_a(2))
        assert seen == [(True, False, True)]

    def test_not_running_changes_merge_into_next_delivery(self):
        app = _MockApp(is_running=False)
        sm = StateManager({"a": 1, "b": 1})
        seen = []
        stx.subscribe(app, sm, lambda has_changed, state: seen.append(
            (has_changed("a"), has_changed("b"))
        ))
        sm.update(_set_a(2))
        assert seen == []

        app.is_running = True
        sm.update(lambda state: state.__setitem__("b", 2))
        assert seen == [(True, True)]

        # merged changes are delivered once
        sm.update(lambda state: state.__setitem__("b", 3))
        assert seen == [(True, True), (False, True)]

    def test_removed_handle_is_not_caught_up(self):
        app = _MockApp()
        sm = StateManager({"a": 1})
        effects = []
        handle = stx.subscribe(app, sm, lambda has_changed, state: effects.append(state["a"]))
        with stx.pause(app):
            sm.update(_set_a(2))
            handle.remove()
        assert effects == []

    def test_fires_when_safe(self):
        app = _MockApp()
        sm = StateManager({"a": 1})
        effects = []
        stx.subscribe(app, sm, lambda has_changed, state: effects.append(has_changed("a")))
        sm.update(_set_a(2))
        assert effects == [True]

    def test_catches_nomatch(self):
        """NoMatches from widget queries are silently swallowed."""
        app = _MockApp()
        calls = []
        received = []
        sm = StateManager({"a": 1}, after_update=lambda info: received.append(info.exception_occurred))

        def _raise_nomatch(has_changed, state):
            calls.append(1)
            raise NoMatches("StatusFooter")

        stx.subscribe(app, sm, _raise_nomatch)
        sm.update(_set_a(2))
        assert calls == [1]
        assert received == [False]

    def test_real_errors_reach_after_update(self):
        """Non-NoMatches exceptions are collected like any listener error."""
        app = _MockApp()
        received = []
        sm = StateManager({"a": 1}, after_update=lambda info: received.extend(info.retrieve_exceptions()))

        def _raise_value_error(has_changed, state):
            raise ValueError("boom")

        stx.subscribe(app, sm, _raise_value_error)
        sm.update(_set_a(2))
        assert len(received) == 1
        assert isinstance(received[0], ValueError)

    def test_remove_stops_listener(self):
        app = _MockApp()
        sm = StateManager({"a": 1})
        effects = []
        handle = stx.subscribe(app, sm, lambda has_changed, state: effects.append(state["a"]))
        sm.update(_set_a(2))
        handle.remove()
        sm.update(_set_a(3))
        assert effects == [2]

    def test_thread_marshal(self):
        """Updates from a background thread use call_from_thread."""
        app = _MockApp()
        sm = StateManager({"a": 1})
        effects = []
        stx.subscribe(app, sm, lambda has_changed, state: effects.append(state["a"]))

        t = threading.Thread(target=lambda: sm.update(_set_a(2)))
        t.start()
        t.join()

        assert effects == [2]
        assert len(app._call_from_thread_log) == 1


class TestPause:
    def test_nested_pause(self):
        app = _MockApp()
        sm = StateManager({"a": 1})
        effects = []
        stx.subscribe(app, sm, lambda has_changed, state: effects.append(state["a"]))
        with stx.pause(app):
            with stx.pause(app):
                sm.update(_set_a(2))
            assert not stx.is_safe(app)
            assert effects == []
            sm.update(_set_a(3))
        assert stx.is_safe(app)
        assert effects == [3]

    def test_failed_pause_defers_to_next_update(self):
        app = _MockApp()
        sm = StateManager({"a": 1, "b": 1})
        seen = []
        stx.subscribe(app, sm, lambda has_changed, state: seen.append(
            (has_changed("a"), has_changed("b"))
        ))
        with pytest.raises(RuntimeError):
            with stx.pause(app):
                sm.update(_set_a(2))
                raise RuntimeError("mount failed")
        assert seen == []

        sm.update(lambda state: state.__setitem__("b", 2))
        assert seen == [(True, True)]

    def test_no_catch_up_without_missed_changes(self):
        app = _MockApp()
        sm = StateManager({"a": 1})
        effects = []
        stx.subscribe(app, sm, lambda has_changed, state: effects.append(state["a"]))
        with stx.pause(app):
            pass
        assert effects == []

    def test_pause_restores_on_exception(self):
        app = _MockApp()
        assert stx.is_safe(app)

        with pytest.raises(RuntimeError):
            with stx.pause(app):
                assert not stx.is_safe(app)
                raise RuntimeError("oops")

        assert stx.is_safe(app)

    def test_pause_does_not_mutate_app(self):
        app = _MockApp()
        attrs_before = set(vars(app))
        with stx.pause(app):
            attrs_during = set(vars(app))
        assert attrs_before == attrs_during
        assert attrs_before == set(vars(app))

    def test_multiple_apps_independent(self):
        app_a = _MockApp()
        app_b = _MockApp()
        with stx.pause(app_a):
            assert not stx.is_safe(app_a)
            assert stx.is_safe(app_b)
