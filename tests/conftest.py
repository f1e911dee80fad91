"""Shared fixtures."""

import pytest

import atomstate.state_manager as _sm_mod


@pytest.fixture(autouse=True)
def deferred():
    """Capture deferred re-raises instead of letting them escape to a thread.

    Yields the list of scheduled callbacks; call one to re-raise its error.
    """
    scheduled = []
    old = _sm_mod._scheduler
    _sm_mod._scheduler = scheduled.append
    try:
        yield scheduled
    finally:
        _sm_mod._scheduler = old
