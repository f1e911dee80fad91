"""atomstate: a state container with atomic, path-scoped change notification."""

from importlib.metadata import version as _version

__version__ = _version("atomstate")

from atomstate._utils import MISSING
from atomstate.boundary import Boundary
from atomstate.change_tracker import ChangeTracker
from atomstate.errors import (
    StateManagerError,
    ReadOnlyStateError,
    BoundaryCannotEnterError,
    CannotUpdateFromBeforeUpdateError,
)
from atomstate.proxy import StateDict, StateList, wrap, make_readonly, unwrap
from atomstate.state_manager import StateManager, ListenerHandle, AfterUpdateInput, set_scheduler
# textual NOT auto-imported, opt-in only

__all__ = [
    "MISSING",
    "Boundary",
    "ChangeTracker",
    "StateManagerError",
    "ReadOnlyStateError",
    "BoundaryCannotEnterError",
    "CannotUpdateFromBeforeUpdateError",
    "StateDict",
    "StateList",
    "wrap",
    "make_readonly",
    "unwrap",
    "StateManager",
    "ListenerHandle",
    "AfterUpdateInput",
    "set_scheduler",
]
