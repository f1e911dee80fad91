"""Error types for atomstate."""


class StateManagerError(Exception):
    """Base error for all atomstate errors."""
    pass


class ReadOnlyStateError(StateManagerError, TypeError):
    """Raised on any write through a read-only view of the state."""

    def __init__(self, path=()):
        self.path = tuple(path)
        where = ".".join(map(str, self.path)) or "<root>"
        super().__init__(f"State is read-only (at {where}). Use update() to change it.")


class BoundaryCannotEnterError(StateManagerError):
    """Raised when a boundary is entered from inside its own on_enter hook."""

    message = "Cannot enter the boundary while on_enter is running."

    def __init__(self):
        super().__init__(self.message)


class CannotUpdateFromBeforeUpdateError(StateManagerError):
    """Raised when before_update calls update()."""

    message = "Cannot call update() from before_update. Write to the state argument instead."

    def __init__(self):
        super().__init__(self.message)
