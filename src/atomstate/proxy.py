"""Mutation interception: façades over a plain dict/list state graph.

wrap() returns a StateDict or StateList standing in for the root node.
Reading a plain child returns its façade (created lazily, one per underlying
node). Every write form is applied to the underlying node first and then
reported to after_change(path, old, new), where path is the full key tuple
from the root and a missing value is MISSING.

make_readonly() builds the same façades in read-only mode: reads work the
same way, every write raises ReadOnlyStateError.

Usage:
    log = []
    state = wrap({"a": {"b": 1}}, lambda path, old, new: log.append((path, old, new)))
    state["a"]["b"] = 2
    # log == [(("a", "b"), 1, 2)]
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterator, Mapping, MutableMapping, MutableSequence

from atomstate._utils import MISSING, is_plain
from atomstate.change_tracker import Path
from atomstate.errors import ReadOnlyStateError

AfterChange = Callable[[Path, object, object], None]


class _Wrapper:
    """Owns the façade memo and hooks for one wrapping of one state graph."""

    __slots__ = ("_after_change", "_before_change", "readonly", "_facades", "_followers")

    def __init__(
        self,
        after_change: AfterChange | None,
        before_change: Callable[[], None] | None,
        readonly: bool,
    ) -> None:
        self._after_change = after_change
        self._before_change = before_change
        self.readonly = readonly
        # id(node) -> (node, façade). Holding the node keeps its id from being reused.
        self._facades: dict[int, tuple[object, _Facade]] = {}
        # other wrappings of the same graph that only learn about writes from here
        self._followers: list[_Wrapper] = []

    def forget(self, node: object) -> None:
        """Drop the façades of a node that left the graph, and of its subtree."""
        for wrapper in [self, *self._followers]:
            wrapper._forget(node)

    def _forget(self, node: object) -> None:
        pending = [node]
        while pending:
            current = pending.pop()
            # only memoized nodes can have memoized children worth visiting
            if is_plain(current) and self._facades.pop(id(current), None) is not None:
                pending.extend(current.values() if type(current) is dict else current)

    def wrap(self, path: Path, node: dict | list) -> _Facade:
        entry = self._facades.get(id(node))
        if entry is not None:
            facade = entry[1]
            # nodes can move (list shifts, re-parenting); report at the latest path read
            facade._path = path
            return facade
        cls = StateDict if type(node) is dict else StateList
        facade = cls(self, path, node)
        self._facades[id(node)] = (node, facade)
        return facade

    def child(self, path: Path, value: object) -> object:
        return self.wrap(path, value) if is_plain(value) else value

    def before_change(self) -> None:
        if self._before_change is not None:
            self._before_change()

    def report(self, path: Path, old: object, new: object) -> None:
        if self._after_change is not None:
            self._after_change(path, old, new)


def unwrap(value: object) -> object:
    """The underlying node of a façade; any other value unchanged."""
    if isinstance(value, _Facade):
        return value._target
    return value


class _Facade:
    __slots__ = ("_wrapper", "_path", "_target")

    def __init__(self, wrapper: _Wrapper, path: Path, target) -> None:
        self._wrapper = wrapper
        self._path = path
        self._target = target

    @property
    def readonly(self) -> bool:
        return self._wrapper.readonly

    def _guard(self) -> None:
        if self._wrapper.readonly:
            raise ReadOnlyStateError(self._path)

    def _release(self, old: object) -> None:
        """Forget a plain node that a write just detached from this parent."""
        if not is_plain(old):
            return
        children = self._target.values() if type(self._target) is dict else self._target
        if not any(child is old for child in children):
            self._wrapper.forget(old)

    def __eq__(self, other: object) -> bool:
        return self._target == unwrap(other)

    __hash__ = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._target!r})"


class StateDict(_Facade, MutableMapping):
    """Façade over a dict node."""

    __slots__ = ()

    def __getitem__(self, key: Hashable) -> object:
        return self._wrapper.child(self._path + (key,), self._target[key])

    def __setitem__(self, key: Hashable, value: object) -> None:
        self._guard()
        value = unwrap(value)
        self._wrapper.before_change()
        old = self._target.get(key, MISSING)
        self._target[key] = value
        self._release(old)
        self._wrapper.report(self._path + (key,), old, value)

    def __delitem__(self, key: Hashable) -> None:
        self._guard()
        if key not in self._target:
            raise KeyError(key)
        self._wrapper.before_change()
        old = self._target.pop(key)
        self._release(old)
        self._wrapper.report(self._path + (key,), old, MISSING)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._target)

    def __len__(self) -> int:
        return len(self._target)

    def __contains__(self, key: object) -> bool:
        return key in self._target

    def pop(self, key: Hashable, default: object = MISSING) -> object:
        """Remove key and return its (unwrapped) value."""
        self._guard()
        if key not in self._target:
            if default is MISSING:
                raise KeyError(key)
            return default
        value = self._target[key]
        del self[key]
        return value

    def popitem(self) -> tuple[Hashable, object]:
        self._guard()
        if not self._target:
            raise KeyError("popitem(): dictionary is empty")
        key = next(reversed(self._target))
        return key, self.pop(key)

    def setdefault(self, key: Hashable, default: object = None) -> object:
        if key not in self._target:
            self[key] = default
        return self[key]

    def clear(self) -> None:
        self._guard()
        for key in list(self._target):
            del self[key]

    def copy(self) -> dict:
        """A shallow plain dict whose container values are façades."""
        return {key: self[key] for key in self._target}

    def __or__(self, other: object):
        if not isinstance(other, Mapping):
            return NotImplemented
        return {**self._target, **unwrap(other)}

    def __ror__(self, other: object):
        if not isinstance(other, Mapping):
            return NotImplemented
        return {**unwrap(other), **self._target}

    def __ior__(self, other: object) -> StateDict:
        self._guard()
        self.update(other)
        return self


class StateList(_Facade, MutableSequence):
    """Façade over a list node.

    Mutations that shift elements report each index whose value changed,
    with MISSING for indices that appeared or disappeared.
    """

    __slots__ = ()

    def _index(self, index: int) -> int:
        n = len(self._target)
        i = index + n if index < 0 else index
        if not 0 <= i < n:
            raise IndexError("list index out of range")
        return i

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(len(self._target))[index]]
        i = self._index(index)
        return self._wrapper.child(self._path + (i,), self._target[i])

    def __setitem__(self, index, value) -> None:
        if isinstance(index, slice):
            values = [unwrap(v) for v in value]
            self._splice(lambda target: target.__setitem__(index, values))
            return
        self._guard()
        i = self._index(index)
        value = unwrap(value)
        self._wrapper.before_change()
        old = self._target[i]
        self._target[i] = value
        self._release(old)
        self._wrapper.report(self._path + (i,), old, value)

    def __delitem__(self, index) -> None:
        self._splice(lambda target: target.__delitem__(index))

    def __len__(self) -> int:
        return len(self._target)

    def __iter__(self) -> Iterator[object]:
        for i in range(len(self._target)):
            yield self[i]

    def __contains__(self, value: object) -> bool:
        return unwrap(value) in self._target

    def insert(self, index: int, value: object) -> None:
        value = unwrap(value)
        self._splice(lambda target: target.insert(index, value))

    def append(self, value: object) -> None:
        self._guard()
        value = unwrap(value)
        self._wrapper.before_change()
        i = len(self._target)
        self._target.append(value)
        self._wrapper.report(self._path + (i,), MISSING, value)

    def pop(self, index: int = -1) -> object:
        """Remove and return the (unwrapped) item at index."""
        self._guard()
        value = self._target[self._index(index)]
        del self[index]
        return value

    def clear(self) -> None:
        self._splice(list.clear)

    def reverse(self) -> None:
        self._splice(list.reverse)

    def copy(self) -> list:
        return self[:]

    def sort(self, *, key=None, reverse: bool = False) -> None:
        self._splice(lambda target: target.sort(key=key, reverse=reverse))

    def _splice(self, mutate: Callable[[list], None]) -> None:
        self._guard()
        before = list(self._target)
        self._wrapper.before_change()
        mutate(self._target)
        after = self._target
        kept = {id(v) for v in after}
        for old in before:
            if is_plain(old) and id(old) not in kept:
                self._wrapper.forget(old)
        for i in range(max(len(before), len(after))):
            old = before[i] if i < len(before) else MISSING
            new = after[i] if i < len(after) else MISSING
            if old is not new:
                self._wrapper.report(self._path + (i,), old, new)


def wrap(
    target: dict | list,
    after_change: AfterChange | None = None,
    *,
    before_change: Callable[[], None] | None = None,
) -> StateDict | StateList:
    """Wrap a plain dict/list so every write is reported to after_change."""
    if not is_plain(target):
        raise TypeError(f"Can only wrap a dict or list, not {type(target).__name__}")
    return _Wrapper(after_change, before_change, readonly=False).wrap((), target)


def make_readonly(
    target: dict | list, *, follow: StateDict | StateList | None = None
) -> StateDict | StateList:
    """Wrap a plain dict/list in a live view that rejects every write.

    With follow (a mutable façade from wrap() over the same root), nodes that
    writes through follow detach are dropped from this view's memo as well.
    """
    if not is_plain(target):
        raise TypeError(f"Can only wrap a dict or list, not {type(target).__name__}")
    wrapper = _Wrapper(None, None, readonly=True)
    if follow is not None:
        follow._wrapper._followers.append(wrapper)
    return wrapper.wrap((), target)
