"""Shared helpers: the MISSING sentinel and value comparison rules."""

from __future__ import annotations


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def is_plain(value: object) -> bool:
    """Only exact dicts and lists are observed. Subclasses are leaves."""
    return type(value) is dict or type(value) is list


def same_value(a: object, b: object) -> bool:
    """Would replacing a with b be a no-op as far as tracking is concerned?

    Plain containers compare by identity. Leaves compare by identity, then by
    type and equality, so 1, 1.0 and True are different values.
    """
    if a is b:
        return True
    if a is MISSING or b is MISSING or is_plain(a) or is_plain(b):
        return False
    if type(a) is not type(b):
        return False
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        # e.g. array types with no single truth value
        return False
