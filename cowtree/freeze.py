"""
cowtree.freeze — Development helper that makes a tree read-only.

Python dicts and lists cannot be sealed in place, so deep_freeze()
rebuilds the containers as FrozenDict / FrozenList.  They are still
dict and list subclasses, so a frozen tree is a valid input for every
cowtree operation; clones of frozen nodes come back as plain, mutable
containers.

Not used by the update path.  Freeze the inputs in tests to catch code
that writes into a tree it does not own.
"""

from typing import Any


class FrozenError(TypeError):
    """Raised on any attempt to modify a frozen container."""


def _refuse(name: str):
    def method(self, *args, **kwargs):
        raise FrozenError(f"cannot call {name}() on a frozen {type(self).__name__}")
    method.__name__ = name
    return method


class FrozenDict(dict):
    """A dict that refuses every mutation."""
    __slots__ = ()

    __setitem__ = _refuse("__setitem__")
    __delitem__ = _refuse("__delitem__")
    __ior__ = _refuse("__ior__")
    clear = _refuse("clear")
    pop = _refuse("pop")
    popitem = _refuse("popitem")
    setdefault = _refuse("setdefault")
    update = _refuse("update")

    def __repr__(self) -> str:
        return f"FrozenDict({dict.__repr__(self)})"


class FrozenList(list):
    """A list that refuses every mutation."""
    __slots__ = ()

    __setitem__ = _refuse("__setitem__")
    __delitem__ = _refuse("__delitem__")
    __iadd__ = _refuse("__iadd__")
    __imul__ = _refuse("__imul__")
    append = _refuse("append")
    clear = _refuse("clear")
    extend = _refuse("extend")
    insert = _refuse("insert")
    pop = _refuse("pop")
    remove = _refuse("remove")
    reverse = _refuse("reverse")
    sort = _refuse("sort")

    def __repr__(self) -> str:
        return f"FrozenList({list.__repr__(self)})"


def deep_freeze(tree: Any) -> Any:
    """
    Return `tree` with every container, at every depth, made read-only.

    Leaves are returned as they are.
    """
    if isinstance(tree, dict):
        return FrozenDict({key: deep_freeze(value) for key, value in tree.items()})
    if isinstance(tree, list):
        return FrozenList(deep_freeze(item) for item in tree)
    return tree


def is_frozen(value: Any) -> bool:
    return isinstance(value, (FrozenDict, FrozenList))
