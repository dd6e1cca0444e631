"""
cowtree.merge — Change collection and single-pass application.

A Change Set is a flat dict mapping a full path string to the value the
result must hold there.  Two functions operate on it:

    collect_changes(*sources)        sources → Change Set
    apply_changes(target, changes)   target + Change Set → new tree

ALGORITHM (collect):
    1. Walk the sources from LAST to FIRST.
    2. Every path reached in a source is claimed unless an earlier
       visited (= later supplied) source already claimed it, or a
       later source put a leaf on one of its ancestors.
    3. Net effect: the last source that defines a leaf path wins, per
       leaf path.  Lists are merged by index.

ALGORITHM (apply):
    1. Shallow-clone the target root.
    2. Traverse the clone.  For each path in the Change Set:
       • container change over a container node → clone it in place
       • anything else → overwrite (calling it if it is a transform)
       and mark the path consumed.
    3. Walk every unconsumed path into the clone, creating missing
       containers, and write its value.  Each of these is an UPSERT and
       is reported through `warn`.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from .core import (
    DELIMITER, MISSING, PathUpdater, TreeError, is_container, empty_like,
    join_path, traverse, walk_path,
)


@dataclass(frozen=True, slots=True)
class Replace:
    """Atomic overwrite: the wrapped value is written as-is, never merged into."""
    value: Any


class _Marker:
    __slots__ = ("name",)

    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return self.name


# Path already written during the current pass.
CONSUMED = _Marker("CONSUMED")

# Ancestor of a change path that the caller did not list explicitly.
ENSURE = _Marker("ENSURE")

ChangeSet = dict


def is_structural(change: Any) -> bool:
    """True when a change only asks for a container to exist at its path."""
    return is_container(change) or change is ENSURE


# ═══════════════════════════════════════════════════════════════════
#  COLLECT
# ═══════════════════════════════════════════════════════════════════

def collect_changes(*sources: Any, delimiter: str = DELIMITER) -> ChangeSet:
    """
    Flatten `sources` into a right-biased Change Set.

        collect_changes({"a": 1, "c": {"d": 4}}, {"a": 2})
        → {"a": 2, "c": {"d": 4}, "c___d": 4}

    Container nodes appear in the result too (mapped to the source's
    container) so that the applicator knows which containers to clone.
    """
    changes: ChangeSet = {}
    shadowed: set[str] = set()

    def claim(value: Any, key: Any, path: str, parent: Any, container: bool) -> None:
        if path in changes or _under_leaf(path, shadowed, delimiter):
            return
        changes[path] = value
        if not container:
            shadowed.add(path)

    for source in reversed(sources):
        if source is None:
            continue
        if not is_container(source):
            raise TreeError(f"merge source must be a dict or list, got {type(source).__name__}")
        traverse(source, claim, delimiter)

    return changes


def _under_leaf(path: str, leaves: set, delimiter: str) -> bool:
    if not leaves:
        return False
    cut = path.rfind(delimiter)
    while cut > 0:
        if path[:cut] in leaves:
            return True
        cut = path.rfind(delimiter, 0, cut)
    return False


# ═══════════════════════════════════════════════════════════════════
#  APPLY
# ═══════════════════════════════════════════════════════════════════

def _with_ancestors(changes: ChangeSet, delimiter: str) -> ChangeSet:
    """Copy of `changes` where every proper prefix of every path is present."""
    pending: ChangeSet = {}
    for path, value in changes.items():
        cut = path.find(delimiter)
        while cut > 0:
            pending.setdefault(path[:cut], ENSURE)
            cut = path.find(delimiter, cut + len(delimiter))
        pending[path] = value
    return pending


def _resolve(change: Any, previous: Any) -> Any:
    """Value that the result holds once `change` lands on `previous`."""
    if isinstance(change, Replace):
        return change.value
    if callable(change):
        return change(previous)
    return change


def _constant(value: Any) -> Callable[[Any], Any]:
    return lambda _previous: value


def apply_changes(target: Union[dict, list], changes: ChangeSet,
                  clone: Callable[[Any], Any],
                  warn: Optional[Callable[[str], Any]] = None,
                  delimiter: str = DELIMITER) -> Union[dict, list]:
    """
    Produce a new tree from `target` with every change applied.

    Only containers on the way to a change are cloned, each exactly
    once; everything else is shared with `target`.  `changes` itself is
    left untouched.
    """
    if not is_container(target):
        raise TreeError(f"cannot apply changes to a leaf of type {type(target).__name__}")

    pending = _with_ancestors(changes, delimiter)
    root = clone(target)
    owned = {id(root): root}

    def visit(value: Any, key: Any, path: str, parent: Any, container: bool) -> None:
        change = pending.get(path, MISSING)
        if change is MISSING or change is CONSUMED:
            return
        if id(parent) not in owned:
            # Inside a value written by this pass; step 3 clones its way in.
            return

        if is_structural(change):
            if container:
                if id(value) not in owned:
                    cloned = clone(value)
                    parent[key] = cloned
                    owned[id(cloned)] = cloned
            elif change is not ENSURE:
                fresh = empty_like(change)
                parent[key] = fresh
                owned[id(fresh)] = fresh
            else:
                # Leaf in the way of a descendant write; step 3 replaces it.
                return
        else:
            parent[key] = _resolve(change, value)
        pending[path] = CONSUMED

    traverse(root, visit, delimiter)

    for path, change in pending.items():
        if change is CONSUMED or change is ENSURE:
            continue

        segments = tuple(path.split(delimiter))
        if is_structural(change):
            fresh = empty_like(change)
            owned[id(fresh)] = fresh
            write = _constant(fresh)
        elif isinstance(change, Replace):
            write = _constant(change.value)
        else:
            write = change

        walk_path(root, segments, PathUpdater(write, clone, owned))
        if warn is not None:
            warn(f"cowtree: created new path {join_path(segments, delimiter)!r} "
                 f"absent from the target")

    return root
