"""
cowtree.core — Shape cloning, traversal and path resolution
============================================================

THE MODEL
═════════

§1  TREES
─────────

A tree is built from two kinds of node:

    Leaf        any value that is not a container (str, int, None, ...)
    Container   a dict (string keys) or a list (integer indices)

Containers nest to arbitrary depth.  Cycles are not detected.

Every update in this package is COPY-ON-WRITE: the input tree is never
modified.  The result is a new root whose untouched subtrees are the
very same objects as in the input:

    t = {"a": {"x": 1}, "b": {"y": 2}}
    u = set(t, "a___x", 9)
    u is t          → False
    u["a"] is t["a"] → False   (ancestor of the change, cloned)
    u["b"] is t["b"] → True    (sibling, shared)


§2  PATHS
─────────

A path is an ordered sequence of segments:

    "a___b___0"        canonical delimiter
    "a.b.0"            accepted when the string holds no "___"
    ("a", "b", 0)      pre-split

Segments that land on a list are converted to int; segments that land
on a dict are converted to str.


§3  SHAPE CLONERS
─────────────────

Cloning a dict copies its fields one by one.  The list of fields is
derived once per distinct key shape and kept in a ShapeCache, so
repeated clones of same-shaped nodes skip the derivation.  The cache
grows with the number of distinct shapes seen and is never pruned on
its own; long-running processes handling many shapes should call
ShapeCache.clear() or give each job its own cache.


§4  PATH STEPS
──────────────

walk_path() reports every hop to a visitor as a tagged step:

    EnsureContainer()          an intermediate segment: make sure a
                               writable container sits at this key
    WriteLeaf(current, exists) the final segment: write the value

Both plain updates and staged (batched) updates flow through this one
protocol.

License: MIT
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union


DELIMITER = "___"


# ═══════════════════════════════════════════════════════════════════
#  ERRORS
# ═══════════════════════════════════════════════════════════════════

class CowTreeError(Exception):
    """Base class for every error raised by cowtree."""


class TreeError(CowTreeError, TypeError):
    """A leaf was given where a container is required."""


class ShapeError(CowTreeError, TypeError):
    """A cloner could not be derived for a mapping node."""


class PathError(CowTreeError, LookupError):
    """A path could not be resolved against a tree."""


class BatchError(CowTreeError, RuntimeError):
    """A batch was used outside of its Building state."""


class _Missing:
    """Marker for an absent key.  Distinct from None, which is a valid leaf."""
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def is_container(value: Any) -> bool:
    """True for dict and list nodes (including subclasses)."""
    return isinstance(value, (dict, list))


# ═══════════════════════════════════════════════════════════════════
#  SHAPE CLONER
# ═══════════════════════════════════════════════════════════════════

class Cloner:
    """
    Shallow-copy routine for one key shape.

    The field tuple is fixed at construction; calling the cloner builds
    a plain dict holding the same child references as the source node.
    """
    __slots__ = ("fields",)

    def __init__(self, fields: tuple):
        self.fields = fields

    def __call__(self, node: dict) -> dict:
        return {key: node[key] for key in self.fields}

    def __repr__(self) -> str:
        return f"Cloner({list(self.fields)!r})"


class ShapeCache:
    """
    Cloners keyed by key shape.

    One instance is owned by each Engine.  Entries are kept until
    clear() is called.
    """

    def __init__(self):
        self._cloners: dict[tuple, Cloner] = {}
        self.hits = 0
        self.misses = 0

    def cloner_for(self, node: dict) -> Cloner:
        shape = tuple(node)
        cloner = self._cloners.get(shape)
        if cloner is not None:
            self.hits += 1
            return cloner

        self.misses += 1
        cloner = self._derive(shape)
        self._cloners[shape] = cloner
        return cloner

    @staticmethod
    def _derive(shape: tuple) -> Cloner:
        for key in shape:
            if not isinstance(key, str):
                raise ShapeError(
                    f"mapping keys must be str, got {type(key).__name__} {key!r}"
                )
        return Cloner(shape)

    def clear(self) -> None:
        self._cloners.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._cloners)

    def __contains__(self, shape: tuple) -> bool:
        return tuple(shape) in self._cloners


def clone_sequence(node: list) -> list:
    """New list of the same length holding the same element references."""
    return list(node)


def clone_shallow(node: Any, shapes: ShapeCache) -> Union[dict, list]:
    """
    Shallow-clone a container.

    Dicts go through the shape cache; lists are copied element by
    element.  The clone is always a plain dict or list, whatever the
    subclass of the source.
    """
    if isinstance(node, list):
        return clone_sequence(node)
    if isinstance(node, dict):
        return shapes.cloner_for(node)(node)
    raise TreeError(f"cannot clone a leaf of type {type(node).__name__}")


def empty_like(value: Any) -> Union[dict, list]:
    """Fresh empty container of the same kind as `value`."""
    if isinstance(value, StagedNode):
        return [] if value.seq else {}
    if isinstance(value, list):
        return []
    return {}


class StagedNode(dict):
    """
    Skeleton node of a staged cache.

    A plain dict keyed by segment strings.  `seq` records whether the
    node stands for a list, so that creating it from scratch at commit
    time yields the right kind of container.
    """
    __slots__ = ("seq",)

    def __init__(self, *args, seq: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.seq = seq

    def __repr__(self) -> str:
        return f"StagedNode({dict.__repr__(self)}, seq={self.seq})"


# ═══════════════════════════════════════════════════════════════════
#  CONTAINER ACCESS
# ═══════════════════════════════════════════════════════════════════

def key_for(container: Any, segment: Any) -> Union[str, int]:
    """Convert a path segment into a key suitable for `container`."""
    if isinstance(container, list):
        if isinstance(segment, bool):
            raise PathError(f"invalid list index {segment!r}")
        if isinstance(segment, int):
            index = segment
        else:
            try:
                index = int(str(segment))
            except ValueError:
                raise PathError(f"list index must be an integer, got {segment!r}") from None
        if index < 0:
            raise PathError(f"negative list index {index}")
        return index
    return segment if isinstance(segment, str) else str(segment)


def lookup(container: Any, key: Union[str, int]) -> Any:
    """Child at `key`, or MISSING when absent or when `container` is a leaf."""
    if isinstance(container, list):
        if isinstance(key, int) and 0 <= key < len(container):
            return container[key]
        return MISSING
    if isinstance(container, dict):
        return container.get(key, MISSING)
    return MISSING


def assign(container: Union[dict, list], key: Union[str, int], value: Any) -> None:
    """
    Store `value` under `key`.

    Lists grow as needed: writing at len() appends, writing past it pads
    the gap with None.
    """
    if isinstance(container, list):
        gap = key - len(container)
        if gap < 0:
            container[key] = value
            return
        container.extend([None] * gap)
        container.append(value)
        return
    container[key] = value


def iter_entries(container: Union[dict, list]) -> Iterable[tuple]:
    if isinstance(container, list):
        return enumerate(container)
    return container.items()


# ═══════════════════════════════════════════════════════════════════
#  PATHS
# ═══════════════════════════════════════════════════════════════════

PathLike = Union[str, tuple, list]


def split_path(path: PathLike, delimiter: str = DELIMITER) -> tuple:
    """
    Normalize a path into a tuple of segments.

        split_path("a___b")   → ("a", "b")
        split_path("a.b")     → ("a", "b")
        split_path(("a", 0))  → ("a", 0)
    """
    if isinstance(path, str):
        if not path:
            raise PathError("path must not be empty")
        if delimiter in path:
            segments = tuple(path.split(delimiter))
        else:
            segments = tuple(path.split("."))
    elif isinstance(path, (tuple, list)):
        segments = tuple(path)
    elif isinstance(path, int) and not isinstance(path, bool):
        segments = (path,)
    else:
        raise PathError(f"unsupported path type {type(path).__name__}")

    if not segments:
        raise PathError("path must contain at least one segment")
    return segments


def join_path(segments: Iterable[Any], delimiter: str = DELIMITER) -> str:
    return delimiter.join(str(segment) for segment in segments)


def get_in(tree: Any, path: PathLike, default: Any = None,
           delimiter: str = DELIMITER) -> Any:
    """Read the value at `path`, or `default` when any segment is absent."""
    node = tree
    for segment in split_path(path, delimiter):
        if not is_container(node):
            return default
        try:
            key = key_for(node, segment)
        except PathError:
            return default
        node = lookup(node, key)
        if node is MISSING:
            return default
    return node


# ═══════════════════════════════════════════════════════════════════
#  TRAVERSAL
# ═══════════════════════════════════════════════════════════════════

Visitor = Callable[[Any, Union[str, int], str, Union[dict, list], bool], Any]


def traverse(tree: Union[dict, list], visit: Visitor, delimiter: str = DELIMITER,
             descend: Callable[[Any], bool] = is_container, _prefix: str = "") -> None:
    """
    Depth-first, pre-order walk over every entry below `tree`.

    Calls visit(value, key, path, parent, is_container) for each entry,
    then descends into parent[key].  The child is read again after the
    visit, so a visitor that replaces parent[key] (for instance with a
    clone) sees the traversal continue into the replacement.
    """
    for key, value in list(iter_entries(tree)):
        path = f"{_prefix}{delimiter}{key}" if _prefix else str(key)
        visit(value, key, path, tree, is_container(value))

        child = tree[key]
        if descend(child):
            traverse(child, visit, delimiter, descend, path)


@dataclass(frozen=True, slots=True)
class EnsureContainer:
    """Intermediate hop: the visitor must leave a writable container at the key."""


@dataclass(frozen=True, slots=True)
class WriteLeaf:
    """Final hop: the visitor writes the new value."""
    current: Any = None
    exists: bool = False


PathStep = Union[EnsureContainer, WriteLeaf]
StepVisitor = Callable[[Union[dict, list], Union[str, int], PathStep], Any]


def _staged_key(shadow: StagedNode, node: Any, segment: Any) -> str:
    """
    Key into a skeleton node, checked like the container it stands for:
    the subject's container when there is one, else the staged shape.
    """
    seq = isinstance(node, list) if is_container(node) else shadow.seq
    if seq:
        return str(key_for([], segment))
    return key_for(shadow, segment)


def walk_path(tree: Union[dict, list], segments: tuple, visit: StepVisitor,
              cache: Optional[dict] = None) -> None:
    """
    Resolve `segments` hop by hop, handing each hop to `visit`.

    Without a cache, every hop happens on `tree`.  With a staged cache,
    the hops happen on the cache and `tree` is followed in lock-step so
    that the final WriteLeaf can report the value the tree currently
    holds when the cache has nothing for that key yet.  Once the walk
    enters a value staged as a whole, the tree is no longer consulted.
    """
    node: Any = tree
    shadow = cache
    last = len(segments) - 1

    for i, segment in enumerate(segments):
        context = shadow if shadow is not None else node
        if isinstance(shadow, StagedNode):
            key = _staged_key(shadow, node, segment)
        else:
            key = key_for(context, segment)

        if i == last:
            current = lookup(context, key)
            if current is MISSING and isinstance(shadow, StagedNode) and is_container(node):
                current = lookup(node, key_for(node, segment))
            exists = current is not MISSING
            visit(context, key, WriteLeaf(current if exists else None, exists))
            return

        visit(context, key, EnsureContainer())
        if shadow is not None:
            shadow = shadow[key]
            if isinstance(shadow, StagedNode) and is_container(node):
                node = lookup(node, key_for(node, segment))
            else:
                node = MISSING
        else:
            node = node[key]


# ═══════════════════════════════════════════════════════════════════
#  PATH UPDATER
# ═══════════════════════════════════════════════════════════════════

class PathUpdater:
    """
    Step visitor that ensures containers and writes the final value.

    Arguments:
        value:   the value to write, or a callable applied to the
                 previous value (None when the key did not exist)
        clone:   shallow-clone routine for existing containers
        owned:   containers that already belong to the result, keyed by id;
                 these are written into directly instead of being
                 cloned again.  None means "clone every hop".

    A missing key inside a StagedNode gets another StagedNode; anywhere
    else, and over a leaf, a plain dict is materialized.
    """

    def __init__(self, value: Any, clone: Callable[[Any], Any],
                 owned: Optional[dict] = None):
        self.value = value
        self.clone = clone
        self.owned = owned

    def __call__(self, context: Union[dict, list], key: Union[str, int],
                 step: PathStep) -> None:
        if isinstance(step, EnsureContainer):
            self._ensure(context, key)
        elif isinstance(step, WriteLeaf):
            value = self.value
            if callable(value):
                value = value(step.current)
            assign(context, key, value)
        else:
            raise TypeError(f"unknown path step {step!r}")

    def _ensure(self, context: Union[dict, list], key: Union[str, int]) -> None:
        child = lookup(context, key)
        if not is_container(child):
            if child is MISSING and isinstance(context, StagedNode):
                fresh = StagedNode()
            else:
                fresh = {}
            assign(context, key, fresh)
            self._own(fresh)
            return
        if self.owned is not None and id(child) in self.owned:
            return
        if isinstance(child, StagedNode):
            return
        cloned = self.clone(child)
        assign(context, key, cloned)
        self._own(cloned)

    def _own(self, node: Any) -> None:
        if self.owned is not None:
            self.owned[id(node)] = node
