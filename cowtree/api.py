"""
cowtree.api — Public operations.

    set(tree, path, value)          path-based overwrite (value may be a transform)
    update(tree, path, fn)          set with a required transform
    merge(tree, *sources)           right-biased, per-leaf merge
    merge(tree, path, *sources)     same, scoped to the subtree at `path`
    map(tree, fn)                   one-level rewrite: fn(value, key, tree)
    with_mutations(tree, fn)        batch every call fn makes; one clone pass
    chain(tree)                     explicit Batch, committed with .value()
    get(tree, path, default=None)   read-only lookup

The module-level functions are bound to DEFAULT_ENGINE.  Build an Engine
of your own to change the delimiter, inject a warning sink, count clones
or isolate the shape cache.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Union

from .batch import Batch, StagedCache
from .core import (
    DELIMITER, MISSING, BatchError, PathUpdater, ShapeCache, TreeError,
    clone_shallow, get_in, is_container, iter_entries, lookup, split_path, walk_path,
)
from .merge import ChangeSet, apply_changes, collect_changes

logger = logging.getLogger(__name__)


def _require_container(tree: Any) -> None:
    if not is_container(tree):
        raise TreeError(f"expected a dict or list tree, got {type(tree).__name__}")


def _unchanged(old: Any, new: Any) -> bool:
    if old is new:
        return True
    if is_container(old) or is_container(new):
        return False
    return type(old) is type(new) and old == new


def _constant(value: Any) -> Callable[[Any], Any]:
    return lambda _previous: value


class Engine:
    """
    Copy-on-write update engine.

    Arguments:
        delimiter: separator of path strings and Change Set keys
        shapes:    cloner cache; a fresh ShapeCache when omitted
        warn:      called with one message per upserted path;
                   defaults to this module's logger at WARNING level
        on_clone:  instrumentation hook, called on_clone(original, clone)
                   after every shallow clone
    """

    def __init__(self, delimiter: str = DELIMITER, shapes: Optional[ShapeCache] = None,
                 warn: Optional[Callable[[str], Any]] = None,
                 on_clone: Optional[Callable[[Any, Any], Any]] = None):
        if not delimiter:
            raise ValueError("delimiter must be a non-empty string")
        self.delimiter = delimiter
        self.shapes = shapes if shapes is not None else ShapeCache()
        self.warn = warn if warn is not None else logger.warning
        self.on_clone = on_clone
        self._staged: dict[int, StagedCache] = {}

    def __repr__(self) -> str:
        return f"Engine(delimiter={self.delimiter!r}, shapes={len(self.shapes)})"

    # -- engine primitives --

    def clone_shallow(self, node: Any) -> Union[dict, list]:
        cloned = clone_shallow(node, self.shapes)
        if self.on_clone is not None:
            self.on_clone(node, cloned)
        return cloned

    def apply_changes(self, tree: Any, changes: ChangeSet) -> Union[dict, list]:
        return apply_changes(tree, changes, self.clone_shallow, self.warn, self.delimiter)

    def collect_changes(self, *sources: Any) -> ChangeSet:
        return collect_changes(*sources, delimiter=self.delimiter)

    @contextmanager
    def staging(self, tree: Any) -> Iterator[StagedCache]:
        """Register a StagedCache for `tree` for the duration of the block."""
        _require_container(tree)
        key = id(tree)
        if key in self._staged:
            raise BatchError("a batch is already staged on this tree")
        cache = StagedCache(tree, self.delimiter)
        self._staged[key] = cache
        try:
            yield cache
        finally:
            del self._staged[key]

    def _cache_for(self, tree: Any) -> Optional[StagedCache]:
        if not self._staged:
            return None
        return self._staged.get(id(tree))

    # -- public operations --

    def get(self, tree: Any, path, default: Any = None) -> Any:
        if isinstance(tree, Batch):
            raise TypeError("cannot read from a Batch; commit it with value() first")
        return get_in(tree, path, default, self.delimiter)

    def set(self, tree: Any, path, value: Any) -> Any:
        """
        New tree with `value` at `path`.

        `value` may be a callable, in which case it receives the previous
        value (None when the path does not exist yet).  Missing or leaf
        intermediates are replaced by new dicts.  When the write would
        not change anything, only the root is cloned.
        """
        if isinstance(tree, Batch):
            return tree.set(path, value)
        _require_container(tree)
        segments = split_path(path, self.delimiter)

        cache = self._cache_for(tree)
        if cache is not None:
            cache.write(tree, segments, value, self.clone_shallow)
            return tree

        current = get_in(tree, segments, MISSING, self.delimiter)
        if current is not MISSING:
            new = value(current) if callable(value) else value
            if _unchanged(current, new):
                return self.clone_shallow(tree)
            value = _constant(new)

        cloned = self.clone_shallow(tree)
        walk_path(cloned, segments, PathUpdater(value, self.clone_shallow))
        return cloned

    def update(self, tree: Any, path, fn: Callable[[Any], Any]) -> Any:
        if isinstance(tree, Batch):
            return tree.update(path, fn)
        if not callable(fn):
            raise TypeError(f"update() needs a callable, got {type(fn).__name__}")
        return self.set(tree, path, fn)

    def merge(self, tree: Any, *args: Any) -> Any:
        """
        Merge `sources` into `tree`; the last source wins per leaf path.

        A str or tuple first argument is a path: the merge then targets
        the subtree found there (created when missing).
        """
        if isinstance(tree, Batch):
            return tree.merge(*args)
        _require_container(tree)

        path = None
        sources = args
        if args and isinstance(args[0], (str, tuple)):
            path, sources = args[0], args[1:]
        prefix = split_path(path, self.delimiter) if path is not None else ()

        cache = self._cache_for(tree)
        if cache is not None:
            self._stage_merge(cache, tree, prefix, sources)
            return tree

        if prefix:
            subtree = get_in(tree, prefix, MISSING, self.delimiter)
            base = subtree if is_container(subtree) else {}
            return self.set(tree, prefix, _constant(self.merge(base, *sources)))

        return self.apply_changes(tree, self.collect_changes(*sources))

    def _stage_merge(self, cache: StagedCache, tree: Any, prefix: tuple,
                     sources: tuple) -> None:
        if prefix:
            existing = get_in(tree, prefix, MISSING, self.delimiter)
            cache.ensure(tree, prefix, isinstance(existing, list), self.clone_shallow)

        for path, value in self.collect_changes(*sources).items():
            segments = prefix + tuple(path.split(self.delimiter))
            if is_container(value):
                cache.ensure(tree, segments, isinstance(value, list), self.clone_shallow)
            else:
                cache.write(tree, segments, value, self.clone_shallow)

    def map(self, tree: Any, fn: Callable[[Any, Any, Any], Any]) -> Any:
        """
        New tree where each top-level entry is replaced by fn(value, key, tree).

        Only the first level is visited; nested containers are passed to
        `fn` as they are.  Inside a batch, `fn` sees each entry as the
        earlier actions of the batch left it, including new entries.
        """
        if isinstance(tree, Batch):
            return tree.map(fn)
        _require_container(tree)

        cache = self._cache_for(tree)
        if cache is not None:
            for key in self._staged_keys(cache, tree):
                value = self._staged_value(cache, tree, key)
                cache.write(tree, (key,), _constant(fn(value, key, tree)), self.clone_shallow)
            return tree

        cloned = self.clone_shallow(tree)
        for key, value in list(iter_entries(tree)):
            cloned[key] = fn(value, key, tree)
        return cloned

    @staticmethod
    def _staged_keys(cache: StagedCache, tree: Any) -> list:
        if isinstance(tree, list):
            added = sorted(int(name) for name in cache.root if int(name) >= len(tree))
            return list(range(len(tree))) + added
        return list(tree) + [name for name in cache.root if name not in tree]

    def _staged_value(self, cache: StagedCache, tree: Any, key: Any) -> Any:
        current = lookup(tree, key)
        staged = cache.staged(key)
        if staged is MISSING:
            return current
        return cache.materialize(staged, current, self.clone_shallow)

    def chain(self, tree: Any) -> Batch:
        return Batch(tree, self)

    def with_mutations(self, tree: Any, fn: Callable[[Batch], Any]) -> Any:
        """
        Run `fn` against a Batch for `tree` and return the committed result.

        Inside an ongoing batch the recorded calls are replayed into the
        enclosing batch instead, and `tree` is returned.
        """
        if isinstance(tree, Batch):
            return tree.with_mutations(fn)
        _require_container(tree)

        batch = Batch(tree, self)
        fn(batch)
        if self._cache_for(tree) is not None:
            batch.drain(tree)
            return tree
        return batch.value()


DEFAULT_ENGINE = Engine()

# Bound to the default engine.  `set` and `map` shadow the builtins from
# here on; nothing below this line may use them.
get = DEFAULT_ENGINE.get
set = DEFAULT_ENGINE.set
update = DEFAULT_ENGINE.update
merge = DEFAULT_ENGINE.merge
map = DEFAULT_ENGINE.map
chain = DEFAULT_ENGINE.chain
with_mutations = DEFAULT_ENGINE.with_mutations
