"""
cowtree.batch — Deferred, single-pass mutation batches.

A Batch records calls instead of running them:

    result = (engine.chain(tree)
              .set("a", 2)
              .merge({"b": {"c": 3}})
              .value())

On value() the recorded actions are replayed in order against a
StagedCache: a skeleton tree, parallel to the subject, that collects
every write without touching the subject.  The cache is then turned
into a Change Set and applied in ONE pass, so N chained mutations clone
each touched container once instead of N times.

STATES:
    Building   → actions may be recorded
    Committed  → value() has run; the batch is spent
"""

import logging
from collections import deque
from typing import Any, Callable, Optional, Union

from .core import (
    DELIMITER, MISSING, BatchError, EnsureContainer, PathUpdater, StagedNode,
    assign, empty_like, get_in, is_container, lookup, traverse, walk_path,
)
from .merge import ChangeSet, Replace, apply_changes

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  STAGED CACHE
# ═══════════════════════════════════════════════════════════════════

class StagedCache:
    """
    Parallel skeleton that absorbs the writes of a batch.

    Skeleton nodes are StagedNode instances: they only say "a container
    lives here".  Any other value in the cache was written explicitly
    and replaces whatever the subject holds at that path.
    """

    def __init__(self, tree: Union[dict, list], delimiter: str = DELIMITER):
        self.root = StagedNode(seq=isinstance(tree, list))
        self.owned: dict[int, Any] = {id(self.root): self.root}
        self.delimiter = delimiter

    def write(self, tree: Any, segments: tuple, value: Any,
              clone: Callable[[Any], Any]) -> None:
        """Stage `value` (or a transform of the current value) at `segments`."""
        if callable(value):
            fn = value

            def value(current):
                if isinstance(current, StagedNode):
                    base = get_in(tree, segments, MISSING, self.delimiter)
                    current = self.materialize(current, base, clone)
                return fn(current)

        walk_path(tree, segments, PathUpdater(value, clone, self.owned), self.root)

    def ensure(self, tree: Any, segments: tuple, seq: bool,
               clone: Callable[[Any], Any]) -> None:
        """Stage a container at `segments` without replacing one already staged."""
        updater = PathUpdater(None, clone, self.owned)

        def visit(context, key, step):
            if isinstance(step, EnsureContainer):
                updater(context, key, step)
                return
            staged = lookup(context, key)
            if is_container(staged):
                updater(context, key, EnsureContainer())
                return
            if staged is MISSING and isinstance(context, StagedNode):
                node = StagedNode(seq=seq)
            else:
                node = [] if seq else {}
            assign(context, key, node)
            self.owned[id(node)] = node

        walk_path(tree, segments, visit, self.root)

    def staged(self, key: Any) -> Any:
        """What the batch holds under top-level `key`: a StagedNode, a value or MISSING."""
        return lookup(self.root, str(key))

    def materialize(self, staged: Any, base: Any, clone: Callable[[Any], Any]) -> Any:
        """
        The value a staged entry stands for.

        A StagedNode is resolved against `base`, the subject's value at the
        same path, without touching it; anything else is returned as is.
        """
        if not isinstance(staged, StagedNode):
            return staged
        if not is_container(base):
            base = empty_like(staged)
        return apply_changes(base, self.changes(staged), clone, None, self.delimiter)

    def changes(self, node: Optional[StagedNode] = None) -> ChangeSet:
        """Change Set for the whole cache, or for the skeleton below `node`."""
        changes: ChangeSet = {}

        def visit(value, key, path, parent, container):
            changes[path] = value if isinstance(value, StagedNode) else Replace(value)

        traverse(self.root if node is None else node, visit, self.delimiter,
                 descend=lambda child: isinstance(child, StagedNode))
        return changes


# ═══════════════════════════════════════════════════════════════════
#  BATCH
# ═══════════════════════════════════════════════════════════════════

class Batch:
    """
    Builder that defers set / update / merge / map / with_mutations.

    Every method returns the batch itself.  Wrapping a Batch in a Batch
    returns the same instance.  Only one batch may commit a given tree
    object at a time.
    """

    def __new__(cls, tree: Any, engine: Any = None):
        if isinstance(tree, Batch):
            return tree
        return super().__new__(cls)

    def __init__(self, tree: Any, engine: Any = None):
        if tree is self:
            return
        if engine is None:
            raise TypeError("Batch requires an engine")
        self._tree = tree
        self._engine = engine
        self._actions: deque = deque()
        self._committed = False

    @property
    def engine(self):
        return self._engine

    @property
    def pending(self) -> int:
        """Number of recorded actions not yet replayed."""
        return len(self._actions)

    def _record(self, action: Callable[[Any], Any]) -> "Batch":
        if self._committed:
            raise BatchError("batch already committed")
        self._actions.append(action)
        return self

    # -- recorded operations --

    def set(self, path, value) -> "Batch":
        return self._record(lambda tree: self._engine.set(tree, path, value))

    def update(self, path, fn) -> "Batch":
        return self._record(lambda tree: self._engine.update(tree, path, fn))

    def merge(self, *args) -> "Batch":
        return self._record(lambda tree: self._engine.merge(tree, *args))

    def map(self, fn) -> "Batch":
        return self._record(lambda tree: self._engine.map(tree, fn))

    def with_mutations(self, fn: Callable[["Batch"], Any]) -> "Batch":
        return self._record(lambda tree: fn(self))

    def plant(self, tree: Any) -> "Batch":
        """Swap the subject tree.  Recorded actions will replay against it."""
        if self._committed:
            raise BatchError("batch already committed")
        self._tree = tree
        return self

    # -- commit --

    def drain(self, tree: Any) -> int:
        """Replay recorded actions, FIFO, until none are left."""
        replayed = 0
        while self._actions:
            self._actions.popleft()(tree)
            replayed += 1
        return replayed

    def value(self) -> Any:
        """Replay every recorded action and return the resulting tree."""
        if self._committed:
            raise BatchError("batch already committed")

        tree = self._tree
        engine = self._engine
        try:
            # Actions replayed here may still record more actions.
            with engine.staging(tree) as cache:
                replayed = self.drain(tree)
        finally:
            self._committed = True
        changes = cache.changes()
        logger.debug("committing batch: %d actions, %d staged paths",
                     replayed, len(changes))
        return engine.apply_changes(tree, changes)

    def __repr__(self) -> str:
        state = "committed" if self._committed else f"{len(self._actions)} pending"
        return f"Batch({type(self._tree).__name__}, {state})"
