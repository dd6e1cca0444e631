"""
cowtree — Copy-on-write updates for nested dicts and lists
==========================================================

    set({"a": {"x": 1}, "b": {"y": 2}}, "a___x", 9)
        → {"a": {"x": 9}, "b": {"y": 2}}      (result["b"] is tree["b"])

    merge({"a": 1, "c": {"d": 4}}, {"a": 2}, {"c": {"d": 6}})
        → {"a": 2, "c": {"d": 6}}

    with_mutations(tree, lambda b: b.set("a", 2).set("b", 1))
        → both writes, one clone pass

Every operation returns a NEW tree and leaves its input untouched:
  • the root is always a new object
  • containers on the way to a change are cloned, once
  • everything else is shared by reference with the input
"""

from cowtree.core import (
    # Types
    DELIMITER,
    Cloner,
    ShapeCache,
    StagedNode,
    EnsureContainer,
    WriteLeaf,
    PathUpdater,
    # Errors
    CowTreeError,
    TreeError,
    ShapeError,
    PathError,
    BatchError,
    # Traversal
    is_container,
    traverse,
    walk_path,
    split_path,
    join_path,
    get_in,
)
from cowtree.merge import Replace, collect_changes, apply_changes
from cowtree.batch import Batch, StagedCache
from cowtree.api import (
    Engine, DEFAULT_ENGINE,
    get, set, update, merge, map, chain, with_mutations,
)
from cowtree.freeze import deep_freeze, FrozenDict, FrozenList, FrozenError

__version__ = "0.1.0"
__all__ = [
    "DELIMITER", "Cloner", "ShapeCache", "StagedNode",
    "EnsureContainer", "WriteLeaf", "PathUpdater",
    "CowTreeError", "TreeError", "ShapeError", "PathError", "BatchError",
    "is_container", "traverse", "walk_path", "split_path", "join_path", "get_in",
    "Replace", "collect_changes", "apply_changes",
    "Batch", "StagedCache",
    "Engine", "DEFAULT_ENGINE",
    "get", "set", "update", "merge", "map", "chain", "with_mutations",
    "deep_freeze", "FrozenDict", "FrozenList", "FrozenError",
]
