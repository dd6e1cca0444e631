"""
Tests for batches: with_mutations, chain() and the staged cache.
"""

import copy
import sys
import os
import pytest

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import cowtree
from cowtree.api import Engine
from cowtree.batch import Batch, StagedCache
from cowtree.core import BatchError, PathError, StagedNode
from cowtree.merge import Replace


class Counter:

    def __init__(self):
        self.maps = 0
        self.seqs = 0

    def __call__(self, original, cloned):
        if isinstance(cloned, list):
            self.seqs += 1
        else:
            self.maps += 1


@pytest.fixture
def counter():
    return Counter()


@pytest.fixture
def warnings():
    return []


@pytest.fixture
def engine(counter, warnings):
    return Engine(warn=warnings.append, on_clone=counter)


# ═══════════════════════════════════════════════════════════════════
#  WITH_MUTATIONS
# ═══════════════════════════════════════════════════════════════════

class TestWithMutations:

    def test_multiple_mutations_one_clone(self, engine, counter):
        obj = {"a": 1, "b": 2, "c": 3}
        new = engine.with_mutations(obj, lambda o: o.set("a", 2).set("b", 1))
        assert obj == {"a": 1, "b": 2, "c": 3}
        assert new == {"a": 2, "b": 1, "c": 3}
        assert counter.maps == 1

    def test_multiple_deep_mutations(self, engine, counter):
        obj = [{"a": 1, "b": [1, 2], "c": 3}, {"a": 4, "d": 5}]
        new = engine.chain(obj).with_mutations(
            lambda o: o.set("0___a", 2).set("1___d", 0)
        ).value()
        assert obj == [{"a": 1, "b": [1, 2], "c": 3}, {"a": 4, "d": 5}]
        assert new == [{"a": 2, "b": [1, 2], "c": 3}, {"a": 4, "d": 0}]
        assert counter.maps == 2
        assert counter.seqs == 1
        assert new[0] is not obj[0]
        assert new[0]["b"] is obj[0]["b"]

    def test_return_value_of_fn_is_ignored(self, engine):
        assert engine.with_mutations({"a": 1}, lambda o: "ignored") == {"a": 1}

    def test_array_subject(self, engine, counter):
        arr = [1]
        new = engine.chain(arr).set("0", 2).value()
        assert arr == [1]
        assert new is not arr
        assert new == [2]
        assert counter.seqs == 1

    def test_module_level(self):
        assert cowtree.with_mutations({"a": 1}, lambda b: b.set("a", 2)) == {"a": 2}


# ═══════════════════════════════════════════════════════════════════
#  EQUIVALENCE WITH THE EAGER API
# ═══════════════════════════════════════════════════════════════════

BASE = {
    "a": {"x": 0, "z": 3},
    "b": [1, [2, 3]],
    "c": "leaf",
}

SCRIPTS = [
    [("set", "a___x", 1), ("set", "a___y", 2)],
    [("set", "a___x", 1), ("merge", {"a": {"y": 2}})],
    [("merge", {"a": {"x": 9}}), ("set", "a___x", 1)],
    [("set", "b", [9]), ("set", "b___0", 5)],
    [("set", "b___1___0", 7), ("merge", [0, [0, 0, 4]])],
    [("set", "c___d", 1), ("update", "c___d", lambda v: v + 1)],
    [("set", "a", 5), ("merge", {"a": {"k": 1}})],
    [("merge", {"a": 5}), ("set", "n", None)],
    [("merge", "a", {"z": 4}), ("update", "a___z", lambda v: v * 2)],
    [("map", lambda v, k, t: v), ("set", "c", "other")],
    [("merge", {"e": []}), ("merge", {"e": [1]})],
    [("set", "a", 5), ("set", "a___k", 1)],
    [("set", "a", 5), ("merge", {"a": {"k": 1}}), ("update", "a___x", lambda v: v)],
    [("set", "b___0", [1]), ("map", lambda v, k, t: v)],
    [("set", "n___m", 1), ("map", lambda v, k, t: v)],
    [("set", "a___x", 4), ("map", lambda v, k, t: len(v) if isinstance(v, dict) else v)],
    [("set", "b", {"k": 0}), ("set", "b___k", 1)],
    [("set", "a___x", 1), ("update", "a", lambda v: sorted(v.items()))],
]


def _run_eager(engine, tree, script):
    for op, *args in script:
        tree = getattr(engine, op)(tree, *args)
    return tree


def _run_batched(engine, tree, script):
    batch = engine.chain(tree)
    for op, *args in script:
        getattr(batch, op)(*args)
    return batch.value()


class TestEquivalence:

    @pytest.mark.parametrize("script", SCRIPTS)
    def test_batch_matches_sequential_calls(self, script):
        engine = Engine(warn=lambda message: None)
        tree = copy.deepcopy(BASE)
        snapshot = copy.deepcopy(tree)
        assert _run_batched(engine, tree, script) == _run_eager(engine, tree, script)
        assert tree == snapshot

    def test_values_returned_by_transforms_are_cloned(self):
        engine = Engine(warn=lambda message: None)
        made = []

        def make(previous):
            made.append({"q": 1})
            return made[-1]

        def script(batch):
            (batch.set("a", 5).set("a___x", 1).set("a", 7)
                  .update("b", make).set("b___z", 2))

        for _ in range(50):
            assert engine.with_mutations({}, script) == {"a": 7, "b": {"q": 1, "z": 2}}
        assert all(value == {"q": 1} for value in made)

    def test_batch_raises_where_sequential_calls_raise(self):
        engine = Engine(warn=lambda message: None)
        script = [("merge", [[{"k": 1}], 0, None]), ("set", "0___b", []),
                  ("merge", {"0": 3})]
        with pytest.raises(PathError):
            _run_eager(engine, {}, script)
        with pytest.raises(PathError):
            _run_batched(engine, {}, script)

    def test_list_segments_are_checked_against_the_subject(self):
        engine = Engine(warn=lambda message: None)
        tree = {"b": [1, 2]}
        with pytest.raises(PathError):
            engine.chain(tree).merge({"b": {"k": 1}}).value()
        with pytest.raises(PathError):
            engine.merge(tree, {"b": {"k": 1}})
        assert tree == {"b": [1, 2]}

    def test_batch_clones_each_container_once(self, counter):
        engine = Engine(warn=lambda message: None, on_clone=counter)
        tree = {"a": {"b": {"c": 1, "d": 2}}, "e": {}}
        engine.chain(tree).set("a___b___c", 5).set("a___b___d", 6).set("a___b___c", 7).value()
        assert counter.maps == 3

    def test_sequential_calls_clone_each_time(self, counter):
        engine = Engine(warn=lambda message: None, on_clone=counter)
        tree = {"a": {"b": {"c": 1, "d": 2}}, "e": {}}
        engine.set(engine.set(tree, "a___b___c", 5), "a___b___d", 6)
        assert counter.maps == 6


# ═══════════════════════════════════════════════════════════════════
#  BATCH OBJECT
# ═══════════════════════════════════════════════════════════════════

class TestBatch:

    def test_methods_chain(self, engine):
        batch = engine.chain({})
        assert batch.set("a", 1) is batch
        assert batch.update("a", lambda v: v) is batch
        assert batch.merge({"b": 1}) is batch
        assert batch.map(lambda v, k, t: v) is batch
        assert batch.with_mutations(lambda b: None) is batch
        assert batch.pending == 5

    def test_actions_are_deferred(self, engine):
        calls = []
        batch = engine.chain({"n": 1}).update("n", lambda v: calls.append(v) or v)
        assert calls == []
        batch.value()
        assert calls == [1]

    def test_fifo_order(self, engine):
        result = engine.chain({"n": 1}).set("n", 5).update("n", lambda v: v * 2).value()
        assert result == {"n": 10}

    def test_update_reads_subject_when_nothing_staged(self, engine):
        assert engine.chain({"n": 1}).update("n", lambda v: v + 1).value() == {"n": 2}

    def test_update_sees_staged_container(self, engine):
        seen = []
        result = (engine.chain({"a": {"x": 1, "y": 2}})
                  .set("a___x", 5)
                  .update("a", lambda v: seen.append(v) or v)
                  .value())
        assert seen == [{"x": 5, "y": 2}]
        assert type(seen[0]) is dict
        assert result == {"a": {"x": 5, "y": 2}}

    def test_nested_with_mutations_share_the_queue(self, engine):
        result = (engine.chain({})
                  .with_mutations(lambda b: b.set("a", 1))
                  .set("b", 2)
                  .value())
        assert result == {"a": 1, "b": 2}

    def test_public_with_mutations_inside_batch(self, engine):
        result = engine.chain({}).with_mutations(
            lambda b: cowtree.with_mutations(b, lambda inner: inner.set("a", 1))
        ).value()
        assert result == {"a": 1}

    def test_engine_with_mutations_on_staged_tree(self, engine):
        tree = {"a": 0}
        result = engine.chain(tree).map(
            lambda v, k, t: v
        ).with_mutations(
            lambda b: engine.with_mutations(tree, lambda inner: inner.set("z", 1))
        ).value()
        assert result == {"a": 0, "z": 1}

    def test_rewrap_is_idempotent(self, engine):
        batch = engine.chain({"a": 1})
        assert Batch(batch) is batch
        assert engine.chain(batch) is batch
        assert cowtree.chain(batch) is batch

    def test_operations_redirect_to_batch(self, engine):
        batch = engine.chain({"a": 1})
        assert engine.set(batch, "a", 2) is batch
        assert cowtree.merge(batch, {"b": 1}) is batch
        assert engine.update(batch, "a", lambda v: v + 1) is batch
        assert engine.map(batch, lambda v, k, t: v) is batch
        assert engine.with_mutations(batch, lambda b: None) is batch
        assert batch.value() == {"a": 3, "b": 1}

    def test_get_on_batch_rejected(self, engine):
        with pytest.raises(TypeError):
            engine.get(engine.chain({}), "a")

    def test_value_twice(self, engine):
        batch = engine.chain({}).set("a", 1)
        batch.value()
        with pytest.raises(BatchError):
            batch.value()

    def test_record_after_commit(self, engine):
        batch = engine.chain({})
        batch.value()
        with pytest.raises(BatchError):
            batch.set("a", 1)
        with pytest.raises(BatchError):
            batch.plant({})

    def test_plant(self, engine):
        batch = engine.chain({"a": 1}).set("a", 2)
        assert batch.plant({"a": 5, "c": 1}) is batch
        assert batch.value() == {"a": 2, "c": 1}

    def test_batch_requires_engine(self):
        with pytest.raises(TypeError):
            Batch({})

    def test_repr(self, engine):
        batch = engine.chain({}).set("a", 1)
        assert "1 pending" in repr(batch)
        batch.value()
        assert "committed" in repr(batch)

    def test_upsert_warns_at_commit(self, engine, warnings):
        batch = engine.chain({"a": 1}).set("b", 2)
        assert warnings == []
        batch.value()
        assert len(warnings) == 1

    def test_staged_merge_warns_like_eager_merge(self, engine, warnings):
        users = {"data": [{"user": "barney"}, {"user": "fred"}]}
        merged = engine.chain(users).merge(
            {"data": [{"age": 36}]}, {"data": [{"age": 30}, {"age": 40}]}
        ).value()
        assert merged == {"data": [{"user": "barney", "age": 30},
                                   {"user": "fred", "age": 40}]}
        assert len(warnings) == 2


# ═══════════════════════════════════════════════════════════════════
#  STAGING
# ═══════════════════════════════════════════════════════════════════

class TestStaging:

    def test_one_batch_per_tree(self, engine):
        tree = {}
        with engine.staging(tree):
            with pytest.raises(BatchError):
                with engine.staging(tree):
                    pass

    def test_staged_calls_return_the_subject(self, engine):
        tree = {"a": 1}
        with engine.staging(tree) as cache:
            assert engine.set(tree, "a", 2) is tree
            assert engine.merge(tree, {"b": 1}) is tree
            assert engine.map(tree, lambda v, k, t: v) is tree
        assert tree == {"a": 1}
        assert cache.changes() == {"a": Replace(2), "b": Replace(1)}

    def test_map_sees_staged_entries(self, engine):
        seen = {}
        result = (engine.chain({"a": {"x": 1}, "b": 2})
                  .set("a___x", 5)
                  .set("c", 3)
                  .map(lambda v, k, t: seen.setdefault(k, v))
                  .value())
        assert seen == {"a": {"x": 5}, "b": 2, "c": 3}
        assert result == seen

    def test_map_on_list_root_sees_appended_items(self, engine):
        result = engine.chain([1]).set("1", 2).map(lambda v, k, t: v * 10).value()
        assert result == [10, 20]

    def test_staging_released_after_error(self, engine):
        tree = {"a": 1}
        batch = engine.chain(tree).set("a", 2).update("a", "not callable")
        with pytest.raises(TypeError):
            batch.value()
        assert engine.set(tree, "a", 3) is not tree

    def test_staging_released_after_commit(self, engine):
        tree = {"a": 1}
        engine.chain(tree).set("a", 2).value()
        assert engine.set(tree, "a", 3) == {"a": 3}

    def test_cache_skeleton(self, engine):
        tree = {"l": [{"k": 1}]}
        cache = StagedCache(tree)
        cache.write(tree, ("l", "0", "k"), 2, engine.clone_shallow)
        assert isinstance(cache.root["l"], StagedNode)
        changes = cache.changes()
        assert list(changes) == ["l", "l___0", "l___0___k"]
        assert changes["l___0___k"] == Replace(2)
        assert tree == {"l": [{"k": 1}]}

    def test_cache_ensure_keeps_list_kind(self, engine):
        tree = {}
        cache = StagedCache(tree)
        cache.ensure(tree, ("l",), True, engine.clone_shallow)
        assert cache.root["l"].seq is True
        assert engine.apply_changes(tree, cache.changes()) == {"l": []}

    def test_cache_never_writes_into_staged_values(self, engine):
        value = {"x": 1}
        tree = {}
        cache = StagedCache(tree)
        cache.write(tree, ("a",), value, engine.clone_shallow)
        cache.write(tree, ("a", "y"), 2, engine.clone_shallow)
        assert value == {"x": 1}
        assert cache.changes() == {"a": Replace({"x": 1, "y": 2})}
