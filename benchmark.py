"""
Benchmark: cowtree vs full-copy updates of nested data.

This benchmark compares cowtree against:
    1. copy.deepcopy + in-place write — the "safe" way most code does it
    2. pyrsistent — persistent maps/vectors (if installed)

The point is NOT "we're faster than everything" — the point is:
    cowtree clones only the containers on the way to a change, so the
    cost of an update follows its DEPTH, not the size of the tree.
"""

import copy
import sys
import os
import time

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from cowtree.api import Engine
from cowtree.core import ShapeCache


# ═══════════════════════════════════════════════════════════════════
#  TEST DATA
# ═══════════════════════════════════════════════════════════════════

CONFIG = {
    "server": {
        "host": "0.0.0.0",
        "port": 443,
        "tls": True,
        "workers": 4,
    },
    "database": {
        "host": "db.internal",
        "port": 5432,
        "name": "production",
        "pool_size": 10,
        "replicas": [{"host": "r1", "lag": 0}, {"host": "r2", "lag": 3}],
    },
    "logging": {
        "level": "WARN",
        "format": "json",
        "outputs": ["stdout", "file"],
    },
}

PATCH = {
    "server": {"port": 8080, "workers": 8},
    "database": {"replicas": [{"lag": 1}]},
    "logging": {"level": "DEBUG"},
}


def make_wide(n):
    """n same-shaped records under one key."""
    return {"rows": [{"id": i, "name": f"row{i}", "tags": ["a", "b"]} for i in range(n)],
            "meta": {"count": n}}


def make_deep(depth):
    tree = {"leaf": 0}
    for level in range(depth):
        tree = {"child": tree, "level": level}
    return tree


def _deepcopy_set(tree, segments, value):
    result = copy.deepcopy(tree)
    node = result
    for segment in segments[:-1]:
        node = node[segment]
    node[segments[-1]] = value
    return result


def _timed(fn, repeat):
    t0 = time.perf_counter()
    for _ in range(repeat):
        fn()
    return (time.perf_counter() - t0) / repeat


def _try_import(name):
    """Safely attempt to import an optional dependency by name."""
    import importlib
    try:
        return importlib.import_module(name)
    except ImportError:
        return None


# ═══════════════════════════════════════════════════════════════════
#  BENCHMARKS
# ═══════════════════════════════════════════════════════════════════

def benchmark_single_set():
    """One deep write into a small config."""
    print("=" * 70)
    print("  §1  SINGLE SET — config document")
    print("=" * 70)
    print()

    engine = Engine()
    repeat = 2000

    cow = _timed(lambda: engine.set(CONFIG, "database___replicas___1___lag", 0), repeat)
    deep = _timed(lambda: _deepcopy_set(CONFIG, ("database", "replicas", 1, "lag"), 0),
                  repeat)

    result = engine.set(CONFIG, "database___replicas___1___lag", 0)
    shared = sum(result[key] is CONFIG[key] for key in CONFIG)

    print(f"  cowtree.set:          {cow*1e6:>8.2f}µs  ({shared}/{len(CONFIG)} top-level entries shared)")
    print(f"  deepcopy + write:     {deep*1e6:>8.2f}µs  (0/{len(CONFIG)} shared)")
    print(f"  Speedup:              {deep / cow:>8.1f}x")
    print()


def benchmark_merge():
    """Multi-key patch merged into the config."""
    print("=" * 70)
    print("  §2  MERGE — config patch")
    print("=" * 70)
    print()

    engine = Engine(warn=lambda message: None)
    repeat = 2000

    cow = _timed(lambda: engine.merge(CONFIG, PATCH), repeat)

    def deep_merge():
        result = copy.deepcopy(CONFIG)
        stack = [(result, PATCH)]
        while stack:
            target, source = stack.pop()
            items = enumerate(source) if isinstance(source, list) else source.items()
            for key, value in items:
                if isinstance(value, (dict, list)):
                    stack.append((target[key], value))
                else:
                    target[key] = value
        return result

    deep = _timed(deep_merge, repeat)
    assert engine.merge(CONFIG, PATCH) == deep_merge()

    print(f"  cowtree.merge:        {cow*1e6:>8.2f}µs")
    print(f"  deepcopy + merge:     {deep*1e6:>8.2f}µs")
    print()


def benchmark_batch():
    """N writes: chained sets vs one batch."""
    print("=" * 70)
    print("  §3  BATCH — N writes into one record")
    print("=" * 70)
    print()

    clones = [0]

    def count(original, cloned):
        clones[0] += 1

    engine = Engine(warn=lambda message: None, on_clone=count)
    tree = make_wide(200)

    for n in [1, 5, 20, 50]:
        paths = [f"rows___{i % 10}___name" for i in range(n)]

        def sequential():
            result = tree
            for path in paths:
                result = engine.set(result, path, "x")
            return result

        def batched():
            batch = engine.chain(tree)
            for path in paths:
                batch.set(path, "x")
            return batch.value()

        clones[0] = 0
        sequential()
        seq_clones = clones[0]
        clones[0] = 0
        batched()
        batch_clones = clones[0]

        seq_time = _timed(sequential, 200)
        batch_time = _timed(batched, 200)
        print(f"  {n:>3} writes:  sequential {seq_time*1e6:>9.2f}µs ({seq_clones:>3} clones)"
              f"   batch {batch_time*1e6:>9.2f}µs ({batch_clones:>3} clones)")

    print()


def benchmark_shape_cache():
    """Cloner reuse across same-shaped records."""
    print("=" * 70)
    print("  §4  SHAPE CACHE")
    print("=" * 70)
    print()

    shapes = ShapeCache()
    engine = Engine(shapes=shapes)
    tree = make_wide(500)
    for i in range(500):
        tree = engine.set(tree, ("rows", i, "name"), f"renamed{i}")

    print(f"  Distinct shapes:      {len(shapes)}")
    print(f"  Cloner hits:          {shapes.hits}")
    print(f"  Cloner misses:        {shapes.misses}")
    print()


def benchmark_scaling():
    """Update cost vs tree size and depth."""
    print("=" * 70)
    print("  §5  SCALING")
    print("=" * 70)
    print()

    engine = Engine()

    for n in [10, 100, 1000, 5000]:
        tree = make_wide(n)
        cow = _timed(lambda: engine.set(tree, "meta___count", 0), 200)
        deep = _timed(lambda: _deepcopy_set(tree, ("meta", "count"), 0), 5)
        print(f"  Width {n:>5}:  cowtree {cow*1e6:>9.2f}µs   deepcopy {deep*1e6:>11.2f}µs")

    print()

    for depth in [5, 20, 100]:
        tree = make_deep(depth)
        path = ("child",) * depth + ("leaf",)
        cow = _timed(lambda: engine.set(tree, path, 1), 200)
        print(f"  Depth {depth:>5}:  cowtree {cow*1e6:>9.2f}µs")

    print()


def benchmark_vs_pyrsistent():
    """Compare with pyrsistent (if available)."""
    print("=" * 70)
    print("  §6  COMPARISON WITH PERSISTENT STRUCTURES")
    print("=" * 70)
    print()

    pyrsistent = _try_import("pyrsistent")
    engine = Engine()
    repeat = 2000

    cow = _timed(lambda: engine.set(CONFIG, "server___port", 8080), repeat)
    print(f"  cowtree (plain dicts):  {cow*1e6:>8.2f}µs")

    if pyrsistent:
        frozen = pyrsistent.freeze(CONFIG)
        pyr = _timed(lambda: frozen.transform(["server", "port"], 8080), repeat)
        print(f"  pyrsistent (PMap):      {pyr*1e6:>8.2f}µs")
        print("    Input/output types:   PMap / PVector, not dict / list")
    else:
        print("  pyrsistent:             NOT INSTALLED (pip install pyrsistent)")
    print()


def main():
    print()
    print("╔══════════════════════════════════════════════════════════════════════╗")
    print("║          COPY-ON-WRITE UPDATES — BENCHMARK SUITE                     ║")
    print("║          cowtree v0.1.0                                              ║")
    print("╚══════════════════════════════════════════════════════════════════════╝")
    print()

    benchmark_single_set()
    benchmark_merge()
    benchmark_batch()
    benchmark_shape_cache()
    benchmark_scaling()
    benchmark_vs_pyrsistent()

    print("=" * 70)
    print("  SUMMARY")
    print("=" * 70)
    print()
    print("  cowtree keeps plain dicts and lists while giving every update:")
    print("    1. An untouched input")
    print("    2. A new root, with unchanged subtrees shared by reference")
    print("    3. One clone per touched container, even across a batch")
    print()


if __name__ == "__main__":
    main()
