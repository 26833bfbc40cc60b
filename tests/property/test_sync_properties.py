"""
Property-based tests for the sync core using Hypothesis.

Tests invariants that should hold for all inputs:
- Key ranges partition [lo, hi] exactly
- The differ's sets are disjoint and reconcile target with source
- Field framing is injective
- Keyless multiset matching preserves row multiplicity
"""

from collections import Counter

from hypothesis import given, settings
from hypothesis import strategies as st

from standby_sync.differ import diff, diff_multiset
from standby_sync.fingerprint import frame, render_key, render_value, row_digest
from standby_sync.strategies import chunk_intervals

field_values = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-10**12, max_value=10**12),
    st.text(max_size=20),
    st.binary(max_size=8),
)
fingerprints = st.dictionaries(
    keys=st.integers(min_value=0, max_value=200).map(str),
    values=st.sampled_from(["d0", "d1", "d2", "d3"]),
    max_size=60,
)


# Property: chunk intervals cover the key range with no gap or overlap
@given(
    lo=st.integers(min_value=-10**6, max_value=10**6),
    span=st.integers(min_value=0, max_value=5000),
    size=st.integers(min_value=1, max_value=700),
)
def test_chunk_intervals_partition_range(lo: int, span: int, size: int):
    """Intervals are consecutive, bounded by size and end at hi."""
    hi = lo + span
    intervals = list(chunk_intervals(lo, hi, size))

    assert intervals[0][0] == lo
    assert intervals[-1][1] == hi
    for (a_lo, a_hi), (b_lo, _) in zip(intervals, intervals[1:]):
        assert b_lo == a_hi + 1
    assert all(0 < end - start + 1 <= size for start, end in intervals)
    assert sum(end - start + 1 for start, end in intervals) == span + 1


# Property: applying the change set to the target yields the source
@given(source=fingerprints, target=fingerprints)
def test_diff_converges_target_to_source(source: dict, target: dict):
    """Upserting insert/update keys and deleting delete keys reproduces source."""
    changes = diff(source, target)

    assert not changes.insert & changes.update
    assert not changes.insert & changes.delete
    assert not changes.update & changes.delete

    patched = {k: v for k, v in target.items() if k not in changes.delete}
    for key in changes.insert | changes.update:
        patched[key] = source[key]
    assert patched == source

    assert diff(source, patched).is_empty


# Property: diffing a map with itself never produces work
@given(data=fingerprints)
def test_diff_identity(data: dict):
    assert diff(data, dict(data)).is_empty


# Property: framing is injective on field sequences
@given(
    a=st.lists(field_values, max_size=5),
    b=st.lists(field_values, max_size=5),
)
def test_frame_injective(a: list, b: list):
    """Different rendered rows never frame to the same text."""
    if [render_value(v) for v in a] != [render_value(v) for v in b]:
        assert frame(a) != frame(b)
    else:
        assert frame(a) == frame(b)


# Property: digests are deterministic
@given(row=st.lists(field_values, max_size=8))
def test_row_digest_deterministic(row: list):
    assert row_digest(row) == row_digest(list(row))


# Property: composite keys with different values render differently
@given(
    a=st.tuples(st.integers(), st.text(max_size=10)),
    b=st.tuples(st.integers(), st.text(max_size=10)),
)
def test_composite_key_rendering_injective(a: tuple, b: tuple):
    if a != b:
        assert render_key(a) != render_key(b)


# Property: keyless matching reconciles row multiplicities
@settings(max_examples=200)
@given(
    source_rows=st.lists(st.sampled_from(["a", "b", "c"]), max_size=15),
    target_rows=st.lists(st.sampled_from(["a", "b", "c"]), max_size=15),
)
def test_diff_multiset_reconciles_counts(source_rows: list, target_rows: list):
    """After deletes and inserts the target holds the source's multiset."""
    source = {f"s{i}": d for i, d in enumerate(source_rows)}
    target = {f"t{i}": d for i, d in enumerate(target_rows)}

    insert_keys, delete_keys = diff_multiset(source, target)

    remaining = Counter(d for k, d in target.items() if k not in set(delete_keys))
    remaining.update(source[k] for k in insert_keys)
    assert remaining == Counter(source_rows)
    assert len(set(insert_keys)) == len(insert_keys)
    assert set(delete_keys) <= set(target)
