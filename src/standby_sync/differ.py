"""
Change classification between two scans of the same range.
"""

from collections import Counter, defaultdict
from collections.abc import Mapping

from .models import ChangeSet


def diff(source: Mapping[str, str], target: Mapping[str, str]) -> ChangeSet:
    """
    Classify keys of two fingerprint maps.

    Args:
        source: Rendered key -> digest on the main database
        target: Rendered key -> digest on the standby database

    Returns:
        ChangeSet with source-only keys to insert, keys whose digests
        differ to update and target-only keys to delete. Keys with equal
        digests appear in no set.
    """
    changes = ChangeSet()

    for key, digest in source.items():
        other = target.get(key)
        if other is None:
            changes.insert.add(key)
        elif other != digest:
            changes.update.add(key)

    for key in target:
        if key not in source:
            changes.delete.add(key)

    return changes


def diff_multiset(
    source: Mapping[str, str],
    target: Mapping[str, str],
) -> tuple[list[str], list[str]]:
    """
    Match rows of keyless tables by content.

    Keys are physical row ids, which mean nothing across databases, so
    rows are matched by digest with multiplicity. Identical rows cancel
    out one for one.

    Returns:
        (source row ids whose copies are missing on the target,
         target row ids with no remaining source counterpart)
    """
    source_by_digest: dict[str, list[str]] = defaultdict(list)
    for key, digest in source.items():
        source_by_digest[digest].append(key)

    target_by_digest: dict[str, list[str]] = defaultdict(list)
    for key, digest in target.items():
        target_by_digest[digest].append(key)

    source_counts = Counter({d: len(keys) for d, keys in source_by_digest.items()})
    target_counts = Counter({d: len(keys) for d, keys in target_by_digest.items()})

    insert_keys: list[str] = []
    for digest, surplus in (source_counts - target_counts).items():
        insert_keys.extend(sorted(source_by_digest[digest])[:surplus])

    delete_keys: list[str] = []
    for digest, surplus in (target_counts - source_counts).items():
        delete_keys.extend(sorted(target_by_digest[digest])[:surplus])

    return sorted(insert_keys), sorted(delete_keys)
