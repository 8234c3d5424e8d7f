"""
Merkle root aggregation over ordered audit event digests.
"""

from typing import Any, Iterable, List, Sequence

from audit_anchor.utils.hashing import hash_event, hash_pair


def build_root_from_digests(digests: Sequence[str]) -> str:
    """
    Reduce an ordered list of digests to a single merkle root.

    Pairs are combined left to right. On a level with an odd count the last
    digest is promoted to the next level unchanged.

    Raises:
        ValueError: if digests is empty
    """
    if not digests:
        raise ValueError("Cannot build a merkle root from zero digests")

    level: List[str] = list(digests)
    while len(level) > 1:
        next_level = [hash_pair(level[i], level[i + 1]) for i in range(0, len(level) - 1, 2)]
        if len(level) % 2 == 1:
            next_level.append(level[-1])
        level = next_level

    return level[0]


def build_root(events: Iterable[Any]) -> str:
    """Merkle root over audit events, in the given order."""
    return build_root_from_digests([hash_event(event) for event in events])
