"""Candidate grouping of near-duplicate records.

Items are visited in input order and each item joins at most one group:
once an item has been claimed as a master or a candidate it is skipped, so
the outcome depends on the order of the input.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from partnermap.services.similarity import similarity

T = TypeVar("T")
K = TypeVar("K")

DEFAULT_THRESHOLD = 0.7


@dataclass
class CandidateGroup(Generic[T]):
    """A master item and the items similar enough to be merged into it."""

    master: T
    candidates: list[T] = field(default_factory=list)
    scores: list[float] = field(default_factory=list)

    @property
    def members(self) -> list[T]:
        return [self.master, *self.candidates]

    @property
    def mean_score(self) -> float:
        return sum(self.scores) / len(self.scores) if self.scores else 0.0


def group_similar(
    items: Sequence[T],
    name_of: Callable[[T], str],
    threshold: float = DEFAULT_THRESHOLD,
    scorer: Callable[[str, str], float] = similarity,
) -> list[CandidateGroup[T]]:
    """Partition items into merge groups.

    An item is a candidate of the current master when its score is strictly
    greater than ``threshold``. Items with no candidates are singletons and
    are not returned.
    """
    processed: set[int] = set()
    groups: list[CandidateGroup[T]] = []

    for i, item in enumerate(items):
        if i in processed:
            continue

        master_name = name_of(item)
        group = CandidateGroup(master=item)
        claimed: list[int] = []

        for j in range(len(items)):
            if j == i or j in processed:
                continue
            score = scorer(master_name, name_of(items[j]))
            if score > threshold:
                group.candidates.append(items[j])
                group.scores.append(score)
                claimed.append(j)

        if not claimed:
            continue

        processed.add(i)
        processed.update(claimed)
        groups.append(group)

    return groups


def group_by_key(
    items: Sequence[T],
    key_of: Callable[[T], K],
    name_of: Callable[[T], str],
    threshold: float = DEFAULT_THRESHOLD,
    scorer: Callable[[str, str], float] = similarity,
) -> list[CandidateGroup[T]]:
    """Group items independently within each partition of ``key_of``.

    Partitions are visited in order of first appearance.
    """
    partitions: dict[K, list[T]] = {}
    for item in items:
        partitions.setdefault(key_of(item), []).append(item)

    groups: list[CandidateGroup[T]] = []
    for members in partitions.values():
        groups.extend(group_similar(members, name_of, threshold, scorer))
    return groups
