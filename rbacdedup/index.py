"""
Duplicate index: canonical key -> ordered binding identities.

Insertion order follows the source collection and decides the survivor on
removal (the first identity of each group is retained).
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from rbacdedup.bindings import Binding, BindingKind, derive_keys
from rbacdedup.noise import NoiseFilter

logger = logging.getLogger("dedup.index")


class DuplicateIndex(Mapping[str, Tuple[str, ...]]):
    """Read-only mapping of canonical key to the identities sharing it."""

    def __init__(self, kind: BindingKind, entries: Optional[Mapping[str, Iterable[str]]] = None):
        self.kind = kind
        self._entries: Dict[str, Tuple[str, ...]] = {
            k: tuple(v) for k, v in (entries or {}).items()
        }

    def __getitem__(self, key: str) -> Tuple[str, ...]:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"DuplicateIndex({self.kind.value}, {self._entries!r})"

    def groups(self) -> List[Tuple[str, Tuple[str, ...]]]:
        return list(self._entries.items())

    def excess_count(self) -> int:
        """Bindings beyond the first in each group, i.e. deletion candidates."""
        return sum(len(ids) - 1 for ids in self._entries.values() if len(ids) > 1)

    def to_dict(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self._entries.items()}


class DuplicateIndexBuilder:
    def __init__(self, kind: BindingKind, noise_filter: Optional[NoiseFilter] = None):
        self.kind = kind
        self.noise_filter = noise_filter or NoiseFilter()
        self._entries: Dict[str, List[str]] = {}
        self._recorded = 0
        self._noise = 0

    def record(self, key: str, identity: str) -> None:
        self._entries.setdefault(key, []).append(identity)
        self._recorded += 1

    def add(self, binding: Binding) -> List[str]:
        """Derive the keys of `binding`, drop noise keys, record the rest.

        Returns the keys that were recorded.
        """
        recorded: List[str] = []
        for key in derive_keys(binding):
            if self.noise_filter.is_noise(key, self.kind):
                self._noise += 1
                continue
            self.record(key, binding.identity)
            recorded.append(key)
        return recorded

    def finalize(self) -> DuplicateIndex:
        logger.debug(
            f"{self.kind.value}: {self._recorded} entries under {len(self._entries)} keys, "
            f"{self._noise} noise keys dropped"
        )
        return DuplicateIndex(self.kind, self._entries)


def build_index(
    bindings: Iterable[Binding],
    kind: BindingKind,
    noise_filter: Optional[NoiseFilter] = None,
) -> DuplicateIndex:
    builder = DuplicateIndexBuilder(kind, noise_filter)
    for binding in bindings:
        builder.add(binding)
    return builder.finalize()


def select_duplicates(index: DuplicateIndex) -> DuplicateIndex:
    return DuplicateIndex(index.kind, {k: v for k, v in index.items() if len(v) > 1})
