"""
Noise filter for auto-provisioned bindings.

The project/cluster membership controller creates one binding per
project-role per user, so their keys legitimately recur. Those keys are
dropped before indexing. Matching is by substring on the derived key because
the suffixes are appended to generated role names.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from rbacdedup.bindings import BindingKind

logger = logging.getLogger("dedup.noise")

DEFAULT_NOISE_PATTERNS: Tuple[str, ...] = (
    "-projectmember",
    "-projectowner",
    "-clustermember",
    "-clusterowner",
)

# Scope each default pattern nominally belongs to. The default set applies all
# four patterns to both kinds; matches outside the nominal scope are logged.
NOMINAL_SCOPE: Dict[str, BindingKind] = {
    "-projectmember": BindingKind.ROLE_BINDINGS,
    "-projectowner": BindingKind.ROLE_BINDINGS,
    "-clustermember": BindingKind.CLUSTER_ROLE_BINDINGS,
    "-clusterowner": BindingKind.CLUSTER_ROLE_BINDINGS,
}


def is_noise(key: str, patterns: Iterable[str]) -> bool:
    return any(p in key for p in patterns)


def matching_pattern(key: str, patterns: Iterable[str]) -> Optional[str]:
    for p in patterns:
        if p in key:
            return p
    return None


class NoiseFilter:
    """Per-kind substring patterns that exclude keys from the duplicate index."""

    def __init__(self, patterns_by_kind: Optional[Mapping[BindingKind, Iterable[str]]] = None):
        self._patterns: Dict[BindingKind, Tuple[str, ...]] = {
            kind: DEFAULT_NOISE_PATTERNS for kind in BindingKind
        }
        if patterns_by_kind:
            for kind, patterns in patterns_by_kind.items():
                self._patterns[kind] = tuple(patterns)

    @classmethod
    def from_config(cls, noise_config: Optional[Mapping[str, Iterable[str]]]) -> "NoiseFilter":
        """Build from a `{"rolebindings": [...], "clusterrolebindings": [...]}` mapping.

        A kind that is missing or null keeps the default patterns; an explicit
        empty list disables filtering for that kind.
        """
        if not noise_config:
            return cls()
        by_kind: Dict[BindingKind, Iterable[str]] = {}
        for kind_name, patterns in noise_config.items():
            try:
                kind = BindingKind(kind_name)
            except ValueError:
                raise ValueError(f"unknown binding kind in noise_patterns: {kind_name}")
            if patterns is None:
                continue
            if isinstance(patterns, str) or not isinstance(patterns, (list, tuple)):
                raise ValueError(f"noise_patterns.{kind_name} must be a list of strings")
            by_kind[kind] = [str(p) for p in patterns]
        return cls(by_kind)

    def patterns(self, kind: BindingKind) -> Tuple[str, ...]:
        return self._patterns[kind]

    def is_noise(self, key: str, kind: BindingKind) -> bool:
        pattern = matching_pattern(key, self._patterns[kind])
        if pattern is None:
            return False
        nominal = NOMINAL_SCOPE.get(pattern)
        if nominal is not None and nominal is not kind:
            logger.info(
                f"key {key} excluded by pattern {pattern!r}, which nominally applies to "
                f"{nominal.value} only"
            )
        else:
            logger.debug(f"key {key} excluded by pattern {pattern!r}")
        return True
