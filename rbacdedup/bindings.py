"""
Binding model and canonical key derivation.

A binding grants a role to one or more subjects, either inside a namespace
(RoleBinding) or across the whole cluster (ClusterRoleBinding). Each
(subject, role, scope) tuple is one logical grant and maps to exactly one
canonical key:

  RoleBinding:         <subject>/<role>/<namespace>
  ClusterRoleBinding:  <subject>/<role>

Two bindings share a key if and only if they grant the same subject the same
role in the same scope.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple, Union

from rbacdedup.errors import UnsupportedKindError

logger = logging.getLogger("dedup.bindings")

KEY_SEPARATOR = "/"


class BindingKind(Enum):
    ROLE_BINDINGS = "rolebindings"
    CLUSTER_ROLE_BINDINGS = "clusterrolebindings"


@dataclass(frozen=True)
class Subject:
    name: str
    kind: str = "User"


@dataclass(frozen=True)
class ScopedBinding:
    """RoleBinding: grants `role` to `subjects` inside `namespace`."""
    name: str
    namespace: str
    role: str
    subjects: Tuple[Subject, ...] = field(default_factory=tuple)

    kind = BindingKind.ROLE_BINDINGS

    @property
    def identity(self) -> str:
        return KEY_SEPARATOR.join([self.namespace, self.name])

    def canonical_keys(self) -> List[str]:
        return [
            KEY_SEPARATOR.join([subj.name, self.role, self.namespace])
            for subj in self.subjects
        ]


@dataclass(frozen=True)
class GlobalBinding:
    """ClusterRoleBinding: grants `role` to `subjects` cluster-wide."""
    name: str
    role: str
    subjects: Tuple[Subject, ...] = field(default_factory=tuple)

    kind = BindingKind.CLUSTER_ROLE_BINDINGS

    @property
    def namespace(self) -> str:
        return ""

    @property
    def identity(self) -> str:
        # cluster-scoped objects carry an empty namespace component
        return KEY_SEPARATOR.join([self.namespace, self.name])

    def canonical_keys(self) -> List[str]:
        return [KEY_SEPARATOR.join([subj.name, self.role]) for subj in self.subjects]


Binding = Union[ScopedBinding, GlobalBinding]


def derive_keys(binding: Binding) -> List[str]:
    """Return one canonical key per subject of `binding`.

    A binding without subjects yields no keys. Anything that is neither a
    ScopedBinding nor a GlobalBinding raises UnsupportedKindError.
    """
    if not isinstance(binding, (ScopedBinding, GlobalBinding)):
        raise UnsupportedKindError(type(binding).__name__)

    keys = binding.canonical_keys()
    if len(keys) > 1:
        logger.debug(f"{binding.kind.value} {binding.identity} has {len(keys)} subjects")
    return keys


def split_identity(identity: str) -> Tuple[str, str]:
    """Split a `namespace/name` identity; the namespace is empty for cluster bindings."""
    namespace, sep, name = identity.partition(KEY_SEPARATOR)
    if not sep or not name:
        raise ValueError(f"malformed binding identity: {identity!r}")
    return namespace, name
