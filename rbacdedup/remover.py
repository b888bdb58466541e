"""
Remove redundant bindings, keeping the first identity of every duplicate group.

Survivors are fixed by `plan_removals` before any delete is issued. Deletes
are sequential and not transactional: a failure or cancellation leaves the
deletes already issued in place.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set, Tuple

from rbacdedup.bindings import BindingKind, split_identity
from rbacdedup.errors import RemovalError
from rbacdedup.index import DuplicateIndex

logger = logging.getLogger("dedup.remover")


class RemovalStatus(Enum):
    REMOVED = "removed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RemovalPlan:
    key: str
    survivor: str
    victims: Tuple[str, ...]


@dataclass
class RemovalOutcome:
    kind: BindingKind
    key: str
    identity: str
    status: RemovalStatus
    error: Optional[Exception] = None


def plan_removals(dupes: DuplicateIndex) -> List[RemovalPlan]:
    """Decide the survivor and victims of every group.

    A multi-subject binding can sit in several groups. It is never deleted if
    it survives in any of them, and it is planned for deletion only once.
    """
    survivors: Set[str] = {ids[0] for ids in dupes.values() if ids}
    planned: Set[str] = set()
    plans: List[RemovalPlan] = []
    for key, ids in dupes.items():
        if len(ids) < 2:
            continue
        victims: List[str] = []
        for identity in ids[1:]:
            if identity in survivors:
                logger.info(f"{key}: keeping {identity}, it is the survivor of another group")
                continue
            if identity in planned or identity in victims:
                continue
            victims.append(identity)
        planned.update(victims)
        plans.append(RemovalPlan(key=key, survivor=ids[0], victims=tuple(victims)))
    return plans


class Remover:
    """Deletes the victims of each duplicate group through a KubeRbacClient.

    fail_fast: stop at the first failed delete and report the rest as skipped.
    Otherwise every delete is attempted and every outcome is returned.
    cancel_event: once set, the remaining deletes are reported as cancelled.
    """

    def __init__(self, rbac_client, fail_fast: bool = True, cancel_event: Optional[threading.Event] = None):
        self.client = rbac_client
        self.fail_fast = fail_fast
        self.cancel_event = cancel_event or threading.Event()

    def _delete(self, kind: BindingKind, identity: str) -> None:
        namespace, name = split_identity(identity)
        if kind is BindingKind.ROLE_BINDINGS:
            logger.debug(f"removing rb: {namespace}/{name}")
            self.client.delete_role_binding(namespace, name)
        else:
            logger.debug(f"removing crb: {name}")
            self.client.delete_cluster_role_binding(name)

    def remove(self, dupes: DuplicateIndex, kind: Optional[BindingKind] = None) -> List[RemovalOutcome]:
        kind = kind or dupes.kind
        outcomes: List[RemovalOutcome] = []
        halted = False
        for plan in plan_removals(dupes):
            logger.debug(f"processing dupes for {plan.key}, keeping {plan.survivor}")
            for identity in plan.victims:
                if halted:
                    outcomes.append(RemovalOutcome(kind, plan.key, identity, RemovalStatus.SKIPPED))
                    continue
                if self.cancel_event.is_set():
                    outcomes.append(RemovalOutcome(kind, plan.key, identity, RemovalStatus.CANCELLED))
                    continue
                try:
                    self._delete(kind, identity)
                except Exception as e:
                    logger.error(f"could not remove {kind.value} {identity}: {e}")
                    outcomes.append(
                        RemovalOutcome(kind, plan.key, identity, RemovalStatus.FAILED, RemovalError(identity, e))
                    )
                    if self.fail_fast:
                        halted = True
                    continue
                outcomes.append(RemovalOutcome(kind, plan.key, identity, RemovalStatus.REMOVED))
        return outcomes


def first_error(outcomes: List[RemovalOutcome]) -> Optional[Exception]:
    for o in outcomes:
        if o.status is RemovalStatus.FAILED:
            return o.error
    return None


def summarize(outcomes: List[RemovalOutcome]) -> dict:
    counts = {status.value: 0 for status in RemovalStatus}
    for o in outcomes:
        counts[o.status.value] += 1
    return counts
