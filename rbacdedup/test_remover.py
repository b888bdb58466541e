import threading

from rbacdedup.bindings import BindingKind
from rbacdedup.errors import RemovalError
from rbacdedup.index import DuplicateIndex
from rbacdedup.remover import RemovalStatus, Remover, first_error, plan_removals, summarize

RB = BindingKind.ROLE_BINDINGS
CRB = BindingKind.CLUSTER_ROLE_BINDINGS


class FakeRbacClient:
    def __init__(self, fail_on=(), on_delete=None):
        self.fail_on = set(fail_on)
        self.on_delete = on_delete
        self.deleted = []

    def _record(self, identity):
        if identity in self.fail_on:
            raise RuntimeError(f"forbidden: {identity}")
        self.deleted.append(identity)
        if self.on_delete:
            self.on_delete(identity)

    def delete_role_binding(self, namespace, name):
        self._record(f"{namespace}/{name}")

    def delete_cluster_role_binding(self, name):
        self._record(f"/{name}")


def test_survivor_is_kept():
    client = FakeRbacClient()
    dupes = DuplicateIndex(RB, {"alice/view/ns": ["ns/a", "ns/b"]})
    outcomes = Remover(client).remove(dupes, RB)
    assert client.deleted == ["ns/b"]
    assert [o.status for o in outcomes] == [RemovalStatus.REMOVED]


def test_group_of_n_issues_n_minus_one_deletes():
    client = FakeRbacClient()
    ids = [f"ns/b{i}" for i in range(5)]
    Remover(client).remove(DuplicateIndex(RB, {"k": ids}))
    assert client.deleted == ids[1:]


def test_cluster_bindings_deleted_by_name():
    client = FakeRbacClient()
    Remover(client).remove(DuplicateIndex(CRB, {"alice/admin": ["/one", "/two"]}), CRB)
    assert client.deleted == ["/two"]


def test_shared_survivor_is_never_deleted():
    dupes = DuplicateIndex(RB, {
        "alice/view/ns": ["ns/a", "ns/shared"],
        "bob/view/ns": ["ns/shared", "ns/b"],
    })
    plans = plan_removals(dupes)
    assert [p.victims for p in plans] == [(), ("ns/b",)]

    client = FakeRbacClient()
    Remover(client).remove(dupes)
    assert client.deleted == ["ns/b"]


def test_victim_in_two_groups_deleted_once():
    dupes = DuplicateIndex(RB, {
        "alice/view/ns": ["ns/a", "ns/shared"],
        "bob/view/ns": ["ns/b", "ns/shared"],
    })
    client = FakeRbacClient()
    Remover(client).remove(dupes)
    assert client.deleted == ["ns/shared"]


def test_fail_fast_halts():
    client = FakeRbacClient(fail_on={"ns/b"})
    dupes = DuplicateIndex(RB, {"k1": ["ns/a", "ns/b", "ns/c"], "k2": ["ns/d", "ns/e"]})
    outcomes = Remover(client, fail_fast=True).remove(dupes)
    assert client.deleted == []
    assert [o.status for o in outcomes] == [RemovalStatus.FAILED, RemovalStatus.SKIPPED, RemovalStatus.SKIPPED]
    err = first_error(outcomes)
    assert isinstance(err, RemovalError)
    assert err.identity == "ns/b"


def test_best_effort_collects_all_outcomes():
    client = FakeRbacClient(fail_on={"ns/b"})
    dupes = DuplicateIndex(RB, {"k1": ["ns/a", "ns/b", "ns/c"], "k2": ["ns/d", "ns/e"]})
    outcomes = Remover(client, fail_fast=False).remove(dupes)
    assert client.deleted == ["ns/c", "ns/e"]
    assert summarize(outcomes) == {"removed": 2, "failed": 1, "cancelled": 0, "skipped": 0}


def test_cancel_leaves_issued_deletes():
    cancel = threading.Event()
    client = FakeRbacClient(on_delete=lambda identity: cancel.set())
    dupes = DuplicateIndex(RB, {"k": ["ns/a", "ns/b", "ns/c", "ns/d"]})
    outcomes = Remover(client, cancel_event=cancel).remove(dupes)
    assert client.deleted == ["ns/b"]
    assert [o.status for o in outcomes] == [
        RemovalStatus.REMOVED,
        RemovalStatus.CANCELLED,
        RemovalStatus.CANCELLED,
    ]


def test_empty_index_is_a_noop():
    client = FakeRbacClient()
    assert Remover(client).remove(DuplicateIndex(RB)) == []
    assert first_error([]) is None
