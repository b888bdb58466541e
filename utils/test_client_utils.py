"""
Tests for KubeRbacClient pagination, retries and deletes against a fake
RbacAuthorizationV1Api. No cluster is contacted.
"""

from types import SimpleNamespace

import pytest
from kubernetes.client.rest import ApiException

from rbacdedup.errors import ConnectivityError
from utils.client_utils import KubeRbacClient


def page(items, token=None):
    return SimpleNamespace(items=items, metadata=SimpleNamespace(_continue=token))


class FakeRbacApi:
    def __init__(self, pages=None, failures=None):
        self.pages = list(pages or [])
        self.failures = list(failures or [])
        self.list_calls = []
        self.deleted = []
        self.api_client = SimpleNamespace(sanitize_for_serialization=lambda obj: {"converted": obj})

    def _list(self, **kwargs):
        self.list_calls.append(kwargs)
        if self.failures:
            raise self.failures.pop(0)
        return self.pages.pop(0)

    def list_role_binding_for_all_namespaces(self, **kwargs):
        return self._list(**kwargs)

    def list_cluster_role_binding(self, **kwargs):
        return self._list(**kwargs)

    def delete_namespaced_role_binding(self, name, namespace, **kwargs):
        self.deleted.append((namespace, name))

    def delete_cluster_role_binding(self, name, **kwargs):
        self.deleted.append(("", name))


def make_client(api, **kwargs):
    sleeps = []
    client = KubeRbacClient(api, page_size=2, sleep=sleeps.append, **kwargs)
    return client, sleeps


def test_pagination_follows_continue_token():
    api = FakeRbacApi(pages=[page([{"a": 1}, {"b": 2}], token="t1"), page([{"c": 3}])])
    client, _ = make_client(api)
    items = list(client.list_role_bindings())
    assert items == [{"a": 1}, {"b": 2}, {"c": 3}]
    assert [c.get("_continue") for c in api.list_calls] == [None, "t1"]
    assert all(c["limit"] == 2 for c in api.list_calls)


def test_typed_items_are_serialized():
    api = FakeRbacApi(pages=[page(["typed"])])
    client, _ = make_client(api)
    assert list(client.list_cluster_role_bindings()) == [{"converted": "typed"}]


def test_transient_errors_are_retried_with_backoff():
    api = FakeRbacApi(
        pages=[page([{"a": 1}])],
        failures=[ApiException(status=503, reason="unavailable"), ApiException(status=429, reason="slow down")],
    )
    client, sleeps = make_client(api, max_retries=3, base_delay=1.0, backoff_factor=2.0)
    assert list(client.list_role_bindings()) == [{"a": 1}]
    assert sleeps == [1.0, 2.0]


def test_retries_exhausted():
    api = FakeRbacApi(failures=[ApiException(status=500, reason="boom")] * 3)
    client, sleeps = make_client(api, max_retries=3)
    with pytest.raises(ConnectivityError):
        list(client.list_role_bindings())
    assert len(api.list_calls) == 3
    assert len(sleeps) == 2


def test_zero_retries_still_calls_once():
    api = FakeRbacApi(pages=[page([{"a": 1}])])
    client, _ = make_client(api, max_retries=0)
    assert list(client.list_role_bindings()) == [{"a": 1}]

    api = FakeRbacApi(failures=[ApiException(status=500, reason="boom")])
    client, sleeps = make_client(api, max_retries=0)
    with pytest.raises(ConnectivityError) as exc:
        list(client.list_role_bindings())
    assert "boom" in str(exc.value)
    assert len(api.list_calls) == 1
    assert sleeps == []


def test_forbidden_is_not_retried():
    api = FakeRbacApi(failures=[ApiException(status=403, reason="Forbidden")])
    client, sleeps = make_client(api)
    with pytest.raises(ConnectivityError):
        list(client.list_cluster_role_bindings())
    assert len(api.list_calls) == 1
    assert sleeps == []


def test_deletes():
    api = FakeRbacApi()
    client, _ = make_client(api)
    client.delete_role_binding("ns", "a")
    client.delete_cluster_role_binding("b")
    assert api.deleted == [("ns", "a"), ("", "b")]
