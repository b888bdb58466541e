"""
Source adapters: turn a serialized binding list or a live cluster listing into
ScopedBinding / GlobalBinding objects.

File documents are Kubernetes `List` objects (or `RoleBindingList` /
`ClusterRoleBindingList`) as returned by the API server, in JSON or YAML:

  {"apiVersion": "v1", "kind": "List", "items": [{"kind": "RoleBinding", ...}]}

The two file channels (rolebindings / clusterrolebindings) are decoded
independently; a failure on one does not prevent the other from being read.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from rbacdedup.bindings import Binding, BindingKind, GlobalBinding, ScopedBinding, Subject
from rbacdedup.errors import (
    DecodeError,
    DedupError,
    InputError,
    ItemDecodeError,
    UnsupportedKindError,
)

logger = logging.getLogger("dedup.sources")

ROLE_BINDING = "RoleBinding"
CLUSTER_ROLE_BINDING = "ClusterRoleBinding"
LIST_KINDS = {"List", "RoleBindingList", "ClusterRoleBindingList"}
# items of a typed list carry no kind of their own
LIST_ITEM_KINDS = {"RoleBindingList": ROLE_BINDING, "ClusterRoleBindingList": CLUSTER_ROLE_BINDING}


@dataclass
class ItemPolicy:
    """What to do with bad items inside an otherwise valid list.

    skip_malformed_items: log and skip items that fail to decode (else fatal).
    strict_kinds: items of an unsupported kind abort the run (else skipped).
    """
    skip_malformed_items: bool = True
    strict_kinds: bool = True


@dataclass
class ChannelResult:
    """Bindings read from one input channel, or the error that stopped it."""
    channel: str
    bindings: List[Binding] = field(default_factory=list)
    skipped: int = 0
    error: Optional[DedupError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _parse_document(text: str, source: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DecodeError(source, f"not valid JSON or YAML: {e}")


def _subjects(raw: Any, position: int, name: str) -> Tuple[Subject, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ItemDecodeError(position, "subjects is not a list", name)
    subjects: List[Subject] = []
    for s in raw:
        if not isinstance(s, dict) or not s.get("name"):
            raise ItemDecodeError(position, "subject without a name", name)
        subjects.append(Subject(name=str(s["name"]), kind=str(s.get("kind") or "User")))
    return tuple(subjects)


def decode_item(item: Any, position: int = 0, default_kind: Optional[str] = None) -> Binding:
    """Decode one list item into a binding.

    `default_kind` is used when the item carries no `kind` field, which is the
    case for items of a typed list returned by the API server.
    """
    if not isinstance(item, dict):
        raise ItemDecodeError(position, f"expected an object, got {type(item).__name__}")

    kind = item.get("kind") or default_kind
    if kind not in (ROLE_BINDING, CLUSTER_ROLE_BINDING):
        raise UnsupportedKindError(str(kind))

    metadata = item.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise ItemDecodeError(position, "missing metadata.name")
    name = str(metadata["name"])

    role_ref = item.get("roleRef")
    if not isinstance(role_ref, dict) or not role_ref.get("name"):
        raise ItemDecodeError(position, "missing roleRef.name", name)
    role = str(role_ref["name"])

    subjects = _subjects(item.get("subjects"), position, name)

    if kind == ROLE_BINDING:
        namespace = metadata.get("namespace")
        if not namespace:
            raise ItemDecodeError(position, "RoleBinding without metadata.namespace", name)
        return ScopedBinding(name=name, namespace=str(namespace), role=role, subjects=subjects)
    return GlobalBinding(name=name, role=role, subjects=subjects)


def decode_items(
    items: Iterable[Any],
    policy: ItemPolicy,
    source: str,
    default_kind: Optional[str] = None,
) -> Tuple[List[Binding], int]:
    """Decode list items, applying `policy` to bad ones. Returns (bindings, skipped)."""
    bindings: List[Binding] = []
    skipped = 0
    for position, item in enumerate(items):
        try:
            bindings.append(decode_item(item, position, default_kind))
        except UnsupportedKindError as e:
            if policy.strict_kinds:
                raise
            logger.warning(f"{source}: skipping item {position}: {e}")
            skipped += 1
        except ItemDecodeError as e:
            if not policy.skip_malformed_items:
                raise DecodeError(source, str(e))
            logger.warning(f"{source}: skipping {e}")
            skipped += 1
    logger.debug(f"{source}: decoded {len(bindings)} bindings, skipped {skipped}")
    return bindings, skipped


def decode_list(text: str, source: str, policy: Optional[ItemPolicy] = None) -> Tuple[List[Binding], int]:
    policy = policy or ItemPolicy()
    doc = _parse_document(text, source)
    if not isinstance(doc, dict):
        raise DecodeError(source, "top level is not an object")
    if doc.get("kind") not in LIST_KINDS:
        raise DecodeError(source, f"expected a List document, got kind {doc.get('kind')!r}")
    items = doc.get("items") or []
    if not isinstance(items, list):
        raise DecodeError(source, "items is not a list")
    logger.debug(f"{source}: list has {len(items)} items")
    return decode_items(items, policy, source, LIST_ITEM_KINDS.get(doc["kind"]))


def read_file(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InputError(path, e)


def partition_by_kind(bindings: Iterable[Binding]) -> Dict[BindingKind, List[Binding]]:
    parts: Dict[BindingKind, List[Binding]] = {kind: [] for kind in BindingKind}
    for b in bindings:
        parts[b.kind].append(b)
    return parts


class FileSource:
    """Reads bindings from serialized list documents on disk."""

    def __init__(
        self,
        rolebindings_path: Optional[str] = None,
        clusterrolebindings_path: Optional[str] = None,
        policy: Optional[ItemPolicy] = None,
    ):
        self.paths = {
            BindingKind.ROLE_BINDINGS: rolebindings_path,
            BindingKind.CLUSTER_ROLE_BINDINGS: clusterrolebindings_path,
        }
        self.policy = policy or ItemPolicy()

    def load_channel(self, path: str) -> ChannelResult:
        result = ChannelResult(channel=path)
        try:
            bindings, skipped = decode_list(read_file(path), path, self.policy)
        except (InputError, DecodeError, UnsupportedKindError) as e:
            logger.error(str(e))
            result.error = e
            return result
        result.bindings = bindings
        result.skipped = skipped
        return result

    def load(self) -> List[ChannelResult]:
        return [self.load_channel(p) for p in self.paths.values() if p]


class ClusterSource:
    """Lists bindings from the live cluster through a KubeRbacClient."""

    def __init__(self, rbac_client, policy: Optional[ItemPolicy] = None):
        self.client = rbac_client
        self.policy = policy or ItemPolicy()

    def load(self) -> List[ChannelResult]:
        # listing errors are fatal, so they propagate instead of being collected
        results = []
        for channel, list_fn, default_kind in (
            ("cluster:rolebindings", self.client.list_role_bindings, ROLE_BINDING),
            ("cluster:clusterrolebindings", self.client.list_cluster_role_bindings, CLUSTER_ROLE_BINDING),
        ):
            bindings, skipped = decode_items(list_fn(), self.policy, channel, default_kind)
            results.append(ChannelResult(channel=channel, bindings=bindings, skipped=skipped))
        return results


def select_source(
    rolebindings_path: Optional[str],
    clusterrolebindings_path: Optional[str],
    client_factory,
    policy: Optional[ItemPolicy] = None,
):
    """File source when any input path is given, otherwise the cluster source.

    `client_factory` is only called in cluster mode.
    """
    if rolebindings_path or clusterrolebindings_path:
        return FileSource(rolebindings_path, clusterrolebindings_path, policy)
    return ClusterSource(client_factory(), policy)
