"""
Render duplicate groups as a JSON document.

Output modes:
  dupes   {"rolebindings": {key: [identity, ...]}, "clusterrolebindings": {...}}
          a kind is present only when it has at least one duplicate group
  totals  {"totals": {kind: {"groups": n, "excess": m}}}
          excess = sum over groups of (group size - 1)
  all     the dupes listing plus {"index": {kind: full index}}, where the full
          index still includes keys held by a single binding
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from rbacdedup.bindings import BindingKind
from rbacdedup.index import DuplicateIndex

logger = logging.getLogger("dedup.report")

OUTPUT_MODES = ("dupes", "totals", "all")


def render_report(
    dupes: Mapping[BindingKind, DuplicateIndex],
    mode: str = "dupes",
    all_index: Optional[Mapping[BindingKind, DuplicateIndex]] = None,
) -> Optional[Dict[str, Any]]:
    """Build the report document, or None when there is nothing to report."""
    if mode not in OUTPUT_MODES:
        raise ValueError(f"unknown output mode {mode!r}, expected one of {', '.join(OUTPUT_MODES)}")

    found = False
    for kind in BindingKind:
        index = dupes.get(kind)
        if index is not None and len(index) > 0:
            found = True
        else:
            logger.debug(f"no dupe {kind.value} found")
    if not found:
        return None

    if mode == "totals":
        totals: Dict[str, Dict[str, int]] = {}
        for kind in BindingKind:
            index = dupes.get(kind) or DuplicateIndex(kind)
            totals[kind.value] = {"groups": len(index), "excess": index.excess_count()}
        return {"totals": totals}

    out: Dict[str, Any] = {}
    for kind in BindingKind:
        index = dupes.get(kind)
        if index is not None and len(index) > 0:
            out[kind.value] = index.to_dict()

    if mode == "all":
        full = all_index or {}
        out["index"] = {
            kind.value: (full[kind].to_dict() if kind in full else {}) for kind in BindingKind
        }
    return out


def dump_report(doc: Dict[str, Any]) -> str:
    # sorted keys keep the rendering stable across runs; identity order is preserved
    return json.dumps(doc, indent=2, sort_keys=True, ensure_ascii=False)
