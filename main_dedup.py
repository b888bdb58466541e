#!/usr/bin/env python3
"""
Find and remove duplicate RoleBindings and ClusterRoleBindings.

A binding is a duplicate when another binding grants the same subject the same
role in the same scope. Bindings are read from list files (--input-file-rbs
and/or --input-file-crbs) or, when no file is given, listed from the cluster.
Duplicate groups are printed as JSON on stdout; unless --dry-run is set, every
binding but the first of each group is then deleted.

Usage:
  python main_dedup.py [--config CONFIG_FILE] [--input-file-rbs FILE] [--input-file-crbs FILE]
                       [--kubeconfig PATH] [--context NAME] [--dry-run]
                       [--output {dupes,totals,all}] [--best-effort] [--debug]

Examples:
  python main_dedup.py --kubeconfig ~/.kube/config --dry-run
  python main_dedup.py --input-file-rbs rbs.json --input-file-crbs crbs.json --output totals
  python main_dedup.py --config configs/dedup_config.yml --kubeconfig ~/.kube/config

Without --kubeconfig, file mode never deletes anything (dry-run is forced).
"""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Any, Dict, List, Optional, Tuple

from rbacdedup.bindings import BindingKind
from rbacdedup.errors import DedupError
from rbacdedup.index import DuplicateIndex, build_index, select_duplicates
from rbacdedup.noise import DEFAULT_NOISE_PATTERNS, NoiseFilter
from rbacdedup.remover import Remover, RemovalOutcome, first_error, summarize
from rbacdedup.report import OUTPUT_MODES, dump_report, render_report
from rbacdedup.sources import ChannelResult, FileSource, ItemPolicy, partition_by_kind, select_source
from utils.client_utils import load_client
from utils.misc_utils import load_config, setup_logging

DEFAULT_CONFIG = {
    "kubeconfig": None,
    "context": None,
    "insecure_skip_tls_verify": False,
    "request_timeout": 30,
    "page_size": 500,
    "max_retries": 3,
    "base_delay": 1.0,
    "backoff_factor": 2.0,
    "noise_patterns": {
        BindingKind.ROLE_BINDINGS.value: list(DEFAULT_NOISE_PATTERNS),
        BindingKind.CLUSTER_ROLE_BINDINGS.value: list(DEFAULT_NOISE_PATTERNS),
    },
    "skip_malformed_items": True,
    "strict_kinds": True,
    "fail_fast": True,
    "output": "dupes",
    "log_level": "INFO",
    "log_file": None,
}

logger = logging.getLogger("dedup")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find and remove duplicate RoleBindings and ClusterRoleBindings"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (optional)",
    )
    parser.add_argument(
        "--input-file-rbs",
        dest="input_file_rbs",
        default=None,
        help="File containing the list of rolebindings as returned by the kubernetes api (JSON or YAML v1 List)",
    )
    parser.add_argument(
        "--input-file-crbs",
        dest="input_file_crbs",
        default=None,
        help="File containing the list of clusterrolebindings as returned by the kubernetes api (JSON or YAML v1 List)",
    )
    parser.add_argument("--kubeconfig", default=None, help="Path to the kubeconfig file")
    parser.add_argument("--context", default=None, help="Kubeconfig context to use")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report dupes without removing them from the cluster",
    )
    parser.add_argument(
        "--output",
        choices=OUTPUT_MODES,
        default=None,
        help="Report granularity: dupes (default), totals, or all (includes the full index)",
    )
    parser.add_argument(
        "--best-effort",
        dest="best_effort",
        action="store_true",
        help="Keep removing after a failed delete instead of halting",
    )
    parser.add_argument("--debug", action="store_true", help="Shortcut for --log-level DEBUG")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--log-file", dest="log_file", default=None, help="Also write logs to this file")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Dict[str, Any]:
    try:
        config = load_config(args.config, DEFAULT_CONFIG)
    except (OSError, ValueError) as e:
        print(f"Error loading config file {args.config}: {e}", file=sys.stderr)
        sys.exit(1)

    for key in ("kubeconfig", "context", "output", "log_level", "log_file"):
        value = getattr(args, key)
        if value is not None:
            config[key] = value
    if args.debug:
        config["log_level"] = "DEBUG"
    if args.best_effort:
        config["fail_fast"] = False
    if config["output"] not in OUTPUT_MODES:
        print(f"Invalid output mode in config: {config['output']!r}", file=sys.stderr)
        sys.exit(1)
    return config


def find_dupes(
    results: List[ChannelResult], noise_filter: NoiseFilter
) -> Tuple[Dict[BindingKind, DuplicateIndex], Dict[BindingKind, DuplicateIndex]]:
    """Index every decoded binding by kind; return (duplicate groups, full index)."""
    bindings = [b for r in results if r.ok for b in r.bindings]
    full: Dict[BindingKind, DuplicateIndex] = {}
    dupes: Dict[BindingKind, DuplicateIndex] = {}
    for kind, kind_bindings in partition_by_kind(bindings).items():
        full[kind] = build_index(kind_bindings, kind, noise_filter)
        dupes[kind] = select_duplicates(full[kind])
    return dupes, full


def remove_dupes(
    rbac_client, dupes: Dict[BindingKind, DuplicateIndex], fail_fast: bool
) -> List[RemovalOutcome]:
    cancel_event = threading.Event()

    def _cancel(signum, frame):
        logger.warning(f"received signal {signum}, cancelling remaining deletes")
        cancel_event.set()

    previous = {sig: signal.signal(sig, _cancel) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        remover = Remover(rbac_client, fail_fast=fail_fast, cancel_event=cancel_event)
        outcomes: List[RemovalOutcome] = []
        for kind in BindingKind:
            index = dupes.get(kind)
            if not index:
                continue
            outcomes.extend(remover.remove(index, kind))
            if fail_fast and first_error(outcomes) is not None:
                break
        return outcomes
    finally:
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    config = build_config(args)
    setup_logging(config["log_level"], config["log_file"])

    file_mode = bool(args.input_file_rbs or args.input_file_crbs)
    dry_run = args.dry_run
    if file_mode and not config["kubeconfig"]:
        if not dry_run:
            logger.debug("no kubeconfig provided, dupes will not be removed from api")
        dry_run = True

    logger.info(json.dumps({
        "event": "start",
        "mode": "file" if file_mode else "cluster",
        "dry_run": dry_run,
        "output": config["output"],
    }))

    try:
        noise_filter = NoiseFilter.from_config(config["noise_patterns"])
    except ValueError as e:
        raise SystemExit(f"invalid noise_patterns: {e}")

    policy = ItemPolicy(
        skip_malformed_items=bool(config["skip_malformed_items"]),
        strict_kinds=bool(config["strict_kinds"]),
    )
    client_kwargs = {
        "kubeconfig": config["kubeconfig"],
        "context": config["context"],
        "insecure_skip_tls_verify": bool(config["insecure_skip_tls_verify"]),
        "page_size": int(config["page_size"]),
        "request_timeout": config["request_timeout"],
        "max_retries": int(config["max_retries"]),
        "base_delay": float(config["base_delay"]),
        "backoff_factor": float(config["backoff_factor"]),
    }

    rbac_client = None

    def client_factory():
        nonlocal rbac_client
        if rbac_client is None:
            rbac_client = load_client(**client_kwargs)
        return rbac_client

    try:
        source = select_source(args.input_file_rbs, args.input_file_crbs, client_factory, policy)
        results = source.load()
    except DedupError as e:
        raise SystemExit(f"could not retrieve bindings: {e}")

    failed = [r for r in results if not r.ok]
    dupes, full = find_dupes(results, noise_filter)

    doc = render_report(dupes, config["output"], full)
    if doc is not None:
        print(dump_report(doc))

    logger.info(json.dumps({
        "event": "detected",
        "groups": {kind.value: len(index) for kind, index in dupes.items()},
        "excess": {kind.value: index.excess_count() for kind, index in dupes.items()},
        "skipped_items": sum(r.skipped for r in results),
    }))

    if failed:
        raise SystemExit("; ".join(str(r.error) for r in failed))

    if dry_run:
        return

    if isinstance(source, FileSource):
        try:
            client_factory()
        except DedupError as e:
            raise SystemExit(str(e))

    outcomes = remove_dupes(rbac_client, dupes, bool(config["fail_fast"]))
    counts = summarize(outcomes)
    logger.info(json.dumps({"event": "removed", **counts}))

    err = first_error(outcomes)
    if err is not None:
        raise SystemExit(f"could not remove dupes: {err}")
    if counts["cancelled"]:
        raise SystemExit(f"removal cancelled, {counts['cancelled']} dupes left in place")


if __name__ == "__main__":
    main()
