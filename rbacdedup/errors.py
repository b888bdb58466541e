"""Exceptions raised by the dedup engine and its adapters."""

from typing import Optional


class DedupError(Exception):
    pass


class InputError(DedupError):
    """An input file could not be read."""

    def __init__(self, path: str, cause: Exception):
        super().__init__(f"could not read file {path}: {cause}")
        self.path = path
        self.cause = cause


class DecodeError(DedupError):
    """A serialized binding list could not be decoded."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"decode error in {source}: {reason}")
        self.source = source
        self.reason = reason


class ItemDecodeError(DedupError):
    """One item of an otherwise valid list is malformed."""

    def __init__(self, position: int, reason: str, name: Optional[str] = None):
        label = f"item {position}" if name is None else f"item {position} ({name})"
        super().__init__(f"{label}: {reason}")
        self.position = position
        self.reason = reason
        self.name = name


class UnsupportedKindError(DedupError):
    def __init__(self, kind: str):
        super().__init__(f"unsupported binding kind: {kind}")
        self.kind = kind


class ConnectivityError(DedupError):
    """Client construction or a listing call against the cluster failed."""


class RemovalError(DedupError):
    def __init__(self, identity: str, cause: Exception):
        super().__init__(f"could not remove {identity}: {cause}")
        self.identity = identity
        self.cause = cause
