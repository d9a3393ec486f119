from __future__ import annotations


class LoopedError(Exception):
    """Base class for errors raised by looped."""


class StorageFault(LoopedError):
    """The storage medium could not be written."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"cannot write {path}: {reason}")
        self.path = path
        self.reason = reason


class ConfigError(LoopedError, ValueError):
    pass


class CollaboratorError(LoopedError):
    """A model-backed collaborator returned something unusable."""
