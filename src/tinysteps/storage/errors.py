"""Typed failures surfaced by the durability layer.

Anything that compromises a whole operation (a write that did not reach
disk, a snapshot this build cannot read) is raised to the caller as one of
these. Per-record problems (a single failed transmission, one corrupted
cache entry) are contained and never raise.
"""
from typing import Iterable


class DurabilityError(RuntimeError):
    """Base class for every error raised by the durability layer."""


class PersistenceError(DurabilityError):
    """Raised when a durable write (or the read backing it) fails.

    The change may not have been saved; callers should tell the user.
    """


class IncompatibleVersionError(DurabilityError):
    """Raised when a snapshot's version is not one this build understands."""

    def __init__(self, version: str, supported: Iterable[str]):
        self.version = version
        self.supported = tuple(sorted(supported))
        super().__init__(
            f"Incompatible snapshot version {version!r} "
            f"(supported: {', '.join(self.supported)})"
        )


class InvalidSnapshotError(DurabilityError):
    """Raised when a snapshot document cannot be parsed or validated."""
