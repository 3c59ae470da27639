"""Exceptions raised by atomx stores."""

from __future__ import annotations

__all__ = [
    "AtomError",
    "NotWritableError",
    "UninitializedAtomError",
    "CycleError",
    "CallbackErrors",
]


class AtomError(Exception):
    """Generic base exception used for this library."""


class NotWritableError(AtomError):
    """Raised when writing to an atom that has no write capability."""

    def __init__(self, atom: object) -> None:
        super().__init__(f"{atom!r} is not writable")
        self.atom = atom


class UninitializedAtomError(AtomError):
    """Raised when an atom's value is requested before it has one.

    A derived atom that reads itself without an initial value is
    misconfigured and fails this way on every read.
    """


class CycleError(AtomError):
    """Raised when an atom's read function ends up reading the atom itself."""

    def __init__(self, atom: object) -> None:
        super().__init__(f"Circular dependency detected while evaluating {atom!r}")
        self.atom = atom


class CallbackErrors(ExceptionGroup):
    """Errors raised by listeners or mount hooks during one flush."""
