"""Atoms — immutable descriptions of nodes in the state graph.

An atom holds no value. It describes how to compute one (``read``) and,
optionally, how to accept writes (``write``). Values live in a Store, keyed
by the atom's identity, so the same atom used with two stores has two
independent states.

Descriptors compare by identity. Each carries an ``id`` handle that is
never reused for the lifetime of the process.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, TypeVar

from atomx import _anchor

T = TypeVar("T")

Getter = Callable[["Atom[Any]"], Any]
Setter = Callable[..., Any]
Read = Callable[[Getter], T]
Write = Callable[..., Any]
OnUnmount = Callable[[], None]
OnMount = Callable[[Callable[..., Any]], "OnUnmount | None"]

_UNSET: Any = object()


class Atom(Generic[T]):
    """A read-only atom: a value derived from other atoms."""

    __slots__ = ("_id", "_read", "debug_label", "__weakref__")

    def __init__(self, read: Read[T] | None, *, debug_label: str | None = None) -> None:
        self._id = _anchor.new_id()
        self._read = read
        self.debug_label = debug_label

    @property
    def id(self) -> int:
        return self._id

    @property
    def writable(self) -> bool:
        return False

    @property
    def has_initial_value(self) -> bool:
        return False

    def read(self, get: Getter) -> T:
        """Compute this atom's value. ``get`` reads (and tracks) other atoms."""
        return self._read(get)

    def __repr__(self) -> str:
        label = self.debug_label or getattr(self._read, "__name__", "read")
        return f"{type(self).__name__}({label}#{self._id})"


class WritableAtom(Atom[T]):
    """An atom that also accepts writes.

    Primitive atoms carry an ``init`` value and read themselves. Derived
    writable atoms delegate writes to ``write(get, set, *args)``, which may
    update any number of other atoms.

    ``on_mount`` may be assigned after construction. It is called with a
    setter bound to this atom when the atom first gains a subscriber
    (directly or through a dependent) and may return an unmount callback.
    """

    __slots__ = ("_write", "init", "on_mount")

    def __init__(
        self,
        read: Read[T] | None = None,
        write: Write | None = None,
        *,
        init: Any = _UNSET,
        on_mount: OnMount | None = None,
        debug_label: str | None = None,
    ) -> None:
        super().__init__(read, debug_label=debug_label)
        self._write = write
        self.init = init
        self.on_mount = on_mount

    @property
    def writable(self) -> bool:
        return True

    @property
    def has_initial_value(self) -> bool:
        return self.init is not _UNSET

    def read(self, get: Getter) -> T:
        if self._read is None:
            return get(self)
        return self._read(get)

    def write(self, get: Getter, set: Setter, *args: Any) -> Any:
        """Apply a write. Without a custom writer, stores the argument.

        A callable argument is treated as an updater and called with the
        current value.
        """
        if self._write is not None:
            return self._write(get, set, *args)
        (arg,) = args
        if callable(arg):
            arg = arg(get(self))
        return set(self, arg)

    def __repr__(self) -> str:
        if self._read is None and self.debug_label is None:
            return f"{type(self).__name__}(init={self.init!r}#{self._id})"
        return super().__repr__()


def atom(
    read_or_init: Any = None,
    write: Write | None = None,
    *,
    debug_label: str | None = None,
) -> Atom[Any]:
    """Create an atom. The kind depends on the arguments.

    Usage:
        count = atom(0)                               # primitive
        double = atom(lambda get: get(count) * 2)     # read-only derived
        half = atom(
            lambda get: get(count) / 2,
            lambda get, set, v: set(count, v * 2),
        )                                             # writable derived
        reset = atom(None, lambda get, set: set(count, 0))  # write-only

    Use primitive() to store a callable as a value.
    """
    if callable(read_or_init):
        if write is None:
            return Atom(read_or_init, debug_label=debug_label)
        return WritableAtom(read_or_init, write, debug_label=debug_label)
    return WritableAtom(None, write, init=read_or_init, debug_label=debug_label)


def primitive(init: T, *, debug_label: str | None = None) -> WritableAtom[T]:
    """Create a primitive atom holding ``init``, even if it is callable."""
    return WritableAtom(None, None, init=init, debug_label=debug_label)


def derived(read: Read[T], write: Write | None = None, *, debug_label: str | None = None) -> Atom[T]:
    """Decorator/factory to create a derived atom from a read function.

    Usage:
        count = primitive(0)

        @derived
        def doubled(get):
            return get(count) * 2
    """
    if write is None:
        return Atom(read, debug_label=debug_label)
    return WritableAtom(read, write, debug_label=debug_label)


def is_writable(a: Atom[Any]) -> bool:
    return a.writable


def has_initial_value(a: Atom[Any]) -> bool:
    return a.has_initial_value
