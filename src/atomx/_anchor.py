"""Data anchor — plain Python structures that hold per-store atom state.

Atoms are descriptions; everything that changes at runtime lives here.
Separating data from behavior keeps the store engine free of storage
concerns: the engine only ever asks a table for an atom's state.

States live in a generational arena. A table maps each atom's identity
handle to an arena handle and frees the slot once the atom is garbage
collected, so a store never keeps an unreferenced atom's state alive.
"""

from __future__ import annotations

import itertools
import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Generic, NamedTuple, TypeVar

from atomx.errors import UninitializedAtomError

if TYPE_CHECKING:
    from atomx.atom import Atom

T = TypeVar("T")

# Identity handles are never reused. next() on a count is atomic under the GIL.
_id_counter = itertools.count(1)


def new_id() -> int:
    return next(_id_counter)


_EMPTY: Any = object()


@dataclass(eq=False, slots=True)
class AtomState:
    """Mutable state of one atom in one store, mounted or not."""

    value: Any = _EMPTY
    error: BaseException | None = None
    # Bumped only when the value (or error state) observably changes.
    version: int = 0
    # atom -> version of that atom observed during the last evaluation
    dependencies: dict[Atom[Any], int] = field(default_factory=dict)
    listeners: set[Callable[[], None]] = field(default_factory=set)
    # Store write epoch at which this state was last confirmed current.
    checked_epoch: int = -1

    @property
    def initialized(self) -> bool:
        return self.value is not _EMPTY or self.error is not None

    @property
    def has_value(self) -> bool:
        return self.value is not _EMPTY

    def set_value(self, value: Any) -> None:
        self.value = value
        self.error = None

    def set_error(self, error: BaseException) -> None:
        self.value = _EMPTY
        self.error = error

    def result(self) -> Any:
        """Return the value, or re-raise the error the last evaluation hit."""
        if self.error is not None:
            raise self.error
        if self.value is _EMPTY:
            raise UninitializedAtomError("atom state is not initialized")
        return self.value


@dataclass(eq=False, slots=True)
class Mounted:
    """State tracked only while an atom is mounted.

    If B depends on A, A is a dependency of B and B is a dependent of A.
    """

    dependents: set[Atom[Any]] = field(default_factory=set)
    dependencies: set[Atom[Any]] = field(default_factory=set)
    on_unmount: Callable[[], None] | None = None


class Handle(NamedTuple):
    index: int
    generation: int


class Arena(Generic[T]):
    """Slot storage whose handles go stale when their slot is freed."""

    __slots__ = ("_items", "_generations", "_free")

    def __init__(self) -> None:
        self._items: list[T | None] = []
        self._generations: list[int] = []
        self._free: list[int] = []

    def insert(self, item: T) -> Handle:
        if self._free:
            index = self._free.pop()
            self._items[index] = item
        else:
            index = len(self._items)
            self._items.append(item)
            self._generations.append(0)
        return Handle(index, self._generations[index])

    def get(self, handle: Handle) -> T | None:
        if not self._is_live(handle):
            return None
        return self._items[handle.index]

    def remove(self, handle: Handle) -> T | None:
        if not self._is_live(handle):
            return None
        item = self._items[handle.index]
        self._items[handle.index] = None
        self._generations[handle.index] += 1
        self._free.append(handle.index)
        return item

    def _is_live(self, handle: Handle) -> bool:
        index, generation = handle
        return (
            0 <= index < len(self._items)
            and self._generations[index] == generation
            and self._items[index] is not None
        )

    def __len__(self) -> int:
        return len(self._items) - len(self._free)


class AtomTable:
    """Per-store mapping of atom -> AtomState, held weakly on the atom side.

    Each entry registers a finalizer on its atom. The table detaches the ones
    still pending when it is itself collected, so long-lived atoms read by
    many short-lived stores do not accumulate registrations.
    """

    __slots__ = ("_arena", "_handles", "_finalizers", "__weakref__")

    def __init__(self) -> None:
        self._arena: Arena[AtomState] = Arena()
        self._handles: dict[int, Handle] = {}
        self._finalizers: dict[int, weakref.finalize] = {}
        weakref.finalize(self, _detach_all, self._finalizers)

    def get(self, atom: Atom[Any]) -> AtomState | None:
        handle = self._handles.get(atom.id)
        return self._arena.get(handle) if handle is not None else None

    def ensure(self, atom: Atom[Any]) -> AtomState:
        """Return the atom's state, creating it on first access."""
        state = self.get(atom)
        if state is None:
            state = AtomState()
            self._handles[atom.id] = self._arena.insert(state)
            self._finalizers[atom.id] = weakref.finalize(atom, _release, weakref.ref(self), atom.id)
        return state

    def release(self, atom_id: int) -> None:
        finalizer = self._finalizers.pop(atom_id, None)
        if finalizer is not None:
            finalizer.detach()
        handle = self._handles.pop(atom_id, None)
        if handle is not None:
            self._arena.remove(handle)

    def __contains__(self, atom: Atom[Any]) -> bool:
        return atom.id in self._handles

    def __len__(self) -> int:
        return len(self._arena)


def _release(table_ref: weakref.ref[AtomTable], atom_id: int) -> None:
    # Runs from a finalizer: the table may already be gone.
    table = table_ref()
    if table is not None:
        table.release(atom_id)


def _detach_all(finalizers: dict[int, weakref.finalize]) -> None:
    for finalizer in finalizers.values():
        finalizer.detach()
    finalizers.clear()
