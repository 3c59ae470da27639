"""Store — the engine that reads, writes and subscribes to atoms.

Reads are pulled lazily: an atom is computed the first time it is read and
memoized afterwards, recording which atoms it read and at what version.
Writes are pushed: a primitive's new value invalidates its mounted
dependents, which are then recomputed once each, in dependency order,
before listeners are notified.

An atom is "mounted" while it has a listener or is a dependency of another
mounted atom. Only mounted atoms are kept up to date eagerly; everything
else is rechecked on the next read.

All operations are synchronous. Listeners and mount hooks may write back
into the store; that work is folded into the flush already running.
"""

from __future__ import annotations

import logging
import math
import threading
import weakref
from typing import Any, Callable, TypeVar

from atomx._anchor import AtomState, AtomTable, Mounted
from atomx.atom import Atom, WritableAtom
from atomx.errors import (
    CallbackErrors,
    CycleError,
    NotWritableError,
    UninitializedAtomError,
)

logger = logging.getLogger("atomx.store")

T = TypeVar("T")

Listener = Callable[[], None]
Unsubscribe = Callable[[], None]
Scheduler = Callable[[Callable[[], Any]], Any]

_SCALARS = frozenset({int, float, complex, str, bytes, bool, type(None)})


def same_value(a: Any, b: Any) -> bool:
    """Identity, except immutable scalars of the same type compare by value.

    Floats follow IEEE identity rather than equality: NaN is the same as NaN,
    and 0.0 differs from -0.0.
    """
    if a is b:
        return True
    if type(a) is not type(b) or type(a) not in _SCALARS:
        return False
    if type(a) is float:
        if math.isnan(a):
            return math.isnan(b)
        return a == b and math.copysign(1.0, a) == math.copysign(1.0, b)
    return a == b


class Store:
    """Holds the state of every atom read, written or subscribed through it."""

    def __init__(self) -> None:
        self._states = AtomTable()
        self._mounted: dict[Atom[Any], Mounted] = {}
        # atom -> version at which it was marked stale
        self._invalidated: weakref.WeakKeyDictionary[Atom[Any], int] = weakref.WeakKeyDictionary()
        # Insertion-ordered set of atoms changed since the last flush.
        self._changed: dict[Atom[Any], None] = {}
        self._mount_callbacks: list[Callable[[], None]] = []
        self._unmount_callbacks: list[Callable[[], None]] = []
        self._evaluating: set[Atom[Any]] = set()
        # Bumped on every value written, so cached reads know when to recheck.
        self._epoch = 0
        self._flushing = False
        self._scheduler: Scheduler | None = None
        self._scheduler_thread: threading.Thread | None = None

    # ─── Public API ─────────────────────────────────────────────────────────

    def get(self, atom: Atom[T]) -> T:
        """Return the atom's current value, computing it if needed.

        Re-raises the error the atom's read function raised, if any.
        """
        return self._read_atom_state(atom).result()

    def set(self, atom: WritableAtom[Any], *args: Any) -> Any:
        """Write to an atom and notify whatever changed as a result.

        Returns what the atom's write function returns. From a thread other
        than the one that called set_scheduler(), the write is handed to the
        scheduler and None is returned.
        """
        if not atom.writable:
            raise NotWritableError(atom)
        if self._scheduler is not None and threading.current_thread() is not self._scheduler_thread:
            self._scheduler(lambda: self.set(atom, *args))
            return None
        try:
            return self._write_atom_state(atom, *args)
        finally:
            self._recompute_invalidated_atoms()
            self._flush_callbacks()

    def sub(self, atom: Atom[Any], listener: Listener) -> Unsubscribe:
        """Mount the atom and call listener() whenever its value changes.

        Returns a function that removes the listener. Calling it more than
        once has no further effect.
        """
        self._mount_atom(atom)
        state = self._states.ensure(atom)
        state.listeners.add(listener)
        self._flush_callbacks()
        subscribed = True

        def unsubscribe() -> None:
            nonlocal subscribed
            if not subscribed:
                return
            subscribed = False
            state.listeners.discard(listener)
            self._unmount_atom(atom)
            self._flush_callbacks()

        return unsubscribe

    def is_mounted(self, atom: Atom[Any]) -> bool:
        return atom in self._mounted

    def set_scheduler(self, scheduler: Scheduler | None) -> None:
        """Marshal writes from other threads through ``scheduler``.

        Call from the thread that owns the store:
            store.set_scheduler(app.call_from_thread)

        Writes from the owner thread stay synchronous.
        """
        self._scheduler = scheduler
        self._scheduler_thread = threading.current_thread() if scheduler is not None else None

    # ─── Read path ──────────────────────────────────────────────────────────

    def _read_atom_state(self, atom: Atom[Any]) -> AtomState:
        state = self._states.ensure(atom)
        if state.initialized:
            if self._is_current(atom, state):
                return state
            self._refresh_dependencies(atom)
            if all(
                self._read_atom_state(dep).version == version
                for dep, version in list(state.dependencies.items())
            ):
                state.checked_epoch = self._epoch
                return state
        if atom in self._evaluating:
            raise CycleError(atom)

        previous_dependencies = state.dependencies
        state.dependencies = {}

        def getter(a: Atom[Any]) -> Any:
            if a is atom:
                if not state.initialized:
                    if not a.has_initial_value:
                        raise UninitializedAtomError(f"{a!r} has no initial value")
                    self._set_atom_value(state, a.init)
                return state.result()
            a_state = self._read_atom_state(a)
            try:
                return a_state.result()
            finally:
                state.dependencies[a] = a_state.version
                a_mounted = self._mounted.get(a)
                if a_mounted is not None:
                    a_mounted.dependents.add(atom)

        previous = state.version
        self._evaluating.add(atom)
        try:
            value = atom.read(getter)
            self._set_atom_value(state, value)
        except RecursionError:
            # The graph was too deep for this read, not a failure of the read
            # function. Leave the state as it was so a shallower read retries.
            state.dependencies = previous_dependencies
            raise
        except Exception as error:
            state.set_error(error)
            # An error always counts as a change.
            state.version += 1
        finally:
            self._evaluating.discard(atom)
        state.checked_epoch = self._epoch

        if previous != state.version and self._invalidated.get(atom) == previous:
            self._invalidated[atom] = state.version
            self._changed[atom] = None
        if atom in self._mounted:
            self._mount_dependencies(atom)
        return state

    def _is_current(self, atom: Atom[Any], state: AtomState) -> bool:
        # Mounted atoms are kept current by the recompute pass, unless
        # invalidated at the version they still hold.
        if atom in self._mounted and self._invalidated.get(atom) != state.version:
            return True
        # Nothing was written since it was last confirmed current.
        return state.checked_epoch == self._epoch

    def _refresh_dependencies(self, atom: Atom[Any]) -> None:
        """Bring the atom's stale cached dependencies up to date, deepest first.

        Each dependency is read only after its own dependencies are current,
        so checking a long chain never recurses more than one level.
        """
        order: list[Atom[Any]] = []
        entered: set[Atom[Any]] = set()
        done: set[Atom[Any]] = set()
        stack = [atom]
        while stack:
            a = stack[-1]
            if a in done:
                stack.pop()
                continue
            if a in entered:
                done.add(a)
                order.append(a)
                stack.pop()
                continue
            entered.add(a)
            for dep in self._states.ensure(a).dependencies:
                if dep in entered:
                    continue
                dep_state = self._states.get(dep)
                if dep_state is not None and dep_state.initialized and not self._is_current(dep, dep_state):
                    stack.append(dep)
        # The atom itself finishes last; its caller checks it.
        for a in order[:-1]:
            self._read_atom_state(a)

    def _set_atom_value(self, state: AtomState, value: Any) -> None:
        changed = not state.has_value or not same_value(state.value, value)
        state.set_value(value)
        if changed:
            state.version += 1

    # ─── Write path ─────────────────────────────────────────────────────────

    def _write_atom_state(self, atom: WritableAtom[Any], *args: Any) -> Any:
        if not atom.writable:
            raise NotWritableError(atom)

        def getter(a: Atom[Any]) -> Any:
            return self._read_atom_state(a).result()

        def setter(a: WritableAtom[Any], *set_args: Any) -> Any:
            if a is not atom:
                return self._write_atom_state(a, *set_args)
            if not a.has_initial_value:
                raise NotWritableError(a)
            state = self._states.ensure(a)
            previous = state.version
            self._set_atom_value(state, set_args[0])
            self._mount_dependencies(a)
            if previous != state.version:
                self._epoch += 1
                self._changed[a] = None
                self._invalidate_dependents(a)
            return None

        return atom.write(getter, setter, *args)

    def _invalidate_dependents(self, atom: Atom[Any]) -> None:
        stack = [atom]
        seen = {atom}
        while stack:
            a = stack.pop()
            for d in self._mounted_dependents(a):
                self._invalidated[d] = self._states.ensure(d).version
                if d not in seen:
                    seen.add(d)
                    stack.append(d)

    def _recompute_invalidated_atoms(self) -> None:
        """Recompute invalidated mounted atoms, each at most once, roots first."""
        # Post-order DFS over mounted dependents: an atom is appended only
        # after all of its dependents, so the reversed list is topological.
        top_sorted_reversed: list[tuple[Atom[Any], AtomState]] = []
        visiting: set[Atom[Any]] = set()
        visited: set[Atom[Any]] = set()
        stack = list(self._changed)
        while stack:
            a = stack[-1]
            if a in visited:
                stack.pop()
                continue
            if a in visiting:
                state = self._states.ensure(a)
                # A different recorded version means it was already
                # recomputed since being invalidated.
                if self._invalidated.get(a) == state.version:
                    top_sorted_reversed.append((a, state))
                visited.add(a)
                stack.pop()
                continue
            visiting.add(a)
            for d in self._mounted_dependents(a):
                if d not in visiting:
                    stack.append(d)

        if top_sorted_reversed:
            logger.debug("Rechecking %d invalidated atoms", len(top_sorted_reversed))
        for a, state in reversed(top_sorted_reversed):
            if any(dep is not a and dep in self._changed for dep in state.dependencies):
                self._read_atom_state(a)
            self._invalidated.pop(a, None)

    # ─── Mount / unmount ────────────────────────────────────────────────────

    def _mounted_dependents(self, atom: Atom[Any]) -> list[Atom[Any]]:
        mounted = self._mounted.get(atom)
        if mounted is None:
            return []
        return [d for d in mounted.dependents if d in self._mounted]

    def _mount_dependencies(self, atom: Atom[Any]) -> None:
        """Sync a mounted atom's mounted dependencies with what it last read."""
        mounted = self._mounted.get(atom)
        if mounted is None:
            return
        state = self._states.ensure(atom)
        for a, version in list(state.dependencies.items()):
            if a not in mounted.dependencies:
                a_mounted = self._mount_atom(a)
                a_mounted.dependents.add(atom)
                mounted.dependencies.add(a)
                if version != self._states.ensure(a).version:
                    self._changed[a] = None
        for a in list(mounted.dependencies):
            if a not in state.dependencies:
                mounted.dependencies.discard(a)
                a_mounted = self._unmount_atom(a)
                if a_mounted is not None:
                    a_mounted.dependents.discard(atom)

    def _mount_atom(self, atom: Atom[Any]) -> Mounted:
        """Mount an atom and, before it, everything it depends on."""
        mounted = self._mounted.get(atom)
        if mounted is not None:
            return mounted

        stack = [atom]
        entered: set[Atom[Any]] = set()
        while stack:
            a = stack[-1]
            if a in self._mounted:
                stack.pop()
                continue
            state = self._states.ensure(a)
            if a not in entered:
                entered.add(a)
                # Recompute so the recorded dependencies are current.
                self._read_atom_state(a)
                stack.extend(d for d in state.dependencies if d not in self._mounted)
                continue
            stack.pop()
            mounted = Mounted()
            for d in state.dependencies:
                d_mounted = self._mounted.get(d)
                if d_mounted is not None:
                    d_mounted.dependents.add(a)
                    mounted.dependencies.add(d)
            self._mounted[a] = mounted
            if a.writable and a.on_mount is not None:
                self._mount_callbacks.append(self._on_mount_callback(a, mounted))
            logger.debug("Mounted %r", a)
        return self._mounted[atom]

    def _on_mount_callback(self, atom: WritableAtom[Any], mounted: Mounted) -> Callable[[], None]:
        def process_on_mount() -> None:
            # Unmounted again before the flush got here.
            if self._mounted.get(atom) is not mounted:
                return

            def set_self(*args: Any) -> Any:
                return self.set(atom, *args)

            on_unmount = atom.on_mount(set_self)
            if on_unmount is not None:
                mounted.on_unmount = on_unmount

        return process_on_mount

    def _unmount_atom(self, atom: Atom[Any]) -> Mounted | None:
        """Try to unmount an atom, cascading to dependencies it released.

        Returns None once unmounted, or the mounted record if the atom is
        still listened to or depended on.
        """
        pending = [atom]
        while pending:
            a = pending.pop()
            mounted = self._mounted.get(a)
            if mounted is None or not self._can_unmount(a, mounted):
                continue
            del self._mounted[a]
            self._invalidated.pop(a, None)
            if mounted.on_unmount is not None:
                self._unmount_callbacks.append(mounted.on_unmount)
            for d in mounted.dependencies:
                d_mounted = self._mounted.get(d)
                if d_mounted is not None:
                    d_mounted.dependents.discard(a)
                    pending.append(d)
            logger.debug("Unmounted %r", a)
        return self._mounted.get(atom)

    def _can_unmount(self, atom: Atom[Any], mounted: Mounted) -> bool:
        state = self._states.get(atom)
        if state is not None and state.listeners:
            return False
        for d in mounted.dependents:
            d_mounted = self._mounted.get(d)
            if d_mounted is not None and atom in d_mounted.dependencies:
                return False
        return True

    # ─── Flush ──────────────────────────────────────────────────────────────

    def _flush_callbacks(self) -> None:
        """Deliver listeners and mount hooks until nothing is pending.

        Every callback runs even if others raise; the errors are raised
        together as CallbackErrors once the store is quiescent.
        """
        if self._flushing:
            return
        self._flushing = True
        errors: list[Exception] = []
        try:
            while self._changed or self._unmount_callbacks or self._mount_callbacks:
                callbacks: dict[Callable[[], None], None] = {}
                for a in self._changed:
                    state = self._states.get(a)
                    if state is not None and a in self._mounted:
                        callbacks.update(dict.fromkeys(state.listeners))
                self._changed.clear()
                callbacks.update(dict.fromkeys(self._unmount_callbacks))
                self._unmount_callbacks.clear()
                callbacks.update(dict.fromkeys(self._mount_callbacks))
                self._mount_callbacks.clear()

                for fn in callbacks:
                    try:
                        fn()
                    except Exception as error:
                        errors.append(error)

                if self._changed:
                    self._recompute_invalidated_atoms()
        finally:
            self._flushing = False

        if errors:
            logger.warning("%d callback(s) raised during flush", len(errors))
            raise CallbackErrors("errors raised by store callbacks", errors)

    def __repr__(self) -> str:
        return f"Store(atoms={len(self._states)}, mounted={len(self._mounted)})"


# ─── Default store ──────────────────────────────────────────────────────────

_default_store: Store | None = None
_default_store_lock = threading.Lock()


def create_store() -> Store:
    return Store()


def get_default_store() -> Store:
    """The process-wide store used when none is given. Created on first use."""
    global _default_store
    if _default_store is None:
        with _default_store_lock:
            if _default_store is None:
                _default_store = create_store()
    return _default_store


def _reset_default_store() -> None:
    """Drop the default store. For test isolation only."""
    global _default_store
    with _default_store_lock:
        _default_store = None
