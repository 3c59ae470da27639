"""Reactions — side effects triggered by atom changes.

Built only on the store's public get/sub, so they behave exactly like any
other subscriber.

Two flavors:
- autorun(fn): runs fn(get) immediately, re-runs when any atom it read changes.
- reaction(data, effect): calls effect with the new value of ``data`` (an atom
  or a read function) whenever that value changes.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from atomx.atom import Atom, Getter, derived
from atomx.store import Store, Unsubscribe, get_default_store

logger = logging.getLogger("atomx.reaction")

T = TypeVar("T")


class Reaction:
    """Handle for a running reaction. Call dispose() to stop it."""

    __slots__ = ("_atom", "_unsubscribe", "_disposed")

    def __init__(self, atom: Atom[Any], unsubscribe: Unsubscribe) -> None:
        self._atom = atom
        self._unsubscribe = unsubscribe
        self._disposed = False

    @property
    def atom(self) -> Atom[Any]:
        return self._atom

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        self._unsubscribe()
        logger.debug("Disposed reaction on %r", self._atom)

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"Reaction({self._atom!r}, {state})"


def autorun(fn: Callable[[Getter], Any], *, store: Store | None = None) -> Reaction:
    """Run fn(get) immediately, then re-run whenever any atom it reads changes.

    Usage:
        count = atom(0)
        log = []

        r = autorun(lambda get: log.append(get(count)))
        # log == [0], ran immediately

        get_default_store().set(count, 1)
        # log == [0, 1]

        r.dispose()
    """
    store = store if store is not None else get_default_store()
    runner = derived(fn, debug_label=f"autorun:{getattr(fn, '__name__', 'fn')}")

    def _on_change() -> None:
        # Re-raises whatever fn raised, so the flush reports it.
        store.get(runner)

    unsubscribe = store.sub(runner, _on_change)
    try:
        store.get(runner)
    except Exception:
        unsubscribe()
        raise
    return Reaction(runner, unsubscribe)


def reaction(
    data: Atom[T] | Callable[[Getter], T],
    effect: Callable[[T], None],
    *,
    store: Store | None = None,
    fire_immediately: bool = False,
) -> Reaction:
    """Call effect(value) whenever the value of ``data`` changes.

    Unlike autorun, effect only fires when the *result* changes, not every
    time something ``data`` reads is written.

    Usage:
        first = atom("Alice")
        last = atom("Smith")

        effects = []
        r = reaction(
            lambda get: f"{get(first)} {get(last)}",
            effects.append,
        )
        get_default_store().set(first, "Bob")
        # effects == ["Bob Smith"]
    """
    store = store if store is not None else get_default_store()
    source = data if isinstance(data, Atom) else derived(data)

    def _on_change() -> None:
        effect(store.get(source))

    unsubscribe = store.sub(source, _on_change)
    if fire_immediately:
        try:
            effect(store.get(source))
        except Exception:
            unsubscribe()
            raise
    return Reaction(source, unsubscribe)
