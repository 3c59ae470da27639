"""AtomX: Jotai-inspired atomic state management for Python."""

from importlib.metadata import version as _version

__version__ = _version("atomx")

from atomx.atom import Atom, WritableAtom, atom, derived, has_initial_value, is_writable, primitive
from atomx.errors import AtomError, CallbackErrors, CycleError, NotWritableError, UninitializedAtomError
from atomx.store import Store, create_store, get_default_store
from atomx.reaction import Reaction, autorun, reaction

__all__ = [
    "Atom",
    "WritableAtom",
    "atom",
    "primitive",
    "derived",
    "is_writable",
    "has_initial_value",
    "Store",
    "create_store",
    "get_default_store",
    "Reaction",
    "autorun",
    "reaction",
    "AtomError",
    "NotWritableError",
    "UninitializedAtomError",
    "CycleError",
    "CallbackErrors",
]
