"""
Skipper utilities shared by the argument, command and fault layers.

Overview
- Unset: falsey singleton meaning "not provided", distinct from None.
- coalesce(value, default): materialize Unset into a concrete default.
- rename(callable, name) / @rename(name): stable names for generated callables.
- mirror(name): read-only property over a private "_name" field, returning copies
  of containers so callers cannot mutate command or spec state.
- pluralize(word): small English pluralizer for help headings and messages.
- kebab(name): CamelCase to kebab-case, used for type names in diagnostics.
"""
import builtins
import functools
import re
from collections.abc import Sequence, Mapping, Set
from typing import final


@final
class UnsetType:
    """
    Sentinel type for values that were not provided.

    Only one instance exists (Unset). It is falsey, prints as "Unset", and
    supports PEP 604 unions so annotations like ``str | UnsetType`` work.
    """

    def __or__(self, other, /):
        try:
            return other | type(self)
        except TypeError:
            return NotImplemented

    def __ror__(self, other, /):
        try:
            return other | type(self)
        except TypeError:
            return NotImplemented

    @functools.cache
    def __new__(cls):
        return super().__new__(cls)

    def __bool__(self):
        return False

    def __repr__(self):
        return "Unset"

    def __init_subclass__(cls, **options):
        raise TypeError("type 'UnsetType' is not an acceptable base type")


def coalesce(object, default=None, /):
    """
    Return object unless it is Unset, in which case return default.

    Falsey values (None, 0, "", []) are kept as they are.

        >>> coalesce(Unset, "fallback")
        'fallback'
        >>> coalesce(None, "fallback") is None
        True
    """
    return object if object is not Unset else default


def rename(*parameters):
    """
    Set __name__/__qualname__ on a callable.

    Two forms are supported:
    - rename(callable, name) renames in place and returns the callable.
    - rename(name) returns a decorator doing the same later.
    """
    match len(parameters):
        case 2:
            callable, name = parameters
            if not builtins.callable(callable):
                raise TypeError("rename() first argument must be callable")
            if not isinstance(name, str):
                raise TypeError("rename() second argument must be a string")
            try:
                callable.__qualname__ = name
                callable.__name__ = name
            except (AttributeError, TypeError):
                raise TypeError("rename() first argument must be a updatable callable") from None
            return callable
        case 1:
            name, = parameters
            if not isinstance(name, str):
                raise TypeError("@rename() argument must be a string")

            def wrapper(callable):
                if not builtins.callable(callable):
                    raise TypeError("@rename() must be applied to a callable")
                return rename(callable, name)

            return rename(wrapper, "rename")
        case _:
            raise TypeError("rename takes 1 to 2 arguments but %d were given" % len(parameters))


def _immortalize(object):
    # Fresh containers all the way down; scalars and other objects pass through.
    if isinstance(object, Sequence) and not isinstance(object, str):
        return list(map(_immortalize, object))
    elif isinstance(object, Mapping):
        return dict(zip(object.keys(), map(_immortalize, object.values())))
    elif isinstance(object, Set):
        return set(map(_immortalize, object))
    return object


def mirror(name, /):
    """
    Build a read-only property exposing ``self._<name>``.

    Container values are copied on every access, so mutating the result never
    touches the owner.
    """
    if not isinstance(name, str):
        raise TypeError("mirror() argument must be a string")

    @rename(name)
    def getter(self):
        return _immortalize(getattr(self, "_" + name))

    return property(getter)


@functools.cache
def pluralize(word, /):
    """
    Pluralize a single English word, keeping its casing.

    Only the regular rules are covered (s/sh/ch/x/z, consonant + y, plain s);
    help headings and fault messages never need more.
    """
    if not isinstance(word, str):
        raise TypeError("pluralize() argument must be a string")
    if not word:
        return word

    lower = word.lower()
    if lower.endswith(("s", "sh", "ch", "x", "z")):
        plural = lower + "es"
    elif lower.endswith("y") and len(lower) > 1 and lower[-2] not in "aeiou":
        plural = lower[:-1] + "ies"
    else:
        plural = lower + "s"

    if word.isupper():
        return plural.upper()
    if word[:1].isupper():
        return plural[:1].upper() + plural[1:]
    return plural


@functools.cache
def kebab(name, /):
    """CamelCase to kebab-case ("ExcessArguments" -> "excess-arguments")."""
    return re.sub(r"(?<!^)(?=[A-Z])", r"-", name).lower()


Unset = UnsetType()
"""
The "not provided" sentinel.

Use it as a parameter default where None is a meaningful user value, then
resolve it with coalesce().
"""


__all__ = (
    # Functions
    "coalesce",
    "rename",
    "mirror",
    "pluralize",
    "kebab",

    # Types
    "UnsetType",

    # Constants
    "Unset",
)
