r"""
Skipper argument specifications and decorators.

Overview
- Specs
  • Cardinal: positional argument (required, optional, or variadic).
  • Option: named option taking a value (required, optional, or variadic).
  • Flag: named option taking no value; "--no-" flags store False.

- Decorators
  • @cardinal(...), @option(...), @flag(...): build a spec and bind a handler.
    The handler is called with the resolved value every time the command
    assigns one (after parsing, env lookup, or an implied value).

Arity vocabulary (nargs)
- Unset: exactly one value, required.
- "?":   one value, optional. A Cardinal may be omitted; an Option may appear
         without a value and then takes its preset (or True).
- "+":   one or more values, required (variadic).
- "*":   zero or more values, optional (variadic).

Cardinal names accept the bracket notation:
    "<file>" required, "[file]" optional, "<files...>" / "[files...]" variadic.

Option and Flag names
- at most one short name ("-p", one character, digits allowed)
- at most one long name ("--port", "--dry-run"; unicode letters allowed,
  underscores rejected)
- the value key comes from the long name ("--dry-run" -> "dry_run",
  "--no-color" -> "color"), else from the short name.

Quick example:
    >>> from skipper.arguments import Cardinal, Option, Flag
    >>> file = Cardinal("<file>")
    >>> port = Option("-p", "--port", metavar="number", type=int)
    >>> debug = Flag("-d", "--debug", conflicts=("silent",))
"""
import builtins
import functools
import operator
import re
from collections.abc import Iterable, Mapping, Set
from types import MappingProxyType, MethodType

from rich.text import Text

from .utils import *


class ArgumentType(type):
    """
    Metaclass giving specs their introspection and sealing.

    - __typename__ is the kebab-cased class name, used in every registration
      error ("option 'names' ...").
    - every name in __introspectable__ becomes a read-only mirror property.
    - __repr__ / __rich_repr__ list __displayable__ (or __introspectable__).
    - factory-backed classes (one per instance) cannot be subclassed.
    """
    __introspectable__ = ()
    __displayable__ = Unset

    def __new__(cls, name, bases, namespace, **options):
        self = super().__new__(
            cls,
            name,
            bases,
            namespace | {
                "__typename__": kebab(name),
                "__module__": "dynamic-factory::arguments",
            } | {
                name: mirror(name) for name in namespace.get("__introspectable__", ())
            },
            )

        @rename("__repr__")
        def __repr__(self):
            return f"{type(self).__typename__}({
                ", ".join(map(functools.partial(operator.mod, "%s=%r"), self.__rich_repr__()))
            })"
        self.__repr__ = __repr__

        @rename("__rich_repr__")
        def __rich_repr__(self):
            for name in coalesce(type(self).__displayable__, type(self).__introspectable__):
                yield name, getattr(self, name)
        self.__rich_repr__ = __rich_repr__

        if options.get("factory", False):
            @rename("__init_subclass__")
            def __init_subclass__(cls, **options):  # NOQA: F-841
                raise TypeError(f"type {self.__name__!r} is not an acceptable base type")
            self.__init_subclass__ = classmethod(__init_subclass__)

        return self


def _build(cls, metadata, /):
    # One sealed subclass per instance keeps each spec's properties independent.
    self = object.__new__(builtins.type(cls)(cls.__name__, (cls,), dict(cls.__dict__), factory=True))
    self._callback = Unset
    for name, value in metadata.items():
        setattr(self, "_" + name, value)
    return self


def _sanitize_metadata(cls, metadata, /):
    """
    Normalize 'group' and 'descr', shared by every spec.

    group defaults to the class heading ("arguments" or "options"); descr
    defaults to None. Both must be non-empty strings when given.
    """
    if not isinstance(group := metadata["group"], str | Unset):
        raise TypeError(f"{cls.__typename__} 'group' must be a string")
    elif isinstance(group, str) and not (group := group.strip()):
        raise ValueError(f"{cls.__typename__} 'group' cannot be empty")
    metadata["group"] = coalesce(group, cls.__heading__)

    if not isinstance(descr := metadata["descr"], str | Text | Unset):
        raise TypeError(f"{cls.__typename__} 'descr' must be a string")
    elif isinstance(descr, str) and not (descr := descr.strip()):
        raise ValueError(f"{cls.__typename__} 'descr' cannot be empty")
    metadata["descr"] = coalesce(descr)


def _sanitize_named_metadata(cls, metadata, /):
    """
    Split 'names' into one short and one long name and derive the value key.

    Raises TypeError when no name is given, ValueError for bad spellings,
    duplicates, or more than one short or long name.
    """
    short = long = None
    if not metadata["names"]:
        raise TypeError(f"{cls.__typename__} must specify at least one name")

    for name in metadata["names"]:
        if not isinstance(name, str):
            raise TypeError(f"{cls.__typename__} names must be strings")
        elif not (name := name.strip()):
            raise ValueError(f"{cls.__typename__} names cannot be empty-strings")
        elif re.fullmatch(r"-[^\W_]", name):
            if short is not None:
                raise ValueError(f"{cls.__typename__} cannot have more than one short name ({short!r}, {name!r})")
            short = name
        elif re.fullmatch(r"--[^\W_](-?[^\W_]+)*", name):
            if long is not None:
                raise ValueError(f"{cls.__typename__} cannot have more than one long name ({long!r}, {name!r})")
            long = name
        else:
            raise ValueError(f"{cls.__typename__} name {name!r} must look like '-x' or '--name' (unicodes are allowed)")

    negate = issubclass(cls, Flag) and long is not None and long.startswith("--no-")
    if long is not None:
        key = long[len("--no-" if negate else "--"):].replace("-", "_")
    else:
        key = short[1:]

    metadata["names"] = tuple(name for name in (short, long) if name is not None)
    metadata["short"] = short
    metadata["long"] = long
    metadata["key"] = key
    metadata["negate"] = negate


def _sanitize_valued_metadata(cls, metadata, /):
    """
    Validate 'metavar', 'type', 'nargs' and 'choices' for value-taking specs.

    type is Unset (no transform) or a callable taking the raw string. choices
    reject duplicates unless given as a Set, and are stored as a tuple.
    """
    if not isinstance(metavar := metadata["metavar"], str | Unset):
        raise TypeError(f"{cls.__typename__} 'metavar' must be a string")
    elif isinstance(metavar, str) and not (metavar := metavar.strip()):
        raise ValueError(f"{cls.__typename__} 'metavar' cannot be empty")
    metadata["metavar"] = metavar

    if metadata["type"] is not Unset and not callable(metadata["type"]):
        raise TypeError(f"{cls.__typename__} 'type' must be callable")

    if not isinstance(nargs := metadata["nargs"], str | Unset):
        raise TypeError(f"{cls.__typename__} 'nargs' must be a string")
    if isinstance(nargs, str) and nargs not in ("?", "+", "*"):
        raise ValueError(f"{cls.__typename__} 'nargs' must be one of '?', '+', or '*'")

    if not isinstance(choices := metadata["choices"], Iterable) or isinstance(choices, str):
        raise TypeError(f"{cls.__typename__} 'choices' must be a non-string iterable")
    if not isinstance(choices, Set):
        sanitized = []
        for choice in choices:
            if choice in sanitized:
                raise ValueError(f"{cls.__typename__} 'choices' cannot contain duplicates")
            sanitized.append(choice)
        choices = sanitized
    metadata["choices"] = tuple(choices)


def _sanitize_relational_metadata(cls, metadata, /):
    """
    Validate what a named spec says about other options and the environment.

    - conflicts: keys of options this one cannot be combined with.
    - implies: mapping key -> value applied when this option is set.
    - env: environment variable name feeding this option.
    """
    if not isinstance(conflicts := metadata["conflicts"], Iterable) or isinstance(conflicts, str):
        raise TypeError(f"{cls.__typename__} 'conflicts' must be an iterable of option keys")
    conflicts = tuple(conflicts)
    if not all(isinstance(key, str) and key for key in conflicts):
        raise TypeError(f"{cls.__typename__} 'conflicts' must contain non-empty strings")
    metadata["conflicts"] = conflicts

    if not isinstance(implies := metadata["implies"], Mapping):
        raise TypeError(f"{cls.__typename__} 'implies' must be a mapping")
    if not all(isinstance(key, str) and key for key in implies):
        raise TypeError(f"{cls.__typename__} 'implies' keys must be non-empty strings")
    metadata["implies"] = MappingProxyType(dict(implies))

    if not isinstance(env := metadata["env"], str | Unset):
        raise TypeError(f"{cls.__typename__} 'env' must be a string")
    elif isinstance(env, str) and not (env := env.strip()):
        raise ValueError(f"{cls.__typename__} 'env' cannot be empty")
    metadata["env"] = coalesce(env)


class _Handled:
    # Handler forwarding shared by all specs.

    def __call__(self, *params):
        if self._callback is Unset:
            return
        return self._callback(*params)


class Cardinal(_Handled, metaclass=ArgumentType):
    """
    Positional argument specification.

    A Cardinal is declared either in a command callback signature (as the
    default of a positional-only parameter, whose name it borrows when none is
    given) or registered with Command.add().

    Properties
    - name, nargs, type, default, choices, group, descr, hidden
    - required / variadic: derived from nargs
    - label: usage form ("<file>", "[file]", "<files...>")
    """
    __heading__ = "arguments"

    __introspectable__ = (
        "name",
        "nargs",
        "type",
        "default",
        "choices",
        "group",
        "descr",
        "hidden",
    )

    def __new__(
            cls,
            name=Unset,
            /,
            type=Unset,
            nargs=Unset,
            default=Unset,
            choices=(),
            group=Unset,
            descr=Unset,
            *,
            hidden=False
    ):
        """
        Construct a Cardinal spec.

        Parameters
        - name: Unset | str
          Plain name or bracket notation ("<file>", "[file]", "<files...>").
          Bracket notation and an explicit nargs cannot be combined.
        - type: Unset | Callable[[str], Any]
          Transform applied to each raw value. ValueError, TypeError and
          InvalidArgumentError raised by it become "invalidArgument" faults.
        - nargs: Unset | "?" | "+" | "*"
        - default: value used when the argument is absent.
        - choices: allowed values (checked after the transform).

        Raises
        - ValueError: a required argument with a default and no type, since
          that default could never be used.
        """
        metadata = {
            "name": name,
            "type": type,
            "nargs": nargs,
            "default": default,
            "choices": choices,
            "group": group,
            "descr": descr,
            "hidden": bool(hidden),
            "metavar": Unset,
        }

        if not isinstance(name, str | Unset):
            raise TypeError(f"{cls.__typename__} 'name' must be a string")
        if isinstance(name, str):
            if not (name := name.strip()):
                raise ValueError(f"{cls.__typename__} 'name' cannot be empty")
            if match := re.fullmatch(r"(?P<open>[<\[])(?P<name>[^<>\[\]]+?)(?P<dots>\.\.\.)?(?P<close>[>\]])", name):
                if (match["open"], match["close"]) not in (("<", ">"), ("[", "]")):
                    raise ValueError(f"{cls.__typename__} 'name' has unbalanced brackets: {name!r}")
                if nargs is not Unset:
                    raise TypeError(f"{cls.__typename__} cannot combine bracket notation with 'nargs'")
                required = match["open"] == "<"
                if match["dots"]:
                    nargs = "+" if required else "*"
                else:
                    nargs = Unset if required else "?"
                name = match["name"].strip()
            elif name.endswith("..."):
                if nargs is not Unset:
                    raise TypeError(f"{cls.__typename__} cannot combine bracket notation with 'nargs'")
                nargs, name = "+", name[:-3].strip()
            if not name:
                raise ValueError(f"{cls.__typename__} 'name' cannot be empty")
            metadata["name"], metadata["nargs"] = name, nargs

        _sanitize_metadata(cls, metadata)
        _sanitize_valued_metadata(cls, metadata)
        del metadata["metavar"]

        if metadata["nargs"] in (Unset, "+") and default is not Unset and type is Unset:
            raise ValueError(
                f"a default value for a required argument is never used: {coalesce(metadata['name'], 'cardinal')!r}"
            )

        return _build(cls, metadata)

    @property
    def required(self):
        return self.nargs in (Unset, "+")

    @property
    def variadic(self):
        return self.nargs in ("+", "*")

    @property
    def label(self):
        name = coalesce(self.name, "arg") + ("..." if self.variadic else "")
        return f"<{name}>" if self.required else f"[{name}]"

    def __cardinal__(self):
        return self


class Option(_Handled, metaclass=ArgumentType):
    """
    Named option taking a value.

    Properties
    - names, short, long, key, flags (display form, e.g. "-p, --port <number>")
    - metavar, type, nargs, default, preset, choices
    - conflicts, implies, env, mandatory
    - group, descr, hidden
    - required / optional / variadic: derived from nargs
    """
    __heading__ = "options"

    __introspectable__ = (
        "names",
        "short",
        "long",
        "key",
        "metavar",
        "type",
        "nargs",
        "default",
        "preset",
        "choices",
        "conflicts",
        "implies",
        "env",
        "mandatory",
        "group",
        "descr",
        "hidden",
    )

    __displayable__ = (
        "names",
        "key",
        "metavar",
        "nargs",
        "default",
        "mandatory",
        "group",
        "descr",
    )

    def __new__(
            cls,
            *names,
            metavar=Unset,
            type=Unset,
            nargs=Unset,
            default=Unset,
            preset=Unset,
            choices=(),
            conflicts=(),
            implies=MappingProxyType({}),
            env=Unset,
            mandatory=False,
            group=Unset,
            descr=Unset,
            hidden=False
    ):
        """
        Construct an Option spec.

        Parameters
        - names: one short and/or one long name.
        - metavar: value label in help; defaults to the key.
        - type: transform applied to each raw value (see Cardinal).
        - nargs: Unset | "?" | "+" | "*" (see module docs).
        - default: initial value, recorded with source "default".
        - preset: value stored when an optional option appears without one.
        - choices: allowed values (checked after the transform).
        - conflicts / implies / env: see _sanitize_relational_metadata.
        - mandatory: a value must be present after parsing (any source).
        """
        metadata = {
            "names": names,
            "metavar": metavar,
            "type": type,
            "nargs": nargs,
            "default": default,
            "preset": preset,
            "choices": choices,
            "conflicts": conflicts,
            "implies": implies,
            "env": env,
            "mandatory": bool(mandatory),
            "group": group,
            "descr": descr,
            "hidden": bool(hidden),
        }
        _sanitize_metadata(cls, metadata)
        _sanitize_named_metadata(cls, metadata)
        _sanitize_valued_metadata(cls, metadata)
        _sanitize_relational_metadata(cls, metadata)
        del metadata["negate"]

        metadata["metavar"] = coalesce(metadata["metavar"], metadata["key"].replace("_", "-"))
        if preset is not Unset and metadata["nargs"] not in ("?", "*"):
            raise TypeError(f"{cls.__typename__} 'preset' requires an optional value (nargs '?' or '*')")

        return _build(cls, metadata)

    @property
    def negate(self):
        return False

    @property
    def required(self):
        return self.nargs in (Unset, "+")

    @property
    def optional(self):
        return self.nargs in ("?", "*")

    @property
    def variadic(self):
        return self.nargs in ("+", "*")

    @property
    def flags(self):
        metavar = self.metavar + ("..." if self.variadic else "")
        return ", ".join(self.names) + (f" <{metavar}>" if self.required else f" [{metavar}]")

    def is_(self, token, /):
        """True when token is one of this option's names."""
        return token in self._names

    def __option__(self):
        return self


class Flag(_Handled, metaclass=ArgumentType):
    """
    Named option taking no value.

    A Flag stores True when present. A Flag whose long name starts with
    "--no-" is negated: it stores False under the positive key, and that key
    defaults to True unless the positive flag is registered too.
    """
    __heading__ = "options"

    __introspectable__ = (
        "names",
        "short",
        "long",
        "key",
        "negate",
        "default",
        "conflicts",
        "implies",
        "env",
        "mandatory",
        "group",
        "descr",
        "hidden",
    )

    __displayable__ = (
        "names",
        "key",
        "negate",
        "default",
        "group",
        "descr",
    )

    def __new__(
            cls,
            *names,
            default=Unset,
            conflicts=(),
            implies=MappingProxyType({}),
            env=Unset,
            mandatory=False,
            group=Unset,
            descr=Unset,
            hidden=False
    ):
        metadata = {
            "names": names,
            "default": default,
            "conflicts": conflicts,
            "implies": implies,
            "env": env,
            "mandatory": bool(mandatory),
            "group": group,
            "descr": descr,
            "hidden": bool(hidden),
        }
        _sanitize_metadata(cls, metadata)
        _sanitize_named_metadata(cls, metadata)
        _sanitize_relational_metadata(cls, metadata)
        return _build(cls, metadata)

    nargs = Unset
    type = Unset
    preset = Unset
    choices = ()
    required = False
    optional = False
    variadic = False

    @property
    def flags(self):
        return ", ".join(self.names)

    def is_(self, token, /):
        """True when token is one of this flag's names."""
        return token in self._names

    def __flag__(self):
        return self


def _decorator(factory, hook, /):
    # Shared shape of @cardinal/@option/@flag: build the spec now, bind once later.
    def decorator(*args, **kwargs):
        spec = factory(*args, **kwargs)

        @rename(factory.__typename__)
        def wrapper(callback, /):
            if not callable(callback):
                raise TypeError(f"@{factory.__typename__}() must be applied to a callable")
            if spec._callback is not Unset:  # NOQA: E-501
                raise TypeError(f"@{factory.__typename__}() must be applied only once")
            spec._callback = callback
            return spec

        setattr(wrapper, hook, MethodType(rename(lambda self: spec, hook), wrapper))
        return wrapper

    return rename(decorator, factory.__typename__)


cardinal = _decorator(Cardinal, "__cardinal__")
cardinal.__doc__ = """
Build a Cardinal and bind the decorated function as its handler.

    @cardinal("<file>")
    def file(value): ...

The handler receives the processed value once positional arguments are
processed.
"""

option = _decorator(Option, "__option__")
option.__doc__ = """
Build an Option and bind the decorated function as its handler.

    @option("-p", "--port", type=int)
    def port(value): ...

The handler receives the stored value after every assignment.
"""

flag = _decorator(Flag, "__flag__")
flag.__doc__ = """
Build a Flag and bind the decorated function as its handler.

    @flag("-v", "--verbose")
    def verbose(value): ...
"""


__all__ = (
    # Classes (specifications)
    "Cardinal",
    "Option",
    "Flag",

    # Decorators
    "cardinal",
    "option",
    "flag",
)

del ArgumentType
