"""
Skipper command layer: build command trees, classify tokens, dispatch.

What this module provides
- Command: a node of the command tree. It owns its options and positional
  arguments, classifies raw tokens, routes to subcommands (including external
  executables), validates, and runs its action with lifecycle hooks.
- command(...): create a Command, or a decorator producing one.
- invoke(obj, prompt): run a Command (or a plain callable) against a prompt.

Quick start
    from skipper import command, Cardinal, Option, Flag

    @command(version="1.0.0")
    def serve(
        root=Cardinal("<dir>"),
        /,
        port=Option("-p", "--port", type=int, default=80),
        *,
        debug=Flag("-d", "--debug"),
    ):
        print(root, port, debug)

    if __name__ == "__main__":
        serve.parse()

Parsing model
- classify() walks the tokens once. Known options of this command are
  consumed (with their values) and assigned; everything else lands in
  "operands" or "unknown". Classification stops at "--", at a subcommand
  name when positional options are on, or at the first operand when
  pass-through is on.
- the first operand may name a child (or alias), the help command, or fall
  through to the default child; otherwise this command handles the tokens.
- every failure goes through Command.trigger(), which writes the fault to the
  err console, calls the fallback (if any), then ends the process (shell
  mode) or raises the fault.

Values
- values / sources: key -> value and key -> Source for this command.
- getvalue / setvalue / getsource / allvalues: value accessors,
  with inherited lookups across ancestors.
"""
import asyncio
import copy
import difflib
import inspect
import logging
import os
import re
import shlex
import sys
import textwrap
from collections import defaultdict
from collections.abc import Iterable
from enum import StrEnum
from inspect import Parameter
from typing import NamedTuple

from rich.console import Console

from . import processes
from .arguments import Cardinal, Option, Flag
from .faults import *
from .renderers import Help
from .utils import *

logger = logging.getLogger(__name__)

_NEGATIVE_NUMBER = re.compile(r"-(\d+|\d*\.\d+)(e[+-]?\d+)?")

_HOOKS = ("pre-subcommand", "pre-action", "post-action")

_HELPTEXTS = ("before", "after", "before-all", "after-all")


class Source(StrEnum):
    """Where an option value came from."""
    DEFAULT = "default"
    CONFIG = "config"
    ENV = "env"
    CLI = "cli"
    IMPLIED = "implied"


class Classified(NamedTuple):
    """Result of Command.classify(): tokens left after options were consumed."""
    operands: list
    unknown: list


def _invoker(callback):
    """
    Build a __call__ mirroring callback's signature and forwarding to it.

    Calling a Command directly runs its callback without parsing; parameter
    defaults are the specs' defaults (None when unset, False for flags).
    """
    parameters = inspect.signature(callback).parameters.values()

    signature = [self := "self" if "self" not in map(lambda x: x.name, parameters) else "__self__"]
    arguments = []
    slashed = False
    starred = False

    for parameter in parameters:
        if parameter.kind is Parameter.POSITIONAL_OR_KEYWORD and not slashed:
            signature.append("/")
            slashed = True
        if parameter.kind is Parameter.KEYWORD_ONLY and not starred:
            signature.append("*")
            starred = True
        signature.append(name := parameter.name)
        arguments.append(f"{name}={name}" if parameter.kind is Parameter.KEYWORD_ONLY else name)

    if len(signature) > 1 and signature[1] == "/":
        del signature[1]

    exec(textwrap.dedent(f"""
        @rename("__call__")
        def __call__({", ".join(signature)}):
            return {self}._callback({", ".join(arguments)})
    """), globals(), namespace := locals())

    namespace["__call__"].__doc__ = f"Forward to {callback.__qualname__}() without parsing."

    def initial(spec):
        return False if isinstance(spec, Flag) else coalesce(spec.default)

    namespace["__call__"].__defaults__ = tuple(
        initial(_resolve_spec(parameter.default)) for parameter in parameters
        if parameter.kind is not Parameter.KEYWORD_ONLY
    )
    namespace["__call__"].__kwdefaults__ = {
        parameter.name: initial(_resolve_spec(parameter.default)) for parameter in parameters
        if parameter.kind is Parameter.KEYWORD_ONLY
    }
    return namespace["__call__"]


class CommandType(type):
    """
    Metaclass for Command: mirrors, repr, sealing, and the generated __call__.

    - factory: the class is a per-instance concrete Command, sealed against
      subclassing; with a callback it also receives a __call__ built by
      _invoker(callback).
    """
    __introspectable__ = ()
    __displayable__ = Unset

    def __new__(cls, name, bases, namespace, **options):
        if options.get("factory", False) and options.get("callback", Unset) is not Unset:
            namespace["__call__"] = _invoker(options["callback"])

        self = super().__new__(
            cls,
            name,
            bases,
            namespace | {
                "__typename__": kebab(name),
                "__module__": "dynamic-factory::commands",
            } | {
                name: mirror(name) for name in namespace.get("__introspectable__", ())
            },
            )

        @rename("__repr__")
        def __repr__(self):
            return f"{type(self).__typename__}({
                ", ".join("%s=%r" % pair for pair in self.__rich_repr__())
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


def _resolve_spec(x):
    """
    Return the Cardinal/Option/Flag behind x (a spec or a decorator wrapper),
    or None when x is not argument-resoluble.
    """
    for hook, kind in (("__cardinal__", Cardinal), ("__option__", Option), ("__flag__", Flag)):
        if callable(getattr(x, hook, None)):
            spec = getattr(x, hook)()
            if not isinstance(spec, kind):
                raise TypeError(f"{hook}() non-{kind.__typename__} returned")
            return spec
    return None


def _process_source(cls, metadata):
    """
    Turn the callback signature into (parameter, spec) bindings.

    Rules
    - every parameter needs a spec default (Cardinal, Option or Flag);
    - cardinals must be positional-only;
    - options and flags must not be positional-only or variadic.
    """
    bindings = metadata["bindings"] = []
    if (callback := metadata["callback"]) is Unset:
        return

    try:
        signature = inspect.signature(callback)
    except TypeError:
        raise TypeError(f"{cls.__typename__} 'callback' must be callable") from None
    except ValueError:
        raise ValueError(f"{cls.__typename__} 'callback' must be an inspectable callable") from None

    for name, parameter in signature.parameters.items():
        if parameter.default is Parameter.empty:
            raise TypeError(f"{cls.__typename__} 'callback' parameter {name!r} must have a default")
        if (spec := _resolve_spec(parameter.default)) is None:
            raise TypeError(f"{cls.__typename__} 'callback' parameter {name!r} default must be argument-resoluble")
        if isinstance(spec, Cardinal) and parameter.kind is not Parameter.POSITIONAL_ONLY:
            raise TypeError(f"{cls.__typename__} 'callback' cardinal at parameter {name!r}, parameter must be positional-only")
        if not isinstance(spec, Cardinal) and parameter.kind not in (Parameter.POSITIONAL_OR_KEYWORD, Parameter.KEYWORD_ONLY):
            raise TypeError(f"{cls.__typename__} 'callback' {type(spec).__typename__} at parameter {name!r}, parameter must be standard or keyword-only")
        bindings.append((name, spec))


def _process_strings(cls, metadata):
    """
    Validate name, aliases and help scalars; examples become a tuple.
    """
    for field in ("name", "descr", "summary", "usage", "epilog", "version", "group"):
        if not isinstance(value := metadata[field], str | Unset):
            raise TypeError(f"{cls.__typename__} {field!r} must be a string")
        if isinstance(value, str) and not (value := value.strip()):
            raise ValueError(f"{cls.__typename__} {field!r} cannot be empty")
        metadata[field] = value

    if isinstance(name := metadata["name"], str) and re.search(r"\s", name):
        raise ValueError(f"{cls.__typename__} 'name' cannot contain whitespace")

    if isinstance(metadata["aliases"], str) or not isinstance(metadata["aliases"], Iterable):
        raise TypeError(f"{cls.__typename__} 'aliases' must be an iterable of strings")
    aliases = []
    for alias in metadata["aliases"]:
        if not isinstance(alias, str) or not alias.strip() or re.search(r"\s", alias.strip()):
            raise ValueError(f"{cls.__typename__} aliases must be non-empty strings without whitespace")
        if (alias := alias.strip()) == metadata["name"]:
            raise ValueError(f"{cls.__typename__} alias {alias!r} cannot be the same as its command name")
        aliases.append(alias)
    metadata["aliases"] = tuple(aliases)

    if isinstance(metadata["examples"], str) or not isinstance(metadata["examples"], Iterable):
        raise TypeError(f"{cls.__typename__} 'examples' must be an iterable of strings")
    metadata["examples"] = tuple(metadata["examples"])

    if not isinstance(metadata["executable"], bool | str | Unset):
        raise TypeError(f"{cls.__typename__} 'executable' must be a boolean or a file name")
    if not isinstance(metadata["directory"], str | Unset):
        raise TypeError(f"{cls.__typename__} 'directory' must be a string")
    if metadata["executable"] and metadata["callback"] is not Unset:
        raise TypeError(f"{cls.__typename__} executable command cannot have a callback")


def _inherited(parent, name, value, default):
    # Unset settings come from the parent at creation time, else the default.
    if value is not Unset:
        return value
    if parent:
        return getattr(parent, "_" + name)
    return default


class Command(metaclass=CommandType):
    """
    A node in the command tree.

    Construction
    - Command(callback, ...): the callback's parameters declare positional
      arguments (positional-only parameters defaulting to Cardinal) and
      options (other parameters defaulting to Option or Flag). The callback is
      the action and receives the processed values.
    - Command(None, name=...) / Command(name=...): no action; a dispatch-only
      node, or an external executable with executable=True.

    Settings (keyword-only; Unset means inherited from the parent)
    - unknown: tolerate unknown options (not inherited)
    - excess: tolerate more operands than declared arguments
    - positional: options before a subcommand belong to this command only
    - passthrough: stop option parsing at the first operand (not inherited)
    - combine: "-ovalue" gives value to an optional "-o" (default True)
    - suggest: add "did you mean" hints (default True)
    - helpful: after an error, also print help (True) or this string
    - helper: help flag names, or False (default ("-h", "--help"))
    - group: heading of this command in its parent's help (not inherited)
    - helpcmd: True/False/name for the help command (default: implicit)
    - shell: on a fault, exit the process (default True) or raise it
    - fancy / colorful: rich styling
    - factory / renderer / launcher / out / err: pluggable collaborators
    """

    __introspectable__ = (
        "name",
        "aliases",
        "descr",
        "summary",
        "usage",
        "epilog",
        "examples",
        "version",
        "parent",
        "children",
        "cardinals",
        "options",
        "group",
        "hidden",
        "executable",
        "directory",
        "values",
        "sources",
        "args",
        "processed",
        "raw",
        "running",
        "shell",
        "fancy",
        "colorful",
    )

    __displayable__ = (
        "name",
        "aliases",
        "descr",
        "version",
        "children",
        "cardinals",
        "options",
        "shell",
    )

    @property
    def root(self):
        """The topmost command of this tree."""
        child, parent = self, self.parent
        while parent:
            child, parent = parent, parent.parent
        return child

    @property
    def path(self):
        """Commands from the root down to this one."""
        path = [command := self]
        while command.parent:
            path.append(command := command.parent)
        return tuple(reversed(path))

    def __new__(
            cls,
            source=Unset,
            /,
            parent=Unset,
            name=Unset,
            descr=Unset,
            summary=Unset,
            usage=Unset,
            epilog=Unset,
            examples=(),
            version=Unset,
            aliases=(),
            *,
            default=False,
            hidden=False,
            group=Unset,
            executable=Unset,
            directory=Unset,
            unknown=Unset,
            excess=Unset,
            positional=Unset,
            passthrough=Unset,
            combine=Unset,
            suggest=Unset,
            helpful=Unset,
            helper=Unset,
            helpcmd=Unset,
            shell=Unset,
            fancy=Unset,
            colorful=Unset,
            factory=Unset,
            renderer=Unset,
            launcher=Unset,
            out=Unset,
            err=Unset
    ):
        if not isinstance(parent, Command | Unset):
            raise TypeError(f"{cls.__typename__} 'parent' must be a command")

        callback = Unset if source is None else source
        if callback is not Unset and not callable(callback):
            raise TypeError(f"{cls.__typename__} 'callback' must be callable")

        if callback is not Unset:
            name = coalesce(name, getattr(callback, "__name__", Unset))
            descr = coalesce(descr, inspect.getdoc(callback) or Unset)

        metadata = {
            "callback": callback,
            "name": name,
            "aliases": aliases,
            "descr": descr,
            "summary": summary,
            "usage": usage,
            "epilog": epilog,
            "examples": examples,
            "version": version,
            "group": group,
            "executable": executable,
            "directory": directory,
        }
        _process_source(cls, metadata)
        _process_strings(cls, metadata)

        if parent and metadata["name"] is Unset:
            raise TypeError(f"{cls.__typename__} subcommand must have a name")

        self = super().__new__(type(cls)(cls.__name__, (cls,), dict(cls.__dict__), factory=True, callback=callback))
        self._callback = metadata["callback"]
        self._name = coalesce(metadata["name"])
        self._aliases = metadata["aliases"]
        self._descr = coalesce(metadata["descr"])
        self._summary = coalesce(metadata["summary"])
        self._usage = coalesce(metadata["usage"])
        self._epilog = coalesce(metadata["epilog"])
        self._examples = metadata["examples"]
        self._version = coalesce(metadata["version"])
        self._executable = coalesce(metadata["executable"], False)
        self._directory = coalesce(metadata["directory"], "")
        self._hidden = bool(hidden)
        self._group = coalesce(metadata["group"], "commands")

        self._parent = None
        self._children = {}
        self._default = None
        self._cardinals = {}
        self._options = []
        self._switches = {}
        self._keywords = {}
        self._hooks = defaultdict(list)
        self._listeners = defaultdict(list)
        self._helptexts = defaultdict(list)

        self._values = {}
        self._sources = {}
        self._args = []
        self._processed = []
        self._raw = []
        self._running = None
        self._script = None
        self._snapshot = Unset
        self._helpflag = Unset
        self._helpcommand = Unset
        self._versionflag = None

        self._unknown = bool(coalesce(unknown, False))
        self._passthrough = bool(coalesce(passthrough, False))
        self._excess = bool(_inherited(parent, "excess", excess, False))
        self._positional = bool(_inherited(parent, "positional", positional, False))
        self._combine = bool(_inherited(parent, "combine", combine, True))
        self._suggest = bool(_inherited(parent, "suggest", suggest, True))
        self._helpful = _inherited(parent, "helpful", helpful, False)
        self._helper = _inherited(parent, "helper", helper, ("-h", "--help"))
        self._helpcmd = _inherited(parent, "helpcmd", helpcmd, Unset)
        self._shell = bool(_inherited(parent, "shell", shell, True))
        self._fancy = bool(_inherited(parent, "fancy", fancy, False))
        self._colorful = bool(_inherited(parent, "colorful", colorful, False))
        self._factory = _inherited(parent, "factory", factory, Command)
        self._renderer = _inherited(parent, "renderer", renderer, Unset) or Help()
        self._launcher = _inherited(parent, "launcher", launcher, processes.launch)
        self._out = _inherited(parent, "out", out, Unset) or Console()
        self._err = _inherited(parent, "err", err, Unset) or Console(stderr=True)
        self._fallback = _inherited(parent, "fallback", Unset, Unset)

        if self._helper is not False:
            if isinstance(self._helper, str) or not all(isinstance(name, str) for name in self._helper):
                raise TypeError(f"{cls.__typename__} 'helper' must be False or an iterable of flag names")
            self._helper = tuple(self._helper)
        if not isinstance(self._helpcmd, bool | str | Unset):
            raise TypeError(f"{cls.__typename__} 'helpcmd' must be a boolean or a command name")

        self._arity = 0
        for parameter, spec in metadata["bindings"]:
            self._register(spec, parameter)
            if isinstance(spec, Cardinal):
                self._arity += 1
            else:
                self._keywords[parameter] = spec

        if self._version:
            names = tuple(name for name in ("-V", "--version") if name not in self._switches)
            if names:
                self._versionflag = Flag(*names, descr="output the version number")
                self._register(self._versionflag)

        if parent:
            parent._attach(self, default=default)
        elif default:
            raise TypeError(f"{cls.__typename__} 'default' requires a parent")

        return self

    def __call__(self, *args, **kwargs):
        raise TypeError(f"{type(self).__typename__} {self.name!r} has no action")

    # ── Tree ─────────────────────────────────────────────────────────────────

    def _attach(self, child, /, *, default=False):
        if child.parent:
            raise ValueError(f"{type(self).__typename__} {child.name!r} already belongs to {child.parent.name!r}")
        if child.name is None:
            raise TypeError(f"{type(self).__typename__} subcommand must have a name")
        for name in (child.name, *child.aliases):
            if (matching := self._find_command(name)) is not None:
                raise ValueError(
                    f"cannot add command {child.name!r} as already have command {matching.name!r} using {name!r}"
                )
        if child._passthrough and not self._positional:
            raise ValueError(
                f"passthrough cannot be used for {child.name!r} without turning on positional for parent command(s)"
            )
        if default and self._default is not None:
            raise ValueError(f"{type(self).__typename__} {self.name!r} already has default command {self._default!r}")

        child._parent = self
        self._children[child.name] = child
        if default:
            self._default = child.name
        logger.debug("attached %r under %r", child.name, self.name)

    def attach(self, child, /, *, default=False):
        """
        Attach an already built command as a child.

        Settings are not copied from this command; a command can only belong
        to one tree.
        """
        if not isinstance(child, Command):
            raise TypeError(f"{type(self).__typename__} attach() argument must be a command")
        self._attach(child, default=default)
        return child

    def command(self, source=Unset, /, *args, **kwargs):
        """
        Create a child of this command through the configured factory.

        - @cmd.command / @cmd.command(...): decorator form.
        - cmd.command(callback, ...): direct form.
        - cmd.command(None, name=...) or cmd.command(name=..., executable=True):
          a child without action.
        """
        factory = self._factory

        @rename("command")
        def wrapper(source, /):
            if source is not None and not callable(source):
                raise TypeError("@command() must be applied to a callable")
            return factory(source, self, *args, **kwargs)

        if source is Unset and not kwargs.get("executable"):
            return wrapper
        return wrapper(None if source is Unset else source)

    def _find_command(self, name, /):
        if not name:
            return None
        if isinstance(name, Command):
            return name if name.parent is self else None
        for child in self._children.values():
            if child.name == name or name in child.aliases:
                return child
        return None

    # ── Registration ─────────────────────────────────────────────────────────

    def _register(self, spec, name=Unset, /):
        typename = type(self).__typename__
        if isinstance(spec, Cardinal):
            if (name := coalesce(spec.name, name)) is Unset:
                raise TypeError(f"{typename} cardinal must have a name")
            if name in self._cardinals:
                raise ValueError(f"{typename} argument {name!r} is already in use")
            if self._cardinals:
                previous, last = list(self._cardinals.items())[-1]
                if last.variadic:
                    raise TypeError(f"only the last argument can be variadic {previous!r}")
            self._cardinals[name] = spec
            return spec

        for flag in spec.names:
            if (other := self._switches.get(flag)) is not None:
                raise ValueError(
                    f"cannot add option '{spec.flags}' due to conflicting flag '{flag}', already used by option '{other.flags}'"
                )
        self._options.append(spec)
        self._switches.update(dict.fromkeys(spec.names, spec))

        if spec.negate:
            if "--" + spec.key.replace("_", "-") not in self._switches:
                self.setvalue(spec.key, coalesce(spec.default, True), Source.DEFAULT)
        elif spec.default is not Unset:
            self.setvalue(spec.key, spec.default, Source.DEFAULT)
        return spec

    def add(self, spec, /):
        """
        Register a Cardinal, Option or Flag on this command.

        Cardinals added this way need a name; their values show up in
        processed but are not passed to the action.
        """
        if (resolved := _resolve_spec(spec)) is None:
            raise TypeError(f"{type(self).__typename__} add() argument must be a cardinal, an option or a flag")
        return self._register(resolved)

    @property
    def helpflag(self):
        """The help Flag, or None when disabled (built lazily)."""
        if self._helpflag is Unset:
            self._helpflag = None
            if self._helper:
                names = tuple(name for name in self._helper if name not in self._switches)
                if names:
                    self._helpflag = Flag(*names, descr="display help for command")
        return self._helpflag

    @property
    def helpcmd(self):
        """
        The help Command, or None when there is none.

        The implicit help command (children, no action, no "help" child) is
        decided on every access; only the built command is kept.
        """
        if self._helpcmd is Unset:
            if not self._children or self._callback is not Unset or self._find_command("help") is not None:
                return None
        elif not self._helpcmd:
            return None
        if self._helpcommand is Unset:
            name = self._helpcmd if isinstance(self._helpcmd, str) else "help"
            helper = Command(None, name=name, descr="display help for command", helper=False, shell=self.shell)
            helper.add(Cardinal("[command]"))
            self._helpcommand = helper
        return self._helpcommand

    # ── Hooks and listeners ──────────────────────────────────────────────────

    def hook(self, event, listener=Unset, /):
        """
        Add a lifecycle hook: "pre-subcommand", "pre-action" or "post-action".

        Hooks are called as listener(hooked, actor): the command owning the
        hook and the command being run (or dispatched to). They may return
        awaitables. Usable as a decorator when listener is omitted.
        """
        if event not in _HOOKS:
            raise ValueError(f"{type(self).__typename__} hook event must be one of {', '.join(map(repr, _HOOKS))}")

        def wrapper(listener, /):
            if not callable(listener):
                raise TypeError(f"{type(self).__typename__} hook must be callable")
            self._hooks[event].append(listener)
            return listener

        return wrapper if listener is Unset else wrapper(listener)

    def listen(self, event, listener=Unset, /):
        """
        Subscribe to a synchronous event.

        - "option:<key>": listener(raw, source) after every value assignment.
        - "command:<name>": listener(operands, unknown) after that child ran.
        - "command:*": listener(operands, unknown) for unmatched operands.
        """
        def wrapper(listener, /):
            if not callable(listener):
                raise TypeError(f"{type(self).__typename__} listener must be callable")
            self._listeners[event].append(listener)
            return listener

        return wrapper if listener is Unset else wrapper(listener)

    def _listening(self, event):
        return bool(self._listeners.get(event))

    def _emit(self, event, *args):
        for listener in self._listeners.get(event, ()):
            listener(*args)

    def fallback(self, fallback, /):
        """
        Replace process termination with fallback(fault).

        The fallback may raise; if it returns, the default terminator still
        runs. Children created afterwards inherit it. Usable as a decorator.
        """
        if not callable(fallback):
            raise TypeError(f"{type(self).__typename__} fallback must be callable")
        self._fallback = fallback
        return fallback

    # ── Values ───────────────────────────────────────────────────────────────

    def getvalue(self, key, default=None, /):
        return self._values.get(key, default)

    def setvalue(self, key, value, /, source=Unset):
        """Store a value with its provenance (source may be Unset)."""
        self._values[key] = value
        if source is Unset:
            self._sources.pop(key, None)
        else:
            self._sources[key] = Source(source)
        return self

    def getsource(self, key, /, *, inherited=False):
        """
        Provenance of key; with inherited=True the topmost ancestor that
        knows the key wins.
        """
        if not inherited:
            return self._sources.get(key)
        source = None
        for command in reversed(self.path):
            if key in command._sources:
                source = command._sources[key]
        return source

    def allvalues(self):
        """Values of this command merged with its ancestors' (ancestors win)."""
        combined = {}
        for command in reversed(self.path):
            combined.update(command._values)
        return combined

    # ── Fault funnel ─────────────────────────────────────────────────────────

    def trigger(self, fault, /, **options):
        """
        Surface a fault: write it, call the fallback, then terminate.

        Never returns normally.
        """
        if (
                not hasattr(fault, "__trigger__") or
                not callable(fault.__trigger__) or
                not hasattr(fault, "__replace__") or
                not callable(fault.__replace__)
        ):
            raise TypeError("trigger() argument must have a __trigger__ and __replace__ methods")
        fault = copy.replace(fault, **({
            "command": self,
            "shell": self.shell,
            "fancy": self.fancy,
            "colorful": self.colorful,
        } | options))
        logger.debug("fault %s from %r: %s", getattr(fault, "category", "error"), self.name, fault)

        if not getattr(fault, "silent", False):
            self._err.print(fault)
            if isinstance(self._helpful, str):
                self._err.print(self._helpful, markup=False, highlight=False)
            elif self._helpful:
                self._err.print()
                self.output_help(error=True)

        if self._fallback:
            self._fallback(fault)
        trigger(fault)

    def error(self, message, /, *, exit_code=1, category=Unset):
        """Report a custom failure through the fault funnel."""
        options = {"exit_code": exit_code}
        if category is not Unset:
            options["category"] = category
        self.trigger(CommandException(message, **options))

    def _missing_argument(self, name):
        self.trigger(MissingArgumentError(
            f"missing required argument '{name}'",
            title="missing argument",
            hint=f"run '{self._route()} --help' to see the expected arguments",
        ))

    def _option_missing_argument(self, option):
        self.trigger(OptionMissingArgumentError(
            f"option '{option.flags}' argument missing",
            title="option argument missing",
            hint=f"pass a value after {option.long or option.short}",
        ))

    def _missing_mandatory_option_value(self, option):
        self.trigger(MissingMandatoryOptionValueError(
            f"required option '{option.flags}' not specified",
            title="required option",
        ))

    def _conflicting_option(self, option, conflicting):
        def best(option):
            # A negated/positive pair shares one key; name the one that set it.
            value = self._values.get(option.key)
            for other in self._options:
                if other.key == option.key and other.negate and value is False:
                    return other
            for other in self._options:
                if other.key == option.key and not other.negate:
                    return other
            return option

        def describe(option):
            option = best(option)
            if self._sources.get(option.key) == Source.ENV and option.env:
                return f"environment variable '{option.env}'"
            return f"option '{option.flags}'"

        self.trigger(ConflictingOptionError(
            f"{describe(option)} cannot be used with {describe(conflicting)}",
            title="conflicting options",
        ))

    def _unknown_option(self, flag):
        if self._unknown:
            return
        hint = Unset
        if flag.startswith("--") and self._suggest:
            candidates = []
            command = self
            while command:
                candidates.extend(
                    option.long for option in command._renderer.visible_options(command) if option.long
                )
                command = command.parent
                if command and command._positional:
                    break
            if matches := difflib.get_close_matches(flag.split("=", 1)[0], candidates, 1):
                hint = f"did you mean {matches[0]}?"
        self.trigger(UnknownOptionError(
            f"unknown option '{flag}'",
            title="unknown option",
            **({"hint": hint} if hint else {}),
        ))

    def _unknown_command(self):
        name = self._args[0]
        hint = Unset
        if self._suggest:
            candidates = []
            for child in self._renderer.visible_commands(self):
                candidates.append(child.name)
                candidates.extend(child.aliases)
            if matches := difflib.get_close_matches(name, candidates, 1):
                hint = f"did you mean {matches[0]}?"
        self.trigger(UnknownCommandError(
            f"unknown command '{name}'",
            title="unknown command",
            **({"hint": hint} if hint else {}),
        ))

    def _excess_arguments(self, received):
        if self._excess:
            return
        expected = len(self._cardinals)
        s = "" if expected == 1 else "s"
        scope = f" for '{self.name}'" if self.parent else ""
        self.trigger(ExcessArgumentsError(
            f"too many arguments{scope}. expected {expected} argument{s} but got {len(received)}.",
            title="too many arguments",
        ))

    def _route(self):
        return " ".join(step.name or "" for step in self.path)

    # ── Help ─────────────────────────────────────────────────────────────────

    def helptext(self, position, text, /):
        """
        Add text printed around the built-in help.

        - "before" / "after": around this command's help.
        - "before-all" / "after-all": around the help of this command and of
          every command below it.

        text is a string or a callable text(command, error) returning one,
        called with the command whose help is printed. Empty results print
        nothing.
        """
        if position not in _HELPTEXTS:
            raise ValueError(f"{type(self).__typename__} help text position must be one of {', '.join(map(repr, _HELPTEXTS))}")
        if not isinstance(text, str) and not callable(text):
            raise TypeError(f"{type(self).__typename__} help text must be a string or callable")
        self._helptexts[position].append(text)
        return self

    def _helptext(self, position, command, error):
        for text in self._helptexts.get(position, ()):
            if rendered := text if isinstance(text, str) else text(command, error):
                yield rendered

    def output_help(self, *, error=False):
        """Print help to the out console (err when error=True)."""
        console = self._err if error else self._out
        texts = [text for step in self.path for text in step._helptext("before-all", self, error)]
        texts.extend(self._helptext("before", self, error))
        for text in texts:
            console.print(text, markup=False, highlight=False)
        console.print(self._renderer.render(self, console, error=error))
        texts = list(self._helptext("after", self, error))
        texts.extend(text for step in reversed(self.path) for text in step._helptext("after-all", self, error))
        for text in texts:
            console.print(text, markup=False, highlight=False)

    def help(self, *, error=False):
        """Print help and terminate (exit code 1 when error=True, else 0)."""
        self.output_help(error=error)
        self.trigger(HelpExit("(outputHelp)", exit_code=1 if error else 0, silent=True))

    def _output_help_if_requested(self, args):
        if (helpflag := self.helpflag) and any(helpflag.is_(arg) for arg in args):
            self.output_help()
            self.trigger(HelpDisplayed("(outputHelp)", silent=True))

    # ── Classification ───────────────────────────────────────────────────────

    def _negative_number(self, arg):
        if not _NEGATIVE_NUMBER.fullmatch(arg):
            return False
        # A digit short flag anywhere up the chain makes "-1" an option.
        return not any(
            option.short and re.fullmatch(r"-\d", option.short)
            for command in self.path for option in command._options
        )

    def classify(self, tokens, /):
        """
        Consume this command's options from tokens.

        Recognized options are assigned as they are met; the rest is split
        into operands and unknown tokens (everything from the first unknown
        option on goes to unknown). Returns Classified(operands, unknown).
        """
        operands = []
        unknown = []
        dest = operands
        args = list(tokens)
        index = 0
        active = None
        group = None

        def option_like(arg):
            return len(arg) > 1 and arg[0] == "-"

        while index < len(args) or group:
            if group:
                arg, group = group, None
            else:
                arg = args[index]
                index += 1

            if arg == "--":
                if dest is unknown:
                    dest.append(arg)
                dest.extend(args[index:])
                break

            if active and (not option_like(arg) or self._negative_number(arg)):
                self._assign(active, arg, Source.CLI)
                continue
            active = None

            if option_like(arg) and (option := self._switches.get(arg)):
                if option.required:
                    if index >= len(args):
                        self._option_missing_argument(option)
                    self._assign(option, args[index], Source.CLI)
                    index += 1
                elif option.optional:
                    value = None
                    if index < len(args) and (not option_like(args[index]) or self._negative_number(args[index])):
                        value = args[index]
                        index += 1
                    self._assign(option, value, Source.CLI)
                else:
                    self._assign(option, None, Source.CLI)
                active = option if option.variadic else None
                continue

            if len(arg) > 2 and arg[0] == "-" and arg[1] != "-":
                if option := self._switches.get("-" + arg[1]):
                    if option.required or (option.optional and self._combine):
                        self._assign(option, arg[2:], Source.CLI)
                    else:
                        self._assign(option, None, Source.CLI)
                        group = "-" + arg[2:]
                    continue

            if re.match(r"--[^=]+=", arg):
                name, _, value = arg.partition("=")
                if (option := self._switches.get(name)) and (option.required or option.optional):
                    self._assign(option, value, Source.CLI)
                    continue

            if dest is operands and option_like(arg) and not (not self._children and self._negative_number(arg)):
                dest = unknown

            if (self._positional or self._passthrough) and not operands and not unknown:
                if self._find_command(arg):
                    operands.append(arg)
                    unknown.extend(args[index:])
                    break
                if (helpcmd := self.helpcmd) and arg == helpcmd.name:
                    operands.append(arg)
                    operands.extend(args[index:])
                    break
                if self._default:
                    unknown.append(arg)
                    unknown.extend(args[index:])
                    break

            if self._passthrough:
                dest.append(arg)
                dest.extend(args[index:])
                break

            dest.append(arg)

        return Classified(operands, unknown)

    def _transform(self, spec, raw, message):
        try:
            value = spec.type(raw) if spec.type is not Unset else raw
            if spec.choices and value not in spec.choices:
                raise InvalidArgumentError(f"allowed choices are {', '.join(map(str, spec.choices))}.")
        except (InvalidArgumentError, ValueError, TypeError) as exception:
            self.trigger(InvalidArgumentError(f"{message} {exception}", title="invalid argument", cause=exception))
        return value

    def _assign(self, option, raw, source):
        # The value-assignment signal: store, then notify the spec and listeners.
        if option is self._versionflag:
            self._out.print(self._version, markup=False, highlight=False)
            self.trigger(VersionDisplayed(self._version, silent=True))

        key = option.key
        value = raw
        if value is None and option.preset is not Unset:
            value = option.preset
        previous = self._values.get(key, Unset)

        if value is not None:
            if option.type is not Unset or option.choices:
                message = (
                    f"option '{option.flags}' argument '{value}' is invalid."
                    if source is Source.CLI else
                    f"environment variable '{option.env}' value '{value}' is invalid for option '{option.flags}'."
                )
                value = self._transform(option, value, message)
            if option.variadic:
                if previous is Unset or previous is option.default or not isinstance(previous, list):
                    value = [value]
                else:
                    value = [*previous, value]
        elif option.negate:
            value = False
        elif isinstance(option, Flag) or option.optional:
            value = True
        else:
            value = ""

        self.setvalue(key, value, source)
        logger.debug("%r: %s=%r (%s)", self.name, key, value, source)
        option(value)
        self._emit("option:" + key, raw, source)

    def _parse_env(self):
        for option in self._options:
            if not option.env or option.env not in os.environ:
                continue
            key = option.key
            if key not in self._values or self._sources.get(key) in (Source.DEFAULT, Source.CONFIG, Source.ENV):
                if option.required or option.optional:
                    self._assign(option, os.environ[option.env], Source.ENV)
                else:
                    self._assign(option, None, Source.ENV)

    def _parse_implied(self):
        def custom(key):
            return key in self._values and self._sources.get(key) not in (Source.DEFAULT, Source.IMPLIED)

        def applies(option):
            # With both --x and --no-x registered, only the side that set the value implies.
            if not any(other.key == option.key and other.negate != option.negate for other in self._options):
                return True
            value = self._values.get(option.key)
            return value is False if option.negate else value is not False

        for option in self._options:
            if option.implies and custom(option.key) and applies(option):
                for key, value in option.implies.items():
                    if not custom(key):
                        self.setvalue(key, value, Source.IMPLIED)

    # ── Validation ───────────────────────────────────────────────────────────

    def _check_mandatory(self):
        for command in reversed(self.path):
            for option in command._options:
                if option.mandatory and command._values.get(option.key) is None:
                    command._missing_mandatory_option_value(option)

    def _check_conflicts(self):
        for command in reversed(self.path):
            command._check_local_conflicts()

    def _check_local_conflicts(self):
        defined = [
            option for option in self._options
            if option.key in self._values and self._sources.get(option.key) != Source.DEFAULT
        ]
        for option in filter(lambda x: x.conflicts, defined):
            for conflicting in defined:
                if conflicting.key in option.conflicts:
                    self._conflicting_option(option, conflicting)

    def _process_arguments(self):
        cardinals = list(self._cardinals.items())
        args = self._args

        for index, (name, cardinal) in enumerate(cardinals):
            if cardinal.required and index >= len(args):
                self._missing_argument(name)
        if not (cardinals and cardinals[-1][1].variadic) and len(args) > len(cardinals):
            self._excess_arguments(args)

        processed = []
        for index, (name, cardinal) in enumerate(cardinals):
            value = cardinal.default
            if index < len(args):
                if cardinal.variadic:
                    value = [
                        self._transform(cardinal, raw, f"command-argument value '{raw}' is invalid for argument '{name}'.")
                        if cardinal.type is not Unset or cardinal.choices else raw
                        for raw in args[index:]
                    ]
                elif cardinal.type is not Unset or cardinal.choices:
                    message = f"command-argument value '{args[index]}' is invalid for argument '{name}'."
                    value = self._transform(cardinal, args[index], message)
                else:
                    value = args[index]
                cardinal(value)
            elif cardinal.variadic and value is Unset:
                value = []
            processed.append(coalesce(value))
        self._processed = processed

    # ── Dispatch ─────────────────────────────────────────────────────────────

    def _prepare(self):
        # First parse records the initial state; later parses start from it.
        if self._snapshot is Unset:
            self._snapshot = (dict(self._values), dict(self._sources))
        else:
            values, sources = self._snapshot
            self._values = dict(values)
            self._sources = dict(sources)
        self._args = []
        self._processed = []
        self._running = None

    @staticmethod
    def _chain(result, callback):
        """
        Run callback after result: directly, or after awaiting result.
        """
        if inspect.isawaitable(result):
            async def chained():
                await result
                outcome = callback()
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                return outcome
            return chained()
        return callback()

    def _chain_hooks(self, result, event):
        hooks = [(command, hook) for command in self.path for hook in command._hooks.get(event, ())]
        if event == "post-action":
            hooks.reverse()
        for command, hook in hooks:
            result = self._chain(result, lambda command=command, hook=hook: hook(command, self))
        return result

    def _dispatch_subcommand(self, name, operands, unknown):
        if (child := self._find_command(name)) is None:
            self.help(error=True)
        logger.debug("dispatching %r -> %r", self.name, child.name)
        child._prepare()

        result = Unset
        for hook in self._hooks.get("pre-subcommand", ()):
            result = self._chain(result, lambda hook=hook: hook(self, child))
        if child.executable:
            return self._chain(result, lambda: self._execute_subcommand(child, operands + unknown))
        return self._chain(result, lambda: child._parse_command(operands, unknown))

    def _dispatch_help_command(self, name):
        logger.debug("help command of %r for %r", self.name, name)
        if not name:
            self.help()
        child = self._find_command(name)
        if child and not child.executable:
            child.help()
        helpflag = self.helpflag
        flag = (helpflag.long or helpflag.short) if helpflag else "--help"
        return self._dispatch_subcommand(name, [], [flag])

    def _invoke(self):
        args = self._processed[:self._arity]
        kwargs = {
            parameter: self._values.get(spec.key, False if isinstance(spec, Flag) else None)
            for parameter, spec in self._keywords.items()
        }
        logger.debug("running action of %r", self.name)
        return self._callback(*args, **kwargs)

    def _parse_command(self, operands, unknown):
        parsed = self.classify(unknown)
        self._parse_env()
        self._parse_implied()
        operands = operands + parsed.operands
        unknown = parsed.unknown
        self._args = operands + unknown

        if operands and self._find_command(operands[0]):
            return self._dispatch_subcommand(operands[0], operands[1:], unknown)
        if (helpcmd := self.helpcmd) and operands and operands[0] == helpcmd.name:
            return self._dispatch_help_command(operands[1] if len(operands) > 1 else Unset)
        if self._default:
            self._output_help_if_requested(unknown)
            return self._dispatch_subcommand(self._default, operands, unknown)
        if self._children and not self._args and self._callback is Unset:
            self.help(error=True)

        self._output_help_if_requested(parsed.unknown)
        self._check_mandatory()
        self._check_conflicts()

        def check_unknown():
            if parsed.unknown:
                self._unknown_option(parsed.unknown[0])

        event = f"command:{self.name}"
        if self._callback is not Unset:
            check_unknown()
            self._process_arguments()
            result = self._chain_hooks(Unset, "pre-action")
            result = self._chain(result, self._invoke)
            if self.parent:
                result = self._chain(result, lambda: self.parent._emit(event, operands, unknown))
            return self._chain_hooks(result, "post-action")
        if self.parent and self.parent._listening(event):
            check_unknown()
            self._process_arguments()
            self.parent._emit(event, operands, unknown)
        elif operands:
            if self._listening("command:*"):
                self._emit("command:*", operands, unknown)
            elif self._children:
                self._unknown_command()
            else:
                check_unknown()
                self._process_arguments()
        elif self._children:
            check_unknown()
            self.help(error=True)
        else:
            check_unknown()
            self._process_arguments()
        return Unset

    def _execute_subcommand(self, child, args):
        self._check_mandatory()
        self._check_conflicts()

        script = next((command._script for command in reversed(self.path) if command._script), None)
        file = child.executable if isinstance(child.executable, str) else f"{self.name}-{child.name}"
        directory = self._directory
        if script:
            directory = os.path.join(os.path.dirname(os.path.realpath(script)), directory)
        if directory:
            local = processes.find_executable(directory, file)
            if not local and child.executable is True and script:
                legacy = os.path.splitext(os.path.basename(script))[0]
                if legacy != self.name:
                    local = processes.find_executable(directory, f"{legacy}-{child.name}")
            file = local or file

        if os.path.splitext(file)[1] in processes.SOURCE_EXTENSIONS:
            argv = [sys.executable, *processes.increment_inspector_port(processes.interpreter_flags()), file, *args]
        else:
            argv = [file, *args]
        logger.debug("executing %r for %r", argv, child.name)

        try:
            process = self._launcher(argv)
        except FileNotFoundError as exception:
            raise FileNotFoundError(processes.describe_missing(file, child.name, directory)) from exception
        except PermissionError as exception:
            raise PermissionError(f"'{file}' not executable") from exception
        except OSError as exception:
            fault = ExecuteSubCommandAsync("(error)", exit_code=1, cause=exception)
            if self._fallback:
                self._fallback(copy.replace(fault, command=self))
            elif self.shell:
                sys.exit(1)
            raise
        self._running = process

        with processes.forward_signals(process):
            code = process.wait()
        code = 1 if code is None else code
        logger.debug("%r exited with %s", child.name, code)

        if self._fallback:
            self._fallback(ExecuteSubCommandAsync("(close)", exit_code=code, command=self))
        elif self.shell:
            sys.exit(code)

    # ── Entry points ─────────────────────────────────────────────────────────

    def _prepare_argv(self, argv, origin):
        if argv is Unset:
            argv, origin = list(sys.argv), coalesce(origin, "python")
        elif isinstance(argv, str):
            argv = shlex.split(argv)
        elif isinstance(argv, Iterable):
            argv = list(argv)
            if not all(isinstance(item, str) for item in argv):
                raise TypeError("parse() argument must be a string or an iterable of strings")
        else:
            raise TypeError("parse() argument must be a string or an iterable of strings")

        match coalesce(origin, "user"):
            case "python":
                self._script = argv[0] if argv else None
                args = argv[1:]
            case "user":
                self._script = None
                args = argv
            case _:
                raise ValueError(f"unexpected parse origin {origin!r}, expected 'python' or 'user'")

        if self._name is None:
            self._name = os.path.splitext(os.path.basename(self._script))[0] if self._script else ""
        self._raw = argv
        return args

    def parse(self, argv=Unset, /, *, origin=Unset):
        """
        Parse argv and run the matching action.

        - argv Unset: sys.argv (first element is the script).
        - str: split with shlex; list of str: used as is. Both are user
          tokens unless origin="python" says the first one is the script.

        Async hooks or actions are run to completion with asyncio.run();
        inside a running event loop use parse_async() instead.
        """
        args = self._prepare_argv(argv, origin)
        self._prepare()
        result = self._parse_command([], args)
        if inspect.isawaitable(result):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(_awaited(result))
            else:
                if inspect.iscoroutine(result):
                    result.close()
                raise RuntimeError("parse() cannot run async actions inside a running event loop, use parse_async()")
        return self

    async def parse_async(self, argv=Unset, /, *, origin=Unset):
        """Like parse(), awaiting async hooks and actions in order."""
        args = self._prepare_argv(argv, origin)
        self._prepare()
        result = self._parse_command([], args)
        if inspect.isawaitable(result):
            await result
        return self

    def __invoke__(self, prompt=Unset):
        return self.parse(prompt)


async def _awaited(awaitable):
    return await awaitable


def command(source=Unset, /, *args, **kwargs):
    """
    Create a Command, or return a decorator creating one.

    - command(func, ...): Command bound to func.
    - @command / @command(...): decorator.
    - command(None, name=...) or command(name=..., executable=True): a
      command without action.
    """
    @rename("command")
    def wrapper(source, /):
        if source is not None and not callable(source):
            raise TypeError("@command() must be applied to a callable")
        return Command(source, *args, **kwargs)

    if source is Unset and not kwargs.get("executable"):
        return wrapper
    return wrapper(None if source is Unset else source)


def invoke(object, prompt=Unset, /):
    """
    Run a command (anything with __invoke__) or a plain callable.

    prompt: Unset (sys.argv), a shell-like string, or an iterable of tokens.
    """
    if hasattr(object, "__invoke__") and callable(object.__invoke__):
        return object.__invoke__(prompt)

    if callable(object):
        return invoke(command(object), prompt)

    target = "argument" if prompt is Unset else "first argument"
    raise TypeError(f"invoke() {target} must implement __invoke__ method") from None


__all__ = (
    "Command",
    "Source",
    "Classified",
    "command",
    "invoke",
)

del CommandType
