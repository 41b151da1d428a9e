"""
Skipper faults: the error taxonomy and its rich rendering.

Scope
- FaultCode: stable numeric identifiers grouped by domain.
- CommandException: base class carrying a message plus a read-only options
  mapping (exit code, title, hint, command, styling flags). Every subclass pins
  a stable category string such as "unknownOption" or "missingArgument".
- trigger(): the default terminator. In shell mode it ends the process with the
  fault's exit code; otherwise it raises the fault to the caller.

Categories
- routing:       unknownCommand
- options:       unknownOption, optionMissingArgument,
                 missingMandatoryOptionValue, conflictingOption
- positionals:   missingArgument, excessArguments
- delegated:     invalidArgument, executeSubCommandAsync
- informational: help, helpDisplayed, version (exit code 0 by default)
- generic:       error

Host customization through __main__
- __styles__: palette overrides for the rendering.
- __codes__: mapping FaultCode -> label shown instead of the number.
- __prog__: program name shown in the fault header.
"""
import copy
import sys
from collections import defaultdict
from enum import IntEnum
from types import MappingProxyType

from rich.console import Group
from rich.panel import Panel
from rich.text import Text

from .utils import Unset, coalesce


class FaultCode(IntEnum):
    """
    canonical fault codes (stable identifiers).

    grouping
    - informational (1000x): HELP, HELP_DISPLAYED, VERSION
    - generic (1100x): ERROR
    - routing (1110x): UNKNOWN_COMMAND
    - options (1111x): UNKNOWN_OPTION, OPTION_MISSING_ARGUMENT,
      MISSING_MANDATORY_OPTION_VALUE, CONFLICTING_OPTION
    - positionals (1112x): MISSING_ARGUMENT, EXCESS_ARGUMENTS
    - delegated (1113x): INVALID_ARGUMENT, EXECUTE_SUBCOMMAND_ASYNC
    """
    # --- informational (10xxx) ---
    HELP                           = 10001
    HELP_DISPLAYED                 = 10002
    VERSION                        = 10003

    # --- generic (11xxx) ---
    ERROR                          = 11001

    # --- routing (11xxx) ---
    UNKNOWN_COMMAND                = 11101

    # --- options (11xxx) ---
    UNKNOWN_OPTION                 = 11111
    OPTION_MISSING_ARGUMENT        = 11112
    MISSING_MANDATORY_OPTION_VALUE = 11113
    CONFLICTING_OPTION             = 11114

    # --- positionals (11xxx) ---
    MISSING_ARGUMENT               = 11121
    EXCESS_ARGUMENTS               = 11122

    # --- delegated (11xxx) ---
    INVALID_ARGUMENT               = 11131
    EXECUTE_SUBCOMMAND_ASYNC       = 11132

    def normalize(self):
        """
        return the host label for this code, or its number as a string.
        """
        return str(getattr(__import__("__main__"), "__codes__", {}).get(self, self.value))


class CommandException(Exception):
    """
    Base class of every parse/dispatch fault.

    The message is the human-readable line written to the error channel. The
    options carry the rest of the payload: exit_code, title, hint, cause, the
    command that raised it, and the styling flags used by __rich__.
    """
    category = "error"
    code = FaultCode.ERROR
    exit_code = 1

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        super().__init__(*([message] if message else []))
        self.message = coalesce(message, "")
        self.options = MappingProxyType(options)
        self.exit_code = options.get("exit_code", type(self).exit_code)
        if "code" in options:
            self.code = options["code"]
        if "category" in options:
            self.category = options["category"]

    @property
    def cause(self):
        """The nested exception this fault wraps, if any."""
        return self.options.get("cause")

    @property
    def silent(self):
        """Silent faults are not written to the error channel."""
        return self.options.get("silent", False)

    def __rich__(self):
        main = __import__("__main__")
        colorful = self.options.get("colorful", False)
        fancy = self.options.get("fancy", False)

        styles = defaultdict(str, {
            # header parts
            "prog-name": "bold #E6E6F0",
            "code": "bold #00E5FF",
            "error-title": "bold #FF4DA6",

            # body
            "error-message": "#C8C8D0",
            "hint-arrow": "#9CE19C dim",
            "hint": "italic #9CE19C",
        } | getattr(main, "__styles__", {}))

        def styler(style):
            return styles[style] if colorful else ""

        def text(fragment, style=""):
            if not fragment:
                return Text("")
            if not colorful:
                return Text(str(fragment))
            if isinstance(fragment, Text):
                return fragment
            return Text(str(fragment), style)

        message = text("error: " + self.message if self.message else "error", styler("error-message"))
        renders = [message]
        if hint := self.options.get("hint"):
            renders.append(Text.assemble(text(" → ", styler("hint-arrow")), text(hint, styler("hint"))))

        if not fancy:
            return Group(*renders)

        command = self.options.get("command")
        prog = getattr(main, "__prog__", command.root.name if command else "")
        header = Text.assemble(
            "[ ",
            text(prog, styler("prog-name")),
            " — ",
            text(self.code.normalize(), styler("code")),
            " | ",
            text(self.options.get("title", self.category), styler("error-title")),
            " ]"
        )
        return Panel(Group(*renders), title=header, title_align="left")

    def __trigger__(self):
        if not self.options.get("shell", False):
            raise self from self.cause
        sys.exit(self.exit_code)

    def __replace__(self, *unused, **overrides):
        assert not unused, "unused arguments are not allowed"
        return type(self)(self.message or Unset, **{**self.options, **overrides})

    def __str__(self):
        return self.message


class UnknownCommandError(CommandException):
    category = "unknownCommand"
    code = FaultCode.UNKNOWN_COMMAND


class UnknownOptionError(CommandException):
    category = "unknownOption"
    code = FaultCode.UNKNOWN_OPTION


class OptionMissingArgumentError(CommandException):
    category = "optionMissingArgument"
    code = FaultCode.OPTION_MISSING_ARGUMENT


class MissingMandatoryOptionValueError(CommandException):
    category = "missingMandatoryOptionValue"
    code = FaultCode.MISSING_MANDATORY_OPTION_VALUE


class ConflictingOptionError(CommandException):
    category = "conflictingOption"
    code = FaultCode.CONFLICTING_OPTION


class MissingArgumentError(CommandException):
    category = "missingArgument"
    code = FaultCode.MISSING_ARGUMENT


class ExcessArgumentsError(CommandException):
    category = "excessArguments"
    code = FaultCode.EXCESS_ARGUMENTS


class InvalidArgumentError(CommandException):
    """
    Raised by value transforms to reject a value.

    The parser prefixes the message with the option or argument that failed,
    so a transform only needs to say what is wrong with the value:

        def port(value):
            if not value.isdigit():
                raise InvalidArgumentError("not a number.")
            return int(value)
    """
    category = "invalidArgument"
    code = FaultCode.INVALID_ARGUMENT


class ExecuteSubCommandAsync(CommandException):
    """Completion or failure of an external subcommand process."""
    category = "executeSubCommandAsync"
    code = FaultCode.EXECUTE_SUBCOMMAND_ASYNC


class HelpExit(CommandException):
    """Help was shown on request (help()); exit code 0, or 1 when shown as an error."""
    category = "help"
    code = FaultCode.HELP
    exit_code = 0


class HelpDisplayed(CommandException):
    """The help flag was used."""
    category = "helpDisplayed"
    code = FaultCode.HELP_DISPLAYED
    exit_code = 0


class VersionDisplayed(CommandException):
    """The version flag was used."""
    category = "version"
    code = FaultCode.VERSION
    exit_code = 0


def trigger(fault, /, **options):
    """
    hand a fault to the default terminator.

    options are merged into the fault through copy.replace() first. in shell
    mode the process exits with fault.exit_code; otherwise the fault is raised.
    """
    if (
        not hasattr(fault, "__trigger__") or
        not callable(fault.__trigger__) or
        not hasattr(fault, "__replace__") or
        not callable(fault.__replace__)
    ):
        raise TypeError("trigger() argument must have a __trigger__ and __replace__ methods")
    copy.replace(fault, **options).__trigger__()


__all__ = (
    "FaultCode",
    "CommandException",
    "UnknownCommandError",
    "UnknownOptionError",
    "OptionMissingArgumentError",
    "MissingMandatoryOptionValueError",
    "ConflictingOptionError",
    "MissingArgumentError",
    "ExcessArgumentsError",
    "InvalidArgumentError",
    "ExecuteSubCommandAsync",
    "HelpExit",
    "HelpDisplayed",
    "VersionDisplayed",
    "trigger",
)
