"""
Help rendering for skipper commands.

Help is a strategy object: a command asks its renderer (Command(renderer=...),
inherited by children) for the usage line and for the full help renderable,
then prints it to its out or err console. Subclass Help, or pass any object
with the same methods, to change what help looks like without touching the
parser.

Layout
    usage: git remote [options] [command] <name>

    manage set of tracked repositories

    arguments:
      name              remote name

    options:
      -v, --verbose     be verbose
      -h, --help        display help for command

    commands:
      add <name> <url>  add a remote
      help [command]    display help for command

Subcommands are listed under their Command(group=...) heading, "commands" by
default; Command.helptext() adds text around the whole output.

Palette keys (overridable through __main__.__styles__, honored when the
command is colorful): usage-label, program-name, usage-section,
description-section, group-label, term, argument-description, epilog-section,
examples-label, examples-dot, example, panel-title.
"""
from collections import defaultdict

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .utils import Unset, coalesce


class Help:
    """
    Default help renderer.

    Methods
    - visible_commands / visible_options / visible_cardinals: what gets listed.
    - subcommand_term / option_term / cardinal_term: left column text.
    - usage: the usage tail for a command (without the command path).
    - render: a rich renderable with every section.
    """

    def __init__(self, *, sort_commands=False, sort_options=False):
        self.sort_commands = sort_commands
        self.sort_options = sort_options

    def visible_commands(self, command, /):
        commands = [child for child in command.children.values() if not child.hidden]
        if self.sort_commands:
            commands.sort(key=lambda child: child.name)
        if helpcmd := command.helpcmd:
            commands.append(helpcmd)
        return commands

    def visible_options(self, command, /):
        options = [option for option in command.options if not option.hidden]
        if self.sort_options:
            options.sort(key=lambda option: (option.short or option.long).lstrip("-").lower())
        if helpflag := command.helpflag:
            options.append(helpflag)
        return options

    def visible_cardinals(self, command, /):
        cardinals = [(name, cardinal) for name, cardinal in command.cardinals.items() if not cardinal.hidden]
        # Arguments are only listed when at least one of them is described.
        if any(cardinal.descr for _, cardinal in cardinals):
            return cardinals
        return []

    def subcommand_term(self, command, /):
        term = command.name
        if command.aliases:
            term += "|" + command.aliases[0]
        if command.options or command.helpflag:
            term += " [options]"
        for name, cardinal in command.cardinals.items():
            term += " " + _label(name, cardinal)
        return term

    def option_term(self, option, /):
        return option.flags

    def cardinal_term(self, name, cardinal, /):
        return name

    def option_description(self, option, /):
        extras = []
        if option.choices:
            extras.append("choices: " + ", ".join(map(repr, option.choices)))
        if option.default is not Unset and not option.negate:
            extras.append(f"default: {option.default!r}")
        if option.preset is not Unset:
            extras.append(f"preset: {option.preset!r}")
        if option.env:
            extras.append(f"env: {option.env}")
        return _describe(option.descr, extras)

    def cardinal_description(self, cardinal, /):
        extras = []
        if cardinal.choices:
            extras.append("choices: " + ", ".join(map(repr, cardinal.choices)))
        if cardinal.default is not Unset:
            extras.append(f"default: {cardinal.default!r}")
        return _describe(cardinal.descr, extras)

    def subcommand_description(self, command, /):
        return command.summary or command.descr or ""

    def usage(self, command, /):
        if command.usage:
            return command.usage
        parts = []
        if command.options or command.helpflag:
            parts.append("[options]")
        if command.children:
            parts.append("[command]")
        for name, cardinal in command.cardinals.items():
            parts.append(_label(name, cardinal))
        return " ".join(parts)

    def render(self, command, console, /, *, error=False):
        main = __import__("__main__")
        colorful = command.colorful

        styles = defaultdict(str, {
            "usage-label": "bold #00E6FF",
            "program-name": "bold #FF4D94",
            "usage-section": "bold #36C5F0",
            "description-section": "italic #A3A3A3",
            "group-label": "bold #FFFFFF",
            "term": "bold #22C55E",
            "argument-description": "#9CA3AF",
            "epilog-section": "#737373",
            "examples-label": "bold #22C55E",
            "examples-dot": "#22C55E dim",
            "example": "#E5E7EB",
            "panel-title": "bold #FF4D94",
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

        renders = []

        route = " ".join(step.name or "" for step in command.path).strip()
        usage = Text.assemble(
            text("usage", styler("usage-label")), ": ",
            text(route, styler("program-name")),
        )
        if tail := self.usage(command):
            usage.append(" ").append(text(tail, styler("usage-section")))
        renders.append(usage)

        if command.descr:
            renders.append(Text(""))
            renders.append(text(command.descr, styler("description-section")))

        def section(title, rows):
            table = Table.grid(padding=(0, 2))
            table.add_column(no_wrap=True)
            table.add_column()
            for term, description in rows:
                table.add_row(
                    Text.assemble("  ", text(term, styler("term"))),
                    text(description, styler("argument-description")),
                )
            return [Text(""), Text.assemble(text(title, styler("group-label")), ":"), table]

        groups = defaultdict(list)
        for name, cardinal in self.visible_cardinals(command):
            groups[cardinal.group].append((self.cardinal_term(name, cardinal), self.cardinal_description(cardinal)))
        for option in self.visible_options(command):
            groups[option.group].append((self.option_term(option), self.option_description(option)))
        for title, rows in groups.items():
            renders.extend(section(title, rows))

        groups = defaultdict(list)
        for child in self.visible_commands(command):
            groups[child.group].append((self.subcommand_term(child), self.subcommand_description(child)))
        for title, rows in groups.items():
            renders.extend(section(title, rows))

        if command.examples:
            renders.append(Text(""))
            renders.append(Text.assemble(text("examples", styler("examples-label")), ":"))
            for example in command.examples:
                renders.append(Text.assemble(text(" • ", styler("examples-dot")), text(example, styler("example"))))

        if command.epilog:
            renders.append(Text(""))
            renders.append(text(command.epilog, styler("epilog-section")))

        renderable = Group(*renders)
        if command.fancy:
            renderable = Panel(
                renderable,
                title=Text.assemble("[ ", f"{route} help".upper(), " ]", style=styler("panel-title")),
                title_align="left",
            )
        return renderable


def _label(name, cardinal):
    name = name + ("..." if cardinal.variadic else "")
    return f"<{name}>" if cardinal.required else f"[{name}]"


def _describe(descr, extras):
    descr = coalesce(descr, "") or ""
    if extras:
        suffix = "(" + ", ".join(extras) + ")"
        return f"{descr} {suffix}" if descr else suffix
    return descr


__all__ = (
    "Help",
)
