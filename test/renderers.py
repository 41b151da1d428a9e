"""
Renderers module behavioral tests (usage lines, sections, terms).

Scope
- Validate the usage tail and the subcommand, option and argument terms.
- Validate which commands, options and arguments are listed.
- Validate full help output for a small command tree.

Conventions
- Test method names follow CamelCase per project convention.
- Output is captured through an in-memory rich Console.
"""

from __future__ import annotations

import io
import unittest
from unittest import TestCase

from rich.console import Console

from skipper import Command, Help, Cardinal, Option, Flag


def output(command, renderer=None):
    console = Console(file=io.StringIO(), width=200, color_system=None)
    console.print((renderer or Help()).render(command, console))
    return console.file.getvalue()


def tree():
    program = Command(None, name="git", descr="the stupid content tracker", epilog="see git help -a", shell=False)
    program.add(Flag("-v", "--verbose", descr="be verbose"))
    program.add(Option("--git-dir", descr="repository path", env="GIT_DIR"))

    @program.command(name="remote", summary="manage remotes")
    def remote(name=Cardinal("<name>", descr="remote name"), url=Cardinal("[url]"), /):
        pass

    program.command(None, name="internal", hidden=True)
    return program


class TestTerms(TestCase):
    """Behavioral tests for the Help building blocks."""

    def testUsageTail(self):
        program = tree()
        self.assertEqual(Help().usage(program), "[options] [command]")
        self.assertEqual(Help().usage(program.children["remote"]), "[options] <name> [url]")

    def testCustomUsage(self):
        program = Command(None, name="tool", usage="<input> [output]", shell=False)
        self.assertEqual(Help().usage(program), "<input> [output]")

    def testSubcommandTerm(self):
        program = tree()
        self.assertEqual(Help().subcommand_term(program.children["remote"]), "remote [options] <name> [url]")

    def testVisibleCommandsSkipHiddenAndAddHelp(self):
        names = [child.name for child in Help().visible_commands(tree())]
        self.assertEqual(names, ["remote", "help"])

    def testVisibleOptionsEndWithHelpFlag(self):
        options = Help().visible_options(tree())
        self.assertEqual([option.flags for option in options], ["-v, --verbose", "--git-dir <git-dir>", "-h, --help"])

    def testSortedOptions(self):
        options = Help(sort_options=True).visible_options(tree())
        self.assertEqual([option.key for option in options], ["git_dir", "verbose", "help"])

    def testArgumentsListedOnlyWhenDescribed(self):
        program = tree()
        self.assertEqual([name for name, _ in Help().visible_cardinals(program.children["remote"])], ["name", "url"])

        bare = Command(None, name="bare", shell=False)
        bare.add(Cardinal("<file>"))
        self.assertEqual(Help().visible_cardinals(bare), [])

    def testOptionDescriptionExtras(self):
        option = Option("--mode", default="fast", choices=["fast", "slow"], env="MODE", descr="speed")
        self.assertEqual(Help().option_description(option), "speed (choices: 'fast', 'slow', default: 'fast', env: MODE)")


class TestRender(TestCase):
    """Behavioral tests for the full help output."""

    def testRootHelp(self):
        text = output(tree())
        self.assertIn("usage: git [options] [command]", text)
        self.assertIn("the stupid content tracker", text)
        self.assertIn("be verbose", text)
        self.assertIn("repository path (env: GIT_DIR)", text)
        self.assertIn("remote [options] <name> [url]", text)
        self.assertIn("manage remotes", text)
        self.assertIn("help [command]", text)
        self.assertNotIn("internal", text)
        self.assertIn("see git help -a", text)

    def testSubcommandHelp(self):
        text = output(tree().children["remote"])
        self.assertIn("usage: git remote [options] <name> [url]", text)
        self.assertIn("arguments:", text)
        self.assertIn("remote name", text)

    def testExamplesSection(self):
        program = Command(None, name="tool", examples=["tool build", "tool test"], shell=False)
        text = output(program)
        self.assertIn("examples:", text)
        self.assertIn("tool build", text)

    def testFancyPanel(self):
        program = Command(None, name="tool", fancy=True, shell=False)
        self.assertIn("TOOL HELP", output(program))

    def testCommandGroups(self):
        program = Command(None, name="tool", shell=False)
        program.command(lambda: None, name="build", summary="build things")
        program.command(lambda: None, name="login", summary="log in", group="management")
        program.command(lambda: None, name="logout", summary="log out", group="management")

        lines = [line.strip() for line in output(program).splitlines() if line.strip()]
        commands = lines.index("commands:")
        management = lines.index("management:")
        self.assertTrue(lines[commands + 1].startswith("build"))
        self.assertTrue(lines[commands + 2].startswith("help [command]"))
        self.assertTrue(lines[management + 1].startswith("login"))
        self.assertTrue(lines[management + 2].startswith("logout"))
        self.assertEqual(program.children["login"].group, "management")
        self.assertEqual(program.children["build"].group, "commands")

    def testCommandGroupValidation(self):
        with self.assertRaises(ValueError):
            Command(None, name="tool", group=" ", shell=False)
        with self.assertRaises(TypeError):
            Command(None, name="tool", group=1, shell=False)


if __name__ == "__main__":
    unittest.main()
