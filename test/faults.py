"""
Faults module behavioral tests (taxonomy, replacement, rendering, trigger).

Scope
- Validate categories, codes and default exit codes.
- Validate copy.replace() support and option payloads.
- Validate rich rendering (plain, hinted, fancy) and the default terminator.

Conventions
- Test method names follow CamelCase per project convention.
- Rendering is captured through an in-memory rich Console.
"""

from __future__ import annotations

import copy
import io
import unittest
from unittest import TestCase

from rich.console import Console

from skipper.faults import (
    FaultCode,
    CommandException,
    UnknownOptionError,
    MissingArgumentError,
    HelpExit,
    HelpDisplayed,
    VersionDisplayed,
    trigger,
)


def render(fault):
    console = Console(file=io.StringIO(), width=120, color_system=None)
    console.print(fault)
    return console.file.getvalue()


class TestTaxonomy(TestCase):
    """Behavioral tests for fault categories and codes."""

    def testBaseDefaults(self):
        fault = CommandException("boom")
        self.assertEqual(fault.category, "error")
        self.assertEqual(fault.code, FaultCode.ERROR)
        self.assertEqual(fault.exit_code, 1)
        self.assertEqual(str(fault), "boom")

    def testSubclassCategories(self):
        self.assertEqual(UnknownOptionError("x").category, "unknownOption")
        self.assertEqual(MissingArgumentError("x").category, "missingArgument")
        self.assertEqual(MissingArgumentError("x").code, FaultCode.MISSING_ARGUMENT)

    def testInformationalFaultsExitZero(self):
        self.assertEqual(HelpExit().exit_code, 0)
        self.assertEqual(HelpDisplayed().exit_code, 0)
        self.assertEqual(VersionDisplayed("1.0").exit_code, 0)

    def testOverridesThroughOptions(self):
        fault = CommandException("boom", exit_code=7, category="custom")
        self.assertEqual(fault.exit_code, 7)
        self.assertEqual(fault.category, "custom")

    def testOptionsAreReadOnly(self):
        fault = CommandException("boom", hint="try again")
        with self.assertRaises(TypeError):
            fault.options["hint"] = "other"

    def testCodeNormalizesToNumber(self):
        self.assertEqual(FaultCode.UNKNOWN_COMMAND.normalize(), "11101")


class TestReplace(TestCase):
    """Behavioral tests for copy.replace() on faults."""

    def testReplaceKeepsMessageAndType(self):
        fault = MissingArgumentError("missing required argument 'file'", hint="pass a file")
        replaced = copy.replace(fault, exit_code=2)

        self.assertIsInstance(replaced, MissingArgumentError)
        self.assertIsNot(replaced, fault)
        self.assertEqual(replaced.message, fault.message)
        self.assertEqual(replaced.exit_code, 2)
        self.assertEqual(replaced.options["hint"], "pass a file")

    def testReplaceRejectsPositionals(self):
        with self.assertRaises(AssertionError):
            CommandException("boom").__replace__("extra")


class TestRendering(TestCase):
    """Behavioral tests for the rich rendering of faults."""

    def testPlainMessage(self):
        self.assertEqual(render(CommandException("boom")).strip(), "error: boom")

    def testHintLine(self):
        output = render(UnknownOptionError("unknown option '--prot'", hint="did you mean --port?"))
        self.assertIn("error: unknown option '--prot'", output)
        self.assertIn("did you mean --port?", output)

    def testFancyPanelHeader(self):
        output = render(UnknownOptionError("unknown option '--prot'", fancy=True, title="unknown option"))
        self.assertIn(str(FaultCode.UNKNOWN_OPTION.value), output)
        self.assertIn("unknown option", output)


class TestTrigger(TestCase):
    """Behavioral tests for the default terminator."""

    def testRaiseMode(self):
        with self.assertRaises(MissingArgumentError) as context:
            trigger(MissingArgumentError("missing"))
        self.assertEqual(context.exception.message, "missing")

    def testShellModeExits(self):
        with self.assertRaises(SystemExit) as context:
            trigger(MissingArgumentError("missing"), shell=True, exit_code=5)
        self.assertEqual(context.exception.code, 5)

    def testCauseIsChained(self):
        cause = ValueError("bad")
        with self.assertRaises(CommandException) as context:
            trigger(CommandException("wrapped", cause=cause))
        self.assertIs(context.exception.__cause__, cause)

    def testRejectsNonTriggerable(self):
        with self.assertRaises(TypeError):
            trigger(ValueError("nope"))


if __name__ == "__main__":
    unittest.main()
