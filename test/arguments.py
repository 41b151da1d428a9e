"""
Arguments module behavioral tests (construction, normalization, decorators).

Scope
- Validate public specs (Cardinal, Option, Flag): names, keys, flags display.
- Validate the nargs vocabulary and the bracket notation for cardinals.
- Validate metadata constraints (group defaults, descr, choices, relations).
- Validate decorator helpers (cardinal/option/flag): single binding and hooks.

Conventions
- Test method names follow CamelCase per project convention.
- Never pass explicit None for any parameter; omit instead.
"""

from __future__ import annotations

import unittest
from unittest import TestCase

from skipper import Cardinal, Option, Flag, cardinal, option, flag


class TestCardinal(TestCase):
    """Behavioral tests for Cardinal (positional) specifications."""

    def testCardinalGroupDefault(self):
        self.assertEqual(Cardinal("file").group, "arguments")

    def testCardinalGroupEmptyRejected(self):
        with self.assertRaises(ValueError):
            Cardinal("file", group="  ")

    def testCardinalDescrDefaultsToNone(self):
        self.assertIsNone(Cardinal("file").descr)

    def testCardinalDescrExplicitNoneRejected(self):
        with self.assertRaises(TypeError):
            Cardinal("file", descr=None)

    def testCardinalNameMustBeNonEmpty(self):
        with self.assertRaises(ValueError):
            Cardinal("")

    def testCardinalBracketNotation(self):
        required = Cardinal("<file>")
        optional = Cardinal("[file]")
        many = Cardinal("<files...>")
        maybe = Cardinal("[files...]")

        self.assertEqual(required.name, "file")
        self.assertTrue(required.required)
        self.assertFalse(optional.required)
        self.assertEqual(optional.nargs, "?")
        self.assertEqual(many.nargs, "+")
        self.assertEqual(maybe.nargs, "*")
        self.assertTrue(many.variadic and maybe.variadic)
        self.assertEqual(many.label, "<files...>")
        self.assertEqual(maybe.label, "[files...]")

    def testCardinalBracketNotationConflictsWithNargs(self):
        with self.assertRaises(TypeError):
            Cardinal("<file>", nargs="?")

    def testCardinalUnbalancedBracketsRejected(self):
        with self.assertRaises(ValueError):
            Cardinal("<file]")

    def testCardinalRequiredDefaultWithoutTypeRejected(self):
        with self.assertRaises(ValueError) as context:
            Cardinal("<file>", default="index.html")
        self.assertIn("'file'", str(context.exception))

    def testCardinalRequiredDefaultWithTypeAccepted(self):
        spec = Cardinal("<count>", type=int, default=1)
        self.assertEqual(spec.default, 1)

    def testCardinalOptionalDefaultAccepted(self):
        self.assertEqual(Cardinal("[file]", default="index.html").default, "index.html")

    def testCardinalBadNargsRejected(self):
        with self.assertRaises(ValueError):
            Cardinal("file", nargs="2")

    def testCardinalDecoratorBindsHandlerOnce(self):
        received = []

        @cardinal("<file>")
        def file(value):
            received.append(value)

        self.assertIsInstance(file, Cardinal)
        file("a.txt")
        self.assertEqual(received, ["a.txt"])

    def testCardinalDecoratorHookResolvesBeforeBinding(self):
        wrapper = cardinal("<file>")
        self.assertIsInstance(wrapper.__cardinal__(), Cardinal)

        spec = wrapper(lambda value: value)
        with self.assertRaises(TypeError):
            wrapper(lambda value: value)
        self.assertIs(spec, wrapper.__cardinal__())


class TestOption(TestCase):
    """Behavioral tests for Option (value-taking) specifications."""

    def testOptionRequiresAtLeastOneName(self):
        with self.assertRaises(TypeError):
            Option()

    def testOptionGroupDefault(self):
        self.assertEqual(Option("--port").group, "options")

    def testOptionNamesRejectUnderscore(self):
        with self.assertRaises(ValueError):
            Option("--dry_run")

    def testOptionTwoLongNamesRejected(self):
        with self.assertRaises(ValueError):
            Option("--port", "--listen")

    def testOptionTwoShortNamesRejected(self):
        with self.assertRaises(ValueError):
            Option("-p", "-P")

    def testOptionNamesAllowUnicode(self):
        self.assertEqual(Option("--café").key, "café")

    def testOptionShortAndLongSplit(self):
        spec = Option("--port", "-p")
        self.assertEqual(spec.names, ("-p", "--port"))
        self.assertEqual(spec.short, "-p")
        self.assertEqual(spec.long, "--port")

    def testOptionKeyFromLongName(self):
        self.assertEqual(Option("-d", "--dry-run").key, "dry_run")

    def testOptionKeyFromShortName(self):
        self.assertEqual(Option("-p").key, "p")

    def testOptionMetavarDefaultsToKey(self):
        self.assertEqual(Option("--log-level").metavar, "log-level")

    def testOptionFlagsDisplay(self):
        self.assertEqual(Option("-p", "--port").flags, "-p, --port <port>")
        self.assertEqual(Option("--cheese", nargs="?").flags, "--cheese [cheese]")
        self.assertEqual(Option("--tag", nargs="+", metavar="name").flags, "--tag <name...>")

    def testOptionArity(self):
        self.assertTrue(Option("--a").required)
        self.assertTrue(Option("--a", nargs="?").optional)
        self.assertTrue(Option("--a", nargs="+").required)
        self.assertTrue(Option("--a", nargs="*").variadic)
        self.assertFalse(Option("--a", nargs="?").variadic)

    def testOptionIsMatchesNames(self):
        spec = Option("-p", "--port")
        self.assertTrue(spec.is_("-p"))
        self.assertTrue(spec.is_("--port"))
        self.assertFalse(spec.is_("--ports"))

    def testOptionPresetRequiresOptionalValue(self):
        with self.assertRaises(TypeError):
            Option("--cheese", preset="mozzarella")
        self.assertEqual(Option("--cheese", nargs="?", preset="mozzarella").preset, "mozzarella")

    def testOptionTypeMustBeCallable(self):
        with self.assertRaises(TypeError):
            Option("--port", type="int")

    def testOptionChoicesDuplicatesRejected(self):
        with self.assertRaises(ValueError):
            Option("--color", choices=["red", "red"])

    def testOptionChoicesStringRejected(self):
        with self.assertRaises(TypeError):
            Option("--color", choices="red")

    def testOptionRelations(self):
        spec = Option("--mode", conflicts=["quiet"], implies={"verbose": True}, env="APP_MODE")
        self.assertEqual(spec.conflicts, ("quiet",))
        self.assertEqual(dict(spec.implies), {"verbose": True})
        self.assertEqual(spec.env, "APP_MODE")

    def testOptionConflictsMustBeStrings(self):
        with self.assertRaises(TypeError):
            Option("--mode", conflicts="quiet")

    def testOptionDecoratorBindsHandler(self):
        received = []

        @option("-p", "--port", type=int)
        def port(value):
            received.append(value)

        self.assertIsInstance(port, Option)
        port(8080)
        self.assertEqual(received, [8080])

    def testOptionMirrorsAreReadOnly(self):
        spec = Option("--port")
        with self.assertRaises(AttributeError):
            spec.key = "other"

    def testOptionCannotBeSubclassedFromInstanceType(self):
        with self.assertRaises(TypeError):
            type("Sub", (type(Option("--port")),), {})


class TestFlag(TestCase):
    """Behavioral tests for Flag (boolean) specifications."""

    def testFlagNamesValidation(self):
        with self.assertRaises(ValueError):
            Flag("verbose")

    def testFlagDefaults(self):
        spec = Flag("-v", "--verbose")
        self.assertEqual(spec.group, "options")
        self.assertIsNone(spec.descr)
        self.assertFalse(spec.negate)
        self.assertFalse(spec.required or spec.optional or spec.variadic)
        self.assertEqual(spec.flags, "-v, --verbose")

    def testFlagNegatedKey(self):
        spec = Flag("--no-color")
        self.assertTrue(spec.negate)
        self.assertEqual(spec.key, "color")

    def testFlagNoPrefixOnlyNegatesLongNames(self):
        self.assertFalse(Option("--no-color").negate)

    def testFlagDecoratorBindsHandlerOnce(self):
        received = []
        wrapper = flag("-v", "--verbose")
        spec = wrapper(received.append)

        self.assertIs(wrapper.__flag__(), spec)
        spec(True)
        self.assertEqual(received, [True])
        with self.assertRaises(TypeError):
            wrapper(received.append)

    def testFlagReprNamesTypename(self):
        self.assertTrue(repr(Flag("--verbose")).startswith("flag("))


if __name__ == "__main__":
    unittest.main()
