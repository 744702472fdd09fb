#!/usr/bin/env python3
# slang_display.py
#
# Affichage / diagnostics pour slang :
# - DiagnosticsSink : protocole minimal, reçoit des paires (tag, payload)
# - BufferSink      : garde les paires en mémoire (tests, embarquement)
# - ConsoleSink     : rendu couleur via prompt_toolkit
# - show(stack, n)  : pousse les n éléments du sommet vers un sink
#
# Rien ici n'intervient dans l'exécution : le noyau ignore ce module.
#
# Tests intégrés :
#   python slang_display.py --test

from __future__ import annotations

import io
import json
import sys
import unittest
from typing import Any, List, Optional, Tuple

from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import FormattedText, fragment_list_to_text
from prompt_toolkit.styles import Style

from slang_vm_core import RunResult, Stack, Tag, Value, number, prim, string, word

STYLE = Style.from_dict({
    "tag":     "ansicyan",
    "payload": "bold",
    "error":   "ansired bold",
    "pc":      "ansiyellow",
})

DEFAULT_SHOW = 20


class DiagnosticsSink:
    """
    Protocole minimal pour un consommateur de diagnostics.

    handle_item(tag, payload) reçoit un élément de pile à la fois,
    sommet en premier.
    """

    def handle_item(self, tag: str, payload: Any) -> None:
        raise NotImplementedError


class BufferSink(DiagnosticsSink):
    def __init__(self) -> None:
        self.items: List[Tuple[str, Any]] = []

    def handle_item(self, tag: str, payload: Any) -> None:
        self.items.append((tag, payload))


class ConsoleSink(DiagnosticsSink):
    def __init__(self, file=None) -> None:
        self.file = file

    def handle_item(self, tag: str, payload: Any) -> None:
        print_formatted_text(format_pair(tag, payload), style=STYLE, file=self.file)


def item_pair(v: Value) -> Tuple[str, Any]:
    if v.tag is Tag.PRIM:
        return v.tag.value, v.v.name
    return v.tag.value, v.v


def format_pair(tag: str, payload: Any) -> FormattedText:
    if tag == Tag.STRING.value:
        # échappement propre uniquement pour les chaînes
        text = json.dumps(payload, ensure_ascii=False)
    elif tag == Tag.NUMBER.value and float(payload).is_integer():
        text = str(int(payload))
    else:
        text = str(payload)
    return FormattedText([
        ("class:tag", tag),
        ("", "("),
        ("class:payload", text),
        ("", ")"),
    ])


def format_item(v: Value) -> FormattedText:
    return format_pair(*item_pair(v))


def show(stack: Stack, n: Optional[int] = None, sink: Optional[DiagnosticsSink] = None) -> DiagnosticsSink:
    """Feed the top n items (default 20, capped to the depth) to sink, top first."""
    sink = ConsoleSink() if sink is None else sink
    n = min(DEFAULT_SHOW if not n else n, stack.depth())
    for i in range(n):
        sink.handle_item(*item_pair(stack.peek(i)))
    return sink


def format_halt(result: RunResult) -> FormattedText:
    err = result.error
    return FormattedText([
        ("class:error", type(err).__name__ if err is not None else "ok"),
        ("", " at "),
        ("class:pc", f"pc={result.pc}"),
        ("", f": {err}" if err is not None else ""),
        ("", f" (depth {result.stack.depth()})"),
    ])


def print_halt(result: RunResult, file=None) -> None:
    print_formatted_text(format_halt(result), style=STYLE, file=file)


####################################################################
# Tests

class TestFormatting(unittest.TestCase):
    def test_string_is_json_escaped(self):
        self.assertEqual(fragment_list_to_text(format_item(string('a "q"\n'))), 'string("a \\"q\\"\\n")')

    def test_numbers(self):
        self.assertEqual(fragment_list_to_text(format_item(number(3))), "number(3)")
        self.assertEqual(fragment_list_to_text(format_item(number(2.5))), "number(2.5)")

    def test_word_and_prim(self):
        self.assertEqual(fragment_list_to_text(format_item(word("dup"))), "word(dup)")
        self.assertEqual(fragment_list_to_text(format_item(prim(lambda s: s, "id"))), "prim(id)")

    def test_style_classes(self):
        frags = list(format_item(number(1)))
        self.assertEqual(frags[0], ("class:tag", "number"))
        self.assertEqual(frags[2][0], "class:payload")


class TestShow(unittest.TestCase):
    def test_top_first(self):
        st = Stack([number(1), string("two"), word("three")])
        sink = show(st, sink=BufferSink())
        self.assertEqual(sink.items, [("word", "three"), ("string", "two"), ("number", 1.0)])

    def test_count_capped(self):
        st = Stack([number(i) for i in range(30)])
        self.assertEqual(len(show(st, sink=BufferSink()).items), 20)
        self.assertEqual(len(show(st, 3, sink=BufferSink()).items), 3)
        self.assertEqual(len(show(Stack([number(1)]), 5, sink=BufferSink()).items), 1)
        self.assertEqual(show(Stack(), sink=BufferSink()).items, [])

    def test_show_does_not_mutate(self):
        st = Stack([number(1), number(2)])
        show(st, sink=BufferSink())
        self.assertEqual(st, [number(1), number(2)])

    def test_console_sink_plain_file(self):
        buf = io.StringIO()
        show(Stack([string("hi"), number(3)]), sink=ConsoleSink(file=buf))
        self.assertEqual(buf.getvalue().splitlines(), ["number(3)", 'string("hi")'])


class TestHalt(unittest.TestCase):
    def test_format_halt(self):
        from slang_vm_core import Environment, run
        r = run(Environment.create(), [number(1), word("missing")])
        text = fragment_list_to_text(format_halt(r))
        self.assertTrue(text.startswith("UnboundWord at pc=1"))
        self.assertIn("missing", text)
        self.assertIn("(depth 1)", text)


def test_all():
    loader = unittest.TestLoader()
    suite = loader.loadTestsFromModule(sys.modules[__name__])
    runner = unittest.TextTestRunner(verbosity=2)
    runner.run(suite)

# lancé à la main ; pytest collecte déjà les TestCase
test_all.__test__ = False

if __name__ == "__main__":
    if "--test" in sys.argv:
        sys.argv = [sys.argv[0]]
        unittest.main()
    else:
        print(f"Usage: python {sys.argv[0]} --test")
