#!/usr/bin/env python3
# slang_cli.py
#
# Point d'entrée ligne de commande :
#   slang smoke                      -> 1 2 +
#   slang distance X1 Y1 X2 Y2       -> distance euclidienne
#
# Options : --show N (éléments affichés), --max-steps N, --verbose
# Code de sortie : 0 si le run se termine, 1 s'il s'arrête sur une erreur.
#
# Tests intégrés :
#   python slang_cli.py --test

from __future__ import annotations

import argparse
import io
import logging
import sys
import unittest
from typing import List, Optional

from slang_display import DEFAULT_SHOW, BufferSink, DiagnosticsSink, print_halt, show
from slang_runtime import Session
from slang_stdlib import distance_program, smoke_program

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="slang", description="Run a demonstration slang program.")
    p.add_argument("--show", type=int, default=DEFAULT_SHOW, metavar="N", help="Stack items to display (top first)")
    p.add_argument("--max-steps", type=int, default=None, metavar="N", help="Halt after N instructions")
    p.add_argument("--verbose", action="store_true", help="Verbose logging")
    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("smoke", help="1 2 +")
    p_dist = sub.add_parser("distance", help="distance between (X1, Y1) and (X2, Y2)")
    for name in ("x1", "y1", "x2", "y2"):
        p_dist.add_argument(name, type=float)
    return p


def main(argv: Optional[List[str]] = None, *, sink: Optional[DiagnosticsSink] = None, file=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    if args.cmd == "smoke":
        program = smoke_program()
    else:
        program = distance_program(args.x1, args.y1, args.x2, args.y2)

    session = Session(max_steps=args.max_steps)
    log.debug("running %s (%d instructions)", args.cmd, len(program))
    result = session.run(program)
    if not result.ok:
        print_halt(result, file=file)
    show(result.stack, args.show, sink)
    return 0 if result.ok else 1


####################################################################
# Tests

class TestCLI(unittest.TestCase):
    def test_smoke(self):
        sink = BufferSink()
        self.assertEqual(main(["smoke"], sink=sink), 0)
        self.assertEqual(sink.items, [("number", 3.0)])

    def test_distance(self):
        sink = BufferSink()
        self.assertEqual(main(["distance", "0", "0", "3", "4"], sink=sink), 0)
        self.assertEqual(sink.items, [("number", 5.0)])

    def test_budget_halt_reports_and_fails(self):
        sink, out = BufferSink(), io.StringIO()
        with self.assertLogs("slang_runtime", level="WARNING"):
            code = main(["--max-steps", "2", "smoke"], sink=sink, file=out)
        self.assertEqual(code, 1)
        self.assertIn("BudgetExhausted at pc=2", out.getvalue())
        self.assertEqual(sink.items, [("number", 2.0), ("number", 1.0)])

    def test_show_limit(self):
        sink = BufferSink()
        main(["--show", "1", "--max-steps", "2", "smoke"], sink=sink, file=io.StringIO())
        self.assertEqual(sink.items, [("number", 2.0)])

    def test_missing_subcommand(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])


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
        sys.exit(main())
