#!/usr/bin/env python3
# slang_runtime.py
#
# Couche d'embarquement au-dessus de slang_vm_core :
# - Session : environnement construit à partir d'une liste de builders,
#   partageable entre plusieurs runs (verrou autour de chaque run / define)
# - budget de pas optionnel (max_steps), arrêt coopératif entre deux instructions
# - journalisation via logging
#
# Le noyau ne sait rien de tout ça : il reste mono-thread et sans budget.
#
# Tests intégrés :
#   python slang_runtime.py --test

from __future__ import annotations

import logging
import sys
import threading
import unittest
from typing import Iterable, Optional

from slang_vm_core import (
    Builder, Environment, Interpreter, Program, RunResult, SlangError, Stack,
    UnboundWord, build_env, number, prim, word,
)
from slang_stdlib import STDLIB, distance_program, smoke_program

log = logging.getLogger(__name__)


class BudgetExhausted(SlangError):
    def __init__(self, max_steps: int) -> None:
        self.max_steps = max_steps
        super().__init__(f"step budget exhausted ({max_steps} steps)")


class Session:
    """
    Environnement slang réutilisable entre plusieurs runs.

    - builders : appliqués dans l'ordre sur un environnement neuf (ou sur env)
    - max_steps : budget par défaut de chaque run (None = illimité)
    """

    def __init__(self, builders: Iterable[Builder] = STDLIB, env: Optional[Environment] = None,
                 max_steps: Optional[int] = None) -> None:
        self.builders = tuple(builders)
        self.env = build_env(self.builders, env)
        self.max_steps = max_steps
        # réentrant : une primitive peut appeler define pendant un run
        self._lock = threading.RLock()
        log.debug("session ready: %d builders, %d bindings", len(self.builders), len(self.env))

    def define(self, name: str, value) -> "Session":
        with self._lock:
            self.env.define(name, value)
        return self

    def run(self, program: Program, pc: int = 0, stack: Optional[Stack] = None,
            max_steps: Optional[int] = None) -> RunResult:
        budget = self.max_steps if max_steps is None else max_steps
        if budget is not None and budget < 0:
            raise ValueError(f"max_steps must be >= 0, got {budget}")
        with self._lock:
            it = Interpreter(self.env, program, pc, stack)
            log.debug("run: %d instructions from pc=%d", len(program), pc)
            while not it.done():
                if budget is not None and it.steps >= budget:
                    it.error = BudgetExhausted(budget)
                    break
                it.step_one()
            result = it.result()
        if result.ok:
            log.debug("run done: pc=%d depth=%d steps=%d", result.pc, result.stack.depth(), result.steps)
        else:
            log.warning("run halted at pc=%d: %s", result.pc, result.error)
        return result

    def fork(self) -> "Session":
        """New session over a copy of this environment (same builders, already applied)."""
        with self._lock:
            env = self.env.copy()
        child = Session(builders=(), env=env, max_steps=self.max_steps)
        child.builders = self.builders
        return child


####################################################################
# Tests

class TestSession(unittest.TestCase):
    def test_default_session_has_stdlib(self):
        s = Session()
        self.assertEqual(s.run(smoke_program()).unwrap(), [number(3)])
        self.assertEqual(s.run(distance_program(1, 1, 4, 5)).unwrap(), [number(5)])

    def test_env_shared_between_runs(self):
        s = Session()
        s.define("three", number(3))
        self.assertEqual(s.run([word("three"), word("dup"), word("*")]).unwrap(), [number(9)])
        self.assertEqual(s.run([word("three")]).unwrap(), [number(3)])

    def test_fork_isolates_definitions(self):
        s = Session()
        child = s.fork()
        child.define("x", number(1))
        self.assertIn("x", child.env)
        self.assertNotIn("x", s.env)
        self.assertEqual(child.builders, s.builders)

    def test_budget_halts(self):
        s = Session(max_steps=2)
        with self.assertLogs(__name__, level="WARNING"):
            r = s.run(smoke_program())
        self.assertIsInstance(r.error, BudgetExhausted)
        self.assertEqual(r.pc, 2)
        self.assertEqual(r.stack, [number(1), number(2)])

    def test_budget_override_and_exact_fit(self):
        s = Session(max_steps=1)
        self.assertTrue(s.run(smoke_program(), max_steps=3).ok)
        self.assertTrue(Session().run([], max_steps=0).ok)
        with self.assertRaises(ValueError):
            s.run(smoke_program(), max_steps=-1)

    def test_error_surfaces_with_pc(self):
        s = Session()
        with self.assertLogs(__name__, level="WARNING") as cm:
            r = s.run([number(1), word("nope")])
        self.assertIsInstance(r.error, UnboundWord)
        self.assertEqual(r.pc, 1)
        self.assertIn("pc=1", cm.output[0])

    def test_resume_with_stack(self):
        s = Session()
        r = s.run(smoke_program(), pc=2, stack=Stack([number(40), number(2)]))
        self.assertEqual(r.unwrap(), [number(42)])

    def test_custom_builders(self):
        s = Session(builders=[lambda env: env.define("k", prim(lambda st: st.push(number(7)), "k"))])
        self.assertEqual(s.run([word("k")]).unwrap(), [number(7)])
        self.assertNotIn("+", s.env)

    def test_primitive_defines_during_run(self):
        s = Session()
        def prim_remember(st):
            s.define("last", st.top())
        s.define("remember", prim(prim_remember, "remember"))
        r = s.run([number(7), word("remember"), word("last"), word("+")])
        self.assertEqual(r.unwrap(), [number(14)])

    def test_concurrent_runs_on_shared_env(self):
        s = Session()
        results = []
        def worker(i):
            results.append(s.run(distance_program(0, 0, 3 * i, 4 * i)).unwrap().top())
        threads = [threading.Thread(target=worker, args=(i,)) for i in range(1, 6)]
        for t in threads: t.start()
        for t in threads: t.join()
        self.assertEqual(sorted(v.v for v in results), [5.0, 10.0, 15.0, 20.0, 25.0])


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
