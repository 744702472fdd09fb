#!/usr/bin/env python3
# slang_stdlib.py
#
# Bibliothèque standard slang, sous forme de builders Environment -> Environment :
# - load_arith       : + - * /
# - load_math        : dup sqrt
# - load_stack_words : drop swap over
#
# Pas d'état global : STDLIB est une liste ordonnée, repliée de gauche à droite
# sur un environnement neuf (build_env). Pour étendre, on compose avec extend()
# ou on passe sa propre liste de builders.
#
# Tests intégrés :
#   python slang_stdlib.py --test

from __future__ import annotations

import math
import sys
import unittest
from typing import Callable, List, Tuple

from slang_vm_core import (
    Builder, Environment, Stack, Tag, Value, ArityMismatch, TypeMismatch,
    build_env, extend, number, prim, run, string, word,
)


def _num(v: Value, opname: str) -> float:
    if v.tag is not Tag.NUMBER:
        raise TypeMismatch(opname, Tag.NUMBER, v)
    return v.v


def _binary(opname: str, fn: Callable[[float, float], float]) -> Value:
    # ( x y -- x<op>y ) : y est au sommet
    def prim_binary(stack: Stack) -> Stack:
        y = _num(stack.pop(), opname)
        x = _num(stack.pop(), opname)
        return stack.push(number(fn(x, y)))
    return prim(prim_binary, opname, doc=f"( x y -- x{opname}y )")


def _div(x: float, y: float) -> float:
    # division IEEE : pas d'exception sur zéro
    if y == 0.0:
        if x == 0.0 or math.isnan(x):
            return math.nan
        return math.copysign(math.inf, x) * math.copysign(1.0, y)
    return x / y


def load_arith(env: Environment) -> Environment:
    env.define("+", _binary("+", lambda x, y: x + y))
    env.define("-", _binary("-", lambda x, y: x - y))
    env.define("*", _binary("*", lambda x, y: x * y))
    env.define("/", _binary("/", _div))
    return env


def load_math(env: Environment) -> Environment:
    def prim_dup(stack: Stack) -> Stack:
        return stack.push(stack.top())

    def prim_sqrt(stack: Stack) -> Stack:
        x = _num(stack.pop(), "sqrt")
        return stack.push(number(math.sqrt(x) if x >= 0 else math.nan))

    env.define("dup", prim(prim_dup, "dup", doc="( x -- x x )"))
    env.define("sqrt", prim(prim_sqrt, "sqrt", doc="( x -- √x )"))
    return env


def load_stack_words(env: Environment) -> Environment:
    def prim_drop(stack: Stack) -> None:
        stack.pop()

    def prim_swap(stack: Stack) -> Stack:
        b, a = stack.pop(), stack.pop()
        return stack.push(b).push(a)

    def prim_over(stack: Stack) -> Stack:
        return stack.push(stack.peek(1))

    env.define("drop", prim(prim_drop, "drop", doc="( x -- )"))
    env.define("swap", prim(prim_swap, "swap", doc="( a b -- b a )"))
    env.define("over", prim(prim_over, "over", doc="( a b -- a b a )"))
    return env


STDLIB: Tuple[Builder, ...] = (load_arith, load_math, load_stack_words)


def load_stdlib(env: Environment) -> Environment:
    return build_env(STDLIB, env)


def test_env() -> Environment:
    """Fresh environment with the whole standard library."""
    return load_stdlib(Environment.create())

# pytest ne doit pas prendre test_env pour un test
test_env.__test__ = False


# --- Programmes de démonstration ---

def smoke_program() -> List[Value]:
    return [
        number(1),
        number(2),
        word("+"),
    ]


def distance_program(x1: float, y1: float, x2: float, y2: float) -> List[Value]:
    return [
        number(x1), number(x2), word("-"),    # dx
        word("dup"), word("*"),               # dx²
        number(y1), number(y2), word("-"),    # dy
        word("dup"), word("*"),               # dy²
        word("+"),
        word("sqrt"),
    ]


####################################################################
# Tests

class TestStdlib(unittest.TestCase):
    def setUp(self) -> None:
        self.env = test_env()

    def run_prog(self, prog):
        return run(self.env, prog).unwrap()

    def test_smoke(self):
        self.assertEqual(self.run_prog(smoke_program()), [number(3)])

    def test_distance_345(self):
        self.assertEqual(self.run_prog(distance_program(0, 0, 3, 4)), [number(5)])

    def test_distance_literal_sequence(self):
        prog = [number(0), number(3), word("-"), word("dup"), word("*"),
                number(0), number(4), word("-"), word("dup"), word("*"),
                word("+"), word("sqrt")]
        self.assertEqual(self.run_prog(prog), [number(5)])

    def test_argument_order(self):
        self.assertEqual(self.run_prog([number(10), number(4), word("-")]), [number(6)])
        self.assertEqual(self.run_prog([number(12), number(4), word("/")]), [number(3)])
        self.assertEqual(self.run_prog([number(6), number(7), word("*")]), [number(42)])

    def test_division_by_zero_is_ieee(self):
        (v,) = self.run_prog([number(1), number(0), word("/")])
        self.assertEqual(v.v, math.inf)
        (v,) = self.run_prog([number(-1), number(0), word("/")])
        self.assertEqual(v.v, -math.inf)
        (v,) = self.run_prog([number(0), number(0), word("/")])
        self.assertTrue(math.isnan(v.v))

    def test_sqrt_negative_is_nan(self):
        (v,) = self.run_prog([number(-4), word("sqrt")])
        self.assertTrue(math.isnan(v.v))

    def test_stack_words(self):
        self.assertEqual(self.run_prog([number(1), number(2), word("swap")]), [number(2), number(1)])
        self.assertEqual(self.run_prog([number(1), number(2), word("over")]), [number(1), number(2), number(1)])
        self.assertEqual(self.run_prog([number(1), number(2), word("drop")]), [number(1)])
        self.assertEqual(self.run_prog([string("s"), word("dup")]), [string("s"), string("s")])

    def test_underflow_in_primitive(self):
        r = run(self.env, [word("dup")])
        self.assertIsInstance(r.error, ArityMismatch)
        self.assertEqual(r.error.name, "dup")
        r = run(self.env, [number(1), word("over")])
        self.assertIsInstance(r.error, ArityMismatch)
        self.assertEqual(r.stack, [number(1)])

    def test_non_number_operand_halts(self):
        r = run(self.env, [number(1), string("a"), word("+"), number(9)])
        self.assertIsInstance(r.error, TypeMismatch)
        self.assertEqual(r.error.opname, "+")
        self.assertIs(r.error.expected, Tag.NUMBER)
        self.assertEqual(r.error.value, string("a"))
        self.assertEqual(r.pc, 2)
        # "a" a déjà été dépilé : pas de rollback
        self.assertEqual(r.stack, [number(1)])
        r = run(self.env, [word("dup"), word("sqrt")])
        self.assertIsInstance(r.error, ArityMismatch)
        r = run(self.env, [string("x"), word("sqrt")])
        self.assertIsInstance(r.error, TypeMismatch)
        self.assertEqual(r.pc, 1)

    def test_extension_without_touching_stdlib(self):
        def load_square(env):
            return env.define("square", prim(lambda s: s.push(number(_num(s.pop(), "square") ** 2)), "square"))
        env = extend(load_stdlib, load_square)(Environment.create())
        self.assertEqual(run(env, [number(3), word("square"), number(1), word("+")]).unwrap(), [number(10)])
        self.assertNotIn("square", test_env())

    def test_separate_runs_do_not_share_state(self):
        a, b = test_env(), test_env()
        a.define("+", string("shadowed"))
        self.assertEqual(run(b, smoke_program()).unwrap(), [number(3)])


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
