#!/usr/bin/env python3
# slang_vm_core.py
#
# Noyau de la machine à pile slang.
# - Valeurs taguées (number / string / word / prim)
# - Pile LIFO avec underflow vérifié
# - Environnement plat nom -> valeur
# - Boucle d'interprétation séquentielle (un pc, pas de branchements)
#
# Le programme et les données partagent la même représentation : une liste
# de Value. Pas de parseur ici, pas de bibliothèque standard (voir slang_stdlib).
#
from __future__ import annotations
import unittest
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union


class Tag(Enum):
    NUMBER = "number"
    STRING = "string"
    WORD   = "word"
    PRIM   = "prim"


# ------------------------------ Errors ---------------------------------------

class SlangError(RuntimeError): ...

class StackUnderflow(SlangError):
    def __init__(self, wanted: int = 1, depth: int = 0) -> None:
        self.wanted = wanted
        self.depth = depth
        super().__init__(f"stack underflow: wanted {wanted}, depth {depth}")

class ArityMismatch(StackUnderflow):
    """Underflow raised from inside a primitive, tagged with the primitive name."""
    def __init__(self, name: str, wanted: int = 1, depth: int = 0) -> None:
        self.name = name
        SlangError.__init__(self, f"{name}: not enough arguments (wanted {wanted}, depth {depth})")
        self.wanted = wanted
        self.depth = depth

class UnboundWord(SlangError):
    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"unbound word: {symbol}")

class TypeMismatch(SlangError):
    def __init__(self, opname: str, expected: "Tag", value: "Value") -> None:
        self.opname = opname
        self.expected = expected
        self.value = value
        super().__init__(f"{opname} expects {expected.value}, got {value!r}")


# ------------------------------ Values ---------------------------------------

@dataclass(frozen=True)
class Value:
    tag: Tag
    v: Any

    def is_word(self) -> bool: return self.tag is Tag.WORD
    def is_prim(self) -> bool: return self.tag is Tag.PRIM

    def __repr__(self) -> str:
        if self.tag is Tag.PRIM:
            return f"prim({self.v.name})"
        return f"{self.tag.value}({self.v!r})"


class Primitive:
    """
    Capability invoked by the interpreter with the current stack.

    Subclasses implement apply(stack) and return the stack to continue with
    (usually the same object, mutated in place).
    """
    name: str = "<prim>"
    doc: str = ""

    def apply(self, stack: "Stack") -> "Stack":
        raise NotImplementedError

    def __call__(self, stack: "Stack") -> "Stack":
        return self.apply(stack)

    def __repr__(self) -> str:
        return f"<primitive {self.name}>"


class FnPrimitive(Primitive):
    def __init__(self, fn: Callable[["Stack"], Optional["Stack"]], name: Optional[str] = None, doc: str = "") -> None:
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "<prim>")
        self.doc = doc or (fn.__doc__ or "")

    def apply(self, stack: "Stack") -> "Stack":
        out = self.fn(stack)
        # None : la pile passée a été modifiée sur place
        return stack if out is None else out


# constructors
def number(v: Union[int, float]) -> Value:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise TypeError(f"number expects int or float, got {type(v).__name__}")
    try:
        return Value(Tag.NUMBER, float(v))
    except OverflowError:
        raise ValueError(f"number out of float range: {v}") from None

def string(v: str) -> Value:
    if not isinstance(v, str):
        raise TypeError(f"string expects str, got {type(v).__name__}")
    return Value(Tag.STRING, v)

def word(v: str) -> Value:
    if not isinstance(v, str) or not v:
        raise TypeError("word expects a non-empty str symbol")
    return Value(Tag.WORD, v)

def prim(fn: Union[Primitive, Callable[["Stack"], Optional["Stack"]]], name: Optional[str] = None, *, doc: str = "") -> Value:
    if isinstance(fn, Primitive):
        return Value(Tag.PRIM, fn)
    if not callable(fn):
        raise TypeError("prim expects a Primitive or a callable")
    return Value(Tag.PRIM, FnPrimitive(fn, name, doc))


Program = Sequence[Value]


# ------------------------------ Stack ----------------------------------------

class Stack:
    def __init__(self, items: Optional[Iterable[Value]] = None) -> None:
        self._items: List[Value] = []
        for x in items or ():
            self.push(x)

    def push(self, value: Value) -> "Stack":
        if not isinstance(value, Value):
            raise TypeError(f"push expects a Value, got {type(value).__name__}")
        self._items.append(value)
        return self

    def pop(self) -> Value:
        if not self._items:
            raise StackUnderflow(1, 0)
        return self._items.pop()

    def top(self) -> Value:
        if not self._items:
            raise StackUnderflow(1, 0)
        return self._items[-1]

    def peek(self, i: int) -> Value:
        if i < 0:
            raise ValueError(f"peek: negative depth {i}")
        if i >= len(self._items):
            raise StackUnderflow(i + 1, len(self._items))
        return self._items[-1 - i]

    def depth(self) -> int:
        return len(self._items)

    def snapshot(self) -> Tuple[Value, ...]:
        return tuple(self._items)

    def copy(self) -> "Stack":
        return Stack(self._items)

    def __len__(self) -> int: return len(self._items)
    def __iter__(self) -> Iterator[Value]: return iter(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Stack):
            return self._items == other._items
        if isinstance(other, (list, tuple)):
            return self._items == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"<{len(self._items)}> " + " ".join(map(repr, self._items))


# ------------------------------ Environment ----------------------------------

class Environment:
    def __init__(self) -> None:
        self._bindings: Dict[str, Value] = {}

    @classmethod
    def create(cls) -> "Environment":
        return cls()

    def define(self, key: str, value: Value) -> "Environment":
        if not isinstance(key, str) or not key:
            raise TypeError("define expects a non-empty str key")
        if not isinstance(value, Value):
            raise TypeError(f"define expects a Value, got {type(value).__name__}")
        self._bindings[key] = value
        return self

    def lookup(self, w: Union[Value, str]) -> Value:
        symbol = w.v if isinstance(w, Value) else w
        try:
            return self._bindings[symbol]
        except KeyError:
            raise UnboundWord(symbol) from None

    def names(self) -> List[str]:
        return list(self._bindings)

    def copy(self) -> "Environment":
        env = Environment()
        env._bindings = dict(self._bindings)
        return env

    def __contains__(self, key: object) -> bool: return key in self._bindings
    def __len__(self) -> int: return len(self._bindings)


Builder = Callable[[Environment], Optional[Environment]]

def extend(prior: Builder, augment: Builder) -> Builder:
    """Compose two environment builders: augment(prior(env))."""
    def builder(env: Environment) -> Environment:
        return _built(augment, _built(prior, env))
    return builder

def _built(b: Builder, env: Environment) -> Environment:
    # un builder peut ne rien retourner : il a alors modifié env sur place
    out = b(env)
    return env if out is None else out

def build_env(builders: Iterable[Builder], env: Optional[Environment] = None) -> Environment:
    """Fold builders left-to-right over env (a fresh environment by default)."""
    env = Environment.create() if env is None else env
    for b in builders:
        env = _built(b, env)
    return env


# ------------------------------ Interpreter ----------------------------------

@dataclass
class RunResult:
    stack: Stack
    pc: int
    error: Optional[SlangError] = None
    steps: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Stack:
        if self.error is not None:
            raise Halted(self) from self.error
        return self.stack


class Halted(SlangError):
    def __init__(self, result: RunResult) -> None:
        self.result = result
        super().__init__(f"halted at pc={result.pc}: {result.error}")


def apply(p: Value, stack: Stack) -> Stack:
    """Invoke a primitive value against the stack."""
    capability: Primitive = p.v
    try:
        out = capability.apply(stack)
    except ArityMismatch:
        raise
    except StackUnderflow as e:
        raise ArityMismatch(capability.name, e.wanted, e.depth) from e
    if not isinstance(out, Stack):
        raise TypeError(f"primitive {capability.name} returned {type(out).__name__}, expected Stack")
    return out


class Interpreter:
    def __init__(self, env: Environment, program: Program, pc: int = 0, stack: Optional[Stack] = None) -> None:
        if not (0 <= pc <= len(program)):
            raise ValueError(f"pc out of range: {pc}")
        self.env = env
        self.program = program
        self.pc = pc
        self.stack = stack if stack is not None else Stack()
        self.steps = 0
        self.error: Optional[SlangError] = None

    def done(self) -> bool:
        return self.error is not None or self.pc >= len(self.program)

    def step_one(self) -> bool:
        """Execute exactly one instruction.

        Returns True while work remains. On failure, pc stays on the failing
        instruction and the error is kept in self.error.
        """
        if self.done():
            return False
        instr = self.program[self.pc]
        try:
            if instr.tag is Tag.WORD:
                # une seule résolution : un mot lié à un mot est empilé tel quel
                instr = self.env.lookup(instr)
            if instr.tag is Tag.PRIM:
                self.stack = apply(instr, self.stack)
            else:
                self.stack.push(instr)
        except SlangError as e:
            self.error = e
            return False
        self.pc += 1
        self.steps += 1
        return not self.done()

    def result(self) -> RunResult:
        return RunResult(self.stack, self.pc, self.error, self.steps)

    def run(self) -> RunResult:
        while self.step_one():
            pass
        return self.result()


def run(env: Environment, program: Program, pc: int = 0, stack: Optional[Stack] = None) -> RunResult:
    return Interpreter(env, program, pc, stack).run()


####################################################################
# Tests

def _env_with_add() -> Environment:
    def add(s: Stack) -> Stack:
        y, x = s.pop(), s.pop()
        return s.push(number(x.v + y.v))
    return Environment.create().define("+", prim(add, "+"))


class TestValues(unittest.TestCase):
    def test_constructors_tag_payload(self):
        self.assertEqual(number(3), Value(Tag.NUMBER, 3.0))
        self.assertIsInstance(number(3).v, float)
        self.assertEqual(string("hi").tag, Tag.STRING)
        self.assertEqual(word("dup").v, "dup")
        p = prim(lambda s: s, "id")
        self.assertTrue(p.is_prim())
        self.assertIsInstance(p.v, Primitive)
        self.assertEqual(p.v.name, "id")

    def test_no_coercion(self):
        with self.assertRaises(TypeError): number("1")
        with self.assertRaises(TypeError): number(True)
        with self.assertRaises(TypeError): string(1)
        with self.assertRaises(TypeError): word("")
        with self.assertRaises(TypeError): prim(42)
        with self.assertRaises(ValueError): number(10 ** 400)
        self.assertNotEqual(string("x"), word("x"))

    def test_frozen(self):
        v = number(1)
        with self.assertRaises(Exception):
            v.v = 2


class TestStack(unittest.TestCase):
    def test_push_pop_roundtrip(self):
        s = Stack([number(1), string("a")])
        before = s.snapshot()
        for v in (number(7), string("x"), word("w")):
            self.assertIs(s.push(v), s)
            self.assertEqual(s.pop(), v)
            self.assertEqual(s.snapshot(), before)
            self.assertEqual(s.depth(), 2)

    def test_underflow(self):
        s = Stack()
        with self.assertRaises(StackUnderflow): s.pop()
        with self.assertRaises(StackUnderflow): s.top()
        with self.assertRaises(StackUnderflow): s.peek(0)

    def test_peek_and_top(self):
        s = Stack([number(1), number(2), number(3)])
        self.assertEqual(s.top(), number(3))
        self.assertEqual(s.peek(0), number(3))
        self.assertEqual(s.peek(2), number(1))
        with self.assertRaises(StackUnderflow): s.peek(3)
        with self.assertRaises(ValueError): s.peek(-1)
        self.assertEqual(len(s), 3)

    def test_push_rejects_raw_python(self):
        with self.assertRaises(TypeError):
            Stack().push(3)


class TestEnvironment(unittest.TestCase):
    def test_define_lookup(self):
        env = Environment.create()
        self.assertIs(env.define("x", number(42)), env)
        self.assertEqual(env.lookup(word("x")), number(42))
        env.define("x", string("over"))
        self.assertEqual(env.lookup("x"), string("over"))

    def test_unbound(self):
        with self.assertRaises(UnboundWord) as cm:
            Environment.create().lookup(word("undefined_name"))
        self.assertEqual(cm.exception.symbol, "undefined_name")

    def test_extend_composes_in_order(self):
        first = lambda env: env.define("a", number(1))
        second = lambda env: env.define("a", number(2)).define("b", number(3))
        env = extend(first, second)(Environment.create())
        self.assertEqual(env.lookup("a"), number(2))
        self.assertEqual(sorted(env.names()), ["a", "b"])

    def test_build_env_folds_left_to_right(self):
        calls = []
        def one(env):
            calls.append(1); env.define("x", number(1))
        def two(env):
            calls.append(2); return env.define("x", number(2))
        env = build_env([one, two])
        self.assertEqual(calls, [1, 2])
        self.assertEqual(env.lookup("x"), number(2))

    def test_builder_returning_fresh_empty_env(self):
        replace = lambda env: Environment.create()
        add = lambda env: env.define("y", number(5))
        base = Environment.create().define("x", number(1))
        env = extend(replace, add)(base)
        self.assertNotIn("x", env)
        self.assertIn("y", env)


class TestInterpreter(unittest.TestCase):
    def test_smoke_add(self):
        r = run(_env_with_add(), [number(1), number(2), word("+")])
        self.assertTrue(r.ok)
        self.assertEqual(r.stack, [number(3)])
        self.assertEqual(r.pc, 3)

    def test_literals_pushed(self):
        r = run(Environment.create(), [number(1), string("s")])
        self.assertEqual(r.unwrap(), [number(1), string("s")])

    def test_single_indirection(self):
        env = Environment.create().define("a", word("b")).define("b", number(9))
        r = run(env, [word("a")])
        self.assertTrue(r.ok)
        self.assertEqual(r.stack, [word("b")])

    def test_alias_to_primitive_runs_it(self):
        env = _env_with_add()
        env.define("plus", env.lookup("+"))
        r = run(env, [number(2), number(5), word("plus")])
        self.assertEqual(r.stack, [number(7)])

    def test_inline_primitive(self):
        neg = prim(lambda s: s.push(number(-s.pop().v)), "neg")
        r = run(Environment.create(), [number(4), neg])
        self.assertEqual(r.stack, [number(-4)])

    def test_unbound_halts_untouched(self):
        r = run(Environment.create(), [word("missing")])
        self.assertFalse(r.ok)
        self.assertIsInstance(r.error, UnboundWord)
        self.assertEqual(r.error.symbol, "missing")
        self.assertEqual(r.pc, 0)
        self.assertEqual(r.stack.depth(), 0)

    def test_halt_keeps_prior_mutations(self):
        r = run(_env_with_add(), [number(1), number(2), word("nope"), number(3)])
        self.assertEqual(r.pc, 2)
        self.assertEqual(r.stack, [number(1), number(2)])
        with self.assertRaises(Halted) as cm:
            r.unwrap()
        self.assertIs(cm.exception.result, r)

    def test_primitive_underflow_is_arity_mismatch(self):
        r = run(_env_with_add(), [number(1), word("+")])
        self.assertIsInstance(r.error, ArityMismatch)
        self.assertIsInstance(r.error, StackUnderflow)
        self.assertEqual(r.error.name, "+")
        self.assertEqual(r.pc, 1)
        # le pop de y a déjà eu lieu : pas de rollback
        self.assertEqual(r.stack.depth(), 0)

    def test_primitive_may_replace_stack(self):
        fresh = prim(lambda s: Stack([string("new")]), "fresh")
        r = run(Environment.create(), [number(1), fresh, number(2)])
        self.assertEqual(r.stack, [string("new"), number(2)])

    def test_bad_primitive_return(self):
        bad = prim(lambda s: 42, "bad")
        with self.assertRaises(TypeError):
            run(Environment.create(), [bad])

    def test_resume_from_offset(self):
        prog = [number(100), number(1), number(2), word("+")]
        r = run(_env_with_add(), prog, 1, Stack([number(10)]))
        self.assertEqual(r.stack, [number(10), number(3)])
        self.assertEqual(r.steps, 3)

    def test_step_one(self):
        it = Interpreter(_env_with_add(), [number(1), number(2), word("+")])
        self.assertTrue(it.step_one())
        self.assertTrue(it.step_one())
        self.assertFalse(it.step_one())
        self.assertFalse(it.step_one())
        self.assertEqual(it.result().stack, [number(3)])

    def test_empty_program(self):
        r = run(Environment.create(), [])
        self.assertTrue(r.ok)
        self.assertEqual(r.stack.depth(), 0)


class TestSuiteHelpers(unittest.TestCase):
    def test_test_all_hidden_from_collectors(self):
        import importlib
        for name in ("slang_vm_core", "slang_stdlib", "slang_runtime", "slang_display", "slang_cli"):
            mod = importlib.import_module(name)
            self.assertIs(getattr(mod.test_all, "__test__", True), False, name)


def test_all():
    loader = unittest.TestLoader()
    suite = loader.loadTestsFromModule(sys.modules[__name__])
    runner = unittest.TextTestRunner(verbosity=2)
    runner.run(suite)

# lancé à la main ; pytest collecte déjà les TestCase
test_all.__test__ = False

if __name__ == "__main__" :
    test_all()
