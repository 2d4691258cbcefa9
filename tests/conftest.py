# tests/conftest.py
"""
Shared program builders for the fixedpoint_shims test-suite.

Every builder returns a small Program together with the nodes a test
wants to look at, so tests read as "build, analyse, inspect".
"""

from types import SimpleNamespace

import pytest

from fixedpoint_shims.config import AnalysisConfig
from fixedpoint_shims.metadata import ValueInfo
from fixedpoint_shims.numeric_types import Range
from fixedpoint_shims.program_model import Builder, Program
from fixedpoint_shims.value_types import F64


# ── Straight-line programs ───────────────────────────────────────

def make_main(*params):
    """A ``main`` start function with float parameters.

    ``params`` are ``(name, seed)`` pairs; a bare Range is shorthand for
    ``ValueInfo(range=...)``.  Returns (program, function, builder, args).
    """
    prog = Program()
    fn = prog.add_function("main", F64, start=True)
    args = []
    for name, seed in params:
        if isinstance(seed, Range):
            seed = ValueInfo(range=seed)
        args.append(fn.add_param(name, F64, seed=seed))
    b = Builder(fn, fn.add_block("entry"))
    return prog, fn, b, args


def binop_program(op, lhs, rhs, lhs_error=None, rhs_error=None):
    """``main(a, b) = a <op> b`` with seeded operand ranges and errors."""
    prog, fn, b, (a, c) = make_main(
        ("a", ValueInfo(range=lhs, initial_error=lhs_error)),
        ("b", ValueInfo(range=rhs, initial_error=rhs_error)),
    )
    x = getattr(b, op)(a, c, name="x")
    b.ret(x)
    prog.add_target("out", [x])
    return SimpleNamespace(program=prog, a=a, b=c, x=x)


# ── Loops ────────────────────────────────────────────────────────

def counter_loop(trip=None, unroll=None, step=1.0):
    """
    Counting loop; ``step`` is the increment (1.0 below).

    ::

        entry:  br loop
        loop:   %i = phi [entry: 0.0], [loop: %n]
                %n = add %i, 1.0
                %c = cmp lt %n, 8.0
                condbr %c, loop, done
        done:   ret %i
    """
    prog = Program()
    fn = prog.add_function("main", F64, start=True)
    entry = fn.add_block("entry")
    loop = fn.add_block("loop")
    done = fn.add_block("done")
    b = Builder(fn, entry)
    zero = b.const(0.0, name="zero")
    one = b.const(step, name="one")
    limit = b.const(8.0, name="limit")
    b.br(loop)

    b.position_at(loop)
    i = b.phi([(entry, zero)], name="i")
    n = b.add(i, one, name="n")
    c = b.cmp("lt", n, limit, name="c")
    b.condbr(c, loop, done)
    Builder.add_incoming(i, loop, n)

    b.position_at(done)
    b.ret(i)

    loop.trip_count = trip
    loop.unroll_count = unroll
    prog.add_target("counter", [i])
    return SimpleNamespace(program=prog, fn=fn, loop=loop, i=i, n=n, c=c, one=one)


def recursive_program(max_recursion=None):
    """``f(x) = x + f(x)`` called once from ``main(a)`` with a in [0, 1]."""
    prog = Program()
    f = prog.add_function("f", F64, max_recursion=max_recursion)
    x = f.add_param("x", F64)
    fb = Builder(f, f.add_block("entry"))
    inner = fb.call(f, [x], name="inner")
    s = fb.add(x, inner, name="s")
    fb.ret(s)

    main = prog.add_function("main", F64, start=True)
    a = main.add_param("a", F64, seed=ValueInfo(range=Range(0.0, 1.0)))
    mb = Builder(main, main.add_block("entry"))
    outer = mb.call(f, [a], name="outer")
    mb.ret(outer)
    return SimpleNamespace(program=prog, f=f, x=x, inner=inner, s=s, outer=outer)


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def config():
    return AnalysisConfig()


@pytest.fixture
def exact_config():
    return AnalysisConfig(exact_constants=True)


@pytest.fixture
def listing_text():
    return """
# a small kernel
struct pair { float, float }
global @g : float = 1.5 !range(0, 10)
declare @sqrt(double) : double

func @main(%a : float !range(-1, 1) !error(0.001)) : float start {
entry:
  %c = const float 2.5
  %x = add %a, %c
  %p = alloca pair !field(1) !range(-2, 2)
  %f0 = field %p, 0
  store %x, %f0
  %v = load %f0
  br loop
loop: !trip(8)
  %i = phi float [entry: %x], [loop: %n]
  %n = mul %i, %c
  %k = cmp lt %n, %c
  condbr %k, loop, done
done:
  ret %i
}

target "out" = @main.%x, @main.%v
target "glob" = @g
"""
