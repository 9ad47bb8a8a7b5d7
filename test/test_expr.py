"""
Tests for dynsym.expr and dynsym.equations.

Covers: Expr, DependentVariable, Differential, Difference, traversal helpers,
Equation, connect
"""

import numpy as np
import pytest

from dynsym.equations import Connection, Equation, connect
from dynsym.expr import (
    DependentVariable,
    Difference,
    Differential,
    Expr,
    ExprKind,
    dependent_variables,
    flatten_exprs,
    free_symbols,
    has_iv,
    sin,
    substitute,
    sym,
    symbols,
    to_expr,
)

# =============================================================================
# Expression Construction
# =============================================================================


class TestExprConstruction:
    """Test leaf factories and operator overloads."""

    def test_symbol(self) -> None:
        t = sym("t")
        assert t.kind == ExprKind.SYMBOL
        assert t.name == "t"
        assert repr(t) == "t"

    def test_number_promotion(self) -> None:
        c = to_expr(3)
        assert c.kind == ExprKind.CONSTANT
        assert c.value == 3.0
        assert to_expr(np.float64(1.5)).value == 1.5

    def test_bool_rejected(self) -> None:
        with pytest.raises(TypeError):
            to_expr(True)

    def test_arithmetic_builds_tree(self) -> None:
        a, b = symbols("a b")
        e = 2 * a + b
        assert e.kind == ExprKind.ADD
        assert e.children[0].kind == ExprKind.MUL
        assert e.children[0].children[0] == to_expr(2.0)

    def test_structural_equality_and_hash(self) -> None:
        t = sym("t")
        x = DependentVariable("x")
        assert x(t - 1.5) == x(t - 1.5)
        assert hash(x(t)) == hash(x(t))
        assert x(t) != x(t - 1.5)
        assert len({x(t), x(t), x(t - 1)}) == 2

    def test_default_is_metadata(self) -> None:
        t = sym("t")
        assert DependentVariable("S", default=990.0)(t) == DependentVariable("S")(t)
        assert DependentVariable("S", default=990.0)(t).default == 990.0
        assert sym("beta", default=0.1) == sym("beta")

    def test_call_repr(self) -> None:
        t = sym("t")
        x = DependentVariable("x")
        assert repr(x(t)) == "x(t)"
        assert repr(x(t - 1.5)) == "x(t - 1.5)"

    def test_dependent_variables(self) -> None:
        x, y = dependent_variables("x y")
        assert x.name == "x"
        assert y.name == "y"


# =============================================================================
# Operators
# =============================================================================


class TestOperators:
    """Test Differential and Difference."""

    def test_differential(self) -> None:
        t = sym("t")
        x = DependentVariable("x")
        d = Differential(t)(x(t))
        assert d.kind == ExprKind.DIFFERENTIAL
        assert d.iv == t
        assert d.children == (x(t),)
        assert d.is_operator

    def test_difference_step(self) -> None:
        t = sym("t")
        x = DependentVariable("x")
        d = Difference(t, dt=2)(x(t))
        assert d.kind == ExprKind.DIFFERENCE
        assert d.value == 2.0
        assert repr(d) == "Difference(t; dt=2.0)(x(t))"

    def test_difference_step_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            Difference(sym("t"), dt=0)

    def test_iv_must_be_symbol(self) -> None:
        t = sym("t")
        with pytest.raises(ValueError, match="symbol"):
            Differential(t + 1)


# =============================================================================
# Traversal Helpers
# =============================================================================


class TestTraversal:
    """Test free_symbols, has_iv, substitute, flatten_exprs."""

    def test_free_symbols_order(self) -> None:
        t, a, b = symbols("t a b")
        x = DependentVariable("x")
        e = b * x(t) + a * b
        assert free_symbols(e) == [b, x(t), a]

    def test_free_symbols_treats_call_as_atom(self) -> None:
        t, a = symbols("t a")
        x = DependentVariable("x")
        assert free_symbols(x(t - a)) == [x(t - a)]

    def test_has_iv(self) -> None:
        t, a = symbols("t a")
        x = DependentVariable("x")
        assert has_iv(x(t - 3), t)
        assert not has_iv(sin(a), t)

    def test_substitute(self) -> None:
        t, a = symbols("t a")
        x = DependentVariable("x")
        e = substitute(a * x(t), {a: 2.0})
        assert e == to_expr(2.0) * x(t)

    def test_flatten_exprs(self) -> None:
        a, b, c = symbols("a b c")
        arr = np.array([a, b], dtype=object)
        assert flatten_exprs([arr, [c]]) == [a, b, c]
        assert flatten_exprs(a) == [a]


# =============================================================================
# Equations
# =============================================================================


class TestEquation:
    """Test Equation and connect()."""

    def test_number_sides_promoted(self) -> None:
        a = sym("a")
        eq = Equation(0, a - 1)
        assert isinstance(eq.lhs, Expr)
        assert eq.lhs.is_number
        assert repr(eq) == "0.0 ~ (a - 1.0)"

    def test_equation_equality(self) -> None:
        a = sym("a")
        assert Equation(a, 1) == Equation(a, 1.0)
        assert Equation(a, 1) != Equation(1, a)

    def test_equation_substitute(self) -> None:
        a, b = symbols("a b")
        eq = Equation(a, b).substitute({b: 3.0})
        assert eq.rhs == to_expr(3.0)

    def test_connect(self) -> None:
        eq = connect("pin1", "pin2")
        assert eq.is_connection
        assert eq.rhs == Connection(("pin1", "pin2"))
        assert repr(eq) == "connection ~ connect(pin1, pin2)"
