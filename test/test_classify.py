"""
Tests for dynsym.classify and dynsym.collect.

Covers: classify, var_from_nested_derivative, iv_from_nested_derivative,
infer_iv, collect_vars
"""

import pytest

from dynsym.classify import (
    EquationKind,
    classify,
    infer_iv,
    iv_from_nested_derivative,
    var_from_nested_derivative,
)
from dynsym.collect import collect_vars
from dynsym.equations import Equation
from dynsym.errors import InvalidEquationError, MissingIndependentVariableError
from dynsym.expr import DependentVariable, Difference, Differential, symbols


@pytest.fixture
def tx():
    t, s = symbols("t s")
    x, y = DependentVariable("x"), DependentVariable("y")
    return t, s, x, y


# =============================================================================
# Classification
# =============================================================================


class TestClassify:
    """Test classify()."""

    def test_differential(self, tx) -> None:
        t, _, x, y = tx
        c = classify(Equation(Differential(t)(x(t)), y(t)), t)
        assert c.kind == EquationKind.DIFFERENTIAL
        assert c.variable == x(t)
        assert c.order == 1
        assert c.dt is None
        assert c.is_operator

    def test_nested_differential(self, tx) -> None:
        t, _, x, _ = tx
        D = Differential(t)
        c = classify(Equation(D(D(x(t))), 0), t)
        assert c.variable == x(t)
        assert c.order == 2

    def test_difference(self, tx) -> None:
        t, _, x, _ = tx
        c = classify(Equation(Difference(t, dt=1.5)(x(t)), x(t)), t)
        assert c.kind == EquationKind.DIFFERENCE
        assert c.dt == 1.5

    def test_plain(self, tx) -> None:
        t, _, x, y = tx
        c = classify(Equation(0, x(t) - y(t)), t)
        assert c.kind == EquationKind.PLAIN
        assert not c.is_operator
        assert c.variable is None

    def test_other_iv_rejected(self, tx) -> None:
        t, s, x, _ = tx
        eq = Equation(Differential(s)(x(s)), 0)
        with pytest.raises(InvalidEquationError, match="one independent variable") as excinfo:
            classify(eq, t)
        assert excinfo.value.equation == eq

    def test_target_must_be_bare_variable(self, tx) -> None:
        t, _, x, y = tx
        with pytest.raises(InvalidEquationError, match="not a single dependent variable"):
            classify(Equation(Differential(t)(x(t) + y(t)), 0), t)

    def test_multi_argument_state_rejected(self, tx) -> None:
        t, s, x, _ = tx
        with pytest.raises(InvalidEquationError, match="at most one argument"):
            classify(Equation(Differential(t)(x(t, s)), 0), t)

    def test_state_argument_must_be_iv(self, tx) -> None:
        t, _, x, _ = tx
        with pytest.raises(InvalidEquationError, match="function of the independent variable"):
            classify(Equation(Differential(t)(x(t - 1)), 0), t)

    def test_mixed_operators_rejected(self, tx) -> None:
        t, _, x, _ = tx
        eq = Equation(Differential(t)(Difference(t, dt=1)(x(t))), 0)
        with pytest.raises(InvalidEquationError, match="mix"):
            classify(eq, t)


class TestNestedDerivativeHelpers:
    """Test var_from_nested_derivative and iv_from_nested_derivative."""

    def test_var_from_nested(self, tx) -> None:
        t, _, x, _ = tx
        D = Differential(t)
        assert var_from_nested_derivative(D(D(D(x(t))))) == (x(t), 3)

    def test_iv_from_operator(self, tx) -> None:
        t, _, x, _ = tx
        assert iv_from_nested_derivative(Differential(t)(x(t))) == t

    def test_iv_from_call(self, tx) -> None:
        t, _, x, _ = tx
        assert iv_from_nested_derivative(x(t)) == t

    def test_iv_from_symbol(self, tx) -> None:
        t, _, _, _ = tx
        assert iv_from_nested_derivative(t) == t

    def test_iv_from_other_is_none(self, tx) -> None:
        t, s, _, _ = tx
        assert iv_from_nested_derivative(t + s) is None


class TestInferIV:
    """Test infer_iv()."""

    def test_skips_number_lhs(self, tx) -> None:
        t, _, x, _ = tx
        eqs = [Equation(0, x(t) - 1), Equation(Differential(t)(x(t)), 1)]
        assert infer_iv(eqs) == t

    def test_missing(self, tx) -> None:
        t, s, _, _ = tx
        with pytest.raises(MissingIndependentVariableError):
            infer_iv([Equation(0, t + s)])

    def test_unusable_lhs(self, tx) -> None:
        t, s, _, _ = tx
        with pytest.raises(MissingIndependentVariableError):
            infer_iv([Equation(t + s, 0)])


# =============================================================================
# Variable Collection
# =============================================================================


class TestCollectVars:
    """Test collect_vars()."""

    def test_states_and_params(self, tx) -> None:
        t, s, x, y = tx
        states, params = collect_vars(s * x(t) + y(t - 2) * s, t)
        assert list(states) == [x(t), y(t - 2)]
        assert list(params) == [s]

    def test_iv_excluded(self, tx) -> None:
        t, s, x, _ = tx
        states, params = collect_vars(t * x(t) + s, t)
        assert t not in states
        assert t not in params

    def test_call_without_iv_is_param(self, tx) -> None:
        t, s, x, _ = tx
        states, params = collect_vars(x(s), t)
        assert list(states) == []
        assert list(params) == [x(s)]

    def test_operator_operand_collected(self, tx) -> None:
        t, _, x, _ = tx
        states, params = collect_vars(Differential(t)(x(t)), t)
        assert list(states) == [x(t)]
        assert list(params) == []

    def test_accumulates_in_place(self, tx) -> None:
        t, s, x, y = tx
        states, params = collect_vars(x(t), t)
        collect_vars(y(t) + s + x(t), t, states, params)
        assert list(states) == [x(t), y(t)]
        assert list(params) == [s]
