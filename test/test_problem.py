"""
Tests for dynsym.problem.

Covers: varmap_to_vars, DiscreteProblem, ODEProblem
"""

import numpy as np
import pytest

from dynsym import (
    DependentVariable,
    Difference,
    Differential,
    DiscreteProblem,
    DiscreteSystem,
    Equation,
    ODEProblem,
    ODESystem,
    UnknownVariableError,
    exp,
    sym,
    symbols,
    varmap_to_vars,
)


def rate_to_proportion(r, t):
    return 1 - exp(-r * t)


@pytest.fixture
def sir():
    """Discrete SIR model with the contact rate as a control."""
    t, c, dt, beta, gamma = symbols("t c dt beta gamma")
    S = DependentVariable("S", default=990.0)
    I = DependentVariable("I", default=10.0)
    R = DependentVariable("R", default=0.0)
    D = Difference(t, dt=0.1)
    infection = rate_to_proportion(beta * c * I(t) / (S(t) + I(t) + R(t)), dt) * S(t)
    recovery = rate_to_proportion(gamma, dt) * I(t)
    eqs = [
        Equation(D(S(t)), S(t) - infection),
        Equation(D(I(t)), I(t) + infection - recovery),
        Equation(D(R(t)), R(t) + recovery),
    ]
    sys = DiscreteSystem(eqs, t, name="sir", controls=[beta])
    return t, (S, I, R), (c, dt, beta, gamma), sys


def sir_step(u, c, dt, beta, gamma):
    s, i, r = u
    infection = (1 - np.exp(-beta * c * i / (s + i + r) * dt)) * s
    recovery = (1 - np.exp(-gamma * dt)) * i
    return np.array([s - infection, i + infection - recovery, r + recovery])


# =============================================================================
# varmap_to_vars
# =============================================================================


class TestVarmapToVars:
    """Test varmap_to_vars()."""

    def test_mapping(self) -> None:
        a, b = symbols("a b")
        np.testing.assert_allclose(varmap_to_vars({b: 2, a: 1}, [a, b]), [1.0, 2.0])

    def test_pairs(self) -> None:
        a, b = symbols("a b")
        np.testing.assert_allclose(varmap_to_vars([(b, 2), (a, 1)], [a, b]), [1.0, 2.0])

    def test_positional(self) -> None:
        a, b = symbols("a b")
        np.testing.assert_allclose(varmap_to_vars([3, 4], [a, b]), [3.0, 4.0])

    def test_positional_length_mismatch(self) -> None:
        a, b = symbols("a b")
        with pytest.raises(ValueError):
            varmap_to_vars([3], [a, b])

    def test_defaults_fill_gaps(self) -> None:
        a, b = symbols("a b")
        np.testing.assert_allclose(varmap_to_vars({a: 1}, [a, b], {a: 5.0, b: 7.0}), [1.0, 7.0])

    def test_symbolic_default(self) -> None:
        a, b, c = symbols("a b c")
        out = varmap_to_vars({a: 2.0}, [a, b, c], {b: 2 * a, c: b + 1})
        np.testing.assert_allclose(out, [2.0, 4.0, 5.0])

    def test_missing_value(self) -> None:
        a, b = symbols("a b")
        with pytest.raises(UnknownVariableError) as excinfo:
            varmap_to_vars({a: 1}, [a, b])
        assert excinfo.value.variable == b

    def test_unresolvable_default(self) -> None:
        a, b, q = symbols("a b q")
        with pytest.raises(UnknownVariableError, match="resolve"):
            varmap_to_vars({a: 1}, [a, b], {b: q * a})

    def test_empty_list_uses_defaults(self) -> None:
        a, b = symbols("a b")
        np.testing.assert_allclose(varmap_to_vars([], [a, b], {a: 1.0, b: 2.0}), [1.0, 2.0])


# =============================================================================
# DiscreteProblem
# =============================================================================


class TestDiscreteProblem:
    """Test DiscreteProblem on the SIR model."""

    def test_system(self, sir) -> None:
        t, (S, I, R), (c, dt, beta, gamma), sys = sir
        assert sys.states == [S(t), I(t), R(t)]
        assert set(sys.parameters) == {c, dt, beta, gamma}
        assert sys.controls == [beta]
        assert sys.defaults == {S(t): 990.0, I(t): 10.0, R(t): 0.0}

    def test_update_matches_direct(self, sir) -> None:
        t, (S, I, R), (c, dt, beta, gamma), sys = sir
        pvals = {beta: 0.05, c: 10.0, gamma: 0.25, dt: 0.1}
        prob = DiscreteProblem(sys, {}, (0.0, 100.0), pvals)
        np.testing.assert_allclose(prob.u0, [990.0, 10.0, 0.0])
        assert prob.tspan == (0.0, 100.0)
        assert prob.sys is sys

        u = prob.u0
        for _ in range(5):
            expected = sir_step(u, 10.0, 0.1, 0.05, 0.25)
            u = prob.f(u, prob.p, 0.0)
            np.testing.assert_allclose(u, expected)

    def test_population_conserved(self, sir) -> None:
        t, _, (c, dt, beta, gamma), sys = sir
        prob = DiscreteProblem(sys, None, (0.0, 1.0), {beta: 0.05, c: 10.0, gamma: 0.25, dt: 0.1})
        assert prob.rhs().sum() == pytest.approx(1000.0)

    def test_missing_parameter(self, sir) -> None:
        t, _, (c, dt, beta, gamma), sys = sir
        with pytest.raises(UnknownVariableError):
            DiscreteProblem(sys, None, (0.0, 1.0), {beta: 0.05, c: 10.0})

    def test_bad_tspan(self, sir) -> None:
        _, _, _, sys = sir
        with pytest.raises(ValueError, match="tspan"):
            DiscreteProblem(sys, None, (0.0,), {})

    def test_empty_lists_use_variable_defaults(self) -> None:
        t = sym("t")
        b = sym("b", default=0.5)
        S = DependentVariable("S", default=990.0)
        sys = DiscreteSystem([Equation(Difference(t, dt=1)(S(t)), (1 - b) * S(t))], t, name="decay")
        prob = DiscreteProblem(sys, [], (0.0, 4.0), [])
        np.testing.assert_allclose(prob.u0, [990.0])
        np.testing.assert_allclose(prob.p, [0.5])
        assert prob.tspan == (0.0, 4.0)
        np.testing.assert_allclose(prob.rhs(), [495.0])

    def test_requires_system(self, sir) -> None:
        _, _, _, sys = sir
        f = sys.generate_function()
        with pytest.raises(TypeError, match="system"):
            DiscreteProblem(f, [990.0, 10.0, 0.0], (0.0, 1.0), [])

    def test_repr(self, sir) -> None:
        _, _, (c, dt, beta, gamma), sys = sir
        prob = DiscreteProblem(sys, None, (0.0, 1.0), {beta: 0.05, c: 10.0, gamma: 0.25, dt: 0.1})
        assert repr(prob) == "DiscreteProblem('sir', tspan=(0.0, 1.0))"


# =============================================================================
# ODEProblem
# =============================================================================


class TestODEProblem:
    """Test ODEProblem."""

    def test_rhs_with_algebraic_residual(self) -> None:
        t, k = symbols("t k")
        x, y = DependentVariable("x"), DependentVariable("y")
        sys = ODESystem(
            [Equation(Differential(t)(x(t)), -k * y(t)), Equation(0, y(t) - 2 * x(t))],
            name="dae",
            defaults={k: 3.0},
        )
        prob = ODEProblem(sys, {x(t): 1.0, y(t): 2.0}, (0, 1))
        np.testing.assert_allclose(prob.p, [3.0])
        np.testing.assert_allclose(prob.rhs(), [-6.0, 0.0])
        np.testing.assert_allclose(prob.f([1.0, 5.0], prob.p, 0.0), [-15.0, 3.0])
