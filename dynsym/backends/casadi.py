"""
CasADi backend for dynsym.

Compiles expression trees into CasADi functions with the signature
f(u, p, t) used by problems and observed functions, and builds the derived
matrices (time gradient, Jacobians) of ODE systems.

================================================================================
SYMBOL LAYOUT
================================================================================

    u   states, in system state order       (SX column, len(states))
    p   parameters, in system param order   (SX column, len(params))
    t   independent variable                (SX scalar)

Observed assignments are bound to their compiled right side before the
outputs are compiled, so an output refers to them by name.

================================================================================
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import casadi as ca
import numpy as np
from beartype import beartype

from dynsym.equations import Equation
from dynsym.errors import InvalidEquationError, UnknownVariableError
from dynsym.expr import OPERATOR_KINDS, Expr, ExprKind

# Type variable for SX or MX
SymT = TypeVar("SymT", ca.SX, ca.MX)


# =============================================================================
# Expression Conversion - Dispatch Table
# =============================================================================


def _make_expr_handlers():
    """Create dispatch table for expression conversion."""
    unary_math = {
        ExprKind.NEG: lambda c, e: -c(e.children[0]),
        ExprKind.SIN: lambda c, e: ca.sin(c(e.children[0])),
        ExprKind.COS: lambda c, e: ca.cos(c(e.children[0])),
        ExprKind.TAN: lambda c, e: ca.tan(c(e.children[0])),
        ExprKind.TANH: lambda c, e: ca.tanh(c(e.children[0])),
        ExprKind.SQRT: lambda c, e: ca.sqrt(c(e.children[0])),
        ExprKind.EXP: lambda c, e: ca.exp(c(e.children[0])),
        ExprKind.LOG: lambda c, e: ca.log(c(e.children[0])),
        ExprKind.ABS: lambda c, e: ca.fabs(c(e.children[0])),
    }

    binary_math = {
        ExprKind.ADD: lambda c, e: c(e.children[0]) + c(e.children[1]),
        ExprKind.SUB: lambda c, e: c(e.children[0]) - c(e.children[1]),
        ExprKind.MUL: lambda c, e: c(e.children[0]) * c(e.children[1]),
        ExprKind.DIV: lambda c, e: c(e.children[0]) / c(e.children[1]),
        ExprKind.POW: lambda c, e: c(e.children[0]) ** c(e.children[1]),
    }

    return {**unary_math, **binary_math}


# Global dispatch table
_EXPR_HANDLERS = _make_expr_handlers()


def _as_column(values: Any) -> ca.DM:
    return ca.DM(np.asarray(values, dtype=float).reshape(-1, 1))


class NumericFunction:
    """
    Callable wrapper around a ca.Function with inputs (u, p, t).

    Returns a 1-D numpy array, or a float when built for a single output.
    """

    def __init__(self, func: ca.Function, scalar: bool = False):
        self.func = func
        self.scalar = scalar

    @property
    def name(self) -> str:
        return self.func.name()

    def __call__(self, u: Any, p: Any, t: float) -> Any:
        out = np.array(self.func(_as_column(u), _as_column(p), float(t))).flatten()
        if self.scalar:
            return float(out[0])
        return out

    def __repr__(self) -> str:
        return f"NumericFunction('{self.name}')"


# =============================================================================
# Compiler
# =============================================================================


class CasadiCompiler:
    """
    Compiles expressions over a fixed state/parameter layout.

    Parameters
    ----------
    states : sequence of Expr
        State vector, mapped onto the entries of `x`.
    params : sequence of Expr
        Parameter vector, mapped onto the entries of `p`.
    iv : Expr, optional
        Independent variable, mapped onto `t`.
    sym_type : ca.SX or ca.MX
        CasADi symbolic type.
    """

    def __init__(
        self,
        states: Sequence[Expr] = (),
        params: Sequence[Expr] = (),
        iv: Optional[Expr] = None,
        sym_type: Type[SymT] = ca.SX,
    ):
        self.sym_type = sym_type
        self.states = list(states)
        self.params = list(params)
        self.iv = iv

        self.x: SymT = sym_type.sym("u", len(self.states))
        self.p: SymT = sym_type.sym("p", len(self.params))
        self.t: SymT = sym_type.sym(iv.name if iv is not None else "t")

        # Combined symbol lookup
        self.base_syms: Dict[Expr, SymT] = {}
        for i, s in enumerate(self.states):
            self.base_syms.setdefault(s, self.x[i])
        for i, p in enumerate(self.params):
            self.base_syms.setdefault(p, self.p[i])
        if iv is not None:
            self.base_syms[iv] = self.t

        # Observed assignments
        self.bound: Dict[Expr, SymT] = {}

        self.rhs_expr: Optional[SymT] = None

    @classmethod
    def from_system(cls, sys: Any) -> "CasadiCompiler":
        """Compiler over the layout of `sys`, with its right side compiled."""
        compiler = cls(sys.states, sys.parameters, sys.iv)
        compiler.rhs_expr = compiler.equations_to_casadi(sys.equations, residual_algebraic=True)
        return compiler

    def bind(self, var: Expr, value: SymT) -> None:
        """Make `var` compile to `value` (used for observed assignments)."""
        self.bound[var] = value

    def expr_to_casadi(self, expr: Expr) -> SymT:
        """Convert an Expr tree to a CasADi expression."""
        if expr.kind in (ExprKind.SYMBOL, ExprKind.CALL):
            if expr in self.base_syms:
                return self.base_syms[expr]
            if expr in self.bound:
                return self.bound[expr]
            raise UnknownVariableError(f"Unknown variable: {expr}", expr)

        if expr.kind == ExprKind.CONSTANT:
            return self.sym_type(expr.value)

        if expr.kind in OPERATOR_KINDS:
            raise InvalidEquationError(f"Operator {expr} cannot be evaluated numerically")

        handler = _EXPR_HANDLERS.get(expr.kind)
        if handler:
            return handler(self.expr_to_casadi, expr)

        raise ValueError(f"Unsupported expression kind: {expr.kind}")

    def equations_to_casadi(self, equations: Sequence[Equation], residual_algebraic: bool = True) -> SymT:
        """
        Stack one output per equation.

        Operator equations give their right side. Algebraic equations give
        `rhs - lhs` when `residual_algebraic`, else their right side.
        """
        out: List[SymT] = []
        for eq in equations:
            if eq.is_connection:
                raise InvalidEquationError(
                    f"Connection equation {eq} must be expanded before code generation", equation=eq
                )
            rhs = self.expr_to_casadi(eq.rhs)
            if residual_algebraic and not eq.lhs.is_operator:
                rhs = rhs - self.expr_to_casadi(eq.lhs)
            out.append(rhs)
        if not out:
            return self.sym_type(0, 1)
        return ca.vertcat(*out)

    def updates_to_casadi(self, equations: Sequence[Equation]) -> SymT:
        """
        Next-step state vector of a discrete system.

        Each equation writes its right side into the slot of the state on its
        left side (the operand of a difference, or a lagged variable of a
        shift equation). States without an equation keep their value.
        """
        index: Dict[Expr, int] = {}
        for i, s in enumerate(self.states):
            index.setdefault(s, i)
        slots: List[SymT] = [self.x[i] for i in range(len(self.states))]
        assigned: Dict[int, Equation] = {}
        for eq in equations:
            if eq.is_connection:
                raise InvalidEquationError(
                    f"Connection equation {eq} must be expanded before code generation", equation=eq
                )
            target = eq.lhs
            while target.kind in OPERATOR_KINDS:
                target = target.children[0]
            if target not in index:
                raise InvalidEquationError(f"Left side of {eq} is not a state of the system", equation=eq)
            i = index[target]
            if i in assigned:
                raise InvalidEquationError(
                    f"State {target} is updated by both {assigned[i]} and {eq}", equation=eq
                )
            assigned[i] = eq
            slots[i] = self.expr_to_casadi(eq.rhs)
        if not slots:
            return self.sym_type(0, 1)
        return ca.vertcat(*slots)

    def function(self, name: str, expr: SymT, scalar: bool = False) -> NumericFunction:
        """Wrap `expr` as f(u, p, t)."""
        func = ca.Function(name, [self.x, self.p, self.t], [expr], ["u", "p", "t"], ["out"])
        return NumericFunction(func, scalar=scalar)

    # ---------------------------------------------------------------- derived

    def _require_rhs(self) -> SymT:
        if self.rhs_expr is None:
            raise ValueError("No right-hand side compiled; use CasadiCompiler.from_system")
        return self.rhs_expr

    def tgrad(self) -> SymT:
        """d(rhs)/dt as a column."""
        return ca.jacobian(self._require_rhs(), self.t)

    def jacobian(self) -> SymT:
        """d(rhs)/du."""
        return ca.jacobian(self._require_rhs(), self.x)

    def control_jacobian(self, controls: Sequence[Expr]) -> SymT:
        """d(rhs)/d(controls), controls being a subset of the parameters."""
        rhs = self._require_rhs()
        if not controls:
            return self.sym_type(rhs.shape[0], 0)
        return ca.jacobian(rhs, ca.vertcat(*[self.base_syms[c] for c in controls]))


# =============================================================================
# Entry points
# =============================================================================


@beartype
def generate_function(
    sys: Any,
    equations: Optional[Sequence[Equation]] = None,
    residual_algebraic: bool = True,
    state_update: bool = False,
) -> NumericFunction:
    """
    Numeric right-hand side f(u, p, t) of a system.

    Parameters
    ----------
    sys : AbstractSystem
        Source of the state/parameter layout and, by default, the equations.
    equations : sequence of Equation, optional
        Equations to compile instead of `sys.equations`.
    residual_algebraic : bool
        Emit `rhs - lhs` for algebraic equations (ODE/DAE residual form).
    state_update : bool
        Emit the next-step state vector instead, each right side placed in
        the slot of the state its equation updates (discrete systems).
    """
    compiler = CasadiCompiler(sys.states, sys.parameters, sys.iv)
    eqs = sys.equations if equations is None else equations
    if state_update:
        return compiler.function(f"{sys.name}_update", compiler.updates_to_casadi(eqs))
    return compiler.function(f"{sys.name}_rhs", compiler.equations_to_casadi(eqs, residual_algebraic))


@beartype
def evaluate_constant(expr: Expr) -> float:
    """Evaluate an expression without free symbols."""
    return float(ca.evalf(CasadiCompiler().expr_to_casadi(expr)))
