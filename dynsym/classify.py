"""
Equation classification.

Decides whether an equation's left side is a derivative or a difference of a
single state variable, and which independent variable it refers to.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional, Sequence, Tuple

from beartype import beartype

from dynsym.equations import Equation
from dynsym.errors import InvalidEquationError, MissingIndependentVariableError
from dynsym.expr import OPERATOR_KINDS, Expr, ExprKind


class EquationKind(Enum):
    """Classification of an equation by its left side."""

    DIFFERENTIAL = auto()  # D(x(t)) ~ ...
    DIFFERENCE = auto()  # Difference(t; dt)(x(t)) ~ ...
    PLAIN = auto()  # anything else: algebraic or explicit assignment


_KIND_OF_OPERATOR = {
    ExprKind.DIFFERENTIAL: EquationKind.DIFFERENTIAL,
    ExprKind.DIFFERENCE: EquationKind.DIFFERENCE,
}


@dataclass(frozen=True)
class Classification:
    """Result of classify(): kind plus, for operator equations, the target."""

    kind: EquationKind
    variable: Optional[Expr] = None  # innermost state, e.g. x(t)
    order: int = 0  # nesting depth of the operator
    dt: Optional[float] = None  # step size for DIFFERENCE

    @property
    def is_operator(self) -> bool:
        return self.kind != EquationKind.PLAIN


def _unwrap(expr: Expr) -> Tuple[Expr, List[Expr]]:
    """Peel nested DIFFERENTIAL/DIFFERENCE nodes: returns (innermost, operators)."""
    ops: List[Expr] = []
    while expr.kind in OPERATOR_KINDS:
        ops.append(expr)
        expr = expr.children[0]
    return expr, ops


@beartype
def is_operator_equation(eq: Equation) -> bool:
    """True if the left side is a derivative or difference."""
    return isinstance(eq.lhs, Expr) and eq.lhs.kind in OPERATOR_KINDS


@beartype
def var_from_nested_derivative(expr: Expr) -> Tuple[Expr, int]:
    """
    Return the innermost variable of a nested operator and the nesting order.

    D(D(x(t))) -> (x(t), 2). The innermost node must be a dependent variable
    applied to exactly one argument.
    """
    var, ops = _unwrap(expr)
    if var.kind != ExprKind.CALL:
        raise InvalidEquationError(f"Operator target {var} in {expr} is not a single dependent variable")
    if len(var.children) != 1:
        raise InvalidEquationError(
            f"Illegal state {var}: a state can have at most one argument like x(t)"
        )
    return var, len(ops)


@beartype
def iv_from_nested_derivative(expr: Expr) -> Optional[Expr]:
    """
    Find the independent variable an equation's left side refers to.

    Operators carry it explicitly; a bare x(t) refers to its argument and a
    bare symbol is taken as is. Anything else yields None.
    """
    if expr.kind in OPERATOR_KINDS:
        return expr.iv
    if expr.kind == ExprKind.CALL:
        if expr.children and expr.children[0].kind == ExprKind.SYMBOL:
            return expr.children[0]
        return None
    if expr.kind == ExprKind.SYMBOL:
        return expr
    return None


@beartype
def infer_iv(equations: Sequence[Equation]) -> Expr:
    """
    Infer the independent variable from the first equation whose left side
    is not a bare number.
    """
    for eq in equations:
        if not isinstance(eq.lhs, Expr) or eq.lhs.is_number:
            continue
        iv = iv_from_nested_derivative(eq.lhs)
        if iv is None:
            break
        return iv
    raise MissingIndependentVariableError(
        "Cannot infer the independent variable from the equations; please pass it explicitly"
    )


@beartype
def classify(eq: Equation, iv: Expr) -> Classification:
    """
    Classify one equation with respect to the system's independent variable.

    Raises InvalidEquationError when operators are mixed, reference another
    independent variable, use different step sizes, or do not act on a
    single bare dependent variable of `iv`.
    """
    if not is_operator_equation(eq):
        return Classification(EquationKind.PLAIN)

    var, ops = _unwrap(eq.lhs)
    kinds = {op.kind for op in ops}
    if len(kinds) > 1:
        raise InvalidEquationError(f"Cannot mix derivatives and differences in {eq}", equation=eq)
    for op in ops:
        if op.iv != iv:
            raise InvalidEquationError(
                f"A system can only have one independent variable: {eq} uses {op.iv}, expected {iv}",
                equation=eq,
            )
    kind = _KIND_OF_OPERATOR[ops[0].kind]

    dt = None
    if kind == EquationKind.DIFFERENCE:
        steps = {op.value for op in ops}
        if len(steps) > 1:
            raise InvalidEquationError(f"Nested differences with different steps in {eq}", equation=eq)
        dt = ops[0].value

    try:
        var, order = var_from_nested_derivative(eq.lhs)
    except InvalidEquationError as err:
        raise InvalidEquationError(str(err), equation=eq) from err
    if var.children[0] != iv:
        raise InvalidEquationError(
            f"State {var} in {eq} must be a function of the independent variable {iv}",
            equation=eq,
        )
    return Classification(kind, variable=var, order=order, dt=dt)
