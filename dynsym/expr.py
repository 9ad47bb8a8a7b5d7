"""
Expression tree representation for dynsym.

This module contains the core Expr class and ExprKind enum that form the
symbolic trees equations are written in.

================================================================================
NODE KINDS
================================================================================

Leaves:
    SYMBOL      plain named symbol: the independent variable, a parameter
    CONSTANT    numeric literal (always stored as float)
    CALL        a dependent variable applied to arguments: x(t), x(t - 1.5)

Operators on dependent variables:
    DIFFERENTIAL    d/d(iv) of its single child
    DIFFERENCE      fixed-step difference of its single child, step in `value`

Everything else is plain arithmetic or an elementary function.

Expressions are immutable. Equality and hashing are structural, so
expressions can be used as dictionary keys and set members. The `default`
field is metadata only and takes no part in comparison.

================================================================================
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Generator, Iterable, List, Mapping, Optional, Tuple

import numpy as np
from beartype import beartype


class ExprKind(Enum):
    """Kinds of expression nodes."""

    # Leaf nodes
    SYMBOL = auto()  # Named symbol (independent variable or parameter)
    CONSTANT = auto()  # Numeric constant
    CALL = auto()  # Dependent variable applied to arguments, x(t)

    # Operators acting on a dependent variable
    DIFFERENTIAL = auto()  # D(x), derivative w.r.t. `iv`
    DIFFERENCE = auto()  # Fixed-step difference w.r.t. `iv`, step in `value`

    # Arithmetic
    NEG = auto()
    ADD = auto()
    SUB = auto()
    MUL = auto()
    DIV = auto()
    POW = auto()

    # Math functions
    SIN = auto()
    COS = auto()
    TAN = auto()
    TANH = auto()
    EXP = auto()
    LOG = auto()
    SQRT = auto()
    ABS = auto()


LEAF_KINDS = frozenset({ExprKind.SYMBOL, ExprKind.CONSTANT, ExprKind.CALL})
OPERATOR_KINDS = frozenset({ExprKind.DIFFERENTIAL, ExprKind.DIFFERENCE})
FUNCTION_KINDS = frozenset(
    {
        ExprKind.SIN,
        ExprKind.COS,
        ExprKind.TAN,
        ExprKind.TANH,
        ExprKind.EXP,
        ExprKind.LOG,
        ExprKind.SQRT,
        ExprKind.ABS,
    }
)

_BINARY_SYMBOLS = {
    ExprKind.ADD: "+",
    ExprKind.SUB: "-",
    ExprKind.MUL: "*",
    ExprKind.DIV: "/",
    ExprKind.POW: "**",
}


@dataclass(frozen=True)
class Expr:
    """
    Immutable expression tree node.

    For CALL nodes `name` is the dependent variable and `children` its
    arguments. For DIFFERENTIAL and DIFFERENCE nodes `children` holds the
    operand and `iv` the independent variable the operator acts along.
    """

    kind: ExprKind
    children: Tuple["Expr", ...] = ()
    name: Optional[str] = None  # For SYMBOL, CALL
    value: Optional[float] = None  # For CONSTANT, step size of DIFFERENCE
    iv: Optional["Expr"] = None  # For DIFFERENTIAL, DIFFERENCE
    default: Any = field(default=None, compare=False, repr=False)

    def __repr__(self) -> str:
        if self.kind == ExprKind.SYMBOL:
            return f"{self.name}"
        elif self.kind == ExprKind.CONSTANT:
            return f"{self.value}"
        elif self.kind == ExprKind.CALL:
            args = ", ".join(_strip_parens(repr(c)) for c in self.children)
            return f"{self.name}({args})"
        elif self.kind == ExprKind.DIFFERENTIAL:
            return f"Differential({self.iv})({self.children[0]})"
        elif self.kind == ExprKind.DIFFERENCE:
            return f"Difference({self.iv}; dt={self.value})({self.children[0]})"
        elif self.kind == ExprKind.NEG:
            return f"(-{self.children[0]})"
        elif self.kind in _BINARY_SYMBOLS:
            return f"({self.children[0]} {_BINARY_SYMBOLS[self.kind]} {self.children[1]})"
        elif self.kind in FUNCTION_KINDS:
            return f"{self.kind.name.lower()}({self.children[0]})"
        return f"Expr({self.kind})"

    @property
    def is_leaf(self) -> bool:
        """True for symbols, constants and dependent-variable calls."""
        return self.kind in LEAF_KINDS

    @property
    def is_number(self) -> bool:
        return self.kind == ExprKind.CONSTANT

    @property
    def is_operator(self) -> bool:
        """True for DIFFERENTIAL and DIFFERENCE nodes."""
        return self.kind in OPERATOR_KINDS

    # Arithmetic operators - return new Expr nodes
    def __add__(self, other: Any) -> "Expr":
        return Expr(ExprKind.ADD, (self, to_expr(other)))

    def __radd__(self, other: Any) -> "Expr":
        return Expr(ExprKind.ADD, (to_expr(other), self))

    def __sub__(self, other: Any) -> "Expr":
        return Expr(ExprKind.SUB, (self, to_expr(other)))

    def __rsub__(self, other: Any) -> "Expr":
        return Expr(ExprKind.SUB, (to_expr(other), self))

    def __mul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MUL, (self, to_expr(other)))

    def __rmul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MUL, (to_expr(other), self))

    def __truediv__(self, other: Any) -> "Expr":
        return Expr(ExprKind.DIV, (self, to_expr(other)))

    def __rtruediv__(self, other: Any) -> "Expr":
        return Expr(ExprKind.DIV, (to_expr(other), self))

    def __pow__(self, other: Any) -> "Expr":
        return Expr(ExprKind.POW, (self, to_expr(other)))

    def __rpow__(self, other: Any) -> "Expr":
        return Expr(ExprKind.POW, (to_expr(other), self))

    def __neg__(self) -> "Expr":
        return Expr(ExprKind.NEG, (self,))

    def __pos__(self) -> "Expr":
        return self


def _strip_parens(text: str) -> str:
    if text.startswith("(") and text.endswith(")"):
        return text[1:-1]
    return text


@beartype
def to_expr(x: Any) -> Expr:
    """Convert numbers to CONSTANT nodes; pass expressions through."""
    if isinstance(x, Expr):
        return x
    if isinstance(x, (bool, np.bool_)):
        raise TypeError(f"Cannot convert {type(x)} to Expr")
    if isinstance(x, (int, float, np.integer, np.floating)):
        return Expr(ExprKind.CONSTANT, value=float(x))
    if isinstance(x, np.ndarray) and x.size == 1:
        return Expr(ExprKind.CONSTANT, value=float(x.flat[0]))
    raise TypeError(f"Cannot convert {type(x)} to Expr")


# =============================================================================
# Leaf factories
# =============================================================================


@beartype
def sym(name: str, default: Any = None) -> Expr:
    """Create a plain symbol (independent variable or parameter)."""
    return Expr(ExprKind.SYMBOL, name=name, default=default)


@beartype
def symbols(names: str) -> Tuple[Expr, ...]:
    """Create several symbols from a whitespace separated string: 'a b c'."""
    return tuple(sym(n) for n in names.split())


@dataclass(frozen=True)
class DependentVariable:
    """
    A named variable that is applied to arguments, like x(t) or x(t - 1.5).

    Calling the variable builds a CALL node. The optional default is carried
    along as metadata and picked up by the system builder.
    """

    name: str
    default: Any = field(default=None, compare=False)

    def __call__(self, *args: Any) -> Expr:
        return Expr(
            ExprKind.CALL,
            children=tuple(to_expr(a) for a in args),
            name=self.name,
            default=self.default,
        )

    def __repr__(self) -> str:
        return self.name


@beartype
def dependent_variables(names: str) -> Tuple[DependentVariable, ...]:
    """Create several dependent variables: 'x y z'."""
    return tuple(DependentVariable(n) for n in names.split())


# =============================================================================
# Operators
# =============================================================================


def _check_iv(iv: Expr) -> None:
    if iv.kind != ExprKind.SYMBOL:
        raise ValueError(f"Independent variable must be a symbol, got {iv}")


@dataclass(frozen=True)
class Differential:
    """Derivative operator with respect to `iv`: D = Differential(t); D(x(t))."""

    iv: Expr

    def __post_init__(self) -> None:
        _check_iv(self.iv)

    def __call__(self, operand: Any) -> Expr:
        return Expr(ExprKind.DIFFERENTIAL, children=(to_expr(operand),), iv=self.iv)


@dataclass(frozen=True)
class Difference:
    """Fixed-step difference operator: D = Difference(t, dt=0.1); D(x(t))."""

    iv: Expr
    dt: float

    def __post_init__(self) -> None:
        _check_iv(self.iv)
        if not self.dt > 0:
            raise ValueError(f"Difference step must be positive, got {self.dt}")
        object.__setattr__(self, "dt", float(self.dt))

    def __call__(self, operand: Any) -> Expr:
        return Expr(
            ExprKind.DIFFERENCE,
            children=(to_expr(operand),),
            iv=self.iv,
            value=self.dt,
        )


# Math functions
def sin(x: Any) -> Expr:
    return Expr(ExprKind.SIN, (to_expr(x),))


def cos(x: Any) -> Expr:
    return Expr(ExprKind.COS, (to_expr(x),))


def tan(x: Any) -> Expr:
    return Expr(ExprKind.TAN, (to_expr(x),))


def tanh(x: Any) -> Expr:
    return Expr(ExprKind.TANH, (to_expr(x),))


def exp(x: Any) -> Expr:
    return Expr(ExprKind.EXP, (to_expr(x),))


def log(x: Any) -> Expr:
    return Expr(ExprKind.LOG, (to_expr(x),))


def sqrt(x: Any) -> Expr:
    return Expr(ExprKind.SQRT, (to_expr(x),))


def fabs(x: Any) -> Expr:
    return Expr(ExprKind.ABS, (to_expr(x),))


# =============================================================================
# Traversal helpers
# =============================================================================


def walk(expr: Expr) -> Generator[Expr, None, None]:
    """Pre-order traversal over every node, including CALL arguments."""
    yield expr
    for child in expr.children:
        yield from walk(child)


@beartype
def free_symbols(expr: Expr) -> List[Expr]:
    """
    Collect SYMBOL and CALL leaves in first-seen order.

    CALL nodes are atoms: their arguments are not searched, so x(t - a)
    yields x(t - a) and not a.
    """
    seen: Dict[Expr, None] = {}

    def visit(e: Expr) -> None:
        if e.kind in (ExprKind.SYMBOL, ExprKind.CALL):
            seen.setdefault(e, None)
            return
        for child in e.children:
            visit(child)

    visit(expr)
    return list(seen)


@beartype
def has_iv(expr: Expr, iv: Expr) -> bool:
    """True if `iv` occurs anywhere inside `expr`."""
    return any(node == iv for node in walk(expr))


@beartype
def substitute(expr: Expr, mapping: Mapping[Expr, Any]) -> Expr:
    """Replace every occurrence of a mapping key with its value."""
    if expr in mapping:
        return to_expr(mapping[expr])
    if not expr.children:
        return expr
    return dataclasses.replace(expr, children=tuple(substitute(c, mapping) for c in expr.children))


@beartype
def flatten_exprs(items: Any) -> List[Expr]:
    """Expand nested lists, tuples and object arrays into scalar expressions."""
    if isinstance(items, np.ndarray):
        items = list(items.flat)
    if isinstance(items, (list, tuple)):
        result: List[Expr] = []
        for item in items:
            result.extend(flatten_exprs(item))
        return result
    return [to_expr(items)]


def unique(items: Iterable[Any]) -> List[Any]:
    """Order-preserving de-duplication."""
    return list(dict.fromkeys(items))
