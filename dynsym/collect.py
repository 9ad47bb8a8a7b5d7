"""
Variable collection over expression trees.

A dependent variable applied to something containing the independent
variable is a state; every other free symbol is a parameter. The independent
variable itself belongs to neither. Dictionaries are used as ordered sets so
first-seen order is preserved.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from beartype import beartype

from dynsym.expr import Expr, ExprKind, has_iv

OrderedSet = Dict[Expr, None]


@beartype
def collect_vars(
    expr: Expr,
    iv: Expr,
    states: Optional[OrderedSet] = None,
    params: Optional[OrderedSet] = None,
) -> Tuple[OrderedSet, OrderedSet]:
    """
    Collect states and parameters referenced in `expr`.

    If `states`/`params` are given they are extended in place, which is how
    the system builder accumulates across equations.

    Returns
    -------
    (states, params)
        Ordered sets (dicts with None values) in first-seen order.
    """
    if states is None:
        states = {}
    if params is None:
        params = {}

    def visit(e: Expr) -> None:
        if e.kind == ExprKind.SYMBOL:
            if e != iv:
                params.setdefault(e, None)
        elif e.kind == ExprKind.CALL:
            if any(has_iv(arg, iv) for arg in e.children):
                states.setdefault(e, None)
            else:
                params.setdefault(e, None)
        else:
            # Operator nodes recurse into their operand only; their own `iv`
            # field is not a reference.
            for child in e.children:
                visit(child)

    visit(expr)
    return states, params
