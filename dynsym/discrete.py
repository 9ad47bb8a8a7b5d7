"""
Delay linearization for discrete systems.

A difference equation may refer to a state at a fixed lag behind the current
step, x(t - 3). A fixed-step solver only carries one step of history, so each
lag is expanded into a chain of one-step shift equations:

    Difference(t; dt=1.5)(x(t)) ~ 0.4*x(t) + 0.1*x(t - 3)

gains

    x(t - 3.0) ~ x(t - 1.5)
    x(t - 1.5) ~ x(t)

Only uniform steps are supported; a state used with two step sizes is an
error, as is any reference ahead of the current step.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from beartype import beartype

from dynsym.classify import classify
from dynsym.equations import Equation
from dynsym.errors import ForwardDelayError, MultipleStepSizesError
from dynsym.expr import DependentVariable, Expr, ExprKind, to_expr, walk

# Tolerance when counting how many steps fit in a lag
_STEP_EPS = 1e-9


@beartype
def time_offset(iv: Expr, arg: Expr) -> Optional[float]:
    """
    Signed constant offset of `arg` from `iv`.

    t -> 0.0, t - 1.5 -> -1.5, t + 2 -> 2.0, 2 + t -> 2.0. Returns None when
    `arg` is not `iv` shifted by a constant.
    """
    if arg == iv:
        return 0.0
    if len(arg.children) != 2 or arg.kind not in (ExprKind.ADD, ExprKind.SUB):
        return None
    a, b = arg.children
    sign = 1.0 if arg.kind == ExprKind.ADD else -1.0
    if arg.kind == ExprKind.ADD and a.is_number and b == iv:
        a, b = b, a
    if a != iv:
        return None
    if b.is_number:
        return sign * b.value
    if b.kind == ExprKind.NEG and b.children[0].is_number:
        return -sign * b.children[0].value
    return None


@beartype
def is_delay_var(iv: Expr, var: Expr) -> bool:
    """True for a dependent variable applied to `iv` shifted by a nonzero constant."""
    if var.kind != ExprKind.CALL or len(var.children) != 1:
        return False
    offset = time_offset(iv, var.children[0])
    return offset is not None and offset != 0.0


@beartype
def get_delay_val(iv: Expr, arg: Expr) -> float:
    """
    Lag of `arg` behind `iv`, e.g. 3.0 for t - 3.

    Raises ForwardDelayError for a reference ahead of the current step.
    """
    offset = time_offset(iv, arg)
    if offset is None:
        raise ValueError(f"{arg} is not {iv} shifted by a constant")
    if offset > 0:
        raise ForwardDelayError(f"Forward delay not permitted: {arg} is ahead of {iv} by {offset}", arg, offset)
    return -offset


def shift(iv: Expr, lag: float) -> Expr:
    """`iv` lagged by `lag`; a zero lag is `iv` itself."""
    if lag == 0:
        return iv
    return iv - to_expr(lag)


def _step_sizes(eqs: Sequence[Equation], iv: Expr) -> Dict[DependentVariable, float]:
    dts: Dict[DependentVariable, float] = {}

    def record(var: Expr, dt: float) -> None:
        key = DependentVariable(var.name)
        if key in dts and dts[key] != dt:
            raise MultipleStepSizesError(
                f"Each state should be used with a single difference operator: {key} uses steps {dts[key]} and {dt}",
                key,
                (dts[key], dt),
            )
        dts[key] = dt

    for eq in eqs:
        if eq.is_connection:
            continue
        c = classify(eq, iv)
        if c.dt is not None:
            record(c.variable, c.dt)
        for node in walk(eq.rhs):
            if node.kind == ExprKind.DIFFERENCE and node.children[0].kind == ExprKind.CALL:
                record(node.children[0], node.value)
    return dts


@beartype
def linearize_eqs(
    sys: Any,
    eqs: Optional[Sequence[Equation]] = None,
    return_max_delay: bool = False,
) -> Union[List[Equation], Tuple[List[Equation], Dict[DependentVariable, float]]]:
    """
    Expand delayed references into one-step shift equations.

    Parameters
    ----------
    sys : DiscreteSystem
        Source of the independent variable and, by default, the equations.
    eqs : sequence of Equation, optional
        Equations to expand instead of `sys.equations`.
    return_max_delay : bool
        Also return the maximum lag found per dependent variable.

    Returns
    -------
    list of Equation, or (list of Equation, dict)
        The input equations followed by the synthesized shifts, per state
        in state order and by descending lag.
    """
    iv = sys.iv
    eqs = list(sys.equations if eqs is None else eqs)
    dts = _step_sizes(eqs, iv)

    max_delay: Dict[DependentVariable, float] = {key: 0.0 for key in dts}
    for eq in eqs:
        if eq.is_connection:
            continue
        for node in walk(eq.rhs):
            if node.kind != ExprKind.CALL or len(node.children) != 1:
                continue
            if time_offset(iv, node.children[0]) is None:
                continue
            key = DependentVariable(node.name)
            lag = get_delay_val(iv, node.children[0])
            max_delay[key] = max(max_delay.get(key, 0.0), lag)

    order: Dict[DependentVariable, None] = {}
    for s in sys.states:
        if s.kind == ExprKind.CALL:
            order.setdefault(DependentVariable(s.name), None)
    for key in max_delay:
        order.setdefault(key, None)

    lin_eqs: List[Equation] = []
    for key in order:
        delay = max_delay.get(key, 0.0)
        dt = dts.get(key)
        if delay <= 0 or dt is None:
            continue
        n = int(math.floor(delay / dt + _STEP_EPS))
        lags = [round(delay - j * dt, 12) for j in range(n + 1)][:-1]
        for k in lags:
            lin_eqs.append(Equation(key(shift(iv, k)), key(shift(iv, round(k - dt, 12)))))

    result = eqs + lin_eqs
    if return_max_delay:
        return result, max_delay
    return result
