"""
Numeric problem records.

A problem bundles a system's generated right-hand side with ordered numeric
initial conditions, parameters and a time span, ready to be handed to a
solver. No solving happens here.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from beartype import beartype

from dynsym.backends.casadi import NumericFunction, evaluate_constant
from dynsym.errors import UnknownVariableError
from dynsym.expr import Expr, free_symbols, substitute, to_expr

# Upper bound on passes when substituting symbolic defaults into each other
_MAX_DEFAULT_PASSES = 100


def _as_mapping(varmap: Any, variables: Sequence[Expr]) -> Dict[Expr, Any]:
    if varmap is None:
        return {}
    if isinstance(varmap, Mapping):
        return {to_expr(k): v for k, v in varmap.items()}
    items = list(varmap)
    if not items:
        return {}
    if items and all(isinstance(i, tuple) and len(i) == 2 for i in items):
        return {to_expr(k): v for k, v in items}
    if len(items) != len(variables):
        raise ValueError(f"Expected {len(variables)} values, got {len(items)}")
    return dict(zip(variables, items))


@beartype
def varmap_to_vars(
    varmap: Any,
    variables: Sequence[Expr],
    defaults: Optional[Mapping[Expr, Any]] = None,
) -> np.ndarray:
    """
    Order values for `variables` into a numeric vector.

    `varmap` may be a mapping, a list of (variable, value) pairs or a
    positional sequence. Missing entries fall back to `defaults`. Values may
    be expressions in other variables; they are resolved against the
    combined mapping.
    """
    values: Dict[Expr, Any] = dict(defaults or {})
    values.update(_as_mapping(varmap, variables))

    known: Dict[Expr, float] = {}
    for k, v in values.items():
        if not isinstance(v, Expr):
            known[k] = float(v)
        elif v.is_number:
            known[k] = v.value

    for _ in range(_MAX_DEFAULT_PASSES):
        progressed = False
        for k, v in values.items():
            if k in known or not isinstance(v, Expr):
                continue
            resolved = substitute(v, known)
            if not free_symbols(resolved):
                known[k] = evaluate_constant(resolved)
                progressed = True
        if not progressed:
            break

    out = np.zeros(len(variables))
    for i, var in enumerate(variables):
        if var not in known:
            if var in values:
                raise UnknownVariableError(f"Cannot resolve the value of {var} from {values[var]}", var)
            raise UnknownVariableError(f"No value given for {var}", var)
        out[i] = known[var]
    return out


class AbstractProblem:
    """
    Generated function plus ordered numeric data of a system.

    Parameters
    ----------
    sys : AbstractSystem
        System to build the problem from.
    u0map : mapping, list of pairs, sequence or None
        Initial values; missing states fall back to the system defaults.
    tspan : (t0, tf)
        Time span.
    parammap : mapping, list of pairs, sequence or None
        Parameter values; missing parameters fall back to the system defaults.
    """

    def __init__(self, sys: Any, u0map: Any, tspan: Sequence[float], parammap: Any = None):
        if not (hasattr(sys, "generate_function") and hasattr(sys, "states")):
            raise TypeError(f"{type(self).__name__} expects a system as first argument, got {type(sys).__name__}")
        if len(tspan) != 2:
            raise ValueError(f"tspan must be (t0, tf), got {tspan}")
        defaults = sys.defaults
        self.sys = sys
        self.u0: np.ndarray = varmap_to_vars(u0map, sys.states, defaults)
        self.p: np.ndarray = varmap_to_vars(parammap, sys.parameters, defaults)
        self.tspan: Tuple[float, float] = (float(tspan[0]), float(tspan[1]))
        self.f: NumericFunction = sys.generate_function()

    def rhs(self, u: Any = None, t: Optional[float] = None) -> np.ndarray:
        """Evaluate f at `u` (default u0) and `t` (default tspan[0])."""
        u = self.u0 if u is None else u
        t = self.tspan[0] if t is None else t
        return self.f(u, self.p, t)

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self.sys.name}', tspan={self.tspan})"


class ODEProblem(AbstractProblem):
    """Initial value problem of an ODESystem."""


class DiscreteProblem(AbstractProblem):
    """Fixed-step problem of a DiscreteSystem, over the delay-expanded equations."""
