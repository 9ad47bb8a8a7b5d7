"""
Observed-equation resolution.

Given requested output expressions, find the observed equations that must
be evaluated to compute them and order the assignments so that every
observed variable is assigned before it is used.

Only true dependencies are emitted: an observed equation that no requested
expression reaches, directly or through other observed equations, is left
out even if it is declared earlier.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

import casadi as ca
from beartype import beartype

from dynsym.backends.casadi import CasadiCompiler, NumericFunction
from dynsym.errors import CyclicObservedError, UnknownVariableError
from dynsym.expr import Expr, flatten_exprs, free_symbols


def _tarjan_scc(nodes: List[int], adj: Dict[int, List[int]]) -> List[List[int]]:
    """Strongly connected components, dependencies before their users."""
    index_counter = [0]
    stack: List[int] = []
    lowlink: Dict[int, int] = {}
    index: Dict[int, int] = {}
    on_stack: Dict[int, bool] = {}
    sccs: List[List[int]] = []

    def strongconnect(node: int) -> None:
        index[node] = index_counter[0]
        lowlink[node] = index_counter[0]
        index_counter[0] += 1
        stack.append(node)
        on_stack[node] = True

        for successor in adj.get(node, []):
            if successor not in index:
                strongconnect(successor)
                lowlink[node] = min(lowlink[node], lowlink[successor])
            elif on_stack.get(successor, False):
                lowlink[node] = min(lowlink[node], index[successor])

        if lowlink[node] == index[node]:
            scc: List[int] = []
            while True:
                w = stack.pop()
                on_stack[w] = False
                scc.append(w)
                if w == node:
                    break
            sccs.append(scc)

    for node in nodes:
        if node not in index:
            strongconnect(node)

    return sccs


@beartype
def observed_assignments(sys: Any, exprs: Any) -> List[Tuple[Expr, Expr]]:
    """
    Ordered (variable, definition) assignments needed to evaluate `exprs`.

    Parameters
    ----------
    sys : AbstractSystem
        System holding states, parameters and observed equations.
    exprs : Expr or (nested) sequence/array of Expr
        Requested outputs.

    Raises
    ------
    UnknownVariableError
        A referenced variable is not a state, parameter or observed variable.
    CyclicObservedError
        The needed observed equations depend on each other in a cycle.
    """
    observed = sys.observed
    obs_index: Dict[Expr, int] = {}
    for i, eq in enumerate(observed):
        obs_index.setdefault(eq.lhs, i)
    states = set(sys.states)
    params = set(sys.parameters)
    iv = sys.iv

    # Exact closure over observed right sides
    needed: Dict[int, List[int]] = {}
    pending: List[Expr] = []
    for e in flatten_exprs(exprs):
        pending.extend(free_symbols(e))
    while pending:
        v = pending.pop()
        if v == iv or v in states:
            continue
        if v in obs_index:
            i = obs_index[v]
            if i not in needed:
                rhs_vars = free_symbols(observed[i].rhs)
                needed[i] = [obs_index[u] for u in rhs_vars if u in obs_index and u not in states]
                pending.extend(rhs_vars)
            continue
        if v in params:
            continue
        raise UnknownVariableError(
            f"{v} is neither a state, a parameter nor an observed variable of system '{sys.name}'", v
        )

    nodes = sorted(needed)
    sccs = _tarjan_scc(nodes, needed)
    for scc in sccs:
        if len(scc) > 1 or scc[0] in needed[scc[0]]:
            cycle = [observed[i].lhs for i in sorted(scc)]
            raise CyclicObservedError(f"Observed equations form a cycle: {cycle}", cycle)

    if all(d < i for i in nodes for d in needed[i]):
        order = nodes
    else:
        order = [scc[0] for scc in sccs]
    return [(observed[i].lhs, observed[i].rhs) for i in order]


@beartype
def build_explicit_observed_function(sys: Any, ts: Any) -> NumericFunction:
    """
    Numeric function (u, p, t) -> outputs for the requested expressions.

    A single Expr request gives a float; anything else a 1-D numpy array.
    """
    requested = flatten_exprs(ts)
    assignments = observed_assignments(sys, requested)
    compiler = CasadiCompiler(sys.states, sys.parameters, sys.iv)
    for lhs, rhs in assignments:
        compiler.bind(lhs, compiler.expr_to_casadi(rhs))
    outputs = [compiler.expr_to_casadi(e) for e in requested]
    if not outputs:
        raise ValueError("No output expressions requested")
    return compiler.function(f"{sys.name}_observed", ca.vertcat(*outputs), scalar=isinstance(ts, Expr))
