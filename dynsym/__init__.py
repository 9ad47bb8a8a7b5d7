"""
dynsym - symbolic construction of ODE and discrete dynamical systems.

Build a system from a flat list of equations; states, parameters and the
independent variable are derived from the equation structure.

Example
-------
>>> from dynsym import DependentVariable, Difference, DiscreteSystem, Equation, sym
>>> t, beta = sym("t"), sym("beta")
>>> S = DependentVariable("S")
>>> D = Difference(t, dt=0.1)
>>> sys = DiscreteSystem([Equation(D(S(t)), S(t) - beta * S(t))], name="decay")
>>> sys.states
[S(t)]
>>> sys.parameters
[beta]
"""

__version__ = "0.1.0"

from dynsym.classify import Classification, EquationKind, classify, infer_iv
from dynsym.collect import collect_vars
from dynsym.discrete import get_delay_val, is_delay_var, linearize_eqs
from dynsym.equations import Connection, Equation, connect
from dynsym.errors import (
    CyclicObservedError,
    DimensionalMismatchError,
    DuplicateNameError,
    DuplicateStateError,
    DynsymError,
    ForwardDelayError,
    InvalidEquationError,
    InvalidVariableError,
    MissingIndependentVariableError,
    MissingNameError,
    MultipleStepSizesError,
    UnknownVariableError,
)
from dynsym.expr import (
    DependentVariable,
    Difference,
    Differential,
    Expr,
    ExprKind,
    cos,
    dependent_variables,
    exp,
    fabs,
    log,
    sin,
    sqrt,
    sym,
    symbols,
    tan,
    tanh,
)
from dynsym.observed import build_explicit_observed_function, observed_assignments
from dynsym.problem import DiscreteProblem, ODEProblem, varmap_to_vars
from dynsym.system import DiscreteSystem, ODESystem, SystemOptions, convert_system, partition_equations

__all__ = [
    "__version__",
    # Expressions
    "Expr",
    "ExprKind",
    "sym",
    "symbols",
    "DependentVariable",
    "dependent_variables",
    "Differential",
    "Difference",
    "sin",
    "cos",
    "tan",
    "tanh",
    "exp",
    "log",
    "sqrt",
    "fabs",
    # Equations
    "Equation",
    "Connection",
    "connect",
    # Classification
    "EquationKind",
    "Classification",
    "classify",
    "infer_iv",
    "collect_vars",
    # Systems
    "SystemOptions",
    "ODESystem",
    "DiscreteSystem",
    "convert_system",
    "partition_equations",
    # Observed
    "observed_assignments",
    "build_explicit_observed_function",
    # Discrete
    "linearize_eqs",
    "is_delay_var",
    "get_delay_val",
    # Problems
    "varmap_to_vars",
    "ODEProblem",
    "DiscreteProblem",
    # Errors
    "DynsymError",
    "MissingIndependentVariableError",
    "MissingNameError",
    "InvalidEquationError",
    "DuplicateStateError",
    "InvalidVariableError",
    "ForwardDelayError",
    "MultipleStepSizesError",
    "UnknownVariableError",
    "CyclicObservedError",
    "DuplicateNameError",
    "DimensionalMismatchError",
]
