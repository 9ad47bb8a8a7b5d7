"""
System records and the system builder.

A system is built from a flat list of equations. The builder partitions the
equations, derives the ordered state and parameter vectors, validates them
and assembles the record that numeric-function generation consumes.

================================================================================
ORDERING CONTRACT
================================================================================

Equations:  differential/difference equations (input order)
            then algebraic equations (input order)
            then deferred connection equations (input order)

States:     targets of differential/difference equations (classified order)
            then the remaining collected states (first-seen order)

Parameters: first-seen order across all equations

Code generation relies on this order; do not change it.

================================================================================
EXAMPLE
================================================================================

>>> from dynsym import Differential, DependentVariable, ODESystem, Equation, sym
>>> t, sigma = sym("t"), sym("sigma")
>>> x, y = DependentVariable("x"), DependentVariable("y")
>>> D = Differential(t)
>>> sys = ODESystem([Equation(D(x(t)), sigma * (y(t) - x(t))), Equation(0, y(t) - 1)], name="de")
>>> sys.states
[x(t), y(t)]

================================================================================
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from beartype import beartype

from dynsym.classify import Classification, EquationKind, classify, infer_iv
from dynsym.collect import OrderedSet, collect_vars
from dynsym.equations import Equation
from dynsym.errors import (
    DimensionalMismatchError,
    DuplicateNameError,
    DuplicateStateError,
    InvalidEquationError,
    InvalidVariableError,
    MissingNameError,
)
from dynsym.expr import OPERATOR_KINDS, DependentVariable, Expr, ExprKind, flatten_exprs, has_iv, to_expr, unique

DIMENSIONLESS_UNITS = frozenset({"", "1"})


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class SystemOptions:
    """
    Options accepted by system constructors.

    `default_u0` and `default_p` are deprecated aliases; they are merged into
    `defaults` (explicit `defaults` win); the system built from these options
    then emits a DeprecationWarning.
    """

    name: Optional[str] = None
    controls: Tuple[Expr, ...] = ()
    observed: Tuple[Equation, ...] = ()
    systems: Tuple[Any, ...] = ()
    defaults: Mapping[Expr, Any] = field(default_factory=dict)
    default_u0: Mapping[Expr, Any] = field(default_factory=dict)
    default_p: Mapping[Expr, Any] = field(default_factory=dict)
    connector_type: Optional[str] = None
    continuous_events: Tuple[Equation, ...] = ()
    checks: bool = True
    units: Mapping[Expr, str] = field(default_factory=dict)
    check_units: Optional[Callable[..., Any]] = None
    uses_deprecated_defaults: bool = field(default=False, init=False, compare=False)

    def __post_init__(self) -> None:
        for name in ("controls", "observed", "systems", "continuous_events"):
            value = getattr(self, name)
            if value is None:
                value = ()
            elif isinstance(value, (Expr, Equation)):
                value = (value,)
            object.__setattr__(self, name, tuple(value))

        if self.default_u0 or self.default_p:
            object.__setattr__(self, "uses_deprecated_defaults", True)
        merged = {**dict(self.default_u0), **dict(self.default_p), **dict(self.defaults)}
        object.__setattr__(self, "defaults", {to_expr(k): _default_value(v) for k, v in merged.items()})
        object.__setattr__(self, "default_u0", {})
        object.__setattr__(self, "default_p", {})
        object.__setattr__(self, "units", {to_expr(k): v for k, v in dict(self.units).items()})

    @classmethod
    def from_kwargs(cls, **kwargs: Any) -> "SystemOptions":
        """Build options from constructor keywords, rejecting unknown ones."""
        valid = {f.name for f in fields(cls) if f.init}
        unknown = sorted(set(kwargs) - valid)
        if unknown:
            raise TypeError(f"Unknown system options: {unknown}")
        return cls(**kwargs)


def _default_value(value: Any) -> Any:
    if isinstance(value, Expr):
        return value
    return float(value)


# =============================================================================
# Builder
# =============================================================================


@dataclass
class PartitionedEquations:
    """Output of partition_equations()."""

    iv: Expr
    differential: List[Equation] = field(default_factory=list)
    algebraic: List[Equation] = field(default_factory=list)
    compressed: List[Equation] = field(default_factory=list)
    differential_states: List[Expr] = field(default_factory=list)
    algebraic_states: List[Expr] = field(default_factory=list)
    params: List[Expr] = field(default_factory=list)

    @property
    def equations(self) -> List[Equation]:
        return self.differential + self.algebraic + self.compressed

    @property
    def states(self) -> List[Expr]:
        return self.differential_states + self.algebraic_states


def _register_operator_equation(
    diffvars: OrderedSet, eq: Equation, c: Classification, operator_kind: EquationKind
) -> None:
    if c.kind != operator_kind:
        expected = "derivative" if operator_kind == EquationKind.DIFFERENTIAL else "difference"
        raise InvalidEquationError(
            f"{eq} has a {c.kind.name.lower()} left side, this system only accepts {expected} equations",
            equation=eq,
        )
    if c.variable in diffvars:
        raise DuplicateStateError(
            f"The {c.kind.name.lower()} variable {c.variable} is not unique in the system of equations",
            variable=c.variable,
            equation=eq,
        )
    diffvars[c.variable] = None


@beartype
def partition_equations(
    equations: Sequence[Equation],
    iv: Optional[Expr] = None,
    operator_kind: EquationKind = EquationKind.DIFFERENTIAL,
) -> PartitionedEquations:
    """
    Partition equations and derive the ordered state and parameter vectors.

    Parameters
    ----------
    equations : sequence of Equation
        Flat user equation list.
    iv : Expr, optional
        Independent variable. Inferred from the equations when omitted.
    operator_kind : EquationKind
        DIFFERENTIAL for ODE systems, DIFFERENCE for discrete systems.
    """
    if iv is None:
        iv = infer_iv(equations)

    result = PartitionedEquations(iv=iv)
    diffvars: OrderedSet = {}
    allstates: OrderedSet = {}
    params: OrderedSet = {}

    for eq in equations:
        if not isinstance(eq.lhs, Expr):
            # connect() and friends, expanded by a later structural pass
            result.compressed.append(eq)
            continue
        collect_vars(eq.lhs, iv, allstates, params)
        if isinstance(eq.rhs, Expr):
            collect_vars(eq.rhs, iv, allstates, params)
        c = classify(eq, iv)
        if c.is_operator:
            _register_operator_equation(diffvars, eq, c, operator_kind)
            result.differential.append(eq)
        else:
            result.algebraic.append(eq)

    result.differential_states = list(diffvars)
    result.algebraic_states = [s for s in allstates if s not in diffvars]
    result.params = list(params)
    return result


def _as_equation_list(eqs: Any) -> List[Equation]:
    if isinstance(eqs, Equation):
        return [eqs]
    result: List[Equation] = []
    for eq in list(eqs):
        if isinstance(eq, Equation):
            result.append(eq)
        elif isinstance(eq, (list, tuple)):
            result.extend(_as_equation_list(eq))
        else:
            raise TypeError(f"Expected Equation, got {type(eq)}")
    return result


def _as_expr_list(items: Any) -> List[Expr]:
    if items is None:
        return []
    return flatten_exprs(list(items) if not isinstance(items, Expr) else [items])


# =============================================================================
# Validation
# =============================================================================


@beartype
def check_variables(states: Sequence[Expr], iv: Expr) -> None:
    """States must be dependent variables of `iv`, never `iv` itself."""
    for s in states:
        if s == iv:
            raise InvalidVariableError(f"Independent variable {iv} not allowed in dependent variables", s)
        if s.kind != ExprKind.CALL or not has_iv(s, iv):
            raise InvalidVariableError(f"Variable {s} is not a function of independent variable {iv}", s)


@beartype
def check_parameters(params: Sequence[Expr], iv: Expr) -> None:
    """Parameters must not be, or depend on, `iv`."""
    for p in params:
        if p == iv:
            raise InvalidVariableError(f"Independent variable {iv} not allowed in parameters", p)
        if has_iv(p, iv):
            raise InvalidVariableError(f"Parameter {p} cannot depend on independent variable {iv}", p)


@beartype
def check_equations(equations: Sequence[Equation], iv: Expr, operator_kind: EquationKind) -> None:
    """Every operator equation must reference `iv` and own a unique state."""
    diffvars: OrderedSet = {}
    for eq in equations:
        if not isinstance(eq.lhs, Expr):
            continue
        c = classify(eq, iv)
        if c.is_operator:
            _register_operator_equation(diffvars, eq, c, operator_kind)


@beartype
def check_observed(observed: Sequence[Equation]) -> None:
    """Observed equations assign a plain variable, each at most once."""
    seen: OrderedSet = {}
    for eq in observed:
        lhs = eq.lhs
        if not isinstance(lhs, Expr) or lhs.kind not in (ExprKind.SYMBOL, ExprKind.CALL):
            raise InvalidEquationError(f"Observed equation {eq} must assign a plain variable", equation=eq)
        if lhs in seen:
            raise InvalidEquationError(f"Observed variable {lhs} is defined more than once", equation=eq)
        seen[lhs] = None


def _process_variables(var_to_name: Dict[str, Expr], defaults: Dict[Expr, Any], variables: Sequence[Expr]) -> None:
    for v in variables:
        if v.name is not None:
            var_to_name.setdefault(v.name, v)
        if v.default is not None and v not in defaults:
            defaults[v] = _default_value(v.default)


def _eq_unordered(a: Sequence[Any], b: Sequence[Any]) -> bool:
    """Multiset equality without hashing."""
    if len(a) != len(b):
        return False
    remaining = list(range(len(b)))
    for x in a:
        for pos, idx in enumerate(remaining):
            if b[idx] == x:
                del remaining[pos]
                break
        else:
            return False
    return True


# =============================================================================
# Systems
# =============================================================================


class AbstractSystem:
    """
    Common record for time-dependent systems.

    Construct with just equations (states and parameters are derived), or
    pass `states` and `params` explicitly to keep the equations exactly as
    given. Options are given as keywords or as a SystemOptions instance.
    """

    operator_kind: EquationKind = EquationKind.DIFFERENTIAL

    def __init__(
        self,
        eqs: Any,
        iv: Optional[Expr] = None,
        states: Any = None,
        params: Any = None,
        *,
        options: Optional[SystemOptions] = None,
        **kwargs: Any,
    ):
        if options is None:
            options = SystemOptions.from_kwargs(**kwargs)
        elif kwargs:
            raise TypeError("Pass either `options` or keyword options, not both")
        if options.name is None:
            raise MissingNameError(f"The `name` option must be provided to construct a {type(self).__name__}")
        self._check_options(options)
        if options.uses_deprecated_defaults:
            # Frames: this __init__, the subclass __init__, the caller
            warnings.warn(
                "`default_u0` and `default_p` are deprecated. Use `defaults` instead.",
                DeprecationWarning,
                stacklevel=3,
            )

        equations = _as_equation_list(eqs)
        if states is None or params is None:
            part = partition_equations(equations, iv, self.operator_kind)
            iv = part.iv
            equations = part.equations
            states = part.states if states is None else _as_expr_list(states)
            params = part.params if params is None else _as_expr_list(params)
        else:
            if iv is None:
                iv = infer_iv(equations)
            states = _as_expr_list(states)
            params = _as_expr_list(params)

        controls = _as_expr_list(options.controls)
        for c in controls:
            if c not in params:
                raise InvalidVariableError(f"All controls must also be parameters: {c} is not", c)

        sysnames = [s.name for s in options.systems]
        duplicates = [n for n in unique(sysnames) if sysnames.count(n) > 1]
        if duplicates:
            raise DuplicateNameError(f"System names must be unique: {duplicates}", name=duplicates[0])

        self._eqs: List[Equation] = equations
        self._iv: Expr = iv
        self._states: List[Expr] = list(states)
        self._ps: List[Expr] = list(params)
        self._ctrls: List[Expr] = controls
        self._observed: List[Equation] = list(options.observed)
        self._name: str = options.name
        self._systems: List[Any] = list(options.systems)
        self._options = options

        defaults = dict(options.defaults)
        var_to_name: Dict[str, Expr] = {}
        _process_variables(var_to_name, defaults, self._states)
        _process_variables(var_to_name, defaults, self._ps)
        for eq in self._observed:
            if isinstance(eq.lhs, Expr) and eq.lhs.name is not None:
                var_to_name.setdefault(eq.lhs.name, eq.lhs)
        self._defaults: Dict[Expr, Any] = defaults
        self._var_to_name = var_to_name

        if options.checks:
            self._check()

    def _check_options(self, options: SystemOptions) -> None:
        if options.continuous_events:
            raise TypeError(f"{type(self).__name__} does not support continuous events")

    def _check(self) -> None:
        check_variables(self._states, self._iv)
        check_parameters(self._ps, self._iv)
        check_equations(self._eqs, self._iv, self.operator_kind)
        check_observed(self._observed)
        self._check_units()

    def _check_units(self) -> None:
        units = self._options.units
        if not units or all(u in DIMENSIONLESS_UNITS for u in units.values()):
            return
        checker = self._options.check_units
        if checker is None:
            warnings.warn(f"System '{self._name}' declares units but no unit checker is configured")
            return
        if checker(self._eqs, units) is False:
            raise DimensionalMismatchError(f"Equations of system '{self._name}' are dimensionally inconsistent")

    # ---------------------------------------------------------------- access

    @property
    def name(self) -> str:
        return self._name

    @property
    def iv(self) -> Expr:
        return self._iv

    @property
    def equations(self) -> List[Equation]:
        return list(self._eqs)

    @property
    def states(self) -> List[Expr]:
        return list(self._states)

    @property
    def parameters(self) -> List[Expr]:
        return list(self._ps)

    @property
    def controls(self) -> List[Expr]:
        return list(self._ctrls)

    @property
    def observed(self) -> List[Equation]:
        return list(self._observed)

    @property
    def defaults(self) -> Dict[Expr, Any]:
        return dict(self._defaults)

    @property
    def systems(self) -> List[Any]:
        return list(self._systems)

    @property
    def connector_type(self) -> Optional[str]:
        return self._options.connector_type

    @property
    def var_to_name(self) -> Dict[str, Expr]:
        return dict(self._var_to_name)

    def var(self, name: str) -> Expr:
        """Look up a state, parameter or observed variable by name."""
        if name in self._var_to_name:
            return self._var_to_name[name]
        raise KeyError(f"System '{self._name}' has no variable '{name}'")

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        if name in self._var_to_name:
            return self._var_to_name[name]
        for s in self._systems:
            if s.name == name:
                return s
        raise AttributeError(f"'{type(self).__name__}' '{self._name}' has no attribute '{name}'")

    # ---------------------------------------------------------------- observed

    def observed_assignments(self, exprs: Any) -> List[Tuple[Expr, Expr]]:
        """Ordered observed assignments needed to evaluate `exprs`."""
        from dynsym.observed import observed_assignments

        return observed_assignments(self, exprs)

    def observed_function(self, exprs: Any) -> Any:
        """Numeric function (u, p, t) -> value(s) of `exprs`."""
        from dynsym.observed import build_explicit_observed_function

        return build_explicit_observed_function(self, exprs)

    # ---------------------------------------------------------------- equality

    def __eq__(self, other: Any) -> bool:
        # Cached derived matrices take no part in equality.
        if self is other:
            return True
        if type(self) is not type(other):
            return NotImplemented
        return (
            self._iv == other._iv
            and self._name == other._name
            and _eq_unordered(self._eqs, other._eqs)
            and _eq_unordered(self._states, other._states)
            and _eq_unordered(self._ps, other._ps)
            and len(self._systems) == len(other._systems)
            and all(s1 == s2 for s1, s2 in zip(self._systems, other._systems))
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        parts = [f"'{self._name}'"]
        if self._states:
            parts.append(f"states={self._states}")
        if self._ps:
            parts.append(f"params={self._ps}")
        parts.append(f"equations={len(self._eqs)}")
        if self._observed:
            parts.append(f"observed={len(self._observed)}")
        return f"{type(self).__name__}({', '.join(parts)})"


class ODESystem(AbstractSystem):
    """
    A system of ordinary differential (and algebraic) equations.

    The time gradient, Jacobian and control Jacobian are not computed until
    requested; they are cached on first use and excluded from equality.
    """

    operator_kind = EquationKind.DIFFERENTIAL

    def __init__(self, eqs: Any, iv: Optional[Expr] = None, states: Any = None, params: Any = None, **kwargs: Any):
        super().__init__(eqs, iv, states, params, **kwargs)
        self._continuous_events: List[Equation] = list(self._options.continuous_events)
        self._compiler = None
        self._tgrad = None
        self._jac = None
        self._ctrl_jac = None

    def _check_options(self, options: SystemOptions) -> None:
        pass

    def _check(self) -> None:
        super()._check()
        for eq in self._options.continuous_events:
            if isinstance(eq.lhs, Expr):
                classify(eq, self._iv)

    @property
    def continuous_events(self) -> List[Equation]:
        return list(self._continuous_events)

    def symbolic(self) -> Any:
        """Cached CasADi compiler holding the x, p, t symbols of this system."""
        if self._compiler is None:
            from dynsym.backends.casadi import CasadiCompiler

            self._compiler = CasadiCompiler.from_system(self)
        return self._compiler

    def calculate_tgrad(self) -> Any:
        """Partial derivative of the right-hand side w.r.t. the independent variable."""
        if self._tgrad is None:
            self._tgrad = self.symbolic().tgrad()
        return self._tgrad

    def calculate_jacobian(self) -> Any:
        """Jacobian of the right-hand side w.r.t. the states."""
        if self._jac is None:
            self._jac = self.symbolic().jacobian()
        return self._jac

    def calculate_control_jacobian(self) -> Any:
        """Jacobian of the right-hand side w.r.t. the controls."""
        if self._ctrl_jac is None:
            self._ctrl_jac = self.symbolic().control_jacobian(self._ctrls)
        return self._ctrl_jac

    def generate_function(self) -> Any:
        """Numeric right-hand side f(u, p, t)."""
        from dynsym.backends.casadi import generate_function

        return generate_function(self, residual_algebraic=True)


def _rebase(expr: Expr, old_iv: Expr, new_iv: Expr, varmap: Mapping[Expr, Expr]) -> Expr:
    """Replace `old_iv` by `new_iv`, including the variable operators act along."""
    if expr in varmap:
        return varmap[expr]
    if expr == old_iv:
        return new_iv
    if not expr.children:
        return expr
    children = tuple(_rebase(c, old_iv, new_iv, varmap) for c in expr.children)
    if expr.kind in OPERATOR_KINDS and expr.iv == old_iv:
        return dataclasses.replace(expr, children=children, iv=new_iv)
    return dataclasses.replace(expr, children=children)


@beartype
def convert_system(sys: ODESystem, t: Expr, name: Optional[str] = None) -> ODESystem:
    """
    Rebuild `sys` over the independent variable `t`.

    States x(s) become x(t) and derivatives along the old independent
    variable are taken along `t`. Parameters are kept. Systems that already
    carry observed equations are rejected.
    """
    if sys.observed:
        raise ValueError(f"convert_system cannot handle a reduced system: '{sys.name}' has observed equations")
    if t.kind != ExprKind.SYMBOL:
        raise ValueError(f"Independent variable must be a symbol, got {t}")

    old_iv = sys.iv
    varmap: Dict[Expr, Expr] = {}
    states: List[Expr] = []
    for s in sys.states:
        if s.kind == ExprKind.CALL:
            if len(s.children) != 1:
                raise InvalidVariableError(f"Illegal state {s}: a state can have at most one argument like x(t)", s)
            states.append(_rebase(s, old_iv, t, varmap))
        else:
            new = DependentVariable(s.name, default=s.default)(t)
            varmap[s] = new
            states.append(new)

    def rebase(e: Any) -> Any:
        return _rebase(e, old_iv, t, varmap) if isinstance(e, Expr) else e

    eqs = [eq if eq.is_connection else Equation(rebase(eq.lhs), rebase(eq.rhs)) for eq in sys.equations]
    defaults = {rebase(k): rebase(v) for k, v in sys.defaults.items()}
    return ODESystem(
        eqs,
        t,
        states,
        sys.parameters,
        name=sys.name if name is None else name,
        defaults=defaults,
        checks=False,
    )


class DiscreteSystem(AbstractSystem):
    """
    A system of difference equations.

    References to a state at a fixed lag, x(t - k), are allowed on right-hand
    sides; they are turned into one-step shift equations by linearize_eqs()
    before code generation.
    """

    operator_kind = EquationKind.DIFFERENCE

    def __init__(self, eqs: Any, iv: Optional[Expr] = None, states: Any = None, params: Any = None, **kwargs: Any):
        super().__init__(eqs, iv, states, params, **kwargs)

    def linearize_eqs(self, return_max_delay: bool = False) -> Any:
        from dynsym.discrete import linearize_eqs

        return linearize_eqs(self, return_max_delay=return_max_delay)

    def generate_function(self) -> Any:
        """
        Numeric update map f(u, p, t) -> u at the next step.

        Built over the delay-expanded equations; each output lands in the slot
        of the state its equation updates, so lagged states shift by one step.
        """
        from dynsym.backends.casadi import generate_function
        from dynsym.discrete import linearize_eqs

        return generate_function(self, equations=linearize_eqs(self), state_update=True)
