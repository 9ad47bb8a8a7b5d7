"""
Error types raised while building systems and resolving observed equations.

All errors subclass ValueError so callers catching the built-in keep working;
each carries the offending symbol or equation as an attribute.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class DynsymError(ValueError):
    """Base class for dynsym errors."""


class MissingIndependentVariableError(DynsymError):
    """No independent variable was given and none could be inferred."""


class MissingNameError(DynsymError):
    """A system was constructed without a name."""


class InvalidEquationError(DynsymError):
    """Malformed derivative/difference target or inconsistent independent variable."""

    def __init__(self, message: str, equation: Any = None):
        super().__init__(message)
        self.equation = equation


class DuplicateStateError(InvalidEquationError):
    """Two differential/difference equations claim the same state."""

    def __init__(self, message: str, variable: Any = None, equation: Any = None):
        super().__init__(message, equation)
        self.variable = variable


class InvalidVariableError(DynsymError):
    """A state, parameter or control violates its declaration rules."""

    def __init__(self, message: str, variable: Any = None):
        super().__init__(message)
        self.variable = variable


class ForwardDelayError(DynsymError):
    """A discrete equation references a state ahead of the current step."""

    def __init__(self, message: str, variable: Any = None, offset: Optional[float] = None):
        super().__init__(message)
        self.variable = variable
        self.offset = offset


class MultipleStepSizesError(DynsymError):
    """A state is used with more than one difference operator."""

    def __init__(self, message: str, variable: Any = None, steps: Sequence[float] = ()):
        super().__init__(message)
        self.variable = variable
        self.steps = tuple(steps)


class UnknownVariableError(DynsymError):
    """A referenced symbol is neither a state, a parameter nor observed."""

    def __init__(self, message: str, variable: Any = None):
        super().__init__(message)
        self.variable = variable


class CyclicObservedError(DynsymError):
    """Observed equations depend on each other in a cycle."""

    def __init__(self, message: str, cycle: Sequence[Any] = ()):
        super().__init__(message)
        self.cycle = tuple(cycle)


class DuplicateNameError(DynsymError):
    """Two subsystems share a name."""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class DimensionalMismatchError(DynsymError):
    """Raised by unit checkers when an equation is dimensionally inconsistent."""

    def __init__(self, message: str, equation: Any = None):
        super().__init__(message)
        self.equation = equation
