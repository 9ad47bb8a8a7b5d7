"""
Equation representations for dynsym.

- Equation: lhs ~ rhs
- Connection: placeholder sides of a connect() equation, which a later
  expansion step turns into ordinary equations
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple, Union

from beartype import beartype

from dynsym.expr import Expr, substitute, to_expr


@dataclass(frozen=True)
class Connection:
    """Side of a connect() equation. Holds the names of the joined systems."""

    systems: Tuple[str, ...] = ()

    def __repr__(self) -> str:
        if not self.systems:
            return "connection"
        return f"connect({', '.join(self.systems)})"


Side = Union[Expr, Connection]


@dataclass(frozen=True)
class Equation:
    """
    Represents an equation: lhs ~ rhs.

    Numbers on either side are promoted to constants, so Equation(0, f)
    is the algebraic constraint 0 = f.
    """

    lhs: Side
    rhs: Side

    def __post_init__(self) -> None:
        if not isinstance(self.lhs, Connection):
            object.__setattr__(self, "lhs", to_expr(self.lhs))
        if not isinstance(self.rhs, Connection):
            object.__setattr__(self, "rhs", to_expr(self.rhs))

    def __repr__(self) -> str:
        return f"{self.lhs} ~ {self.rhs}"

    @property
    def is_connection(self) -> bool:
        return isinstance(self.lhs, Connection)

    def substitute(self, mapping: Any) -> "Equation":
        """Create a new equation with `mapping` applied to both sides."""
        if self.is_connection:
            return self
        return Equation(substitute(self.lhs, mapping), substitute(self.rhs, mapping))


@beartype
def connect(*systems: Any) -> Equation:
    """
    Create a connect equation between systems (or their names).

    The builder never expands these; they are kept after all other
    equations for a structural pass to handle.
    """
    names = tuple(s if isinstance(s, str) else s.name for s in systems)
    return Equation(Connection(), Connection(names))
