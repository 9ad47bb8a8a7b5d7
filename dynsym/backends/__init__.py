"""
Compute backends for dynsym.

Available backends:
- casadi: compiles expression trees into CasADi functions f(u, p, t) and
  builds Jacobians of ODE systems
"""

from dynsym.backends.casadi import CasadiCompiler, NumericFunction, evaluate_constant, generate_function

__all__ = [
    "CasadiCompiler",
    "NumericFunction",
    "evaluate_constant",
    "generate_function",
]
