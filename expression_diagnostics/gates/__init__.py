"""Gate parsing and gate-outcome bookkeeping."""

from .constraint import GateConstraint, parse_gate, evaluate_gates
from .evaluator import GateEvaluator, GateTarget, GateClampRegimePlan

__all__ = [
    'GateConstraint',
    'parse_gate',
    'evaluate_gates',
    'GateEvaluator',
    'GateTarget',
    'GateClampRegimePlan',
]
