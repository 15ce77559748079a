"""
Gate string parsing.

A gate is a hard precondition on a prototype: "<axis> <op> <threshold>"
in normalized axis units, e.g. "threat >= 0.30" or "valence <= -0.20".
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

from ..config import canonical_axis
from ..intervals import AxisInterval
from ..types import compare


GATE_PATTERN = re.compile(r'^\s*(\w+)\s*(>=|<=|>|<|==)\s*(-?\d*\.?\d+)\s*$')


@dataclass(frozen=True)
class GateConstraint:
    axis: str
    operator: str
    threshold: float
    source: str = ''

    @classmethod
    def parse(cls, gate: str) -> 'GateConstraint':
        """
        Parse a gate string.

        Raises:
            ValueError: If the string is not "<axis> <op> <number>"
        """
        if not isinstance(gate, str):
            raise ValueError(f"Gate must be a string, got {gate!r}")
        match = GATE_PATTERN.match(gate)
        if not match:
            raise ValueError(f"Invalid gate format: '{gate}'")
        return cls(
            axis=canonical_axis(match.group(1)),
            operator=match.group(2),
            threshold=float(match.group(3)),
            source=gate,
        )

    def is_satisfied_by(self, value: float) -> bool:
        return compare(value, self.operator, self.threshold)

    def intersects(self, interval: AxisInterval) -> bool:
        """True when the gate's half-line (or point) overlaps the interval."""
        return interval.intersects_gate(self.operator, self.threshold)


def parse_gate(gate: str) -> Optional[GateConstraint]:
    """Parse a gate string, returning None when it is malformed."""
    try:
        return GateConstraint.parse(gate)
    except ValueError:
        return None


def evaluate_gates(
    gates: Iterable[str],
    lookup: Callable[[str], Optional[float]],
) -> Tuple[List[str], List[str]]:
    """
    Check gate strings against a normalized-axis lookup.

    Malformed gates and gates on axes the lookup cannot resolve are skipped,
    so a partial context never fails a gate for lack of data.

    Args:
        gates: Gate strings
        lookup: axis -> normalized value (None when absent)

    Returns:
        (failed gate strings, malformed gate strings)
    """
    failed = []
    malformed = []
    for gate in gates:
        constraint = parse_gate(gate)
        if constraint is None:
            malformed.append(gate)
            continue
        value = lookup(constraint.axis)
        if value is None:
            continue
        if not constraint.is_satisfied_by(value):
            failed.append(gate)
    return failed, malformed
