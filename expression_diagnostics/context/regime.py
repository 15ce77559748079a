"""
Mood-regime definition and in-regime accumulators.

A mood regime is the subset of sampled states satisfying a list of raw-unit
axis constraints ("moodAxes.threat >= 50"). Histograms and the reservoir are
owned, pre-sized accumulators updated only for in-regime samples.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np

from ..config import (
    HISTOGRAM_BIN_WIDTHS, SEXUAL_AROUSAL_AXIS,
    axis_family, canonical_axis, raw_axis_range, variable_root,
)
from ..results import AxisHistogram, SampleReservoir
from ..types import COMPARISON_OPERATORS, Compound, Expression, Leaf, VarOperand, compare

logger = logging.getLogger(__name__)


# Roots a mood-regime constraint may reference (current timepoint only)
REGIME_AXIS_ROOTS = frozenset({'mood', 'moodAxes', 'sexualAxes', 'affectTraits'})
REGIME_SCALAR_ROOTS = frozenset({'sexualArousal'})


@dataclass(frozen=True)
class MoodConstraint:
    """
    One raw-unit axis constraint defining (part of) a mood regime.

    Attributes:
        var_path: 'moodAxes.<axis>', 'mood.<axis>', 'sexualAxes.<axis>',
            'affectTraits.<axis>' or 'sexualArousal'
        operator: One of >=, <=, >, <, ==
        threshold: Threshold in raw component units
    """
    var_path: str
    operator: str
    threshold: float

    def __post_init__(self) -> None:
        if self.operator not in COMPARISON_OPERATORS:
            raise ValueError(
                f"Mood constraint '{self.var_path}' has unsupported operator '{self.operator}'"
            )
        root = variable_root(self.var_path)
        if root in REGIME_SCALAR_ROOTS:
            if self.var_path != root:
                raise ValueError(f"Mood constraint path '{self.var_path}' cannot nest under {root}")
        elif root not in REGIME_AXIS_ROOTS or axis_family(self.axis) is None:
            raise ValueError(f"Mood constraint path '{self.var_path}' is not a known raw axis")

    @property
    def axis(self) -> str:
        if variable_root(self.var_path) in REGIME_SCALAR_ROOTS:
            return SEXUAL_AROUSAL_AXIS
        return canonical_axis(self.var_path.split('.', 1)[-1])

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'MoodConstraint':
        try:
            return cls(
                var_path=str(data['var_path']),
                operator=str(data['operator']),
                threshold=float(data['threshold']),
            )
        except KeyError as e:
            raise ValueError(f"Mood constraint is missing field {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {'var_path': self.var_path, 'operator': self.operator, 'threshold': self.threshold}

    def is_satisfied_by(self, context) -> bool:
        value = context.resolve(self.var_path)
        if value is None:
            return False
        return compare(value, self.operator, self.threshold)

    def describe(self) -> str:
        return f"{self.var_path} {self.operator} {self.threshold:g}"


def is_in_regime(context, constraints: Optional[Iterable[MoodConstraint]]) -> bool:
    """True when the context satisfies every constraint (trivially so for None)."""
    if not constraints:
        return True
    return all(c.is_satisfied_by(context) for c in constraints)


def _collect_and_leaves(node, out: List[Leaf]) -> None:
    if isinstance(node, Leaf):
        out.append(node)
    elif isinstance(node, Compound) and node.operator == 'and':
        for child in node.children:
            _collect_and_leaves(child, out)


def extract_mood_constraints(expression: Expression) -> List[MoodConstraint]:
    """
    Collect the raw-axis comparisons an expression AND-s at top level.

    Leaves under an 'or' are skipped since they do not bound the regime.
    Duplicate (path, operator, threshold) triples are kept once.
    """
    leaves: List[Leaf] = []
    for prereq in expression.prerequisites:
        _collect_and_leaves(prereq.logic, leaves)

    constraints = []
    seen = set()
    for leaf in leaves:
        if not isinstance(leaf.operand, VarOperand):
            continue
        key = (leaf.variable_path, leaf.operator, leaf.threshold)
        if key in seen:
            continue
        try:
            constraint = MoodConstraint(*key)
        except ValueError:
            continue
        seen.add(key)
        constraints.append(constraint)
    return constraints


# =============================================================================
# Axis Histograms
# =============================================================================

def initialize_axis_histograms(axes: Iterable[str]) -> Dict[str, AxisHistogram]:
    """
    Create zero-filled histograms for each tracked axis.

    Bin width and domain are fixed per axis family; unknown axes are skipped
    with a warning.
    """
    histograms = {}
    for axis in axes:
        axis = canonical_axis(axis)
        family = axis_family(axis)
        if family is None:
            logger.warning("Cannot histogram unknown axis '%s'", axis)
            continue
        low, high = raw_axis_range(axis)
        width = HISTOGRAM_BIN_WIDTHS[family]
        n_bins = int(round((high - low) / width)) + 1
        histograms[axis] = AxisHistogram(
            axis=axis,
            min_value=float(low),
            max_value=float(high),
            bin_width=width,
            counts=np.zeros(n_bins, dtype=np.int64),
        )
    return histograms


def record_axis_histograms(
    histograms: Dict[str, AxisHistogram],
    raw_values: Mapping[str, float],
) -> None:
    """Increment the bin matching each axis's raw value (values outside the domain clip)."""
    for axis, hist in histograms.items():
        value = raw_values.get(axis)
        if value is None:
            continue
        index = int(round((value - hist.min_value) / hist.bin_width))
        index = min(max(index, 0), hist.bin_count - 1)
        hist.counts[index] += 1
        hist.sample_count += 1


# =============================================================================
# Sample Reservoir
# =============================================================================

def initialize_sample_reservoir(limit: int) -> SampleReservoir:
    if limit < 0:
        raise ValueError(f"Reservoir limit must be >= 0, got {limit}")
    return SampleReservoir(limit=limit)


def record_sample_reservoir(
    reservoir: SampleReservoir,
    sample: Dict[str, float],
    rng: np.random.Generator,
) -> None:
    """
    Offer one sample to the reservoir (Algorithm R).

    After S offers, stored_count == min(S, limit) and every offered sample
    is retained with equal probability.
    """
    reservoir.sample_count += 1
    if reservoir.limit == 0:
        return
    if reservoir.stored_count < reservoir.limit:
        reservoir.samples.append(dict(sample))
        return
    j = int(rng.integers(0, reservoir.sample_count))
    if j < reservoir.limit:
        reservoir.samples[j] = dict(sample)
