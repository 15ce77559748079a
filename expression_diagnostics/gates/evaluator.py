"""
Gate reasoning beyond a single prototype evaluation.

Three jobs:
    1. Gate checks against partial normalized contexts (lenient: malformed
       gates and missing axes are skipped)
    2. Satisfiability of prototype gates under mood-regime constraints,
       using AxisInterval to fold the constraints per axis
    3. Runtime bookkeeping that separates "failed the clause threshold"
       from "vetoed by the prototype's own gate" for clauses on emotion or
       sexual-state paths
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from ..config import (
    AXIS_FAMILY_SCALE, EMOTION_PROTOTYPE_TYPE, SEXUAL_PROTOTYPE_TYPE,
    axis_family, canonical_axis, validate_logger,
)
from ..context.regime import MoodConstraint, extract_mood_constraints
from ..intervals import AxisInterval
from ..types import EvaluationContext, Expression, GateAxes, Leaf, PrototypeSample, VarOperand, compare
from .constraint import evaluate_gates, parse_gate

logger = logging.getLogger(__name__)


GATE_TARGET_ROOTS: Dict[str, Tuple[str, bool]] = {
    'emotions': (EMOTION_PROTOTYPE_TYPE, False),
    'previousEmotions': (EMOTION_PROTOTYPE_TYPE, True),
    'sexualStates': (SEXUAL_PROTOTYPE_TYPE, False),
    'previousSexualStates': (SEXUAL_PROTOTYPE_TYPE, True),
}

# Report keys for the compatibility map
COMPATIBILITY_KEYS = {EMOTION_PROTOTYPE_TYPE: 'emotions', SEXUAL_PROTOTYPE_TYPE: 'sexual_states'}


@dataclass(frozen=True)
class GateTarget:
    """The prototype a variable path reads, and which timepoint."""
    prototype_id: str
    use_previous: bool
    type: str


@dataclass(frozen=True)
class GateClampRegimePlan:
    """
    Which axes the sampling loop histograms, and which clauses sit on gated prototypes.

    Attributes:
        tracked_gate_axes: Sorted axes appearing in any referenced prototype's gates
        clause_gate_map: Leaf clause id -> GateTarget
    """
    tracked_gate_axes: Tuple[str, ...] = ()
    clause_gate_map: Dict[str, GateTarget] = field(default_factory=dict)


class GateEvaluator:
    """
    Gate parsing, interval satisfiability and gate-outcome bookkeeping.

    Args:
        prototype_evaluator: Supplies prototype lookups and sample evaluation
        context_builder: Supplies normalize_gate_context()
        logger: Optional injected logger
    """

    def __init__(self, prototype_evaluator, context_builder, logger: Optional[logging.Logger] = None):
        if prototype_evaluator is None:
            raise ValueError("GateEvaluator requires a PrototypeEvaluator")
        if context_builder is None:
            raise ValueError("GateEvaluator requires a ContextBuilder")
        self.prototype_evaluator = prototype_evaluator
        self.context_builder = context_builder
        self.logger = validate_logger(logger) if logger is not None else logging.getLogger(__name__)
        self._warned_gates = set()

    # =========================================================================
    # Gate Checks
    # =========================================================================

    def check_gates(self, gates: Iterable[str], normalized_axes: Union[GateAxes, Mapping[str, float]]) -> bool:
        """AND over all parseable gates whose axis is present in normalized_axes."""
        if isinstance(normalized_axes, GateAxes):
            lookup = normalized_axes.lookup
        else:
            lookup = normalized_axes.get
        failed, malformed = evaluate_gates(gates or (), lookup)
        for gate in malformed:
            if gate not in self._warned_gates:
                self._warned_gates.add(gate)
                self.logger.warning("Skipping malformed gate '%s'", gate)
        return not failed

    @staticmethod
    def resolve_gate_target(variable_path: str) -> Optional[GateTarget]:
        """Map emotions.<id> / sexualStates.<id> (and previous*) to a GateTarget."""
        parts = variable_path.split('.')
        entry = GATE_TARGET_ROOTS.get(parts[0])
        if entry is None or len(parts) != 2 or not parts[1]:
            return None
        prototype_type, use_previous = entry
        return GateTarget(prototype_id=parts[1], use_previous=use_previous, type=prototype_type)

    def resolve_gate_context(
        self,
        cache: Dict[Tuple[int, bool], GateAxes],
        context: EvaluationContext,
        use_previous: bool,
    ) -> GateAxes:
        """normalize_gate_context(), memoized per (context, timepoint) within one pass."""
        key = (id(context), use_previous)
        axes = cache.get(key)
        if axes is None:
            axes = self.context_builder.normalize_gate_context(context, use_previous)
            cache[key] = axes
        return axes

    # =========================================================================
    # Threshold Units
    # =========================================================================

    @staticmethod
    def denormalize_gate_threshold(axis: str, normalized_threshold: float) -> Optional[float]:
        """Normalized gate threshold -> raw component units (None for unknown axes)."""
        family = axis_family(axis)
        if family is None:
            return None
        return normalized_threshold * AXIS_FAMILY_SCALE[family]

    @staticmethod
    def normalize_gate_threshold(axis: str, raw_threshold: float) -> Optional[float]:
        """Raw component units -> normalized gate space (None for unknown axes)."""
        family = axis_family(axis)
        if family is None:
            return None
        return raw_threshold / AXIS_FAMILY_SCALE[family]

    # =========================================================================
    # Interval Satisfiability
    # =========================================================================

    def build_axis_intervals_from_mood_constraints(
        self,
        constraints: Iterable[MoodConstraint],
    ) -> Dict[str, AxisInterval]:
        """
        Fold raw-unit mood constraints into one normalized interval per axis.

        Constraints on unrecognized axes are logged and ignored.
        """
        intervals: Dict[str, AxisInterval] = {}
        for constraint in constraints:
            axis = constraint.axis
            threshold = self.normalize_gate_threshold(axis, constraint.threshold)
            if threshold is None:
                self.logger.warning("Ignoring mood constraint on unknown axis '%s'", axis)
                continue
            current = intervals.get(axis, AxisInterval.for_axis(axis))
            intervals[axis] = current.apply_constraint(constraint.operator, threshold)
        return intervals

    def check_prototype_compatibility(
        self,
        prototype_id: str,
        prototype_type: str,
        intervals: Mapping[str, AxisInterval],
    ) -> Dict[str, Any]:
        """
        Check whether a prototype's gates can hold inside the constrained axis ranges.

        Returns:
            {'compatible': bool, 'reason': Optional[str]}; the first
            conflicting gate short-circuits
        """
        prototype = self.prototype_evaluator.get_prototype(prototype_id, prototype_type)
        if prototype is None:
            return {'compatible': False, 'reason': f"Unknown {prototype_type} prototype '{prototype_id}'"}

        for gate in prototype.gates:
            constraint = parse_gate(gate)
            if constraint is None:
                continue
            interval = intervals.get(constraint.axis)
            if interval is None:
                continue
            if interval.is_empty():
                return {
                    'compatible': False,
                    'reason': f"Mood regime leaves no feasible values on '{constraint.axis}'",
                }
            if not constraint.intersects(interval):
                raw = self.denormalize_gate_threshold(constraint.axis, constraint.threshold)
                return {
                    'compatible': False,
                    'reason': (
                        f"Gate '{gate}' (raw {raw:g}) cannot pass while mood regime keeps "
                        f"{constraint.axis} in {interval}"
                    ),
                }
        return {'compatible': True, 'reason': None}

    def compute_gate_compatibility(
        self,
        expression: Expression,
        mood_constraints: Optional[Iterable[MoodConstraint]] = None,
        extract_refs_fn=None,
    ) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """
        Compatibility of every referenced prototype with the mood regime.

        When no constraints are supplied, those implied by the expression's
        own top-level raw-axis comparisons are used.

        Returns:
            {'emotions': {id: {...}}, 'sexual_states': {id: {...}}}
        """
        if mood_constraints is None:
            mood_constraints = extract_mood_constraints(expression)
        intervals = self.build_axis_intervals_from_mood_constraints(mood_constraints)

        extract = extract_refs_fn or self.prototype_evaluator.extract_prototype_references
        refs = extract(expression)

        report = {key: {} for key in COMPATIBILITY_KEYS.values()}
        for prototype_type, key in COMPATIBILITY_KEYS.items():
            for prototype_id in sorted(refs.for_type(prototype_type)):
                report[key][prototype_id] = self.check_prototype_compatibility(
                    prototype_id, prototype_type, intervals
                )
        return report

    # =========================================================================
    # Sampling-Loop Bookkeeping
    # =========================================================================

    def build_gate_clamp_regime_plan(
        self,
        expression: Expression,
        leaves: Optional[Iterable[Leaf]] = None,
    ) -> GateClampRegimePlan:
        """
        Derive tracked gate axes and the clause -> gated prototype map.

        Args:
            expression: Parsed expression
            leaves: Leaves to plan for; defaults to every leaf of the expression
        """
        clause_gate_map = {}
        axes = set()
        for leaf in leaves if leaves is not None else expression.leaves():
            target = None
            for path in leaf.variable_paths:
                target = self.resolve_gate_target(path)
                if target is not None:
                    break
            if target is None:
                continue
            clause_gate_map[leaf.clause_id] = target
            prototype = self.prototype_evaluator.get_prototype(target.prototype_id, target.type)
            if prototype is None:
                continue
            for gate in prototype.gates:
                constraint = parse_gate(gate)
                if constraint is not None and axis_family(constraint.axis) is not None:
                    axes.add(canonical_axis(constraint.axis))
        return GateClampRegimePlan(tracked_gate_axes=tuple(sorted(axes)), clause_gate_map=clause_gate_map)

    def evaluate_gate_sample(
        self,
        target: GateTarget,
        context: EvaluationContext,
        cache: Dict[Tuple[int, bool], GateAxes],
    ) -> Optional[PrototypeSample]:
        """The PrototypeSample behind a gate target, from the trace or evaluated afresh."""
        trace = context.previous_gate_trace if target.use_previous else context.gate_trace
        sample = trace.get(target.type, {}).get(target.prototype_id)
        if sample is not None:
            return sample
        prototype = self.prototype_evaluator.get_prototype(target.prototype_id, target.type)
        if prototype is None:
            return None
        axes = self.resolve_gate_context(cache, context, target.use_previous)
        return self.prototype_evaluator.evaluate_prototype_sample(
            prototype, axes.mood, axes.sexual, axes.traits
        )

    def record_gate_outcome_if_applicable(
        self,
        leaf: Leaf,
        stats,
        context: EvaluationContext,
        cache: Dict[Tuple[int, bool], GateAxes],
        plan: GateClampRegimePlan,
        clause_passed: bool,
        in_regime: bool,
        eval_sample_fn=None,
    ) -> bool:
        """
        Record gate pass/fail for a clause that reads a gated prototype.

        A lost pass is a '>=' / '>' clause whose ungated raw value already
        clears the threshold while the prototype's gate vetoes it.

        Returns:
            True when the leaf was a gate target and an outcome was recorded
        """
        target = plan.clause_gate_map.get(leaf.clause_id)
        if target is None:
            return False
        evaluate = eval_sample_fn or self.evaluate_gate_sample
        sample = evaluate(target, context, cache)
        if sample is None:
            return False

        stats.record_gate_evaluation(sample.gate_pass, clause_passed, in_regime)

        if isinstance(leaf.operand, VarOperand) and leaf.operator in ('>=', '>'):
            raw_pass = compare(sample.raw_value, leaf.operator, leaf.threshold)
            if raw_pass and in_regime:
                stats.record_raw_pass_in_regime()
            if raw_pass and not sample.gate_pass and in_regime:
                stats.record_lost_pass_in_regime()
        return True

