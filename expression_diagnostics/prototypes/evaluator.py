"""
Prototype scoring and gating.

A prototype's intensity is its weighted axis sum clamped to [0, 1], snapped
to exactly 0 when any of its gates fails:

    raw_score = sum(weight[axis] * value[axis])
    raw_value = clamp(raw_score, 0, 1)
    value     = raw_value if all gates pass else 0

The snap is deliberate: delta expressions such as
"previousEmotions.fear - emotions.fear >= 0.2" rely on the discontinuity
at the gate boundary.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set, Tuple, Union

from ..config import EMOTION_PROTOTYPE_TYPE, SEXUAL_PROTOTYPE_TYPE, canonical_axis, validate_logger
from ..gates.constraint import evaluate_gates
from ..registry import PrototypeRepository
from ..results import PrototypeEvaluationSummary
from ..types import Expression, GateAxes, Prerequisite, Prototype, PrototypeSample

logger = logging.getLogger(__name__)


# Variable-path root -> (prototype type, uses previous timepoint)
PROTOTYPE_PATH_ROOTS: Dict[str, Tuple[str, bool]] = {
    'emotions': (EMOTION_PROTOTYPE_TYPE, False),
    'previousEmotions': (EMOTION_PROTOTYPE_TYPE, True),
    'sexualStates': (SEXUAL_PROTOTYPE_TYPE, False),
    'previousSexualStates': (SEXUAL_PROTOTYPE_TYPE, True),
}


@dataclass
class PrototypeReferences:
    """Prototype ids referenced by an expression, deduplicated per type."""
    emotions: Set[str] = field(default_factory=set)
    sexual_states: Set[str] = field(default_factory=set)

    def for_type(self, prototype_type: str) -> Set[str]:
        if prototype_type == EMOTION_PROTOTYPE_TYPE:
            return self.emotions
        return self.sexual_states


@dataclass
class PrototypeEvaluationStats:
    """Mutable per-prototype accumulator used during a sampling pass."""
    prototype_id: str
    type: str
    mood_sample_count: int = 0
    gate_pass_count: int = 0
    gate_fail_count: int = 0
    failed_gate_counts: Dict[str, int] = field(default_factory=dict)
    raw_score_sum: float = 0.0
    value_sum_given_gate: float = 0.0
    raw_sum_given_gate: float = 0.0

    def freeze(self) -> PrototypeEvaluationSummary:
        return PrototypeEvaluationSummary(
            prototype_id=self.prototype_id,
            type=self.type,
            mood_sample_count=self.mood_sample_count,
            gate_pass_count=self.gate_pass_count,
            gate_fail_count=self.gate_fail_count,
            failed_gate_counts=dict(self.failed_gate_counts),
            raw_score_sum=self.raw_score_sum,
            value_sum_given_gate=self.value_sum_given_gate,
            raw_sum_given_gate=self.raw_sum_given_gate,
        )


PrototypeTargets = Dict[str, Dict[str, Prototype]]


def _iter_prerequisites(
    prerequisites: Union[Expression, Iterable[Prerequisite]],
) -> Iterable[Prerequisite]:
    if isinstance(prerequisites, Expression):
        return prerequisites.prerequisites
    return prerequisites


class PrototypeEvaluator:
    """
    Scores emotion / sexual-state prototypes against normalized axes.

    Malformed gate strings are logged once per distinct string and skipped.
    """

    def __init__(self, repository: PrototypeRepository, logger: Optional[logging.Logger] = None):
        if repository is None:
            raise ValueError("PrototypeEvaluator requires a PrototypeRepository")
        self.repository = repository
        self.logger = validate_logger(logger) if logger is not None else logging.getLogger(__name__)
        self._warned_gates: Set[str] = set()

    def get_prototype(self, prototype_id: str, prototype_type: str) -> Optional[Prototype]:
        """Registry lookup; None when the id or table is absent."""
        return self.repository.lookup(prototype_type, prototype_id)

    def extract_prototype_references(
        self,
        prerequisites: Union[Expression, Iterable[Prerequisite]],
    ) -> PrototypeReferences:
        """
        Collect every emotions.<id> / sexualStates.<id> reference (and the
        previous* variants) across the prerequisites' leaves.
        """
        refs = PrototypeReferences()
        for prereq in _iter_prerequisites(prerequisites):
            for leaf in prereq.logic.iter_leaves():
                for path in leaf.variable_paths:
                    parts = path.split('.')
                    entry = PROTOTYPE_PATH_ROOTS.get(parts[0])
                    if entry is None or len(parts) != 2 or not parts[1]:
                        continue
                    refs.for_type(entry[0]).add(parts[1])
        return refs

    def prepare_prototype_evaluation_targets(
        self,
        prerequisites: Union[Expression, Iterable[Prerequisite]],
    ) -> PrototypeTargets:
        """
        Resolve referenced prototype ids to Prototype definitions.

        Unresolved ids are logged and dropped; the run continues without them.

        Returns:
            {'emotion': {id: Prototype}, 'sexual': {id: Prototype}}
        """
        refs = self.extract_prototype_references(prerequisites)
        targets: PrototypeTargets = {EMOTION_PROTOTYPE_TYPE: {}, SEXUAL_PROTOTYPE_TYPE: {}}
        for prototype_type in (EMOTION_PROTOTYPE_TYPE, SEXUAL_PROTOTYPE_TYPE):
            for prototype_id in sorted(refs.for_type(prototype_type)):
                prototype = self.get_prototype(prototype_id, prototype_type)
                if prototype is None:
                    self.logger.warning(
                        "Unknown %s prototype '%s' referenced by expression; skipping",
                        prototype_type, prototype_id,
                    )
                    continue
                targets[prototype_type][prototype_id] = prototype
        return targets

    def evaluate_prototype_sample(
        self,
        target: Prototype,
        mood_axes: Dict[str, float],
        sexual_axes: Dict[str, float],
        trait_axes: Dict[str, float],
    ) -> PrototypeSample:
        """
        Score one prototype against one normalized context.

        Weighted axes resolve against traits, then sexual axes, then mood
        axes; an axis found in none of them contributes nothing.
        """
        axes = GateAxes(mood=mood_axes, sexual=sexual_axes, traits=trait_axes)

        raw_score = 0.0
        for axis, weight in target.weights.items():
            value = axes.lookup(canonical_axis(axis))
            if value is not None:
                raw_score += weight * value

        raw_value = min(max(raw_score, 0.0), 1.0)

        failed, malformed = evaluate_gates(target.gates, axes.lookup)
        for gate in malformed:
            self._warn_malformed_gate(gate, target.id)

        gate_pass = not failed
        return PrototypeSample(
            prototype_id=target.id,
            type=target.type,
            raw_score=raw_score,
            raw_value=raw_value,
            gate_pass=gate_pass,
            value=raw_value if gate_pass else 0.0,
            failed_gates=tuple(failed),
        )

    def _warn_malformed_gate(self, gate: str, prototype_id: str) -> None:
        if gate in self._warned_gates:
            return
        self._warned_gates.add(gate)
        self.logger.warning("Skipping malformed gate '%s' on prototype '%s'", gate, prototype_id)

    # =========================================================================
    # Population Summaries
    # =========================================================================

    @staticmethod
    def record_prototype_evaluation(stats: PrototypeEvaluationStats, sample: PrototypeSample) -> None:
        stats.mood_sample_count += 1
        stats.raw_score_sum += sample.raw_score
        if sample.gate_pass:
            stats.gate_pass_count += 1
            stats.value_sum_given_gate += sample.value
            stats.raw_sum_given_gate += sample.raw_value
        else:
            stats.gate_fail_count += 1
            for gate in sample.failed_gates:
                stats.failed_gate_counts[gate] = stats.failed_gate_counts.get(gate, 0) + 1

    @staticmethod
    def initialize_prototype_evaluation_summary(
        targets: PrototypeTargets,
    ) -> Dict[str, Dict[str, PrototypeEvaluationStats]]:
        return {
            prototype_type: {
                pid: PrototypeEvaluationStats(prototype_id=pid, type=prototype_type)
                for pid in prototypes
            }
            for prototype_type, prototypes in targets.items()
        }

    def update_prototype_evaluation_summary(
        self,
        summary: Dict[str, Dict[str, PrototypeEvaluationStats]],
        gate_trace: Dict[str, Dict[str, PrototypeSample]],
    ) -> None:
        """Record the current-timepoint sample of every tracked prototype."""
        for prototype_type, stats_by_id in summary.items():
            trace = gate_trace.get(prototype_type, {})
            for prototype_id, stats in stats_by_id.items():
                sample = trace.get(prototype_id)
                if sample is not None:
                    self.record_prototype_evaluation(stats, sample)

    @staticmethod
    def finalize_prototype_evaluation_summary(
        summary: Dict[str, Dict[str, PrototypeEvaluationStats]],
    ) -> Dict[str, Dict[str, PrototypeEvaluationSummary]]:
        return {
            prototype_type: {pid: stats.freeze() for pid, stats in stats_by_id.items()}
            for prototype_type, stats_by_id in summary.items()
        }

