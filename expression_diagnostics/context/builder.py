"""
Raw sample -> evaluation context.

Normalization conventions (normalized = raw / 100 unless noted):
    mood axes         [-100, 100] -> [-1, 1]
    sex_excitation    [0, 100]    -> [0, 1]
    sex_inhibition    [0, 100]    -> [0, 1]
    baseline_libido   [-50, 50]   -> [-0.5, 0.5]
    affect traits     [0, 100]    -> [0, 1]
    sexual_arousal    clamp((excitation - inhibition + baseline) / 100, 0, 1)

Expressions read raw axes (moodAxes.threat >= 50) but prototype weights and
gates read normalized ones, so every context carries both views.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

import numpy as np

from ..config import (
    DEFAULT_TRAIT_VALUE, EMOTION_PROTOTYPE_TYPE, MOOD_AXES, SEXUAL_AROUSAL_AXIS,
    SEXUAL_AXES, SEXUAL_PROTOTYPE_TYPE, SEXUAL_RAW_RANGES, TRAIT_AXES, validate_logger,
)
from ..registry import PrototypeRepository
from ..results import AxisHistogram, SampleReservoir
from ..types import AxisSnapshot, EvaluationContext, GateAxes, Prototype, PrototypeSample
from .regime import (
    initialize_axis_histograms, initialize_sample_reservoir,
    record_axis_histograms, record_sample_reservoir,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Normalization
# =============================================================================

def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def normalize_mood_axes(raw: Mapping[str, float]) -> Dict[str, float]:
    return {axis: _clamp(raw.get(axis, 0) / 100.0, -1.0, 1.0) for axis in MOOD_AXES}


def normalize_sexual_axes(raw: Mapping[str, float]) -> Dict[str, float]:
    normalized = {}
    for axis in SEXUAL_AXES:
        low, high = SEXUAL_RAW_RANGES[axis]
        normalized[axis] = _clamp(raw.get(axis, 0) / 100.0, low / 100.0, high / 100.0)
    return normalized


def normalize_trait_axes(raw: Mapping[str, float]) -> Dict[str, float]:
    return {
        axis: _clamp(raw.get(axis, DEFAULT_TRAIT_VALUE) / 100.0, 0.0, 1.0)
        for axis in TRAIT_AXES
    }


def compute_sexual_arousal(raw_sexual: Mapping[str, float]) -> float:
    excitation = raw_sexual.get('sex_excitation', 0)
    inhibition = raw_sexual.get('sex_inhibition', 0)
    baseline = raw_sexual.get('baseline_libido', 0)
    return _clamp((excitation - inhibition + baseline) / 100.0, 0.0, 1.0)


def _gate_axes(mood: Mapping[str, float], sexual: Mapping[str, float],
               traits: Mapping[str, float], sexual_arousal: float) -> GateAxes:
    normalized_sexual = normalize_sexual_axes(sexual)
    normalized_sexual[SEXUAL_AROUSAL_AXIS] = sexual_arousal
    return GateAxes(
        mood=normalize_mood_axes(mood),
        sexual=normalized_sexual,
        traits=normalize_trait_axes(traits),
    )


@dataclass(frozen=True)
class KnownContextKeys:
    """
    The variable-path vocabulary a context can resolve.

    Attributes:
        top_level: Every recognized root ('emotions', 'moodAxes', ...)
        nested_keys: Root -> the keys valid one level below it
        scalar_keys: Roots that are numbers and cannot be nested into
    """
    top_level: FrozenSet[str]
    nested_keys: Dict[str, FrozenSet[str]]
    scalar_keys: FrozenSet[str]


class ContextBuilder:
    """
    Materializes EvaluationContexts and owns the mood-regime accumulators.

    Every prototype in the registry is evaluated for both timepoints, so any
    emotions.<id> / previousSexualStates.<id> path resolves. Prototype
    definitions are read from the repository on first use and reused.
    """

    def __init__(
        self,
        repository: PrototypeRepository,
        prototype_evaluator=None,
        logger: Optional[logging.Logger] = None,
    ):
        if repository is None:
            raise ValueError("ContextBuilder requires a PrototypeRepository")
        self.repository = repository
        self.logger = validate_logger(logger) if logger is not None else logging.getLogger(__name__)
        if prototype_evaluator is None:
            from ..prototypes.evaluator import PrototypeEvaluator
            prototype_evaluator = PrototypeEvaluator(repository, self.logger)
        self.prototype_evaluator = prototype_evaluator
        self._targets: Optional[Dict[str, List[Prototype]]] = None

    def _prototype_targets(self) -> Dict[str, List[Prototype]]:
        if self._targets is None:
            self._targets = {
                prototype_type: list(self.repository.table(prototype_type).values())
                for prototype_type in (EMOTION_PROTOTYPE_TYPE, SEXUAL_PROTOTYPE_TYPE)
            }
        return self._targets

    def _evaluate_all(self, axes: GateAxes) -> Dict[str, Dict[str, PrototypeSample]]:
        trace = {}
        for prototype_type, prototypes in self._prototype_targets().items():
            trace[prototype_type] = {
                p.id: self.prototype_evaluator.evaluate_prototype_sample(
                    p, axes.mood, axes.sexual, axes.traits
                )
                for p in prototypes
            }
        return trace

    def build_context(
        self,
        current: AxisSnapshot,
        previous: AxisSnapshot,
        affect_traits: Optional[Mapping[str, float]] = None,
    ) -> EvaluationContext:
        """
        Build the full context for one sampled state.

        Args:
            current: Raw axes at the current timepoint
            previous: Raw axes at the previous timepoint
            affect_traits: Raw traits shared by both timepoints; defaults to
                current.traits, then to 50 on every trait axis

        Returns:
            EvaluationContext with raw axes, gated intensities and gate traces
        """
        traits = dict(affect_traits if affect_traits is not None else current.traits)
        for axis in TRAIT_AXES:
            traits.setdefault(axis, DEFAULT_TRAIT_VALUE)

        sexual_arousal = compute_sexual_arousal(current.sexual)
        previous_sexual_arousal = compute_sexual_arousal(previous.sexual)

        current_trace = self._evaluate_all(
            _gate_axes(current.mood, current.sexual, traits, sexual_arousal)
        )
        previous_trace = self._evaluate_all(
            _gate_axes(previous.mood, previous.sexual, traits, previous_sexual_arousal)
        )

        def values(trace, prototype_type):
            return {pid: s.value for pid, s in trace.get(prototype_type, {}).items()}

        return EvaluationContext(
            mood_axes=dict(current.mood),
            sexual_axes=dict(current.sexual),
            affect_traits=traits,
            emotions=values(current_trace, EMOTION_PROTOTYPE_TYPE),
            sexual_states=values(current_trace, SEXUAL_PROTOTYPE_TYPE),
            sexual_arousal=sexual_arousal,
            previous_mood_axes=dict(previous.mood),
            previous_sexual_axes=dict(previous.sexual),
            previous_emotions=values(previous_trace, EMOTION_PROTOTYPE_TYPE),
            previous_sexual_states=values(previous_trace, SEXUAL_PROTOTYPE_TYPE),
            previous_sexual_arousal=previous_sexual_arousal,
            gate_trace=current_trace,
            previous_gate_trace=previous_trace,
        )

    def normalize_gate_context(self, context: EvaluationContext, use_previous: bool = False) -> GateAxes:
        """Project a context onto the normalized {mood, sexual, traits} gate axes."""
        if use_previous:
            return _gate_axes(
                context.previous_mood_axes, context.previous_sexual_axes,
                context.affect_traits, context.previous_sexual_arousal,
            )
        return _gate_axes(
            context.mood_axes, context.sexual_axes,
            context.affect_traits, context.sexual_arousal,
        )

    def build_known_context_keys(self) -> KnownContextKeys:
        emotion_ids = frozenset(self.repository.ids(EMOTION_PROTOTYPE_TYPE))
        sexual_ids = frozenset(self.repository.ids(SEXUAL_PROTOTYPE_TYPE))
        mood = frozenset(MOOD_AXES)
        sexual = frozenset(SEXUAL_AXES)

        nested_keys = {
            'mood': mood,
            'moodAxes': mood,
            'previousMoodAxes': mood,
            'sexualAxes': sexual,
            'previousSexualAxes': sexual,
            'affectTraits': frozenset(TRAIT_AXES),
            'emotions': emotion_ids,
            'previousEmotions': emotion_ids,
            'sexualStates': sexual_ids,
            'previousSexualStates': sexual_ids,
        }
        scalar_keys = frozenset({'sexualArousal', 'previousSexualArousal'})
        return KnownContextKeys(
            top_level=frozenset(nested_keys) | scalar_keys,
            nested_keys=nested_keys,
            scalar_keys=scalar_keys,
        )

    # =========================================================================
    # Mood-Regime Tracking
    # =========================================================================

    @staticmethod
    def initialize_mood_regime_axis_histograms(axes: Iterable[str]) -> Dict[str, AxisHistogram]:
        return initialize_axis_histograms(axes)

    @staticmethod
    def record_mood_regime_axis_histograms(
        histograms: Dict[str, AxisHistogram],
        context: EvaluationContext,
    ) -> None:
        record_axis_histograms(histograms, context.raw_axis_values())

    @staticmethod
    def initialize_mood_regime_sample_reservoir(limit: int) -> SampleReservoir:
        return initialize_sample_reservoir(limit)

    @staticmethod
    def record_mood_regime_sample_reservoir(
        reservoir: SampleReservoir,
        context: EvaluationContext,
        rng: np.random.Generator,
    ) -> None:
        record_sample_reservoir(reservoir, context.raw_axis_values(), rng)
