"""Evaluation-context construction and mood-regime accumulators."""

from .regime import MoodConstraint, extract_mood_constraints, is_in_regime
from .builder import ContextBuilder, KnownContextKeys, compute_sexual_arousal

__all__ = [
    'MoodConstraint',
    'extract_mood_constraints',
    'is_in_regime',
    'ContextBuilder',
    'KnownContextKeys',
    'compute_sexual_arousal',
]
