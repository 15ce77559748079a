"""Emotion and sexual-state prototype evaluation."""

from .evaluator import (
    PrototypeEvaluator,
    PrototypeEvaluationStats,
    PrototypeReferences,
    PROTOTYPE_PATH_ROOTS,
)

__all__ = [
    'PrototypeEvaluator',
    'PrototypeEvaluationStats',
    'PrototypeReferences',
    'PROTOTYPE_PATH_ROOTS',
]
