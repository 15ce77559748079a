"""Shared fixtures for the expression diagnostics test suite.

Provides a small prototype registry and the component graph built on it:

    fear:        threat + 0.5 * arousal, gated on threat >= 0.30
    relief:      valence - 0.5 * threat, gated on threat <= 0.20
    confidence:  valence + 0.2 * agency_control, gated on threat <= 0.20
                 AND agency_control >= 0.10 (multi-gate)
    joy:         valence + 0.3 * arousal, ungated
    aroused:     sexual state on sexual_arousal, gated on sexual_arousal >= 0.20

The expression fixtures are the four end-to-end scenarios the simulator
tests exercise.
"""

import pytest

from expression_diagnostics.context.builder import ContextBuilder
from expression_diagnostics.gates.evaluator import GateEvaluator
from expression_diagnostics.prototypes.evaluator import PrototypeEvaluator
from expression_diagnostics.registry import InMemoryRegistry, PrototypeRepository
from expression_diagnostics.simulation import MonteCarloSimulator
from expression_diagnostics.types import AxisSnapshot, Expression


EMOTIONS = {
    'fear': {'weights': {'threat': 1.0, 'arousal': 0.5}, 'gates': ['threat >= 0.30']},
    'relief': {'weights': {'valence': 1.0, 'threat': -0.5}, 'gates': ['threat <= 0.20']},
    'confidence': {
        'weights': {'valence': 1.0, 'agency_control': 0.2},
        'gates': ['threat <= 0.20', 'agency_control >= 0.10'],
    },
    'joy': {'weights': {'valence': 1.0, 'arousal': 0.3}, 'gates': []},
}

SEXUAL_STATES = {
    'aroused': {'weights': {'sexual_arousal': 1.0}, 'gates': ['sexual_arousal >= 0.20']},
}


def leaf(op, path, threshold):
    return {op: [{'var': path}, threshold]}


def snapshot(mood=None, sexual=None, traits=None):
    """AxisSnapshot with unspecified axes at 0 (mood/sexual) or 50 (traits)."""
    return AxisSnapshot(mood=dict(mood or {}), sexual=dict(sexual or {}), traits=dict(traits or {}))


@pytest.fixture
def registry():
    return InMemoryRegistry.from_prototype_tables(emotions=EMOTIONS, sexual=SEXUAL_STATES)


@pytest.fixture
def repository(registry):
    return PrototypeRepository(registry)


@pytest.fixture
def prototype_evaluator(repository):
    return PrototypeEvaluator(repository)


@pytest.fixture
def context_builder(repository, prototype_evaluator):
    return ContextBuilder(repository, prototype_evaluator)


@pytest.fixture
def gate_evaluator(prototype_evaluator, context_builder):
    return GateEvaluator(prototype_evaluator, context_builder)


@pytest.fixture
def simulator(registry):
    return MonteCarloSimulator(registry)


@pytest.fixture
def fear_expression():
    """Scenario A: fear >= 0.1 AND threat >= 50 (satisfiable)."""
    return Expression.from_dict({
        'id': 'test:lingering_fear',
        'prerequisites': [{'logic': {'and': [
            leaf('>=', 'emotions.fear', 0.1),
            leaf('>=', 'moodAxes.threat', 50),
        ]}}],
    })


@pytest.fixture
def relief_expression():
    """Scenario B: relief >= 0.5 AND threat >= 50 (relief gate excludes threat >= 0.2)."""
    return Expression.from_dict({
        'id': 'test:impossible_relief',
        'prerequisites': [{'logic': {'and': [
            leaf('>=', 'emotions.relief', 0.5),
            leaf('>=', 'moodAxes.threat', 50),
        ]}}],
    })


@pytest.fixture
def confidence_expression():
    """Scenario C: confidence >= 0.1 with agency_control and threat forced to <= -50."""
    return Expression.from_dict({
        'id': 'test:vetoed_confidence',
        'prerequisites': [{'logic': {'and': [
            leaf('>=', 'emotions.confidence', 0.1),
            leaf('<=', 'moodAxes.agency_control', -50),
            leaf('<=', 'moodAxes.threat', -50),
        ]}}],
    })


@pytest.fixture
def unseeded_expression():
    """Scenario D: references a mood axis that does not exist."""
    return Expression.from_dict({
        'id': 'test:unseeded',
        'prerequisites': [
            {'logic': leaf('>=', 'moodAxes.nonexistent_axis', 10)},
            {'logic': leaf('>=', 'emotions.joy', 0.2)},
        ],
    })


@pytest.fixture
def delta_expression():
    """Two delta leaves: raw threat rises by 10+ and fear drops by 0.2+."""
    return Expression.from_dict({
        'id': 'test:fading_fear',
        'prerequisites': [{'logic': {'and': [
            {'>=': [{'-': [{'var': 'moodAxes.threat'}, {'var': 'previousMoodAxes.threat'}]}, 10]},
            {'>=': [{'-': [{'var': 'previousEmotions.fear'}, {'var': 'emotions.fear'}]}, 0.2]},
        ]}}],
    })
