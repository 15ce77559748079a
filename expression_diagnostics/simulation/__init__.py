"""Monte Carlo simulation engine."""

from .engine import MonteCarloSimulator, confidence_interval, wald_interval, wilson_interval
from .sampling import SampleBlock, describe_sampling, generate_random_states
from .tracking import ClauseStatistics, ClauseTracker, SampleEvaluation

__all__ = [
    'MonteCarloSimulator',
    'confidence_interval',
    'wald_interval',
    'wilson_interval',
    'SampleBlock',
    'describe_sampling',
    'generate_random_states',
    'ClauseStatistics',
    'ClauseTracker',
    'SampleEvaluation',
]
