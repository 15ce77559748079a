"""
Monte Carlo expression diagnostics.

Estimates how often a prerequisite expression fires over randomly sampled
psychological states, explains which clauses block it, and measures how
sensitive the trigger rate is to each threshold.
"""

from .config import SimulationConfig, load_expression_from_json, load_simulation_config_from_json
from .context import ContextBuilder, MoodConstraint, extract_mood_constraints
from .diagnostics import InvariantValidator, build_diagnostic_facts
from .gates import GateEvaluator
from .intervals import AxisInterval
from .population import compute_population_hash
from .prototypes import PrototypeEvaluator
from .registry import InMemoryRegistry, PrototypeRepository
from .results import SensitivityResult, SimulationResult, clause_failures_frame
from .sensitivity import SensitivityAnalyzer
from .simulation import MonteCarloSimulator
from .types import EvaluationContext, Expression

__version__ = "0.1.0"

__all__ = [
    'SimulationConfig',
    'load_expression_from_json',
    'load_simulation_config_from_json',
    'ContextBuilder',
    'MoodConstraint',
    'extract_mood_constraints',
    'InvariantValidator',
    'build_diagnostic_facts',
    'GateEvaluator',
    'AxisInterval',
    'compute_population_hash',
    'PrototypeEvaluator',
    'InMemoryRegistry',
    'PrototypeRepository',
    'SensitivityResult',
    'SimulationResult',
    'clause_failures_frame',
    'SensitivityAnalyzer',
    'MonteCarloSimulator',
    'EvaluationContext',
    'Expression',
]
