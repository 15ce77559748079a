"""
Configuration management for expression diagnostics.

Axis vocabularies, raw ranges, near-miss epsilons, the SimulationConfig
defaults, and JSON loading utilities for configs, expressions and mood
constraints.
"""

import json
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Tuple


# =============================================================================
# Axis Vocabulary
# =============================================================================

MOOD_AXES: Tuple[str, ...] = (
    'valence',
    'arousal',
    'agency_control',
    'threat',
    'engagement',
    'future_expectancy',
    'self_evaluation',
    'affiliation',
    'inhibitory_control',
)

SEXUAL_AXES: Tuple[str, ...] = ('sex_excitation', 'sex_inhibition', 'baseline_libido')

TRAIT_AXES: Tuple[str, ...] = ('affective_empathy', 'cognitive_empathy', 'harm_aversion')

# Raw (low, high) bounds as stored on the mood / sexual_state / affect_traits components
MOOD_RAW_RANGE: Tuple[int, int] = (-100, 100)
SEXUAL_RAW_RANGES: Dict[str, Tuple[int, int]] = {
    'sex_excitation': (0, 100),
    'sex_inhibition': (0, 100),
    'baseline_libido': (-50, 50),
}
TRAIT_RAW_RANGE: Tuple[int, int] = (0, 100)

DEFAULT_TRAIT_VALUE = 50

# Derived sexual-arousal axis, already in [0, 1]
SEXUAL_AROUSAL_AXIS = 'sexual_arousal'
AXIS_ALIASES: Dict[str, str] = {
    'SA': SEXUAL_AROUSAL_AXIS,
    'sexual_inhibition': 'sex_inhibition',
}

AXIS_FAMILY_MOOD = 'mood'
AXIS_FAMILY_SEXUAL = 'sexual'
AXIS_FAMILY_TRAIT = 'trait'
AXIS_FAMILY_SEXUAL_AROUSAL = 'sexual_arousal'

# Normalized = raw / scale
AXIS_FAMILY_SCALE: Dict[str, float] = {
    AXIS_FAMILY_MOOD: 100.0,
    AXIS_FAMILY_SEXUAL: 100.0,
    AXIS_FAMILY_TRAIT: 100.0,
    AXIS_FAMILY_SEXUAL_AROUSAL: 1.0,
}


def canonical_axis(axis: str) -> str:
    """Resolve gate/weight aliases ('SA', 'sexual_inhibition') to canonical names."""
    return AXIS_ALIASES.get(axis, axis)


def axis_family(axis: str) -> Optional[str]:
    """Return the axis family for a gate-space axis name, or None if unknown."""
    axis = canonical_axis(axis)
    if axis in MOOD_AXES:
        return AXIS_FAMILY_MOOD
    if axis in SEXUAL_AXES:
        return AXIS_FAMILY_SEXUAL
    if axis in TRAIT_AXES:
        return AXIS_FAMILY_TRAIT
    if axis == SEXUAL_AROUSAL_AXIS:
        return AXIS_FAMILY_SEXUAL_AROUSAL
    return None


def raw_axis_range(axis: str) -> Optional[Tuple[float, float]]:
    """Raw-unit (low, high) domain for an axis."""
    axis = canonical_axis(axis)
    family = axis_family(axis)
    if family == AXIS_FAMILY_MOOD:
        return MOOD_RAW_RANGE
    if family == AXIS_FAMILY_SEXUAL:
        return SEXUAL_RAW_RANGES[axis]
    if family == AXIS_FAMILY_TRAIT:
        return TRAIT_RAW_RANGE
    if family == AXIS_FAMILY_SEXUAL_AROUSAL:
        return (0.0, 1.0)
    return None


# =============================================================================
# Context Vocabulary
# =============================================================================

EMOTION_PROTOTYPE_TYPE = 'emotion'
SEXUAL_PROTOTYPE_TYPE = 'sexual'

REGISTRY_CATEGORY = 'lookups'
PROTOTYPE_LOOKUP_IDS: Dict[str, str] = {
    EMOTION_PROTOTYPE_TYPE: 'core:emotion_prototypes',
    SEXUAL_PROTOTYPE_TYPE: 'core:sexual_prototypes',
}

# Variable-path roots whose nested keys are raw integer axis values
RAW_AXIS_ROOTS = frozenset({
    'mood',
    'moodAxes',
    'previousMoodAxes',
    'sexualAxes',
    'previousSexualAxes',
    'affectTraits',
})

SCALAR_ROOTS = frozenset({'sexualArousal', 'previousSexualArousal'})

RAW_AXIS_NEAR_MISS_EPSILON = 5.0
DEFAULT_NEAR_MISS_EPSILON = 0.05


def variable_root(var_path: str) -> str:
    return var_path.split('.', 1)[0]


def is_integer_domain(var_path: str) -> bool:
    """True when the path reads a raw integer axis (thresholds step by 1)."""
    return variable_root(var_path) in RAW_AXIS_ROOTS


# =============================================================================
# Mood-Regime Histogram Bins
# =============================================================================

# family -> bin width (domain comes from raw_axis_range)
HISTOGRAM_BIN_WIDTHS: Dict[str, float] = {
    AXIS_FAMILY_MOOD: 1.0,
    AXIS_FAMILY_SEXUAL: 1.0,
    AXIS_FAMILY_TRAIT: 1.0,
    AXIS_FAMILY_SEXUAL_AROUSAL: 0.01,
}


# =============================================================================
# Simulation Config
# =============================================================================

DISTRIBUTIONS = ('uniform', 'gaussian', 'correlated')
CONFIDENCE_METHODS = ('wald', 'wilson')
CONFIG_FILE_VERSION = '1.0'


@dataclass
class SimulationConfig:
    """
    Sampling configuration for one simulate() call.

    Attributes:
        sample_count: Number of random states to draw
        distribution: 'uniform', 'gaussian' or 'correlated' (current drawn
            as previous plus a Gaussian delta)
        seed: Seed for the random-state generator; identical seed and
            options produce an identical result
        mood_regime_sample_reservoir_limit: Max raw samples kept in the
            in-regime reservoir
        mood_constraints: Optional list of MoodConstraint restricting the
            in-regime population; None means every sample is in regime.
            Plain dicts are converted with MoodConstraint.from_dict
    """
    sample_count: int = 10000
    distribution: str = 'uniform'
    seed: Optional[int] = None
    track_clauses: bool = True
    confidence_level: float = 0.95
    confidence_method: str = 'wald'
    store_samples_for_sensitivity: bool = True
    sensitivity_sample_limit: int = 10000
    mood_regime_sample_reservoir_limit: int = 200
    mood_constraints: Optional[List[Any]] = None
    validate_var_paths: bool = True
    fail_on_unseeded_vars: bool = False
    max_witnesses: int = 5
    chunk_size: int = 1000
    mood_delta_sigma: float = 15.0
    sexual_delta_sigma: float = 12.0
    libido_delta_sigma: float = 8.0

    def __post_init__(self) -> None:
        if isinstance(self.sample_count, bool) or not isinstance(self.sample_count, int) \
                or self.sample_count < 1:
            raise ValueError(
                f"SimulationConfig.sample_count must be a positive integer, "
                f"got {self.sample_count!r}"
            )
        if self.distribution not in DISTRIBUTIONS:
            raise ValueError(
                f"SimulationConfig.distribution must be one of {DISTRIBUTIONS}, "
                f"got {self.distribution!r}"
            )
        if self.confidence_method not in CONFIDENCE_METHODS:
            raise ValueError(
                f"SimulationConfig.confidence_method must be one of {CONFIDENCE_METHODS}, "
                f"got {self.confidence_method!r}"
            )
        if not 0.0 < self.confidence_level < 1.0:
            raise ValueError("SimulationConfig.confidence_level must lie in (0, 1)")
        if self.mood_regime_sample_reservoir_limit < 0:
            raise ValueError("SimulationConfig.mood_regime_sample_reservoir_limit must be >= 0")
        if self.sensitivity_sample_limit < 0:
            raise ValueError("SimulationConfig.sensitivity_sample_limit must be >= 0")
        if self.chunk_size < 1:
            raise ValueError("SimulationConfig.chunk_size must be >= 1")
        if self.max_witnesses < 0:
            raise ValueError("SimulationConfig.max_witnesses must be >= 0")
        if self.mood_constraints is not None:
            from .context.regime import MoodConstraint
            self.mood_constraints = [
                c if isinstance(c, MoodConstraint) else MoodConstraint.from_dict(c)
                for c in self.mood_constraints
            ]


# =============================================================================
# JSON Loading Utilities
# =============================================================================

def _validate_version(data: Dict[str, Any], path: str) -> None:
    version = data.get('version', CONFIG_FILE_VERSION)
    if version != CONFIG_FILE_VERSION:
        raise ValueError(
            f"Unsupported config version '{version}' in {path}. "
            f"Expected '{CONFIG_FILE_VERSION}'."
        )


def simulation_config_from_dict(data: Dict[str, Any]) -> SimulationConfig:
    """Build a SimulationConfig from a plain dict (unknown keys are rejected)."""
    known = set(SimulationConfig.__dataclass_fields__)
    unknown = sorted(set(data) - known - {'version'})
    if unknown:
        raise ValueError(f"Unknown simulation config keys: {', '.join(unknown)}")

    kwargs = {k: v for k, v in data.items() if k != 'version'}
    return SimulationConfig(**kwargs)


def load_simulation_config_from_json(path: str) -> SimulationConfig:
    """
    Load a simulation config from JSON file.

    Expected format:
    {
        "version": "1.0",
        "sample_count": 10000,
        "distribution": "uniform",
        "seed": 42,
        "mood_regime_sample_reservoir_limit": 200,
        "mood_constraints": [
            {"var_path": "moodAxes.threat", "operator": ">=", "threshold": 50}
        ]
    }

    Raises:
        ValueError: If the version is unsupported or a key is unknown
    """
    with open(path, 'r') as f:
        data = json.load(f)

    _validate_version(data, path)
    return simulation_config_from_dict(data)


def save_simulation_config_to_json(config: SimulationConfig, path: str) -> None:
    """Save a simulation config to JSON file."""
    data = asdict(config)
    if config.mood_constraints is not None:
        data['mood_constraints'] = [c.to_dict() for c in config.mood_constraints]
    data['version'] = CONFIG_FILE_VERSION

    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def load_expression_from_json(path: str):
    """
    Load an expression definition from JSON file.

    Expected format:
    {
        "id": "core:lingering_fear",
        "prerequisites": [
            {"logic": {"and": [
                {">=": [{"var": "emotions.fear"}, 0.4]},
                {">=": [{"var": "moodAxes.threat"}, 50]}
            ]}}
        ]
    }
    """
    from .types import Expression

    with open(path, 'r') as f:
        data = json.load(f)

    return Expression.from_dict(data)


def load_mood_constraints_from_json(path: str) -> list:
    """Load a list of mood constraints ({var_path, operator, threshold} objects)."""
    from .context.regime import MoodConstraint

    with open(path, 'r') as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get('mood_constraints', [])
    return [MoodConstraint.from_dict(c) for c in data]


# =============================================================================
# Dependency Validation
# =============================================================================

LOGGER_METHODS = ('debug', 'info', 'warning', 'error')


def validate_logger(logger: Any) -> Any:
    """
    Check that an injected logger exposes the methods the engine calls.

    Raises:
        ValueError: If any of debug/info/warning/error is missing or not callable
    """
    missing = [m for m in LOGGER_METHODS if not callable(getattr(logger, m, None))]
    if missing:
        raise ValueError(
            f"Logger {type(logger).__name__} is missing required methods: {', '.join(missing)}"
        )
    return logger
