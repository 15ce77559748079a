"""
Monte Carlo simulation engine for expression diagnostics.

Draws random psychological states, builds a full evaluation context for
each, evaluates the expression with hierarchical clause tracking, and
aggregates trigger rates, clause blockers, mood-regime histograms and a
reservoir of in-regime samples into a SimulationResult.

Each simulate() call owns all of its mutable state (clause statistics,
accumulators, generators); nothing survives between calls. With a fixed
seed the result is fully deterministic.
"""

import asyncio
import difflib
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import stats

from ..config import MOOD_AXES, SimulationConfig, validate_logger
from ..context.builder import ContextBuilder
from ..context.regime import is_in_regime
from ..gates.evaluator import GateEvaluator
from ..population import (
    POPULATION_FULL, POPULATION_IN_REGIME, PopulationHasher, compute_population_hash,
)
from ..prototypes.evaluator import PrototypeEvaluator
from ..registry import PrototypeRepository, validate_registry
from ..results import (
    ConfidenceInterval, PopulationSummary, SensitivityResult, SimulationResult,
    UnseededVarWarning, Witness,
)
from ..sensitivity import SensitivityAnalyzer
from ..types import EvaluationContext, Expression, RawSample
from .sampling import describe_sampling, generate_random_states
from .tracking import ClauseTracker, SampleEvaluation

logger = logging.getLogger(__name__)


ProgressCallback = Callable[[int, int], None]

MAX_NEAREST_MISS_FAILED_CLAUSES = 5


# =============================================================================
# Confidence Intervals
# =============================================================================

def _z_value(level: float) -> float:
    return float(stats.norm.ppf((1.0 + level) / 2.0))


def wald_interval(successes: int, n: int, level: float = 0.95) -> Tuple[float, float]:
    """Normal-approximation interval p +/- z * sqrt(p(1-p)/n), clamped to [0, 1]."""
    if n <= 0:
        return 0.0, 1.0
    p = successes / n
    margin = _z_value(level) * np.sqrt(p * (1.0 - p) / n)
    return max(0.0, p - margin), min(1.0, p + margin)


def wilson_interval(successes: int, n: int, level: float = 0.95) -> Tuple[float, float]:
    """Wilson score interval, clamped to [0, 1]."""
    if n <= 0:
        return 0.0, 1.0
    p = successes / n
    z = _z_value(level)
    z2 = z * z
    denom = 1.0 + z2 / n
    center = (p + z2 / (2 * n)) / denom
    margin = z * np.sqrt(p * (1.0 - p) / n + z2 / (4 * n * n)) / denom
    return max(0.0, center - margin), min(1.0, center + margin)


def confidence_interval(successes: int, n: int, level: float = 0.95,
                        method: str = 'wald') -> ConfidenceInterval:
    """
    Interval around successes / n that always contains the observed rate.

    Raises:
        ValueError: If method is not 'wald' or 'wilson'
    """
    if method == 'wald':
        low, high = wald_interval(successes, n, level)
    elif method == 'wilson':
        low, high = wilson_interval(successes, n, level)
    else:
        raise ValueError(f"Unknown confidence interval method '{method}'")
    p = successes / n if n > 0 else 0.0
    return ConfidenceInterval(
        low=float(min(low, p)),
        high=float(max(high, p)),
        level=level,
        method=method,
    )


# =============================================================================
# Simulator
# =============================================================================

class MonteCarloSimulator:
    """
    Estimates how often an expression fires over randomly sampled states.

    Args:
        registry: Read-only lookup with get(category, lookup_id)
        logger: Optional logger exposing debug/info/warning/error

    Raises:
        ValueError: If the registry or logger is missing required methods

    Example:
        simulator = MonteCarloSimulator(registry)
        result = simulator.simulate(expression, SimulationConfig(sample_count=5000, seed=7))
        print(result.trigger_rate, result.confidence_interval)
    """

    def __init__(self, registry: Any, logger: Optional[logging.Logger] = None):
        validate_registry(registry)
        self.logger = validate_logger(logger) if logger is not None else logging.getLogger(__name__)
        self.repository = PrototypeRepository(registry)
        self.prototype_evaluator = PrototypeEvaluator(self.repository, self.logger)
        self.context_builder = ContextBuilder(self.repository, self.prototype_evaluator, self.logger)
        self.gate_evaluator = GateEvaluator(self.prototype_evaluator, self.context_builder, self.logger)
        self.sensitivity_analyzer = SensitivityAnalyzer(self.logger)

    def simulate(
        self,
        expression: Union[Expression, Mapping[str, Any]],
        config: Optional[SimulationConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SimulationResult:
        """
        Run the sampling loop.

        Args:
            expression: Parsed Expression or its JSON-logic dict form
            config: Sampling configuration (defaults to SimulationConfig())
            on_progress: Called as on_progress(completed, total) after each chunk

        Returns:
            SimulationResult

        Raises:
            ValueError: On a malformed expression, or unseeded variable paths
                when config.fail_on_unseeded_vars is set
        """
        run = _SimulationRun(self, _as_expression(expression), config or SimulationConfig())
        while not run.done:
            run.run_chunk()
            if on_progress is not None:
                on_progress(run.completed, run.total)
        return run.finish()

    async def simulate_async(
        self,
        expression: Union[Expression, Mapping[str, Any]],
        config: Optional[SimulationConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SimulationResult:
        """simulate(), yielding to the event loop between chunks."""
        run = _SimulationRun(self, _as_expression(expression), config or SimulationConfig())
        while not run.done:
            run.run_chunk()
            if on_progress is not None:
                on_progress(run.completed, run.total)
            await asyncio.sleep(0)
        return run.finish()

    # =========================================================================
    # Query Helpers
    # =========================================================================

    def compute_threshold_sensitivity(
        self,
        stored_contexts: Sequence[EvaluationContext],
        var_path: str,
        operator: str,
        threshold: float,
        **options,
    ) -> SensitivityResult:
        """Marginal threshold sweep over stored contexts (see SensitivityAnalyzer)."""
        return self.sensitivity_analyzer.compute_threshold_sensitivity(
            stored_contexts, var_path, operator, threshold, **options
        )

    def compute_sensitivity_sweeps(
        self,
        expression: Union[Expression, Mapping[str, Any]],
        result: SimulationResult,
        top_n: int = 3,
    ) -> Dict[str, List[SensitivityResult]]:
        """
        Marginal sweeps for every blocker and global sweeps for the top_n candidates.

        Both run over result.stored_contexts, tagged with the result's
        population predicate.
        """
        expression = _as_expression(expression)
        predicate = result.population_summary.population_predicate
        analyzer = self.sensitivity_analyzer
        return {
            'marginal': analyzer.compute_marginal_sweeps(
                result.stored_contexts, expression, result.clause_failures, predicate=predicate
            ),
            'global': analyzer.compute_global_sweeps(
                result.stored_contexts, expression, result.clause_failures,
                top_n=top_n, predicate=predicate,
            ),
        }

    @staticmethod
    def compute_population_hash(
        contexts: Sequence[EvaluationContext],
        predicate: Optional[str] = None,
    ) -> str:
        return compute_population_hash(contexts, predicate)

    def validate_expression_paths(self, expression: Expression) -> List[UnseededVarWarning]:
        """
        Flag variable paths the context cannot resolve.

        Reasons: unknown_root, unknown_nested_key, invalid_nesting (a key
        under a scalar root, a mapping root without a key, or nesting deeper
        than one level).
        """
        keys = self.context_builder.build_known_context_keys()
        warnings = []
        seen = set()
        for path in expression.variable_paths():
            if path in seen:
                continue
            seen.add(path)
            warning = _check_path(path, keys)
            if warning is not None:
                self.logger.warning(
                    "Unseeded variable path '%s' (%s): %s",
                    warning.path, warning.reason, warning.suggestion,
                )
                warnings.append(warning)
        return warnings


def _as_expression(expression: Union[Expression, Mapping[str, Any]]) -> Expression:
    if isinstance(expression, Expression):
        return expression
    return Expression.from_dict(expression)


def _suggest(name: str, candidates) -> str:
    matches = difflib.get_close_matches(name, sorted(candidates), n=1)
    if matches:
        return f"Did you mean '{matches[0]}'?"
    return ''


def _check_path(path: str, keys) -> Optional[UnseededVarWarning]:
    parts = path.split('.')
    root = parts[0]
    if root not in keys.top_level:
        suggestion = _suggest(root, keys.top_level) or f"Known roots: {', '.join(sorted(keys.top_level))}"
        return UnseededVarWarning(path, 'unknown_root', suggestion)
    if root in keys.scalar_keys:
        if len(parts) > 1:
            return UnseededVarWarning(path, 'invalid_nesting', f"'{root}' is a number; use it without a key")
        return None
    if len(parts) != 2 or not parts[1]:
        return UnseededVarWarning(
            path, 'invalid_nesting', f"'{root}' expects exactly one nested key, e.g. '{root}.<id>'"
        )
    nested = keys.nested_keys.get(root, frozenset())
    if parts[1] not in nested:
        suggestion = _suggest(parts[1], nested) or f"No '{parts[1]}' under '{root}'"
        return UnseededVarWarning(path, 'unknown_nested_key', suggestion)
    return None


class _SimulationRun:
    """Private mutable state of one simulate() call."""

    def __init__(self, simulator: MonteCarloSimulator, expression: Expression, config: SimulationConfig):
        self.simulator = simulator
        self.expression = expression
        self.config = config
        self.logger = simulator.logger
        self.total = config.sample_count
        self.completed = 0

        seed_seq = np.random.SeedSequence(config.seed)
        sample_seq, reservoir_seq = seed_seq.spawn(2)
        self.sample_rng = np.random.default_rng(sample_seq)
        self.reservoir_rng = np.random.default_rng(reservoir_seq)

        self.unseeded_warnings: List[UnseededVarWarning] = []
        if config.validate_var_paths:
            self.unseeded_warnings = simulator.validate_expression_paths(expression)
            if config.fail_on_unseeded_vars and self.unseeded_warnings:
                paths = ', '.join(w.path for w in self.unseeded_warnings)
                raise ValueError(f"Expression '{expression.id}' references unseeded variables: {paths}")

        prototype_evaluator = simulator.prototype_evaluator
        context_builder = simulator.context_builder
        gate_evaluator = simulator.gate_evaluator

        self.targets = prototype_evaluator.prepare_prototype_evaluation_targets(expression)
        self.plan = gate_evaluator.build_gate_clamp_regime_plan(expression)
        self.tracker = ClauseTracker(expression, gate_evaluator, self.plan)

        self.mood_constraints = config.mood_constraints
        axes = set(self.plan.tracked_gate_axes)
        axes.update(c.axis for c in self.mood_constraints or ())
        self.histograms = context_builder.initialize_mood_regime_axis_histograms(
            sorted(axes) if axes else MOOD_AXES
        )
        self.reservoir = context_builder.initialize_mood_regime_sample_reservoir(
            config.mood_regime_sample_reservoir_limit
        )
        self.prototype_summary = prototype_evaluator.initialize_prototype_evaluation_summary(self.targets)

        self.regime_label = (
            ' && '.join(c.describe() for c in self.mood_constraints)
            if self.mood_constraints else POPULATION_IN_REGIME
        )
        self.full_hasher = PopulationHasher(POPULATION_FULL)
        self.regime_hasher = PopulationHasher(self.regime_label)

        self.stored_contexts: List[EvaluationContext] = []
        self.stored_truncated = False
        self.trigger_count = 0
        self.in_regime_count = 0
        self.witnesses: List[Witness] = []
        self.nearest_miss: Optional[Witness] = None
        self.nearest_miss_failed = None
        self.referenced_paths = list(dict.fromkeys(expression.variable_paths()))

    @property
    def done(self) -> bool:
        return self.completed >= self.total

    def run_chunk(self) -> None:
        size = min(self.config.chunk_size, self.total - self.completed)
        block = generate_random_states(
            size,
            self.config.distribution,
            self.sample_rng,
            mood_delta_sigma=self.config.mood_delta_sigma,
            sexual_delta_sigma=self.config.sexual_delta_sigma,
            libido_delta_sigma=self.config.libido_delta_sigma,
        )
        for sample in block:
            self._process_sample(sample)
        self.completed += size

    def _process_sample(self, sample: RawSample) -> None:
        simulator = self.simulator
        context = simulator.context_builder.build_context(sample.current, sample.previous)
        in_regime = is_in_regime(context, self.mood_constraints)

        if self.config.track_clauses:
            evaluation = self.tracker.evaluate_sample(context, in_regime, gate_cache={})
        else:
            evaluation = self.tracker.evaluate(context)

        self.full_hasher.add(context)

        if in_regime:
            self.in_regime_count += 1
            self.regime_hasher.add(context)
            simulator.context_builder.record_mood_regime_axis_histograms(self.histograms, context)
            simulator.context_builder.record_mood_regime_sample_reservoir(
                self.reservoir, context, self.reservoir_rng
            )
            simulator.prototype_evaluator.update_prototype_evaluation_summary(
                self.prototype_summary, context.gate_trace
            )
            if self.config.store_samples_for_sensitivity:
                if len(self.stored_contexts) < self.config.sensitivity_sample_limit:
                    self.stored_contexts.append(context)
                else:
                    self.stored_truncated = True

        if evaluation.triggered:
            self.trigger_count += 1
            if len(self.witnesses) < self.config.max_witnesses:
                self.witnesses.append(self._witness(sample, context, evaluation))
        else:
            failed = len(evaluation.failed_leaf_ids)
            if self.nearest_miss_failed is None or failed < self.nearest_miss_failed:
                self.nearest_miss_failed = failed
                self.nearest_miss = self._witness(sample, context, evaluation, include_failures=True)

    def _witness(self, sample: RawSample, context: EvaluationContext,
                 evaluation: SampleEvaluation, include_failures: bool = False) -> Witness:
        failed_clauses = ()
        if include_failures:
            failed = []
            for clause_id in evaluation.failed_leaf_ids[:MAX_NEAREST_MISS_FAILED_CLAUSES]:
                leaf = self.expression.find_leaf(clause_id)
                failed.append({
                    'clauseId': clause_id,
                    'description': leaf.describe(),
                    'value': evaluation.leaf_values[clause_id],
                    'threshold': leaf.threshold,
                })
            failed_clauses = tuple(failed)
        return Witness(
            current=sample.current.to_dict(),
            previous=sample.previous.to_dict(),
            referenced_values={path: context.resolve(path) for path in self.referenced_paths},
            failed_clauses=failed_clauses,
        )

    def finish(self) -> SimulationResult:
        config = self.config
        n = self.completed
        trigger_rate = self.trigger_count / n if n else 0.0
        interval = confidence_interval(self.trigger_count, n, config.confidence_level, config.confidence_method)

        if config.track_clauses:
            clause_failures = tuple(self.tracker.clause_failures())
            breakdowns = tuple(self.tracker.prerequisite_breakdowns())
        else:
            clause_failures = ()
            breakdowns = ()

        gate_compatibility = self.simulator.gate_evaluator.compute_gate_compatibility(
            self.expression, self.mood_constraints
        )

        population_summary = PopulationSummary(
            sample_count=n,
            in_regime_sample_count=self.in_regime_count,
            in_regime_rate=self.in_regime_count / n if n else 0.0,
            stored_context_count=len(self.stored_contexts),
            stored_context_limit=config.sensitivity_sample_limit,
            stored_contexts_truncated=self.stored_truncated,
            reservoir_stored_count=self.reservoir.stored_count,
            reservoir_limit=self.reservoir.limit,
            population_hash=self.full_hasher.hexdigest(),
            stored_population_hash=compute_population_hash(self.stored_contexts, self.regime_label),
            in_regime_population_hash=self.regime_hasher.hexdigest(),
            population_predicate=self.regime_label,
        )

        self.logger.debug(
            "Simulated '%s': %d/%d triggered (rate %.4f), %d in regime, distribution=%s",
            self.expression.id, self.trigger_count, n, trigger_rate,
            self.in_regime_count, config.distribution,
        )

        return SimulationResult(
            expression_id=self.expression.id,
            sample_count=n,
            trigger_count=self.trigger_count,
            trigger_rate=trigger_rate,
            confidence_interval=interval,
            clause_failures=clause_failures,
            prerequisite_breakdowns=breakdowns,
            mood_regime_axis_histograms={axis: h.frozen() for axis, h in self.histograms.items()},
            mood_regime_sample_reservoir=self.reservoir.frozen(),
            stored_contexts=tuple(self.stored_contexts),
            population_summary=population_summary,
            gate_compatibility=gate_compatibility,
            prototype_evaluation_summary=self.simulator.prototype_evaluator.finalize_prototype_evaluation_summary(
                self.prototype_summary
            ),
            unseeded_var_warnings=tuple(self.unseeded_warnings),
            witnesses=tuple(self.witnesses),
            nearest_miss=self.nearest_miss,
            distribution=config.distribution,
            seed=config.seed,
            sampling_metadata=describe_sampling(
                config.distribution, config.mood_delta_sigma, config.sexual_delta_sigma
            ),
        )
