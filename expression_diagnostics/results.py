"""
Result structures returned by the diagnostics engine.

Everything here is plain data: built once at the end of a simulate() call
(or a sensitivity sweep) and never mutated afterwards. to_dict() methods
produce JSON-compatible output for the CLI and external report generators.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .types import EvaluationContext


@dataclass(frozen=True)
class ConfidenceInterval:
    low: float
    high: float
    level: float = 0.95
    method: str = 'wald'

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high

    def to_dict(self) -> Dict[str, Any]:
        return {'low': self.low, 'high': self.high, 'level': self.level, 'method': self.method}


@dataclass
class AxisHistogram:
    """
    Fixed-width bin counts for one axis over in-regime samples.

    Attributes:
        axis: Axis name (mood, sexual, trait or 'sexual_arousal')
        min_value: Raw domain lower bound (centre of bin 0)
        max_value: Raw domain upper bound
        bin_width: Width of each bin in raw units
        counts: [n_bins] int64 counts
        sample_count: Number of samples recorded (== counts.sum())
    """
    axis: str
    min_value: float
    max_value: float
    bin_width: float
    counts: np.ndarray
    sample_count: int = 0

    @property
    def bin_count(self) -> int:
        return len(self.counts)

    def frozen(self) -> 'AxisHistogram':
        """Detached copy whose counts array is read-only."""
        counts = self.counts.copy()
        counts.flags.writeable = False
        return AxisHistogram(self.axis, self.min_value, self.max_value, self.bin_width, counts, self.sample_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'axis': self.axis,
            'min': self.min_value,
            'max': self.max_value,
            'binWidth': self.bin_width,
            'binCount': self.bin_count,
            'sampleCount': self.sample_count,
            'bins': self.counts.astype(int).tolist(),
        }


@dataclass
class SampleReservoir:
    """
    Bounded uniform random sample of in-regime raw axis values.

    sample_count is the number of in-regime samples offered; stored_count is
    always min(sample_count, limit).
    """
    limit: int
    samples: Sequence[Dict[str, float]] = field(default_factory=list)
    sample_count: int = 0

    @property
    def stored_count(self) -> int:
        return len(self.samples)

    def frozen(self) -> 'SampleReservoir':
        """Detached copy holding a tuple of copied samples."""
        return SampleReservoir(self.limit, tuple(dict(s) for s in self.samples), self.sample_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sampleCount': self.sample_count,
            'storedCount': self.stored_count,
            'limit': self.limit,
            'samples': [dict(s) for s in self.samples],
        }


@dataclass(frozen=True)
class SamplingMetadata:
    """
    What the sampling scheme tests, for report headers.

    mode is 'independent' (current and previous drawn separately, so rates
    reflect logical feasibility) or 'coupled' (current = previous + delta).
    """
    mode: str
    description: str
    note: str

    def to_dict(self) -> Dict[str, str]:
        return {'mode': self.mode, 'description': self.description, 'note': self.note}


@dataclass(frozen=True)
class UnseededVarWarning:
    path: str
    reason: str
    suggestion: str = ''

    def to_dict(self) -> Dict[str, str]:
        return {'path': self.path, 'reason': self.reason, 'suggestion': self.suggestion}


@dataclass(frozen=True)
class ClauseFailure:
    """
    Aggregated statistics for one leaf clause.

    Rates are over all evaluated samples unless the name says in_regime.
    Gate fields are only populated for clauses on emotion/sexual-state paths.
    """
    clause_id: str
    prerequisite_index: int
    description: str
    variable_path: str
    operator: str
    threshold: float
    evaluation_count: int
    pass_count: int
    failure_count: int
    failure_rate: float
    average_violation: float
    violation_p50: float
    violation_p90: float
    near_miss_count: int
    near_miss_rate: float
    near_miss_epsilon: float
    observed_min: Optional[float]
    observed_max: Optional[float]
    observed_mean: Optional[float]
    ceiling_gap: Optional[float]
    others_passed_count: int
    last_mile_fail_count: int
    last_mile_fail_rate: Optional[float]
    sibling_passed_count: int
    sibling_conditioned_fail_count: int
    sibling_conditioned_fail_rate: Optional[float]
    in_regime_evaluation_count: int
    in_regime_failure_count: int
    in_regime_failure_rate: Optional[float]
    gate_prototype_id: Optional[str] = None
    gate_prototype_type: Optional[str] = None
    gate_pass_count: int = 0
    gate_fail_count: int = 0
    gate_pass_in_regime_count: int = 0
    gate_fail_in_regime_count: int = 0
    gate_pass_and_clause_pass_in_regime_count: int = 0
    raw_pass_in_regime_count: int = 0
    lost_pass_in_regime_count: int = 0
    lost_pass_rate_in_regime: Optional[float] = None
    severity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class PrototypeEvaluationSummary:
    """
    Per-prototype gate statistics over in-regime samples.

    value_sum_given_gate / raw_sum_given_gate are only accumulated on gate
    passes, so the conditional means divide by gate_pass_count.
    """
    prototype_id: str
    type: str
    mood_sample_count: int
    gate_pass_count: int
    gate_fail_count: int
    failed_gate_counts: Dict[str, int]
    raw_score_sum: float
    value_sum_given_gate: float
    raw_sum_given_gate: float

    @property
    def gate_pass_rate(self) -> float:
        if self.mood_sample_count == 0:
            return 0.0
        return self.gate_pass_count / self.mood_sample_count

    @property
    def mean_value_given_gate(self) -> float:
        if self.gate_pass_count == 0:
            return 0.0
        return self.value_sum_given_gate / self.gate_pass_count

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.__dict__)
        data['failed_gate_counts'] = dict(self.failed_gate_counts)
        data['gate_pass_rate'] = self.gate_pass_rate
        data['mean_value_given_gate'] = self.mean_value_given_gate
        return data


@dataclass(frozen=True)
class PopulationSummary:
    """
    Counts and identifiers for the sample populations behind a result.

    population_predicate labels the regime filter behind the in-regime and
    stored hashes; sweeps given it as `predicate` report the same hash as
    stored_population_hash.
    """
    sample_count: int
    in_regime_sample_count: int
    in_regime_rate: float
    stored_context_count: int
    stored_context_limit: int
    stored_contexts_truncated: bool
    reservoir_stored_count: int
    reservoir_limit: int
    population_hash: str
    stored_population_hash: str
    in_regime_population_hash: str
    population_predicate: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class Witness:
    """One triggering (or nearest non-triggering) sample."""
    current: Dict[str, Dict[str, float]]
    previous: Dict[str, Dict[str, float]]
    referenced_values: Dict[str, Optional[float]]
    failed_clauses: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'current': self.current,
            'previous': self.previous,
            'referencedValues': dict(self.referenced_values),
            'failedClauses': [dict(c) for c in self.failed_clauses],
        }


@dataclass(frozen=True)
class SensitivityPoint:
    threshold: float
    pass_rate: float
    pass_count: int
    sample_count: int
    effective_threshold: Optional[float] = None
    is_original: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class SensitivityResult:
    """
    A threshold sweep over a frozen stored-context population.

    kind is 'marginal' (clause pass rate) or 'global' (whole-expression
    trigger rate with one clause's threshold varied).
    """
    kind: str
    variable_path: str
    operator: str
    original_threshold: float
    is_integer_domain: bool
    grid: Tuple[SensitivityPoint, ...]
    population_hash: str
    clause_id: Optional[str] = None

    @property
    def original_rate(self) -> Optional[float]:
        for point in self.grid:
            if point.is_original:
                return point.pass_rate
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'clauseId': self.clause_id,
            'variablePath': self.variable_path,
            'operator': self.operator,
            'originalThreshold': self.original_threshold,
            'isIntegerDomain': self.is_integer_domain,
            'populationHash': self.population_hash,
            'grid': [p.to_dict() for p in self.grid],
        }


@dataclass(frozen=True)
class InvariantCheck:
    id: str
    ok: bool
    detail: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'ok': self.ok, 'detail': self.detail}


@dataclass(frozen=True)
class SimulationResult:
    """
    Output of one MonteCarloSimulator.simulate() call.

    Attributes:
        expression_id: Id of the simulated expression
        sample_count: Number of samples drawn
        trigger_count: Samples on which every prerequisite held
        trigger_rate: trigger_count / sample_count
        confidence_interval: Interval around trigger_rate, clamped to [0, 1]
        clause_failures: Per-leaf statistics, most severe first
        prerequisite_breakdowns: Nested per-node statistics, one per prerequisite
        mood_regime_axis_histograms: Axis -> in-regime histogram
        mood_regime_sample_reservoir: Bounded in-regime raw samples
        stored_contexts: In-regime contexts kept for sensitivity analysis
        population_summary: Population counts and hashes
        gate_compatibility: {'emotions': {...}, 'sexual_states': {...}}
        prototype_evaluation_summary: type -> prototype id -> summary
        unseeded_var_warnings: Variable paths the context cannot resolve
        witnesses: Up to max_witnesses triggering samples
        nearest_miss: Non-triggering sample with the fewest failed leaves
        distribution: Sampling distribution used
        seed: Seed used (None if unseeded)
        sampling_metadata: Independent vs coupled sampling description
    """
    expression_id: str
    sample_count: int
    trigger_count: int
    trigger_rate: float
    confidence_interval: ConfidenceInterval
    clause_failures: Tuple[ClauseFailure, ...]
    prerequisite_breakdowns: Tuple[Dict[str, Any], ...]
    mood_regime_axis_histograms: Dict[str, AxisHistogram]
    mood_regime_sample_reservoir: SampleReservoir
    stored_contexts: Tuple[EvaluationContext, ...]
    population_summary: PopulationSummary
    gate_compatibility: Dict[str, Dict[str, Dict[str, Any]]]
    prototype_evaluation_summary: Dict[str, Dict[str, PrototypeEvaluationSummary]]
    unseeded_var_warnings: Tuple[UnseededVarWarning, ...]
    witnesses: Tuple[Witness, ...] = ()
    nearest_miss: Optional[Witness] = None
    distribution: str = 'uniform'
    seed: Optional[int] = None
    sampling_metadata: Optional[SamplingMetadata] = None

    @property
    def in_regime_sample_count(self) -> int:
        return self.population_summary.in_regime_sample_count

    def clause_failure(self, clause_id: str) -> Optional[ClauseFailure]:
        for failure in self.clause_failures:
            if failure.clause_id == clause_id:
                return failure
        return None

    def to_dict(self, include_contexts: bool = False) -> Dict[str, Any]:
        data = {
            'expressionId': self.expression_id,
            'sampleCount': self.sample_count,
            'triggerCount': self.trigger_count,
            'triggerRate': self.trigger_rate,
            'confidenceInterval': self.confidence_interval.to_dict(),
            'distribution': self.distribution,
            'seed': self.seed,
            'samplingMetadata': self.sampling_metadata.to_dict() if self.sampling_metadata else None,
            'clauseFailures': [c.to_dict() for c in self.clause_failures],
            'prerequisiteBreakdowns': list(self.prerequisite_breakdowns),
            'moodRegimeAxisHistograms': {
                axis: h.to_dict() for axis, h in self.mood_regime_axis_histograms.items()
            },
            'moodRegimeSampleReservoir': self.mood_regime_sample_reservoir.to_dict(),
            'populationSummary': self.population_summary.to_dict(),
            'gateCompatibility': self.gate_compatibility,
            'prototypeEvaluationSummary': {
                ptype: {pid: s.to_dict() for pid, s in summaries.items()}
                for ptype, summaries in self.prototype_evaluation_summary.items()
            },
            'unseededVarWarnings': [w.to_dict() for w in self.unseeded_var_warnings],
            'witnesses': [w.to_dict() for w in self.witnesses],
            'nearestMiss': self.nearest_miss.to_dict() if self.nearest_miss else None,
            'storedContextCount': len(self.stored_contexts),
        }
        if include_contexts:
            data['storedContexts'] = [c.to_dict() for c in self.stored_contexts]
        return data


def clause_failures_frame(result: SimulationResult) -> pd.DataFrame:
    """
    Tabulate clause failures as a DataFrame, most severe first.

    Returns:
        DataFrame indexed by clause_id
    """
    columns = [
        'clause_id', 'description', 'variable_path', 'operator', 'threshold',
        'evaluation_count', 'failure_rate', 'average_violation', 'violation_p50',
        'violation_p90', 'near_miss_rate', 'last_mile_fail_rate', 'ceiling_gap',
        'lost_pass_in_regime_count', 'severity',
    ]
    rows = [{c: getattr(f, c) for c in columns} for f in result.clause_failures]
    return pd.DataFrame(rows, columns=columns).set_index('clause_id')
