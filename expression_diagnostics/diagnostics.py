"""
Post-hoc consistency checks on simulation output.

build_diagnostic_facts() flattens a SimulationResult into the numbers a
report quotes (overall rate, per-clause rates, per-prototype gate counts);
InvariantValidator checks those numbers against domain invariants and
returns one InvariantCheck per invariant instead of raising, so a report
can surface every violation at once.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .config import validate_logger, variable_root
from .results import InvariantCheck, SimulationResult

logger = logging.getLogger(__name__)


RATE_TOLERANCE = 1e-9


# =============================================================================
# Diagnostic Facts
# =============================================================================

@dataclass(frozen=True)
class PrototypeFact:
    """
    Gate counts for one prototype over the in-regime population.

    threshold_pass_counts maps each clause on this prototype (current
    timepoint) to the samples where the gate passed and the clause passed.
    """
    prototype_id: str
    type: str
    mood_sample_count: int
    gate_pass_count: int
    threshold_pass_counts: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class DiagnosticFacts:
    expression_id: str
    sample_count: int
    overall_pass_rate: float
    confidence_low: float
    confidence_high: float
    clause_rates: Dict[str, Dict[str, Optional[float]]]
    prototypes: List[PrototypeFact]
    in_regime_sample_count: int = 0
    reservoir_stored_count: int = 0
    reservoir_limit: int = 0
    histogram_totals: Dict[str, int] = field(default_factory=dict)


def build_diagnostic_facts(result: SimulationResult) -> DiagnosticFacts:
    """
    Collect the report-facing numbers of a simulation result.

    Args:
        result: Output of MonteCarloSimulator.simulate()

    Returns:
        DiagnosticFacts
    """
    clause_rates = {}
    threshold_passes: Dict[tuple, Dict[str, int]] = {}
    for failure in result.clause_failures:
        clause_rates[failure.clause_id] = {
            'failure_rate': failure.failure_rate,
            'near_miss_rate': failure.near_miss_rate,
            'last_mile_fail_rate': failure.last_mile_fail_rate,
            'sibling_conditioned_fail_rate': failure.sibling_conditioned_fail_rate,
            'in_regime_failure_rate': failure.in_regime_failure_rate,
            'lost_pass_rate_in_regime': failure.lost_pass_rate_in_regime,
        }
        if failure.gate_prototype_id is None:
            continue
        if variable_root(failure.variable_path).startswith('previous'):
            continue
        key = (failure.gate_prototype_type, failure.gate_prototype_id)
        threshold_passes.setdefault(key, {})[failure.clause_id] = \
            failure.gate_pass_and_clause_pass_in_regime_count

    prototypes = []
    for prototype_type, summaries in result.prototype_evaluation_summary.items():
        for prototype_id, summary in summaries.items():
            prototypes.append(PrototypeFact(
                prototype_id=prototype_id,
                type=prototype_type,
                mood_sample_count=summary.mood_sample_count,
                gate_pass_count=summary.gate_pass_count,
                threshold_pass_counts=threshold_passes.get((prototype_type, prototype_id), {}),
            ))

    population = result.population_summary
    return DiagnosticFacts(
        expression_id=result.expression_id,
        sample_count=result.sample_count,
        overall_pass_rate=result.trigger_rate,
        confidence_low=result.confidence_interval.low,
        confidence_high=result.confidence_interval.high,
        clause_rates=clause_rates,
        prototypes=prototypes,
        in_regime_sample_count=population.in_regime_sample_count,
        reservoir_stored_count=population.reservoir_stored_count,
        reservoir_limit=population.reservoir_limit,
        histogram_totals={
            axis: int(np.sum(h.counts)) for axis, h in result.mood_regime_axis_histograms.items()
        },
    )


# =============================================================================
# Invariant Validation
# =============================================================================

def _is_rate(value: Optional[float]) -> bool:
    return value is None or -RATE_TOLERANCE <= value <= 1.0 + RATE_TOLERANCE


class InvariantValidator:
    """Checks DiagnosticFacts against domain invariants."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = validate_logger(logger) if logger is not None else logging.getLogger(__name__)

    def validate(self, facts: DiagnosticFacts) -> List[InvariantCheck]:
        checks = [
            self._check_overall_rate(facts),
            self._check_confidence_interval(facts),
            self._check_clause_rates(facts),
            self._check_reservoir(facts),
            self._check_histograms(facts),
        ]
        for proto in facts.prototypes:
            checks.extend(self._check_prototype(proto))

        for check in checks:
            if not check.ok:
                self.logger.warning("Invariant %s violated: %s", check.id, check.detail)
        return checks

    @staticmethod
    def _check_overall_rate(facts: DiagnosticFacts) -> InvariantCheck:
        ok = _is_rate(facts.overall_pass_rate)
        return InvariantCheck(
            id='rate:overall',
            ok=ok,
            detail='' if ok else f"overall pass rate {facts.overall_pass_rate} outside [0, 1]",
        )

    @staticmethod
    def _check_confidence_interval(facts: DiagnosticFacts) -> InvariantCheck:
        ok = (
            0.0 <= facts.confidence_low <= facts.overall_pass_rate + RATE_TOLERANCE
            and facts.overall_pass_rate - RATE_TOLERANCE <= facts.confidence_high <= 1.0
        )
        return InvariantCheck(
            id='interval:contains_rate',
            ok=ok,
            detail='' if ok else (
                f"interval [{facts.confidence_low}, {facts.confidence_high}] "
                f"does not contain {facts.overall_pass_rate}"
            ),
        )

    @staticmethod
    def _check_clause_rates(facts: DiagnosticFacts) -> InvariantCheck:
        bad = [
            f"{clause_id}.{name}={value}"
            for clause_id, rates in facts.clause_rates.items()
            for name, value in rates.items()
            if not _is_rate(value)
        ]
        return InvariantCheck(
            id='rate:clauses',
            ok=not bad,
            detail='' if not bad else f"rates outside [0, 1]: {', '.join(bad)}",
        )

    @staticmethod
    def _check_reservoir(facts: DiagnosticFacts) -> InvariantCheck:
        ok = facts.reservoir_stored_count <= facts.reservoir_limit
        return InvariantCheck(
            id='reservoir:within_limit',
            ok=ok,
            detail='' if ok else (
                f"reservoir holds {facts.reservoir_stored_count} > limit {facts.reservoir_limit}"
            ),
        )

    @staticmethod
    def _check_histograms(facts: DiagnosticFacts) -> InvariantCheck:
        bad = [
            f"{axis}={total}" for axis, total in facts.histogram_totals.items()
            if total != facts.in_regime_sample_count
        ]
        return InvariantCheck(
            id='histogram:totals',
            ok=not bad,
            detail='' if not bad else (
                f"histogram totals differ from in-regime count {facts.in_regime_sample_count}: "
                f"{', '.join(bad)}"
            ),
        )

    @staticmethod
    def _check_prototype(proto: PrototypeFact) -> List[InvariantCheck]:
        key = f"{proto.type}:{proto.prototype_id}"
        checks = []
        ok = proto.gate_pass_count <= proto.mood_sample_count
        checks.append(InvariantCheck(
            id=f"gate:{key}",
            ok=ok,
            detail='' if ok else (
                f"gatePassCount {proto.gate_pass_count} > moodSampleCount {proto.mood_sample_count}"
            ),
        ))
        for clause_id, count in sorted(proto.threshold_pass_counts.items()):
            ok = count <= proto.gate_pass_count
            checks.append(InvariantCheck(
                id=f"threshold:{key}:{clause_id}",
                ok=ok,
                detail='' if ok else (
                    f"thresholdPassCount {count} > gatePassCount {proto.gate_pass_count}"
                ),
            ))
        return checks
