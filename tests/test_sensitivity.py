"""Tests for threshold sweeps and population hashing."""

import dataclasses
import logging

import numpy as np
import pytest

from expression_diagnostics.config import SimulationConfig
from expression_diagnostics.population import PopulationHasher, compute_population_hash
from expression_diagnostics.sensitivity import (
    SensitivityAnalyzer, compare_array, effective_threshold, threshold_grid,
)


@pytest.fixture
def simulated(simulator, fear_expression):
    return simulator.simulate(fear_expression, SimulationConfig(sample_count=1000, seed=3))


@pytest.fixture
def analyzer():
    return SensitivityAnalyzer()


class TestGrid:

    def test_integer_grid(self):
        assert threshold_grid(50, True) == [46, 47, 48, 49, 50, 51, 52, 53, 54]

    def test_float_grid(self):
        grid = threshold_grid(0.4, False)
        assert len(grid) == 9
        assert grid[0] == pytest.approx(0.2)
        assert grid[4] == pytest.approx(0.4)
        assert grid[-1] == pytest.approx(0.6)

    @pytest.mark.parametrize('operator, threshold, expected', [
        ('>=', 49.5, 50.0),
        ('>', 50, 51.0),
        ('<', 50, 49.0),
        ('<=', 50.7, 50.0),
        ('==', 50, 50.0),
        ('==', 0.5, None),
    ])
    def test_effective_threshold(self, operator, threshold, expected):
        assert effective_threshold(operator, threshold) == expected

    def test_compare_array_nan_never_passes(self):
        values = np.array([0.2, np.nan, 0.8])
        assert compare_array(values, '>=', 0.5).tolist() == [False, False, True]
        assert compare_array(values, '<', 0.5).tolist() == [True, False, False]


class TestMarginal:

    def test_monotone_for_lower_bound(self, analyzer, simulated):
        sweep = analyzer.compute_threshold_sensitivity(simulated.stored_contexts, 'moodAxes.threat', '>=', 50)
        rates = [p.pass_rate for p in sweep.grid]
        assert rates == sorted(rates, reverse=True)
        assert sweep.kind == 'marginal'
        assert sweep.is_integer_domain
        assert [p.effective_threshold for p in sweep.grid] == [p.threshold for p in sweep.grid]

    def test_original_point_matches_clause_pass_rate(self, analyzer, simulated, fear_expression):
        leaf = fear_expression.find_leaf('0.1')
        sweep = analyzer.compute_clause_sensitivity(simulated.stored_contexts, leaf)
        failure = simulated.clause_failure('0.1')
        assert sweep.original_rate == pytest.approx(1.0 - failure.failure_rate)
        assert sweep.clause_id == '0.1'

    def test_idempotent(self, analyzer, simulated):
        first = analyzer.compute_threshold_sensitivity(simulated.stored_contexts, 'emotions.fear', '>=', 0.1)
        second = analyzer.compute_threshold_sensitivity(simulated.stored_contexts, 'emotions.fear', '>=', 0.1)
        assert first == second
        assert not first.is_integer_domain
        assert all(p.effective_threshold is None for p in first.grid)

    def test_marginal_sweeps_cover_blockers(self, analyzer, simulated, fear_expression):
        sweeps = analyzer.compute_marginal_sweeps(
            simulated.stored_contexts, fear_expression, simulated.clause_failures
        )
        assert sorted(s.clause_id for s in sweeps) == ['0.0', '0.1']

    def test_empty_population_warns(self, analyzer, caplog):
        with caplog.at_level(logging.WARNING):
            sweep = analyzer.compute_threshold_sensitivity([], 'moodAxes.threat', '>=', 50)
        assert all(p.pass_rate == 0.0 and p.sample_count == 0 for p in sweep.grid)
        assert any('No stored contexts' in r.getMessage() for r in caplog.records)


class TestDeltaSweeps:

    @pytest.fixture
    def delta_run(self, simulator, delta_expression):
        return simulator.simulate(delta_expression, SimulationConfig(sample_count=1000, seed=5))

    def test_raw_axis_delta_sweeps_integer_grid(self, analyzer, delta_run, delta_expression):
        leaf = delta_expression.find_leaf('0.0')
        sweep = analyzer.compute_clause_sensitivity(delta_run.stored_contexts, leaf)
        assert sweep.is_integer_domain
        assert [p.threshold for p in sweep.grid] == [6, 7, 8, 9, 10, 11, 12, 13, 14]
        assert [p.effective_threshold for p in sweep.grid] == [p.threshold for p in sweep.grid]
        rates = [p.pass_rate for p in sweep.grid]
        assert rates == sorted(rates, reverse=True)
        assert sweep.original_rate == pytest.approx(1.0 - delta_run.clause_failure('0.0').failure_rate)

    def test_emotion_delta_sweeps_float_grid(self, analyzer, delta_run, delta_expression):
        leaf = delta_expression.find_leaf('0.1')
        sweep = analyzer.compute_clause_sensitivity(delta_run.stored_contexts, leaf)
        assert not sweep.is_integer_domain
        assert sweep.grid[1].threshold - sweep.grid[0].threshold == pytest.approx(0.05)
        assert all(p.effective_threshold is None for p in sweep.grid)
        assert sweep.original_rate == pytest.approx(1.0 - delta_run.clause_failure('0.1').failure_rate)

    def test_global_sweep_over_delta_clause(self, analyzer, delta_run, delta_expression):
        sweep = analyzer.compute_expression_sensitivity(delta_run.stored_contexts, delta_expression, '0.0')
        assert sweep.is_integer_domain
        assert sweep.original_rate == pytest.approx(delta_run.trigger_rate)


class TestGlobal:

    def test_original_rate_equals_trigger_rate(self, analyzer, simulated, fear_expression):
        # no regime constraints and no truncation: stored contexts are every sample
        assert len(simulated.stored_contexts) == simulated.sample_count
        sweep = analyzer.compute_expression_sensitivity(simulated.stored_contexts, fear_expression, '0.1')
        assert sweep.kind == 'global'
        assert sweep.original_rate == pytest.approx(simulated.trigger_rate)

    def test_global_never_exceeds_marginal(self, analyzer, simulated, fear_expression):
        marginal = analyzer.compute_clause_sensitivity(
            simulated.stored_contexts, fear_expression.find_leaf('0.1')
        )
        overall = analyzer.compute_expression_sensitivity(simulated.stored_contexts, fear_expression, '0.1')
        for m, g in zip(marginal.grid, overall.grid):
            assert g.pass_count <= m.pass_count

    def test_unknown_clause(self, analyzer, simulated, fear_expression):
        with pytest.raises(ValueError):
            analyzer.compute_expression_sensitivity(simulated.stored_contexts, fear_expression, '9')

    def test_candidate_ranking(self, analyzer, simulated):
        ranked = analyzer.rank_global_candidates(simulated.clause_failures)
        scores = [score for score, _ in ranked]
        assert scores == sorted(scores, reverse=True)
        for score, failure in ranked:
            expected = (
                0.4 * failure.near_miss_rate + 0.3 * failure.failure_rate
                + 0.3 * (failure.last_mile_fail_rate or 0.0)
            )
            assert score == pytest.approx(expected)

    def test_failing_candidate_skipped(self, analyzer, simulated, fear_expression, caplog):
        broken = dataclasses.replace(simulated.clause_failures[0], clause_id='missing')
        candidates = (broken,) + tuple(simulated.clause_failures)
        with caplog.at_level(logging.WARNING):
            sweeps = analyzer.compute_global_sweeps(
                simulated.stored_contexts, fear_expression, candidates, top_n=3
            )
        assert 'missing' not in [s.clause_id for s in sweeps]
        assert len(sweeps) == 2
        assert any('missing' in r.getMessage() for r in caplog.records)

    def test_top_n_limits_sweeps(self, analyzer, simulated, fear_expression):
        sweeps = analyzer.compute_global_sweeps(
            simulated.stored_contexts, fear_expression, simulated.clause_failures, top_n=1
        )
        assert len(sweeps) == 1


class TestSimulatorSweeps:

    def test_sweeps_share_stored_population_hash(self, simulator, simulated, fear_expression):
        sweeps = simulator.compute_sensitivity_sweeps(fear_expression, simulated, top_n=2)
        stored_hash = simulated.population_summary.stored_population_hash
        assert sweeps['marginal'] and sweeps['global']
        for sweep in sweeps['marginal'] + sweeps['global']:
            assert sweep.population_hash == stored_hash

    def test_threshold_sensitivity_delegates(self, simulator, simulated):
        sweep = simulator.compute_threshold_sensitivity(
            simulated.stored_contexts, 'moodAxes.threat', '<=', 0, steps=5
        )
        assert len(sweep.grid) == 5


class TestPopulationHash:

    def test_incremental_matches_batch(self, simulated):
        contexts = simulated.stored_contexts[:50]
        hasher = PopulationHasher('in_regime')
        for context in contexts:
            hasher.add(context)
        assert hasher.count == 50
        assert hasher.hexdigest() == compute_population_hash(contexts, 'in_regime')

    def test_predicate_and_order_change_hash(self, simulated):
        contexts = list(simulated.stored_contexts[:20])
        base = compute_population_hash(contexts)
        assert compute_population_hash(contexts, 'moodAxes.threat >= 50') != base
        assert compute_population_hash(list(reversed(contexts))) != base
        assert compute_population_hash(contexts) == base

    def test_empty_population(self):
        assert len(compute_population_hash([])) == 16
        assert compute_population_hash([]) != compute_population_hash([], 'in_regime')
