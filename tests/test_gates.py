"""Tests for gate parsing and the GateEvaluator (expression_diagnostics.gates)."""

import logging

import pytest

from expression_diagnostics.context.regime import MoodConstraint
from expression_diagnostics.gates import GateConstraint, GateEvaluator, GateTarget, evaluate_gates, parse_gate
from expression_diagnostics.simulation.tracking import ClauseStatistics
from expression_diagnostics.types import Expression

from conftest import leaf, snapshot


class TestGateConstraint:

    def test_parse(self):
        gate = GateConstraint.parse('threat >= 0.30')
        assert (gate.axis, gate.operator, gate.threshold) == ('threat', '>=', 0.3)

    def test_parse_negative_and_alias(self):
        assert GateConstraint.parse('valence<=-0.2').threshold == -0.2
        assert GateConstraint.parse('SA >= 0.2').axis == 'sexual_arousal'

    @pytest.mark.parametrize('gate', ['threat >>= 0.3', 'threat >= high', '>= 0.3', '', None])
    def test_malformed(self, gate):
        with pytest.raises(ValueError):
            GateConstraint.parse(gate)
        assert parse_gate(gate) is None

    def test_evaluate_gates_skips_missing_and_malformed(self):
        values = {'threat': 0.1}
        failed, malformed = evaluate_gates(
            ['threat >= 0.3', 'arousal >= 0.5', 'bogus'], values.get
        )
        assert failed == ['threat >= 0.3']
        assert malformed == ['bogus']


class TestCheckGates:

    def test_mapping_input(self, gate_evaluator):
        assert gate_evaluator.check_gates(['threat >= 0.3'], {'threat': 0.5})
        assert not gate_evaluator.check_gates(['threat >= 0.3'], {'threat': 0.2})

    def test_missing_axis_passes(self, gate_evaluator):
        assert gate_evaluator.check_gates(['agency_control >= 0.9'], {'threat': 0.5})

    def test_malformed_warned_once(self, gate_evaluator, caplog):
        with caplog.at_level(logging.WARNING):
            gate_evaluator.check_gates(['threat ?? 1'], {'threat': 0.5})
            gate_evaluator.check_gates(['threat ?? 1'], {'threat': 0.5})
        assert sum('threat ?? 1' in r.getMessage() for r in caplog.records) == 1

    def test_requires_collaborators(self, prototype_evaluator, context_builder):
        with pytest.raises(ValueError):
            GateEvaluator(None, context_builder)
        with pytest.raises(ValueError):
            GateEvaluator(prototype_evaluator, None)


class TestThresholdUnits:

    def test_round_trip_units(self):
        assert GateEvaluator.denormalize_gate_threshold('threat', 0.3) == pytest.approx(30.0)
        assert GateEvaluator.normalize_gate_threshold('threat', 30) == pytest.approx(0.3)
        assert GateEvaluator.normalize_gate_threshold('sexual_arousal', 0.4) == pytest.approx(0.4)
        assert GateEvaluator.denormalize_gate_threshold('nope', 0.3) is None


class TestGateTargets:

    @pytest.mark.parametrize('path, expected', [
        ('emotions.fear', GateTarget('fear', False, 'emotion')),
        ('previousEmotions.fear', GateTarget('fear', True, 'emotion')),
        ('sexualStates.aroused', GateTarget('aroused', False, 'sexual')),
        ('moodAxes.threat', None),
        ('emotions', None),
    ])
    def test_resolve_gate_target(self, path, expected):
        assert GateEvaluator.resolve_gate_target(path) == expected

    def test_plan(self, gate_evaluator, fear_expression):
        plan = gate_evaluator.build_gate_clamp_regime_plan(fear_expression)
        assert plan.tracked_gate_axes == ('threat',)
        assert plan.clause_gate_map == {'0.0': GateTarget('fear', False, 'emotion')}


class TestCompatibility:

    def test_intervals_from_constraints(self, gate_evaluator):
        intervals = gate_evaluator.build_axis_intervals_from_mood_constraints([
            MoodConstraint('moodAxes.threat', '>=', 50),
            MoodConstraint('moodAxes.threat', '<=', 80),
        ])
        assert (intervals['threat'].min, intervals['threat'].max) == (0.5, 0.8)

    def test_conflicting_gate_reported(self, gate_evaluator, relief_expression):
        report = gate_evaluator.compute_gate_compatibility(relief_expression)
        relief = report['emotions']['relief']
        assert relief['compatible'] is False
        assert 'threat <= 0.20' in relief['reason']
        assert 'raw 20' in relief['reason']

    def test_compatible_gate(self, gate_evaluator, fear_expression):
        report = gate_evaluator.compute_gate_compatibility(fear_expression)
        assert report['emotions']['fear'] == {'compatible': True, 'reason': None}
        assert report['sexual_states'] == {}

    def test_multi_gate_single_conflict(self, gate_evaluator):
        intervals = gate_evaluator.build_axis_intervals_from_mood_constraints([
            MoodConstraint('moodAxes.agency_control', '<=', -50),
            MoodConstraint('moodAxes.threat', '<=', -50),
        ])
        result = gate_evaluator.check_prototype_compatibility('confidence', 'emotion', intervals)
        assert result['compatible'] is False
        assert 'agency_control' in result['reason']

    def test_empty_regime(self, gate_evaluator):
        intervals = gate_evaluator.build_axis_intervals_from_mood_constraints([
            MoodConstraint('moodAxes.threat', '>=', 60),
            MoodConstraint('moodAxes.threat', '<=', 10),
        ])
        result = gate_evaluator.check_prototype_compatibility('fear', 'emotion', intervals)
        assert result['compatible'] is False
        assert 'no feasible values' in result['reason']

    def test_unknown_prototype(self, gate_evaluator):
        result = gate_evaluator.check_prototype_compatibility('dread', 'emotion', {})
        assert result['compatible'] is False

    def test_explicit_constraints_override_extracted(self, gate_evaluator, relief_expression):
        report = gate_evaluator.compute_gate_compatibility(
            relief_expression, [MoodConstraint('moodAxes.threat', '<=', 0)]
        )
        assert report['emotions']['relief']['compatible'] is True


class TestGateOutcomes:

    def test_lost_pass_recorded(self, gate_evaluator, context_builder):
        expression = Expression.from_dict({
            'id': 'x', 'prerequisites': [{'logic': leaf('>=', 'emotions.confidence', 0.1)}],
        })
        plan = gate_evaluator.build_gate_clamp_regime_plan(expression)
        # valence 80 gives raw 0.8 - 0.16 > 0.1, agency -80 fails the agency gate
        context = context_builder.build_context(
            snapshot(mood={'valence': 80, 'agency_control': -80, 'threat': -50}), snapshot()
        )
        stats = ClauseStatistics('0', 'leaf', 0)
        recorded = gate_evaluator.record_gate_outcome_if_applicable(
            expression.find_leaf('0'), stats, context, {}, plan,
            clause_passed=False, in_regime=True,
        )
        assert recorded
        assert stats.gate_fail_count == 1
        assert stats.raw_pass_in_regime_count == 1
        assert stats.lost_pass_in_regime_count == 1

    def test_non_gated_leaf_ignored(self, gate_evaluator, context_builder, fear_expression):
        plan = gate_evaluator.build_gate_clamp_regime_plan(fear_expression)
        context = context_builder.build_context(snapshot(), snapshot())
        stats = ClauseStatistics('0.1', 'leaf', 0)
        assert not gate_evaluator.record_gate_outcome_if_applicable(
            fear_expression.find_leaf('0.1'), stats, context, {}, plan, True, True,
        )
        assert stats.gate_pass_count == 0
