"""Tests for context construction and mood-regime accumulators (expression_diagnostics.context)."""

import logging

import numpy as np
import pytest

from expression_diagnostics.config import MOOD_AXES
from expression_diagnostics.context import ContextBuilder, MoodConstraint, extract_mood_constraints, is_in_regime
from expression_diagnostics.context.builder import (
    compute_sexual_arousal, normalize_mood_axes, normalize_sexual_axes, normalize_trait_axes,
)
from expression_diagnostics.context.regime import (
    initialize_axis_histograms, initialize_sample_reservoir,
    record_axis_histograms, record_sample_reservoir,
)
from expression_diagnostics.types import Expression, parse_logic

from conftest import leaf, snapshot


class TestNormalization:

    def test_mood_axes_scale_and_default(self):
        normalized = normalize_mood_axes({'threat': 60, 'valence': -100})
        assert normalized['threat'] == pytest.approx(0.6)
        assert normalized['valence'] == pytest.approx(-1.0)
        assert normalized['arousal'] == 0.0
        assert set(normalized) == set(MOOD_AXES)

    def test_sexual_axes_clamped(self):
        normalized = normalize_sexual_axes({'sex_excitation': 150, 'baseline_libido': -80})
        assert normalized['sex_excitation'] == 1.0
        assert normalized['baseline_libido'] == -0.5

    def test_traits_default_to_midpoint(self):
        assert normalize_trait_axes({})['harm_aversion'] == pytest.approx(0.5)

    @pytest.mark.parametrize('sexual, expected', [
        ({'sex_excitation': 80, 'sex_inhibition': 20, 'baseline_libido': 10}, 0.7),
        ({'sex_excitation': 10, 'sex_inhibition': 90, 'baseline_libido': 0}, 0.0),
        ({'sex_excitation': 100, 'sex_inhibition': 0, 'baseline_libido': 50}, 1.0),
    ])
    def test_sexual_arousal(self, sexual, expected):
        assert compute_sexual_arousal(sexual) == pytest.approx(expected)


class TestBuildContext:

    def test_raw_and_derived_values(self, context_builder):
        context = context_builder.build_context(
            snapshot(
                mood={'threat': 60, 'arousal': 20},
                sexual={'sex_excitation': 80, 'sex_inhibition': 20, 'baseline_libido': 10},
            ),
            snapshot(mood={'threat': 10}),
        )
        assert context.resolve('moodAxes.threat') == 60
        assert context.resolve('mood.threat') == 60
        assert context.resolve('emotions.fear') == pytest.approx(0.7)
        assert context.resolve('previousEmotions.fear') == 0.0
        assert context.resolve('sexualArousal') == pytest.approx(0.7)
        assert context.resolve('sexualStates.aroused') == pytest.approx(0.7)
        assert context.resolve('affectTraits.cognitive_empathy') == 50

    def test_every_registry_prototype_evaluated(self, context_builder):
        context = context_builder.build_context(snapshot(), snapshot())
        assert set(context.emotions) == {'fear', 'relief', 'confidence', 'joy'}
        assert set(context.previous_sexual_states) == {'aroused'}
        assert set(context.gate_trace['emotion']) == set(context.emotions)

    def test_unresolvable_paths(self, context_builder):
        context = context_builder.build_context(snapshot(), snapshot())
        assert context.resolve('emotions.dread') is None
        assert context.resolve('moodAxes') is None
        assert context.resolve('sexualArousal.level') is None
        assert context.resolve('nowhere.threat') is None

    def test_delta_leaf_sees_gate_snap_to_zero(self, context_builder):
        # previous threat clears the fear gate, current threat sits just below it
        context = context_builder.build_context(snapshot(mood={'threat': 29}), snapshot(mood={'threat': 40}))
        node = parse_logic({'>=': [
            {'-': [{'var': 'previousEmotions.fear'}, {'var': 'emotions.fear'}]}, 0.2
        ]})
        assert context.resolve('emotions.fear') == 0.0
        assert node.resolve(context) == pytest.approx(context.resolve('previousEmotions.fear'))
        assert node.resolve(context) == pytest.approx(0.4)
        assert node.evaluate(context)
        assert not node.is_integer_domain
        assert node.near_miss_epsilon == 0.05

    def test_delta_leaf_with_missing_side_fails(self, context_builder):
        context = context_builder.build_context(snapshot(), snapshot())
        node = parse_logic({'>=': [{'-': [{'var': 'emotions.dread'}, {'var': 'emotions.fear'}]}, -1]})
        assert node.resolve(context) is None
        assert not node.evaluate(context)

    def test_explicit_traits(self, context_builder):
        context = context_builder.build_context(
            snapshot(traits={'harm_aversion': 10}), snapshot(), affect_traits={'harm_aversion': 90}
        )
        assert context.affect_traits['harm_aversion'] == 90
        assert context.affect_traits['affective_empathy'] == 50

    def test_normalize_gate_context_previous(self, context_builder):
        context = context_builder.build_context(snapshot(mood={'threat': 40}), snapshot(mood={'threat': -40}))
        assert context_builder.normalize_gate_context(context).lookup('threat') == pytest.approx(0.4)
        assert context_builder.normalize_gate_context(context, use_previous=True).lookup('threat') == pytest.approx(-0.4)

    def test_known_context_keys(self, context_builder):
        keys = context_builder.build_known_context_keys()
        assert 'fear' in keys.nested_keys['emotions']
        assert 'aroused' in keys.nested_keys['previousSexualStates']
        assert 'sexualArousal' in keys.scalar_keys
        assert 'sexualArousal' in keys.top_level

    def test_requires_repository(self):
        with pytest.raises(ValueError):
            ContextBuilder(None)


class TestMoodConstraints:

    def test_constraint_axis_and_check(self, context_builder):
        constraint = MoodConstraint('moodAxes.threat', '>=', 50)
        assert constraint.axis == 'threat'
        assert constraint.is_satisfied_by(context_builder.build_context(snapshot(mood={'threat': 50}), snapshot()))
        assert not constraint.is_satisfied_by(context_builder.build_context(snapshot(mood={'threat': 49}), snapshot()))

    def test_scalar_constraint(self):
        assert MoodConstraint('sexualArousal', '>=', 0.5).axis == 'sexual_arousal'

    @pytest.mark.parametrize('path, operator', [
        ('emotions.fear', '>='),
        ('moodAxes.nonexistent', '>='),
        ('sexualArousal.level', '>='),
        ('moodAxes.threat', '!='),
    ])
    def test_invalid_constraint(self, path, operator):
        with pytest.raises(ValueError):
            MoodConstraint(path, operator, 1)

    def test_from_dict_missing_field(self):
        with pytest.raises(ValueError, match="missing field"):
            MoodConstraint.from_dict({'var_path': 'moodAxes.threat', 'operator': '>='})

    def test_no_constraints_means_in_regime(self, context_builder):
        context = context_builder.build_context(snapshot(), snapshot())
        assert is_in_regime(context, None)
        assert is_in_regime(context, [])

    def test_extract_skips_or_branches_and_prototypes(self):
        expression = Expression.from_dict({'id': 'x', 'prerequisites': [
            {'logic': {'and': [
                leaf('>=', 'moodAxes.threat', 50),
                leaf('>=', 'emotions.fear', 0.2),
                {'or': [leaf('<=', 'moodAxes.valence', -20), leaf('>=', 'moodAxes.arousal', 30)]},
            ]}},
            {'logic': leaf('>=', 'moodAxes.threat', 50)},
            {'logic': leaf('<=', 'affectTraits.harm_aversion', 40)},
        ]})
        constraints = extract_mood_constraints(expression)
        assert constraints == [
            MoodConstraint('moodAxes.threat', '>=', 50),
            MoodConstraint('affectTraits.harm_aversion', '<=', 40),
        ]


class TestHistograms:

    def test_bins_sum_to_recorded_count(self):
        histograms = initialize_axis_histograms(['threat', 'baseline_libido', 'sexual_arousal'])
        assert histograms['threat'].bin_count == 201
        assert histograms['baseline_libido'].bin_count == 101
        assert histograms['sexual_arousal'].bin_count == 101
        rng = np.random.default_rng(3)
        for _ in range(250):
            record_axis_histograms(histograms, {
                'threat': int(rng.integers(-100, 101)),
                'baseline_libido': int(rng.integers(-50, 51)),
                'sexual_arousal': float(rng.random()),
            })
        for hist in histograms.values():
            assert int(hist.counts.sum()) == 250
            assert hist.sample_count == 250

    def test_bin_placement_and_clipping(self):
        hist = initialize_axis_histograms(['threat'])['threat']
        record_axis_histograms({'threat': hist}, {'threat': 50})
        record_axis_histograms({'threat': hist}, {'threat': 500})
        assert hist.counts[150] == 1
        assert hist.counts[-1] == 1

    def test_unknown_axis_skipped(self, caplog):
        with caplog.at_level(logging.WARNING):
            histograms = initialize_axis_histograms(['threat', 'mystery'])
        assert list(histograms) == ['threat']
        assert any('mystery' in r.getMessage() for r in caplog.records)


class TestReservoir:

    @pytest.mark.parametrize('limit', [0, 1, 5, 20])
    @pytest.mark.parametrize('offered', [0, 3, 12])
    def test_stored_count_is_min_of_offered_and_limit(self, limit, offered):
        reservoir = initialize_sample_reservoir(limit)
        rng = np.random.default_rng(0)
        for i in range(offered):
            record_sample_reservoir(reservoir, {'threat': i}, rng)
        assert reservoir.stored_count == min(offered, limit)
        assert reservoir.sample_count == offered

    def test_replacement_keeps_offered_samples(self):
        reservoir = initialize_sample_reservoir(4)
        rng = np.random.default_rng(1)
        for i in range(100):
            record_sample_reservoir(reservoir, {'threat': i}, rng)
        values = [s['threat'] for s in reservoir.samples]
        assert len(set(values)) == 4
        assert all(0 <= v < 100 for v in values)

    def test_negative_limit(self):
        with pytest.raises(ValueError):
            initialize_sample_reservoir(-1)
