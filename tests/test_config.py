"""Tests for SimulationConfig validation and JSON loading (expression_diagnostics.config)."""

import json

import pytest

from expression_diagnostics.config import (
    SimulationConfig, axis_family, canonical_axis, is_integer_domain, load_expression_from_json,
    load_mood_constraints_from_json, load_simulation_config_from_json,
    raw_axis_range, save_simulation_config_to_json, simulation_config_from_dict, validate_logger,
)
from expression_diagnostics.context.regime import MoodConstraint
from expression_diagnostics.registry import InMemoryRegistry


class TestSimulationConfig:

    def test_defaults(self):
        config = SimulationConfig()
        assert config.sample_count == 10000
        assert config.distribution == 'uniform'
        assert config.mood_regime_sample_reservoir_limit == 200
        assert config.confidence_method == 'wald'

    @pytest.mark.parametrize('overrides', [
        {'sample_count': 0},
        {'sample_count': 2.5},
        {'sample_count': True},
        {'distribution': 'beta'},
        {'confidence_method': 'exact'},
        {'confidence_level': 1.0},
        {'mood_regime_sample_reservoir_limit': -1},
        {'sensitivity_sample_limit': -5},
        {'chunk_size': 0},
        {'max_witnesses': -1},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            SimulationConfig(**overrides)

    def test_constraint_dicts_converted(self):
        config = SimulationConfig(mood_constraints=[
            {'var_path': 'moodAxes.threat', 'operator': '>=', 'threshold': 50},
            MoodConstraint('moodAxes.valence', '<=', 0),
        ])
        assert config.mood_constraints == [
            MoodConstraint('moodAxes.threat', '>=', 50),
            MoodConstraint('moodAxes.valence', '<=', 0),
        ]

    def test_invalid_constraint_dict(self):
        with pytest.raises(ValueError, match="missing field"):
            SimulationConfig(mood_constraints=[{'var_path': 'moodAxes.threat', 'operator': '>='}])


class TestAxisHelpers:

    def test_aliases_and_families(self):
        assert canonical_axis('SA') == 'sexual_arousal'
        assert axis_family('sexual_inhibition') == 'sexual'
        assert axis_family('harm_aversion') == 'trait'
        assert axis_family('nope') is None
        assert raw_axis_range('baseline_libido') == (-50, 50)

    @pytest.mark.parametrize('path, integer', [
        ('moodAxes.threat', True),
        ('affectTraits.harm_aversion', True),
        ('emotions.fear', False),
        ('sexualArousal', False),
    ])
    def test_integer_domain(self, path, integer):
        assert is_integer_domain(path) is integer


class TestJsonLoading:

    def test_round_trip_with_constraints(self, tmp_path):
        path = tmp_path / 'config.json'
        config = SimulationConfig(
            sample_count=500,
            seed=3,
            distribution='correlated',
            mood_constraints=[MoodConstraint('moodAxes.threat', '>=', 50)],
        )
        save_simulation_config_to_json(config, str(path))
        loaded = load_simulation_config_from_json(str(path))
        assert loaded == config
        assert json.loads(path.read_text())['version'] == '1.0'

    def test_save_config_built_from_constraint_dicts(self, tmp_path):
        path = tmp_path / 'config.json'
        config = SimulationConfig(
            sample_count=50,
            mood_constraints=[{'var_path': 'moodAxes.threat', 'operator': '>=', 'threshold': 50}],
        )
        save_simulation_config_to_json(config, str(path))
        saved = json.loads(path.read_text())
        assert saved['mood_constraints'] == [{'var_path': 'moodAxes.threat', 'operator': '>=', 'threshold': 50}]
        assert load_simulation_config_from_json(str(path)) == config

    def test_unsupported_version(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'version': '2.0', 'sample_count': 10}))
        with pytest.raises(ValueError, match="Unsupported config version"):
            load_simulation_config_from_json(str(path))

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="samples"):
            simulation_config_from_dict({'samples': 10})

    def test_constraint_objects_pass_through(self):
        constraint = MoodConstraint('moodAxes.threat', '>=', 50)
        config = simulation_config_from_dict({'mood_constraints': [constraint]})
        assert config.mood_constraints == [constraint]

    def test_load_expression(self, tmp_path, fear_expression):
        path = tmp_path / 'expression.json'
        path.write_text(json.dumps(fear_expression.to_dict()))
        assert load_expression_from_json(str(path)) == fear_expression

    @pytest.mark.parametrize('payload', [
        [{'var_path': 'moodAxes.threat', 'operator': '>=', 'threshold': 50}],
        {'mood_constraints': [{'var_path': 'moodAxes.threat', 'operator': '>=', 'threshold': 50}]},
    ])
    def test_load_mood_constraints(self, tmp_path, payload):
        path = tmp_path / 'constraints.json'
        path.write_text(json.dumps(payload))
        assert load_mood_constraints_from_json(str(path)) == [MoodConstraint('moodAxes.threat', '>=', 50)]

    def test_registry_from_json_accepts_both_layouts(self, tmp_path):
        table = {'joy': {'weights': {'valence': 1.0}}}
        tables = tmp_path / 'tables.json'
        tables.write_text(json.dumps({'emotions': table}))
        full = tmp_path / 'full.json'
        full.write_text(json.dumps({'lookups': {'core:emotion_prototypes': {'entries': table}}}))
        for path in (tables, full):
            registry = InMemoryRegistry.from_json(str(path))
            assert registry.get('lookups', 'core:emotion_prototypes') == {'entries': table}
            assert registry.get('lookups', 'core:sexual_prototypes') is None


class TestValidateLogger:

    def test_accepts_logger(self):
        import logging
        logger = logging.getLogger('x')
        assert validate_logger(logger) is logger

    def test_names_missing_methods(self):
        class Partial:
            def debug(self, *args):
                pass

        with pytest.raises(ValueError, match="info, warning, error"):
            validate_logger(Partial())
