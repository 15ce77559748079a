"""Tests for expression parsing (expression_diagnostics.types)."""

import pytest

from expression_diagnostics.types import (
    Compound, DeltaOperand, Expression, Leaf, VarOperand, compare, parse_logic,
)


class TestParseLogic:

    def test_leaf(self):
        node = parse_logic({'>=': [{'var': 'emotions.fear'}, 0.4]})
        assert isinstance(node, Leaf)
        assert node.operand == VarOperand('emotions.fear')
        assert node.operator == '>='
        assert node.threshold == 0.4
        assert node.clause_id == '0'

    def test_reversed_leaf_flips_operator(self):
        node = parse_logic({'<=': [0.5, {'var': 'emotions.fear'}]})
        assert node.operator == '>='
        assert node.threshold == 0.5
        assert node.variable_path == 'emotions.fear'

    def test_delta_operand(self):
        node = parse_logic({'>=': [
            {'-': [{'var': 'previousEmotions.fear'}, {'var': 'emotions.fear'}]}, 0.2
        ]})
        assert isinstance(node.operand, DeltaOperand)
        assert node.is_delta
        assert node.variable_paths == ('previousEmotions.fear', 'emotions.fear')

    @pytest.mark.parametrize('left, integer, epsilon', [
        ({'var': 'moodAxes.threat'}, True, 5.0),
        ({'var': 'affectTraits.harm_aversion'}, True, 5.0),
        ({'var': 'emotions.fear'}, False, 0.05),
        ({'-': [{'var': 'moodAxes.threat'}, {'var': 'previousMoodAxes.threat'}]}, True, 5.0),
        ({'-': [{'var': 'moodAxes.threat'}, {'var': 'emotions.fear'}]}, False, 0.05),
    ])
    def test_domain_and_near_miss_epsilon(self, left, integer, epsilon):
        node = parse_logic({'>=': [left, 10]})
        assert node.is_integer_domain is integer
        assert node.near_miss_epsilon == epsilon

    def test_nested_clause_ids(self):
        node = parse_logic({'and': [
            {'>=': [{'var': 'moodAxes.threat'}, 50]},
            {'or': [
                {'>=': [{'var': 'emotions.fear'}, 0.3]},
                {'<': [{'var': 'emotions.joy'}, 0.1]},
            ]},
        ]}, '2')
        assert isinstance(node, Compound)
        assert [c.clause_id for c in node.children] == ['2.0', '2.1']
        assert [leaf.clause_id for leaf in node.iter_leaves()] == ['2.0', '2.1.0', '2.1.1']

    @pytest.mark.parametrize('logic', [
        {'xor': [{'>=': [{'var': 'a.b'}, 1]}]},
        {'and': {'>=': [{'var': 'a.b'}, 1]}},
        {'>=': [{'var': 'a.b'}, 'high']},
        {'>=': [{'var': 'a.b'}]},
        {'>=': [{'var': 'a.b'}, 1], '<=': [{'var': 'a.b'}, 2]},
    ])
    def test_malformed_logic_raises(self, logic):
        with pytest.raises(ValueError):
            parse_logic(logic)


class TestExpression:

    def test_from_dict_requires_logic(self):
        with pytest.raises(ValueError, match="no 'logic'"):
            Expression.from_dict({'id': 'x', 'prerequisites': [{}]})

    def test_variable_paths_keep_order(self, fear_expression):
        assert fear_expression.variable_paths() == ['emotions.fear', 'moodAxes.threat']

    def test_with_threshold_returns_new_expression(self, fear_expression):
        updated = fear_expression.with_threshold('0.1', 60)
        assert updated.find_leaf('0.1').threshold == 60
        assert fear_expression.find_leaf('0.1').threshold == 50

    def test_with_threshold_unknown_clause(self, fear_expression):
        with pytest.raises(ValueError):
            fear_expression.with_threshold('9.9', 1)

    def test_to_dict_reparses_to_same_tree(self, fear_expression):
        assert Expression.from_dict(fear_expression.to_dict()) == fear_expression


class TestCompare:

    def test_operators(self):
        assert compare(0.5, '>=', 0.5)
        assert not compare(0.5, '>', 0.5)
        assert compare(0.4, '<', 0.5)
        assert compare(0.50001, '==', 0.5)

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            compare(1, '!=', 2)
