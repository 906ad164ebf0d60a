"""
Tests of the model layer: identities, table specifications, wildcard lookups and validation.
"""

import numpy as np
import pytest

from pbvi.exceptions import ModelShapeError
from pbvi.model import Horizon, Model, StateKind, layered_lookup, validate_model


def _uniform_observations(state_count, action_count):
    return np.ones((state_count, action_count, 1))


def test_layered_lookup_prefers_most_specific_entry():
    """The exact key wins over wildcard keys; lower bits are replaced first."""
    entries = {
        ('s0', 'a', 's1'): 0.7,
        ('s0', '*', 's1'): 0.3,
        ('*', '*', '*'): 0.1,
    }
    assert layered_lookup(entries, ('s0', 'a', 's1')) == 0.7
    assert layered_lookup(entries, ('s0', 'b', 's1')) == 0.3
    assert layered_lookup(entries, ('s1', 'b', 's0')) == 0.1


def test_layered_lookup_miss_returns_none():
    assert layered_lookup({('x', 'y'): 1.0}, ('x', 'z')) is None


def test_layered_lookup_follows_bit_mask_order():
    """Level 3 (2 wildcards) comes before level 4 (1 wildcard)."""
    entries = {
        ('s', 'a', '*'): 1.0,
        ('*', '*', 'p'): 2.0,
    }
    assert layered_lookup(entries, ('s', 'a', 'p')) == 2.0
    assert layered_lookup(entries, ('s', 'a', 'q')) == 1.0


def test_indexed_named_and_factored_states():
    indexed = Model(2, 1, 1, np.ones((2, 1, 2)) / 2, _uniform_observations(2, 1), np.zeros((2, 1)))
    assert indexed.state_kind == StateKind.INDEXED
    assert indexed.state_labels == ['s_0', 's_1']

    named = Model(['left', 'right'], 1, 1, np.ones((2, 1, 2)) / 2, _uniform_observations(2, 1), np.zeros((2, 1)))
    assert named.state_kind == StateKind.NAMED
    assert named.state_index('right') == 1

    factored = Model([['a', 'b'], [0, 1]], 1, 1, np.ones((4, 1, 4)) / 4, _uniform_observations(4, 1), np.zeros((4, 1)))
    assert factored.state_kind == StateKind.FACTORED
    assert factored.state_labels == [('a', 0), ('a', 1), ('b', 0), ('b', 1)]
    assert factored.state_index(('b', 0)) == 2

    tuple_labels = Model([('a', 1), ('b', 2)], 1, 1, np.ones((2, 1, 2)) / 2, _uniform_observations(2, 1), np.zeros((2, 1)))
    assert tuple_labels.state_kind == StateKind.NAMED
    assert tuple_labels.state_count == 2
    assert tuple_labels.state_index(('b', 2)) == 1


def test_dictionary_transitions_with_wildcards(tiger):
    transitions = {
        ('tiger-left', 'listen', 'tiger-left'): 1.0,
        ('tiger-right', 'listen', 'tiger-right'): 1.0,
        ('*', 'open-left', '*'): 0.5,
        ('*', 'open-right', '*'): 0.5,
    }
    model = Model(states=tiger.state_labels,
                  actions=tiger.action_labels,
                  observations=tiger.observation_labels,
                  transitions=transitions,
                  observation_table=tiger.observation_table,
                  rewards=tiger.immediate_reward_table,
                  horizon=tiger.horizon,
                  missing_value=0.0)

    assert np.allclose(model.transition_table, tiger.transition_table)
    assert model.T('tiger-left', 'listen', 'tiger-right') == 0.0
    validate_model(model)


def test_dictionary_miss_without_missing_value_is_an_error(tiger):
    with pytest.raises(ModelShapeError):
        Model(states=tiger.state_labels,
              actions=tiger.action_labels,
              observations=tiger.observation_labels,
              transitions={('*', 'listen', '*'): 0.5},
              observation_table=tiger.observation_table,
              rewards=tiger.immediate_reward_table)


def test_callable_tables():
    """Functions are queried with indices, observations as O(a, s_p, o)."""
    model = Model(states=2,
                  actions=1,
                  observations=2,
                  transitions=lambda s, a, s_p: 1.0 if s == s_p else 0.0,
                  observation_table=lambda a, s_p, o: 1.0 if s_p == o else 0.0,
                  rewards=lambda s, a, s_p, o: float(s_p))

    assert np.array_equal(model.transition_table[:, 0, :], np.eye(2))
    assert np.array_equal(model.observation_table[:, 0, :], np.eye(2))
    assert model.R(0, 0, 1, 0) == 1.0
    assert model.min_reward == 0.0
    assert model.max_reward == 1.0


def test_query_methods_and_cached_tables(tiger):
    assert tiger.T('tiger-left', 'listen', 'tiger-left') == 1.0
    assert tiger.O('listen', 'tiger-left', 'hear-left') == 0.85
    assert tiger.R('tiger-left', 'open-left', 'tiger-right', 'hear-left') == -100.0
    assert tiger.min_reward == -100.0
    assert tiger.max_reward == 10.0

    # [s, a, o, s_p]
    assert tiger.transitional_observation_table.shape == (2, 3, 2, 2)
    assert tiger.transitional_observation_table[0, 0, 0, 0] == pytest.approx(0.85)
    assert np.allclose(tiger.expected_rewards_table, [[-1, -100, 10], [-1, 10, -100]])
    assert np.allclose(tiger.start_probabilities, [0.5, 0.5])


def test_samplers_follow_the_tables(tiger):
    rng = np.random.default_rng(3)
    for _ in range(20):
        assert tiger.transition(0, 0, rng) == 0
    observations = [tiger.observe(0, 0, rng) for _ in range(500)]
    assert 0.75 < observations.count(0) / 500 < 0.95


def test_unknown_label_is_an_error(tiger):
    with pytest.raises(ModelShapeError):
        tiger.T('tiger-middle', 'listen', 'tiger-left')


def test_wrong_table_shape_is_an_error():
    with pytest.raises(ModelShapeError):
        Model(2, 1, 1, np.ones((2, 2, 2)), _uniform_observations(2, 1), np.zeros((2, 1)))


def test_validate_model_rejects_bad_models(tiger):
    with pytest.raises(ModelShapeError):
        validate_model('tiger')

    unnormalized = Model(2, 1, 1, np.ones((2, 1, 2)), _uniform_observations(2, 1), np.zeros((2, 1)))
    with pytest.raises(ModelShapeError):
        validate_model(unnormalized)

    validate_model(tiger)


def test_horizon():
    assert Horizon(3).is_finite
    assert Horizon(3).length == 3
    assert Horizon(3).discount == 1.0
    assert not Horizon(discount=0.9).is_finite
    assert Horizon(discount=0.9).length is None

    with pytest.raises(ModelShapeError):
        Horizon(0)
    with pytest.raises(ModelShapeError):
        Horizon(discount=1.5)
