"""
Tests of the point-based value iteration solver.
"""

import math

import numpy as np
import pytest

from pbvi.alpha_vector import AlphaVector
from pbvi.belief import Belief, BeliefSet
from pbvi.exceptions import ConfigurationError, SolveCancelled
from pbvi.model import Horizon, Model
from pbvi.pbvi_solver import ExpansionRule, PBVI_Solver, compute_update_iterations
from pbvi.value_function import ValueFunction


def _is_valid(belief, tolerance=1e-6):
    return np.all(belief.values >= 0) and abs(np.sum(belief.values) - 1.0) <= tolerance


def _model_with_rewards(min_reward, max_reward, discount):
    return Model(states=2,
                 actions=2,
                 observations=1,
                 transitions=np.full((2, 2, 2), 0.5),
                 observation_table=np.ones((2, 2, 1)),
                 rewards=np.array([[min_reward, max_reward], [0.0, 0.0]]),
                 horizon=Horizon(discount=discount))


def test_update_iterations_formula():
    model = _model_with_rewards(-100.0, 100.0, 0.95)
    expected = math.floor((math.log(1) - math.log(200)) / math.log(0.95))

    assert expected == 103
    assert compute_update_iterations(model, 1.0) == 103

    solver = PBVI_Solver(print_progress=False)
    assert solver.compute_update_iterations(model, 1.0) == 103
    assert solver.updates == 103


def test_update_iterations_degenerate_reward_range():
    """A null reward range is clamped, the result is still at least 1."""
    model = _model_with_rewards(0.0, 0.0, 0.95)
    assert compute_update_iterations(model, 1.0) >= 1
    assert compute_update_iterations(model, 10.0) == 1


def test_update_iterations_invalid_arguments():
    with pytest.raises(ConfigurationError):
        compute_update_iterations(_model_with_rewards(-1.0, 1.0, 1.0), 1.0)
    with pytest.raises(ConfigurationError):
        compute_update_iterations(_model_with_rewards(-1.0, 1.0, 0.9), 0.0)


def test_configuration():
    solver = PBVI_Solver(expansion_rule='ssea', updates=0, expansions=0, print_progress=False)
    assert solver.expansion_rule == ExpansionRule.STOCHASTIC_SIMULATION_EXPLORATORY_ACTION
    assert solver.updates == 1
    assert solver.expansions == 1

    solver.expansion_rule = ExpansionRule.GREEDY_ERROR_REDUCTION
    assert solver.expansion_rule.value == 'ger'

    with pytest.raises(ConfigurationError):
        PBVI_Solver(expansion_rule='bogus')
    with pytest.raises(ConfigurationError):
        PBVI_Solver(updates=-1)
    with pytest.raises(ConfigurationError):
        PBVI_Solver(history_tracking_level=3)


def test_initial_beliefs_and_reset(tiger):
    solver = PBVI_Solver(print_progress=False)
    solver.add_initial_belief(Belief(tiger))
    solver.add_initial_belief(Belief(tiger, [1.0, 0.0]))
    assert len(solver.initial_beliefs) == 2

    solver.set_initial_beliefs([Belief(tiger, [0.2, 0.8])])
    assert len(solver.initial_beliefs) == 1

    solver.solve(tiger)
    assert solver.belief_set is not None

    solver.reset()
    assert solver.initial_beliefs == []
    assert solver.belief_set is None


@pytest.mark.parametrize('rule', ['rbs', 'ssra', 'ssga', 'ssea', 'ger'])
def test_expansion_rules_add_one_valid_belief_per_belief(tiger, rule):
    solver = PBVI_Solver(expansion_rule=rule, seed=12, print_progress=False)
    belief_set = BeliefSet(tiger, np.array([[0.5, 0.5], [0.9, 0.1], [0.3, 0.7]]))
    value_function = ValueFunction(tiger, [AlphaVector([-1.0, -1.0], 0), AlphaVector([-100.0, 10.0], 1), AlphaVector([10.0, -100.0], 2)])

    expanded = solver.expand(tiger, belief_set, value_function)

    assert len(expanded) == 2 * len(belief_set)
    assert np.array_equal(expanded.belief_array[:len(belief_set)], belief_set.belief_array)
    assert all(_is_valid(b) for b in expanded)


def test_no_expansion(tiger):
    solver = PBVI_Solver(expansion_rule='none', print_progress=False)
    belief_set = BeliefSet(tiger, [Belief(tiger)])
    assert len(solver.expand(tiger, belief_set, ValueFunction(tiger))) == 1


def test_random_belief_selection_1000_times(tiger):
    solver = PBVI_Solver(expansion_rule='rbs', seed=0, print_progress=False)
    belief_set = BeliefSet(tiger, [Belief(tiger)])
    for _ in range(1000):
        new_belief = solver.expand_rbs(tiger, belief_set)[1]
        assert _is_valid(new_belief)


def test_exploratory_expansion_keeps_first_action_when_nothing_was_added(tiger):
    """From a single belief, every successor is at an infinite distance: listening is kept."""
    solver = PBVI_Solver(expansion_rule='ssea', seed=5, print_progress=False)
    belief_set = BeliefSet(tiger, [Belief(tiger)])

    for _ in range(10):
        new_belief = solver.expand_ssea(tiger, belief_set)[1]
        assert np.allclose(new_belief.values, [0.85, 0.15]) or np.allclose(new_belief.values, [0.15, 0.85])


def test_greedy_error_reduction_requires_discount(finite_tiger):
    solver = PBVI_Solver(expansion_rule='ger', print_progress=False)
    undiscounted = finite_tiger(2)
    belief_set = BeliefSet(undiscounted, [Belief(undiscounted)])

    with pytest.raises(ConfigurationError):
        solver.expand_ger(undiscounted, belief_set, ValueFunction(undiscounted, [AlphaVector([0.0, 0.0], 0)]))


def test_finite_horizon_tiger_listens(finite_tiger):
    model = finite_tiger(3)
    solver = PBVI_Solver(print_progress=False)
    solver.set_initial_beliefs([Belief(model), Belief(model, [0.85, 0.15]), Belief(model, [0.15, 0.85])])

    policy = solver.solve(model)

    assert policy.stage_count == 3
    assert policy.next_action(Belief(model), 0) == model.action_index('listen')

    # Finite horizon: no expansion, one vector per belief per stage
    assert len(solver.belief_set) == 3
    for _, value_function in policy:
        assert len(value_function) == 3


def test_horizon_one_policy_is_gamma_a_star(one_observation_model):
    model = one_observation_model
    solver = PBVI_Solver(print_progress=False)
    solver.set_initial_beliefs([Belief(model, [1.0, 0.0]), Belief(model, [0.0, 1.0])])

    value_function = solver.solve(model).get(0)

    assert np.allclose(value_function.alpha_vector_array, [[5.0, -2.0], [1.0, 3.0]])
    assert value_function.actions == [0, 1]


@pytest.mark.parametrize('rule', ['rbs', 'ssra', 'ssga', 'ssea', 'ger'])
def test_infinite_horizon_tiger_listens(tiger, rule):
    solver = PBVI_Solver(expansion_rule=rule, updates=30, expansions=3, seed=7, print_progress=False)

    policy = solver.solve(tiger)

    assert not policy.is_finite
    assert policy.get_action(Belief(tiger)) == tiger.action_index('listen')
    assert len(solver.belief_set) == 2 ** 3
    assert all(_is_valid(b) for b in solver.belief_set)


def test_history_tracking(tiger):
    solver = PBVI_Solver(updates=4, expansions=2, history_tracking_level=2, print_progress=False)
    solver.solve(tiger)

    history = solver.history
    assert len(history.backup_times) == 8
    assert len(history.expansion_times) == 2
    assert history.beliefs_counts == [1, 2, 4]
    assert len(history.value_functions) == 9
    assert 'PBVI' in history.summary

    assert history.solution is history.value_functions[-1]
    assert len(history.explored_beliefs) == 4
    assert history.explored_beliefs is solver.belief_set

    history.plot_changes()


def test_history_without_value_function_tracking(tiger):
    solver = PBVI_Solver(updates=2, expansions=1, history_tracking_level=1, print_progress=False)
    solver.solve(tiger)

    assert len(solver.history.value_function_changes) == 2
    with pytest.raises(AssertionError):
        solver.history.solution
    with pytest.raises(AssertionError):
        solver.history.explored_beliefs


def test_cancelled_solve_leaves_solver_untouched(tiger):
    solver = PBVI_Solver(updates=5, expansions=5, print_progress=False)

    calls = []
    def cancel_check():
        calls.append(1)
        return len(calls) > 3

    with pytest.raises(SolveCancelled):
        solver.solve(tiger, cancel_check=cancel_check)

    assert solver.belief_set is None
    assert solver.history is None


def test_solve_is_deterministic_with_a_seed(tiger):
    first = PBVI_Solver(expansion_rule='ssra', updates=5, expansions=3, seed=42, print_progress=False).solve(tiger)
    second = PBVI_Solver(expansion_rule='ssra', updates=5, expansions=3, seed=42, print_progress=False).solve(tiger)

    assert np.array_equal(first.get().alpha_vector_array, second.get().alpha_vector_array)
