"""
Tests of the exact value iteration solver.
"""

import numpy as np
import pytest

from pbvi.belief import Belief
from pbvi.exceptions import ConfigurationError, SolveCancelled
from pbvi.pbvi_solver import PBVI_Solver
from pbvi.vi_solver import VI_Solver


def test_first_stage_is_one_vector_per_action(finite_tiger):
    model = finite_tiger(1)
    policy = VI_Solver(print_progress=False).solve(model)

    value_function = policy.get(0)
    assert sorted(value_function.actions) == [0, 1, 2]
    assert policy.next_action(Belief(model), 0) == model.action_index('listen')
    assert policy.compute_value(Belief(model), 0) == pytest.approx(-1.0)


def test_finite_horizon_tiger_listens(finite_tiger):
    model = finite_tiger(4, discount=0.95)
    policy = VI_Solver(print_progress=False).solve(model)

    assert policy.stage_count == 4
    for t in range(4):
        assert policy.next_action(Belief(model), t) == model.action_index('listen')

    # Certain of the tiger position, with one step to go: open the other door
    assert policy.next_action(Belief(model, [1.0, 0.0]), 3) == model.action_index('open-right')


def test_infinite_horizon_tiger_listens(tiger):
    solver = VI_Solver(iterations=10, print_progress=False)
    policy = solver.solve(tiger)

    assert not policy.is_finite
    assert policy.get_action(Belief(tiger)) == tiger.action_index('listen')
    assert len(solver.history.backup_times) == 10


def test_point_based_values_are_lower_bounds(finite_tiger):
    model = finite_tiger(3)
    exact = VI_Solver(print_progress=False).solve(model)

    beliefs = [Belief(model, [x, 1 - x]) for x in np.linspace(0, 1, 7)]
    solver = PBVI_Solver(print_progress=False)
    solver.set_initial_beliefs(beliefs)
    approximate = solver.solve(model)

    for t in range(3):
        for belief in beliefs:
            assert approximate.compute_value(belief, t) <= exact.compute_value(belief, t) + 1e-7

    # With one step to go, the point-based backup is exact at its beliefs
    for belief in beliefs:
        assert approximate.compute_value(belief, 0) == pytest.approx(exact.compute_value(belief, 0))


def test_pruning_does_not_change_the_values(finite_tiger):
    model = finite_tiger(2)
    pruned = VI_Solver(prune_level=3, print_progress=False).solve(model)
    unpruned = VI_Solver(prune_level=1, print_progress=False).solve(model)

    assert len(pruned.get(1)) <= len(unpruned.get(1))
    for x in np.linspace(0, 1, 11):
        belief = Belief(model, [x, 1 - x])
        assert pruned.compute_value(belief, 1) == pytest.approx(unpruned.compute_value(belief, 1))


def test_configuration_and_cancel(tiger):
    with pytest.raises(ConfigurationError):
        VI_Solver(prune_level=4)
    with pytest.raises(ConfigurationError):
        VI_Solver(iterations=-1)

    with pytest.raises(SolveCancelled):
        VI_Solver(iterations=3, print_progress=False).solve(tiger, cancel_check=lambda: True)
