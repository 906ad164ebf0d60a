"""
Tests of the policy containers: stage handling, csv persistence and policy trees.
"""

import numpy as np
import pytest

from pbvi.alpha_vector import AlphaVector
from pbvi.belief import Belief
from pbvi.exceptions import PolicyError
from pbvi.model import Horizon, Model
from pbvi.pbvi_solver import PBVI_Solver
from pbvi.policy import PolicyAlphaVectors, PolicyTree
from pbvi.value_function import ValueFunction
from pbvi.vi_solver import VI_Solver


def test_finite_policy_stages(finite_tiger):
    model = finite_tiger(2)
    policy = PolicyAlphaVectors(model.horizon)
    assert policy.is_finite
    assert policy.stage_count == 2

    with pytest.raises(PolicyError):
        policy.get(0)

    policy.set(ValueFunction(model, [AlphaVector([-1.0, -1.0], 0)]), 0)
    assert policy.get_action(Belief(model), 0) == 0
    assert [stage for stage, _ in policy] == [0]

    with pytest.raises(PolicyError):
        policy.get(2)
    with pytest.raises(PolicyError):
        policy.get()
    with pytest.raises(PolicyError):
        policy.next_action(Belief(model), 2)

    # At time step 0 of a horizon of 2, the stage with 2 steps to go is needed
    with pytest.raises(PolicyError):
        policy.next_action(Belief(model), 0)
    assert policy.next_action(Belief(model), 1) == 0


def test_infinite_policy_ignores_stages(tiger):
    policy = PolicyAlphaVectors(tiger.horizon)
    assert not policy.is_finite
    assert policy.stage_count == 1

    value_function = ValueFunction(tiger, [AlphaVector([1.0, 0.0], 1), AlphaVector([0.0, 1.0], 2)])
    policy.set(value_function)

    assert policy.get() is value_function
    assert policy.get(5) is value_function
    assert policy.next_action(Belief(tiger, [0.2, 0.8]), 12) == 2
    assert policy.compute_value(Belief(tiger, [0.2, 0.8])) == pytest.approx(0.8)


def test_empty_or_untagged_sets_have_no_action(tiger):
    policy = PolicyAlphaVectors(tiger.horizon)
    policy.set(ValueFunction(tiger))
    with pytest.raises(PolicyError):
        policy.get_action(Belief(tiger))

    policy.set(ValueFunction(tiger, [AlphaVector([0.0, 0.0])]))
    with pytest.raises(PolicyError):
        policy.get_action(Belief(tiger))


def test_csv_save_and_load(finite_tiger, tmp_path):
    model = finite_tiger(3)
    solver = PBVI_Solver(print_progress=False)
    solver.set_initial_beliefs([Belief(model), Belief(model, [0.9, 0.1])])
    policy = solver.solve(model)

    file = policy.save(path=str(tmp_path), file_name='tiger.csv')
    loaded = PolicyAlphaVectors.load(file, model)

    assert loaded.stage_count == policy.stage_count
    for (stage, value_function), (loaded_stage, loaded_value_function) in zip(policy, loaded):
        assert stage == loaded_stage
        assert np.allclose(value_function.alpha_vector_array, loaded_value_function.alpha_vector_array)
        assert value_function.actions == loaded_value_function.actions


def test_csv_keeps_untagged_vectors(tiger, tmp_path):
    policy = PolicyAlphaVectors(tiger.horizon)
    policy.set(ValueFunction(tiger, [AlphaVector([1.0, 2.0]), AlphaVector([3.0, 4.0], 1)]))

    loaded = PolicyAlphaVectors.load(policy.save(path=str(tmp_path)), tiger)
    assert loaded.get().actions == [None, 1]


def test_saving_an_empty_policy_is_an_error(tiger, tmp_path):
    with pytest.raises(PolicyError):
        PolicyAlphaVectors(tiger.horizon).save(path=str(tmp_path))


def test_policy_tree_from_policy(finite_tiger):
    model = finite_tiger(2)
    policy = VI_Solver(print_progress=False).solve(model)

    tree = PolicyTree.from_policy(model, policy, Belief(model))
    listen = model.action_index('listen')

    # Root and one child per observation
    assert len(tree) == 3
    assert tree.get([]) == listen
    assert tree.get(['hear-left']) == listen
    assert tree.get([1]) == listen

    with pytest.raises(PolicyError):
        tree.get([0, 0])


def test_policy_tree_skips_impossible_observations():
    """The second observation can never be received so only one child is added per node."""
    model = Model(states=2,
                  actions=1,
                  observations=2,
                  transitions=np.array([[[1.0, 0.0]], [[0.0, 1.0]]]),
                  observation_table=np.array([[[1.0, 0.0]], [[1.0, 0.0]]]),
                  rewards=np.zeros((2, 1)),
                  horizon=Horizon(3))
    policy = PolicyAlphaVectors(model.horizon)
    for stage in range(3):
        policy.set(ValueFunction(model, [AlphaVector([0.0, 0.0], 0)]), stage)

    tree = PolicyTree.from_policy(model, policy)
    assert len(tree) == 3
    assert tree.get([0, 0]) == 0
    with pytest.raises(PolicyError):
        tree.get([1])


def test_one_step_policy_tree_is_a_single_node(tiger):
    one_step = PolicyAlphaVectors(Horizon(1))
    one_step.set(ValueFunction(tiger, [AlphaVector([0.0, 0.0], 0)]), 0)
    assert len(PolicyTree.from_policy(tiger, one_step)) == 1


def test_policy_tree_cursor_and_edits(finite_tiger):
    model = finite_tiger(2)
    tree = PolicyTree(model)

    tree.set([], 'listen')
    tree.set(['hear-left'], 'open-right')
    tree.set(['hear-right'], 'open-left')

    assert tree.current_action == 0
    assert tree.next('hear-left') == 2

    with pytest.raises(PolicyError):
        tree.next('hear-left')

    tree.reset_cursor()
    assert tree.next(1) == 1


def test_policy_tree_json(finite_tiger, tmp_path):
    model = finite_tiger(3)
    policy = VI_Solver(print_progress=False).solve(model)
    tree = PolicyTree.from_policy(model, policy)

    file = str(tmp_path / 'tree.json')
    tree.save(file)
    loaded = PolicyTree.load(file, model)

    assert len(loaded) == len(tree)
    for history in ([], [0], [1], [0, 0], [0, 1], [1, 1]):
        assert loaded.get(history) == tree.get(history)


def test_policy_tree_json_with_integer_labels(tmp_path):
    """Labels 1 and 0 sit at indices 0 and 1: the file holds indices, not labels."""
    model = Model(states=2,
                  actions=[1, 0],
                  observations=[1, 0],
                  transitions=np.full((2, 2, 2), 0.5),
                  observation_table=np.full((2, 2, 2), 0.5),
                  rewards=np.zeros((2, 2)),
                  horizon=Horizon(2))
    tree = PolicyTree(model)
    tree.set([], 1)
    tree.set([1], 1)
    tree.set([0], 0)
    assert tree.get() == 0
    assert tree.get([0]) == 1

    file = str(tmp_path / 'tree.json')
    tree.save(file)
    loaded = PolicyTree.load(file, model)

    assert len(loaded) == 3
    assert loaded.get() == 0
    assert loaded.get([1]) == 0
    assert loaded.get([0]) == 1


def test_policy_tree_file_with_unknown_indices(tiger, tmp_path):
    file = tmp_path / 'tree.json'

    file.write_text('{"actions": [7], "children": [{}]}')
    with pytest.raises(PolicyError):
        PolicyTree.load(str(file), tiger)

    file.write_text('{"actions": [0, 0], "children": [{"5": 1}, {}]}')
    with pytest.raises(PolicyError):
        PolicyTree.load(str(file), tiger)


def test_infinite_policy_has_no_tree(tiger):
    policy = PolicyAlphaVectors(tiger.horizon)
    policy.set(ValueFunction(tiger, [AlphaVector([0.0, 0.0], 0)]))
    with pytest.raises(PolicyError):
        PolicyTree.from_policy(tiger, policy)
