from collections import deque
from typing import Self, Union

import json
import os

import numpy as np
import pandas as pd

from pbvi.alpha_vector import AlphaVector
from pbvi.belief import Belief, NORMALIZATION_THRESHOLD
from pbvi.exceptions import PolicyError
from pbvi.logger import log
from pbvi.model import Horizon, Model
from pbvi.value_function import ValueFunction


NO_ACTION = -1


class PolicyAlphaVectors:
    '''
    The result of solving a POMDP: sets of alpha vectors from which the action to take at a belief is read.
    For a finite horizon of length H there is one value function per stage, stage t holding the vectors with t+1 steps to go.
    For an infinite horizon there is a single value function and the stage arguments are ignored.

    ...

    Parameters
    ----------
    horizon : Horizon
        The horizon of the model the policy solves.

    Attributes
    ----------
    horizon : Horizon
    is_finite : bool
    stage_count : int
    '''
    def __init__(self, horizon:Horizon) -> None:
        self.horizon = horizon
        self._value_functions = [None] * self.stage_count


    @property
    def is_finite(self) -> bool:
        return self.horizon.is_finite


    @property
    def stage_count(self) -> int:
        '''
        The amount of stages of the policy, 1 for an infinite horizon.
        '''
        return self.horizon.length if self.horizon.is_finite else 1


    def _stage_index(self, stage:Union[int,None]) -> int:
        if not self.is_finite:
            return 0
        if stage is None:
            raise PolicyError("A stage is required for a finite horizon policy")
        if not (0 <= stage < self.stage_count):
            raise PolicyError(f"Stage {stage} is out of the horizon (0 to {self.stage_count - 1})")
        return int(stage)


    def set(self, value_function:ValueFunction, stage:Union[int,None]=None) -> None:
        '''
        Function to store the value function of a stage.

        Parameters
        ----------
        value_function : ValueFunction
            The alpha vectors of the stage.
        stage : int, optional
            The stage, required for finite horizons.
        '''
        self._value_functions[self._stage_index(stage)] = value_function


    def get(self, stage:Union[int,None]=None) -> ValueFunction:
        '''
        Function to get the value function of a stage.

        Raises
        ------
        PolicyError
            If the stage is invalid or hasn't been set.
        '''
        value_function = self._value_functions[self._stage_index(stage)]
        if value_function is None:
            raise PolicyError(f"No value function has been set for stage {stage}")
        return value_function


    def __iter__(self):
        for stage, value_function in enumerate(self._value_functions):
            if value_function is not None:
                yield stage, value_function


    def get_action(self, belief:Belief, stage:Union[int,None]=None) -> int:
        '''
        The action of the alpha vector with the highest value at the belief, at a given stage.

        Parameters
        ----------
        belief : Belief
            The current belief.
        stage : int, optional
            The stage, required for finite horizons.

        Returns
        -------
        action : int

        Raises
        ------
        PolicyError
            If the stage is empty or the best vector has no action.
        '''
        return self.get(stage).best_action(belief)


    def compute_value(self, belief:Belief, stage:Union[int,None]=None) -> float:
        '''
        The value of the belief at a given stage.
        '''
        return self.get(stage).max_value(belief)


    def next_action(self, belief:Belief, time_step:int=0) -> int:
        '''
        The action to take at a given time step of an execution of the policy.
        At time step k of a finite horizon H, there are H-k steps to go so the stage H-1-k is used.

        Parameters
        ----------
        belief : Belief
            The current belief.
        time_step : int, default=0
            The amount of steps already taken.

        Returns
        -------
        action : int
        '''
        if not self.is_finite:
            return self.get_action(belief)

        if not (0 <= time_step < self.stage_count):
            raise PolicyError(f"Time step {time_step} is out of the horizon (0 to {self.stage_count - 1})")
        return self.get_action(belief, self.stage_count - 1 - time_step)


    def save(self, path:str='./Policies', file_name:Union[str,None]=None) -> str:
        '''
        Function to save the policy in a csv file with columns: stage, action and one column per state.
        Vectors without an action are saved with action -1.
        If no file_name is provided, it be saved as 'policy.csv'.

        Parameters
        ----------
        path : str, default='./Policies'
            The path at which the csv will be saved.
        file_name : str, optional
            The file name used to save in.

        Returns
        -------
        file : str
            The path and name of the saved file.
        '''
        if not os.path.exists(path):
            log('Folder does not exist yet, creating it...')
            os.makedirs(path)

        if file_name is None:
            file_name = 'policy.csv'

        rows = []
        state_labels = None
        for stage, value_function in self:
            state_labels = [str(label) for label in value_function.model.state_labels]
            for alpha_vector in value_function:
                action = NO_ACTION if alpha_vector.action is None else alpha_vector.action
                rows.append([stage, action, *alpha_vector.values.tolist()])

        if state_labels is None:
            raise PolicyError("Policy is empty, nothing to save")

        df = pd.DataFrame(rows, columns=['stage', 'action', *state_labels])

        file = os.path.join(path, file_name)
        df.to_csv(file, index=False)

        return file


    @classmethod
    def load(cls, file:str, model:Model) -> Self:
        '''
        Function to load a policy from a csv file saved with the save function.

        Parameters
        ----------
        file : str
            The path and file_name of the policy to be loaded.
        model : pbvi.Model
            The model the policy is linked to, its horizon is the horizon of the policy.

        Returns
        -------
        loaded_policy : PolicyAlphaVectors
        '''
        df = pd.read_csv(file, header=0, index_col=False)
        if df.shape[1] != model.state_count + 2:
            raise PolicyError(f"Policy file has {df.shape[1] - 2} state columns while the model has {model.state_count} states")

        policy = cls(model.horizon)
        for stage, stage_df in df.groupby('stage', sort=True):
            data = stage_df.to_numpy()
            alpha_vectors = []
            for row in data:
                action = int(row[1])
                alpha_vectors.append(AlphaVector(row[2:].astype(float), None if action == NO_ACTION else action))
            policy.set(ValueFunction(model, alpha_vectors), int(stage))

        return policy


class PolicyTree:
    '''
    A finite horizon policy represented as a tree: each node holds the action to take and its children are reached by the observations received after the action.
    The nodes are stored in flat lists and addressed by index, the root being node 0.
    A cursor follows the execution of the policy: it starts on the root and moves to a child on every observation.

    ...

    Parameters
    ----------
    model : pbvi.Model
        The model the policy applies on.

    Attributes
    ----------
    model : pbvi.Model
    current_action : int
        The action of the node the cursor is on.
    '''
    def __init__(self, model:Model) -> None:
        self.model = model
        self._actions = []
        self._children = []
        self._cursor = 0


    @classmethod
    def from_policy(cls, model:Model, policy:PolicyAlphaVectors, initial_belief:Union[Belief,None]=None) -> Self:
        '''
        Function to compile a finite horizon policy into a tree, starting at an initial belief.
        The beliefs are followed through every action and observation, observations that can't be received are not added to the tree.

        Parameters
        ----------
        model : pbvi.Model
            The model the policy applies on.
        policy : PolicyAlphaVectors
            A finite horizon policy.
        initial_belief : Belief, optional
            The belief at the root of the tree. If not provided, the start belief of the model is used.

        Returns
        -------
        policy_tree : PolicyTree
        '''
        if not policy.is_finite:
            raise PolicyError("Only a finite horizon policy can be compiled into a tree")

        if initial_belief is None:
            initial_belief = Belief(model)

        tree = cls(model)
        horizon = policy.stage_count

        root = tree._add_node(policy.next_action(initial_belief, 0))
        queue = deque([(root, initial_belief, 0)])

        while queue:
            node, belief, time_step = queue.popleft()
            if time_step + 1 >= horizon:
                continue

            a = tree._actions[node]
            observation_probabilities = belief.observation_probabilities(a)
            for o in model.observations:
                if observation_probabilities[o] < NORMALIZATION_THRESHOLD:
                    continue
                next_belief = belief.update(a, o)
                child = tree._add_node(policy.next_action(next_belief, time_step + 1))
                tree._children[node][int(o)] = child
                queue.append((child, next_belief, time_step + 1))

        return tree


    def _add_node(self, action:Union[int,None]) -> int:
        self._actions.append(action)
        self._children.append({})
        return len(self._actions) - 1


    def __len__(self) -> int:
        return len(self._actions)


    def _find(self, history:list[int], create:bool=False) -> int:
        if len(self._actions) == 0:
            if not create:
                raise PolicyError("Policy tree is empty")
            self._add_node(None)

        node = 0
        for o in history:
            o = self.model.observation_index(o)
            child = self._children[node].get(o)
            if child is None:
                if not create:
                    raise PolicyError(f"Observation history {list(history)} is not part of the policy tree")
                child = self._add_node(None)
                self._children[node][o] = child
            node = child
        return node


    def get(self, history:tuple=()) -> int:
        '''
        The action to take after a history of observations, starting from the root.

        Parameters
        ----------
        history : tuple or list, default=()
            The observations (labels or indices) received since the root.

        Returns
        -------
        action : int

        Raises
        ------
        PolicyError
            If the history leads outside the tree or to a node without an action.
        '''
        action = self._actions[self._find(history)]
        if action is None:
            raise PolicyError(f"No action is set after observation history {list(history)}")
        return action


    def set(self, history:list, action) -> None:
        '''
        Function to set the action to take after a history of observations. The missing nodes are created.

        Parameters
        ----------
        history : list
            The observations (labels or indices) received since the root.
        action : int or str
            The action (label or index) to take.
        '''
        self._actions[self._find(history, create=True)] = self.model.action_index(action)


    @property
    def current_action(self) -> int:
        if len(self._actions) == 0 or self._actions[self._cursor] is None:
            raise PolicyError("No action is set on the current node of the policy tree")
        return self._actions[self._cursor]


    def next(self, observation) -> int:
        '''
        Function to move the cursor along an observation and return the action to take next.

        Parameters
        ----------
        observation : int or str
            The observation (label or index) received.

        Returns
        -------
        action : int

        Raises
        ------
        PolicyError
            If the current node has no child for the observation.
        '''
        if len(self._actions) == 0:
            raise PolicyError("Policy tree is empty")

        child = self._children[self._cursor].get(self.model.observation_index(observation))
        if child is None:
            raise PolicyError(f"Observation {observation} is not part of the policy tree from the current node")

        self._cursor = child
        return self.current_action


    def reset_cursor(self) -> None:
        '''
        Function to move the cursor back to the root of the tree.
        '''
        self._cursor = 0


    def save(self, file:str) -> None:
        '''
        Function to save the policy tree in a json file.

        Parameters
        ----------
        file : str
            The path and file name of the json file.
        '''
        tree_dict = {
            'actions': self._actions,
            'children': [{str(o): child for o, child in children.items()} for children in self._children]
        }

        json_object = json.dumps(tree_dict, indent=4)
        with open(file, 'w') as outfile:
            outfile.write(json_object)


    @classmethod
    def load(cls, file:str, model:Model) -> Self:
        '''
        Function to load a policy tree from a json file saved with the save function.

        Parameters
        ----------
        file : str
            The path and file name of the json file.
        model : pbvi.Model
            The model the policy applies on.

        Returns
        -------
        loaded_tree : PolicyTree
        '''
        with open(file, 'r') as openfile:
            tree_dict = json.load(openfile)

        if len(tree_dict['actions']) != len(tree_dict['children']):
            raise PolicyError("Policy tree file has a different amount of actions and children")

        # The file holds indices, they are not resolved as labels
        tree = cls(model)
        for action, children in zip(tree_dict['actions'], tree_dict['children']):
            if action is not None and not (0 <= int(action) < model.action_count):
                raise PolicyError(f"Policy tree file references an action index that doesn't exist ({action})")
            node = tree._add_node(None if action is None else int(action))
            for o, child in children.items():
                if not (0 <= int(o) < model.observation_count):
                    raise PolicyError(f"Policy tree file references an observation index that doesn't exist ({o})")
                if not (0 <= child < len(tree_dict['actions'])):
                    raise PolicyError(f"Policy tree file references a node that doesn't exist ({child})")
                tree._children[node][int(o)] = child

        return tree
