from datetime import datetime
from enum import Enum
from typing import Union

import itertools

import numpy as np

from pbvi.exceptions import ModelShapeError
from pbvi.logger import log, warn


WILDCARD = '*'
PROBABILITY_TOLERANCE = 1e-6


class StateKind(Enum):
    '''
    The kind of identity the elements of a model dimension (states, actions or observations) have.
    It is decided once, when the model is built.
        - INDEXED: Only a count was given, the labels are generated ('s_0', 's_1', ...).
        - NAMED: A list of labels was given.
        - FACTORED: A list of factors was given, the labels are the tuples of the cartesian product of the factors.
    '''
    INDEXED = 'indexed'
    NAMED = 'named'
    FACTORED = 'factored'


class Horizon:
    '''
    The planning horizon of a model. It is either finite, with a given amount of stages, or infinite.
    In both cases a discount factor is applied to future rewards.

    ...

    Parameters
    ----------
    length : int, optional
        The amount of stages of a finite horizon. If not provided, the horizon is infinite.
    discount : float, default=1.0
        The discount factor, between 0 and 1.

    Attributes
    ----------
    length : int or None
    discount : float
    is_finite : bool
    '''
    def __init__(self, length:Union[int,None]=None, discount:float=1.0) -> None:
        if length is not None:
            if isinstance(length, bool) or not isinstance(length, (int, np.integer)) or length < 1:
                raise ModelShapeError(f"Finite horizon length must be a positive integer (received: {length})")
            length = int(length)

        if not (0.0 <= discount <= 1.0):
            raise ModelShapeError(f"Discount factor must be between 0 and 1 (received: {discount})")

        self._length = length
        self._discount = float(discount)


    @property
    def length(self) -> Union[int,None]:
        '''
        The amount of stages of the horizon, None if the horizon is infinite.
        '''
        return self._length


    @property
    def discount(self) -> float:
        return self._discount


    @property
    def is_finite(self) -> bool:
        return self._length is not None


    def __repr__(self) -> str:
        if self.is_finite:
            return f'Horizon(length={self._length}, discount={self._discount})'
        return f'Horizon(infinite, discount={self._discount})'


def layered_lookup(entries:dict, key:tuple) -> Union[float,None]:
    '''
    Function to find the value of a key in a dictionary of entries that may contain wildcards ('*').
    The candidate keys are tried in bit mask order, from level 0 (the exact key) to level 2^len(key) - 1 (all wildcards):
    at level i, the positions of the key for which bit is set in i are replaced by the wildcard.
    The order is not monotone in the amount of wildcards, for a 3 element key (*, *, s_p) at level 3 comes before (s, a, *) at level 4.

    Parameters
    ----------
    entries : dict
        The entries, keyed by tuples of labels where any label can be a wildcard.
    key : tuple
        The key to look up.

    Returns
    -------
    value : float or None
        The value of the most specific matching entry or None if no entry matches the key.
    '''
    for level in range(2 ** len(key)):
        candidate = tuple(WILDCARD if (level >> i) & 1 else k for i, k in enumerate(key))
        value = entries.get(candidate)
        if value is not None:
            return value
    return None


def _resolve_labels(items:Union[int, list], prefix:str, name:str) -> tuple[list, StateKind]:
    if isinstance(items, (int, np.integer)) and not isinstance(items, bool):
        labels = [f'{prefix}_{i}' for i in range(items)]
        kind = StateKind.INDEXED
    elif isinstance(items, (list, tuple)) and len(items) > 0 and all(isinstance(item, list) for item in items):
        labels = list(itertools.product(*items))
        kind = StateKind.FACTORED
    elif isinstance(items, (list, tuple)):
        labels = list(items)
        kind = StateKind.NAMED
    else:
        raise ModelShapeError(f"The {name} must be given as a count, a list of labels or a list of factors (received: {type(items).__name__})")

    if len(labels) == 0:
        raise ModelShapeError(f"A model needs at least one element in its {name}")
    if len(set(labels)) != len(labels):
        raise ModelShapeError(f"The labels of the {name} must be unique")

    return labels, kind


class Model:
    '''
    POMDP Model class. Partially Observable Markov Decision Process Model.
    It holds finite sets of states, actions and observations and the dense tables of the transition, observation and reward functions.
    Every element is addressed by its index in its list of labels.

    ...

    Parameters
    ----------
    states : int or list or list[list]
        An amount of states, a list of state labels, or a list of factors (each a list, not a tuple, of values) whose cartesian product makes the states. Tuples are taken as labels.
    actions : int or list
        An amount of actions or a list of action labels.
    observations : int or list
        An amount of observations or a list of observation labels.
    transitions : array-like or function or dict, optional
        The transition probabilities T(s, a, s_p).
        An array of shape |S| x |A| x |S|, a function taking 3 indices (s, a, s_p),
        or a dictionary keyed by (s, a, s_p) label tuples where any label can be the '*' wildcard.
        If none is provided, it will be randomly generated.
    observation_table : array-like or function or dict, optional
        The observation probabilities O(a, s_p, o).
        An array of shape |S| x |A| x |O| indexed as [s_p, a, o], a function taking 3 indices (a, s_p, o),
        or a dictionary keyed by (a, s_p, o) label tuples (wildcards allowed).
        If none is provided, it will be randomly generated.
    rewards : array-like or function or dict, optional
        The rewards R(s, a, s_p, o).
        An array of shape |S| x |A| x |S| x |O| (or |S| x |A| x |S| or |S| x |A|, the missing dimensions being broadcasted),
        a function taking 4 indices (s, a, s_p, o), or a dictionary keyed by (s, a, s_p, o) label tuples (wildcards allowed).
        If none is provided, it will be randomly generated.
    horizon : Horizon, optional
        The planning horizon. If not provided, an infinite horizon with a discount factor of 0.95 is used.
    start_probabilities : list, optional
        The distribution of chances to start in each state. If not provided, there will be an uniform chance for each state.
    missing_value : float, optional
        The value to use when a dictionary lookup finds no entry, even with wildcards.
        If not provided, a missing entry is an error.

    Attributes
    ----------
    states : np.ndarray
        A 1D array of states indices. Used to loop over states.
    state_labels : list
    state_kind : StateKind
    state_count : int
    actions : np.ndarray
    action_labels : list
    action_kind : StateKind
    action_count : int
    observations : np.ndarray
    observation_labels : list
    observation_kind : StateKind
    observation_count : int
    transition_table : np.ndarray
        A 3D matrix of shape S x A x S of the transition probabilities.
    observation_table : np.ndarray
        A 3D matrix of shape S x A x O representing the probabilies of obsevating o when taking action a and leading to state s_p.
    immediate_reward_table : np.ndarray
        A 4D matrix of shape S x A x S x O of the reward that will received when taking action a, in state s, landing in state s_p, and observing o.
    transitional_observation_table : np.ndarray
        A 4D array of shape S x A x O x S, the probability of landing in s_p while observing o after having taken action a from state s.
    expected_rewards_table : np.ndarray
        A 2D array of shape S x A. The reward expected to be received when taking action a from state s.
    start_probabilities : np.ndarray
    horizon : Horizon
    min_reward : float
    max_reward : float
    '''
    def __init__(self,
                 states:Union[int, list],
                 actions:Union[int, list],
                 observations:Union[int, list],
                 transitions=None,
                 observation_table=None,
                 rewards=None,
                 horizon:Union[Horizon,None]=None,
                 start_probabilities:Union[list,None]=None,
                 missing_value:Union[float,None]=None
                 ):
        log('Instantiation of POMDP Model:')
        self.missing_value = missing_value

        # ------------------------- States, actions, observations -------------------------
        self.state_labels, self.state_kind = _resolve_labels(states, 's', 'states')
        self.state_count = len(self.state_labels)
        self.states = np.arange(self.state_count)
        self._state_index = {label: i for i, label in enumerate(self.state_labels)}
        log(f'- {self.state_count} {self.state_kind.value} states')

        self.action_labels, self.action_kind = _resolve_labels(actions, 'a', 'actions')
        self.action_count = len(self.action_labels)
        self.actions = np.arange(self.action_count)
        self._action_index = {label: i for i, label in enumerate(self.action_labels)}
        log(f'- {self.action_count} actions')

        self.observation_labels, self.observation_kind = _resolve_labels(observations, 'o', 'observations')
        self.observation_count = len(self.observation_labels)
        self.observations = np.arange(self.observation_count)
        self._observation_index = {label: i for i, label in enumerate(self.observation_labels)}
        log(f'- {self.observation_count} observations')

        # ------------------------- Horizon -------------------------
        if horizon is None:
            horizon = Horizon(discount=0.95)
        elif not isinstance(horizon, Horizon):
            raise ModelShapeError(f"Horizon must be a Horizon object (received: {type(horizon).__name__})")
        self.horizon = horizon
        log(f'- {horizon}')

        S, A, O = self.state_count, self.action_count, self.observation_count

        # ------------------------- Transitions -------------------------
        log('- Starting generation of transitions table')
        start_ts = datetime.now()

        if transitions is None:
            warn('No transition matrix provided so a random transition matrix is generated...')
            random_probs = np.random.rand(S, A, S)
            # Normalization to have s_p probabilies summing to 1
            self.transition_table = random_probs / np.sum(random_probs, axis=2, keepdims=True)
        else:
            self.transition_table = self._build_table(transitions,
                                                      shape=(S, A, S),
                                                      label_lists=(self.state_labels, self.action_labels, self.state_labels),
                                                      name='Transitions')

        duration = (datetime.now() - start_ts).total_seconds()
        log(f'    > Done in {duration:.3f}s')

        # ------------------------- Observations -------------------------
        log('- Starting generation of observations table')
        start_ts = datetime.now()

        if observation_table is None:
            warn('No observation matrix provided so a random observation matrix is generated...')
            random_probs = np.random.rand(S, A, O)
            self.observation_table = random_probs / np.sum(random_probs, axis=2, keepdims=True)
        elif callable(observation_table) or isinstance(observation_table, dict):
            # Functions and dictionaries are queried as O(a, s_p, o), the table is stored as [s_p, a, o]
            ordered_table = self._build_table(observation_table,
                                              shape=(A, S, O),
                                              label_lists=(self.action_labels, self.state_labels, self.observation_labels),
                                              name='Observations')
            self.observation_table = np.ascontiguousarray(ordered_table.transpose(1, 0, 2))
        else:
            self.observation_table = self._build_table(observation_table, shape=(S, A, O), label_lists=None, name='Observations')

        duration = (datetime.now() - start_ts).total_seconds()
        log(f'    > Done in {duration:.3f}s')

        # ------------------------- Rewards -------------------------
        log('- Starting generation of rewards table')
        start_ts = datetime.now()

        if rewards is None:
            warn('No reward matrix provided so a random reward matrix is generated...')
            self.immediate_reward_table = np.random.rand(S, A, S, O)
        elif callable(rewards) or isinstance(rewards, dict):
            self.immediate_reward_table = self._build_table(rewards,
                                                            shape=(S, A, S, O),
                                                            label_lists=(self.state_labels, self.action_labels, self.state_labels, self.observation_labels),
                                                            name='Rewards')
        else:
            reward_array = np.array(rewards, dtype=float)
            if reward_array.shape == (S, A):
                reward_array = np.broadcast_to(reward_array[:,:,None,None], (S, A, S, O))
            elif reward_array.shape == (S, A, S):
                reward_array = np.broadcast_to(reward_array[:,:,:,None], (S, A, S, O))
            self.immediate_reward_table = self._build_table(reward_array, shape=(S, A, S, O), label_lists=None, name='Rewards')

        self.min_reward = float(np.min(self.immediate_reward_table))
        self.max_reward = float(np.max(self.immediate_reward_table))

        duration = (datetime.now() - start_ts).total_seconds()
        log(f'    > Done in {duration:.3f}s')

        # ------------------------- Start state probabilities -------------------------
        log('- Generating start probabilities table')
        if start_probabilities is not None:
            self.start_probabilities = np.array(start_probabilities, dtype=float)
            if self.start_probabilities.shape != (S,):
                raise ModelShapeError(f"Start probabilities must be of dimension |S| (expected: {S}, received: {self.start_probabilities.shape})")
        else:
            self.start_probabilities = np.full(S, 1/S)

        # ------------------------- Transitional observation probabilities -------------------------
        log('- Starting of transitional observations table')
        start_ts = datetime.now()

        self.transitional_observation_table = np.einsum('sap,pao->saop', self.transition_table, self.observation_table)

        duration = (datetime.now() - start_ts).total_seconds()
        log(f'    > Done in {duration:.3f}s')

        # ------------------------- Expected rewards -------------------------
        log('- Starting generation of expected rewards table')
        start_ts = datetime.now()

        self.expected_rewards_table = np.einsum('saop,sapo->sa', self.transitional_observation_table, self.immediate_reward_table)

        duration = (datetime.now() - start_ts).total_seconds()
        log(f'    > Done in {duration:.3f}s')


    def _build_table(self, source, shape:tuple, label_lists:Union[tuple,None], name:str) -> np.ndarray:
        if isinstance(source, dict):
            assert label_lists is not None
            table = np.empty(shape)
            for indices in np.ndindex(*shape):
                key = tuple(labels[i] for labels, i in zip(label_lists, indices))
                value = layered_lookup(source, key)
                if value is None:
                    value = self.missing_value
                if value is None:
                    raise ModelShapeError(f"{name} has no entry for {key} and no missing value is defined for the model")
                table[indices] = value

        elif callable(source):
            table = np.fromfunction(np.vectorize(source, otypes=[float]), shape, dtype=int)

        else:
            table = np.array(source, dtype=float)
            if table.shape != shape:
                raise ModelShapeError(f"{name} table doesnt have the right shape (expected: {shape}, received: {table.shape})")

        if np.any(np.isnan(table)):
            raise ModelShapeError(f"{name} table contains undefined values")

        return table


    def state_index(self, state) -> int:
        '''
        Returns the index of a state given either its label or its index.
        '''
        return self._index_of(state, self._state_index, self.state_count, 'State')


    def action_index(self, action) -> int:
        '''
        Returns the index of an action given either its label or its index.
        '''
        return self._index_of(action, self._action_index, self.action_count, 'Action')


    def observation_index(self, observation) -> int:
        '''
        Returns the index of an observation given either its label or its index.
        '''
        return self._index_of(observation, self._observation_index, self.observation_count, 'Observation')


    def _index_of(self, item, index:dict, count:int, name:str) -> int:
        if item in index:
            return index[item]
        if isinstance(item, (int, np.integer)) and not isinstance(item, bool) and 0 <= item < count:
            return int(item)
        raise ModelShapeError(f"{name} '{item}' is not part of the model")


    def T(self, s, a, s_p) -> float:
        '''
        The probability of landing in state s_p after taking action a in state s.
        '''
        return float(self.transition_table[self.state_index(s), self.action_index(a), self.state_index(s_p)])


    def O(self, a, s_p, o) -> float:
        '''
        The probability of observing o after taking action a and landing in state s_p.
        '''
        return float(self.observation_table[self.state_index(s_p), self.action_index(a), self.observation_index(o)])


    def R(self, s, a, s_p, o) -> float:
        '''
        The reward received when taking action a in state s, landing in state s_p and observing o.
        '''
        return float(self.immediate_reward_table[self.state_index(s), self.action_index(a), self.state_index(s_p), self.observation_index(o)])


    def transition(self, s:int, a:int, rng:Union[np.random.Generator,None]=None) -> int:
        '''
        Returns a random posterior state knowing we take action a in state s and weighted on the transition probabilities.

        Parameters
        ----------
        s : int
            The current state.
        a : int
            The action to take.
        rng : np.random.Generator, optional
            The random generator to draw from.

        Returns
        -------
        s_p : int
            The posterior state.
        '''
        rng = rng if rng is not None else np.random.default_rng()
        probabilities = self.transition_table[s,a]
        s_p = int(rng.choice(self.states, p=probabilities / np.sum(probabilities)))
        return s_p


    def observe(self, s_p:int, a:int, rng:Union[np.random.Generator,None]=None) -> int:
        '''
        Returns a random observation knowing action a is taken and state s_p is reached, it is weighted by the observation probabilities.

        Parameters
        ----------
        s_p : int
            The state landed on after having done action a.
        a : int
            The action taken.
        rng : np.random.Generator, optional
            The random generator to draw from.

        Returns
        -------
        o : int
            A random observation.
        '''
        rng = rng if rng is not None else np.random.default_rng()
        probabilities = self.observation_table[s_p,a]
        o = int(rng.choice(self.observations, p=probabilities / np.sum(probabilities)))
        return o


def validate_model(model) -> None:
    '''
    Function to check a model can be solved: it must be a finite POMDP model with well shaped tables,
    probability distributions for the transitions, observations and start probabilities, and a horizon.

    Parameters
    ----------
    model : Model
        The model to check.

    Raises
    ------
    ModelShapeError
        If any of the requirements is not met.
    '''
    if not isinstance(model, Model):
        raise ModelShapeError(f"Expected a finite POMDP Model (received: {type(model).__name__})")

    if not isinstance(model.horizon, Horizon):
        raise ModelShapeError("The model has no valid horizon")

    S, A, O = model.state_count, model.action_count, model.observation_count
    expected_shapes = {
        'Transitions': (model.transition_table, (S, A, S)),
        'Observations': (model.observation_table, (S, A, O)),
        'Rewards': (model.immediate_reward_table, (S, A, S, O)),
    }
    for name, (table, shape) in expected_shapes.items():
        if not isinstance(table, np.ndarray) or table.shape != shape:
            raise ModelShapeError(f"{name} table doesnt have the right shape (expected: {shape})")
        if not np.all(np.isfinite(table)):
            raise ModelShapeError(f"{name} table contains undefined or infinite values")

    distributions = {
        'Transitions': (model.transition_table, 2),
        'Observations': (model.observation_table, 2),
        'Start probabilities': (model.start_probabilities, 0),
    }
    for name, (table, axis) in distributions.items():
        if np.any(table < 0):
            raise ModelShapeError(f"{name} contain negative probabilities")
        sums = np.sum(table, axis=axis)
        if not np.allclose(sums, 1.0, atol=PROBABILITY_TOLERANCE):
            raise ModelShapeError(f"{name} probabilities must sum to 1 (found sums between {np.min(sums)} and {np.max(sums)})")
