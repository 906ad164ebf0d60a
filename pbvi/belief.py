from typing import Union

import numpy as np
from matplotlib import pyplot as plt

from pbvi.exceptions import BeliefError, BeliefNormalizationError
from pbvi.model import Model


BELIEF_TOLERANCE = 1e-6
NORMALIZATION_THRESHOLD = 1e-12


class Belief:
    '''
    A class representing a belief in the space of a given model. It is the belief to be in any combination of states:
    eg:
        - In a 2 state POMDP: a belief of (0.5, 0.5) represent the complete ignorance of which state we are in. Where a (1.0, 0.0) belief is the certainty to be in state 0.

    The belief update function has been implemented based on the belief update define in the paper of J. Pineau, G. Gordon, and S. Thrun, 'Point-based approximations for fast POMDP solving'

    A belief is immutable: the array of values is made read-only on creation. Updating a belief always generates a new one.

    ...

    Parameters
    ----------
    model : pbvi.Model
        The model on which the belief applies on.
    values : np.ndarray, optional
        A vector of the probabilities to be in each state of the model. The probabilities must all be positive and sum to 1.
        If not specified, it will be set as the start probabilities of the model.

    Attributes
    ----------
    model : pbvi.Model
    values : np.ndarray
    '''
    def __init__(self, model:Model, values:Union[np.ndarray,list,None]=None):
        assert model is not None
        self.model = model

        if values is None:
            values = model.start_probabilities

        values = np.array(values, dtype=float)
        if values.shape != (model.state_count,):
            raise BeliefError(f"Belief must be of dimension |S| (expected: ({model.state_count},), received: {values.shape})")

        if np.any(values < 0):
            raise BeliefError(f"States probabilities in belief can't be negative (found: {values.min()})")

        prob_sum = np.sum(values)
        if abs(prob_sum - 1.0) > BELIEF_TOLERANCE:
            raise BeliefError(f"States probabilities in belief must sum to 1 (found: {prob_sum})")

        values.flags.writeable = False
        self._values = values


    @classmethod
    def from_mapping(cls, model:Model, mapping:dict) -> 'Belief':
        '''
        Function to build a belief from a mapping of states to probabilities. The states absent of the mapping have a probability of 0.

        Parameters
        ----------
        model : pbvi.Model
            The model on which the belief applies on.
        mapping : dict
            The probabilities keyed by state labels or state indices.

        Returns
        -------
        belief : Belief
        '''
        values = np.zeros(model.state_count)
        for state, probability in mapping.items():
            values[model.state_index(state)] = probability
        return cls(model, values)


    @property
    def values(self) -> np.ndarray:
        '''
        An array of the probability distribution to be in each state.
        '''
        return self._values


    def observation_probabilities(self, a:int) -> np.ndarray:
        '''
        The probabilities of receiving each observation after having taken action a from this belief: P(o | b, a).

        Parameters
        ----------
        a : int
            The action taken.

        Returns
        -------
        probabilities : np.ndarray
            A vector of size |O|.
        '''
        return np.einsum('s,sop->o', self._values, self.model.transitional_observation_table[:,a,:,:])


    def update(self, a:int, o:int) -> 'Belief':
        '''
        Returns a new belief based on this current belief, the most recent action (a) and the most recent observation (o).

        Parameters
        ----------
        a : int
            The most recent action.
        o : int
            The most recent observation.

        Returns
        -------
        new_belief : Belief
            An updated belief

        Raises
        ------
        BeliefNormalizationError
            If the observation o can't be received after taking action a from this belief.
        '''
        return belief_update(self.model, self, a, o)


    def generate_successors(self) -> list['Belief']:
        '''
        Function to generate the set of beliefs that can be reached for each actions and observations available in the model.
        Observations that cannot be received after an action are skipped.

        Returns
        -------
        successor_beliefs : list[Belief]
            The successor beliefs.
        '''
        successor_beliefs = []
        for a in self.model.actions:
            observation_probabilities = self.observation_probabilities(a)
            for o in self.model.observations:
                if observation_probabilities[o] < NORMALIZATION_THRESHOLD:
                    continue
                successor_beliefs.append(self.update(a,o))

        return successor_beliefs


    def random_state(self, rng:Union[np.random.Generator,None]=None) -> int:
        '''
        Returns a random state of the model weighted by the belief probabily.

        Parameters
        ----------
        rng : np.random.Generator, optional
            The random generator to draw from.

        Returns
        -------
        rand_s : int
            A random state.
        '''
        rng = rng if rng is not None else np.random.default_rng()
        rand_s = int(rng.choice(a=self.model.states, p=self._values / np.sum(self._values)))
        return rand_s


    def __eq__(self, other:object) -> bool:
        if not isinstance(other, Belief):
            return NotImplemented
        return (self.model is other.model) and np.array_equal(self._values, other._values)


    def __hash__(self) -> int:
        return hash(self._values.tobytes())


    def __repr__(self) -> str:
        return f'Belief({np.array2string(self._values, precision=4)})'


def belief_update(model:Model, belief:Belief, a:int, o:int) -> Belief:
    '''
    Function to compute the bayesian update of a belief after action a is taken and observation o is received:
    b'(s_p) is proportional to O(a, s_p, o) * sum_s T(s, a, s_p) * b(s).

    Parameters
    ----------
    model : pbvi.Model
        The model the belief applies on.
    belief : Belief
        The belief before the action is taken.
    a : int
        The action taken.
    o : int
        The observation received.

    Returns
    -------
    new_belief : Belief
        The updated belief.

    Raises
    ------
    BeliefNormalizationError
        If observation o has a null probability to be received (normalizing constant below 1e-12).
    '''
    new_state_probabilities = np.einsum('s,sp->p', belief.values, model.transitional_observation_table[:,a,o,:])

    # Normalization
    normalizer = np.sum(new_state_probabilities)
    if normalizer < NORMALIZATION_THRESHOLD:
        raise BeliefNormalizationError(f"Observation {model.observation_labels[o]} can't be received after action {model.action_labels[a]} from {belief} (probability: {normalizer})")

    return Belief(model, new_state_probabilities / normalizer)


def random_belief(model:Model, rng:Union[np.random.Generator,None]=None) -> Belief:
    '''
    Function to draw a belief uniformly at random on the probability simplex of the states of a model.
    |S|-1 uniform numbers are sorted and bounded by 0 and 1, the belief is made of the gaps between consecutive numbers.

    Parameters
    ----------
    model : pbvi.Model
        The model on which the belief applies on.
    rng : np.random.Generator, optional
        The random generator to draw from.

    Returns
    -------
    belief : Belief
        A random belief.
    '''
    rng = rng if rng is not None else np.random.default_rng()

    cuts = np.sort(rng.random(model.state_count - 1))
    values = np.diff(np.concatenate(([0.0], cuts, [1.0])))

    return Belief(model, values)


class BeliefSet:
    '''
    Class to represent a set of beliefs with regard to a POMDP model.
    It has the purpose to store the beliefs in numpy array format and be able to conver it to a list of Belief class objects.
    The set is immutable, adding beliefs generates a new set.
    This class also provides the option to display the beliefs when operating on a 2 state model with the plot() function.

    ...

    Parameters
    ----------
    model : pbvi.Model
        The model on which the beliefs apply.
    beliefs : list[Belief] | np.ndarray
        The actual set of beliefs.

    Attributes
    ----------
    model : pbvi.Model
    belief_array : np.ndarray
        A 2D array of shape N x S of N belief vectors.
    belief_list : list[Belief]
        A list of N Belief object.
    '''
    def __init__(self, model:Model, beliefs:Union[list[Belief],np.ndarray]) -> None:
        self.model = model

        if isinstance(beliefs, (list, tuple)):
            if not all(b.values.shape == (model.state_count,) for b in beliefs):
                raise BeliefError(f"Beliefs in belief list provided dont all have shape ({model.state_count},)")
            self._belief_list = list(beliefs)
        else:
            beliefs = np.array(beliefs, dtype=float)
            if beliefs.ndim != 2 or beliefs.shape[1] != model.state_count:
                raise BeliefError(f"Belief array provided doesnt have the right shape (expected (-,{model.state_count}), received {beliefs.shape})")
            self._belief_list = [Belief(model, belief_values) for belief_values in beliefs]

        self._belief_array = None


    @property
    def belief_array(self) -> np.ndarray:
        '''
        A matrix of size N x S containing N belief vectors.
        '''
        if self._belief_array is None:
            if len(self._belief_list) == 0:
                self._belief_array = np.zeros((0, self.model.state_count))
            else:
                self._belief_array = np.array([b.values for b in self._belief_list])
            self._belief_array.flags.writeable = False
        return self._belief_array


    @property
    def belief_list(self) -> list[Belief]:
        '''
        A list of Belief objects.
        '''
        return list(self._belief_list)


    def union(self, beliefs:Union['BeliefSet',list[Belief]]) -> 'BeliefSet':
        '''
        Returns a new belief set made of the beliefs of this set followed by the beliefs given.

        Parameters
        ----------
        beliefs : BeliefSet | list[Belief]
            The beliefs to append.

        Returns
        -------
        belief_set : BeliefSet
        '''
        other_list = beliefs.belief_list if isinstance(beliefs, BeliefSet) else list(beliefs)
        return BeliefSet(self.model, self._belief_list + other_list)


    def generate_all_successors(self) -> 'BeliefSet':
        '''
        Function to generate the successors beliefs of all the beliefs in the belief set.

        Returns
        -------
        all_successors : BeliefSet
            All successors of all beliefs in the belief set.
        '''
        all_successors = []
        for belief in self._belief_list:
            all_successors.extend(belief.generate_successors())
        return BeliefSet(self.model, all_successors)


    def __len__(self) -> int:
        return len(self._belief_list)


    def __iter__(self):
        return iter(self._belief_list)


    def __getitem__(self, index:int) -> Belief:
        return self._belief_list[index]


    def plot(self, size:int=15) -> None:
        '''
        Function to plot the beliefs in the belief set.
        Note: Only works for 2-state beliefs.

        Parameters
        ----------
        size : int, default=15
            The figure size and general scaling factor
        '''
        assert self.model.state_count == 2, "Can't plot for models with state count other than 2"

        beliefs_x = self.belief_array[:,1]

        plt.figure(figsize=(size, max([int(size/7),1])))
        plt.scatter(beliefs_x, np.zeros(beliefs_x.shape[0]), c=list(range(beliefs_x.shape[0])), cmap='Blues')
        ax = plt.gca()
        ax.get_yaxis().set_visible(False)

        # Set title and ax-label
        ax.set_title('Set of beliefs')
        ax.set_xlabel('Belief space')

        # X-axis setting
        ticks = [0,0.25,0.5,0.75,1]
        x_ticks = [str(t) for t in ticks]
        x_ticks[0] = str(self.model.state_labels[0])
        x_ticks[-1] = str(self.model.state_labels[1])

        plt.xticks(ticks, x_ticks)
        plt.show()
