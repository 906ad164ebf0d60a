from matplotlib import colors, patches
from matplotlib import pyplot as plt
from scipy.optimize import Bounds, LinearConstraint, milp
from scipy.spatial.distance import cdist
from typing import Self, Union

import numpy as np

from pbvi.alpha_vector import AlphaVector
from pbvi.exceptions import PolicyError
from pbvi.model import Model


COLOR_LIST = [{
    'name': item.replace('tab:',''),
    'id': item,
    'hex': value
    } for item, value in colors.TABLEAU_COLORS.items()]

DOMINATION_MARGIN = 1e-9


class ValueFunction:
    '''
    Class representing a set of AlphaVectors (a Gamma set). One such set approximates the value function of the POMDP model.
    The order of the vectors is kept: it is the order in which they were appended and it decides ties when looking for the best vector at a belief.

    ...

    Parameters
    ----------
    model: pbvi.Model
        The model the value function is associated with.
    alpha_vectors: list[AlphaVector], optional
        The alpha vectors composing the value function, if none are provided, it will be empty to start with and AlphaVectors can be appended.

    Attributes
    ----------
    model : pbvi.Model
    alpha_vector_list : list[AlphaVector]
    alpha_vector_array : np.ndarray
        A matrix of size N x S of the N vectors of the value function.
    actions : list
        The N actions associated to the vectors.
    '''
    def __init__(self, model:Model, alpha_vectors:Union[list[AlphaVector],None]=None):
        self.model = model
        self._vector_list = []
        self._vector_array = None

        if alpha_vectors is not None:
            self.extend(alpha_vectors)


    @property
    def alpha_vector_list(self) -> list[AlphaVector]:
        '''
        The list of AlphaVector objects making up the value function.
        '''
        return list(self._vector_list)


    @property
    def alpha_vector_array(self) -> np.ndarray:
        '''
        A matrix of size N x S, containing all the alpha vectors making up the value function. (N is the number of alpha vectors and S the amount of states in the model)
        '''
        if self._vector_array is None:
            if len(self._vector_list) == 0:
                self._vector_array = np.zeros((0, self.model.state_count))
            else:
                self._vector_array = np.array([v.values for v in self._vector_list])
        return self._vector_array


    @property
    def actions(self) -> list:
        '''
        A list of N actions corresponding to the N alpha vectors making up the value function.
        '''
        return [v.action for v in self._vector_list]


    def __len__(self) -> int:
        return len(self._vector_list)


    def __iter__(self):
        return iter(list(self._vector_list))


    def __getitem__(self, index:int) -> AlphaVector:
        return self._vector_list[index]


    def append(self, alpha_vector:AlphaVector) -> None:
        '''
        Function to add an alpha vector to the value function.
        '''
        # Make sure size is correct
        assert alpha_vector.values.shape[0] == self.model.state_count, f"Vector to add to value function doesn't have the right size (received: {alpha_vector.values.shape[0]}, expected: {self.model.state_count})"

        self._vector_list.append(alpha_vector)
        self._vector_array = None


    def extend(self, alpha_vectors:list[AlphaVector]) -> None:
        '''
        Function to add a list of alpha vectors to the value function.
        '''
        for alpha_vector in alpha_vectors:
            self.append(alpha_vector)


    def copy(self) -> Self:
        '''
        Returns a new value function with copies of the alpha vectors of this one.
        '''
        return ValueFunction(self.model, [AlphaVector(v.values.copy(), v.action) for v in self._vector_list])


    def values_at(self, beliefs) -> np.ndarray:
        '''
        Function to evaluate every alpha vector at one or more beliefs.

        Parameters
        ----------
        beliefs : Belief | BeliefSet | np.ndarray
            A belief, a belief set or an array of belief vectors (1D or 2D).

        Returns
        -------
        values : np.ndarray
            A vector of size N for a single belief or a matrix B x N for multiple beliefs.
        '''
        if hasattr(beliefs, 'belief_array'):
            belief_array = beliefs.belief_array
        elif hasattr(beliefs, 'values'):
            belief_array = beliefs.values
        else:
            belief_array = np.asarray(beliefs)

        return np.matmul(belief_array, self.alpha_vector_array.T)


    def best_vector(self, belief) -> AlphaVector:
        '''
        Function to get the alpha vector maximizing the value at a belief. In case of ties, the first vector is returned.

        Parameters
        ----------
        belief : Belief | np.ndarray
            The belief to evaluate.

        Returns
        -------
        best_vector : AlphaVector

        Raises
        ------
        PolicyError
            If the value function is empty.
        '''
        if len(self._vector_list) == 0:
            raise PolicyError("Value function is empty, no best vector can be found")
        return self._vector_list[int(np.argmax(self.values_at(belief)))]


    def max_value(self, belief) -> float:
        '''
        The value of a belief under this value function: the maximum over the alpha vectors of the value at the belief.
        '''
        return self.best_vector(belief).compute_value(belief)


    def best_action(self, belief) -> int:
        '''
        Function to get the action of the best alpha vector at a belief.

        Raises
        ------
        PolicyError
            If the value function is empty or if the best vector has no action.
        '''
        best = self.best_vector(belief)
        if best.action is None:
            raise PolicyError("Best alpha vector at the belief has no action associated to it")
        return best.action


    def prune(self, level:int=1) -> Self:
        '''
        Function returning a new value function with the set of alpha vector composing it being it pruned.
        The pruning is as thorough as the level:
            - 0: No pruning, returns a value function with the alpha vector set being an exact copy of the current one.
            - 1: Simple deduplication of the alpha vectors, the first occurence is kept.
            - 2: 1+ Check of absolute domination (check if dominated at each state).
            - 3: 2+ Solves Linear Programming problem for each alpha vector to see if it is dominated by combinations of other vectors.

        Note that the higher the level, the heavier the time impact will be.

        Parameters
        ----------
        level : int, default=1
            Between 0 and 3, how thorough the alpha vector pruning should be.

        Returns
        -------
        new_value_function : ValueFunction
            A new value function with a pruned set of alpha vectors.
        '''
        if level < 1:
            return self.copy()

        # Level 1 pruning: Check for duplicates
        L = {}
        for alpha_vector in self._vector_list:
            L.setdefault(alpha_vector.values.tobytes(), alpha_vector)
        alpha_set = list(L.values())

        # Level 2 pruning: Check for absolute domination
        if level >= 2 and len(alpha_set) > 1:
            alpha_vector_array = np.array([v.values for v in alpha_set])
            X = cdist(alpha_vector_array, alpha_vector_array, metric=(lambda a,b:(a <= b).all() and not (a == b).all())).astype(bool)
            non_dominated_vector_indices = np.invert(X).all(axis=1)

            alpha_set = [v for v, keep in zip(alpha_set, non_dominated_vector_indices) if keep]

        # Level 3 pruning: LP to check for more complex domination
        if level >= 3 and len(alpha_set) > 1:
            state_count = self.model.state_count
            pruned_alphas = []

            # Variables: delta followed by the belief, delta is maximized
            c = np.concatenate([np.array([-1.0]), np.zeros(state_count)])
            belief_constraint = LinearConstraint(np.concatenate([np.array([0.0]), np.ones(state_count)]), 1, 1)
            bounds = Bounds(np.concatenate([np.array([-np.inf]), np.zeros(state_count)]),
                            np.concatenate([np.array([np.inf]), np.ones(state_count)]))

            for i, alpha_vect in enumerate(alpha_set):
                other_alphas = pruned_alphas + alpha_set[(i+1):]
                if len(other_alphas) == 0:
                    pruned_alphas.append(alpha_vect)
                    continue

                # Alpha vector contraints: b.(alpha - alpha') - delta >= 0
                differences = alpha_vect.values[None,:] - np.array([v.values for v in other_alphas])
                A = np.c_[-np.ones(len(other_alphas)), differences]
                alpha_constraints = LinearConstraint(A, 0, np.inf)

                # Solve problem
                res = milp(c=c, constraints=[alpha_constraints, belief_constraint], bounds=bounds)

                # Check if dominated
                is_dominated = res.success and (res.x[0] <= DOMINATION_MARGIN)
                if not is_dominated:
                    pruned_alphas.append(alpha_vect)

            alpha_set = pruned_alphas

        return ValueFunction(self.model, alpha_set)


    def plot(self, size:int=5, belief_set=None) -> None:
        '''
        Function to plot out the value function for 2-state models.

        Parameters
        ----------
        size : int, default=5
            The actual plot scale.
        belief_set : BeliefSet, optional
            A set of belief to plot the belief points that were explored.
        '''
        assert len(self) > 0, "Value function is empty, plotting is impossible..."
        assert self.model.state_count == 2, "Value function plotting only available for models of 2 states."

        x = np.linspace(0, 1, 100)

        plt.figure(figsize=(int(size*1.5),size))
        grid_spec = {'height_ratios': ([1] if belief_set is None else [19,1])}
        _, ax = plt.subplots((2 if belief_set is not None else 1),1,sharex=True,gridspec_kw=grid_spec)

        # Vector plotting
        alpha_vects = self.alpha_vector_array

        m = alpha_vects[:,1] - alpha_vects[:,0]
        m = m.reshape(m.shape[0],1)

        x = x.reshape((1,x.shape[0])).repeat(m.shape[0],axis=0)
        y = (m*x) + alpha_vects[:,0].reshape(m.shape[0],1)

        ax1 = ax[0] if belief_set is not None else ax
        for i, alpha in enumerate(self._vector_list):
            color = 'black' if alpha.action is None else COLOR_LIST[alpha.action % len(COLOR_LIST)]['id']
            ax1.plot(x[i,:], y[i,:], color=color)

        # X-axis setting
        ticks = [0,0.25,0.5,0.75,1]
        x_ticks = [str(t) for t in ticks]
        x_ticks[0] = str(self.model.state_labels[0])
        x_ticks[-1] = str(self.model.state_labels[1])

        ax1.set_xticks(ticks, x_ticks)

        # Action legend
        proxy = [patches.Rectangle((0,0),1,1,fc = COLOR_LIST[a % len(COLOR_LIST)]['id']) for a in self.model.actions]
        ax1.legend(proxy, [str(label) for label in self.model.action_labels])

        # Belief plotting
        if belief_set is not None:
            beliefs_x = belief_set.belief_array[:,1]
            ax[1].scatter(beliefs_x, np.zeros(beliefs_x.shape[0]), c='red')
            ax[1].get_yaxis().set_visible(False)
            ax[1].axhline(0, color='black')

        plt.show()
