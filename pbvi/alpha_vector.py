from typing import Union

import numpy as np


class AlphaVector:
    '''
    A class to represent an Alpha Vector, a vector representing a plane in |S| dimension for POMDP models.
    The states not explicitly set have a value of 0.

    ...

    Parameters
    ----------
    values: np.ndarray
        The actual vector with the value for each state.
    action: int, optional
        The action associated with the vector. It is None for vectors that are not (yet) the result of a backup.

    Attributes
    ----------
    values : np.ndarray
    action : int or None
    '''
    def __init__(self, values:Union[np.ndarray,list], action:Union[int,None]=None) -> None:
        self.values = np.array(values, dtype=float)
        assert self.values.ndim == 1, f"Alpha vector must be a 1D vector (received shape: {self.values.shape})"
        self.action = None if action is None else int(action)


    @classmethod
    def zeros(cls, state_count:int, action:Union[int,None]=None) -> 'AlphaVector':
        '''
        Function to create an alpha vector with a value of 0 for every state.
        '''
        return cls(np.zeros(state_count), action)


    def __len__(self) -> int:
        return self.values.shape[0]


    def set(self, s:int, value:float) -> None:
        '''
        Function to set the value of the vector for state s.
        '''
        self.values[s] = value


    def get(self, s:int) -> float:
        '''
        Function to get the value of the vector for state s.
        '''
        return float(self.values[s])


    def compute_value(self, belief) -> float:
        '''
        Function to compute the value of a belief with this alpha vector: the sum over states of b(s) * alpha(s).

        Parameters
        ----------
        belief : Belief | np.ndarray
            The belief (or belief vector) to evaluate.

        Returns
        -------
        value : float
        '''
        belief_values = belief.values if hasattr(belief, 'values') else np.asarray(belief)
        return float(np.dot(belief_values, self.values))


    def __add__(self, other:'AlphaVector') -> 'AlphaVector':
        return AlphaVector(self.values + other.values, self.action)


    def __sub__(self, other:'AlphaVector') -> 'AlphaVector':
        return AlphaVector(self.values - other.values, self.action)


    def __iadd__(self, other:'AlphaVector') -> 'AlphaVector':
        self.values += other.values
        return self


    def __isub__(self, other:'AlphaVector') -> 'AlphaVector':
        self.values -= other.values
        return self


    def __eq__(self, other:object) -> bool:
        if not isinstance(other, AlphaVector):
            return NotImplemented
        return (self.action == other.action) and np.array_equal(self.values, other.values)


    def __repr__(self) -> str:
        return f'AlphaVector({np.array2string(self.values, precision=4)}, action={self.action})'


    @staticmethod
    def cross_sum(A:list['AlphaVector'], B:list['AlphaVector']) -> list['AlphaVector']:
        '''
        Function to compute the cross-sum (Minkowski sum) of two sets of alpha vectors: every vector of A is added to every vector of B.
        The resulting vectors have no action, it has to be set by the caller.

        Parameters
        ----------
        A : list[AlphaVector]
            The first set of vectors.
        B : list[AlphaVector]
            The second set of vectors.

        Returns
        -------
        result : list[AlphaVector]
            A list of |A|*|B| vectors, the element at position i*|B| + j being A[i] + B[j].
        '''
        if len(A) == 0 or len(B) == 0:
            return []

        A_array = np.array([alpha.values for alpha in A])
        B_array = np.array([alpha.values for alpha in B])

        sums = (A_array[:,None,:] + B_array[None,:,:]).reshape(-1, A_array.shape[1])

        return [AlphaVector(values) for values in sums]
