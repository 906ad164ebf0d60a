from typing import Union

import numpy as np

from pbvi.alpha_vector import AlphaVector
from pbvi.belief import Belief, BeliefSet
from pbvi.model import Model
from pbvi.value_function import ValueFunction


def compute_gamma_a_star(model:Model) -> ValueFunction:
    '''
    Function to compute the reward-only alpha vectors, one per action: the reward expected from each state when taking the action.
    gamma_a_star(s) = sum_s_p T(s, a, s_p) * sum_o O(a, s_p, o) * R(s, a, s_p, o)
    These vectors never change during a solve, they can be computed once.

    Parameters
    ----------
    model : pbvi.Model
        The model to compute the vectors for.

    Returns
    -------
    gamma_a_star : ValueFunction
        A value function of |A| vectors, the vector at position a being tagged with action a.
    '''
    return ValueFunction(model, [AlphaVector(model.expected_rewards_table[:,a], a) for a in model.actions])


def backproject(model:Model, value_function:ValueFunction, discount:float) -> np.ndarray:
    '''
    Function to project every alpha vector of a value function back through the transition and observation functions, for every action and observation.
    g[a,o,v](s) = discount * sum_s_p T(s, a, s_p) * O(a, s_p, o) * alpha_v(s_p)

    Parameters
    ----------
    model : pbvi.Model
        The model to run the projection on.
    value_function : ValueFunction
        The N alpha vectors to project.
    discount : float
        The discount factor applied to the projected vectors.

    Returns
    -------
    projections : np.ndarray
        An array of shape A x O x N x S.
    '''
    assert len(value_function) > 0, "Alpha vectors can't be projected from an empty value function"
    return discount * np.einsum('saop,vp->aovs', model.transitional_observation_table, value_function.alpha_vector_array)


def cross_sum_backup(model:Model,
                     gamma_a_star:ValueFunction,
                     value_function:ValueFunction,
                     action:int,
                     discount:float,
                     prune_level:int=0,
                     projections:Union[np.ndarray,None]=None
                     ) -> list[AlphaVector]:
    '''
    The exact backup of a value function for a given action.
    The set of projections of every vector is built for each observation and these sets are cross-summed together and with the reward-only vector of the action.
    The resulting set has |V|^|O| vectors before any pruning.

    Parameters
    ----------
    model : pbvi.Model
        The model on which to run the backup on.
    gamma_a_star : ValueFunction
        The reward-only vectors (see compute_gamma_a_star).
    value_function : ValueFunction
        The value function to back up.
    action : int
        The action to back up.
    discount : float
        The discount factor.
    prune_level : int, default=0
        If higher than 0, the intermediate cross-sums are pruned at this level after each observation is added.
    projections : np.ndarray, optional
        The backprojection of the value function, if it was already computed.

    Returns
    -------
    gamma_a : list[AlphaVector]
        The backed up vectors, all tagged with the action.
    '''
    if projections is None:
        projections = backproject(model, value_function, discount)

    gamma_a = [AlphaVector(gamma_a_star[action].values.copy())]
    for o in model.observations:
        gamma_a_o = [AlphaVector(projection) for projection in projections[action, o]]
        gamma_a = AlphaVector.cross_sum(gamma_a, gamma_a_o)

        if prune_level > 0:
            gamma_a = ValueFunction(model, gamma_a).prune(prune_level).alpha_vector_list

    for alpha_vector in gamma_a:
        alpha_vector.action = int(action)

    return gamma_a


def point_based_backup(model:Model,
                       gamma_a_star:ValueFunction,
                       value_function:ValueFunction,
                       action:int,
                       belief:Belief,
                       discount:float,
                       projections:Union[np.ndarray,None]=None
                       ) -> AlphaVector:
    '''
    The point-based backup of a value function at a belief for a given action.
    For each observation, the single vector reaching the highest value at the successor belief is chosen and its projection is used.
    The value of a projection at the belief is the value of the vector at the successor belief scaled by the probability of the observation,
    so the projections can be ranked at the belief itself and observations of null probability need no belief update.

    Parameters
    ----------
    model : pbvi.Model
        The model on which to run the backup on.
    gamma_a_star : ValueFunction
        The reward-only vectors (see compute_gamma_a_star).
    value_function : ValueFunction
        The value function to back up.
    action : int
        The action to back up.
    belief : Belief
        The belief at which to back up.
    discount : float
        The discount factor.
    projections : np.ndarray, optional
        The backprojection of the value function, if it was already computed.

    Returns
    -------
    alpha_vector : AlphaVector
        The backed up vector, tagged with the action.
    '''
    if projections is None:
        projections = backproject(model, value_function, discount)

    values = gamma_a_star[action].values.copy()
    for o in model.observations:
        # Ties are resolved by the first vector of the value function
        best_v = int(np.argmax(np.matmul(projections[action, o], belief.values)))
        values += projections[action, o, best_v]

    return AlphaVector(values, action)


def backup_belief(model:Model,
                  gamma_a_star:ValueFunction,
                  value_function:ValueFunction,
                  belief:Belief,
                  discount:float,
                  projections:Union[np.ndarray,None]=None
                  ) -> AlphaVector:
    '''
    Function to compute the point-based backup at a belief for every action and return the one with the highest value at the belief.
    Ties are resolved by the first action in the order of the model.

    Parameters
    ----------
    model : pbvi.Model
        The model on which to run the backup on.
    gamma_a_star : ValueFunction
        The reward-only vectors (see compute_gamma_a_star).
    value_function : ValueFunction
        The value function to back up.
    belief : Belief
        The belief at which to back up.
    discount : float
        The discount factor.
    projections : np.ndarray, optional
        The backprojection of the value function, if it was already computed.

    Returns
    -------
    alpha_vector : AlphaVector
        The best backed up vector.
    '''
    if projections is None:
        projections = backproject(model, value_function, discount)

    candidates = [point_based_backup(model, gamma_a_star, value_function, a, belief, discount, projections) for a in model.actions]
    candidate_values = np.array([alpha_vector.compute_value(belief) for alpha_vector in candidates])

    return candidates[int(np.argmax(candidate_values))]


def backup(model:Model,
           belief_set:BeliefSet,
           value_function:ValueFunction,
           gamma_a_star:ValueFunction,
           discount:float
           ) -> ValueFunction:
    '''
    This function has purpose to update the set of alpha vectors. It does so in 3 steps:
    1. It creates projections from each alpha vector for each possible action and each possible observation
    2. It collapses this set of generated alpha vectors by taking, for each belief, action and observation, the projection with the highest value at the belief and summing them with the reward-only vector of the action.
    3. Then it further collapses the set to take the best alpha vector and action per belief
    In the end we have a set of alpha vectors as large as the amount of beliefs, in the order of the beliefs.

    The value function given is only read, a new one is returned.
    The ties are resolved as in backup_belief: first vector per observation, first action per belief.

    Parameters
    ----------
    model : pbvi.Model
        The model on which to run the backup method on.
    belief_set : BeliefSet
        The belief set to use to generate the new alpha vectors with.
    value_function : ValueFunction
        The alpha vectors to generate the new set from.
    gamma_a_star : ValueFunction
        The reward-only vectors (see compute_gamma_a_star).
    discount : float
        The discount factor.

    Returns
    -------
    new_value_function : ValueFunction
        A value function with one alpha vector per belief.
    '''
    # Step 1
    gamma_a_o_t = backproject(model, value_function, discount) # aovs

    # Step 2
    belief_array = belief_set.belief_array # bs
    best_alpha_ind = np.argmax(np.einsum('bs,aovs->baov', belief_array, gamma_a_o_t), axis=3) # bao

    best_alphas_per_o = gamma_a_o_t[model.actions[None,:,None], model.observations[None,None,:], best_alpha_ind] # baos

    alpha_a = gamma_a_star.alpha_vector_array[None,:,:] + np.sum(best_alphas_per_o, axis=2) # as + bas

    # Step 3
    best_actions = np.argmax(np.einsum('bas,bs->ba', alpha_a, belief_array), axis=1)
    alpha_vectors = np.take_along_axis(alpha_a, best_actions[:,None,None], axis=1)[:,0,:]

    return ValueFunction(model, [AlphaVector(values, action) for values, action in zip(alpha_vectors, best_actions)])
