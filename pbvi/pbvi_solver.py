from datetime import datetime
from enum import Enum
from scipy.spatial.distance import cdist
from tqdm.auto import trange
from typing import Callable, Union

import math

import numpy as np

from pbvi.alpha_vector import AlphaVector
from pbvi.backup import backup, compute_gamma_a_star
from pbvi.belief import Belief, BeliefSet, NORMALIZATION_THRESHOLD, random_belief
from pbvi.exceptions import BeliefError, ConfigurationError, SolveCancelled
from pbvi.history import SolverHistory
from pbvi.logger import log
from pbvi.model import Model, validate_model
from pbvi.policy import PolicyAlphaVectors
from pbvi.value_function import ValueFunction


MIN_REWARD_RANGE = 1e-6


class ExpansionRule(Enum):
    '''
    The strategies available to grow the belief set between rounds of updates:
        - NONE: The belief set is not grown.
        - RANDOM_BELIEF_SELECTION (rbs): Beliefs are drawn uniformly on the simplex.
        - STOCHASTIC_SIMULATION_RANDOM_ACTION (ssra): A random action is simulated from every belief.
        - STOCHASTIC_SIMULATION_GREEDY_ACTION (ssga): The best action is simulated from every belief, a random one with probability 0.1.
        - STOCHASTIC_SIMULATION_EXPLORATORY_ACTION (ssea): Every action is simulated and the successor furthest from the beliefs added in the round is kept.
        - GREEDY_ERROR_REDUCTION (ger): The successor with the highest expected error bound is kept.
    '''
    NONE = 'none'
    RANDOM_BELIEF_SELECTION = 'rbs'
    STOCHASTIC_SIMULATION_RANDOM_ACTION = 'ssra'
    STOCHASTIC_SIMULATION_GREEDY_ACTION = 'ssga'
    STOCHASTIC_SIMULATION_EXPLORATORY_ACTION = 'ssea'
    GREEDY_ERROR_REDUCTION = 'ger'


def compute_update_iterations(model:Model, epsilon:float) -> int:
    '''
    Function to compute the amount of updates needed for the value function to be within epsilon of its fixed point,
    based on the contraction rate of the discounted bellman operator: floor((ln(epsilon) - ln(Rmax - Rmin)) / ln(gamma)).
    The reward range is bounded below by 1e-6 and the result by 1.

    Parameters
    ----------
    model : pbvi.Model
        The model to solve, its discount factor must be strictly between 0 and 1.
    epsilon : float
        The tolerance, must be positive.

    Returns
    -------
    updates : int
        The amount of updates.
    '''
    discount = model.horizon.discount
    if not (0.0 < discount < 1.0):
        raise ConfigurationError(f"The amount of updates can only be computed for a discount factor strictly between 0 and 1 (received: {discount})")
    if epsilon <= 0:
        raise ConfigurationError(f"Tolerance epsilon must be positive (received: {epsilon})")

    reward_range = max(model.max_reward - model.min_reward, MIN_REWARD_RANGE)
    updates = math.floor((math.log(epsilon) - math.log(reward_range)) / math.log(discount))

    return max(int(updates), 1)


class PBVI_Solver:
    '''
    The Point-Based Value Iteration solver for POMDP Models. It works in two steps, first the backup step that updates the alpha vector set that approximates the value function.
    Then, the expand function that expands the belief set.

    The various expand functions and the backup function have been implemented based on the pseudocodes found the paper from J. Pineau, G. Gordon, and S. Thrun, 'Point-based approximations for fast POMDP solving'

    For a finite horizon model, the belief set is the set of initial beliefs and it is backed up once per stage.
    For an infinite horizon model, the belief set is backed up 'updates' times and then expanded, this 'expansions' times.

    ...

    Parameters
    ----------
    expansion_rule : ExpansionRule or str, default='rbs'
        The strategy to use to expand the belief set.
    updates : int, default=1
        How many times the alpha vector set is updated between expansions. Values lower than 1 are set to 1.
    expansions : int, default=1
        How many times the belief set is expanded. Values lower than 1 are set to 1.
    seed : int, optional
        The seed of the random generator used by the expansion rules.
    history_tracking_level : int, default=1
        How thorough the tracking of the solving process should be. (0: Nothing; 1: Times and sizes of belief sets and value function; 2: The actual value functions and beliefs sets)
    print_progress : bool, default=True
        Whether or not to print out the progress of the solving process.

    Attributes
    ----------
    expansion_rule : ExpansionRule
    updates : int
    expansions : int
    initial_beliefs : list[Belief]
        The beliefs the belief set starts with.
    belief_set : BeliefSet
        The belief set at the end of the last successful solve.
    history : SolverHistory
        The history of the last successful solve.
    '''
    GREEDY_EPSILON = 0.1

    def __init__(self,
                 expansion_rule:Union[ExpansionRule,str]='rbs',
                 updates:int=1,
                 expansions:int=1,
                 seed:Union[int,None]=None,
                 history_tracking_level:int=1,
                 print_progress:bool=True
                 ):
        self.expansion_rule = expansion_rule
        self.updates = updates
        self.expansions = expansions

        if history_tracking_level not in (0, 1, 2):
            raise ConfigurationError(f"History tracking level must be 0, 1 or 2 (received: {history_tracking_level})")
        self.history_tracking_level = history_tracking_level
        self.print_progress = print_progress

        self.seed = seed
        self._rng = np.random.default_rng(seed)

        self._initial_beliefs = []
        self._belief_set = None
        self.history = None


    # ------------------------- Configuration -------------------------
    @property
    def expansion_rule(self) -> ExpansionRule:
        return self._expansion_rule


    @expansion_rule.setter
    def expansion_rule(self, rule:Union[ExpansionRule,str]) -> None:
        try:
            self._expansion_rule = ExpansionRule(rule)
        except ValueError:
            raise ConfigurationError(f"Unknown expansion rule '{rule}' (available: {[r.value for r in ExpansionRule]})")


    @property
    def updates(self) -> int:
        return self._updates


    @updates.setter
    def updates(self, updates:int) -> None:
        self._updates = self._check_count(updates, 'updates')


    @property
    def expansions(self) -> int:
        return self._expansions


    @expansions.setter
    def expansions(self, expansions:int) -> None:
        self._expansions = self._check_count(expansions, 'expansions')


    def _check_count(self, count:int, name:str) -> int:
        if isinstance(count, bool) or not isinstance(count, (int, np.integer)):
            raise ConfigurationError(f"The amount of {name} must be an integer (received: {count})")
        if count < 0:
            raise ConfigurationError(f"The amount of {name} can't be negative (received: {count})")
        return max(int(count), 1)


    def compute_update_iterations(self, model:Model, epsilon:float) -> int:
        '''
        Function to set the amount of updates between expansions from a tolerance epsilon (see the compute_update_iterations function).

        Parameters
        ----------
        model : pbvi.Model
            The model to solve.
        epsilon : float
            The tolerance.

        Returns
        -------
        updates : int
            The new amount of updates.
        '''
        self.updates = compute_update_iterations(model, epsilon)
        return self.updates


    # ------------------------- Beliefs -------------------------
    def add_initial_belief(self, belief:Belief) -> None:
        '''
        Function to add a belief to the beliefs the belief set starts with.
        '''
        if not isinstance(belief, Belief):
            raise BeliefError(f"Initial beliefs must be Belief objects (received: {type(belief).__name__})")
        self._initial_beliefs.append(belief)


    def set_initial_beliefs(self, beliefs:list[Belief]) -> None:
        '''
        Function to replace the beliefs the belief set starts with.
        '''
        if not all(isinstance(belief, Belief) for belief in beliefs):
            raise BeliefError("Initial beliefs must be Belief objects")
        self._initial_beliefs = list(beliefs)


    @property
    def initial_beliefs(self) -> list[Belief]:
        return list(self._initial_beliefs)


    @property
    def belief_set(self) -> Union[BeliefSet,None]:
        '''
        The belief set at the end of the last successful solve, None if no solve succeeded yet.
        '''
        return self._belief_set


    def reset(self) -> None:
        '''
        Function to clear the initial beliefs, the belief set and the history and to restart the random generator from the seed.
        '''
        self._initial_beliefs = []
        self._belief_set = None
        self.history = None
        self._rng = np.random.default_rng(self.seed)


    # ------------------------- Expansion -------------------------
    def expand_rbs(self, model:Model, belief_set:BeliefSet) -> BeliefSet:
        '''
        Random Belief Selection.
        A belief drawn uniformly on the probability simplex is added for every belief of the belief set, the current beliefs are not used.

        Parameters
        ----------
        model : pbvi.Model
            The POMDP model on which to expand the belief set on.
        belief_set : BeliefSet
            List of beliefs to expand on.

        Returns
        -------
        belief_set_new : BeliefSet
            Union of the belief_set and the new beliefs.
        '''
        new_beliefs = [random_belief(model, self._rng) for _ in range(len(belief_set))]
        return belief_set.union(new_beliefs)


    def expand_ssra(self, model:Model, belief_set:BeliefSet) -> BeliefSet:
        '''
        Stochastic Simulation with Random Action.
        Simulates running a single-step forward from the beliefs in the "belief_set".
        The step forward is taking assuming we are in a random state (weighted by the belief) and taking a random action leading to a state s_p and a observation o.
        From this action a and observation o we can update our belief.

        Parameters
        ----------
        model : pbvi.Model
            The POMDP model on which to expand the belief set on.
        belief_set : BeliefSet
            List of beliefs to expand on.

        Returns
        -------
        belief_set_new : BeliefSet
            Union of the belief_set and the expansions of the beliefs in the belief_set
        '''
        new_beliefs = []
        for b in belief_set:
            a = int(self._rng.choice(model.actions))
            new_beliefs.append(self._simulate(model, b, a))

        return belief_set.union(new_beliefs)


    def expand_ssga(self, model:Model, belief_set:BeliefSet, value_function:ValueFunction) -> BeliefSet:
        '''
        Stochastic Simulation with Greedy Action.
        Simulates running a single-step forward from the beliefs in the "belief_set".
        The action taken is the best action of the value function at the belief, or a random one with probability 0.1.
        These lead to a new state s_p and a observation o from which the belief is updated.

        Parameters
        ----------
        model : pbvi.Model
            The POMDP model on which to expand the belief set on.
        belief_set : BeliefSet
            List of beliefs to expand on.
        value_function : ValueFunction
            Used to find the best action knowing the belief.

        Returns
        -------
        belief_set_new : BeliefSet
            Union of the belief_set and the expansions of the beliefs in the belief_set
        '''
        new_beliefs = []
        for b in belief_set:
            if self._rng.random() < self.GREEDY_EPSILON:
                a = int(self._rng.choice(model.actions))
            else:
                a = value_function.best_action(b)
            new_beliefs.append(self._simulate(model, b, a))

        return belief_set.union(new_beliefs)


    def expand_ssea(self, model:Model, belief_set:BeliefSet) -> BeliefSet:
        '''
        Stochastic Simulation with Exploratory Action.
        Simulates running a step forward for each possible action from a state s, chosen randomly according to the belief probability.
        Of the successor beliefs, the one furthest away (L1 distance) from the closest of the beliefs already added in this expansion is kept,
        meaning it explores the most the belief space. When no belief has been added yet, all successors are at an infinite distance and the first action is kept.

        Parameters
        ----------
        model : pbvi.Model
            The POMDP model on which to expand the belief set on.
        belief_set : BeliefSet
            List of beliefs to expand on.

        Returns
        -------
        belief_set_new : BeliefSet
            Union of the belief_set and the expansions of the beliefs in the belief_set
        '''
        new_beliefs = []
        for b in belief_set:
            best_belief = None
            best_distance = -1.0

            for a in model.actions:
                b_a = self._simulate(model, b, int(a))

                if len(new_beliefs) == 0:
                    distance = np.inf
                else:
                    new_belief_array = np.array([nb.values for nb in new_beliefs])
                    distance = float(np.min(cdist(b_a.values[None,:], new_belief_array, metric='cityblock')))

                if distance > best_distance:
                    best_belief = b_a
                    best_distance = distance

            new_beliefs.append(best_belief)

        return belief_set.union(new_beliefs)


    def expand_ger(self, model:Model, belief_set:BeliefSet, value_function:ValueFunction) -> BeliefSet:
        '''
        Greedy Error Reduction.
        It attempts to choose the believes that will maximize the improvement of the value function by minimizing the error.
        The error at a successor belief b' of a belief b is bounded by the sum over the states of (alpha_bar(s) - alpha(s)) * (b'(s) - b(s)),
        with alpha the best vector at b and alpha_bar(s) being Rmax / (1 - gamma) where b'(s) >= b(s) and Rmin / (1 - gamma) elsewhere.
        For each belief, the action with the highest error expected over the observations is picked, then the observation with the highest weighted error.

        Parameters
        ----------
        model : pbvi.Model
            The POMDP model on which to expand the belief set on.
        belief_set : BeliefSet
            List of beliefs to expand on.
        value_function : ValueFunction
            Used to find the best alpha vectors at the beliefs.

        Returns
        -------
        belief_set_new : BeliefSet
            Union of the belief_set and the expansions of the beliefs in the belief_set
        '''
        discount = model.horizon.discount
        if discount >= 1.0:
            raise ConfigurationError("Greedy error reduction requires a discount factor lower than 1")

        belief_array = belief_set.belief_array

        # Finding the min and max rewards for computation of the epsilon
        r_min = model.min_reward / (1 - discount)
        r_max = model.max_reward / (1 - discount)

        # Computing the probability of the b and doing action a and receiving observation o
        unnormalized_successors = np.einsum('bs,saop->baop', belief_array, model.transitional_observation_table)
        bao_probs = np.sum(unnormalized_successors, axis=3)
        reachable = bao_probs >= NORMALIZATION_THRESHOLD

        # Generation of all successor beliefs, the unreachable ones are left as their source belief
        successor_beliefs = np.where(reachable[:,:,:,None],
                                     unnormalized_successors / np.where(reachable, bao_probs, 1.0)[:,:,:,None],
                                     belief_array[:,None,None,:])

        # Finding the alphas associated with each previous beliefs
        best_alpha = np.argmax(np.matmul(belief_array, value_function.alpha_vector_array.T), axis=1)
        b_alphas = value_function.alpha_vector_array[best_alpha]

        # Difference between beliefs and their successors
        b_diffs = successor_beliefs - belief_array[:,None,None,:]

        # Computing a 'next' alpha vector made of the max and min
        alphas_p = np.where(b_diffs >= 0, r_max, r_min)

        # Difference between alpha vectors and their successors alpha vector
        alphas_diffs = alphas_p - b_alphas[:,None,None,:]

        # Computing epsilon for all successor beliefs
        eps = np.einsum('baos,baos->bao', alphas_diffs, b_diffs)

        # Taking the sumproduct of the probs with the epsilons
        res = np.einsum('bao,bao->ba', bao_probs, eps)

        # Picking the ideal action per belief
        a_stars = np.argmax(res, axis=1)

        # And picking the ideal observations among the reachable ones
        b_indices = np.arange(len(belief_set))
        weighted_eps = np.where(reachable, bao_probs * eps, -np.inf)
        o_stars = np.argmax(weighted_eps[b_indices, a_stars], axis=1)

        # Selecting the successor beliefs
        selected_beliefs = successor_beliefs[b_indices, a_stars, o_stars]

        return belief_set.union([Belief(model, values) for values in selected_beliefs])


    def _simulate(self, model:Model, belief:Belief, a:int) -> Belief:
        s = belief.random_state(self._rng)
        s_p = model.transition(s, a, self._rng)
        o = model.observe(s_p, a, self._rng)
        return belief.update(a, o)


    def expand(self, model:Model, belief_set:BeliefSet, value_function:ValueFunction) -> BeliefSet:
        '''
        Central method to call one of the functions for a particular expansion strategy:
            - Random Belief Selection (rbs)
            - Stochastic Simulation with Random Action (ssra)
            - Stochastic Simulation with Greedy Action (ssga)
            - Stochastic Simulation with Exploratory Action (ssea)
            - Greedy Error Reduction (ger)

        Parameters
        ----------
        model : pbvi.Model
            The model on which to run the belief expansion on.
        belief_set : BeliefSet
            The set of beliefs to expand.
        value_function : ValueFunction
            The current value function, used by the greedy rules.

        Returns
        -------
        belief_set_new : BeliefSet
            The belief set the expansion function returns.
        '''
        rule = self._expansion_rule

        if rule == ExpansionRule.NONE:
            return belief_set

        elif rule == ExpansionRule.RANDOM_BELIEF_SELECTION:
            return self.expand_rbs(model=model, belief_set=belief_set)

        elif rule == ExpansionRule.STOCHASTIC_SIMULATION_RANDOM_ACTION:
            return self.expand_ssra(model=model, belief_set=belief_set)

        elif rule == ExpansionRule.STOCHASTIC_SIMULATION_GREEDY_ACTION:
            return self.expand_ssga(model=model, belief_set=belief_set, value_function=value_function)

        elif rule == ExpansionRule.STOCHASTIC_SIMULATION_EXPLORATORY_ACTION:
            return self.expand_ssea(model=model, belief_set=belief_set)

        elif rule == ExpansionRule.GREEDY_ERROR_REDUCTION:
            return self.expand_ger(model=model, belief_set=belief_set, value_function=value_function)

        raise ConfigurationError(f"Expansion rule {rule} is not implemented")


    def compute_change(self, value_function:ValueFunction, new_value_function:ValueFunction, belief_set:BeliefSet) -> float:
        '''
        Function to compute the change between two value functions.
        It check for each belief, the maximum value and take the max change between believe's value functions.

        Parameters
        ----------
        value_function : ValueFunction
            The first value function to compare.
        new_value_function : ValueFunction
            The second value function to compare.
        belief_set : BeliefSet
            The set of believes to check the values on to compute the max change on.

        Returns
        -------
        max_change : float
            The maximum change between value functions at belief points.
        '''
        if len(belief_set) == 0:
            return 0.0

        # Computing Delta for each beliefs
        max_val_per_belief = np.max(np.matmul(belief_set.belief_array, value_function.alpha_vector_array.T), axis=1)
        new_max_val_per_belief = np.max(np.matmul(belief_set.belief_array, new_value_function.alpha_vector_array.T), axis=1)
        max_change = np.max(np.abs(new_max_val_per_belief - max_val_per_belief))

        return float(max_change)


    # ------------------------- Solving -------------------------
    def solve(self, model:Model, cancel_check:Union[Callable[[], bool],None]=None) -> PolicyAlphaVectors:
        '''
        Main loop of the Point-Based Value Iteration algorithm.
        For a finite horizon of length H, the value function is backed up H times on the initial beliefs, every stage being stored in the policy.
        For an infinite horizon, it consists in 2 steps repeated 'expansions' times, Backup and Expand.
        1. Backup: Updates the alpha vectors based on the current belief set, 'updates' times
        2. Expand: Expands the belief set base with the expansion rule of the solver

        If no initial beliefs were given, the start belief of the model is used.
        The belief set and the history of the solver are only replaced when the solve succeeds.

        Parameters
        ----------
        model : pbvi.Model
            The model to solve.
        cancel_check : Callable, optional
            A function called before every backup, if it returns True the solve is cancelled.

        Returns
        -------
        policy : PolicyAlphaVectors
            The alpha vectors approximating the value function, per stage for a finite horizon.

        Raises
        ------
        ModelShapeError
            If the model can't be solved.
        ConfigurationError
            If the expansion rule can't be used on the model.
        SolveCancelled
            If the cancel_check function returned True.
        '''
        validate_model(model)

        discount = model.horizon.discount
        if (not model.horizon.is_finite) and (self._expansion_rule == ExpansionRule.GREEDY_ERROR_REDUCTION) and discount >= 1.0:
            raise ConfigurationError("Greedy error reduction requires a discount factor lower than 1")

        log(f'Solving {model.state_count}-state model with PBVI ({model.horizon}, expansion rule: {self._expansion_rule.value})')
        solve_start_ts = datetime.now()

        # Initial belief set
        initial_beliefs = self._initial_beliefs if len(self._initial_beliefs) > 0 else [Belief(model)]
        belief_set = BeliefSet(model, [Belief(model, b.values) for b in initial_beliefs])

        # Initial value function
        value_function = ValueFunction(model, [AlphaVector.zeros(model.state_count) for _ in range(len(belief_set))])

        # Reward-only vectors
        gamma_a_star = compute_gamma_a_star(model)

        history = SolverHistory(tracking_level=self.history_tracking_level,
                                model=model,
                                solver_name=f'PBVI ({self._expansion_rule.value})',
                                initial_value_function=value_function,
                                initial_belief_set=belief_set)

        policy = PolicyAlphaVectors(model.horizon)

        if model.horizon.is_finite:
            stage_count = model.horizon.length
            for t in trange(stage_count, desc='Stages') if self.print_progress else range(stage_count):
                value_function = self._backup_step(model, belief_set, value_function, gamma_a_star, discount, history, cancel_check)
                policy.set(value_function, t)

        else:
            for expansion_i in trange(self._expansions, desc='Expansions') if self.print_progress else range(self._expansions):

                # 1: Backup, update value function (alpha vector set)
                for _ in range(self._updates):
                    value_function = self._backup_step(model, belief_set, value_function, gamma_a_star, discount, history, cancel_check)

                # 2: Expand belief set
                start_ts = datetime.now()

                belief_set = self.expand(model=model, belief_set=belief_set, value_function=value_function)

                expand_time = (datetime.now() - start_ts).total_seconds()
                history.add_expand_step(expansion_time=expand_time, belief_set=belief_set)

            policy.set(value_function)

        duration = (datetime.now() - solve_start_ts).total_seconds()
        log(f'    > Done in {duration:.3f}s, {len(belief_set)} beliefs and {len(value_function)} alpha vectors')

        # Promotion of the results
        self._belief_set = belief_set
        self.history = history

        return policy


    def _backup_step(self,
                     model:Model,
                     belief_set:BeliefSet,
                     value_function:ValueFunction,
                     gamma_a_star:ValueFunction,
                     discount:float,
                     history:SolverHistory,
                     cancel_check:Union[Callable[[], bool],None]
                     ) -> ValueFunction:
        if cancel_check is not None and cancel_check():
            log('Solve cancelled')
            raise SolveCancelled("Solve was cancelled before a backup")

        start_ts = datetime.now()

        new_value_function = backup(model, belief_set, value_function, gamma_a_star, discount)

        backup_time = (datetime.now() - start_ts).total_seconds()

        max_change = self.compute_change(value_function, new_value_function, belief_set)
        history.add_backup_step(backup_time, max_change, new_value_function)

        return new_value_function
