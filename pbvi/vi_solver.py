from datetime import datetime
from tqdm.auto import trange
from typing import Callable, Union

import numpy as np

from pbvi.alpha_vector import AlphaVector
from pbvi.backup import backproject, compute_gamma_a_star, cross_sum_backup
from pbvi.exceptions import ConfigurationError, SolveCancelled
from pbvi.history import SolverHistory
from pbvi.logger import log
from pbvi.model import Model, validate_model
from pbvi.policy import PolicyAlphaVectors
from pbvi.value_function import ValueFunction


class VI_Solver:
    '''
    Exact Value Iteration solver for POMDP Models.
    Every iteration backs up the whole value function with the cross-sum backup for each action, the union of the resulting sets is then pruned.
    The sets grow exponentially with the amount of observations so it is only tractable on small models and short horizons.

    ...

    Parameters
    ----------
    iterations : int, default=1
        How many iterations are run for an infinite horizon model. For a finite horizon model, one iteration is run per stage.
    prune_level : int, default=3
        The pruning level applied after each cross-sum and on the union of the backed up sets (see ValueFunction.prune).
    history_tracking_level : int, default=1
        How thorough the tracking of the solving process should be. (0: Nothing; 1: Times and sizes of the value function; 2: The actual value functions)
    print_progress : bool, default=True
        Whether or not to print out the progress of the value iteration process.

    Attributes
    ----------
    iterations : int
    prune_level : int
    history : SolverHistory
        The history of the last successful solve.
    '''
    def __init__(self,
                 iterations:int=1,
                 prune_level:int=3,
                 history_tracking_level:int=1,
                 print_progress:bool=True
                 ):
        if isinstance(iterations, bool) or not isinstance(iterations, (int, np.integer)) or iterations < 0:
            raise ConfigurationError(f"The amount of iterations must be a positive integer (received: {iterations})")
        if prune_level not in (0, 1, 2, 3):
            raise ConfigurationError(f"Prune level must be between 0 and 3 (received: {prune_level})")
        if history_tracking_level not in (0, 1, 2):
            raise ConfigurationError(f"History tracking level must be 0, 1 or 2 (received: {history_tracking_level})")

        self.iterations = max(int(iterations), 1)
        self.prune_level = prune_level
        self.history_tracking_level = history_tracking_level
        self.print_progress = print_progress
        self.history = None


    def backup(self, model:Model, value_function:ValueFunction, gamma_a_star:ValueFunction, discount:float) -> ValueFunction:
        '''
        The exact backup of a value function: the union over the actions of the cross-sum backups, pruned.

        Parameters
        ----------
        model : pbvi.Model
            The model on which to run the backup on.
        value_function : ValueFunction
            The value function to back up.
        gamma_a_star : ValueFunction
            The reward-only vectors.
        discount : float
            The discount factor.

        Returns
        -------
        new_value_function : ValueFunction
        '''
        projections = backproject(model, value_function, discount)

        new_value_function = ValueFunction(model)
        for a in model.actions:
            new_value_function.extend(cross_sum_backup(model, gamma_a_star, value_function, a, discount, self.prune_level, projections))

        return new_value_function.prune(self.prune_level)


    def solve(self, model:Model, cancel_check:Union[Callable[[], bool],None]=None) -> PolicyAlphaVectors:
        '''
        Function to solve a POMDP model using exact Value Iteration.
        The value function starts as a single vector of zeros.
        For a finite horizon of length H, the value function is backed up H times, the backup t being stored at stage t of the policy.
        For an infinite horizon, it is backed up 'iterations' times and the last value function is the policy.

        Parameters
        ----------
        model : pbvi.Model
            The model to solve.
        cancel_check : Callable, optional
            A function called before every backup, if it returns True the solve is cancelled.

        Returns
        -------
        policy : PolicyAlphaVectors
            The alpha vectors of the value function, per stage for a finite horizon.
        '''
        validate_model(model)
        discount = model.horizon.discount

        log(f'Solving {model.state_count}-state model with exact value iteration ({model.horizon})')
        solve_start_ts = datetime.now()

        value_function = ValueFunction(model, [AlphaVector.zeros(model.state_count)])
        gamma_a_star = compute_gamma_a_star(model)

        history = SolverHistory(tracking_level=self.history_tracking_level,
                                model=model,
                                solver_name='Value Iteration',
                                initial_value_function=value_function)

        policy = PolicyAlphaVectors(model.horizon)
        iteration_count = model.horizon.length if model.horizon.is_finite else self.iterations

        for t in trange(iteration_count, desc='Iterations') if self.print_progress else range(iteration_count):
            if cancel_check is not None and cancel_check():
                log('Solve cancelled')
                raise SolveCancelled("Solve was cancelled before a backup")

            start_ts = datetime.now()

            new_value_function = self.backup(model, value_function, gamma_a_star, discount)

            backup_time = (datetime.now() - start_ts).total_seconds()

            # Change in the upper surface at the corners of the belief space
            max_change = float(np.max(np.abs(np.max(new_value_function.alpha_vector_array, axis=0) - np.max(value_function.alpha_vector_array, axis=0))))
            history.add_backup_step(backup_time, max_change, new_value_function)

            value_function = new_value_function
            if model.horizon.is_finite:
                policy.set(value_function, t)

        if not model.horizon.is_finite:
            policy.set(value_function)

        duration = (datetime.now() - solve_start_ts).total_seconds()
        log(f'    > Done in {duration:.3f}s, {len(value_function)} alpha vectors')

        self.history = history
        return policy
