from datetime import datetime
from matplotlib import pyplot as plt
from typing import Union

import numpy as np

from pbvi.belief import BeliefSet
from pbvi.model import Model
from pbvi.value_function import ValueFunction


class SolverHistory:
    '''
    Class to represent the history of a solver for a POMDP solver.
    It has mainly the purpose to record how the solving process went and to allow plotting of the solution and of the explored beliefs.

    ...

    Parameters
    ----------
    tracking_level : int
        The tracking level of the solver. (0: Nothing; 1: Times and sizes of belief sets and value function; 2: The actual value functions and beliefs sets)
    model : pbvi.Model
        The model the solver has solved.
    solver_name : str
        The name of the solver and of the rule it used. Used in the summary.
    initial_value_function : ValueFunction, optional
        The initial value function the solver will use to start the solving process.
    initial_belief_set : BeliefSet, optional
        The initial belief set the solver will use to start the solving process.

    Attributes
    ----------
    tracking_level : int
    model : pbvi.Model
    solver_name : str
    run_ts : datetime
        The time at which the SolverHistory object was instantiated which is assumed to be the start of the solving run.
    expansion_times : list[float]
        A list of recorded times of the expand function.
    backup_times : list[float]
        A list of recorded times of the backup function.
    alpha_vector_counts : list[int]
        A list of recorded alpha vector count making up the value function over the solving process.
    beliefs_counts : list[int]
        A list of recorded belief count making up the belief set over the solving process.
    value_function_changes : list[float]
        A list of recorded value function changes (the maximum changed value between 2 value functions).
    value_functions : list[ValueFunction]
        A list of recorded value functions.
    belief_sets : list[BeliefSet]
        A list of recorded belief sets.
    solution : ValueFunction
    explored_beliefs : BeliefSet
    '''
    def __init__(self,
                 tracking_level:int,
                 model:Model,
                 solver_name:str,
                 initial_value_function:Union[ValueFunction,None]=None,
                 initial_belief_set:Union[BeliefSet,None]=None
                 ):
        self.tracking_level = tracking_level
        self.model = model
        self.solver_name = solver_name
        self.run_ts = datetime.now()

        # Time tracking
        self.expansion_times = []
        self.backup_times = []

        # Value function and belief set sizes tracking
        self.alpha_vector_counts = []
        self.beliefs_counts = []

        if self.tracking_level >= 1:
            if initial_value_function is not None:
                self.alpha_vector_counts.append(len(initial_value_function))
            if initial_belief_set is not None:
                self.beliefs_counts.append(len(initial_belief_set))

        # Value function and belief set tracking
        self.belief_sets = []
        self.value_functions = []
        self.value_function_changes = []

        if self.tracking_level >= 2:
            if initial_belief_set is not None:
                self.belief_sets.append(initial_belief_set)
            if initial_value_function is not None:
                self.value_functions.append(initial_value_function)


    @property
    def solution(self) -> ValueFunction:
        '''
        The last value function of the solving process.
        '''
        assert self.tracking_level >= 2, "Tracking level is set too low, increase it to 2 if you want to have value function tracking as well."
        return self.value_functions[-1]


    @property
    def explored_beliefs(self) -> BeliefSet:
        '''
        The final set of beliefs explored during the solving.
        '''
        assert self.tracking_level >= 2, "Tracking level is set too low, increase it to 2 if you want to have belief sets tracking as well."
        return self.belief_sets[-1]


    def add_expand_step(self,
                        expansion_time:float,
                        belief_set:BeliefSet
                        ) -> None:
        '''
        Function to add an expansion step in the simulation history by the explored belief set the expand function generated.

        Parameters
        ----------
        expansion_time : float
            The time it took to run a step of expansion of the belief set. (Also known as the exploration step.)
        belief_set : BeliefSet
            The belief set used for the Update step of the solving process.
        '''
        if self.tracking_level >= 1:
            self.expansion_times.append(float(expansion_time))
            self.beliefs_counts.append(len(belief_set))

        if self.tracking_level >= 2:
            self.belief_sets.append(belief_set)


    def add_backup_step(self,
                        backup_time:float,
                        value_function_change:float,
                        value_function:ValueFunction
                        ) -> None:
        '''
        Function to add a backup step in the simulation history by recording the value function the backup function generated.

        Parameters
        ----------
        backup_time : float
            The time it took to run a step of backup of the value function. (Also known as the value function update.)
        value_function_change : float
            The change between the value function of this iteration and of the previous iteration.
        value_function : ValueFunction
            The value function resulting after a step of the solving process.
        '''
        if self.tracking_level >= 1:
            self.backup_times.append(float(backup_time))
            self.alpha_vector_counts.append(len(value_function))
            self.value_function_changes.append(float(value_function_change))

        if self.tracking_level >= 2:
            self.value_functions.append(value_function)


    @property
    def summary(self) -> str:
        '''
        A summary as a string of the information recorded.

        Returns
        -------
        summary_str : str
            The summary of the information.
        '''
        summary_str =  f'Summary of {self.solver_name} run'
        summary_str += f'\n  - Model: {self.model.state_count} state, {self.model.action_count} action, {self.model.observation_count} observations'
        summary_str += f'\n  - Stopped after {len(self.expansion_times)} expansion steps and {len(self.backup_times)} backup steps.'

        if self.tracking_level >= 1:
            if len(self.alpha_vector_counts) > 0:
                summary_str += f'\n  - Resulting value function has {self.alpha_vector_counts[-1]} alpha vectors.'
            summary_str += f'\n  - Ran in {(sum(self.expansion_times) + sum(self.backup_times)):.4f}s'

            if len(self.expansion_times) > 0:
                summary_str += f'\n  - Expand function took on average {sum(self.expansion_times) / len(self.expansion_times):.4f}s '
                summary_str += f'and yielded on average {np.mean(np.diff(self.beliefs_counts)):.2f} beliefs per iteration.'

            if len(self.backup_times) > 0:
                summary_str += f'\n  - Backup function took on average {sum(self.backup_times) / len(self.backup_times):.4f}s '
                summary_str += f'and yielded on average value functions of size {sum(self.alpha_vector_counts[-len(self.backup_times):]) / len(self.backup_times):.2f} per iteration.'

        return summary_str


    def plot_changes(self) -> None:
        '''
        Function to plot the value function changes over the solving process.
        '''
        assert self.tracking_level >= 1, "To plot the change of the value function over time, use tracking level 1 or higher."
        plt.plot(np.arange(len(self.value_function_changes)), self.value_function_changes)
        plt.show()
