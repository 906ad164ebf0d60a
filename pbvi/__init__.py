from pbvi.alpha_vector import AlphaVector
from pbvi.backup import backproject, backup, backup_belief, compute_gamma_a_star, cross_sum_backup, point_based_backup
from pbvi.belief import Belief, BeliefSet, belief_update, random_belief
from pbvi.exceptions import (
    BeliefError,
    BeliefNormalizationError,
    ConfigurationError,
    ModelShapeError,
    PBVIError,
    PolicyError,
    SolveCancelled,
)
from pbvi.history import SolverHistory
from pbvi.logger import log
from pbvi.model import Horizon, Model, StateKind, layered_lookup, validate_model
from pbvi.pbvi_solver import ExpansionRule, PBVI_Solver, compute_update_iterations
from pbvi.policy import PolicyAlphaVectors, PolicyTree
from pbvi.value_function import ValueFunction
from pbvi.vi_solver import VI_Solver

__all__ = (
    'AlphaVector',
    'Belief',
    'BeliefSet',
    'belief_update',
    'random_belief',
    'backproject',
    'backup',
    'backup_belief',
    'compute_gamma_a_star',
    'cross_sum_backup',
    'point_based_backup',
    'BeliefError',
    'BeliefNormalizationError',
    'ConfigurationError',
    'ModelShapeError',
    'PBVIError',
    'PolicyError',
    'SolveCancelled',
    'SolverHistory',
    'log',
    'Horizon',
    'Model',
    'StateKind',
    'layered_lookup',
    'validate_model',
    'ExpansionRule',
    'PBVI_Solver',
    'compute_update_iterations',
    'PolicyAlphaVectors',
    'PolicyTree',
    'ValueFunction',
    'VI_Solver',
)
