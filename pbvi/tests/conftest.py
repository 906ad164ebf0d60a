"""
Shared models for the pbvi test-suite.
"""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pytest

from pbvi.model import Horizon, Model


LISTEN, OPEN_LEFT, OPEN_RIGHT = 0, 1, 2
HEAR_LEFT, HEAR_RIGHT = 0, 1


def build_tiger(horizon:Horizon) -> Model:
    """The two-state tiger problem: the tiger is behind the left or the right door."""
    transitions = np.zeros((2, 3, 2))
    transitions[:, LISTEN, :] = np.eye(2)
    transitions[:, OPEN_LEFT, :] = 0.5
    transitions[:, OPEN_RIGHT, :] = 0.5

    observations = np.zeros((2, 3, 2))
    observations[:, LISTEN, :] = [[0.85, 0.15], [0.15, 0.85]]
    observations[:, OPEN_LEFT, :] = 0.5
    observations[:, OPEN_RIGHT, :] = 0.5

    rewards = np.array([
        [-1.0, -100.0, 10.0],
        [-1.0, 10.0, -100.0],
    ])

    return Model(states=['tiger-left', 'tiger-right'],
                 actions=['listen', 'open-left', 'open-right'],
                 observations=['hear-left', 'hear-right'],
                 transitions=transitions,
                 observation_table=observations,
                 rewards=rewards,
                 horizon=horizon)


@pytest.fixture
def tiger():
    """Infinite horizon tiger with a discount factor of 0.95."""
    return build_tiger(Horizon(discount=0.95))


@pytest.fixture
def finite_tiger():
    """Factory of finite horizon tigers."""
    def _make(length:int, discount:float=1.0) -> Model:
        return build_tiger(Horizon(length, discount))
    return _make


@pytest.fixture
def one_observation_model():
    """2 states, 2 actions and a single observation; only the rewards matter at horizon 1."""
    transitions = np.array([
        [[0.3, 0.7], [0.9, 0.1]],
        [[0.6, 0.4], [0.2, 0.8]],
    ])
    return Model(states=2,
                 actions=2,
                 observations=1,
                 transitions=transitions,
                 observation_table=np.ones((2, 2, 1)),
                 rewards=np.array([[5.0, 1.0], [-2.0, 3.0]]),
                 horizon=Horizon(1))
