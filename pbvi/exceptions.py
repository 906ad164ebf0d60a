class PBVIError(Exception):
    '''
    Base class of all the errors raised by the pbvi package.
    '''


class ModelShapeError(PBVIError, ValueError):
    '''
    The model provided is not a finite and queryable POMDP model: missing or badly shaped tables,
    probabilities that are negative or do not sum to 1, unresolvable lookups or an invalid horizon.
    '''


class BeliefError(PBVIError, ValueError):
    '''
    A belief vector is not a probability distribution over the states of the model.
    '''


class BeliefNormalizationError(BeliefError):
    '''
    A belief update was requested for an observation that has a zero probability of being received
    under the given belief and action. The normalizing constant is zero so no successor belief exists.
    '''


class ConfigurationError(PBVIError, ValueError):
    '''
    A solver has been configured with values it can't run with (unknown expansion rule, discount factor outside of the allowed range, ...).
    '''


class PolicyError(PBVIError, LookupError):
    '''
    A policy was queried for something it does not hold: a stage out of range, an empty set of alpha vectors or an unknown history.
    '''


class SolveCancelled(PBVIError):
    '''
    The solving process was stopped by the cancel check provided to the solver. No policy is returned.
    '''
