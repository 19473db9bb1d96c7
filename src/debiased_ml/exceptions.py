"""
Exception hierarchy for the Double Machine Learning engine.
"""


class DMLError(Exception):
    """Base class for all errors raised by debiased_ml."""
    pass


class ConfigurationError(DMLError):
    """Invalid estimator settings (score, procedure, fold or repetition counts)."""
    pass


class DataError(DMLError):
    """Input data does not satisfy the requirements of the model."""
    pass


class EstimationError(DMLError):
    """A nuisance learner failed while fitting a fold."""
    pass


class LearnerConvergenceError(EstimationError):
    """A nuisance learner did not converge."""
    pass


class DegenerateFoldError(EstimationError):
    """A fold cannot identify the causal parameter (e.g. constant treatment)."""
    pass


class NotFittedError(DMLError):
    """Results were requested from a model that has not been fitted."""
    pass
