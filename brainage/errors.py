"""Exceptions raised while estimating brain age.

Each stage of the pipeline raises its own type so callers can tell
whether preprocessing, weight acquisition or prediction failed.
"""


class BrainAgeError(Exception):
    """Base class for all brain age estimation failures."""


class InputShapeError(BrainAgeError, ValueError):
    """The volume cannot supply the configured slices."""


class IndexOutOfRangeError(InputShapeError):
    """A configured slice index lies outside the volume."""


class DegenerateInputError(BrainAgeError, ValueError):
    """The volume has no intensity range to normalize."""


class ModelUnavailableError(BrainAgeError, RuntimeError):
    """Model weights could not be fetched or loaded."""


class CorruptModelError(ModelUnavailableError):
    """The weights file is unreadable or has the wrong shape."""


class PreprocessingError(BrainAgeError, RuntimeError):
    """The preprocessing collaborator failed."""


class PredictionError(BrainAgeError, RuntimeError):
    """The regression model failed on a simulation's batch."""

    def __init__(self, message, simulation=None):
        super().__init__(message)
        self.simulation = simulation


class EstimationCancelled(BrainAgeError):
    """The caller cancelled the estimation between simulations."""


class AugmentationError(BrainAgeError, RuntimeError):
    """The augmentation collaborator yielded the wrong number of volumes."""
