"""
estimator.py

Brain age estimation from a T1-weighted volume using DeepBrainNet:

    raw -> preprocessed -> normalized -> per simulation: batched -> predicted
        -> aggregated -> result

``predicted_age`` is the median over slices of the per-slice running
estimate; ``brain_age_per_slice`` is returned as well so callers can
judge the spread of the slice predictions.
"""

import logging
import os
from typing import NamedTuple, Optional, Sequence

import numpy as np

from .augmentation import RandomAffineAugmenter
from .config import (
    DEFAULT_CACHE_DIR,
    SD_AFFINE,
    SLICE_AXIS,
    SLICE_START,
    SLICE_STOP,
)
from .data import check_slice_range, normalize_volume, slice_indices
from .ensemble import iterate_simulations, run_ensemble
from .errors import InputShapeError, PreprocessingError
from .models import get_regressor
from .preprocessing import AntsBrainPreprocessor, apply_brain_mask

logger = logging.getLogger(__name__)


class BrainAgeResult(NamedTuple):
    predicted_age: float
    brain_age_per_slice: np.ndarray


class BrainAgeEstimator:
    """
    Args:
        output_directory: where model weights (and preprocessing templates)
            are cached. None resolves to config.DEFAULT_CACHE_DIR.
        regressor: object with ``predict(batch) -> (N,)``. None loads the
            pretrained DeepBrainNet model on first use.
        preprocessor: callable returning {"preprocessed_image", "brain_mask"}.
            None uses ANTsPyNet.
        augmenter: callable ``(volume, n, sd_affine) -> iterable of volumes``.
            None uses RandomAffineAugmenter(seed=seed).
        slices: slice indices fed to the model, in order.
        axis: axis the slices are taken along.
        seed: seed for the default augmenter.
        verbose: log progress at INFO instead of DEBUG.
    """

    def __init__(
        self,
        output_directory: Optional[str] = None,
        regressor=None,
        preprocessor=None,
        augmenter=None,
        slices: Optional[Sequence[int]] = None,
        axis: int = SLICE_AXIS,
        seed: Optional[int] = None,
        verbose: bool = True,
    ):
        self.output_directory = output_directory or DEFAULT_CACHE_DIR
        self.regressor = regressor
        self.preprocessor = preprocessor
        self.augmenter = augmenter
        self.slices = (
            np.asarray(slices) if slices is not None else slice_indices(SLICE_START, SLICE_STOP)
        )
        self.axis = axis
        self.seed = seed
        self.verbose = verbose

    def _log(self, msg, *args):
        logger.log(logging.INFO if self.verbose else logging.DEBUG, msg, *args)

    def load_regressor(self):
        if self.regressor is None:
            self.regressor = get_regressor(self.output_directory, verbose=self.verbose)
        return self.regressor

    def preprocess(self, image) -> np.ndarray:
        if self.preprocessor is None:
            self.preprocessor = AntsBrainPreprocessor(verbose=self.verbose)
        self._log("Brain age (DeepBrainNet):  preprocessing image.")
        os.makedirs(self.output_directory, exist_ok=True)
        try:
            result = self.preprocessor(image, output_directory=self.output_directory)
        except PreprocessingError:
            raise
        except Exception as exc:
            raise PreprocessingError(f"Brain preprocessing failed: {exc}") from exc
        return apply_brain_mask(result["preprocessed_image"], result["brain_mask"])

    def estimate(
        self,
        image,
        do_preprocessing: bool = True,
        number_of_simulations: int = 0,
        sd_affine: float = SD_AFFINE,
        cancel_event=None,
        max_workers: Optional[int] = None,
    ) -> BrainAgeResult:
        if number_of_simulations < 0:
            raise ValueError(f"number_of_simulations must be >= 0, got {number_of_simulations}")

        if do_preprocessing:
            volume = self.preprocess(image)
        else:
            volume = np.asarray(image, dtype=np.float64)
        if volume.ndim != 3:
            raise InputShapeError(f"Expected a 3D volume, got shape {volume.shape}")

        volume = normalize_volume(volume)
        check_slice_range(volume.shape, self.slices, self.axis)

        regressor = self.load_regressor()

        augmenter = self.augmenter
        if augmenter is None and number_of_simulations > 0:
            augmenter = RandomAffineAugmenter(seed=self.seed)
        simulations = iterate_simulations(volume, number_of_simulations, sd_affine, augmenter)

        brain_age_per_slice = run_ensemble(
            regressor,
            simulations,
            self.slices,
            axis=self.axis,
            verbose=self.verbose,
            cancel_event=cancel_event,
            max_workers=max_workers,
        )
        predicted_age = float(np.median(brain_age_per_slice))
        self._log("Brain age (DeepBrainNet):  predicted age %.2f.", predicted_age)
        return BrainAgeResult(predicted_age, brain_age_per_slice)


def estimate_brain_age(
    image,
    do_preprocessing: bool = True,
    number_of_simulations: int = 0,
    sd_affine: float = SD_AFFINE,
    output_directory: Optional[str] = None,
    verbose: bool = True,
    **kwargs,
) -> BrainAgeResult:
    """Estimate brain age from a T1-weighted volume.

    ``kwargs`` are forwarded to BrainAgeEstimator (regressor, preprocessor,
    augmenter, slices, axis, seed).
    """
    estimator = BrainAgeEstimator(output_directory=output_directory, verbose=verbose, **kwargs)
    return estimator.estimate(
        image,
        do_preprocessing=do_preprocessing,
        number_of_simulations=number_of_simulations,
        sd_affine=sd_affine,
    )
