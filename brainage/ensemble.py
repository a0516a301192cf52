"""
ensemble.py

Simulation ensemble and per-slice aggregation.

Simulation 1 is always the unperturbed volume; simulations 2..M are
random perturbations of it. Each simulation is predicted independently
and folded into the running estimate in simulation order:

    r_1 = p_1
    r_i = r_{i-1} + (p_i - r_{i-1}) / (i + 1)     for i > 1

The divisor is i + 1, not i, so for M > 1 the result is not the
arithmetic mean of the simulations (p_1 = 10, p_2 = 20 gives 13.33).
"""

import itertools
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Iterator, Optional, Sequence

import numpy as np

from .config import SD_AFFINE, SLICE_AXIS
from .data import build_slice_batch
from .errors import AugmentationError, BrainAgeError, EstimationCancelled, PredictionError

logger = logging.getLogger(__name__)


def iterate_simulations(
    volume: np.ndarray,
    number_of_simulations: int = 0,
    sd_affine: float = SD_AFFINE,
    augmenter: Optional[Callable] = None,
) -> Iterator[np.ndarray]:
    """Lazily yield the original volume followed by its perturbations.

    Raises AugmentationError if the augmenter yields a different number
    of volumes than requested.
    """
    if number_of_simulations < 0:
        raise ValueError(f"number_of_simulations must be >= 0, got {number_of_simulations}")
    if number_of_simulations > 0 and augmenter is None:
        raise ValueError("An augmenter is required when number_of_simulations > 0")

    yield volume
    if number_of_simulations == 0:
        return

    produced = 0
    for simulated in augmenter(volume, number_of_simulations, sd_affine):
        produced += 1
        if produced > number_of_simulations:
            raise AugmentationError(
                f"Augmenter yielded more than the {number_of_simulations} requested volumes"
            )
        yield simulated
    if produced != number_of_simulations:
        raise AugmentationError(
            f"Augmenter yielded {produced} of {number_of_simulations} requested volumes"
        )


def update_running_estimate(
    running: Optional[np.ndarray], prediction: np.ndarray, i: int
) -> np.ndarray:
    """Fold prediction ``i`` (1-based) into the running estimate."""
    prediction = np.asarray(prediction, dtype=np.float64)
    if i == 1 or running is None:
        return prediction.copy()
    if running.shape != prediction.shape:
        raise PredictionError(
            f"Prediction of shape {prediction.shape} does not match running "
            f"estimate {running.shape}",
            simulation=i,
        )
    return running + (prediction - running) / (i + 1)


def aggregate_predictions(predictions: Iterable[np.ndarray]) -> np.ndarray:
    running = None
    for i, prediction in enumerate(predictions, start=1):
        running = update_running_estimate(running, prediction, i)
    if running is None:
        raise ValueError("No predictions to aggregate")
    return running


def predict_simulation(
    regressor,
    volume: np.ndarray,
    indices: Sequence[int],
    axis: int = SLICE_AXIS,
    simulation: int = 1,
) -> np.ndarray:
    """Predict brain age for every slice of one simulated volume."""
    batch = build_slice_batch(volume, indices, axis)
    try:
        prediction = regressor.predict(batch)
    except BrainAgeError as exc:
        if isinstance(exc, PredictionError) and exc.simulation is None:
            exc.simulation = simulation
        raise
    except Exception as exc:
        raise PredictionError(
            f"Model prediction failed for simulation {simulation}: {exc}",
            simulation=simulation,
        ) from exc

    prediction = np.asarray(prediction, dtype=np.float64).reshape(-1)
    if prediction.shape[0] != len(indices):
        raise PredictionError(
            f"Model returned {prediction.shape[0]} predictions for {len(indices)} slices",
            simulation=simulation,
        )
    return prediction


def _check_cancelled(cancel_event, simulation):
    if cancel_event is not None and cancel_event.is_set():
        raise EstimationCancelled(f"Estimation cancelled before simulation {simulation}")


def _numbered_until_cancelled(simulations, cancel_event):
    """Number the simulations from 1, checking for cancellation around each pull."""
    iterator = iter(simulations)
    for i in itertools.count(1):
        _check_cancelled(cancel_event, i)
        try:
            volume = next(iterator)
        except StopIteration:
            return
        _check_cancelled(cancel_event, i)
        yield i, volume


def run_ensemble(
    regressor,
    simulations: Iterable[np.ndarray],
    indices: Sequence[int],
    axis: int = SLICE_AXIS,
    verbose: bool = True,
    cancel_event=None,
    max_workers: Optional[int] = None,
) -> np.ndarray:
    """Predict every simulation and return the final running estimate.

    With ``max_workers`` > 1 the model is invoked on a thread pool. At most
    ``max_workers`` simulations are in flight; the next volume is only
    pulled once the oldest result has been folded, and results are folded
    in simulation order. Simulations already submitted when ``cancel_event``
    is set run to completion before EstimationCancelled is raised.
    """
    level = logging.INFO if verbose else logging.DEBUG

    def _predict(i, volume):
        logger.log(level, "Brain age (DeepBrainNet):  predicting brain age per slice (batch = %d).", i)
        return predict_simulation(regressor, volume, indices, axis, simulation=i)

    numbered = _numbered_until_cancelled(simulations, cancel_event)
    running = None

    if max_workers is None or max_workers <= 1:
        for i, volume in numbered:
            running = update_running_estimate(running, _predict(i, volume), i)
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            pending = deque()
            for i, volume in numbered:
                pending.append((i, executor.submit(_predict, i, volume)))
                if len(pending) >= max_workers:
                    j, future = pending.popleft()
                    running = update_running_estimate(running, future.result(), j)
            while pending:
                j, future = pending.popleft()
                running = update_running_estimate(running, future.result(), j)

    if running is None:
        raise ValueError("No simulations to predict")
    return running
