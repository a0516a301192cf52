"""
models.py

The DeepBrainNet regression model as a capability.

The estimator only relies on the ``SliceRegressor`` contract:

- Input:    (N, H, W, 3) float batch of pseudo-color slices
- Output:   (N,) one brain age prediction per slice, in input order

``KerasSliceRegressor`` wraps the pretrained Keras model; tests inject
stubs. Weights are fetched once into the cache directory and reused.
"""

import logging
import os
import shutil
import tempfile
import threading
from typing import Optional, Protocol

import numpy as np
import tensorflow as tf
from tensorflow.keras.models import load_model
from tensorflow.keras.utils import get_file

from .config import MODEL_FILENAME, MODEL_ID, PRETRAINED_NETWORK_URLS
from .errors import CorruptModelError, ModelUnavailableError, PredictionError

logger = logging.getLogger(__name__)

_download_locks = {}
_download_locks_guard = threading.Lock()


class SliceRegressor(Protocol):
    def predict(self, batch: np.ndarray) -> np.ndarray:
        ...


class KerasSliceRegressor:
    """Adapter from a Keras model to the SliceRegressor contract."""

    def __init__(self, model: tf.keras.Model, verbose: bool = False):
        self.model = model
        self.verbose = verbose

    @property
    def input_shape(self):
        return tuple(self.model.input_shape[1:])

    def predict(self, batch: np.ndarray) -> np.ndarray:
        expected = self.input_shape
        if any(e is not None and e != b for e, b in zip(expected, batch.shape[1:])):
            raise PredictionError(
                f"Batch of shape {batch.shape} does not match model input {expected}"
            )
        preds = self.model.predict(batch, batch_size=len(batch), verbose=int(self.verbose))
        return np.asarray(preds, dtype=np.float64).reshape(len(batch), -1)[:, 0]


def _lock_for(path: str) -> threading.Lock:
    with _download_locks_guard:
        return _download_locks.setdefault(os.path.abspath(path), threading.Lock())


def fetch_pretrained_weights(
    model_id: str = MODEL_ID,
    destination: Optional[str] = None,
    verbose: bool = True,
) -> str:
    """Download pretrained weights to ``destination`` unless already there.

    The file is downloaded into a temporary directory next to the
    destination and renamed into place, so readers never see a partial
    file. Concurrent callers for the same path are serialized.
    """
    if model_id not in PRETRAINED_NETWORK_URLS:
        raise ModelUnavailableError(f"No pretrained network registered as {model_id!r}")
    if destination is None:
        raise ValueError("destination is required")

    with _lock_for(destination):
        if os.path.isfile(destination):
            return destination

        dest_dir = os.path.dirname(os.path.abspath(destination))
        os.makedirs(dest_dir, exist_ok=True)
        tmp_dir = tempfile.mkdtemp(prefix=".download-", dir=dest_dir)
        try:
            logger.log(
                logging.INFO if verbose else logging.DEBUG,
                "Brain age (DeepBrainNet):  downloading model weights.",
            )
            tmp_path = get_file(
                fname=os.path.basename(destination),
                origin=PRETRAINED_NETWORK_URLS[model_id],
                cache_dir=tmp_dir,
                cache_subdir="",
            )
            os.replace(tmp_path, destination)
        except Exception as exc:
            raise ModelUnavailableError(
                f"Could not download {model_id} weights to {destination}: {exc}"
            ) from exc
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

    return destination


def load_regressor(path: str, verbose: bool = True) -> KerasSliceRegressor:
    logger.log(
        logging.INFO if verbose else logging.DEBUG,
        "Brain age (DeepBrainNet):  loading model.",
    )
    try:
        model = load_model(path, compile=False)
    except Exception as exc:
        raise CorruptModelError(f"Could not load model weights from {path}: {exc}") from exc

    output_shape = tuple(model.output_shape[1:])
    if output_shape not in ((), (1,)):
        raise CorruptModelError(
            f"Model at {path} has output shape {output_shape}; expected one scalar per slice"
        )
    return KerasSliceRegressor(model, verbose=verbose)


def get_regressor(output_directory: str, verbose: bool = True) -> KerasSliceRegressor:
    """Resolve DeepBrainNet weights in ``output_directory`` and load them."""
    weights_path = os.path.join(output_directory, MODEL_FILENAME)
    if not os.path.isfile(weights_path):
        weights_path = fetch_pretrained_weights(MODEL_ID, weights_path, verbose=verbose)
    return load_regressor(weights_path, verbose=verbose)
