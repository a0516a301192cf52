"""
preprocessing.py

Preprocessing matching the DeepBrainNet training data:

    * intensity truncation (1st-99th percentile)
    * denoising
    * N4 bias correction
    * brain extraction
    * affine registration to the cropped MNI152 template

The work is delegated to ANTsPyNet (``pip install brainage[preprocessing]``).
Any callable with the same signature as ``AntsBrainPreprocessor.__call__``
can be passed to the estimator instead.
"""

import logging
from typing import Optional, Protocol, Tuple

import numpy as np

from .config import PREPROCESSING_CFG
from .errors import InputShapeError, PreprocessingError

logger = logging.getLogger(__name__)


class BrainPreprocessor(Protocol):
    def __call__(self, volume: np.ndarray, output_directory: Optional[str] = None) -> dict:
        """Return {"preprocessed_image": ndarray, "brain_mask": ndarray}."""
        ...


def apply_brain_mask(preprocessed: np.ndarray, brain_mask: np.ndarray) -> np.ndarray:
    preprocessed = np.asarray(preprocessed, dtype=np.float64)
    brain_mask = np.asarray(brain_mask)
    if preprocessed.shape != brain_mask.shape:
        raise InputShapeError(
            f"Brain mask shape {brain_mask.shape} does not match image {preprocessed.shape}"
        )
    return preprocessed * brain_mask


class AntsBrainPreprocessor:
    """Preprocess a raw T1 volume with ``antspynet.preprocess_brain_image``."""

    def __init__(
        self,
        truncate_intensity: Tuple[float, float] = PREPROCESSING_CFG["truncate_intensity"],
        do_brain_extraction: bool = PREPROCESSING_CFG["do_brain_extraction"],
        do_bias_correction: bool = PREPROCESSING_CFG["do_bias_correction"],
        do_denoising: bool = PREPROCESSING_CFG["do_denoising"],
        template_transform_type: str = PREPROCESSING_CFG["template_transform_type"],
        template: str = PREPROCESSING_CFG["template"],
        verbose: bool = True,
    ):
        self.truncate_intensity = truncate_intensity
        self.do_brain_extraction = do_brain_extraction
        self.do_bias_correction = do_bias_correction
        self.do_denoising = do_denoising
        self.template_transform_type = template_transform_type
        self.template = template
        self.verbose = verbose

    def __call__(self, volume, output_directory=None) -> dict:
        try:
            import ants
            import antspynet
        except ImportError as exc:
            raise PreprocessingError(
                "Preprocessing requires antspyx and antspynet "
                "(pip install brainage[preprocessing])"
            ) from exc

        image = volume
        if isinstance(volume, np.ndarray):
            image = ants.from_numpy(volume.astype(np.float32))

        try:
            result = antspynet.preprocess_brain_image(
                image,
                truncate_intensity=self.truncate_intensity,
                brain_extraction_modality="t1" if self.do_brain_extraction else None,
                template_transform_type=self.template_transform_type,
                template=self.template,
                do_bias_correction=self.do_bias_correction,
                return_bias_field=False,
                do_denoising=self.do_denoising,
                antsxnet_cache_directory=output_directory,
                verbose=self.verbose,
            )
        except Exception as exc:
            raise PreprocessingError(f"Brain preprocessing failed: {exc}") from exc

        preprocessed = result["preprocessed_image"].numpy()
        if result.get("brain_mask") is not None:
            brain_mask = result["brain_mask"].numpy()
        else:
            brain_mask = np.ones_like(preprocessed)
        return {"preprocessed_image": preprocessed, "brain_mask": brain_mask}
