"""
augmentation.py

Random linear perturbations of a volume, used to build the simulation
ensemble for prediction stability.

Each simulated volume is the input resampled through a random linear
transform about the volume center. The transform parameters are the
identity parameters plus Gaussian noise with standard deviation
``sd_affine``:

    translation : translation only
    rigid       : rotation part (polar decomposition) + translation
    scaleShear  : scale/shear part (polar decomposition) + translation
    affine      : full 3x3 matrix + translation
"""

from typing import Iterator, List, Optional, Sequence

import numpy as np
from scipy import ndimage

from .config import INTERPOLATOR, SD_AFFINE, TRANSFORM_TYPE
from .errors import InputShapeError

TRANSFORM_TYPES = ("translation", "rigid", "scaleShear", "affine")
INTERPOLATION_ORDER = {"linear": 1, "nearestNeighbor": 0}


def _polar_decomposition(matrix: np.ndarray):
    """Split ``matrix`` into rotation R and symmetric stretch S with matrix = R @ S."""
    u, s, vt = np.linalg.svd(matrix)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        u[:, -1] *= -1
        rotation = u @ vt
    stretch = rotation.T @ matrix
    return rotation, stretch


def random_linear_transform(
    rng: np.random.Generator,
    sd_affine: float = SD_AFFINE,
    transform_type: str = TRANSFORM_TYPE,
):
    """Draw a random (3x3 matrix, translation) pair close to the identity."""
    if transform_type not in TRANSFORM_TYPES:
        raise ValueError(
            f"Unknown transform type {transform_type!r}; expected one of {TRANSFORM_TYPES}"
        )

    params = np.concatenate([np.eye(3).ravel(), np.zeros(3)])
    params = params + rng.normal(0.0, sd_affine, size=params.shape)
    matrix = params[:9].reshape(3, 3)
    translation = params[9:]

    if transform_type == "translation":
        matrix = np.eye(3)
    elif transform_type == "rigid":
        matrix, _ = _polar_decomposition(matrix)
    elif transform_type == "scaleShear":
        _, matrix = _polar_decomposition(matrix)

    return matrix, translation


def apply_linear_transform(
    volume: np.ndarray,
    matrix: np.ndarray,
    translation: np.ndarray,
    interpolator: str = INTERPOLATOR,
) -> np.ndarray:
    """Resample ``volume`` through x -> matrix @ (x - c) + c + translation."""
    if interpolator not in INTERPOLATION_ORDER:
        raise ValueError(
            f"Unknown interpolator {interpolator!r}; expected one of {tuple(INTERPOLATION_ORDER)}"
        )
    vol = np.asarray(volume, dtype=np.float64)
    if vol.ndim != 3:
        raise InputShapeError(f"Expected 3D volume, got shape={vol.shape}")

    center = (np.asarray(vol.shape, dtype=np.float64) - 1.0) / 2.0
    # ndimage maps output coordinates to input coordinates, so use the inverse
    inverse = np.linalg.inv(matrix)
    offset = center - inverse @ (center + translation)
    return ndimage.affine_transform(
        vol,
        inverse,
        offset=offset,
        order=INTERPOLATION_ORDER[interpolator],
        mode="constant",
        cval=0.0,
    )


class RandomAffineAugmenter:
    """Default augmentation collaborator.

    Args:
        transform_type: one of TRANSFORM_TYPES.
        interpolator: "linear" or "nearestNeighbor".
        seed: seed for the perturbation generator. None draws fresh entropy.
    """

    def __init__(
        self,
        transform_type: str = TRANSFORM_TYPE,
        interpolator: str = INTERPOLATOR,
        seed: Optional[int] = None,
    ):
        if transform_type not in TRANSFORM_TYPES:
            raise ValueError(
                f"Unknown transform type {transform_type!r}; expected one of {TRANSFORM_TYPES}"
            )
        if interpolator not in INTERPOLATION_ORDER:
            raise ValueError(f"Unknown interpolator {interpolator!r}")
        self.transform_type = transform_type
        self.interpolator = interpolator
        self.rng = np.random.default_rng(seed)

    def simulate(
        self,
        volume: np.ndarray,
        number_of_simulations: int,
        sd_affine: float = SD_AFFINE,
    ) -> Iterator[np.ndarray]:
        """Yield ``number_of_simulations`` independently perturbed copies."""
        for _ in range(number_of_simulations):
            matrix, translation = random_linear_transform(
                self.rng, sd_affine, self.transform_type
            )
            yield apply_linear_transform(volume, matrix, translation, self.interpolator)

    def __call__(self, volume, number_of_simulations, sd_affine=SD_AFFINE):
        return self.simulate(volume, number_of_simulations, sd_affine)


def randomly_transform_image_data(
    reference_image: np.ndarray,
    input_image_list: Sequence[Sequence[np.ndarray]],
    number_of_simulations: int = 10,
    transform_type: str = TRANSFORM_TYPE,
    sd_affine: float = SD_AFFINE,
    input_image_interpolator: str = INTERPOLATOR,
    seed: Optional[int] = None,
) -> dict:
    """Eager, list-based form of the augmentation.

    For every simulation a random subject is drawn from
    ``input_image_list`` and all of its images are resampled through the
    same random transform, so multi-modal subjects stay aligned.

    Returns {"simulated_images": [[vol, ...], ...], "which_subject": [...]}.
    """
    if len(input_image_list) == 0:
        raise ValueError("input_image_list is empty")
    reference_shape = np.shape(reference_image)
    for images in input_image_list:
        for image in images:
            if np.shape(image) != reference_shape:
                raise InputShapeError(
                    f"Image shape {np.shape(image)} does not match reference {reference_shape}"
                )

    rng = np.random.default_rng(seed)
    simulated_images: List[List[np.ndarray]] = []
    which_subject = []
    for _ in range(number_of_simulations):
        subject = int(rng.integers(len(input_image_list)))
        matrix, translation = random_linear_transform(rng, sd_affine, transform_type)
        simulated_images.append([
            apply_linear_transform(image, matrix, translation, input_image_interpolator)
            for image in input_image_list[subject]
        ])
        which_subject.append(subject)

    return {"simulated_images": simulated_images, "which_subject": which_subject}
