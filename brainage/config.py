import os

# Root directories
PACKAGE_ROOT = os.path.dirname(os.path.abspath(__file__))
DEFAULT_CACHE_DIR = os.environ.get(
    "BRAINAGE_CACHE_DIR", os.path.join(PACKAGE_ROOT, "extdata")
)

# Pretrained DeepBrainNet weights
MODEL_ID = "brainAgeDeepBrainNet"
MODEL_FILENAME = "DeepBrainNetModel.h5"
PRETRAINED_NETWORK_URLS = {
    "brainAgeDeepBrainNet": "https://ndownloader.figshare.com/files/23573402",
}

# Slices 46-125 (1-based) of the registered volume, i.e. 80 central axial slices
SLICE_START = 45
SLICE_STOP = 125
SLICE_AXIS = 2
NUM_CHANNELS = 3

# Perturbation ensemble
NUMBER_OF_SIMULATIONS = 0
SD_AFFINE = 0.01
TRANSFORM_TYPE = "affine"
INTERPOLATOR = "linear"

PREPROCESSING_CFG = {
    "truncate_intensity": (0.01, 0.99),
    "do_brain_extraction": True,
    "do_bias_correction": True,
    "do_denoising": True,
    "template_transform_type": "AffineFast",
    "template": "croppedMni152",
}

MLFLOW_URI = os.environ.get("MLFLOW_TRACKING_URI", "http://localhost:5000")
EXPERIMENT_NAME = "BrainAge-DeepBrainNet"
