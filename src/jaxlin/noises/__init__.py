from ._constrained import Constrained
from ._gaussians import DiagonalGaussian, Gaussian
from ._huber import HuberWrapper
from ._noise_model_base import NoiseModelBase

__all__ = [
    "Constrained",
    "DiagonalGaussian",
    "Gaussian",
    "HuberWrapper",
    "NoiseModelBase",
]
