# fourierbp/__init__.py
"""fourierbp - Direct Fourier Slice Insertion for Cryo-Electron Tomography.

A GPU-accelerated weighted back-projection engine built with Numba CUDA and
PyTorch: every tilt's CTF-weighted Fourier image is inserted as a tilted plane
into 3D signal and weight accumulators.
"""

from .errors import (
    ReconstructionError,
    ConfigurationError,
    DeviceResourceError,
    KernelExecutionError,
    CachedImageLoadError,
)

from .geometry import (
    tilt_geometry,
    size_shift,
    ctf_image_shape,
    fourier_extent,
    output_shape,
    plane_weight,
)

from .insertion import (
    TiltSeries,
    SamplerSlot,
    AccumulatorVolumes,
    insert_tilt_series,
    to_tensor,
)

from .ctf import compute_ctf
from .scheduling import plan_workers
from .io import load_or_bin, LoadedImage
from .resize import resize, taper

__version__ = '0.1.0'

__all__ = [
    'ReconstructionError',
    'ConfigurationError',
    'DeviceResourceError',
    'KernelExecutionError',
    'CachedImageLoadError',
    'tilt_geometry',
    'size_shift',
    'ctf_image_shape',
    'fourier_extent',
    'output_shape',
    'plane_weight',
    'TiltSeries',
    'SamplerSlot',
    'AccumulatorVolumes',
    'insert_tilt_series',
    'to_tensor',
    'compute_ctf',
    'plan_workers',
    'load_or_bin',
    'LoadedImage',
    'resize',
    'taper',
]
