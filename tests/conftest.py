import os
import shutil

# Kernels run on the Numba CUDA simulator when no NVIDIA driver is present.
# Must be set before numba.cuda is imported.
if shutil.which("nvidia-smi") is None:
    os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

import numpy as np
import pytest

from fourierbp import TiltSeries


def uniform_ctf(value=1.0):
    """CTF generator returning a constant image."""

    def generator(shape, **kwargs):
        return np.full(shape, value, dtype=np.float32)

    return generator


def ramp_ctf(shape, **kwargs):
    """CTF generator whose value at [x, y] is x + 10 * y."""
    x, y = np.meshgrid(np.arange(shape[0]), np.arange(shape[1]), indexing="ij")
    return (x + 10.0 * y).astype(np.float32)


def make_tilts(angles, **overrides):
    params = dict(pixel_size=2.0, wavelength=0.0197, cs=2.7, defocus1=20000.0)
    params.update(overrides)
    return TiltSeries.from_angles(angles, **params)


@pytest.fixture
def tilts():
    return make_tilts([-40.0, -12.5, 0.0, 21.0, 55.0])
