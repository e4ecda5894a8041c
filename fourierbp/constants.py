"""Global constants and configuration for fourierbp package.

This module defines core constants used throughout the fourierbp package,
including data types, CUDA thread block configurations, slice insertion
defaults and loader retry parameters.
"""

import numpy as np
from numba import cuda

# ---------------------------------------------------------------------------
# Data Types and Numerical Constants
# ---------------------------------------------------------------------------

_DTYPE = np.float32
"""Default data type for accumulators and CTF images (numpy.float32)."""

_PI = _DTYPE(np.pi)
"""Pi in default data type."""

# ---------------------------------------------------------------------------
# CUDA Thread Block Configurations
# ---------------------------------------------------------------------------

# 3D blocks: 8x8x8 = 512 threads per block, one thread per output voxel
_TPB_3D = (8, 8, 8)
"""CUDA threads-per-block for the slice insertion kernel: (8, 8, 8) = 512 threads."""

# ---------------------------------------------------------------------------
# CUDA JIT Decorators
# ---------------------------------------------------------------------------

_FASTMATH_DECORATOR = cuda.jit(fastmath=True)
"""Numba CUDA JIT decorator with fastmath enabled for kernels."""

_DEVICE_DECORATOR = cuda.jit(device=True, fastmath=True)
"""Numba CUDA JIT decorator for device functions called from kernels."""

# ---------------------------------------------------------------------------
# Slice Insertion Defaults
# ---------------------------------------------------------------------------

SLICE_HALF_WIDTH = 1.0
"""Half-width R (in voxels) of the slab around each inserted plane.

Voxels farther than R from the tilted plane receive no contribution. The
value does not depend on the sampling rate of the tilt series.
"""

# ---------------------------------------------------------------------------
# Collaborator Defaults
# ---------------------------------------------------------------------------

DEFAULT_TAPER_SIZE = 7
"""Length in pixels of the default cosine edge taper used by resize."""

LOAD_ATTEMPTS = 3
"""Number of attempts made to read a cached binned image before giving up."""
