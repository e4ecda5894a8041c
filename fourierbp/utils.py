"""Utility classes and helper functions for fourierbp package.

This module provides PyTorch-CUDA bridging, trigonometric table generation,
host/device staging of 2D images and CUDA grid computation.
"""

import math
import numpy as np
import torch
from numba import cuda

from .constants import _DTYPE, _TPB_3D
from .errors import ConfigurationError


# ============================================================================
# PyTorch-CUDA Bridge
# ============================================================================

class TorchCUDABridge:
    """Bridge between PyTorch tensors and Numba CUDA arrays."""

    @staticmethod
    def tensor_to_cuda_array(tensor):
        """Convert a PyTorch CUDA tensor to a Numba CUDA DeviceNDArray.

        Provides a zero-copy view of a detached PyTorch tensor as a Numba CUDA array,
        avoiding CPU data transfers. The returned array shares memory with the
        original tensor.

        Parameters
        ----------
        tensor : torch.Tensor
            PyTorch tensor on a CUDA device.

        Returns
        -------
        numba.cuda.cudadrv.devicearray.DeviceNDArray
            Numba CUDA array view sharing memory with `tensor`.

        Raises
        ------
        ValueError
            If `tensor` is not on a CUDA device.
        """
        if not tensor.is_cuda:
            raise ValueError("Tensor must be on CUDA device")
        return cuda.as_cuda_array(tensor.detach())

    @staticmethod
    def cuda_array_to_tensor(d_array):
        """Wrap a Numba CUDA array as a PyTorch CUDA tensor without copying.

        Parameters
        ----------
        d_array : numba.cuda.cudadrv.devicearray.DeviceNDArray
            Device array to expose.

        Returns
        -------
        torch.Tensor
            Tensor sharing memory with `d_array`.
        """
        return torch.as_tensor(d_array, device="cuda")


def to_host_image(image):
    """Return a contiguous float32 host copy of a 2D image.

    Accepts numpy arrays and CPU torch tensors. CUDA tensors are not
    accepted here; they are staged with `TorchCUDABridge` instead.
    """
    if isinstance(image, torch.Tensor):
        image = image.detach().cpu().numpy()
    return np.ascontiguousarray(image, dtype=_DTYPE)


# ============================================================================
# Trigonometric Table Generation
# ============================================================================

def _trig_tables(angles, dtype=_DTYPE):
    """Compute sine and cosine tables for input angles.

    Parameters
    ----------
    angles : array-like or torch.Tensor
        Angles in radians.
    dtype : numpy.dtype, optional
        Data type of the returned tables. Default is `_DTYPE`.

    Returns
    -------
    sin : numpy.ndarray
        Sine of `angles`.
    cos : numpy.ndarray
        Cosine of `angles`.

    Examples
    --------
    >>> sin, cos = _trig_tables([0.0, math.pi / 2])
    >>> cos[0]
    1.0
    """
    if isinstance(angles, torch.Tensor):
        angles_cpu = angles.detach().to(device="cpu", dtype=torch.float64)
    else:
        angles_cpu = torch.as_tensor(np.asarray(angles, dtype=np.float64))
    # Evaluated in double precision and rounded once to the output dtype
    sin = torch.sin(angles_cpu).numpy().astype(dtype)
    cos = torch.cos(angles_cpu).numpy().astype(dtype)
    return sin, cos


# ============================================================================
# CUDA Grid Computation
# ============================================================================

def _grid_3d(n1, n2, n3, tpb=_TPB_3D):
    """Compute 3D CUDA grid and block dimensions.

    Parameters
    ----------
    n1 : int
        Number of voxels along the first dimension (x).
    n2 : int
        Number of voxels along the second dimension (y).
    n3 : int
        Number of voxels along the third dimension (z).
    tpb : tuple of int, optional
        Threads per block (default is `_TPB_3D`).

    Returns
    -------
    grid : tuple of int
        Blocks count per axis.
    tpb : tuple of int
        Threads per block per axis.

    Examples
    --------
    >>> grid, tpb = _grid_3d(64, 64, 30)
    >>> grid
    (8, 8, 4)
    >>> tpb
    (8, 8, 8)
    """
    if min(n1, n2, n3) < 1:
        raise ConfigurationError(f"Grid dimensions must be positive, got {(n1, n2, n3)}")
    return (
        math.ceil(n1 / tpb[0]),
        math.ceil(n2 / tpb[1]),
        math.ceil(n3 / tpb[2]),
    ), tpb
