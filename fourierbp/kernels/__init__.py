"""CUDA kernels for Fourier slice insertion.

This subpackage contains the device functions and the kernels that insert
CTF-weighted Fourier images into full-grid or half-grid 3D accumulators.
"""

from .insertion import (
    _plane_weight,
    _sample_bilinear,
    _insert_slice_kernel,
    _insert_half_slice_kernel,
)

__all__ = [
    '_plane_weight',
    '_sample_bilinear',
    '_insert_slice_kernel',
    '_insert_half_slice_kernel',
]
