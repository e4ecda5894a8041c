"""Tilt geometry and Fourier grid conventions.

This module provides the host-side geometry of single-axis slice insertion:
per-tilt rotation parameters, the even/odd size-shift convention, the shapes
of half-grid and full-grid Fourier images, and a NumPy reference of the
plane-distance weight model evaluated by the insertion kernel.
"""

import math
import numpy as np

from .constants import _DTYPE, SLICE_HALF_WIDTH
from .errors import ConfigurationError
from .utils import _trig_tables


# ============================================================================
# Shape Validation
# ============================================================================

def validate_size(size):
    """Return `size` as a tuple of three positive ints.

    Raises
    ------
    ConfigurationError
        If `size` does not hold exactly three positive integers.
    """
    try:
        dims = tuple(size)
    except TypeError:
        raise ConfigurationError(f"Output size must be a sequence of 3 integers, got {size!r}") from None
    if len(dims) != 3:
        raise ConfigurationError(f"Output size must have 3 dimensions, got {len(dims)}")
    for n in dims:
        if isinstance(n, (bool, np.bool_)) or not isinstance(n, (int, np.integer)) or n < 1:
            raise ConfigurationError(f"Output size must hold positive integers, got {dims}")
    return tuple(int(n) for n in dims)


# ============================================================================
# Tilt Geometry
# ============================================================================

def tilt_geometry(tilt_angles):
    """Rotation parameters of a single-axis tilt series.

    The tilt axis is y. Angles are given in degrees and negated, so a tilt of
    +θ rotates the inserted plane by -θ about y.

    Parameters
    ----------
    tilt_angles : array-like or torch.Tensor
        Tilt angles in degrees, one per tilt.

    Returns
    -------
    sin : numpy.ndarray
        sin(-θ) per tilt.
    cos : numpy.ndarray
        cos(-θ) per tilt.

    Examples
    --------
    >>> sin, cos = tilt_geometry([0.0, 30.0])
    >>> float(sin[1])
    -0.5
    """
    radians = -np.radians(np.asarray(tilt_angles, dtype=np.float64))
    return _trig_tables(radians)


def size_shift(shape):
    """Per-axis 0.5 voxel shift applied to even-sized dimensions."""
    return tuple(_DTYPE(0.5) if n % 2 == 0 else _DTYPE(0.0) for n in shape)


def volume_origin(shape, half_grid=False):
    """Integer origin voxel of each axis (``n // 2``).

    The reduced x axis of a half grid starts at the zero frequency, so its
    origin is 0.
    """
    origin = tuple(int(n) // 2 for n in shape)
    if half_grid:
        return (0,) + origin[1:]
    return origin


def full_width(shape, half_grid=False):
    """x size of the full grid that `shape` stands for."""
    nx = int(shape[0])
    return 2 * (nx - 1) if half_grid else nx


# ============================================================================
# Fourier Grid Shapes
# ============================================================================

def ctf_image_shape(size_xy, padding_factor=1, half_grid=False):
    """Shape (x, y) of the per-tilt CTF image.

    Parameters
    ----------
    size_xy : sequence of int
        In-plane size (X, Y) of the output volume.
    padding_factor : int, optional
        Oversampling of the CTF image relative to the output (default: 1).
    half_grid : bool, optional
        Store only the non-negative half of the x frequencies (default: False).

    Returns
    -------
    tuple of int
        ``(P*X//2 + 1, P*Y)`` in half-grid mode, ``(P*X, P*Y)`` otherwise.
    """
    if padding_factor < 1 or int(padding_factor) != padding_factor:
        raise ConfigurationError(f"padding_factor must be a positive integer, got {padding_factor}")
    nx, ny = (int(padding_factor) * int(n) for n in size_xy)
    if half_grid:
        return fourier_extent((nx, ny), half_grid=True)
    return nx, ny


def fourier_extent(size_xy, half_grid=False):
    """Number of non-redundant samples along the in-plane Fourier axes.

    A half-grid keeps ``N//2 + 1`` samples (frequencies ``0..N//2``) along the
    reduced x axis and the full y axis. A centered full grid reaches ``N//2``
    samples to either side of its origin on both axes.

    The half-grid extent sets the shape of half-grid CTF images and
    accumulators. The full-grid extent is reported only: full-grid volumes
    keep the requested size and callers that want the ``N//2`` band crop it
    themselves.

    Examples
    --------
    >>> fourier_extent((64, 64), half_grid=True)
    (33, 64)
    >>> fourier_extent((64, 64), half_grid=False)
    (32, 32)
    """
    nx, ny = (int(n) for n in size_xy)
    if half_grid:
        return nx // 2 + 1, ny
    return nx // 2, ny // 2


def output_shape(size, half_grid=False):
    """Shape of the signal and weight volumes for a requested `size`.

    In half-grid mode the x axis of the accumulators is reduced the same way
    as the CTF image, to ``X//2 + 1`` samples, and X must be even.
    """
    nx, ny, nz = validate_size(size)
    if half_grid:
        if nx % 2:
            raise ConfigurationError(f"Half-grid mode needs an even x size, got {nx}")
        return fourier_extent((nx, ny), half_grid=True) + (nz,)
    return nx, ny, nz


# ============================================================================
# Host Reference of the Weight Model
# ============================================================================

def plane_weight(tw, half_width=SLICE_HALF_WIDTH, norm=None):
    """Cosine taper of the distance to the inserted plane.

    Parameters
    ----------
    tw : float or numpy.ndarray
        Signed distance to the plane, in voxels.
    half_width : float, optional
        Slab half-width R (default: `SLICE_HALF_WIDTH`).
    norm : float, optional
        Normalization R_norm. Defaults to `half_width`, which makes the
        taper integrate to one across the slab.

    Returns
    -------
    numpy.ndarray
        ``0.5 * (1 + cos(tw*pi/R)) / R_norm`` inside the slab, 0 outside.
    """
    norm = half_width if norm is None else norm
    tw = np.asarray(tw, dtype=np.float64)
    weight = 0.5 * (1.0 + np.cos(tw * math.pi / half_width)) / norm
    return np.where(np.abs(tw) <= half_width, weight, 0.0)


def rotated_frequencies(shape, sin_t, cos_t, half_grid=False):
    """Rotated frequency and plane distance of every voxel.

    Returns
    -------
    kx : numpy.ndarray
        x frequency of the tilt image each voxel maps to, in voxels.
    ky : numpy.ndarray
        y frequency, in voxels.
    tw : numpy.ndarray
        Signed distance of each voxel to the plane, in voxels.
    """
    nx, ny, nz = shape
    ox, oy, oz = volume_origin(shape, half_grid)
    sz = float(size_shift(shape)[2])
    x, y, z = np.meshgrid(
        np.arange(nx, dtype=np.float64),
        np.arange(ny, dtype=np.float64),
        np.arange(nz, dtype=np.float64),
        indexing="ij",
    )
    u = x - ox
    w = z - oz
    tw = -u * sin_t + w * cos_t + sz
    kx = u * cos_t + w * sin_t
    return kx, y - oy, tw


def slice_coordinates(shape, sin_t, cos_t, half_grid=False):
    """Plane distance and normalized coordinates of every voxel.

    In half-grid mode `shape` is the reduced accumulator shape and ``tu`` is
    the coordinate on the equivalent full grid, used by the bounds guard.

    Returns
    -------
    tu, tv, tn : numpy.ndarray
        Normalized coordinates along the image x, image y and plane normal.
    tw : numpy.ndarray
        Signed distance of each voxel to the plane, in voxels.
    """
    _, ny, nz = shape
    nx = full_width(shape, half_grid)
    sx, sy, _ = (float(s) for s in size_shift((nx, ny, nz)))
    kx, ky, tw = rotated_frequencies(shape, sin_t, cos_t, half_grid)
    tu = (kx + sx) / nx + 0.5
    tv = (ky + sy) / ny + 0.5
    tn = tw / nz + 0.5
    return tu, tv, tn, tw


def acceptance_mask(shape, sin_t, cos_t, half_width=SLICE_HALF_WIDTH, half_grid=False):
    """Voxels of `shape` that receive a contribution from one tilt."""
    ny = shape[1]
    nx = full_width(shape, half_grid)
    tu, tv, tn, tw = slice_coordinates(shape, sin_t, cos_t, half_grid)
    return (
        (np.abs(tw) <= half_width)
        & (tu > 0.0) & (tu < 1.0 - 1.0 / nx)
        & (tv > 0.0) & (tv < 1.0 - 1.0 / ny)
        & (tn > 0.0) & (tn < 1.0)
    )


def half_grid_pixels(kx, ky, image_height, scale=1):
    """Pixel coordinates of frequencies in a half-grid image.

    Negative ``kx`` are folded onto their Hermitian partner ``(-kx, -ky)``.
    Column ``i`` of the image holds frequency ``i / scale`` and row
    ``image_height // 2`` the y origin.

    Examples
    --------
    >>> half_grid_pixels(np.array([-1.5]), np.array([2.0]), 9)
    (array([1.5]), array([2.]))
    """
    kx = np.asarray(kx, dtype=np.float64)
    ky = np.asarray(ky, dtype=np.float64)
    ky = np.where(kx < 0, -ky, ky)
    return np.abs(kx) * scale, image_height // 2 + ky * scale
