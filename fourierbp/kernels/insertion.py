"""CUDA kernels for Fourier slice insertion.

This module contains the device functions of the plane-distance weight model
and of the clamped bilinear slice sampler, and the per-voxel kernels that
insert one tilt's CTF-weighted Fourier image into the signal and weight
accumulators, on a full grid or on a Hermitian half grid.
"""

import math
from numba import cuda

from ..constants import _FASTMATH_DECORATOR, _DEVICE_DECORATOR, _PI


# ============================================================================
# Geometry / Weight Model
# ============================================================================

@_DEVICE_DECORATOR
def _plane_weight(tw, half_width, norm):
    """Cosine taper of the signed distance ``tw`` to the inserted plane.

    Returns ``0.5 * (1 + cos(tw * pi / R)) / norm``, which is the peak value
    ``1 / norm`` on the plane and zero at ``|tw| == R``. Callers only evaluate
    it for ``|tw| <= R``.
    """
    return 0.5 * (1.0 + math.cos(tw * _PI / half_width)) / norm


# ============================================================================
# Slice Sampler
# ============================================================================

@_DEVICE_DECORATOR
def _sample_bilinear(d_image, W, H, tu, tv):
    """Bilinear lookup of a 2D image at normalized coordinates.

    Follows linear-filtered texture addressing: pixel ``i`` is centered on
    ``(i + 0.5) / W``, and neighbours outside the image clamp to the edge.

    Parameters
    ----------
    d_image : numba.cuda.cudadrv.devicearray.DeviceNDArray
        Image of shape (W, H), indexed [x, y].
    W : int
        Number of pixels along x.
    H : int
        Number of pixels along y.
    tu : float
        Normalized x coordinate.
    tv : float
        Normalized y coordinate.

    Returns
    -------
    float
        Weighted average of the four nearest pixels.
    """
    fx = tu * W - 0.5
    fy = tv * H - 0.5
    ix0 = int(math.floor(fx))
    iy0 = int(math.floor(fy))
    dx = fx - ix0
    dy = fy - iy0

    # Clamp-to-edge addressing
    ix1 = min(max(ix0 + 1, 0), W - 1)
    iy1 = min(max(iy0 + 1, 0), H - 1)
    ix0 = min(max(ix0, 0), W - 1)
    iy0 = min(max(iy0, 0), H - 1)

    one_minus_dx = 1.0 - dx
    one_minus_dy = 1.0 - dy
    row0 = (d_image[ix0, iy0] * one_minus_dx + d_image[ix1, iy0] * dx) * one_minus_dy
    row1 = (d_image[ix0, iy1] * one_minus_dx + d_image[ix1, iy1] * dx) * dy
    return row0 + row1


# ============================================================================
# Accumulation Kernel
# ============================================================================

@_FASTMATH_DECORATOR
def _insert_slice_kernel(
    d_image, W, H,
    d_signal, d_weight, Nx, Ny, Nz,
    ox, oy, oz,
    sin_t, cos_t,
    sx, sy, sz,
    half_width, norm
):
    """Insert one tilt's Fourier image as a tilted plane.

    Each thread owns one output voxel, so no two threads of a launch touch the
    same address and plain read-modify-write accumulation is safe.

    Parameters
    ----------
    d_image : numba.cuda.cudadrv.devicearray.DeviceNDArray
        CTF-weighted Fourier image of the current tilt, shape (W, H).
    W : int
        Number of image pixels along x.
    H : int
        Number of image pixels along y.
    d_signal : numba.cuda.cudadrv.devicearray.DeviceNDArray
        Signal accumulator, shape (Nx, Ny, Nz).
    d_weight : numba.cuda.cudadrv.devicearray.DeviceNDArray
        Weight accumulator, shape (Nx, Ny, Nz).
    Nx : int
        Number of voxels along the x-axis.
    Ny : int
        Number of voxels along the y-axis.
    Nz : int
        Number of voxels along the z-axis (the tilt plane normal at 0 degrees).
    ox : int
        Origin voxel along x (Nx // 2).
    oy : int
        Origin voxel along y (Ny // 2).
    oz : int
        Origin voxel along z (Nz // 2).
    sin_t : float
        Sine of the (negated) tilt angle.
    cos_t : float
        Cosine of the (negated) tilt angle.
    sx : float
        Size shift along x, 0.5 for even Nx.
    sy : float
        Size shift along y, 0.5 for even Ny.
    sz : float
        Size shift along z, 0.5 for even Nz.
    half_width : float
        Slab half-width R in voxels.
    norm : float
        Weight normalization R_norm.

    Notes
    -----
    The bounds guard is ``0 < t < 1 - 1/N`` on the two in-plane axes but only
    ``0 < t < 1`` along the plane normal.
    """
    ix, iy, iz = cuda.grid(3)
    if ix >= Nx or iy >= Ny or iz >= Nz:
        return

    u = ix - ox
    w = iz - oz

    # Signed distance to the tilted plane through the origin
    tw = -u * sin_t + w * cos_t + sz
    if abs(tw) > half_width:
        return

    tu = (u * cos_t + w * sin_t + sx) / Nx + 0.5
    tv = (iy - oy + sy) / Ny + 0.5
    tn = tw / Nz + 0.5

    if tu <= 0.0 or tu >= 1.0 - 1.0 / Nx:
        return
    if tv <= 0.0 or tv >= 1.0 - 1.0 / Ny:
        return
    if tn <= 0.0 or tn >= 1.0:
        return

    wgt = _plane_weight(tw, half_width, norm)
    val = _sample_bilinear(d_image, W, H, tu, tv)

    d_signal[ix, iy, iz] += wgt * val
    d_weight[ix, iy, iz] += wgt


@_FASTMATH_DECORATOR
def _insert_half_slice_kernel(
    d_image, W, H, scale,
    d_signal, d_weight, Nx, Ny, Nz, X,
    oy, oz,
    sin_t, cos_t,
    sx, sy, sz,
    half_width, norm
):
    """Insert one tilt's Fourier image into Hermitian half-grid accumulators.

    Column ``ix`` of the accumulators holds x frequency ``ix``, so the plane
    pivots about column 0. The image holds the non-negative x frequencies of
    a centered spectrum: column ``i`` is frequency ``i / scale`` and row
    ``H // 2`` is the y origin. A rotated ``kx < 0`` reads the conjugate
    sample at ``(-kx, -ky)``.

    Parameters
    ----------
    d_image : numba.cuda.cudadrv.devicearray.DeviceNDArray
        Half-grid CTF image of the current tilt, shape (W, H).
    W : int
        Number of image pixels along x (``scale * X // 2 + 1``).
    H : int
        Number of image pixels along y.
    scale : float
        Image pixels per accumulator voxel (the padding factor).
    d_signal : numba.cuda.cudadrv.devicearray.DeviceNDArray
        Signal accumulator, shape (Nx, Ny, Nz).
    d_weight : numba.cuda.cudadrv.devicearray.DeviceNDArray
        Weight accumulator, shape (Nx, Ny, Nz).
    Nx : int
        Number of voxels along the reduced x-axis (``X // 2 + 1``).
    Ny : int
        Number of voxels along the y-axis.
    Nz : int
        Number of voxels along the z-axis.
    X : int
        Full x size the half grid stands for.
    oy : int
        Origin voxel along y (Ny // 2).
    oz : int
        Origin voxel along z (Nz // 2).
    sin_t : float
        Sine of the (negated) tilt angle.
    cos_t : float
        Cosine of the (negated) tilt angle.
    sx : float
        Size shift of the full x size.
    sy : float
        Size shift along y.
    sz : float
        Size shift along z.
    half_width : float
        Slab half-width R in voxels.
    norm : float
        Weight normalization R_norm.

    Notes
    -----
    The bounds guard is evaluated on the equivalent full grid of width `X`,
    so a half-grid voxel is accepted exactly when its full-grid counterpart
    at ``X // 2 + ix`` is.
    """
    ix, iy, iz = cuda.grid(3)
    if ix >= Nx or iy >= Ny or iz >= Nz:
        return

    u = ix
    v = iy - oy
    w = iz - oz

    tw = -u * sin_t + w * cos_t + sz
    if abs(tw) > half_width:
        return

    kx = u * cos_t + w * sin_t
    tu = (kx + sx) / X + 0.5
    tv = (v + sy) / Ny + 0.5
    tn = tw / Nz + 0.5

    if tu <= 0.0 or tu >= 1.0 - 1.0 / X:
        return
    if tv <= 0.0 or tv >= 1.0 - 1.0 / Ny:
        return
    if tn <= 0.0 or tn >= 1.0:
        return

    # Hermitian symmetry: F(-kx, -ky) is the conjugate of F(kx, ky)
    if kx < 0.0:
        kx = -kx
        v = -v
    fx = kx * scale
    fy = H // 2 + v * scale

    wgt = _plane_weight(tw, half_width, norm)
    val = _sample_bilinear(d_image, W, H, (fx + 0.5) / W, (fy + 0.5) / H)

    d_signal[ix, iy, iz] += wgt * val
    d_weight[ix, iy, iz] += wgt
