"""Direct Fourier slice insertion of a tilt series.

This module holds the host side of the insertion engine: the tilt series
container, the single sampler slot that stages one CTF image at a time on the
device, the accumulator volumes and the per-tilt loop that launches the
insertion kernel.
"""

import contextlib
import logging
from dataclasses import dataclass, fields

import numpy as np
import torch
from numba import cuda

from .constants import _DTYPE, SLICE_HALF_WIDTH
from .ctf import compute_ctf
from .errors import ConfigurationError, DeviceResourceError, KernelExecutionError
from .geometry import (
    ctf_image_shape,
    full_width,
    output_shape,
    size_shift,
    tilt_geometry,
    volume_origin,
)
from .kernels import _insert_half_slice_kernel, _insert_slice_kernel
from .utils import TorchCUDABridge, _grid_3d, to_host_image

logger = logging.getLogger(__name__)


# ============================================================================
# Tilt Series
# ============================================================================

@dataclass
class TiltSeries:
    """Per-tilt acquisition parameters.

    Every field is a 1D array with one entry per tilt. Lengths are checked on
    construction.

    Attributes
    ----------
    pixel_size : numpy.ndarray
        Pixel size in Angstrom.
    wavelength : numpy.ndarray
        Electron wavelength in Angstrom.
    cs : numpy.ndarray
        Spherical aberration in mm.
    defocus1 : numpy.ndarray
        Major-axis defocus in Angstrom.
    defocus2 : numpy.ndarray
        Minor-axis defocus in Angstrom.
    astigmatism_angle : numpy.ndarray
        Azimuth of the major axis in degrees.
    amplitude_contrast : numpy.ndarray
        Fraction of amplitude contrast.
    tilt_angle : numpy.ndarray
        Stage tilt angle in degrees.
    exposure : numpy.ndarray
        Accumulated exposure before each tilt in e/A^2.
    occupancy : numpy.ndarray
        Per-tilt scale factor.
    """

    pixel_size: np.ndarray
    wavelength: np.ndarray
    cs: np.ndarray
    defocus1: np.ndarray
    defocus2: np.ndarray
    astigmatism_angle: np.ndarray
    amplitude_contrast: np.ndarray
    tilt_angle: np.ndarray
    exposure: np.ndarray
    occupancy: np.ndarray

    def __post_init__(self):
        lengths = set()
        for field in fields(self):
            values = np.asarray(getattr(self, field.name), dtype=np.float64)
            if values.ndim != 1:
                raise ConfigurationError(
                    f"{field.name} must be a 1D array, got {values.ndim} dimensions"
                )
            setattr(self, field.name, values)
            lengths.add(values.shape[0])
        if len(lengths) != 1:
            raise ConfigurationError(f"Per-tilt arrays have different lengths: {sorted(lengths)}")
        if 0 in lengths:
            raise ConfigurationError("A tilt series needs at least one tilt")

    def __len__(self):
        return self.tilt_angle.shape[0]

    @classmethod
    def from_angles(cls, tilt_angles, pixel_size, wavelength, cs, defocus1,
                    defocus2=None, astigmatism_angle=0.0, amplitude_contrast=0.1,
                    exposure=0.0, occupancy=1.0):
        """Build a series from tilt angles, broadcasting scalar parameters.

        Examples
        --------
        >>> tilts = TiltSeries.from_angles([-30, 0, 30], 2.0, 0.0197, 2.7, 25000.0)
        >>> len(tilts)
        3
        """
        angles = np.atleast_1d(np.asarray(tilt_angles, dtype=np.float64))
        defocus2 = defocus1 if defocus2 is None else defocus2

        def per_tilt(value):
            return np.broadcast_to(np.asarray(value, dtype=np.float64), angles.shape).copy()

        return cls(
            pixel_size=per_tilt(pixel_size),
            wavelength=per_tilt(wavelength),
            cs=per_tilt(cs),
            defocus1=per_tilt(defocus1),
            defocus2=per_tilt(defocus2),
            astigmatism_angle=per_tilt(astigmatism_angle),
            amplitude_contrast=per_tilt(amplitude_contrast),
            tilt_angle=angles,
            exposure=per_tilt(exposure),
            occupancy=per_tilt(occupancy),
        )

    def reordered(self, order):
        """Return a new series with tilts taken in `order`."""
        order = np.asarray(order, dtype=np.intp)
        return TiltSeries(**{f.name: getattr(self, f.name)[order] for f in fields(self)})

    def ctf_parameters(self, index):
        """Keyword arguments of the CTF generator for tilt `index`."""
        return {
            f.name: float(getattr(self, f.name)[index])
            for f in fields(self)
            if f.name != 'tilt_angle'
        }


# ============================================================================
# Device Resources
# ============================================================================

class SamplerSlot:
    """The single device binding for the current tilt's CTF image.

    Only one image can be bound at a time. `bind` stages an image on the
    device for the duration of a ``with`` block and releases it on exit, so
    the next tilt has to wait for the previous one to leave its scope.
    """

    def __init__(self):
        self._bound = None

    @property
    def is_bound(self):
        return self._bound is not None

    @contextlib.contextmanager
    def bind(self, image):
        """Stage `image` on the device and yield the device array.

        Raises
        ------
        DeviceResourceError
            If the slot is already bound or the copy to the device fails.
        """
        if self._bound is not None:
            raise DeviceResourceError("Sampler slot is still bound to the previous tilt's image")
        self._bound = self._stage(image)
        try:
            yield self._bound
        finally:
            self._bound = None

    @staticmethod
    def _stage(image):
        if isinstance(image, torch.Tensor) and image.is_cuda:
            image = image.detach().to(dtype=torch.float32).contiguous()
            try:
                return TorchCUDABridge.tensor_to_cuda_array(image)
            except Exception as err:
                raise DeviceResourceError("Binding CUDA tensor as CTF image failed") from err
        host = to_host_image(image)
        if host.ndim != 2:
            raise ConfigurationError(f"CTF image must be 2D, got {host.ndim} dimensions")
        try:
            return cuda.to_device(host)
        except Exception as err:
            raise DeviceResourceError(f"Copying CTF image of shape {host.shape} to the device failed") from err


class AccumulatorVolumes:
    """Zero-initialized signal and weight volumes on the device.

    Used as a context manager, the volumes are released when the body raises
    and kept when it completes.

    Examples
    --------
    >>> with AccumulatorVolumes((8, 8, 8)) as volumes:
    ...     pass
    >>> volumes.signal.shape
    (8, 8, 8)
    """

    def __init__(self, shape):
        self.shape = tuple(int(n) for n in shape)
        self.signal = None
        self.weight = None

    def allocate(self):
        zeros = np.zeros(self.shape, dtype=_DTYPE)
        try:
            self.signal = cuda.to_device(zeros)
            self.weight = cuda.to_device(zeros)
        except Exception as err:
            self.release()
            raise DeviceResourceError(f"Allocating accumulators of shape {self.shape} failed") from err
        return self

    def release(self):
        self.signal = None
        self.weight = None

    @property
    def is_allocated(self):
        return self.signal is not None and self.weight is not None

    def copy_to_host(self):
        """Return host copies ``(signal, weight)``."""
        return self.signal.copy_to_host(), self.weight.copy_to_host()

    def __enter__(self):
        return self.allocate()

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            logger.debug("Releasing accumulators of shape %s after %s", self.shape, exc_type.__name__)
            self.release()
        return False


def to_tensor(d_array):
    """Expose a device array as a CUDA torch tensor without copying."""
    return TorchCUDABridge.cuda_array_to_tensor(d_array)


# ============================================================================
# Per-Tilt Orchestration
# ============================================================================

def insert_tilt_series(
    tilts,
    size,
    padding_factor=1,
    half_grid=False,
    squared_ctf=False,
    ctf_generator=compute_ctf,
    half_width=SLICE_HALF_WIDTH,
    weight_norm=None,
):
    """Insert every tilt of a series into Fourier-space accumulators.

    For each tilt, in order: compute its rotation, request its CTF image,
    stage the image in the sampler slot, launch the insertion kernel over the
    whole output grid and release the slot. All launches are synchronized
    once at the end.

    Parameters
    ----------
    tilts : TiltSeries
        Per-tilt acquisition parameters.
    size : sequence of int
        Requested output size (X, Y, Z).
    padding_factor : int, optional
        Oversampling of the CTF images relative to the output (default: 1).
    half_grid : bool, optional
        Use the Hermitian half-grid along x (default: False). Column ``j``
        of the accumulators then holds x frequency ``j``, the planes pivot
        about column 0 and the requested X must be even.
    squared_ctf : bool, optional
        Insert CTF^2 instead of the signed CTF (default: False).
    ctf_generator : callable, optional
        ``ctf_generator(shape, **params, half_grid=, squared=, centered=)``
        returning a 2D numpy array or torch tensor (default: `compute_ctf`).
    half_width : float, optional
        Slab half-width R in voxels (default: `SLICE_HALF_WIDTH`).
    weight_norm : float, optional
        Weight normalization R_norm. Defaults to `half_width`.

    Returns
    -------
    signal : numba.cuda.cudadrv.devicearray.DeviceNDArray
        Accumulated ``weight * CTF`` per voxel, float32, indexed [x, y, z].
    weight : numba.cuda.cudadrv.devicearray.DeviceNDArray
        Accumulated weight per voxel, same shape.

    Raises
    ------
    ConfigurationError
        Malformed inputs, raised before any device work, or a CTF image of
        the wrong shape.
    DeviceResourceError
        Allocation, staging or launch failure.
    KernelExecutionError
        A kernel failed; reported at the final synchronization.

    Examples
    --------
    >>> tilts = TiltSeries.from_angles([-30, 0, 30], 2.0, 0.0197, 2.7, 25000.0)
    >>> signal, weight = insert_tilt_series(tilts, (32, 32, 32))
    """
    if not isinstance(tilts, TiltSeries):
        raise ConfigurationError(f"tilts must be a TiltSeries, got {type(tilts).__name__}")
    shape = output_shape(size, half_grid)
    image_shape = ctf_image_shape(tuple(size)[:2], padding_factor, half_grid)
    if half_width <= 0:
        raise ConfigurationError(f"half_width must be positive, got {half_width}")
    norm = half_width if weight_norm is None else weight_norm
    if norm <= 0:
        raise ConfigurationError(f"weight_norm must be positive, got {norm}")

    sin_t, cos_t = tilt_geometry(tilts.tilt_angle)
    nx, ny, nz = shape
    ox, oy, oz = volume_origin(shape, half_grid)
    # Shifts follow the full size, whose x axis a half grid only stores in part
    full_nx = full_width(shape, half_grid)
    sx, sy, sz = size_shift((full_nx, ny, nz))
    W, H = image_shape
    grid, tpb = _grid_3d(nx, ny, nz)
    slot = SamplerSlot()

    logger.info(
        "Inserting %d tilts into %s accumulators (CTF image %s, half_grid=%s, squared=%s)",
        len(tilts), shape, image_shape, half_grid, squared_ctf,
    )
    with AccumulatorVolumes(shape) as volumes:
        for itilt in range(len(tilts)):
            image = ctf_generator(
                image_shape,
                **tilts.ctf_parameters(itilt),
                half_grid=half_grid,
                squared=squared_ctf,
                centered=True,
            )
            if tuple(image.shape) != image_shape:
                raise ConfigurationError(
                    f"CTF image for tilt {itilt} has shape {tuple(image.shape)}, expected {image_shape}"
                )
            with slot.bind(image) as d_image:
                try:
                    if half_grid:
                        _insert_half_slice_kernel[grid, tpb](
                            d_image, W, H, _DTYPE(padding_factor),
                            volumes.signal, volumes.weight, nx, ny, nz, full_nx,
                            oy, oz,
                            sin_t[itilt], cos_t[itilt],
                            sx, sy, sz,
                            _DTYPE(half_width), _DTYPE(norm),
                        )
                    else:
                        _insert_slice_kernel[grid, tpb](
                            d_image, W, H,
                            volumes.signal, volumes.weight, nx, ny, nz,
                            ox, oy, oz,
                            sin_t[itilt], cos_t[itilt],
                            sx, sy, sz,
                            _DTYPE(half_width), _DTYPE(norm),
                        )
                except Exception as err:
                    raise DeviceResourceError(f"Launching the insertion kernel for tilt {itilt} failed") from err
            logger.debug("Inserted tilt %d at %.2f degrees", itilt, tilts.tilt_angle[itilt])

        try:
            cuda.synchronize()
        except Exception as err:
            raise KernelExecutionError(
                f"Slice insertion failed after launching {len(tilts)} tilts"
            ) from err

    return volumes.signal, volumes.weight
