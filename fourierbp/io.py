"""Loading of binned tilt series and tomograms with an on-disk cache.

Binned copies of MRC images are written once to a cache directory and
reused. Volumes are binned with IMOD's ``binvol``; tilt series are binned in
Fourier space (low-pass, then crop of the centered spectrum to an odd size).
Reads of the cache are retried with growing pauses because the file may
still be written by another worker.
"""

import io
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import mrcfile
import numpy as np

from .constants import _DTYPE, LOAD_ATTEMPTS
from .errors import CachedImageLoadError, ConfigurationError, ReconstructionError
from .resize import resize

logger = logging.getLogger(__name__)


@dataclass
class LoadedImage:
    """Image data with the voxel size and origin of its MRC header."""

    data: Optional[np.ndarray]
    voxel_size: Optional[Tuple[float, float, float]]
    origin: Optional[Tuple[float, float, float]]
    extension: str


def cached_name(path, sampling, cache_dir='cache'):
    """Path of the binned copy of `path` in `cache_dir`."""
    path = Path(path)
    return Path(cache_dir) / f"{path.stem}_bin{int(sampling)}{path.suffix}"


def _is_valid(path):
    report = io.StringIO()
    try:
        valid = mrcfile.validate(str(path), print_file=report)
    except (OSError, ValueError) as err:
        logger.debug("Could not read %s for validation: %s", path, err)
        return False
    if not valid:
        logger.debug("Validation of %s failed:\n%s", path, report.getvalue())
    return valid


def _read_mrc(path):
    with mrcfile.open(str(path), permissive=False) as mrc:
        data = np.array(mrc.data, dtype=_DTYPE)
        vs = mrc.voxel_size
        origin = mrc.header.origin
        return (
            data,
            (float(vs.x), float(vs.y), float(vs.z)),
            (float(origin.x), float(origin.y), float(origin.z)),
        )


def lowpass_filter(shape, cutoff, edge=None):
    """Centered low-pass filter with a cosine edge.

    Parameters
    ----------
    shape : tuple of int
        Image shape.
    cutoff : float
        Resolution cutoff in pixels; frequencies above ``1/cutoff`` are removed.
    edge : float, optional
        Width of the cosine roll-off in cycles per pixel. Defaults to a
        tenth of the cutoff frequency.

    Returns
    -------
    numpy.ndarray
        Filter with the zero frequency at ``n // 2`` of every axis.
    """
    axes = [(np.arange(n) - n // 2) / n for n in shape]
    grids = np.meshgrid(*axes, indexing='ij')
    radius = np.sqrt(sum(g * g for g in grids))
    f_cut = 1.0 / cutoff
    edge = 0.1 * f_cut if edge is None else edge
    filt = np.ones(shape, dtype=np.float64)
    rolloff = (radius > f_cut - edge) & (radius <= f_cut)
    filt[rolloff] = 0.5 * (1.0 + np.cos(np.pi * (radius[rolloff] - (f_cut - edge)) / edge))
    filt[radius > f_cut] = 0.0
    return filt


def binned_size(size, sampling):
    """Odd size of an axis of `size` pixels binned by `sampling`.

    Examples
    --------
    >>> binned_size(64, 2), binned_size(66, 2)
    (31, 33)
    """
    n = int(size) // int(sampling)
    return n - 1 + n % 2


def _crop_limits(size, new_size):
    """Per-edge crop of a centered spectrum keeping the origin at ``n // 2``."""
    left = size // 2 - new_size // 2
    right = (size - new_size) - left
    return -left, -right


def bin_projection(projection, sampling, filt=None):
    """Bin a 2D image by low-pass filtering and cropping its spectrum.

    The cropped spectrum is scaled by the ratio of output to input pixel
    counts, so the binned image keeps the mean intensity of `projection`.
    Without that factor an inverse FFT of the cropped spectrum would scale
    intensities by the input/output pixel ratio instead.
    """
    ny, nx = projection.shape
    out_y, out_x = binned_size(ny, sampling), binned_size(nx, sampling)
    if filt is None:
        filt = lowpass_filter((ny, nx), 2 * sampling)
    spectrum = np.fft.fftshift(np.fft.fft2(projection)) * filt
    limits = [*_crop_limits(ny, out_y), *_crop_limits(nx, out_x)]
    spectrum = resize(spectrum, limits, origin=1, taper=False)
    # Rescale so the mean survives the change of size
    spectrum *= (out_y * out_x) / (ny * nx)
    return np.real(np.fft.ifft2(np.fft.ifftshift(spectrum))).astype(_DTYPE)


def bin_stack(path, output, sampling):
    """Write a binned copy of the tilt series `path` to `output`."""
    try:
        with mrcfile.open(str(path), permissive=True) as mrc:
            stack = np.array(mrc.data, dtype=_DTYPE)
            vs = mrc.voxel_size
            origin = mrc.header.origin
            voxel_size = (float(vs.x) * sampling, float(vs.y) * sampling, float(vs.z) * sampling)
            new_origin = (float(origin.x) / sampling, float(origin.y) / sampling, float(origin.z) / sampling)
    except (OSError, ValueError) as err:
        raise ReconstructionError(f"Could not open the tilt series {path}") from err

    if stack.ndim == 2:
        stack = stack[np.newaxis]
    filt = lowpass_filter(stack.shape[1:], 2 * sampling)
    binned = np.stack([bin_projection(projection, sampling, filt) for projection in stack])

    with mrcfile.new(str(output), overwrite=True) as mrc:
        mrc.set_data(binned)
        mrc.voxel_size = voxel_size
        mrc.header.origin = new_origin
    logger.info("Binned %s by %d into %s with shape %s", path, sampling, output, binned.shape)


def bin_volume(path, output, sampling):
    """Write a binned copy of the volume `path` to `output` with IMOD binvol."""
    command = [
        'binvol', '-BinningFactor', str(int(sampling)), '-antialias', '6',
        str(path), str(output),
    ]
    try:
        subprocess.run(command, check=True, stdout=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError) as err:
        raise ReconstructionError(f"binvol failed to bin {path}") from err
    logger.info("Binned %s by %d into %s", path, sampling, output)


def load_with_retry(path, max_attempts=LOAD_ATTEMPTS, sleep=time.sleep):
    """Read an MRC file, pausing ``attempt**3`` time units after each failure.

    Raises
    ------
    CachedImageLoadError
        If every attempt failed.
    """
    last_error = None
    for attempt in range(1, max_attempts + 1):
        try:
            logger.debug("Attempting to load %s", path)
            return _read_mrc(path)
        except (OSError, ValueError) as err:
            last_error = err
            logger.warning("Attempt %d of %d to load %s failed: %s", attempt, max_attempts, path, err)
            sleep(attempt ** 3)
    raise CachedImageLoadError(f"Could not load {path} after {max_attempts} attempts") from last_error


def load_or_bin(path, sampling, dimension, cache_dir='cache',
                max_attempts=LOAD_ATTEMPTS, sleep=time.sleep):
    """Load an image binned by `sampling`, creating the cached copy if needed.

    Parameters
    ----------
    path : str or pathlib.Path
        MRC tilt series (`dimension` 2) or volume (`dimension` 3).
    sampling : int
        Binning factor. A negative value creates the cached copy for
        ``abs(sampling)`` without loading it. Values up to 1 load `path`
        directly.
    dimension : int
        2 for a tilt series, 3 for a volume.
    cache_dir : str or pathlib.Path, optional
        Directory of the binned copies (default: 'cache').
    max_attempts : int, optional
        Attempts made to read the cached copy (default: `LOAD_ATTEMPTS`).
    sleep : callable, optional
        Called with the pause length after each failed attempt.

    Returns
    -------
    LoadedImage
        The image with ``data=None`` when only the cache was requested.
    """
    if dimension not in (2, 3):
        raise ConfigurationError(f"dimension should be 2 or 3, got {dimension}")
    path = Path(path)
    rate = abs(int(sampling))
    load = sampling >= 0

    if rate <= 1:
        logger.warning("Sampling %s requested for %s, loading it without binning", sampling, path)
        data, voxel_size, origin = _read_mrc(path)
        return LoadedImage(data, voxel_size, origin, path.suffix)

    output = cached_name(path, rate, cache_dir)
    rebuild = True
    if output.exists():
        if _is_valid(output):
            logger.info("Using cached file %s", output)
            rebuild = False
        else:
            logger.warning("Cached file %s exists but appears to be corrupt, rebuilding it", output)

    if rebuild:
        output.parent.mkdir(parents=True, exist_ok=True)
        if dimension == 3:
            bin_volume(path, output, rate)
        else:
            bin_stack(path, output, rate)

    if not load:
        return LoadedImage(None, None, None, path.suffix)
    data, voxel_size, origin = load_with_retry(output, max_attempts=max_attempts, sleep=sleep)
    return LoadedImage(data, voxel_size, origin, path.suffix)
