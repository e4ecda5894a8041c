"""Pad, crop and taper 2D/3D images.

`resize` pads and/or crops every edge of an image independently and can
soften the new edges with a taper. It works on centered images and on
non-centered Fourier images (zero frequency first), whose edges sit in the
middle of the array.
"""

import itertools
import numpy as np

from .constants import DEFAULT_TAPER_SIZE
from .errors import ConfigurationError


_PRECISIONS = {'single': np.float32, 'double': np.float64}


def taper(kind='cosine', start=1.0, end=0.0, size=DEFAULT_TAPER_SIZE):
    """1D taper going from `start` (center side) to `end` (edge side).

    The last sample equals `end`; `start` itself is not included.

    Examples
    --------
    >>> taper('linear', size=4)
    array([0.75, 0.5 , 0.25, 0.  ])
    """
    if size < 1:
        raise ConfigurationError(f"Taper size must be positive, got {size}")
    x = np.arange(1, size + 1, dtype=np.float64) / size
    if kind == 'linear':
        ramp = x
    elif kind == 'cosine':
        ramp = 0.5 * (1.0 - np.cos(np.pi * x))
    else:
        raise ConfigurationError(f"Taper kind should be 'cosine' or 'linear', got {kind!r}")
    return start + (end - start) * ramp


def _parse_taper(option):
    if option is True:
        return taper('cosine', 1.0, 0.0, DEFAULT_TAPER_SIZE)
    if option is False or option is None:
        return None
    if isinstance(option, (tuple, list)) and len(option) == 2 and isinstance(option[0], str):
        return taper(option[0], 1.0, 0.0, int(option[1]))
    values = np.asarray(option, dtype=np.float64)
    if values.ndim != 1 or values.size == 0:
        raise ConfigurationError("An explicit taper must be a non-empty 1D vector")
    return values


def _along(values, axis, ndim):
    """Reshape a 1D vector to broadcast along `axis`."""
    shape = [1] * ndim
    shape[axis] = values.size
    return values.reshape(shape)


def _index(axis, ndim, region):
    index = [slice(None)] * ndim
    index[axis] = region
    return tuple(index)


def _blend(image, axis, region, weights, value):
    idx = _index(axis, image.ndim, region)
    w = _along(weights, axis, image.ndim)
    image[idx] = image[idx] * w + value * (1.0 - w)


def resize(image, limits, origin=1, value=0.0, taper=True, force_taper=False,
           precision=None, rng=None):
    """Pad and/or crop an image.

    Parameters
    ----------
    image : numpy.ndarray
        2D or 3D image.
    limits : sequence of int
        Pixels to add (positive) or remove (negative) per edge:
        ``[x_left, x_right, y_left, y_right]`` in 2D, plus
        ``[z_left, z_right]`` in 3D.
    origin : int, optional
        1 or 2 for a centered image, -1 for a non-centered Fourier image
        whose edges are in the middle of the array (default: 1).
    value : float or str, optional
        Padding value, ``'mean'`` for the image mean or ``'uniform'`` for
        white gaussian noise with the image mean and standard deviation
        (default: 0).
    taper : bool or tuple or array-like, optional
        Taper blended into the padded edges before padding: True for a
        cosine taper of `DEFAULT_TAPER_SIZE` pixels, ``(kind, size)``, or an
        explicit vector ordered center to edge. False disables it
        (default: True).
    force_taper : bool, optional
        Taper every edge, padded or not. Cropped edges are tapered after
        cropping (default: False).
    precision : str, optional
        ``'single'`` or ``'double'``. Defaults to the precision of `image`.
    rng : numpy.random.Generator, optional
        Generator for ``value='uniform'``.

    Returns
    -------
    numpy.ndarray
        The resized image.

    Examples
    --------
    >>> out = resize(np.ones((64, 64)), [10, 10, -5, 0], taper=False)
    >>> out.shape
    (84, 59)
    """
    image = np.asarray(image)
    limits = np.asarray(limits)
    if limits.size == 4:
        ndim = 2
    elif limits.size == 6:
        ndim = 3
    else:
        raise ConfigurationError(f"limits should be of size 4 (2d) or 6 (3d), got {limits.size}")
    if not np.issubdtype(limits.dtype, np.integer):
        if not np.all(np.mod(limits, 1) == 0):
            raise ConfigurationError("limits must be integers")
        limits = limits.astype(np.int64)
    if image.ndim != ndim:
        raise ConfigurationError(f"image ({image.ndim}D) and limits ({ndim}D) do not correspond")
    if origin not in (-1, 1, 2):
        raise ConfigurationError(f"origin should be 1, 2, or -1, got {origin}")
    if not isinstance(force_taper, bool):
        raise ConfigurationError(f"force_taper should be a boolean, got {type(force_taper).__name__}")

    if precision is None:
        dtype = image.dtype if np.issubdtype(image.dtype, np.inexact) else np.float64
    elif precision in _PRECISIONS:
        dtype = _PRECISIONS[precision]
    else:
        raise ConfigurationError(f"precision should be 'single' or 'double', got {precision!r}")

    edges = limits.reshape(ndim, 2)
    do_pad = bool(np.any(edges > 0))
    do_crop = bool(np.any(edges < 0))
    weights = _parse_taper(taper)

    if not do_pad and not do_crop and not (weights is not None and force_taper):
        return image if image.dtype == dtype else image.astype(dtype)

    uniform = isinstance(value, str) and value == 'uniform'
    if isinstance(value, str):
        if value not in ('uniform', 'mean'):
            raise ConfigurationError(f"value should be a number, 'mean' or 'uniform', got {value!r}")
        fill = float(image.mean())
    else:
        fill = float(value)

    in_size = np.array(image.shape)
    out_size = in_size + edges.sum(axis=1)
    if np.any(out_size < 1):
        raise ConfigurationError(f"Cropping {limits.tolist()} leaves no pixels of {image.shape}")

    if uniform:
        rng = np.random.default_rng() if rng is None else rng
        out = (rng.standard_normal(tuple(out_size)) * float(image.std()) + fill).astype(dtype)
    else:
        out = np.full(tuple(out_size), fill, dtype=dtype)

    work = image.astype(dtype, copy=True)
    if origin == -1:
        out = _resize_fourier(work, out, edges, weights, fill, do_pad, do_crop, force_taper)
    else:
        out = _resize_centered(work, out, edges, weights, fill, do_pad, do_crop, force_taper)
    return out


def _resize_centered(image, out, edges, weights, fill, do_pad, do_crop, force_taper):
    ndim = image.ndim
    crop = np.abs(edges * (edges < 0))
    pad = edges * (edges > 0)

    if weights is not None and (do_pad or force_taper):
        s = weights.size
        flipped = weights[::-1]
        for axis in range(ndim):
            n = image.shape[axis]
            if s + crop[axis].max() > n:
                raise ConfigurationError(f"Taper of {s} pixels does not fit axis {axis} of size {n}")
            if pad[axis, 0] or force_taper:
                _blend(image, axis, slice(crop[axis, 0], crop[axis, 0] + s), flipped, fill)
            if pad[axis, 1] or force_taper:
                _blend(image, axis, slice(n - crop[axis, 1] - s, n - crop[axis, 1]), weights, fill)

    if not do_pad and not do_crop:
        return image
    dst = tuple(slice(pad[a, 0], out.shape[a] - pad[a, 1]) for a in range(ndim))
    src = tuple(slice(crop[a, 0], image.shape[a] - crop[a, 1]) for a in range(ndim))
    out[dst] = image[src]
    return out


def _resize_fourier(image, out, edges, weights, fill, do_pad, do_crop, force_taper):
    ndim = image.ndim
    size = np.array(image.shape)
    crop = edges * (edges < 0)
    # Samples kept on the low-frequency side of each axis: [0, left) and the last right+1
    left = (size + 1) // 2 + crop[:, 0]
    right = (size - 2) // 2 + crop[:, 1]

    if weights is not None:
        s = weights.size
        flipped = weights[::-1]
        for axis in range(ndim):
            if not (np.any(edges[axis] > 0) or force_taper):
                continue
            n = size[axis]
            if left[axis] - s < 0 or n - right[axis] - 1 + s > n:
                raise ConfigurationError(f"Taper of {s} pixels does not fit axis {axis} of size {n}")
            _blend(image, axis, slice(left[axis] - s, left[axis]), weights, fill)
            _blend(image, axis, slice(n - right[axis] - 1, n - right[axis] - 1 + s), flipped, fill)

    if not do_pad and not do_crop:
        return image
    for sides in itertools.product((0, 1), repeat=ndim):
        dst = []
        src = []
        for axis, side in enumerate(sides):
            if side == 0:
                dst.append(slice(0, left[axis]))
                src.append(slice(0, left[axis]))
            else:
                dst.append(slice(out.shape[axis] - right[axis] - 1, out.shape[axis]))
                src.append(slice(size[axis] - right[axis] - 1, size[axis]))
        out[tuple(dst)] = image[tuple(src)]
    return out
