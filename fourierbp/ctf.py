"""CTF image generation.

Reference generator of the per-tilt, exposure- and occupancy-weighted CTF
images consumed by the slice insertion. Images are indexed [x, y] on the
frequency grid of the output volume and computed with PyTorch so they can be
produced directly on a CUDA device.
"""

import math
import torch

from .errors import ConfigurationError


# Cs is given in mm, all lengths on the frequency grid are in Angstrom
_MM_TO_ANGSTROM = 1.0e7

# Critical exposure fit: Ne(s) = a * s**b + c, s in 1/Angstrom
_CRITICAL_EXPOSURE = (0.245, -1.665, 2.81)


def _axis_frequencies(n, centered, device, dtype):
    """Frequencies of one full axis in cycles per pixel."""
    index = torch.arange(n, device=device, dtype=dtype)
    if centered:
        return (index - n // 2) / n
    return torch.where(index < (n + 1) // 2, index, index - n) / n


def frequency_grid(shape, pixel_size, half_grid=False, centered=True,
                   device='cpu', dtype=torch.float64):
    """Spatial frequency magnitude and azimuth of a 2D Fourier image.

    Parameters
    ----------
    shape : tuple of int
        Image shape (nx, ny). In half-grid mode nx is the number of stored
        non-negative x frequencies.
    pixel_size : float
        Pixel size in Angstrom.
    half_grid : bool, optional
        x axis holds frequencies ``0..N//2`` only (default: False).
    centered : bool, optional
        Put the origin at ``N//2`` of every full axis instead of FFT order
        (default: True).
    device : str or torch.device, optional
        Device for tensors (default: 'cpu').
    dtype : torch.dtype, optional
        Data type for the computation (default: torch.float64).

    Returns
    -------
    s : torch.Tensor
        Frequency magnitude in 1/Angstrom, shape (nx, ny).
    phi : torch.Tensor
        Frequency azimuth in radians, shape (nx, ny).
    """
    nx, ny = shape
    if half_grid:
        full_nx = 2 * (nx - 1)
        fx = torch.arange(nx, device=device, dtype=dtype) / full_nx
    else:
        fx = _axis_frequencies(nx, centered, device, dtype)
    fy = _axis_frequencies(ny, centered, device, dtype)
    gx, gy = torch.meshgrid(fx / pixel_size, fy / pixel_size, indexing='ij')
    return torch.sqrt(gx * gx + gy * gy), torch.atan2(gy, gx)


def exposure_filter(s, exposure):
    """Radiation damage attenuation ``exp(-exposure / (2 Ne(s)))``."""
    if exposure <= 0:
        return torch.ones_like(s)
    a, b, c = _CRITICAL_EXPOSURE
    # s == 0 has infinite critical exposure, no attenuation
    safe_s = torch.where(s > 0, s, torch.ones_like(s))
    critical = torch.where(s > 0, a * safe_s ** b + c, torch.full_like(s, math.inf))
    return torch.exp(-exposure / (2.0 * critical))


def compute_ctf(shape, pixel_size, wavelength, cs, defocus1, defocus2,
                astigmatism_angle, amplitude_contrast, exposure=0.0,
                occupancy=1.0, half_grid=False, squared=False, centered=True,
                device='cpu'):
    """Compute the weighted CTF image of one tilt.

    Parameters
    ----------
    shape : tuple of int
        Image shape (nx, ny).
    pixel_size : float
        Pixel size in Angstrom.
    wavelength : float
        Electron wavelength in Angstrom.
    cs : float
        Spherical aberration in mm.
    defocus1 : float
        Defocus along the major axis in Angstrom (positive is underfocus).
    defocus2 : float
        Defocus along the minor axis in Angstrom.
    astigmatism_angle : float
        Azimuth of the major axis in degrees.
    amplitude_contrast : float
        Fraction of amplitude contrast, in [0, 1].
    exposure : float, optional
        Accumulated exposure before this tilt in e/A^2 (default: 0, no filter).
    occupancy : float, optional
        Scale factor applied to the whole image (default: 1).
    half_grid : bool, optional
        Produce only the non-negative x frequencies (default: False).
    squared : bool, optional
        Return CTF^2 instead of the signed CTF (default: False).
    centered : bool, optional
        Origin at ``N//2`` of every full axis (default: True).
    device : str or torch.device, optional
        Device of the returned tensor (default: 'cpu').

    Returns
    -------
    torch.Tensor
        float32 tensor of shape `shape`.

    Examples
    --------
    >>> image = compute_ctf((64, 64), 2.0, 0.0197, 2.7, 20000.0, 20000.0,
    ...                     0.0, 0.07)
    >>> image.shape
    torch.Size([64, 64])
    """
    if len(shape) != 2 or min(shape) < 1:
        raise ConfigurationError(f"CTF image shape must be 2 positive ints, got {shape}")
    if half_grid and shape[0] < 2:
        raise ConfigurationError("A half-grid CTF image needs at least 2 samples along x")
    if pixel_size <= 0 or wavelength <= 0:
        raise ConfigurationError("pixel_size and wavelength must be positive")
    if not 0.0 <= amplitude_contrast <= 1.0:
        raise ConfigurationError(f"amplitude_contrast must be in [0, 1], got {amplitude_contrast}")

    s, phi = frequency_grid(shape, pixel_size, half_grid=half_grid,
                            centered=centered, device=device)
    cs_angstrom = cs * _MM_TO_ANGSTROM
    ast = math.radians(astigmatism_angle)
    defocus = 0.5 * (defocus1 + defocus2 + (defocus1 - defocus2) * torch.cos(2.0 * (phi - ast)))

    s2 = s * s
    chi = math.pi * wavelength * defocus * s2 - 0.5 * math.pi * cs_angstrom * wavelength ** 3 * s2 * s2
    ctf = -(math.sqrt(1.0 - amplitude_contrast ** 2) * torch.sin(chi)
            + amplitude_contrast * torch.cos(chi))
    if squared:
        ctf = ctf * ctf

    ctf = ctf * exposure_filter(s, exposure) * occupancy
    return ctf.to(torch.float32)
