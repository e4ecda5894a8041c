"""
Tests for the CTF image generator.
"""

import numpy as np
import pytest
import torch

from fourierbp.ctf import compute_ctf, exposure_filter, frequency_grid
from fourierbp.errors import ConfigurationError


PARAMS = dict(
    pixel_size=2.0,
    wavelength=0.0197,
    cs=2.7,
    defocus1=20000.0,
    defocus2=18000.0,
    astigmatism_angle=30.0,
    amplitude_contrast=0.07,
)


def ctf(shape=(16, 16), **overrides):
    params = dict(PARAMS)
    params.update(overrides)
    return compute_ctf(shape, **params).numpy()


class TestComputeCTF:
    """Test the weighted CTF image."""

    def test_shape_and_dtype(self):
        image = compute_ctf((16, 12), **PARAMS)
        assert isinstance(image, torch.Tensor)
        assert image.shape == (16, 12)
        assert image.dtype == torch.float32

    def test_half_grid_shape(self):
        assert ctf((9, 16), half_grid=True).shape == (9, 16)

    def test_centered_origin(self):
        image = ctf((16, 16), centered=True)
        assert image[8, 8] == pytest.approx(-0.07, abs=1e-6)

    def test_fft_order_origin(self):
        image = ctf((16, 16), centered=False)
        assert image[0, 0] == pytest.approx(-0.07, abs=1e-6)

    def test_half_grid_origin(self):
        image = ctf((9, 16), half_grid=True, centered=True)
        assert image[0, 8] == pytest.approx(-0.07, abs=1e-6)

    def test_centered_is_shifted_fft_order(self):
        centered = ctf((16, 12), centered=True)
        fft_order = ctf((16, 12), centered=False)
        np.testing.assert_allclose(centered, np.fft.fftshift(fft_order), atol=1e-6)

    def test_bounded(self):
        image = ctf((32, 32))
        assert np.all(np.abs(image) <= 1.0 + 1e-6)

    def test_squared_is_non_negative(self):
        signed = ctf((32, 32))
        squared = ctf((32, 32), squared=True)
        assert np.all(squared >= 0)
        np.testing.assert_allclose(squared, signed ** 2, rtol=1e-5, atol=1e-7)

    def test_occupancy_scales(self):
        np.testing.assert_allclose(ctf(occupancy=0.5), 0.5 * ctf(), rtol=1e-6, atol=1e-8)

    def test_exposure_attenuates(self):
        fresh = np.abs(ctf((32, 32)))
        dosed = np.abs(ctf((32, 32), exposure=60.0))
        assert np.all(dosed <= fresh + 1e-7)
        assert dosed[16, 16] == pytest.approx(fresh[16, 16])
        assert dosed.sum() < fresh.sum()

    def test_astigmatism_axes(self):
        # Swapping the two defoci is the same as rotating the major axis by 90 degrees
        a = ctf(defocus1=20000.0, defocus2=15000.0, astigmatism_angle=10.0)
        b = ctf(defocus1=15000.0, defocus2=20000.0, astigmatism_angle=100.0)
        np.testing.assert_allclose(a, b, atol=1e-5)

    def test_no_astigmatism_is_isotropic(self):
        image = ctf((16, 16), defocus2=PARAMS['defocus1'])
        np.testing.assert_allclose(image, image.T, atol=1e-6)

    @pytest.mark.parametrize(
        "shape, overrides",
        [
            ((16,), {}),
            ((0, 16), {}),
            ((16, 16), {'pixel_size': 0.0}),
            ((16, 16), {'wavelength': -1.0}),
            ((16, 16), {'amplitude_contrast': 1.5}),
            ((1, 16), {'half_grid': True}),
        ],
    )
    def test_rejects_bad_input(self, shape, overrides):
        with pytest.raises(ConfigurationError):
            ctf(shape, **overrides)


class TestFrequencyGrid:
    """Test frequency magnitudes and the exposure filter."""

    def test_nyquist(self):
        s, _ = frequency_grid((16, 16), pixel_size=2.0, centered=True)
        assert float(s[0, 8]) == pytest.approx(0.25)
        assert float(s[8, 8]) == 0.0

    def test_half_grid_nyquist(self):
        s, _ = frequency_grid((9, 16), pixel_size=1.0, half_grid=True)
        assert float(s[8, 8]) == pytest.approx(0.5)
        assert float(s[0, 8]) == 0.0

    def test_exposure_filter(self):
        s = torch.linspace(0.0, 0.5, 11, dtype=torch.float64)
        filt = exposure_filter(s, 40.0)
        assert float(filt[0]) == 1.0
        assert torch.all(filt[1:] < filt[:-1])
        assert torch.all(exposure_filter(s, 0.0) == 1.0)
