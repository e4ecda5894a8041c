"""
Tests for pad/crop/taper of images.
"""

import numpy as np
import pytest

from fourierbp.errors import ConfigurationError
from fourierbp.resize import resize, taper


class TestTaper:
    """Test 1D taper vectors."""

    def test_linear(self):
        np.testing.assert_allclose(taper('linear', size=4), [0.75, 0.5, 0.25, 0.0])

    def test_cosine_ends_at_end_value(self):
        t = taper('cosine', start=2.0, end=-1.0, size=7)
        assert t.shape == (7,)
        assert t[-1] == pytest.approx(-1.0)
        assert np.all(np.diff(t) < 0)

    def test_rejects_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            taper('gaussian')


class TestResizeCentered:
    """Test padding and cropping of centered images."""

    def test_pad(self):
        out = resize(np.ones((4, 4)), [2, 1, 0, 3], taper=False)
        assert out.shape == (7, 7)
        assert np.all(out[2:6, 0:4] == 1.0)
        assert out.sum() == 16.0

    def test_crop(self):
        image = np.arange(36.0).reshape(6, 6)
        out = resize(image, [-1, -2, 0, -3], taper=False)
        np.testing.assert_array_equal(out, image[1:4, 0:3])

    def test_pad_and_crop(self):
        image = np.arange(16.0).reshape(4, 4)
        out = resize(image, [1, -1, -2, 2], value=-1.0, taper=False)
        assert out.shape == (4, 4)
        np.testing.assert_array_equal(out[1:, :2], image[:3, 2:])
        assert np.all(out[0] == -1.0)
        assert np.all(out[:, 2:] == -1.0)

    def test_3d(self):
        out = resize(np.ones((4, 5, 6)), [1, 1, 0, 0, -1, -1], taper=False)
        assert out.shape == (6, 5, 4)
        assert out.sum() == 4 * 5 * 4

    def test_linear_taper_on_padded_edge(self):
        out = resize(np.ones((8, 8)), [2, 0, 0, 0], taper=('linear', 4))
        np.testing.assert_allclose(out[2:6, 0], [0.0, 0.25, 0.5, 0.75])
        assert np.all(out[:2] == 0.0)
        assert np.all(out[6:] == 1.0)

    def test_force_taper(self):
        out = resize(np.ones((8, 8)), [0, 0, 0, 0], taper=('linear', 2), force_taper=True)
        assert out.shape == (8, 8)
        assert np.all(out[0] == 0.0) and np.all(out[-1] == 0.0)
        assert out[1, 4] == pytest.approx(0.5)
        assert out[6, 4] == pytest.approx(0.5)
        assert out[4, 4] == 1.0

    def test_mean_padding(self):
        image = np.arange(16.0).reshape(4, 4)
        out = resize(image, [1, 1, 1, 1], value='mean', taper=False)
        assert out[0, 0] == 7.5
        np.testing.assert_array_equal(out[1:5, 1:5], image)

    def test_uniform_padding_is_seeded(self):
        image = np.random.default_rng(1).standard_normal((8, 8))
        a = resize(image, [4, 4, 4, 4], value='uniform', taper=False, rng=np.random.default_rng(7))
        b = resize(image, [4, 4, 4, 4], value='uniform', taper=False, rng=np.random.default_rng(7))
        np.testing.assert_array_equal(a, b)
        assert a[:4].std() > 0

    def test_precision(self):
        assert resize(np.ones((4, 4)), [1, 1, 1, 1], taper=False, precision='single').dtype == np.float32
        assert resize(np.ones((4, 4), dtype=np.int32), [1, 1, 1, 1], taper=False).dtype == np.float64

    def test_complex_input_kept(self):
        image = np.ones((6, 6), dtype=np.complex128)
        out = resize(image, [-1, -1, -1, -1], taper=False)
        assert out.dtype == np.complex128

    def test_noop_returns_input(self):
        image = np.ones((4, 4))
        assert resize(image, [0, 0, 0, 0]) is image


class TestResizeFourier:
    """Test cropping and padding of non-centered spectra."""

    @pytest.mark.parametrize("limits", [[-1, -1, -1, -1], [1, 1, 1, 1], [-1, -1, 1, 1]])
    def test_matches_centered_resize(self, limits):
        image = np.random.default_rng(3).standard_normal((8, 8))
        out = resize(image, limits, origin=-1, taper=False)
        centered = resize(np.fft.fftshift(image), limits, taper=False)
        np.testing.assert_allclose(out, np.fft.ifftshift(centered))

    def test_taper_fits(self):
        with pytest.raises(ConfigurationError):
            resize(np.ones((8, 8)), [2, 2, 2, 2], origin=-1, taper=('linear', 6))


class TestResizeErrors:
    """Test rejection of malformed arguments."""

    @pytest.mark.parametrize(
        "image, limits, kwargs",
        [
            (np.ones((4, 4)), [1, 1, 1], {}),
            (np.ones((4, 4)), [1, 1, 1, 1, 1, 1], {}),
            (np.ones((4, 4)), [1.5, 1, 1, 1], {}),
            (np.ones((4, 4)), [1, 1, 1, 1], {'origin': 0}),
            (np.ones((4, 4)), [1, 1, 1, 1], {'precision': 'half'}),
            (np.ones((4, 4)), [1, 1, 1, 1], {'value': 'median'}),
            (np.ones((4, 4)), [1, 1, 1, 1], {'force_taper': 1}),
            (np.ones((4, 4)), [-2, -2, 0, 0], {'taper': False}),
            (np.ones((4, 4)), [1, 1, 1, 1], {'taper': ('linear', 8)}),
        ],
    )
    def test_rejects(self, image, limits, kwargs):
        with pytest.raises(ConfigurationError):
            resize(image, limits, **kwargs)
