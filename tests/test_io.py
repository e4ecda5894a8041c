"""
Tests for binned, cached loading of MRC files.
"""

import logging
import subprocess

import mrcfile
import numpy as np
import pytest

from fourierbp import io
from fourierbp.errors import CachedImageLoadError, ConfigurationError, ReconstructionError
from fourierbp.io import (
    binned_size,
    cached_name,
    load_or_bin,
    load_with_retry,
    lowpass_filter,
)


def write_mrc(path, data, voxel_size=1.5, origin=(10.0, 20.0, 30.0)):
    with mrcfile.new(str(path), overwrite=True) as mrc:
        mrc.set_data(np.asarray(data, dtype=np.float32))
        mrc.voxel_size = voxel_size
        mrc.header.origin = origin
    return path


@pytest.fixture
def stack(tmp_path):
    rng = np.random.default_rng(0)
    return write_mrc(tmp_path / "tilts.mrc", rng.standard_normal((3, 32, 32)))


class TestHelpers:
    """Test size and filter helpers."""

    @pytest.mark.parametrize("size, sampling, expected", [(64, 2, 31), (66, 2, 33), (32, 4, 7), (33, 3, 11)])
    def test_binned_size_is_odd(self, size, sampling, expected):
        assert binned_size(size, sampling) == expected

    def test_lowpass_filter(self):
        filt = lowpass_filter((32, 32), cutoff=4)
        assert filt[16, 16] == 1.0
        assert filt[0, 0] == 0.0
        assert np.all((filt >= 0) & (filt <= 1))
        np.testing.assert_allclose(filt, filt.T)

    def test_cached_name(self, tmp_path):
        assert cached_name("data/TS_01.st", 4, tmp_path) == tmp_path / "TS_01_bin4.st"


class TestLoadOrBin:
    """Test the cache of binned tilt series and volumes."""

    def test_bins_tilt_series(self, stack, tmp_path):
        loaded = load_or_bin(stack, 2, 2, cache_dir=tmp_path / "cache")
        assert loaded.data.shape == (3, 15, 15)
        assert loaded.data.dtype == np.float32
        assert loaded.voxel_size == pytest.approx((3.0, 3.0, 3.0))
        assert loaded.origin == pytest.approx((5.0, 10.0, 15.0))
        assert loaded.extension == ".mrc"
        assert (tmp_path / "cache" / "tilts_bin2.mrc").exists()

    def test_binning_keeps_mean(self, tmp_path):
        path = write_mrc(tmp_path / "flat.mrc", np.full((1, 16, 16), 3.0))
        loaded = load_or_bin(path, 2, 2, cache_dir=tmp_path / "cache")
        np.testing.assert_allclose(loaded.data, 3.0, rtol=1e-5)

    def test_reuses_cache(self, stack, tmp_path, monkeypatch):
        cache = tmp_path / "cache"
        first = load_or_bin(stack, 2, 2, cache_dir=cache)

        def no_binning(*args):
            raise AssertionError("cache was rebuilt")

        monkeypatch.setattr(io, "bin_stack", no_binning)
        second = load_or_bin(stack, 2, 2, cache_dir=cache)
        np.testing.assert_array_equal(first.data, second.data)

    def test_rebuilds_corrupt_cache(self, stack, tmp_path, caplog):
        cache = tmp_path / "cache"
        cache.mkdir()
        (cache / "tilts_bin2.mrc").write_bytes(b"not an mrc file")
        with caplog.at_level(logging.WARNING, logger="fourierbp.io"):
            loaded = load_or_bin(stack, 2, 2, cache_dir=cache)
        assert loaded.data.shape == (3, 15, 15)
        assert "corrupt" in caplog.text

    def test_negative_sampling_only_caches(self, stack, tmp_path):
        loaded = load_or_bin(stack, -2, 2, cache_dir=tmp_path / "cache")
        assert loaded.data is None
        assert loaded.voxel_size is None
        assert (tmp_path / "cache" / "tilts_bin2.mrc").exists()

    def test_sampling_one_loads_original(self, stack, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="fourierbp.io"):
            loaded = load_or_bin(stack, 1, 2, cache_dir=tmp_path / "cache")
        assert loaded.data.shape == (3, 32, 32)
        assert loaded.voxel_size == pytest.approx((1.5, 1.5, 1.5))
        assert "without binning" in caplog.text
        assert not (tmp_path / "cache").exists()

    def test_rejects_dimension(self, stack, tmp_path):
        with pytest.raises(ConfigurationError):
            load_or_bin(stack, 2, 4, cache_dir=tmp_path)

    def test_volume_uses_binvol(self, tmp_path, monkeypatch):
        volume = write_mrc(tmp_path / "tomo.rec", np.zeros((8, 8, 8)))
        commands = []

        def fake_run(command, check, stdout):
            commands.append(command)
            write_mrc(command[-1], np.ones((4, 4, 4)), voxel_size=3.0)
            return subprocess.CompletedProcess(command, 0)

        monkeypatch.setattr(io.subprocess, "run", fake_run)
        loaded = load_or_bin(volume, 2, 3, cache_dir=tmp_path / "cache")
        assert loaded.data.shape == (4, 4, 4)
        assert loaded.extension == ".rec"
        assert commands[0][:5] == ["binvol", "-BinningFactor", "2", "-antialias", "6"]
        assert commands[0][-1] == str(tmp_path / "cache" / "tomo_bin2.rec")

    def test_binvol_failure(self, tmp_path, monkeypatch):
        volume = write_mrc(tmp_path / "tomo.rec", np.zeros((8, 8, 8)))

        def failing_run(command, check, stdout):
            raise subprocess.CalledProcessError(1, command)

        monkeypatch.setattr(io.subprocess, "run", failing_run)
        with pytest.raises(ReconstructionError, match="binvol"):
            load_or_bin(volume, 2, 3, cache_dir=tmp_path / "cache")


class TestLoadWithRetry:
    """Test the retry schedule of cache reads."""

    def test_succeeds_after_failures(self, monkeypatch):
        pauses = []
        attempts = []

        def flaky_read(path):
            attempts.append(path)
            if len(attempts) < 3:
                raise OSError("file is still being written")
            return np.zeros((2, 2), dtype=np.float32), (1.0, 1.0, 1.0), (0.0, 0.0, 0.0)

        monkeypatch.setattr(io, "_read_mrc", flaky_read)
        data, voxel_size, _ = load_with_retry("cache/a.mrc", sleep=pauses.append)
        assert pauses == [1, 8]
        assert data.shape == (2, 2)
        assert voxel_size == (1.0, 1.0, 1.0)

    def test_gives_up(self, monkeypatch):
        pauses = []

        def failing_read(path):
            raise ValueError("truncated data block")

        monkeypatch.setattr(io, "_read_mrc", failing_read)
        with pytest.raises(CachedImageLoadError) as info:
            load_with_retry("cache/a.mrc", sleep=pauses.append)
        assert pauses == [1, 8, 27]
        assert isinstance(info.value, OSError)
        assert isinstance(info.value.__cause__, ValueError)

    def test_attempt_budget(self, monkeypatch):
        pauses = []

        def failing_read(path):
            raise OSError("missing")

        monkeypatch.setattr(io, "_read_mrc", failing_read)
        with pytest.raises(CachedImageLoadError, match="2 attempts"):
            load_with_retry("cache/a.mrc", max_attempts=2, sleep=pauses.append)
        assert pauses == [1, 8]
