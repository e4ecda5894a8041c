"""Planning of concurrent reconstruction workers across GPUs.

Reconstructions of different tomograms run in separate worker processes.
`plan_workers` decides how many workers to start from the GPU memory, the
per-voxel cost of one job and the number of available CPU workers, and
splits the tomograms between them round-robin.
"""

import logging
import math
import os

from numba import cuda

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


# (lower bound, upper bound, scale) in bytes of total GPU memory
_MEMORY_SCALES = (
    (7.9e9, 10.8e9, 0.62),
    (10.9e9, 12.2e9, 1.0),
    (12.8e9, math.inf, 1.3),
)

LINEAR_INTERPOLATION = -1
"""`interp_mode` value of linear interpolation, capped at three workers per GPU."""


def gpu_total_memory():
    """Total memory in bytes of the current CUDA device."""
    _, total = cuda.current_context().get_memory_info()
    return total


def memory_scale(total_memory):
    """Scale applied to the worker count for a GPU with `total_memory` bytes."""
    for low, high, scale in _MEMORY_SCALES:
        if low < total_memory < high:
            return scale
    return 1.0


def round_robin(n_items, n_workers):
    """Split ``range(n_items)`` so worker ``i`` gets ``i, i + n, i + 2n, ...``.

    Examples
    --------
    >>> round_robin(5, 2)
    [[0, 2, 4], [1, 3]]
    """
    return [list(range(iworker, n_items, n_workers)) for iworker in range(n_workers)]


def _rounds(n_items, n_workers):
    return math.ceil(n_items / n_workers)


def plan_workers(n_tomograms, n_gpus, calc_size, interp_mode=0,
                 total_memory=None, max_workers=None):
    """Choose the number of workers and assign tomograms to them.

    Parameters
    ----------
    n_tomograms : int
        Number of tomograms to reconstruct.
    n_gpus : int
        Number of GPUs shared by the workers.
    calc_size : float
        Per-voxel cost factor of one job; larger jobs allow fewer workers.
    interp_mode : int, optional
        0 for the default, `LINEAR_INTERPOLATION` to cap the count at three
        workers per GPU, any other value to force that many workers.
    total_memory : float, optional
        Total GPU memory in bytes. Queried from the first GPU when omitted.
    max_workers : int, optional
        Available compute workers. Defaults to ``os.cpu_count()``.

    Returns
    -------
    n_workers : int
        Number of workers to start.
    index_lists : list of list of int
        Tomogram indices handled by each worker.
    """
    if n_tomograms < 1 or n_gpus < 1:
        raise ConfigurationError("n_tomograms and n_gpus must be positive")
    if calc_size <= 0:
        raise ConfigurationError(f"calc_size must be positive, got {calc_size}")
    if total_memory is None:
        total_memory = gpu_total_memory()
    if max_workers is None:
        max_workers = os.cpu_count() or 1

    scale = memory_scale(total_memory)
    logger.info(
        "GPU total memory %.3e, %d available workers, scaling worker count by %.2f",
        total_memory, max_workers, scale,
    )

    n_workers = math.ceil(
        scale * n_gpus * (math.floor(384 / calc_size) ** 2 + math.ceil(256 / calc_size))
    )
    n_workers = min(n_workers, max_workers)
    if interp_mode == LINEAR_INTERPOLATION:
        n_workers = min(n_workers, 3 * n_gpus)
    elif interp_mode:
        n_workers = int(interp_mode)
    n_workers = max(n_workers, 1)

    # Drop workers that would not reduce the number of rounds
    max_rounds = _rounds(n_tomograms, n_workers)
    while n_workers > 1 and _rounds(n_tomograms, n_workers - 1) == max_rounds:
        n_workers -= 1

    # Match the parity of the GPU count so workers spread evenly
    n_workers = max(n_workers - (n_workers - n_gpus) % 2, 1)

    logger.info(
        "Using %d workers in %.2f batches", n_workers, n_tomograms / n_workers
    )
    return n_workers, round_robin(n_tomograms, n_workers)
