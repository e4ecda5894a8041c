"""Exceptions raised by fourierbp."""


class ReconstructionError(Exception):
    """Base class for fourierbp errors."""

    pass


class ConfigurationError(ReconstructionError, ValueError):
    """Malformed input shape or arguments, raised before any device work."""

    pass


class DeviceResourceError(ReconstructionError, RuntimeError):
    """Device allocation, copy or sampler bind/release failed."""

    pass


class KernelExecutionError(ReconstructionError, RuntimeError):
    """A kernel launch failed; detected at the final synchronization."""

    pass


class CachedImageLoadError(ReconstructionError, OSError):
    """A cached image could not be read within the retry budget."""

    pass
