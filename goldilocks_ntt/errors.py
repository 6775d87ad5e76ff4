"""
Exception hierarchy for the NTT engine.

Every failure surfaces synchronously to the caller of the entry point that
failed.  Precondition violations are never corrected or retried.
"""


class NttError(Exception):
    """Base class for all engine errors."""


class PreconditionError(NttError, ValueError):
    """Usage error: bad size, uninitialised size, bad handle, zero inverse."""


class TeardownError(PreconditionError):
    """A handle or buffer was used after its owner released it."""


class ResourceExhaustedError(NttError, MemoryError):
    """Device or pinned host memory could not be allocated."""


class DeviceExecutionError(NttError, RuntimeError):
    """The device runtime faulted while a transform was in flight.

    The caller's result buffer is undefined after this error.
    """
