"""
Exceptions and warnings raised by the chunked motion correction pipeline.

Fatal conditions are exceptions and abort the current (channel, plane) pass.
Recoverable conditions are warnings: the pipeline keeps going and records a
neutral value (zero drift, previously persisted options).
"""


class MotionCorrectionError(Exception):
    """Base class for all motion correction errors."""


class ConfigurationError(MotionCorrectionError, ValueError):
    """Invalid options or an input stack the pipeline cannot process."""


class TemplateInitializationError(MotionCorrectionError, RuntimeError):
    """The first chunk did not yield a usable reference image."""


class RegistrationFailure(MotionCorrectionError, RuntimeError):
    """A registration backend could not align a block of frames."""


class IOFailure(MotionCorrectionError, OSError):
    """Writing to an output stack or result file failed."""


class DriftRejectedWarning(UserWarning):
    """Estimated drift exceeded the sanity bound and was replaced by zero."""


class OptionsMismatchWarning(UserWarning):
    """Current options differ from the ones persisted by an earlier run."""
