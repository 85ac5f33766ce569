"""Error taxonomy for conversion jobs.

Only ``ValidationError``, ``SourceFetchError``, ``EngineError`` and
``DeliveryError`` ever reach a caller. ``CleanupError`` and ``NotifierError``
are logged where they happen and never change a job's terminal status.
``InvalidTransitionError`` is a programming error, not a ``ConversionError``;
it fails the job with a generic detail.
"""


class ConversionError(Exception):
    """Base class for conversion service errors."""


class ValidationError(ConversionError):
    """A submission is missing required fields or names an unknown format."""


class SourceFetchError(ConversionError):
    """The source video could not be read from the object store."""


class EngineError(ConversionError):
    """The encoder process failed."""


class DeliveryError(ConversionError):
    """The converted artifact could not be handed off to durable storage."""


class CleanupError(ConversionError):
    """A local temporary file could not be removed."""


class NotifierError(ConversionError):
    """A durable status notification could not be sent."""


class InvalidTransitionError(RuntimeError):
    """A job was moved between two states the lifecycle does not connect."""
