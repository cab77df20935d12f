class SilenceCutError(Exception):
    """Base class for all errors raised by the processing pipeline."""


class TransientError(SilenceCutError):
    """Infrastructure failure that a later delivery of the same job may not hit."""


class AnalysisError(SilenceCutError):
    """The duration probe or silence detection could not read the media."""


class ExtractionError(SilenceCutError):
    """Cutting or concatenating segments failed."""


class EmptyEditError(SilenceCutError):
    """Every part of the source was judged silent."""


class StorageError(TransientError):
    pass


class QueueConnectionError(TransientError):
    pass


class JobNotFoundError(SilenceCutError):
    pass


class InvalidJobStateError(SilenceCutError):
    pass


class InsufficientCreditsError(SilenceCutError):
    pass


class MissingObjectError(SilenceCutError):
    """The requested key does not exist in the object store."""
