"""Exceptions raised while resolving, loading and decoding image stacks."""


class CidreError(Exception):
    """Base class for all cidre-bio errors."""


class ValidationError(CidreError):
    """A stack failed dimension validation.

    :ivar source: Name of the offending plane source (if known)
    :ivar field: Name of the offending field or axis (if known)
    """

    def __init__(self, message, source=None, field=None):
        # type: (str, str | None, str | None) -> None
        super().__init__(message)
        self.source = source
        self.field = field


class DecodeError(CidreError):
    """Raw plane bytes could not be decoded into samples."""
