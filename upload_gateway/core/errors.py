"""
errors.py — Upload Error Taxonomy
===================================
Exceptions raised by the reassembly engine. The registry converts
them into chunk results; nothing here is fatal to the process.
"""


class UploadError(Exception):
    """Base class for all reassembly engine errors."""


class QuotaExceeded(UploadError):
    """The transmission grew (or was declared) beyond its size ceiling."""

    def __init__(self, size: int, ceiling: int):
        self.size = size
        self.ceiling = ceiling
        super().__init__(f"Transmission size {size} exceeds limit of {ceiling} bytes")


class MetadataParseError(UploadError, ValueError):
    """The terminal chunk carried metadata that is not a JSON object."""


class StorageError(UploadError):
    """A chunk or assembled file could not be written, read or removed."""


class ProtocolViolation(UploadError):
    """A chunk does not fit the numbering of its transmission."""


class AssemblyError(StorageError):
    """Rebuilding a completed transmission failed midway."""

    def __init__(self, message: str, output_path=None):
        self.output_path = output_path
        super().__init__(message)
