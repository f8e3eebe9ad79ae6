"""Error taxonomy for pinned retrieval."""

from __future__ import annotations


class PinFetchError(RuntimeError):
    pass


class LocatorError(PinFetchError, ValueError):
    """Raised when a locator or pin file is malformed."""


class RetrievalError(PinFetchError):
    """Raised when the remote resource cannot be retrieved."""


class FetchCancelledError(RetrievalError):
    pass


class IntegrityError(PinFetchError):
    """Raised when fetched content does not hash to the pinned checksum."""

    def __init__(self, expected: str, actual: str, url: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.url = url
        message = f"CHECKSUM_MISMATCH:expected={expected}:actual={actual}"
        if url:
            message = f"{message}:url={url}"
        super().__init__(message)


class ArtifactImportError(PinFetchError, ImportError):
    """Raised when verified content cannot be imported as the expected value."""
