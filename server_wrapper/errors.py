"""Exception types for the wrapper."""


class WrapperError(Exception):
    """Base error carrying the destination/source/entry it happened in."""

    def __init__(
        self,
        message: str,
        destination: str | None = None,
        source: str | None = None,
        entry: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.destination = destination
        self.source = source
        self.entry = entry

    def with_context(
        self,
        destination: str | None = None,
        source: str | None = None,
        entry: str | None = None,
    ) -> "WrapperError":
        """Fill in any context fields that are still unset and return self."""
        self.destination = self.destination or destination
        self.source = self.source or source
        self.entry = self.entry or entry
        return self

    @property
    def location(self) -> str:
        """Slash-joined destination/source/entry path, empty if unknown."""
        parts = [p for p in (self.destination, self.source, self.entry) if p]
        return "/".join(parts)

    def __str__(self) -> str:
        if self.location:
            return f"[{self.location}] {self.message}"
        return self.message


class ConfigError(WrapperError):
    """Invalid configuration or missing credentials. Fatal at startup."""


class FetchError(WrapperError):
    """Exception raised when a source entry cannot be fetched."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
        not_found: bool = False,
        **context: str | None,
    ) -> None:
        super().__init__(message, **context)
        self.status_code = status_code
        self.retryable = retryable
        self.not_found = not_found


class TransformError(WrapperError):
    """Payload could not be transformed (e.g. malformed archive)."""


class UnsafePathError(TransformError):
    """A produced path would land outside the destination root."""


class FilesystemError(WrapperError):
    """Staging or swapping a destination directory failed."""


class ProcessError(WrapperError):
    """A supervised command could not be launched."""


class NotifyError(WrapperError):
    """Status notification could not be delivered."""


class SyncCancelled(WrapperError):
    """Synchronization was abandoned because shutdown was requested."""
