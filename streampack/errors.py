class StreamPackError(Exception):
    """Base class for streampack errors."""


# Caller / configuration errors
class NotInitialized(StreamPackError):
    pass


class UnknownFormat(StreamPackError, ValueError):
    def __init__(self, name: str):
        super().__init__(f"Unknown value for pack format: {name!r}")
        self.name = name


class UnsupportedPlatform(StreamPackError):
    pass


# Format resolution
class UnableToDetect(StreamPackError):
    pass


class FormatNotImplemented(StreamPackError):
    pass


# Archive content
class PathTraversal(StreamPackError):
    """An entry (or hard-link target) resolves outside the destination root."""


class IOFailure(StreamPackError):
    """Filesystem, stream or codec failure, tagged with where it happened."""

    def __init__(self, where: str, cause: BaseException):
        super().__init__(f"{where}: {cause}")
        self.where = where
        self.cause = cause


class StreamInvariant(StreamPackError):
    pass


class IncompleteStream(StreamPackError):
    pass


# Stream bridge
class ClosedBridge(StreamPackError):
    pass
