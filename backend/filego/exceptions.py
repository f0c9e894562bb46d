"""
Error kinds raised by the core.

Every registry, store and overlay operation either returns a value or raises
one of these. The REST layer maps them onto HTTP status codes with a single
handler on FileGoError.
"""


class FileGoError(Exception):
    """Base class for all filego errors."""
    pass


class NotFoundError(FileGoError):
    """Unknown node, peer, chunk or file."""
    pass


class ConflictError(FileGoError):
    """
    Raised when a resource is already bound elsewhere, e.g. an address
    registered to a different node id, or a directory that already exists.
    """
    pass


class InvalidInputError(FileGoError):
    """
    Malformed address, bad status value, out-of-range storage value,
    non-dense chunk indices, or a non-empty directory on delete.
    """
    pass


class IOFailureError(FileGoError):
    """Wrapped filesystem or socket error."""
    pass


class ProtocolError(FileGoError):
    """
    A single message could not be decoded.

    Non-fatal: the reader loop logs it and keeps the connection open.
    """
    pass


class ConnectionLostError(FileGoError):
    """
    The peer's stream ended or failed.

    Fatal to that one peer only; it is evicted and the error never
    propagates beyond its reader.
    """
    pass
