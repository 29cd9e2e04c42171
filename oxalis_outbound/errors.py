"""Error taxonomy for the outbound daemon.

Each class maps to exactly one disposition category:

- ``BackendTransientError``: queue/storage hiccup, left for queue redelivery
- ``DocumentNotFoundError``: the referenced blob is already gone
- ``MalformedDocumentError``: unparseable or incomplete routing data
- ``TransportRejectedError``: oxalis-standalone declined or produced no evidence
- ``LocalIOError``: local resource failure, needs operator attention
"""


class OutboundError(Exception):
    """Base class for per-item processing errors."""


class BackendTransientError(OutboundError):
    """Queue or storage backend failure other than not-found."""


class DocumentNotFoundError(OutboundError):
    """The referenced document no longer exists in storage."""


class MalformedDocumentError(OutboundError):
    """Document is not well-formed XML or lacks sender/receiver."""

    def __init__(self, message: str, reason: str = "notwellformed"):
        super().__init__(message)
        self.reason = reason


class MalformedMessageError(MalformedDocumentError):
    """Queue message payload does not decode to a document reference."""

    def __init__(self, message: str):
        super().__init__(message, reason="badmessage")


class TransportRejectedError(OutboundError):
    """The transport process exited non-zero or left no evidence."""

    def __init__(self, message: str, returncode=None, output: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class LocalIOError(OutboundError, OSError):
    """Scratch file, directory or process launch failure on this host."""


class TransportTimeoutError(LocalIOError):
    """The transport process did not finish within the configured timeout."""


class ConfigError(ValueError):
    """Invalid or missing startup configuration."""
