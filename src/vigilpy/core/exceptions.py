"""Exception hierarchy for the observability pipeline.

None of these are allowed to escape into instrumented call sites. They exist
so that adapters can signal *what kind* of failure happened and the
components can decide how to degrade.
"""


class VigilError(Exception):
    """Base class for all pipeline errors."""


class StoreUnavailableError(VigilError):
    """The shared store could not be reached or timed out.

    Components recover locally: deduplication and the persisted recent-log
    view are skipped, local output keeps working.
    """

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"store operation '{operation}' failed: {reason}")
        self.operation = operation
        self.reason = reason


class DeliveryError(VigilError):
    """A delivery attempt failed and may succeed if retried."""


class PermanentDeliveryError(DeliveryError):
    """A delivery attempt failed in a way retrying cannot fix (e.g. HTTP 4xx)."""


class RecordDecodeError(VigilError):
    """A persisted record could not be decoded.

    Raised for malformed JSON, unknown schema versions and unknown record
    kinds, so readers can skip and count the record instead of propagating
    half-built objects.
    """

    def __init__(self, reason: str, raw: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class UnknownCheckError(KeyError):
    """No health check is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Health check '{self.name}' not found"
