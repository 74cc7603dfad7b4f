"""Error taxonomy for the request-orchestration layer.

Every failure a caller may need to tell apart has its own class. All of them
derive from RelayError so the command layer can turn any of them into a
single user-visible line.

    RelayError
    ├── NotConfigured          -- feature credentials / URL absent
    ├── UpstreamAuthFailure    -- credential exchange failed
    ├── UpstreamUnreachable    -- network-level failure (incl. timeouts)
    ├── UpstreamError          -- non-2xx status
    │   └── EmptyCompletion    -- model returned no choices
    ├── MalformedResponse      -- body did not parse / wrong shape
    ├── ResourceNotFound       -- semantic "unknown name", not a fault
    └── StorageError           -- persistence layer failed
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""
    pass


class NotConfigured(RelayError):
    """Raised when a feature's external credentials or URL are absent."""

    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(f"{feature} not configured")


class UpstreamAuthFailure(RelayError):
    """Raised when the credential exchange does not yield a usable token."""
    pass


class UpstreamUnreachable(RelayError):
    """Raised when the upstream could not be reached at all."""
    pass


class UpstreamError(RelayError):
    """Raised when the upstream answered with a non-success status."""

    def __init__(self, status: Optional[int], message: str = ""):
        self.status = status
        super().__init__(message or f"upstream returned status {status}")


class EmptyCompletion(UpstreamError):
    """Raised when a chat completion carries no choices."""

    def __init__(self):
        super().__init__(None, "No response from model")


class MalformedResponse(RelayError):
    """Raised when an upstream body does not have the expected shape."""
    pass


class ResourceNotFound(RelayError):
    """Raised when the profile API does not know the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"**{name}** not found.")


class StorageError(RelayError):
    """Raised when the conversation store fails a read or write."""
    pass
