"""Exception hierarchy for the discovery service."""
from typing import List, Optional

from .models import ValidationFailure


class DiscoveryError(Exception):
    """Base class for all discovery errors."""
    pass


class ConfigurationError(DiscoveryError):
    """Raised when discovery options fail validation.

    Carries every field-level failure so they can be reported at once.
    """

    def __init__(self, failures: List[ValidationFailure]):
        self.failures = list(failures)
        super().__init__("; ".join(str(f) for f in self.failures) or "Invalid configuration")


class EnumerationError(DiscoveryError):
    """Raised when listing clusters, services, tasks or namespaces fails."""

    def __init__(self, message: str, resource_id: Optional[str] = None, retryable: bool = False):
        super().__init__(message)
        self.resource_id = resource_id
        self.retryable = retryable


class TagFetchError(DiscoveryError):
    """Raised when the tags of a single resource cannot be read."""

    def __init__(self, message: str, resource_id: str, retryable: bool = False):
        super().__init__(message)
        self.resource_id = resource_id
        self.retryable = retryable


class DiscoveryUnavailableError(DiscoveryError):
    """Raised when a refresh produced nothing usable (every enumerator failed)."""
    pass


class DiscoveryTimeoutError(DiscoveryError):
    """Raised to a caller that stopped waiting for an in-flight refresh."""
    pass


class DiscoveryCancelledError(DiscoveryError):
    """Raised inside a pipeline run once every caller waiting on it has given up."""
    pass
