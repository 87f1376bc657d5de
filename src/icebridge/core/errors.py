"""Error taxonomy for table registration.

Every failure the orchestrator can report is one of the classes below. The
``retryable`` flag tells callers whether a bounded local retry makes sense or
whether the problem needs a human (or a config fix) before running again.
"""

from __future__ import annotations


class IcebridgeError(RuntimeError):
    """Base class for all registration failures."""

    retryable = False


class ConfigError(ValueError):
    """Raised when a configuration file is missing or invalid."""


class AuthError(RuntimeError):
    """Raised when warehouse or storage authentication fails."""


class ProviderRejected(IcebridgeError):
    """The mount uses an unsupported provider or the wrong URI scheme."""


class ConsentTimeout(IcebridgeError):
    """The principal was not granted access before the deadline."""

    retryable = True

    def __init__(self, message: str, *, cancelled: bool = False):
        super().__init__(message)
        self.cancelled = cancelled


class ConsentDenied(IcebridgeError):
    """The storage platform explicitly denied the principal."""


class SchemaConflict(IcebridgeError):
    """An incompatible table already exists at the target."""


class MultipleMetadataSets(IcebridgeError):
    """Stale metadata from a prior table remains at the base location."""


class MetadataNotFound(IcebridgeError):
    """The resolved metadata file disappeared before registration."""

    retryable = True


class NoMetadataFound(IcebridgeError):
    """The table's metadata directory is empty or missing."""

    retryable = True


class ListingError(IcebridgeError):
    """A directory listing could not be interpreted."""
