"""Error taxonomy for marketplace, fetch, install and skill operations.

Every error carries a stable ``kind`` (printed by the CLI) and the
``subject`` it concerns, usually a plugin or marketplace name.
"""

from __future__ import annotations


class SkillmarketError(Exception):
    """Base class for all skillmarket failures."""

    kind = "Error"
    retryable = False

    def __init__(self, message: str, subject: str | None = None):
        super().__init__(message)
        self.subject = subject

    def __str__(self) -> str:
        message = super().__str__()
        if self.subject and self.subject not in message:
            return f"{self.subject}: {message}"
        return message


# Format errors: fatal to the single operation, never silently skipped.


class InvalidFormat(SkillmarketError):
    """Manifest, index or skill file failed validation."""

    kind = "InvalidFormat"


class InvalidIndexFormat(InvalidFormat):
    kind = "InvalidIndexFormat"


class DuplicatePluginName(InvalidFormat):
    kind = "DuplicatePluginName"


class InvalidManifestFormat(InvalidFormat):
    kind = "InvalidManifestFormat"


class UnsupportedCapabilityKind(InvalidFormat):
    kind = "UnsupportedCapabilityKind"


class MissingTriggerDescription(InvalidFormat):
    kind = "MissingTriggerDescription"


class InvalidBundleLayout(InvalidFormat):
    kind = "InvalidBundleLayout"


# Fetch errors


class FetchError(SkillmarketError):
    kind = "FetchError"


class NetworkError(FetchError):
    """Transient failure; retried with backoff before surfacing."""

    kind = "NetworkError"
    retryable = True


class NotFound(FetchError):
    kind = "NotFound"


class IntegrityMismatch(FetchError):
    """Checksum did not match. Never retried."""

    kind = "IntegrityMismatch"


# User-correctable state errors


class StateError(SkillmarketError):
    kind = "StateError"


class NameCollision(StateError):
    kind = "NameCollision"


class NotInstalled(StateError):
    kind = "NotInstalled"


class UnknownMarketplace(StateError):
    kind = "UnknownMarketplace"


class PluginNotListed(StateError):
    kind = "PluginNotListed"
