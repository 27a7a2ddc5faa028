"""Error taxonomy surfaced to the operator.

Every error carries the offending identifier (slug, file path, flag or step) so
the CLI can name it without inspecting the message.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:  # pragma: no cover
    from nimbus_cli.domain.models import FeatureValidation

AddressErrorReason = Literal["empty", "unexpected-segment"]


class NimbusCliError(Exception):
    """Base tool error."""

    def __init__(self, message: str, *, identifier: str | None = None):
        super().__init__(message)
        self.identifier = identifier


class AddressError(NimbusCliError):
    """Malformed or empty slug / server token."""

    def __init__(self, token: str, reason: AddressErrorReason, message: str | None = None):
        default = (
            f"No slug left in '{token}'"
            if reason == "empty"
            else f"Unexpected segment in server address '{token}'"
        )
        super().__init__(message or default, identifier=token)
        self.token = token
        self.reason: AddressErrorReason = reason


class ManifestResolutionError(NimbusCliError):
    """No reachable manifest ref and no local file.

    ``expected`` marks refs derived from an app version template: those may not
    exist upstream and are a normal outcome, not a misconfiguration.
    """

    def __init__(self, message: str, *, identifier: str | None = None, expected: bool = False):
        super().__init__(message, identifier=identifier)
        self.expected = expected


class ValidationError(NimbusCliError):
    """One or more feature configs failed the manifest check."""

    def __init__(
        self,
        message: str,
        *,
        identifier: str | None = None,
        failures: list[FeatureValidation] | None = None,
    ):
        super().__init__(message, identifier=identifier)
        self.failures = list(failures or [])


class TransportError(NimbusCliError):
    """A device or network call failed or timed out."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}", identifier=operation)
        self.operation = operation


class ConflictError(NimbusCliError):
    """Mutually exclusive flags were both given."""

    def __init__(self, *flags: str):
        super().__init__(f"{' and '.join(flags)} cannot be used together", identifier=flags[0])
        self.flags = flags


class PayloadError(NimbusCliError):
    """Recipe or feature-config payload is missing, unreadable or inconsistent."""


class ConfigurationError(NimbusCliError):
    """Unknown app / channel or unusable tool configuration."""


__all__ = [
    "AddressError",
    "ConfigurationError",
    "ConflictError",
    "ManifestResolutionError",
    "NimbusCliError",
    "PayloadError",
    "TransportError",
    "ValidationError",
]
