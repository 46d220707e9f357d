"""Exception types raised across the relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every error the relay raises on purpose."""


class ConfigurationError(RelayError):
    """A required startup setting is missing or unusable."""


class AuthenticationError(RelayError):
    """The upgrade request carried no usable session token."""


class UpstreamConnectError(RelayError):
    """The connection to the voice agent could not be established."""


class TransportError(RelayError):
    """A socket failed mid-session while reading or writing."""


class MetadataError(RelayError):
    """The metadata descriptor could not be read or parsed."""
