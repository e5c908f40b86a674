from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors that end a download with a 502 response."""


class AuthorizationPayloadError(GatewayError):
    """The authorization API answered with a body we cannot use."""


class UnsafeObjectKeyError(AuthorizationPayloadError):
    """The file path would resolve outside the bucket folder."""
