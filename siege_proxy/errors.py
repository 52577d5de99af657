from __future__ import annotations


class SiegeError(Exception):
    """Base class for errors raised while handling a proxied request."""


class EnvelopeError(SiegeError):
    """The request body is not a JSON-RPC envelope."""


class BlockDecodeError(SiegeError):
    """The block parameter could not be decoded."""


class UpstreamError(SiegeError):
    """The upstream node could not be reached or did not answer."""


class ConfigError(SiegeError):
    """Invalid static configuration."""
