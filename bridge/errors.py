"""Exception types raised by the bridge services."""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for errors raised by the bridge."""


class IncompatibleHostError(BridgeError):
    """Raised when the media host does not offer a capability the bridge needs."""


class RankingUnavailableError(BridgeError):
    """Raised when a ranking strategy cannot gather the data it scores with."""
