# flasharb/exceptions.py
"""
Error kinds raised or reported by the arbitrage engine
"""


class FlashArbError(Exception):
    """Base class for all engine errors"""


class ConfigError(FlashArbError):
    """Missing or invalid configuration. Fatal at startup."""


class QuoteUnavailable(FlashArbError):
    """A venue returned nothing usable for a hop"""


class TransportTimeout(FlashArbError):
    """RPC call did not answer within the configured timeout"""


class ConfirmationError(FlashArbError):
    """A submitted transaction could not be confirmed"""

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash
