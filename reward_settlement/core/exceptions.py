"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict, List


class RewardSettlementException(Exception):
    """Base exception class for the reward settlement engine."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(RewardSettlementException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(RewardSettlementException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ChainReadError(RewardSettlementException):
    """Raised when a hub chain contract read fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CHAIN_READ_ERROR", details)


class PriceFeedError(RewardSettlementException):
    """Raised when the price feed cannot provide a price."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PRICE_FEED_ERROR", details)


# Reward computation exceptions. All of them abort the current epoch run.
class RewardsError(RewardSettlementException):
    """Base class for reward pipeline failures."""


class NewLockPositionZero(RewardsError):
    """Raised when the first lock position of a user has zero amount."""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("First new lock position is zero", "NEW_LOCK_POSITION_ZERO", details)


class InvalidAsset(RewardsError):
    """Raised when an asset has no price or decimals configuration."""

    def __init__(self, address: str, details: Optional[Dict[str, Any]] = None):
        self.address = address
        super().__init__(
            f"Invalid asset: {address}",
            "INVALID_ASSET",
            {**(details or {}), "address": address}
        )


class InvalidState(RewardsError):
    """Raised when a reward calculation invariant is violated."""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("Invalid calculation state", "INVALID_STATE", details)


class InvalidAddressProof(RewardsError):
    """Raised when a Merkle proof for an account cannot be produced."""

    def __init__(self, address_proof: List[str], details: Optional[Dict[str, Any]] = None):
        self.address_proof = address_proof
        super().__init__(
            "Invalid address merkle proof",
            "INVALID_ADDRESS_PROOF",
            {**(details or {}), "address_proof": address_proof}
        )
