"""
Exceptions for the auto-liquidation bot
"""

from typing import Any, Dict, Optional


class LiquidatorError(Exception):
    """Base exception for all liquidator errors"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context
        }


class ConfigurationError(LiquidatorError, ValueError):
    """Raised when configuration is missing or invalid"""
    pass


class RpcError(LiquidatorError):
    """Raised when a JSON-RPC call fails or returns an error object"""
    pass


class SwapError(LiquidatorError):
    """Base exception for failures inside the swap pipeline"""
    pass


class QuoteError(SwapError):
    """Raised when the aggregator refuses to quote a route"""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.status = status
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"status": self.status, "body": self.body})
        return data


class SwapBuildError(SwapError):
    """Raised when the aggregator does not return a swap transaction"""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.status = status
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"status": self.status, "body": self.body})
        return data


class SubmissionError(SwapError):
    """Raised when a transaction cannot be decoded, sent or finalized"""

    def __init__(self, message: str, signature: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.signature = signature

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["signature"] = self.signature
        return data


class BalanceLookupFailure(LiquidatorError):
    """Raised when a token balance cannot be read"""
    pass


class FeedTransportError(LiquidatorError):
    """Raised when the transaction feed socket fails"""
    pass
