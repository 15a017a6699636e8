"""
Custom business exceptions for the negotiation desk.

WHAT: Domain-specific exceptions for gates, writes, sync and settlement
WHY: Every failure maps to a known category and an explicit entity status
HOW: Custom exception classes with error codes and messages
"""

from typing import Optional, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class ConfigurationError(BusinessException):
    """Raised when a collaborator is missing credentials or settings."""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details={"setting": setting} if setting else None
        )


class ValidationError(BusinessException):
    """Raised when a constraint is violated before any remote call."""

    def __init__(self, message: str, field: Optional[str] = None, code: str = "VALIDATION_ERROR"):
        super().__init__(
            message=message,
            code=code,
            details={"field": field} if field else None
        )


class InvalidTransitionError(ValidationError):
    """Raised when a negotiation transition is not legal from its current status."""

    def __init__(self, negotiation_id: str, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} negotiation {negotiation_id} in status {current_status}",
            code="INVALID_TRANSITION"
        )
        self.details = {
            "negotiation_id": negotiation_id,
            "current_status": current_status,
            "action": action,
        }


class KycRequiredError(ValidationError):
    """Raised when a farmer acts before completing identity verification."""

    def __init__(self, user_id: str, kyc_status: str):
        super().__init__(
            message=f"KYC verification required before trading (status: {kyc_status})",
            code="KYC_REQUIRED"
        )
        self.details = {"user_id": user_id, "kyc_status": kyc_status}


class NotFoundError(BusinessException):
    """Raised when a referenced entity is no longer known locally."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code="NOT_FOUND",
            details={"entity": entity, "id": entity_id}
        )


class RemoteWriteError(BusinessException):
    """Raised when a valid write fails at the remote store."""

    def __init__(self, operation: str, reason: Optional[str] = None):
        super().__init__(
            message=f"Remote write failed ({operation}): {reason or 'unknown error'}",
            code="REMOTE_WRITE_FAILED",
            details={"operation": operation, "reason": reason}
        )


class SubscriptionError(BusinessException):
    """Live feed error, classified for display. Never closes the feed."""

    def __init__(self, feed: str, category: str, user_message: str, reason: str):
        codes = {
            "index": "INDEX_REQUIRED",
            "permission": "PERMISSION_DENIED",
        }
        super().__init__(
            message=user_message,
            code=codes.get(category, "SYNC_ERROR"),
            details={"feed": feed, "category": category, "reason": reason}
        )
        self.feed = feed
        self.category = category


class SettlementRecordingError(BusinessException):
    """Best-effort settlement recording failed. Logged, never rolled back."""

    def __init__(self, negotiation_id: str, reason: str):
        super().__init__(
            message=f"Failed to record settlement for negotiation {negotiation_id}: {reason}",
            code="SETTLEMENT_RECORDING_FAILED",
            details={"negotiation_id": negotiation_id, "reason": reason}
        )
