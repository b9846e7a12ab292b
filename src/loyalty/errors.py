"""Engine error taxonomy.

Callers distinguish three families:

* ``ValidationError`` and ``DuplicateCheckInError`` are reported back to the
  user; nothing was recorded.
* ``TransientStorageError`` means the whole operation may be retried from the
  top.
* ``ConsistencyViolation`` means a ledger invariant is broken. It is never
  retried.
"""

from __future__ import annotations


class LoyaltyError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(LoyaltyError, ValueError):
    """Raised when a request is rejected before anything is written."""


class InvalidCoordinatesError(ValidationError):
    """Raised when reported coordinates are missing, non-finite, or out of bounds."""


class OutOfRangeError(ValidationError):
    """Raised when the reported position is outside the destination geofence."""

    def __init__(self, distance_meters: float, radius_meters: int) -> None:
        self.distance_meters = distance_meters
        self.radius_meters = radius_meters
        super().__init__(
            f"Check-in is {distance_meters:.1f} m from the destination "
            f"(allowed radius {radius_meters} m)"
        )


class InvalidQRTokenError(ValidationError):
    """Raised when a scanned QR token does not match the destination code."""


class DestinationNotFoundError(ValidationError):
    """Raised when the destination does not exist or is inactive."""


class DuplicateCheckInError(LoyaltyError):
    """Raised when the user already checked in at the destination today."""


class UserNotFoundError(LoyaltyError, LookupError):
    """Raised when a ledger operation targets an unknown user."""


class InsufficientPointsError(LoyaltyError):
    """Raised when a redemption would take the balance below zero."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(f"Insufficient points. Required: {required}, Available: {available}")


class MalformedRuleError(LoyaltyError, ValueError):
    """Raised when a custom badge rule payload cannot be interpreted."""


class ConsistencyViolation(LoyaltyError):
    """Raised when the ledger and the denormalized balance disagree."""


class TransientStorageError(LoyaltyError):
    """Raised on lock contention or connection loss; safe to retry."""
