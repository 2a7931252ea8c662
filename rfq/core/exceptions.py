"""
RFQ Exception Hierarchy

All exceptions inherit from RFQError so callers can catch every engine
failure in one place. Hard-fail operations (create_offer,
delegate_to_signer, settle_offer) raise exactly one of these.
"""


class RFQError(Exception):
    """Base exception for all RFQ errors"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class InvalidParameter(RFQError):
    """Raised when an input value is malformed or out of range"""
    pass


class OfferNotFound(RFQError):
    """Raised when an offer id has never been created"""
    pass


class Unauthorized(RFQError):
    """Raised when the caller is not the offer's seller"""
    pass


class InconsistentOffer(RFQError):
    """Raised when a bid does not match the offer it targets"""
    pass


class InvalidDelegate(RFQError):
    """Raised when a signer is neither the bidder nor its delegate"""
    pass


class InvalidSignature(RFQError):
    """Raised when a signature is malformed or recovers to the wrong signer"""
    pass


class TransferFailed(RFQError):
    """Raised when either settlement leg is refused by the token ledger"""
    pass


class ViolationCapacityExceeded(RFQError):
    """Raised when more violations are recorded than the validator allows"""
    pass


class ConfigError(RFQError):
    """Raised when engine configuration is invalid"""
    pass


class StorageError(RFQError):
    """Raised when the persistent backend holds unreadable data"""
    pass
