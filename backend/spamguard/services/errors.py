class SpamEngineError(Exception):
    """Base exception for the spam engine."""
    pass


class SpamValidationError(SpamEngineError):
    """Raised for malformed input before anything is written."""
    pass


class StoreUnavailableError(SpamEngineError):
    """Raised when the store keeps failing after all retries."""
    pass


class CircuitOpenError(StoreUnavailableError):
    """Raised when the circuit breaker is refusing calls."""
    pass


class DuplicateMessageError(SpamValidationError):
    """Raised when an ingested message collides with an existing fingerprint."""
    pass
