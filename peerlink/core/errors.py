"""Domain-specific errors for peerlink."""


class PeerlinkError(Exception):
    """Base error for peerlink."""


class ConfigValidationError(PeerlinkError):
    """Raised when a config file does not conform to schema or semantics."""


class ConfigLoadError(PeerlinkError):
    """Raised when reading a config file fails."""


class ReadinessTransitionError(PeerlinkError):
    """Raised when a backend requests a readiness transition that is not allowed."""


class TransportError(PeerlinkError):
    """Base transport error."""


class TransportUnavailable(TransportError):
    """Raised when a transport has no reachable peer for an attempt."""


class EncodingError(TransportError):
    """Raised when a payload cannot be represented in a transport's wire encoding."""


class AllTransportsExhausted(PeerlinkError):
    """Raised when every transport failed to deliver a message."""

    def __init__(self, attempts: tuple[str, ...]) -> None:
        self.attempts = attempts
        tried = ", ".join(attempts) if attempts else "none configured"
        super().__init__(f"Failed to send message on all transports (tried: {tried})")
