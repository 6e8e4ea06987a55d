"""Cache and rate-limit exception hierarchy."""


class CacheLayerError(Exception):
    """Base exception for the cache and rate-limit subsystem."""


class BackendError(CacheLayerError):
    """Error reported by the key-value backend."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"[{operation}] {message}")


class BackendUnavailable(BackendError):
    """Backend is not connected."""


class BackendTimeout(BackendError):
    """Backend operation exceeded its time bound."""

    def __init__(self, operation: str, timeout: float):
        self.timeout = timeout
        super().__init__(operation, f"timed out after {timeout:.2f}s")


class SerializationError(CacheLayerError):
    """Stored cache value could not be decoded."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Cannot decode cache entry {key}: {message}")


class ConfigurationError(CacheLayerError):
    """Invalid cache or rate-limit configuration. Raised at startup only."""
