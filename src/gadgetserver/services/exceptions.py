# src/gadgetserver/services/exceptions.py

from typing import List, Optional


class ServiceException(Exception):
    """Base exception for all gadget server errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

class ConfigurationError(ServiceException):
    """Raised if a required server configuration (keys, certs, feature files) is missing or broken."""
    pass

class DuplicateFeatureError(ConfigurationError):
    """Raised at catalog load time when two descriptors declare the same feature name."""
    def __init__(self, name: str, first_path: str, second_path: str):
        self.name = name
        super().__init__(
            f"Feature '{name}' is declared twice: {first_path} and {second_path}"
        )

class ValidationError(ServiceException):
    """Raised for malformed caller input (URLs, token shape, request options)."""
    pass

# --- Feature resolution ---

class FeatureResolutionError(ServiceException):
    pass

class MissingFeatureError(FeatureResolutionError):
    def __init__(self, name: str, required_by: Optional[str] = None):
        self.name = name
        self.required_by = required_by
        if required_by:
            message = f"Missing feature '{name}' (required by '{required_by}')"
        else:
            message = f"Missing feature '{name}'"
        super().__init__(message)

class CircularDependencyError(FeatureResolutionError):
    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular feature dependency: {' -> '.join(self.cycle)}")

# --- Security tokens ---

class TokenError(ServiceException):
    """Authentication failure. The message never says why a token was refused."""
    def __init__(self, message: str = "Invalid security token"):
        super().__init__(message)

class TokenInvalidError(TokenError):
    pass

class TokenExpiredError(TokenError):
    def __init__(self, message: str = "Security token expired"):
        super().__init__(message)

# --- Remote fetching ---

class FetchError(ServiceException):
    """
    A single outbound fetch failed before producing an HTTP response.
    Inside batches it is carried as data instead of being raised.
    """
    TIMEOUT = "timeout"
    CONNECT = "connect"
    NETWORK = "network"
    INVALID = "invalid"

    def __init__(self, url: str, reason: str, message: Optional[str] = None):
        self.url = url
        self.reason = reason
        super().__init__(message or f"Fetching {url} failed ({reason})")

class BatchFetchError(ServiceException):
    """Raised when a whole batch is lost, e.g. no member could connect at all."""
    pass
