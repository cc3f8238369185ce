"""
Registry Errors

Exception taxonomy for talking to a Docker Registry V2 API. Every error
raised by the client is a RegistryError so the CLI can render it and exit.
"""

from typing import Optional


class RegistryError(Exception):
    """Base exception for all registry-related errors"""


class ConfigError(RegistryError):
    """Configuration file could not be read, parsed or written"""


class UrlResolutionError(RegistryError):
    """A registry origin or path could not be turned into a URL"""

    def __init__(self, value: str, reason: str = None):
        self.value = value
        self.reason = reason
        message = f"Invalid registry URL or path: {value!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class TransportError(RegistryError):
    """Request did not produce a usable HTTP response"""

    def __init__(self, url: str, cause: Exception):
        self.url = url
        self.cause = cause
        super().__init__(f"Request to {url} failed: {cause}")


class HeaderDecodeError(RegistryError):
    """A response header value is not valid visible ASCII"""

    def __init__(self, header: str):
        self.header = header
        super().__init__(f"Failed to parse response header {header!r}")


class DecodeError(RegistryError):
    """A response body does not match the expected schema"""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to decode response from {url}: {reason}")


class AuthorizationFailed(RegistryError):
    """Registry answered 401 Unauthorized"""

    def __init__(self, challenge: Optional[str] = None):
        # WWW-Authenticate is kept for display only, it is never answered
        self.challenge = challenge
        super().__init__("HTTP Authorization failed")


class NotFound(RegistryError):
    """Registry answered 404 Not Found"""

    def __init__(self):
        super().__init__("Resource not found")


class MethodNotAllowed(RegistryError):
    """Registry answered 405 Method Not Allowed"""

    def __init__(self):
        super().__init__("Method not allowed")


class UnsupportedVersion(RegistryError):
    """Docker-Distribution-API-Version is not registry/2.0"""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Version Mismatch {version}")


class UnexpectedResponse(RegistryError):
    """Response does not follow the Distribution API contract"""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Unexpected response from API: {detail}")


class PaginationError(RegistryError):
    """Link pagination revisited a page or ran past the page limit"""


class OperationNotSupported(RegistryError):
    """The requested operation is not implemented by this client"""
