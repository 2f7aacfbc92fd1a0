"""
Xbox Achievements Tracker - Errors
==================================
Exception hierarchy shared by the auth, HTTP, state and realtime modules.
"""


class XboxError(Exception):
    """Base class for every tracker failure."""


class NetworkError(XboxError):
    """Connection refused, DNS failure, timeout, TLS error."""


class HttpError(XboxError):
    """Server answered with a non-2xx status."""

    def __init__(self, status, url="", body=""):
        self.status = status
        self.url = url
        self.body = body
        super().__init__(f"HTTP {status} from {url}: {body[:200]}")


class ClientHttpError(HttpError):
    pass


class ServerHttpError(HttpError):
    pass


class DecodeError(XboxError, ValueError):
    """Missing or malformed field in a response body."""


class CryptoError(XboxError):
    pass


class PersistenceError(XboxError):
    pass


class UnavailableError(XboxError):
    """No Xbox identity is available; sign in first."""


class AuthenticationError(XboxError):
    pass


class TokenExpiredError(AuthenticationError):
    """A token or device code passed its expiry."""


def http_error_for(status, url="", body=""):
    """Return the HttpError subclass matching a status code."""
    if 400 <= status < 500:
        return ClientHttpError(status, url, body)
    if status >= 500:
        return ServerHttpError(status, url, body)
    return HttpError(status, url, body)
