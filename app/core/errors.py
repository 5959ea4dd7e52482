from typing import Optional


class GatewayError(Exception):
    """Base class for failures that end a gateway request."""


# Identity provider rejected the client credential or could not be reached
class AuthenticationError(GatewayError):
    pass


# Session handshake with the analytics engine failed
class EngineConnectionError(GatewayError):
    pass


class QueryExecutionError(GatewayError):
    """
    The engine rejected a statement or the session failed mid-read.

    Carries the engine's own diagnostic and, when the engine nests one,
    the inner diagnostic, so the text can be shown to the end user as is.
    """

    def __init__(self, message: str, inner: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.inner = inner

    def __str__(self) -> str:
        if self.inner:
            return f"{self.message}\n{self.inner}"
        return self.message
