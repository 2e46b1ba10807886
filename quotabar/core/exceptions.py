from __future__ import annotations


class FetchError(Exception):
    """Base exception for all usage-fetch errors."""

    code: str = "fetch_failed"
    message: str = "Usage fetch failed"
    recoverable: bool = True

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.__class__.message
        if code is not None:
            self.code = code
        super().__init__(self.message)


# --- not found ---


class NotFoundError(FetchError):
    code = "not_found"
    message = "Data source not found"


class BinaryNotFoundError(NotFoundError):
    def __init__(self, binary: str) -> None:
        self.binary = binary
        super().__init__(f"Binary not found on PATH: {binary}")


class CredentialsNotFoundError(NotFoundError):
    message = "No stored credentials found"


# --- timeout ---


class FetchTimeoutError(FetchError):
    code = "timeout"
    message = "Usage fetch timed out"


class PTYTimeoutError(FetchTimeoutError):
    message = "PTY command timed out."


# --- protocol / parse ---


class ProtocolError(FetchError):
    code = "protocol_error"
    message = "Unexpected response"


class ParseError(ProtocolError):
    message = "Could not parse usage data"


class RPCProtocolError(ProtocolError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Malformed response: {message}")


class RPCRequestError(FetchError):
    code = "rpc_error"

    def __init__(self, message: str) -> None:
        self.server_message = message
        super().__init__(f"RPC request failed: {message}")


# --- process lifecycle ---


class LaunchFailedError(FetchError):
    code = "launch_failed"

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to launch process: {message}")


# --- credentials ---


class AuthenticationRequiredError(FetchError):
    code = "authentication_required"
    message = "Authentication required"


class InteractionDeniedError(FetchError):
    code = "interaction_denied"
    message = "Credential store access is cooling down after a denied prompt"


# --- configuration ---


class MisconfigurationError(FetchError):
    code = "misconfigured"
    message = "Provider is misconfigured"
    recoverable = False


class SourceUnavailableError(FetchError):
    code = "source_unavailable"
    message = "No usage source is available"
