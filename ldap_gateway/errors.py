"""Typed error kinds raised by the directory core.

Every error carries a machine-readable ``code`` and the HTTP status the web
layer answers with. Anything that is not a ``GatewayError`` is treated as an
internal error and never leaks its message to the client.
"""
from __future__ import annotations


class GatewayError(Exception):
    code: int = 1000
    http_status: int = 500

    def __init__(self, message: str = "internal server error") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def add_context(self, context: str) -> "GatewayError":
        """Prefix the message with the step that failed, keeping the error kind."""
        self.message = f"{context}: {self.message}"
        self.args = (self.message,)
        return self


class NotFoundError(GatewayError):
    code = 96
    http_status = 404

    def __init__(self, obj: str) -> None:
        super().__init__(f"no object matched '{obj}'")
        self.object = obj


class AlreadyExistsError(GatewayError):
    code = 68
    http_status = 409

    def __init__(self, obj: str) -> None:
        super().__init__(f"object already exists err: {obj}")
        self.object = obj


class PoolTimeoutError(GatewayError, TimeoutError):
    http_status = 504

    def __init__(self, option: str, seconds: float) -> None:
        super().__init__(f"{option} timeout after {seconds:g}s")
        self.option = option
        self.seconds = seconds


class UnsupportedError(GatewayError):
    http_status = 400

    def __init__(self, obj: str, object_type: str) -> None:
        super().__init__(f"unsupported {object_type}: '{obj}'")
        self.object = obj
        self.object_type = object_type


class InvalidFormatError(GatewayError):
    http_status = 400

    def __init__(self, name: str, obj: str) -> None:
        super().__init__(f"invalid {name} format: '{obj}'")
        self.name = name
        self.object = obj


class ForbiddenError(GatewayError):
    http_status = 403


class OptFailedError(GatewayError):
    """A named protocol operation failed; ``message`` is the server's reason."""

    def __init__(self, option: str, message: str) -> None:
        super().__init__(f"failed to {option}: {message}")
        self.option = option
        self.reason = message


class WeakPasswordError(OptFailedError):
    http_status = 400

    def __init__(self, account: str) -> None:
        super().__init__(f"set password for '{account}'", "password is not strong enough")


class LdapConnectError(GatewayError):
    http_status = 502

    def __init__(self, address: str, message: str) -> None:
        super().__init__(f"failed to connect to {address}: {message}")
        self.address = address


class LdapBindError(GatewayError):
    http_status = 502

    def __init__(self, principal: str, message: str) -> None:
        super().__init__(f"failed to bind as '{principal}': {message}")
        self.principal = principal


class InvalidJsonError(GatewayError):
    http_status = 400

    def __init__(self) -> None:
        super().__init__("invalid json body")
