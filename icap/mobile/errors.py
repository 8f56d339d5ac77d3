"""
Driver client error taxonomy.

Nothing raised here ends a tracking session on its own; the state machine
decides what each failure means for the session.
"""

import enum


class TrackerError(Exception):
    """Base class for driver client errors."""


class UserInputError(TrackerError):
    """Empty or malformed order code, rejected before any network call."""


class OrderRejectedError(TrackerError):
    """The server says the order code is invalid or unknown."""

    def __init__(self, order_code: str, message: str = "Pedido não encontrado ou inválido"):
        self.order_code = order_code
        super().__init__(message)


class InvalidTransitionError(TrackerError):
    """Operation not allowed in the current tracking state."""


class TransportError(TrackerError):
    """Base class for failures talking to the server."""


class NetworkError(TransportError):
    """Transient failure: timeout, connection refused, 5xx, open circuit."""


class OrderNotFoundError(TransportError):
    """The server does not know the order code. Retrying will not help."""

    def __init__(self, order_code: str):
        self.order_code = order_code
        super().__init__(f"Pedido {order_code} não encontrado no servidor")


class RequestRejectedError(TransportError):
    """The server refused a well-formed call for another business reason."""

    def __init__(self, message: str, error_code: str = None):
        self.error_code = error_code
        super().__init__(message)


class GeolocationErrorKind(enum.IntEnum):
    """Platform geolocation failure codes."""
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


GEOLOCATION_MESSAGES = {
    GeolocationErrorKind.PERMISSION_DENIED: "Permissão de localização negada",
    GeolocationErrorKind.POSITION_UNAVAILABLE: "Localização indisponível",
    GeolocationErrorKind.TIMEOUT: "Timeout ao obter localização",
}


class GeolocationError(TrackerError):
    """A position fix could not be acquired."""

    def __init__(self, kind: GeolocationErrorKind, detail: str = None):
        self.kind = kind
        self.detail = detail
        super().__init__(GEOLOCATION_MESSAGES[kind])

    @property
    def user_message(self) -> str:
        return GEOLOCATION_MESSAGES[self.kind]
