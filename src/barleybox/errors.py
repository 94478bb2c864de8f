"""Errors raised by the codec & reported by the session controller.

Nothing here is fatal: the controller catches every `BarleyBoxError` at its
boundary, records it in the activity log and carries on.
"""


class BarleyBoxError(Exception):
    """Base class for all session/codec errors."""


class InvalidInput(BarleyBoxError):
    """Operator input rejected before any transport action (blank identity, unknown action...)."""


class MalformedPayload(BarleyBoxError):
    """Inbound bytes are not a well-formed JSON object."""


class NotConnected(BarleyBoxError):
    """Command attempted while the session is not connected."""


class TransportError(BarleyBoxError):
    """Error reported by the transport's error callback."""
