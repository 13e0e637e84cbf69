"""
Error taxonomy for the watcher pipeline.
Nothing here is fatal: each error is retried, degraded, or logged per subscription.
"""


class WatcherError(Exception):
    """Base class for every pipeline error"""


class ConnectError(WatcherError):
    """Transport could not be established or the subscribe was not acknowledged"""


class ProtocolError(WatcherError):
    """Unexpected frame from upstream"""


class MalformedFrame(ProtocolError):
    """Frame is missing required fields or is not valid JSON"""


class TransportClosed(WatcherError):
    """Websocket closed (cleanly or not) while the subscription was active"""

    def __init__(self, message: str = "transport closed", code=None, reason: str = ""):
        super().__init__(message)
        self.code = code
        self.reason = reason


class EnrichmentError(WatcherError):
    """Token metadata/price lookup failed"""


class DeliveryError(WatcherError):
    """Notification could not be delivered to the subscriber"""

    def __init__(self, message: str, status=None):
        super().__init__(message)
        self.status = status
