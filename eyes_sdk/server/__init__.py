"""HTTP layer: resilient transport and the typed server connector."""

from eyes_sdk.server.connector import Capability, ServerConnector
from eyes_sdk.server.transport import HttpTransport

__all__ = ["Capability", "HttpTransport", "ServerConnector"]
