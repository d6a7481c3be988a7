"""
Control-channel collaborators.

The session engine only consumes three outcomes of the setup exchange:
authentication succeeded, setup complete (with the local address the device
will stream to), and authentication failed.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class HandshakeEvents:
    """Receiver of setup-exchange outcomes"""

    def on_auth_succeeded(self):
        pass

    def on_setup_complete(self, local_address):
        pass

    def on_auth_failed(self, reason):
        pass


class Handshake:
    """Negotiates a stream with a remote device"""

    def query_capability(self, device_address):
        """Return True if the device can stream to us"""
        raise NotImplementedError

    def start(self, device_address, events):
        """Begin the setup exchange; outcomes are delivered to events"""
        raise NotImplementedError

    def disconnect(self):
        raise NotImplementedError


class StaticHandshake(Handshake):
    """Handshake for a stream negotiated out of band.

    Capability and authentication succeed immediately and setup completes
    with the configured local address.
    """

    def __init__(self, local_address, supported=True, fail_reason=None):
        self.local_address = local_address
        self.supported = supported
        self.fail_reason = fail_reason
        self.connected = threading.Event()

    def query_capability(self, device_address):
        return self.supported

    def start(self, device_address, events):
        if self.fail_reason:
            events.on_auth_failed(self.fail_reason)
            return
        self.connected.set()
        events.on_auth_succeeded()
        logger.debug(f"Static setup for {device_address} -> {self.local_address}")
        events.on_setup_complete(self.local_address)

    def disconnect(self):
        self.connected.clear()
