"""
Session lifecycle: handshake, startup and teardown of the session loops.
"""

import logging
import threading
import time

from .receiver import PacketReceiveLoop, ReportListener
from .reporter import ReportLoop
from .session import Session, SessionStatus
from ..config import SessionConfig
from ..exceptions import DecoderError, NegotiationError, SessionError
from ..utils.decoder import create_sink
from ..utils.handshake import HandshakeEvents
from ..utils.transport import UDPTransport, local_address, resolve_address

logger = logging.getLogger(__name__)


def set_debug_mode(enabled):
    """Toggle diagnostic verbosity of the whole package"""
    logging.getLogger("privlisten").setLevel(logging.DEBUG if enabled else logging.WARNING)


class ConnectionListener:
    """Receives exactly one of on_connected or on_failure per connect()"""

    def on_connected(self, session):
        pass

    def on_failure(self, error):
        pass


class _ConnectAttempt(HandshakeEvents):
    """Outcome routing for a single connect() call"""

    def __init__(self, connector, device_address, listener):
        self.connector = connector
        self.device_address = device_address
        self.device_ip = None
        self.listener = listener
        self._done = False
        self._lock = threading.Lock()

    def _finish(self):
        with self._lock:
            if self._done:
                return False
            self._done = True
            return True

    def fail(self, error):
        if not self._finish():
            logger.debug(f"Ignoring late failure for {self.device_address}: {error}")
            return
        logger.warning(f"Connection to {self.device_address} failed: {error}")
        self.listener.on_failure(error)

    def succeed(self, session):
        if not self._finish():
            return False
        self.listener.on_connected(session)
        return True

    def on_auth_succeeded(self):
        logger.debug("onAuthSuccess")

    def on_setup_complete(self, local_address):
        logger.debug(f"Setup complete, audio output {local_address}")
        try:
            session = self.connector._start_session(self.device_ip, local_address)
        except (SessionError, OSError) as e:
            self.fail(e)
            return
        if not self.succeed(session):
            # the attempt already failed; don't leak the running session
            self.connector.disconnect(session)

    def on_auth_failed(self, reason):
        self.fail(NegotiationError(f"Auth failure: {reason}"))


class Connector:
    """Creates and tears down listening sessions.

    Args:
        handshake: Control-channel collaborator (see utils.handshake.Handshake)
        config: SessionConfig; ports, bandwidth and decoder settings
        sink: Decoder sink; built from config when omitted
        rng: numpy Generator handed to each session
        clock: Time source handed to each session
        transport_factory: Callable(port, group=None) returning a transport
    """

    def __init__(self, handshake, config=None, sink=None, rng=None, clock=time.time,
                 transport_factory=UDPTransport):
        self.handshake = handshake
        self.config = config or SessionConfig()
        self.config.validate()
        self.sink = sink if sink is not None else create_sink(self.config)
        self.rng = rng
        self.clock = clock
        self.transport_factory = transport_factory
        self._lock = threading.Lock()

    set_debug_mode = staticmethod(set_debug_mode)

    def connect(self, device_address, listener):
        """Start a connection attempt in the background.

        Returns the worker thread; the outcome goes to listener.
        """
        attempt = _ConnectAttempt(self, device_address, listener)
        worker = threading.Thread(target=self._run_attempt, args=(attempt,),
                                  name="session-connect", daemon=True)
        worker.start()
        return worker

    def _run_attempt(self, attempt):
        try:
            attempt.device_ip = resolve_address(attempt.device_address)
            supported = self.handshake.query_capability(attempt.device_address)
        except SessionError as e:
            attempt.fail(e)
            return
        except OSError as e:
            attempt.fail(NegotiationError(f"Capability query failed: {e}"))
            return

        if not supported:
            attempt.fail(NegotiationError("Device does not support private listening"))
            return

        try:
            self.handshake.start(attempt.device_address, attempt)
        except SessionError as e:
            attempt.fail(e)
        except OSError as e:
            attempt.fail(NegotiationError(f"Setup exchange failed: {e}"))

    def _start_session(self, device_ip, output_address):
        config = self.config
        host = output_address.rsplit(":", 1)[0] if output_address else None
        local_ip = resolve_address(host or config.local_address or local_address())

        session = Session.from_config(config, rng=self.rng, clock=self.clock)
        session.status = SessionStatus.HANDSHAKING
        session.handshake = self.handshake

        data_transport = self.transport_factory(config.rtp_port, group=local_ip)
        try:
            report_transport = self.transport_factory(config.rtcp_port)
        except OSError:
            data_transport.close()
            raise

        session.receive_loop = PacketReceiveLoop(session, data_transport)
        session.receive_loop.start()

        try:
            handle = self.sink.acquire((config.decoder_address, config.decoder_port))
        except Exception:
            session.receive_loop.stop()
            report_transport.close()
            raise
        session.decoder = self.sink
        session.decoder_handle = handle
        session.receive_loop.attach_sink(self.sink, handle)

        session.report_listener = ReportListener(session, report_transport)
        session.report_loop = ReportLoop(session, report_transport, (device_ip, config.rtcp_port))
        session.report_listener.start()
        session.report_loop.start()

        session.status = SessionStatus.ACTIVE
        logger.info(f"Session 0x{session.ssrc:08x} active, receiving on {local_ip}:{config.rtp_port}")
        return session

    def disconnect(self, session):
        """Tear down a session: control channel, report loop, receive loop, decoder.

        A missing or already closed session is ignored.
        """
        if session is None:
            return
        with self._lock:
            if session.status is SessionStatus.CLOSED:
                return
            session.status = SessionStatus.CLOSED

        handshake = session.handshake or self.handshake
        try:
            handshake.disconnect()
        except (OSError, SessionError) as e:
            logger.error(f"Control channel disconnect failed: {e}")

        if session.report_loop is not None:
            session.report_loop.stop()
        if session.report_listener is not None:
            session.report_listener.stop()
        if session.receive_loop is not None:
            session.receive_loop.stop()

        if session.decoder_handle is not None:
            handle, session.decoder_handle = session.decoder_handle, None
            try:
                session.decoder.release(handle)
            except DecoderError as e:
                logger.error(f"Failed to release decoder: {e}")
        logger.info(f"Session 0x{session.ssrc:08x} closed")
