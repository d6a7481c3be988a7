import logging
import struct
import threading

from .packet import RTCPPacket, RTPPacket
from ..exceptions import DecoderError, TransportClosed

logger = logging.getLogger(__name__)


class PacketReceiveLoop:
    """Reads the data channel, tracks each sender and feeds the decoder.

    Args:
        session: Session whose source table is updated
        transport: Data channel with a blocking receive() and close()
        sink: Decoder sink, or None to only track membership
        sink_handle: Handle returned by sink.acquire(); may be attached later
    """

    def __init__(self, session, transport, sink=None, sink_handle=None):
        self.session = session
        self.transport = transport
        self.sink = sink
        self.sink_handle = sink_handle
        self.running = False
        self.packets_received = 0
        self.receiver_thread = None

    def attach_sink(self, sink, handle):
        self.sink = sink
        self.sink_handle = handle

    def start(self):
        self.running = True
        self.receiver_thread = threading.Thread(target=self._receiver_loop,
                                                name="rtp-receiver", daemon=True)
        self.receiver_thread.start()
        logger.info(f"Receiver started on port {self.transport.bind_port}")

    def stop(self):
        """Close the channel to unblock the pending read, then wait for the thread"""
        self.running = False
        self.transport.close()
        if self.receiver_thread is not None:
            self.receiver_thread.join(timeout=2.0)
            if self.receiver_thread.is_alive():
                logger.warning("Receiver thread did not stop")

    def _receiver_loop(self):
        while self.running:
            try:
                data, addr = self.transport.receive()
            except TransportClosed:
                break
            except OSError as e:
                logger.error(f"Error in receiver loop: {e}")
                break
            self.handle_datagram(data, addr)

        self.running = False
        logger.info(f"Receiver stopped after {self.packets_received} packets")

    def handle_datagram(self, data, addr=None):
        try:
            packet = RTPPacket.decode(data)
        except ValueError as e:
            logger.debug(f"Dropping datagram from {addr}: {e}")
            return None

        source = self.session.record_rtp_packet(packet, len(data))
        self.packets_received += 1
        if source.packets_received == 1:
            logger.info(f"First packet from SSRC 0x{packet.ssrc:08x} "
                        f"(members={self.session.member_count()}, "
                        f"senders={self.session.sender_count()})")

        if self.sink is not None and self.sink_handle is not None:
            try:
                self.sink.feed(self.sink_handle, data)
            except DecoderError as e:
                logger.error(f"Decoder feed failed: {e}")
        return packet


class ReportListener:
    """Reads inbound reports on the control port.

    SR/RR senders are tracked as members; BYE removes the listed sources.
    """

    def __init__(self, session, transport):
        self.session = session
        self.transport = transport
        self.running = False
        self.listener_thread = None

    def start(self):
        self.running = True
        self.listener_thread = threading.Thread(target=self._listener_loop,
                                                name="rtcp-listener", daemon=True)
        self.listener_thread.start()

    def stop(self):
        self.running = False
        self.transport.close()
        if self.listener_thread is not None:
            self.listener_thread.join(timeout=2.0)

    def _listener_loop(self):
        while self.running:
            try:
                data, addr = self.transport.receive()
            except TransportClosed:
                break
            except OSError as e:
                logger.error(f"Error in report listener: {e}")
                break
            self.handle_datagram(data, addr)
        self.running = False

    def handle_datagram(self, data, addr=None):
        try:
            packets = RTCPPacket.decode_compound(data)
        except (ValueError, IndexError, struct.error) as e:
            logger.debug(f"Dropping report from {addr}: {e}")
            return []
        if packets:
            self.session.record_rtcp_packet(packets, len(data))
        for packet in packets:
            logger.debug(f"Received {packet} from {addr}")
        return packets
