import ipaddress
import logging
import socket
import struct
import threading

from ..exceptions import AddressResolutionError, TransportClosed

logger = logging.getLogger(__name__)


def resolve_address(host):
    """Resolve a hostname or dotted-quad to an IPv4 address string"""
    try:
        return socket.gethostbyname(host)
    except (socket.gaierror, UnicodeError) as e:
        raise AddressResolutionError(f"Cannot resolve {host!r}: {e}") from e


def local_address():
    """Best guess at this host's own outward-facing IPv4 address"""
    return resolve_address(socket.gethostname())


class UDPTransport:
    """Datagram channel bound to one port, optionally joined to a multicast group.

    receive() blocks without a timeout; close() from another thread unblocks
    it with TransportClosed.
    """

    def __init__(self, bind_port, group=None, bind_ip='', buffer_size=2048):
        self.bind_ip = bind_ip
        self.bind_port = bind_port
        self.group = group
        self.buffer_size = buffer_size
        self._closed = threading.Event()

        self.socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.socket.bind((bind_ip, bind_port))
            if group and ipaddress.ip_address(group).is_multicast:
                mreq = struct.pack("4sl", socket.inet_aton(group), socket.INADDR_ANY)
                self.socket.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
                logger.info(f"Joined multicast {group} on port {bind_port}")
        except OSError:
            self.socket.close()
            raise
        logger.debug(f"Transport bound on {bind_ip or '*'}:{bind_port}")

    @property
    def closed(self):
        return self._closed.is_set()

    def send(self, data, address):
        if self.closed:
            raise TransportClosed("send on closed transport")
        self.socket.sendto(data, address)

    def receive(self):
        """Block until a datagram arrives; returns (data, addr)"""
        while True:
            if self.closed:
                raise TransportClosed("transport closed")
            try:
                data, addr = self.socket.recvfrom(self.buffer_size)
            except OSError as e:
                if self.closed:
                    raise TransportClosed("transport closed") from e
                raise
            if self.closed:
                raise TransportClosed("transport closed")
            # shutdown() wakes recvfrom with an empty read
            if data or addr:
                return data, addr

    def close(self):
        if self.closed:
            return
        self._closed.set()
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            # UDP sockets that never connected report ENOTCONN but still wake
            pass
        self.socket.close()
        logger.debug(f"Transport on port {self.bind_port} closed")
