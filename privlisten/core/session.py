"""
Session-wide state shared by the receive loop, the report loop and the
lifecycle orchestrator.
"""

import enum
import logging
import threading
import time
from collections import deque
from typing import Callable, List, Optional

import numpy as np

from .interval import RTCP_BW_FRACTION, compute_interval, member_timeout
from .packet import RTCPPacket
from .source import Source, SourceTable

logger = logging.getLogger(__name__)

# At most 31 report blocks fit in one SR/RR (5-bit count)
MAX_REPORT_BLOCKS = 31
# Header overhead of a UDP/IPv4 datagram, counted in the RTCP size average
UDP_IP_OVERHEAD = 28


class SessionStatus(enum.Enum):
    IDLE = "idle"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSED = "closed"


class SessionState:
    """RTCP state variables (RFC 3550 6.3) for one session.

    Plain record; the owning Session's lock guards every field.
    """

    def __init__(self, bandwidth: float):
        if bandwidth <= 0:
            raise ValueError(f"bandwidth must be positive, got {bandwidth}")
        self.bandwidth = float(bandwidth)
        self.ssrc = 0
        self.rtcp_bw = RTCP_BW_FRACTION * self.bandwidth
        self.packet_count = 0
        self.octet_count = 0
        self.avg_rtcp_size = 0.0
        self.avg_pkt_sz = 0.0
        self.pmembers = 1
        self.we_sent = False
        self.initial = True
        self.T = 0.0
        self.Td = 0.0
        self.tn = 0.0
        self.tc = 0.0
        self.time_of_last_rtcp_sent = 0.0
        self.is_bye_requested = False


class Session:
    """One listening session: the state record, its source table and the lock
    binding them together.

    Args:
        bandwidth: Session bandwidth in bytes/sec, must be positive
        rng: numpy Generator used for the SSRC and the interval jitter
        clock: Returns the current time in seconds
        member_timeout_intervals: Report intervals of silence before a
            remote member is dropped
        legacy_bandwidth_scaling: Keep the sender/receiver split applied to
            rtcp_bw across calls instead of recomputing it from bandwidth
        cname: Canonical name sent in SDES items
        clock_rate: RTP timestamp rate of the stream, for jitter estimates
    """

    def __init__(self, bandwidth: float, rng: Optional[np.random.Generator] = None,
                 clock: Callable[[], float] = time.time, member_timeout_intervals: int = 5,
                 legacy_bandwidth_scaling: bool = False, cname: str = "privlisten@localhost",
                 clock_rate: int = 48000, payload_type: int = 97):
        self.lock = threading.Lock()
        self.state = SessionState(bandwidth)
        self.sources = SourceTable()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.clock = clock
        self.member_timeout_intervals = member_timeout_intervals
        self.legacy_bandwidth_scaling = legacy_bandwidth_scaling
        self.cname = cname
        self.clock_rate = clock_rate
        self.payload_type = payload_type
        self.status = SessionStatus.IDLE

        # Filled in by the lifecycle orchestrator
        self.receive_loop = None
        self.report_loop = None
        self.report_listener = None
        self.handshake = None
        self.decoder = None
        self.decoder_handle = None

        self._report_packet_counts = deque([0], maxlen=3)
        self.initialize()

    @classmethod
    def from_config(cls, config, rng=None, clock=time.time):
        return cls(config.bandwidth, rng=rng, clock=clock,
                   member_timeout_intervals=config.member_timeout_intervals,
                   legacy_bandwidth_scaling=config.legacy_bandwidth_scaling,
                   cname=config.cname, clock_rate=config.sample_rate,
                   payload_type=config.payload_type)

    @property
    def ssrc(self):
        return self.state.ssrc

    def initialize(self):
        """Reset the state variables, draw a new SSRC and add self to the table"""
        with self.lock:
            s = self.state
            now = self.clock()
            s.time_of_last_rtcp_sent = now
            s.tc = now
            s.pmembers = 1
            s.we_sent = True
            s.rtcp_bw = RTCP_BW_FRACTION * s.bandwidth
            s.initial = True
            s.avg_pkt_sz = 0.0
            s.packet_count = 0
            s.octet_count = 0
            s.is_bye_requested = False
            s.ssrc = int(self.rng.integers(0, 2 ** 31))

            self.sources = SourceTable()
            self.sources.add(s.ssrc)

            self._calculate_interval()
            s.tn = s.tc + s.T
        logger.debug(f"SSRC: 0x{self.state.ssrc:08x}")

    # Source table access, always under the session lock

    def get_source(self, ssrc) -> Source:
        with self.lock:
            return self._touch(self.sources.get_or_create(ssrc))

    def add_source(self, ssrc):
        with self.lock:
            self._touch(self.sources.add(ssrc))

    def _touch(self, source):
        if not source.last_seen:
            source.last_seen = self.clock()
        return source

    def remove_source(self, ssrc):
        with self.lock:
            own = ssrc == self.state.ssrc
            removed = not own and self.sources.remove(ssrc)
            members = self.sources.count()
        if own:
            logger.warning(f"Refusing to remove own SSRC 0x{ssrc:08x}")
        elif removed:
            logger.debug(f"Removed source SSRC=0x{ssrc:08x} (members={members})")
        else:
            logger.debug(f"Trying to remove SSRC which doesn't exist: 0x{ssrc:08x}")
        return removed

    def my_source(self) -> Source:
        with self.lock:
            return self.sources.get(self.state.ssrc)

    def member_count(self):
        with self.lock:
            return self.sources.count()

    def sender_count(self):
        with self.lock:
            return self.sources.count_active_senders()

    def snapshot_sources(self) -> List[Source]:
        with self.lock:
            return self.sources.snapshot_all()

    def remove_all_sources(self):
        """Drop every member except self and restart membership accounting"""
        with self.lock:
            count = self.sources.remove_all_except_self(self.state.ssrc)
            self.state.pmembers = 1
            self._calculate_interval()
        return count

    # Interval

    def calculate_interval(self):
        with self.lock:
            return self._calculate_interval()

    def _calculate_interval(self):
        s = self.state
        me = self.sources.get(s.ssrc)
        if self.legacy_bandwidth_scaling:
            rtcp_bw = s.rtcp_bw
        else:
            rtcp_bw = RTCP_BW_FRACTION * s.bandwidth
        interval = compute_interval(
            members=self.sources.count(),
            senders=self.sources.count_active_senders(),
            we_are_sender=bool(me and me.is_active_sender),
            initial=s.initial,
            avg_rtcp_size=s.avg_rtcp_size,
            rtcp_bw=rtcp_bw,
            rng=self.rng,
        )
        if self.legacy_bandwidth_scaling:
            s.rtcp_bw = interval.rtcp_bw
        s.T = interval.T
        s.Td = interval.Td
        return interval

    def time_until_next_report(self):
        with self.lock:
            return max(self.state.tn - self.clock(), 0.0)

    # Receive path

    def record_rtp_packet(self, packet, size, now=None):
        """Account for one inbound data packet"""
        now = self.clock() if now is None else now
        with self.lock:
            source = self.sources.get_or_create(packet.ssrc)
            source.record_rtp(packet.seq_num, len(packet.payload), now)
            source.update_jitter(packet.timestamp, now, self.clock_rate)
            self.state.avg_pkt_sz += (size - self.state.avg_pkt_sz) / 16.0
            return source

    def record_rtcp_packet(self, packets, size, now=None):
        """Account for one inbound compound report"""
        now = self.clock() if now is None else now
        with self.lock:
            self.state.avg_rtcp_size += (size + UDP_IP_OVERHEAD - self.state.avg_rtcp_size) / 16.0
            for packet in packets:
                if packet.packet_type == RTCPPacket.PT_BYE:
                    for ssrc in packet.sources:
                        if ssrc == self.state.ssrc:
                            continue
                        self.sources.remove(ssrc)
                    continue
                if packet.ssrc == self.state.ssrc:
                    continue
                source = self.sources.get_or_create(packet.ssrc)
                source.last_seen = now
                if packet.packet_type == RTCPPacket.PT_SR:
                    source.last_sr = (packet.ntp_timestamp >> 16) & 0xFFFFFFFF
                    source.last_sr_time = now

    # Report path

    def expire_sources(self, now=None):
        """Drop silent members and demote senders that stopped sending.

        Members are removed after member_timeout_intervals deterministic
        intervals without activity; senders fall back to receivers after two
        randomized intervals without data (RFC 3550 6.3.5).
        """
        now = self.clock() if now is None else now
        expired = []
        with self.lock:
            s = self.state
            timeout = member_timeout(s.Td, self.member_timeout_intervals)
            for source in self.sources.snapshot_all():
                if source.ssrc == s.ssrc:
                    continue
                if now - source.last_seen > timeout:
                    self.sources.remove(source.ssrc)
                    expired.append(source.ssrc)
                elif source.is_active_sender and now - source.last_rtp_time > 2 * s.T:
                    self.sources.get(source.ssrc).is_active_sender = False
        if expired:
            logger.info(f"Expired {len(expired)} silent member(s)")
        return expired

    def build_report(self, now=None, bye=False):
        """Encode the compound report for the current state"""
        now = self.clock() if now is None else now
        with self.lock:
            s = self.state
            blocks = []
            for source in self.sources:
                if source.ssrc == s.ssrc or not source.is_active_sender:
                    continue
                blocks.append(source.report_block(now))
                if len(blocks) == MAX_REPORT_BLOCKS:
                    break
            if s.we_sent and not bye:
                first = RTCPPacket.sender_report(s.ssrc, s.packet_count, s.octet_count,
                                                 blocks, now=now)
            else:
                first = RTCPPacket.receiver_report(s.ssrc, blocks)
            packets = [first, RTCPPacket.source_description(s.ssrc, self.cname)]
            if bye:
                packets.append(RTCPPacket.bye(s.ssrc))
        return b''.join(p.encode() for p in packets)

    def report_sent(self, size, now=None, success=True):
        """Fold a transmitted report into the timing state and schedule the next one.

        A failed send only reschedules.
        """
        now = self.clock() if now is None else now
        with self.lock:
            s = self.state
            if not success:
                self._calculate_interval()
                s.tc = now
                s.tn = now + s.T
                return
            s.avg_rtcp_size += (size + UDP_IP_OVERHEAD - s.avg_rtcp_size) / 16.0
            s.time_of_last_rtcp_sent = now
            s.tc = now
            s.pmembers = self.sources.count()
            s.initial = False

            self._report_packet_counts.append(s.packet_count)
            s.we_sent = s.packet_count > self._report_packet_counts[0]

            self._calculate_interval()
            s.tn = s.tc + s.T
            T, Td, pmembers = s.T, s.Td, s.pmembers
        logger.debug(f"Next report in {T:.2f}s (Td={Td:.2f}s, members={pmembers})")

    def request_bye(self):
        with self.lock:
            self.state.is_bye_requested = True

    @property
    def is_bye_requested(self):
        with self.lock:
            return self.state.is_bye_requested

    def __repr__(self):
        return f"Session(ssrc=0x{self.state.ssrc:08x}, status={self.status.value})"
