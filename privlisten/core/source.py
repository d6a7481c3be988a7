import copy

from .packet import ReportBlock


class Source:
    """One participant of the session, keyed by its SSRC"""

    def __init__(self, ssrc):
        self.ssrc = ssrc
        self.is_active_sender = False
        self.last_seen = 0.0       # last RTP or RTCP activity
        self.last_rtp_time = 0.0   # last data packet
        self.packets_received = 0
        self.octets_received = 0
        self.base_seq = None
        self.max_seq = 0
        self.cycles = 0
        self.expected_prior = 0
        self.received_prior = 0
        self.transit = None
        self.jitter = 0.0
        self.last_sr = 0          # middle 32 bits of the last SR NTP timestamp
        self.last_sr_time = 0.0

    def record_rtp(self, seq_num, payload_size, now):
        """Update counters for a data packet from this source"""
        self.is_active_sender = True
        self.last_seen = now
        self.last_rtp_time = now
        self.packets_received += 1
        self.octets_received += payload_size
        if self.base_seq is None:
            self.base_seq = seq_num
            self.max_seq = seq_num
        elif seq_num < self.max_seq and self.max_seq - seq_num > 0x8000:
            # sequence number wrapped
            self.cycles += 1 << 16
            self.max_seq = seq_num
        elif seq_num > self.max_seq:
            self.max_seq = seq_num

    def update_jitter(self, rtp_timestamp, now, clock_rate):
        """Interarrival jitter estimate (RFC 3550 A.8)"""
        transit = int(now * clock_rate) - rtp_timestamp
        if self.transit is not None:
            d = abs(transit - self.transit)
            self.jitter += (d - self.jitter) / 16.0
        self.transit = transit

    def report_block(self, now):
        """Build a reception report block and start a new loss interval"""
        expected = self.expected
        expected_interval = expected - self.expected_prior
        received_interval = self.packets_received - self.received_prior
        self.expected_prior = expected
        self.received_prior = self.packets_received
        lost_interval = expected_interval - received_interval
        if expected_interval <= 0 or lost_interval <= 0:
            fraction = 0
        else:
            fraction = (lost_interval << 8) // expected_interval
        dlsr = int((now - self.last_sr_time) * 65536) if self.last_sr else 0
        return ReportBlock(self.ssrc, min(fraction, 255), self.cumulative_lost,
                           self.extended_max_seq & 0xFFFFFFFF, int(self.jitter),
                           self.last_sr, dlsr & 0xFFFFFFFF)

    @property
    def extended_max_seq(self):
        return self.cycles + self.max_seq

    @property
    def expected(self):
        if self.base_seq is None:
            return 0
        return self.extended_max_seq - self.base_seq + 1

    @property
    def cumulative_lost(self):
        return max(self.expected - self.packets_received, 0)

    def __repr__(self):
        return (f"Source(ssrc=0x{self.ssrc:08x}, sender={self.is_active_sender}, "
                f"packets={self.packets_received})")


class SourceTable:
    """Membership map from SSRC to Source.

    The table does no locking of its own: every caller goes through the
    owning session's lock, which also guards the session counters.
    """

    def __init__(self):
        self._sources = {}

    def get(self, ssrc):
        return self._sources.get(ssrc)

    def get_or_create(self, ssrc):
        """Return the source for ssrc, adding a non-sending one if it is new"""
        source = self._sources.get(ssrc)
        if source is None:
            source = Source(ssrc)
            self._sources[ssrc] = source
        return source

    def add(self, ssrc):
        """Add ssrc if absent; an existing entry is returned unchanged"""
        return self.get_or_create(ssrc)

    def remove(self, ssrc):
        """Remove a source; unknown SSRCs are ignored"""
        return self._sources.pop(ssrc, None) is not None

    def count(self):
        return len(self._sources)

    def count_active_senders(self):
        return sum(1 for s in self._sources.values() if s.is_active_sender)

    def snapshot_all(self):
        """Point-in-time copies of every source, safe to use after the lock is released"""
        return [copy.copy(s) for s in self._sources.values()]

    def remove_all_except_self(self, self_ssrc):
        for ssrc in [s for s in self._sources if s != self_ssrc]:
            self.remove(ssrc)
        return self.count()

    def __iter__(self):
        return iter(list(self._sources.values()))

    def __contains__(self, ssrc):
        return ssrc in self._sources

    def __len__(self):
        return len(self._sources)
