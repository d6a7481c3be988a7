import struct
import time

# RTP Header Format:
#  0                   1                   2                   3
#  0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
# +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
# |V=2|P|X|  CC   |M|     PT      |       sequence number         |
# +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
# |                           timestamp                           |
# +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
# |           synchronization source (SSRC)  identifier            |
# +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
# |            contributing source (CSRC) identifiers             |
# |                             ....                              |
# +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

# Seconds between the NTP epoch (1900) and the Unix epoch (1970)
NTP_EPOCH_OFFSET = 2208988800


class RTPPacket:
    HEADER_SIZE = 12  # fixed header size in bytes

    def __init__(self, payload_type=97, seq_num=0, timestamp=0, ssrc=0, payload=b''):
        self.version = 2
        self.padding = 0
        self.extension = 0
        self.cc = 0
        self.marker = 0
        self.payload_type = payload_type
        self.seq_num = seq_num
        self.timestamp = timestamp
        self.ssrc = ssrc
        self.csrc = []
        self.payload = payload

    def encode(self):
        """Pack the header fields and payload into an RTP datagram"""
        first_byte = (self.version << 6) | (self.padding << 5) | (self.extension << 4) | self.cc
        second_byte = (self.marker << 7) | self.payload_type

        header = struct.pack('!BBH', first_byte, second_byte, self.seq_num)
        header += struct.pack('!II', self.timestamp, self.ssrc)

        for csrc in self.csrc:
            header += struct.pack('!I', csrc)

        return header + self.payload

    @classmethod
    def decode(cls, packet_bytes):
        """Parse an RTP datagram"""
        if len(packet_bytes) < cls.HEADER_SIZE:
            raise ValueError("Packet too small to be a valid RTP packet")

        first_byte, second_byte, seq_num = struct.unpack('!BBH', packet_bytes[0:4])
        timestamp, ssrc = struct.unpack('!II', packet_bytes[4:12])

        version = (first_byte >> 6) & 0x03
        if version != 2:
            raise ValueError(f"Unsupported RTP version {version}")
        padding = (first_byte >> 5) & 0x01
        extension = (first_byte >> 4) & 0x01
        cc = first_byte & 0x0F

        marker = (second_byte >> 7) & 0x01
        payload_type = second_byte & 0x7F

        header_size = cls.HEADER_SIZE + (cc * 4)
        if len(packet_bytes) < header_size:
            raise ValueError("Packet truncated inside the CSRC list")
        csrc_list = [
            struct.unpack('!I', packet_bytes[12 + i * 4:16 + i * 4])[0]
            for i in range(cc)
        ]

        # Skip the header extension: 16-bit profile, 16-bit length in words
        if extension:
            if len(packet_bytes) < header_size + 4:
                raise ValueError("Packet truncated inside the header extension")
            _, ext_words = struct.unpack('!HH', packet_bytes[header_size:header_size + 4])
            header_size += 4 + ext_words * 4

        payload_end = len(packet_bytes)
        if padding and payload_end > header_size:
            payload_end -= packet_bytes[-1]
        payload = packet_bytes[header_size:payload_end]

        packet = cls(payload_type, seq_num, timestamp, ssrc, payload)
        packet.version = version
        packet.padding = padding
        packet.extension = extension
        packet.cc = cc
        packet.marker = marker
        packet.csrc = csrc_list

        return packet

    @staticmethod
    def peek_ssrc(packet_bytes):
        """Read the SSRC out of an RTP header without parsing the rest"""
        if len(packet_bytes) < RTPPacket.HEADER_SIZE:
            raise ValueError("Packet too small to be a valid RTP packet")
        return struct.unpack('!I', packet_bytes[8:12])[0]

    def __str__(self):
        return (f"RTP Packet [V={self.version}, P={self.padding}, X={self.extension}, "
                f"CC={self.cc}, M={self.marker}, PT={self.payload_type}, "
                f"Seq={self.seq_num}, Time={self.timestamp}, SSRC=0x{self.ssrc:08x}, "
                f"Payload Size={len(self.payload)}]")


# RTCP common header:
#  0                   1                   2                   3
#  0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
# +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
# |V=2|P|    RC   |      PT       |             length            |
# +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

class ReportBlock:
    """Reception statistics for one source, carried inside SR and RR packets"""
    SIZE = 24

    def __init__(self, ssrc, fraction_lost=0, cumulative_lost=0,
                 highest_seq=0, jitter=0, lsr=0, dlsr=0):
        self.ssrc = ssrc
        self.fraction_lost = fraction_lost
        self.cumulative_lost = cumulative_lost
        self.highest_seq = highest_seq
        self.jitter = jitter
        self.lsr = lsr
        self.dlsr = dlsr

    def encode(self):
        lost = (self.fraction_lost << 24) | (self.cumulative_lost & 0xFFFFFF)
        return struct.pack('!IIIIII', self.ssrc, lost, self.highest_seq,
                           self.jitter, self.lsr, self.dlsr)

    @classmethod
    def decode(cls, data):
        ssrc, lost, highest_seq, jitter, lsr, dlsr = struct.unpack('!IIIIII', data[:cls.SIZE])
        return cls(ssrc, lost >> 24, lost & 0xFFFFFF, highest_seq, jitter, lsr, dlsr)


class RTCPPacket:
    PT_SR = 200
    PT_RR = 201
    PT_SDES = 202
    PT_BYE = 203

    SDES_CNAME = 1

    def __init__(self, packet_type, ssrc=0, report_blocks=None, sources=None,
                 ntp_timestamp=0, rtp_timestamp=0, packet_count=0, octet_count=0,
                 cname=None):
        self.packet_type = packet_type
        self.ssrc = ssrc
        self.report_blocks = report_blocks or []
        self.sources = sources or []  # BYE source list
        self.ntp_timestamp = ntp_timestamp
        self.rtp_timestamp = rtp_timestamp
        self.packet_count = packet_count
        self.octet_count = octet_count
        self.cname = cname

    @classmethod
    def sender_report(cls, ssrc, packet_count, octet_count, report_blocks=None,
                      rtp_timestamp=0, now=None):
        return cls(cls.PT_SR, ssrc, report_blocks,
                   ntp_timestamp=ntp_time(now), rtp_timestamp=rtp_timestamp,
                   packet_count=packet_count, octet_count=octet_count)

    @classmethod
    def receiver_report(cls, ssrc, report_blocks=None):
        return cls(cls.PT_RR, ssrc, report_blocks)

    @classmethod
    def source_description(cls, ssrc, cname):
        return cls(cls.PT_SDES, ssrc, cname=cname)

    @classmethod
    def bye(cls, *sources):
        return cls(cls.PT_BYE, sources[0] if sources else 0, sources=list(sources))

    def _body(self):
        if self.packet_type == self.PT_SR:
            body = struct.pack('!IQIII', self.ssrc, self.ntp_timestamp, self.rtp_timestamp,
                               self.packet_count & 0xFFFFFFFF, self.octet_count & 0xFFFFFFFF)
            return len(self.report_blocks), body + b''.join(b.encode() for b in self.report_blocks)
        if self.packet_type == self.PT_RR:
            body = struct.pack('!I', self.ssrc)
            return len(self.report_blocks), body + b''.join(b.encode() for b in self.report_blocks)
        if self.packet_type == self.PT_SDES:
            text = self.cname.encode('utf-8')[:255]
            chunk = struct.pack('!IBB', self.ssrc, self.SDES_CNAME, len(text)) + text + b'\x00'
            chunk += b'\x00' * (-len(chunk) % 4)
            return 1, chunk
        if self.packet_type == self.PT_BYE:
            return len(self.sources), b''.join(struct.pack('!I', s) for s in self.sources)
        raise ValueError(f"Cannot encode RTCP packet type {self.packet_type}")

    def encode(self):
        """Pack into a single RTCP packet; concatenate results for a compound packet"""
        count, body = self._body()
        first_byte = (2 << 6) | (count & 0x1F)
        length = (len(body) + 4) // 4 - 1
        return struct.pack('!BBH', first_byte, self.packet_type, length) + body

    @classmethod
    def decode_compound(cls, data):
        """Split a compound RTCP datagram into packets, skipping unknown types"""
        packets = []
        offset = 0
        while offset + 4 <= len(data):
            first_byte, packet_type, length = struct.unpack('!BBH', data[offset:offset + 4])
            if (first_byte >> 6) != 2:
                raise ValueError("Unsupported RTCP version")
            count = first_byte & 0x1F
            end = offset + (length + 1) * 4
            if end > len(data):
                raise ValueError("RTCP packet length exceeds datagram")
            body = data[offset + 4:end]
            packet = cls._decode_body(packet_type, count, body)
            if packet is not None:
                packets.append(packet)
            offset = end
        return packets

    @classmethod
    def _decode_body(cls, packet_type, count, body):
        if packet_type == cls.PT_SR:
            ssrc, ntp_ts, rtp_ts, pkts, octets = struct.unpack('!IQIII', body[:24])
            blocks = [ReportBlock.decode(body[24 + i * 24:]) for i in range(count)]
            return cls(packet_type, ssrc, blocks, ntp_timestamp=ntp_ts,
                       rtp_timestamp=rtp_ts, packet_count=pkts, octet_count=octets)
        if packet_type == cls.PT_RR:
            ssrc, = struct.unpack('!I', body[:4])
            blocks = [ReportBlock.decode(body[4 + i * 24:]) for i in range(count)]
            return cls(packet_type, ssrc, blocks)
        if packet_type == cls.PT_SDES:
            ssrc, = struct.unpack('!I', body[:4])
            cname = None
            pos = 4
            while pos + 2 <= len(body) and body[pos] != 0:
                item, item_len = body[pos], body[pos + 1]
                if item == cls.SDES_CNAME:
                    cname = body[pos + 2:pos + 2 + item_len].decode('utf-8', 'replace')
                pos += 2 + item_len
            return cls(packet_type, ssrc, cname=cname)
        if packet_type == cls.PT_BYE:
            sources = [struct.unpack('!I', body[i * 4:i * 4 + 4])[0] for i in range(count)]
            return cls.bye(*sources)
        return None

    def __str__(self):
        names = {self.PT_SR: 'SR', self.PT_RR: 'RR', self.PT_SDES: 'SDES', self.PT_BYE: 'BYE'}
        return (f"RTCP Packet [{names.get(self.packet_type, self.packet_type)}, "
                f"SSRC=0x{self.ssrc:08x}, Blocks={len(self.report_blocks)}]")


def ntp_time(now=None):
    """64-bit NTP timestamp for a Unix time in seconds"""
    if now is None:
        now = time.time()
    seconds = int(now) + NTP_EPOCH_OFFSET
    fraction = int((now % 1) * (1 << 32))
    return ((seconds & 0xFFFFFFFF) << 32) | (fraction & 0xFFFFFFFF)
