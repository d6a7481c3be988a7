"""
Audio sinks fed by the packet receive loop.

A sink owns an external resource (a player process or an output file).
acquire() returns a handle, feed() passes one RTP datagram, release()
frees the resource. Failures surface as DecoderError and are never retried.
"""

import logging
import os
import socket
import subprocess
import tempfile

import numpy as np
import soundfile as sf

from ..core.packet import RTPPacket
from ..exceptions import DecoderError

logger = logging.getLogger(__name__)


class DecoderSink:
    def acquire(self, input_address):
        raise NotImplementedError

    def feed(self, handle, data):
        raise NotImplementedError

    def release(self, handle):
        raise NotImplementedError


class FFplayHandle:
    def __init__(self, process, sdp_path, address, sock):
        self.process = process
        self.sdp_path = sdp_path
        self.address = address
        self.socket = sock


class FFplaySink(DecoderSink):
    """Plays the stream through an ffplay process listening on a local port.

    Datagrams are relayed unchanged to the player, which decodes them using
    an SDP description written at acquire time.
    """

    def __init__(self, payload_type=97, codec="opus/48000/2", ffplay_path="ffplay"):
        self.payload_type = payload_type
        self.codec = codec
        self.ffplay_path = ffplay_path

    def sdp(self, address):
        host, port = address
        return (
            "v=0\n"
            f"o=- 0 0 IN IP4 {host}\n"
            "s=privlisten\n"
            f"c=IN IP4 {host}\n"
            "t=0 0\n"
            f"m=audio {port} RTP/AVP {self.payload_type}\n"
            f"a=rtpmap:{self.payload_type} {self.codec}\n"
        )

    def acquire(self, input_address):
        try:
            fd, sdp_path = tempfile.mkstemp(prefix="privlisten-", suffix=".sdp")
            with os.fdopen(fd, "w") as f:
                f.write(self.sdp(input_address))
        except OSError as e:
            raise DecoderError(f"Cannot write session description: {e}") from e

        cmd = [self.ffplay_path, "-nodisp", "-loglevel", "error",
               "-protocol_whitelist", "file,udp,rtp", "-i", sdp_path]
        try:
            process = subprocess.Popen(cmd, stdin=subprocess.DEVNULL)
        except OSError as e:
            os.unlink(sdp_path)
            raise DecoderError(f"Cannot start {self.ffplay_path}: {e}") from e

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        logger.info(f"Started ffplay (pid {process.pid}) on {input_address[0]}:{input_address[1]}")
        return FFplayHandle(process, sdp_path, input_address, sock)

    def feed(self, handle, data):
        try:
            handle.socket.sendto(data, handle.address)
        except OSError as e:
            raise DecoderError(f"Cannot relay to decoder: {e}") from e

    def release(self, handle):
        handle.socket.close()
        try:
            handle.process.terminate()
            handle.process.wait(timeout=2.0)
        except subprocess.TimeoutExpired:
            handle.process.kill()
        except OSError as e:
            raise DecoderError(f"Cannot stop decoder: {e}") from e
        finally:
            if os.path.exists(handle.sdp_path):
                os.unlink(handle.sdp_path)
        logger.info("Stopped ffplay")


class WavFileSink(DecoderSink):
    """Records linear 16-bit PCM payloads (L16, network byte order) to a WAV file"""

    def __init__(self, path="received.wav", sample_rate=48000, channels=2):
        self.path = path
        self.sample_rate = sample_rate
        self.channels = channels

    def acquire(self, input_address=None):
        try:
            handle = sf.SoundFile(self.path, mode="w", samplerate=self.sample_rate,
                                  channels=self.channels, subtype="PCM_16")
        except (RuntimeError, OSError) as e:
            raise DecoderError(f"Cannot open {self.path}: {e}") from e
        logger.info(f"Recording to {self.path}")
        return handle

    def feed(self, handle, data):
        packet = RTPPacket.decode(data)
        usable = len(packet.payload) - len(packet.payload) % (2 * self.channels)
        samples = np.frombuffer(packet.payload[:usable], dtype=">i2").astype(np.int16)
        try:
            handle.write(samples.reshape(-1, self.channels))
        except (RuntimeError, OSError) as e:
            raise DecoderError(f"Cannot write {self.path}: {e}") from e

    def release(self, handle):
        try:
            handle.close()
        except RuntimeError as e:
            raise DecoderError(f"Cannot close {self.path}: {e}") from e
        logger.info(f"Closed {self.path}")


def create_sink(config):
    """Build the sink selected by a SessionConfig"""
    if config.decoder == "wav":
        return WavFileSink(config.wav_path, config.sample_rate, config.channels)
    return FFplaySink(config.payload_type, config.codec, config.ffplay_path)
