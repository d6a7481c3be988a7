"""
Configuration management for the listening session
"""

import os
import json
from dataclasses import dataclass
from typing import Optional


@dataclass
class SessionConfig:
    """Session configuration settings"""
    # Network settings
    rtp_port: int = 6970
    rtcp_port: int = 5150
    local_address: Optional[str] = None  # None: resolve the host's own address

    # RTP settings
    payload_type: int = 97
    bandwidth: float = 10000.0  # bytes/sec available to the session
    cname: str = "privlisten@localhost"

    # Decoder settings
    decoder: str = "ffplay"  # "ffplay" or "wav"
    decoder_address: str = "127.0.0.1"
    decoder_port: int = 6971
    codec: str = "opus/48000/2"
    wav_path: str = "received.wav"
    ffplay_path: str = "ffplay"

    # Membership settings
    member_timeout_intervals: int = 5
    legacy_bandwidth_scaling: bool = False

    @property
    def sample_rate(self) -> int:
        return int(self.codec.split("/")[1])

    @property
    def channels(self) -> int:
        parts = self.codec.split("/")
        return int(parts[2]) if len(parts) > 2 else 1

    def validate(self):
        """Reject settings the session engine cannot run with"""
        if self.bandwidth <= 0:
            raise ValueError(f"bandwidth must be positive, got {self.bandwidth}")
        if self.rtp_port == self.rtcp_port:
            raise ValueError("rtp_port and rtcp_port must differ")
        if self.decoder == "ffplay" and self.decoder_port in (self.rtp_port, self.rtcp_port):
            raise ValueError("decoder_port must differ from the stream ports")
        if not 0 <= self.payload_type <= 127:
            raise ValueError(f"payload_type out of range: {self.payload_type}")
        if self.member_timeout_intervals < 1:
            raise ValueError("member_timeout_intervals must be at least 1")
        if self.decoder not in ("ffplay", "wav"):
            raise ValueError(f"unknown decoder: {self.decoder}")

    @classmethod
    def from_file(cls, config_path: str) -> 'SessionConfig':
        """Load configuration from a JSON file"""
        if not os.path.exists(config_path):
            return cls()

        with open(config_path, 'r') as f:
            config_dict = json.load(f)
        return cls(**config_dict)

    def save(self, config_path: str):
        """Save configuration to a JSON file"""
        config_dict = {
            field: getattr(self, field)
            for field in self.__dataclass_fields__
        }
        with open(config_path, 'w') as f:
            json.dump(config_dict, f, indent=4)


# Default configuration
default_config = SessionConfig()
