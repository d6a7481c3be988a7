"""
Private listening session engine: RTP receive, RTCP pacing and membership tracking
"""

__version__ = "0.1.0"

from .config import SessionConfig
from .core.lifecycle import ConnectionListener, Connector, set_debug_mode
from .core.session import Session, SessionStatus
from .exceptions import (AddressResolutionError, DecoderError, NegotiationError,
                         SessionError, TransportClosed)

__all__ = [
    'SessionConfig',
    'Connector',
    'ConnectionListener',
    'set_debug_mode',
    'Session',
    'SessionStatus',
    'SessionError',
    'NegotiationError',
    'AddressResolutionError',
    'DecoderError',
    'TransportClosed',
]
