"""
Collaborators around the session core: transport, decoder sinks, handshake
"""

from .transport import UDPTransport
from .decoder import FFplaySink, WavFileSink
from .handshake import Handshake, StaticHandshake

__all__ = ['UDPTransport', 'FFplaySink', 'WavFileSink', 'Handshake', 'StaticHandshake']
