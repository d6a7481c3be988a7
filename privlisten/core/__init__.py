"""
Core session engine modules
"""

from .packet import RTPPacket, RTCPPacket
from .source import Source, SourceTable
from .session import Session, SessionState
from .receiver import PacketReceiveLoop, ReportListener
from .reporter import ReportLoop

__all__ = ['RTPPacket', 'RTCPPacket', 'Source', 'SourceTable', 'Session',
           'SessionState', 'PacketReceiveLoop', 'ReportListener', 'ReportLoop']
